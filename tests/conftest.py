from __future__ import annotations

import asyncio
import json
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, Tuple, Union

import httpx
import keyring
import pytest
from keyring.backend import KeyringBackend as _KeyringBase
from keyring.errors import PasswordDeleteError

from tfxclient.adapters.storage.kv_file import PlainFileStore
from tfxclient.services.api.client import ApiClient
from tfxclient.services.auth.credentials import CredentialStore

API_BASE = "https://school.example/api/mobile"

Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], Any]]


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeApi:
    """Scripted mobile API served through ``httpx.MockTransport``.

    Each ``(method, path)`` holds a queue of replies; the last reply is
    repeated once the queue is down to one entry.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Deque[Reply]] = defaultdict(deque)
        self.requests: list[httpx.Request] = []
        self.latency = 0.0

    def on(self, method: str, path: str, *replies: Reply) -> "FakeApi":
        self.routes[(method.upper(), path)].extend(replies)
        return self

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.latency:
            await asyncio.sleep(self.latency)
        replies = self.routes.get((request.method, request.url.path))
        if not replies:
            return httpx.Response(404, json={"error": "no route"})
        reply = replies.popleft() if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply) and not isinstance(reply, httpx.Response):
            reply = reply(request)
            if asyncio.iscoroutine(reply):
                reply = await reply
        return reply

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def body_of(request: httpx.Request) -> Any:
    return json.loads(request.content) if request.content else None


def bearer_of(request: httpx.Request) -> str | None:
    value = request.headers.get("Authorization")
    return value.split(" ", 1)[1] if value else None


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)

    @property
    def total(self) -> float:
        return sum(self.calls)


class MemoryKeyring(_KeyringBase):
    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.items: dict[tuple[str, str], str] = {}

    def set_password(self, service, username, password):
        self.items[(service, username)] = password

    def get_password(self, service, username):
        return self.items.get((service, username))

    def delete_password(self, service, username):
        try:
            del self.items[(service, username)]
        except KeyError:
            raise PasswordDeleteError("not found") from None


@pytest.fixture
def memory_keyring():
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    try:
        yield backend
    finally:
        keyring.set_keyring(previous)


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def app_store(tmp_path) -> PlainFileStore:
    return PlainFileStore(tmp_path / "app-store.json")


@pytest.fixture
def credentials(tmp_path) -> CredentialStore:
    return CredentialStore(PlainFileStore(tmp_path / "credentials.json"))


@pytest.fixture
async def api_client(credentials, app_store, fake_api, sleeps):
    client = ApiClient(
        credentials,
        transport=fake_api.transport(),
        app_secret="test-secret",
        api_base=API_BASE,
        app_store=app_store,
        sleep=sleeps,
    )
    try:
        yield client
    finally:
        await client.aclose()
