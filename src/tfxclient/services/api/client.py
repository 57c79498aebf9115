"""Request executor: the single chokepoint for every call to the mobile API.

Each call gets the standard JSON headers, the app identity header and the
bearer token. Failures are handled in place:

* transport failures are retried with a linear delay;
* ``401`` goes through the renewal coordinator, then device certificate
  recovery, and finally forces a logout;
* ``429`` is retried with exponential backoff, honouring ``Retry-After``;
* any other error status becomes a typed :class:`ApiError`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from typing import Any, Awaitable, Callable, Mapping, MutableMapping

import httpx

from tfxclient.config.const import (
    APP_SECRET,
    APP_SECRET_HEADER,
    DEFAULT_HTTP_TIMEOUT,
    NETWORK_RETRY_STEP_MS,
    RATE_LIMIT_BASE_MS,
    RATE_LIMIT_CAP_MS,
)
from tfxclient.ports.storage import KeyValueStore
from tfxclient.services.api.errors import ApiError, SessionExpiredError, TransportError
from tfxclient.services.api.renewal import SessionRenewalCoordinator
from tfxclient.services.api.request import HttpMethod, LogicalRequest
from tfxclient.services.auth.credentials import CredentialStore

_log = logging.getLogger("tfx.api")

Sleep = Callable[[float], Awaitable[None]]
Navigator = Callable[[], "Awaitable[None] | None"]

_API_BASE_RE = re.compile(r"(https?://[^/]+/api/mobile)")
_LEADING_INT_RE = re.compile(r"^\s*(\d+)")


def derive_api_base(url: str, fallback: str | None = None) -> str:
    """``https://school.se/api/mobile/bookings`` -> ``https://school.se/api/mobile``."""
    match = _API_BASE_RE.match(url)
    if match:
        return match.group(1)
    return fallback.rstrip("/") if fallback else url


def network_retry_delay_ms(attempt: int) -> int:
    return attempt * NETWORK_RETRY_STEP_MS


def rate_limit_delay_ms(attempt: int, retry_after: str | None = None) -> int:
    """Backoff for the ``attempt``-th retry of a 429; a numeric ``Retry-After`` (seconds) wins."""
    delay = min(RATE_LIMIT_BASE_MS * 2 ** (attempt - 1), RATE_LIMIT_CAP_MS)
    if retry_after:
        match = _LEADING_INT_RE.match(retry_after)
        if match:
            delay = int(match.group(1)) * 1000
    return delay


def _parse_body(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return response.text


def error_from_response(response: httpx.Response) -> ApiError:
    status = response.status_code
    message = f"HTTP {status}"
    error_code: str | None = None
    payload: Any | None = None
    try:
        payload = response.json()
    except ValueError:
        text = response.text
        if text:
            message = text
        payload = text or None
    else:
        if isinstance(payload, Mapping):
            detail = payload.get("error") or payload.get("message")
            if detail:
                message = detail if isinstance(detail, str) else str(detail)
            code = payload.get("errorCode")
            if code is not None:
                error_code = str(code)
    return ApiError(status, message, error_code=error_code, payload=payload)


class ApiClient:
    """Async executor for :class:`LogicalRequest` objects on top of ``httpx.AsyncClient``."""

    def __init__(
        self,
        credentials: CredentialStore,
        *,
        http: httpx.AsyncClient | None = None,
        renewal: SessionRenewalCoordinator | None = None,
        app_secret: str = APP_SECRET,
        api_base: str | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        app_store: KeyValueStore | None = None,
        on_session_expired: Navigator | None = None,
        retain_device_certificate: bool = False,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout, transport=transport)
        self._credentials = credentials
        self._app_secret = app_secret
        self._api_base = api_base.rstrip("/") if api_base else None
        self._renewal = renewal or SessionRenewalCoordinator(
            self._http,
            credentials,
            app_headers=self.app_identity_headers(),
            app_store=app_store,
        )
        self._on_session_expired = on_session_expired
        self._retain_device_certificate = retain_device_certificate
        self._sleep = sleep

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    @property
    def renewal(self) -> SessionRenewalCoordinator:
        return self._renewal

    @property
    def api_base(self) -> str | None:
        return self._api_base

    def app_identity_headers(self) -> dict[str, str]:
        return {APP_SECRET_HEADER: self._app_secret}

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ---------- public helpers ------------------------------------------------
    async def get(self, url: str, **options: Any) -> Any:
        return await self.execute(LogicalRequest(url=url, method="GET", **options))

    async def post(self, url: str, body: Any | None = None, **options: Any) -> Any:
        return await self.execute(LogicalRequest(url=url, method="POST", body=body, **options))

    async def put(self, url: str, body: Any | None = None, **options: Any) -> Any:
        return await self.execute(LogicalRequest(url=url, method="PUT", body=body, **options))

    async def patch(self, url: str, body: Any | None = None, **options: Any) -> Any:
        return await self.execute(LogicalRequest(url=url, method="PATCH", body=body, **options))

    async def delete(self, url: str, body: Any | None = None, **options: Any) -> Any:
        return await self.execute(LogicalRequest(url=url, method="DELETE", body=body, **options))

    async def request(self, method: HttpMethod, url: str, **options: Any) -> Any:
        return await self.execute(LogicalRequest(url=url, method=method, **options))

    # ---------- executor ------------------------------------------------------
    async def execute(self, request: LogicalRequest) -> Any:
        headers = await self._build_headers(request)
        network_attempts = 0
        rate_attempts = 0

        while True:
            try:
                response = await self._send(request, headers)
            except httpx.TransportError as exc:
                if network_attempts < request.max_network_retries:
                    network_attempts += 1
                    delay = network_retry_delay_ms(network_attempts)
                    _log.info(
                        "network error, retry %s/%s in %sms method=%s url=%s",
                        network_attempts,
                        request.max_network_retries,
                        delay,
                        request.method,
                        request.url,
                    )
                    await self._sleep(delay / 1000)
                    continue
                raise TransportError(
                    f"{request.method} {request.url} failed: {exc}", attempts=network_attempts + 1
                ) from exc

            if response.status_code == 401 and not request.skip_auth:
                _log.info("401 received, attempting token refresh url=%s", request.url)
                return await self._recover_session(request, headers)

            if response.status_code == 429 and rate_attempts < request.max_429_retries:
                rate_attempts += 1
                delay = rate_limit_delay_ms(rate_attempts, response.headers.get("Retry-After"))
                _log.info("429, retry %s/%s in %sms url=%s", rate_attempts, request.max_429_retries, delay, request.url)
                await self._sleep(delay / 1000)
                continue

            if response.is_success:
                return _parse_body(response)

            raise error_from_response(response)

    # ------------------------------------------------------------------
    async def _build_headers(self, request: LogicalRequest) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            **request.headers,
        }
        if not request.skip_app_identity:
            headers.update(self.app_identity_headers())
        if not request.skip_auth:
            token = await self._credentials.access_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _send(self, request: LogicalRequest, headers: Mapping[str, str]) -> httpx.Response:
        return await self._http.request(
            request.method,
            request.url,
            headers=dict(headers),
            json=request.body if request.sends_body else None,
        )

    async def _send_once(self, request: LogicalRequest, headers: Mapping[str, str]) -> httpx.Response:
        try:
            return await self._send(request, headers)
        except httpx.TransportError as exc:
            raise TransportError(f"{request.method} {request.url} failed: {exc}") from exc

    @staticmethod
    def _with_token(headers: MutableMapping[str, str], token: str) -> MutableMapping[str, str]:
        headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _recover_session(self, request: LogicalRequest, headers: dict[str, str]) -> Any:
        api_base = derive_api_base(request.url, self._api_base)

        token = await self._renewal.refresh(api_base)
        if token:
            retry = await self._send_once(request, self._with_token(headers, token))
            if retry.is_success:
                return _parse_body(retry)
            if retry.status_code != 401:
                raise error_from_response(retry)
            _log.info("retry after refresh also 401, trying device certificate")
        else:
            _log.info("token refresh failed, trying device certificate")

        certificate_token = await self._renewal.recover_via_device_certificate(api_base)
        if certificate_token:
            retry = await self._send_once(request, self._with_token(headers, certificate_token))
            if retry.is_success:
                return _parse_body(retry)

        _log.warning("all token recovery exhausted, forcing logout")
        await self._expire_session()
        raise SessionExpiredError()

    async def _expire_session(self) -> None:
        if self._retain_device_certificate:
            await self._credentials.clear_all()
        else:
            await self._credentials.logout()
        if self._on_session_expired is None:
            return
        try:
            outcome = self._on_session_expired()
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            _log.exception("login redirect failed")


__all__ = [
    "ApiClient",
    "derive_api_base",
    "error_from_response",
    "network_retry_delay_ms",
    "rate_limit_delay_ms",
]
