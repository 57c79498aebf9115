"""Single-flight session renewal: refresh token first, device certificate as last resort."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Mapping, TypeVar

import httpx

from tfxclient.config.const import StorageKeys
from tfxclient.ports.storage import KeyValueStore
from tfxclient.services.auth.credentials import CredentialStore

_log = logging.getLogger("tfx.renewal")

T = TypeVar("T")

REFRESH_KEY = "refresh"
DEVICE_CERT_KEY = "device-certificate"


class SingleFlight:
    """Collapse concurrent calls for the same key into one in-flight operation.

    The pending entry is removed inside the operation itself, before its
    result becomes visible, so a caller arriving after settlement always
    starts a fresh attempt.
    """

    def __init__(self) -> None:
        self._pending: Dict[Hashable, asyncio.Task[Any]] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._pending

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._pending.get(key)
        if task is None:
            task = asyncio.create_task(self._settle(key, factory), name=f"tfx-single-flight-{key}")
            self._pending[key] = task
        # shield: a cancelled caller must not cancel the renewal the others wait on
        return await asyncio.shield(task)

    async def _settle(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await factory()
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]


def _extract_tokens(payload: Any) -> tuple[str | None, str | None]:
    """Return ``(access, refresh)`` from a flat or ``{"success", "data"}`` enveloped body."""

    if not isinstance(payload, Mapping):
        return None, None
    if "success" in payload and not payload.get("success"):
        return None, None
    data = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
    access = data.get("accessToken") or data.get("access_token")
    refresh = data.get("refreshToken") or data.get("refresh_token")
    access = access if isinstance(access, str) and access else None
    refresh = refresh if isinstance(refresh, str) and refresh else None
    return access, refresh


class SessionRenewalCoordinator:
    def __init__(
        self,
        http: httpx.AsyncClient,
        credentials: CredentialStore,
        *,
        app_headers: Mapping[str, str] | None = None,
        app_store: KeyValueStore | None = None,
    ) -> None:
        self._http = http
        self._credentials = credentials
        self._app_headers = dict(app_headers or {})
        self._app_store = app_store
        self._flights = SingleFlight()

    @property
    def flights(self) -> SingleFlight:
        return self._flights

    def in_flight(self) -> bool:
        return self._flights.in_flight(REFRESH_KEY) or self._flights.in_flight(DEVICE_CERT_KEY)

    async def refresh(self, api_base: str) -> str | None:
        """Mint a new access token from the stored refresh token; ``None`` on any failure."""
        return await self._flights.run(REFRESH_KEY, lambda: self._refresh(api_base))

    async def recover_via_device_certificate(self, api_base: str) -> str | None:
        """Last-resort renewal with the refresh token embedded in the device certificate."""
        return await self._flights.run(DEVICE_CERT_KEY, lambda: self._recover(api_base))

    # ------------------------------------------------------------------
    async def _post_refresh(self, api_base: str, refresh_token: str) -> tuple[str | None, str | None]:
        headers = {"Content-Type": "application/json", "Accept": "application/json", **self._app_headers}
        response = await self._http.post(
            f"{api_base.rstrip('/')}/auth/refresh",
            json={"refreshToken": refresh_token},
            headers=headers,
        )
        if not response.is_success:
            _log.info("token renewal rejected status=%s", response.status_code)
            return None, None
        try:
            payload = response.json()
        except ValueError:
            return None, None
        return _extract_tokens(payload)

    async def _refresh(self, api_base: str) -> str | None:
        try:
            refresh_token = await self._credentials.refresh_token()
            if not refresh_token:
                _log.info("no refresh token stored, skipping renewal")
                return None
            access, rotated = await self._post_refresh(api_base, refresh_token)
            if not access:
                return None
            await self._credentials.save_tokens(access, rotated)
            if rotated and rotated != refresh_token:
                certificate = await self._credentials.device_certificate()
                if certificate is not None:
                    await self._credentials.save_device_certificate(certificate.rotated(rotated))
            _log.info("access token renewed")
            return access
        except Exception:
            _log.warning("token renewal failed", exc_info=True)
            return None

    async def _recover(self, api_base: str) -> str | None:
        try:
            certificate = await self._credentials.device_certificate()
            if certificate is None:
                return None
            _log.info("trying device certificate email=%s", certificate.email)
            access, rotated = await self._post_refresh(api_base, certificate.refresh_token)
            if not access:
                return None
            refresh_token = rotated or certificate.refresh_token
            previous = await self._credentials.snapshot()
            try:
                await self._credentials.save_device_certificate(certificate.rotated(refresh_token))
                await self._credentials.save_tokens(access, refresh_token)
            except Exception:
                # a half-written recovery must not replace the stored credentials
                await self._credentials.restore(previous)
                raise
            if self._app_store is not None:
                await self._app_store.save(StorageKeys.SESSION_VALIDATED_AT, str(int(time.time() * 1000)))
            _log.info("device certificate recovery succeeded email=%s", certificate.email)
            return access
        except Exception:
            _log.warning("device certificate recovery failed", exc_info=True)
            return None


__all__ = ["SessionRenewalCoordinator", "SingleFlight", "REFRESH_KEY", "DEVICE_CERT_KEY"]
