"""Credential storage: bearer tokens and the long-lived device certificate."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Mapping

from tfxclient.adapters.fs.path_provider import PathProvider
from tfxclient.adapters.storage.kv_file import PlainFileStore
from tfxclient.config.const import LEGACY_TOKEN_MIGRATIONS, StorageKeys
from tfxclient.config.settings import ClientSettings
from tfxclient.ports.storage import KeyValueStore
from tfxclient.services.auth.keyring import KeyringBackend, StoreUnavailableError, keyring_available

_log = logging.getLogger("tfx.credentials")

_SESSION_KEYS = (StorageKeys.ACCESS_TOKEN, StorageKeys.REFRESH_TOKEN, StorageKeys.SESSION_TOKEN)
_VOLATILE_KEYS = (StorageKeys.ACCESS_TOKEN, StorageKeys.SESSION_TOKEN)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class DeviceCertificate:
    """Proof that this device once authenticated as ``email``/``user_id``."""

    refresh_token: str
    email: str
    user_id: str
    issued_at: int

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DeviceCertificate":
        refresh = data.get("refreshToken") or data.get("refresh_token")
        if not isinstance(refresh, str) or not refresh:
            raise ValueError("device certificate is missing its refresh token")
        issued_raw = data.get("issuedAt", data.get("issued_at", 0))
        try:
            issued_at = int(issued_raw)
        except (TypeError, ValueError):
            issued_at = 0
        return cls(
            refresh_token=refresh,
            email=str(data.get("email") or ""),
            user_id=str(data.get("userId") or data.get("user_id") or ""),
            issued_at=issued_at,
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "refreshToken": self.refresh_token,
                "email": self.email,
                "userId": self.user_id,
                "issuedAt": self.issued_at,
            },
            ensure_ascii=False,
        )

    def rotated(self, refresh_token: str, *, issued_at: int | None = None) -> "DeviceCertificate":
        return replace(self, refresh_token=refresh_token, issued_at=_now_ms() if issued_at is None else issued_at)


@dataclass(frozen=True, slots=True)
class CredentialSet:
    access_token: str | None = None
    refresh_token: str | None = None
    session_token: str | None = None
    device_certificate: DeviceCertificate | None = None

    def as_status(self) -> dict[str, Any]:
        data = {key: bool(value) for key, value in asdict(self).items() if key != "device_certificate"}
        cert = self.device_certificate
        data["device_certificate"] = {"email": cert.email, "issued_at": cert.issued_at} if cert else None
        return data


class CredentialStore:
    """Discrete durable credential entries on top of a :class:`KeyValueStore`."""

    def __init__(self, backend: KeyValueStore):
        self._backend = backend

    @property
    def backend(self) -> KeyValueStore:
        return self._backend

    # ---------- raw contract --------------------------------------------------
    async def save(self, key: str, value: str) -> None:
        await self._backend.save(key, value)

    async def get(self, key: str) -> str | None:
        return await self._backend.get(key)

    async def delete(self, key: str) -> None:
        await self._backend.delete(key)

    async def clear_all(self) -> None:
        """Drop access, refresh and session tokens. The device certificate survives."""
        await self._backend.delete_many(_SESSION_KEYS)
        _log.info("session tokens cleared")

    async def clear_volatile(self) -> None:
        """Drop access and session tokens only, keeping auto-login material."""
        await self._backend.delete_many(_VOLATILE_KEYS)

    async def logout(self) -> None:
        """Full logout: every token and the device certificate."""
        await self._backend.delete_many((*_SESSION_KEYS, StorageKeys.DEVICE_CERT))
        _log.info("all credentials cleared")

    # ---------- typed helpers -------------------------------------------------
    async def access_token(self) -> str | None:
        return await self.get(StorageKeys.ACCESS_TOKEN)

    async def refresh_token(self) -> str | None:
        return await self.get(StorageKeys.REFRESH_TOKEN)

    async def save_tokens(
        self,
        access_token: str,
        refresh_token: str | None = None,
        session_token: str | None = None,
    ) -> None:
        await self.save(StorageKeys.ACCESS_TOKEN, access_token)
        if refresh_token:
            await self.save(StorageKeys.REFRESH_TOKEN, refresh_token)
        if session_token:
            await self.save(StorageKeys.SESSION_TOKEN, session_token)

    async def device_certificate(self) -> DeviceCertificate | None:
        raw = await self.get(StorageKeys.DEVICE_CERT)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, Mapping):
                raise ValueError("device certificate is not an object")
            return DeviceCertificate.from_mapping(data)
        except ValueError:
            _log.warning("stored device certificate is malformed, ignoring it")
            return None

    async def save_device_certificate(self, certificate: DeviceCertificate) -> None:
        await self.save(StorageKeys.DEVICE_CERT, certificate.to_json())

    async def issue_device_certificate(self, refresh_token: str, *, email: str, user_id: str) -> DeviceCertificate:
        """Capture the certificate after the first successful login."""
        certificate = DeviceCertificate(
            refresh_token=refresh_token,
            email=email,
            user_id=user_id,
            issued_at=_now_ms(),
        )
        await self.save_device_certificate(certificate)
        _log.info("device certificate issued email=%s", email)
        return certificate

    async def snapshot(self) -> CredentialSet:
        return CredentialSet(
            access_token=await self.get(StorageKeys.ACCESS_TOKEN),
            refresh_token=await self.get(StorageKeys.REFRESH_TOKEN),
            session_token=await self.get(StorageKeys.SESSION_TOKEN),
            device_certificate=await self.device_certificate(),
        )

    async def restore(self, previous: CredentialSet) -> None:
        """Put back the entries captured by :meth:`snapshot`; entries absent there are deleted."""
        certificate = previous.device_certificate
        entries = (
            (StorageKeys.ACCESS_TOKEN, previous.access_token),
            (StorageKeys.REFRESH_TOKEN, previous.refresh_token),
            (StorageKeys.SESSION_TOKEN, previous.session_token),
            (StorageKeys.DEVICE_CERT, certificate.to_json() if certificate else None),
        )
        for key, value in entries:
            if value is None:
                await self.delete(key)
            else:
                await self.save(key, value)


def select_secure_backend(settings: ClientSettings, paths: PathProvider) -> KeyValueStore:
    """Pick the token backend once at startup according to ``settings.secure_store``."""

    mode = settings.secure_store
    if mode == "plain":
        return PlainFileStore(paths.plain_secure_file())
    if keyring_available():
        return KeyringBackend()
    if mode == "keyring":
        raise StoreUnavailableError("secure_store=keyring but no usable keyring backend was found")
    _log.warning("no secure keyring backend available, storing tokens unencrypted at %s", paths.plain_secure_file())
    return PlainFileStore(paths.plain_secure_file())


async def migrate_legacy_tokens(app_store: KeyValueStore, store: CredentialStore) -> bool:
    """Move tokens written by older builds out of the app store into the secure store.

    Runs at most once per install (guarded by a persisted flag) and never
    raises: a failed migration must not block startup. Returns ``True`` when
    the migration ran to completion during this call.
    """

    if not store.backend.secure:
        return False
    try:
        if await app_store.get(StorageKeys.MIGRATION_DONE) == "true":
            return False
        _log.info("starting legacy token migration")
        for legacy_key, secure_key in LEGACY_TOKEN_MIGRATIONS:
            value = await app_store.get(legacy_key)
            if value:
                await store.save(secure_key, value)
                await app_store.delete(legacy_key)
                _log.info("migrated %s -> %s", legacy_key, secure_key)
        await app_store.save(StorageKeys.MIGRATION_DONE, "true")
        _log.info("legacy token migration complete")
        return True
    except Exception:
        _log.exception("legacy token migration failed")
        return False


__all__ = [
    "CredentialSet",
    "CredentialStore",
    "DeviceCertificate",
    "StoreUnavailableError",
    "migrate_legacy_tokens",
    "select_secure_backend",
]
