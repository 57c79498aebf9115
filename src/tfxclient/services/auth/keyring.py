from __future__ import annotations

import logging

import anyio

from tfxclient.config.const import KEYRING_SERVICE_NAME
from tfxclient.ports.storage import KeyValueStore

_log = logging.getLogger("tfx.credentials")

_UNUSABLE_BACKENDS = ("keyring.backends.fail", "keyring.backends.null")


class StoreUnavailableError(RuntimeError):
    """Raised when the system keyring backend is not available."""


def _require_keyring():
    try:
        import keyring  # type: ignore
        import keyring.errors  # type: ignore  # noqa: F401
    except Exception as exc:  # pragma: no cover - import failure path
        raise StoreUnavailableError("system keyring is unavailable") from exc
    return keyring


def keyring_available() -> bool:
    """Return ``True`` when the active keyring backend encrypts at rest."""

    try:
        keyring = _require_keyring()
        backend = keyring.get_keyring()
    except Exception:  # pragma: no cover - backend discovery is platform specific
        _log.debug("keyring backend discovery failed", exc_info=True)
        return False
    if type(backend).__module__.startswith(_UNUSABLE_BACKENDS):
        return False
    try:
        priority = float(type(backend).priority)
    except Exception:
        return False
    return priority > 0


class KeyringBackend(KeyValueStore):
    """Secure store on top of the OS keychain (Keychain, Secret Service, Windows Credential Locker)."""

    secure = True
    name = "keyring"

    def __init__(self, service_name: str = KEYRING_SERVICE_NAME):
        self._service = service_name
        self._keyring = _require_keyring()

    def _get(self, key: str) -> str | None:
        try:
            value = self._keyring.get_password(self._service, key)
        except Exception as exc:  # pragma: no cover - backend specific errors
            raise StoreUnavailableError(f"failed to load {key} from keyring") from exc
        return value or None

    def _set(self, key: str, value: str) -> None:
        try:
            self._keyring.set_password(self._service, key, value)
        except Exception as exc:  # pragma: no cover - backend specific errors
            raise StoreUnavailableError(f"failed to write {key} to keyring") from exc

    def _delete(self, key: str) -> None:
        try:
            self._keyring.delete_password(self._service, key)
        except self._keyring.errors.PasswordDeleteError:
            return
        except Exception as exc:  # pragma: no cover
            raise StoreUnavailableError(f"failed to delete {key} from keyring") from exc

    async def get(self, key: str) -> str | None:
        return await anyio.to_thread.run_sync(self._get, key)

    async def save(self, key: str, value: str) -> None:
        await anyio.to_thread.run_sync(self._set, key, value)

    async def delete(self, key: str) -> None:
        await anyio.to_thread.run_sync(self._delete, key)


__all__ = [
    "StoreUnavailableError",
    "KeyringBackend",
    "keyring_available",
]
