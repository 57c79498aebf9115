"""JSON file backed key/value store with whole-file atomic replace."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict

import anyio

from tfxclient.ports.storage import KeyValueStore

_log = logging.getLogger("tfx.storage")


class KeyValueFile:
    """Synchronous core of :class:`PlainFileStore`.

    The file always holds one JSON object. Writes go to a temporary sibling
    and are moved into place with :func:`os.replace`, so an interrupted write
    leaves the previous content intact.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError):
            _log.warning("kv file unreadable, starting empty path=%s", self._path, exc_info=True)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _save(self, payload: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=str(self._path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        try:
            os.chmod(self._path, 0o600)
        except PermissionError:
            pass

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                data.pop(key)
                self._save(data)


class PlainFileStore(KeyValueStore):
    """Unencrypted store. Used for app state and as the token fallback on hosts without a keyring."""

    secure = False
    name = "plain"

    def __init__(self, path: Path):
        self._file = KeyValueFile(path)

    @property
    def path(self) -> Path:
        return self._file.path

    async def get(self, key: str) -> str | None:
        return await anyio.to_thread.run_sync(self._file.get, key)

    async def save(self, key: str, value: str) -> None:
        await anyio.to_thread.run_sync(self._file.put, key, value)

    async def delete(self, key: str) -> None:
        await anyio.to_thread.run_sync(self._file.delete, key)


__all__ = ["KeyValueFile", "PlainFileStore"]
