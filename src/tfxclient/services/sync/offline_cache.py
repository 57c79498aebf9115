from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from tfxclient.config.const import StorageKeys
from tfxclient.ports.storage import KeyValueStore
from tfxclient.services.sync.models import CachedEntry, utc_now_iso

_log = logging.getLogger("tfx.sync")


def _parse_ts(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class OfflineDataCache:
    """Last known server data per entity type, kept for offline reads."""

    def __init__(self, app_store: KeyValueStore) -> None:
        self._store = app_store
        self._lock = asyncio.Lock()

    async def _load(self) -> Dict[str, Dict[str, Any]]:
        raw = await self._store.get(StorageKeys.OFFLINE_DATA)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, dict) and "cachedAt" in v}

    async def _write(self, data: Dict[str, Dict[str, Any]]) -> None:
        await self._store.save(StorageKeys.OFFLINE_DATA, json.dumps(data, ensure_ascii=False))

    async def put(self, entity_type: str, data: Any) -> CachedEntry:
        entry = CachedEntry(data=data, cached_at=utc_now_iso())
        async with self._lock:
            all_data = await self._load()
            all_data[entity_type] = {"data": data, "cachedAt": entry.cached_at}
            await self._write(all_data)
        return entry

    async def get(self, entity_type: str) -> CachedEntry | None:
        entry = (await self._load()).get(entity_type)
        if entry is None:
            return None
        return CachedEntry(data=entry.get("data"), cached_at=str(entry["cachedAt"]))

    async def prune(self, retention_days: int, *, now: datetime | None = None) -> int:
        """Drop entries cached before ``now - retention_days``; returns how many were removed."""
        cutoff = (now or datetime.now(tz=timezone.utc)) - timedelta(days=retention_days)
        async with self._lock:
            all_data = await self._load()
            retained = {}
            for key, entry in all_data.items():
                cached_at = _parse_ts(str(entry.get("cachedAt")))
                if cached_at is not None and cached_at >= cutoff:
                    retained[key] = entry
            pruned = len(all_data) - len(retained)
            if pruned:
                await self._write(retained)
                _log.info("pruned %s stale offline entries", pruned)
        return pruned

    async def clear(self) -> None:
        async with self._lock:
            await self._store.delete(StorageKeys.OFFLINE_DATA)


__all__ = ["OfflineDataCache"]
