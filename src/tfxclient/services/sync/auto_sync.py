"""Ties the sync scheduler to the offline queue: periodic drains plus retention pruning."""

from __future__ import annotations

import logging

from tfxclient.services.api.errors import SessionExpiredError
from tfxclient.services.sync.models import DrainResult
from tfxclient.services.sync.offline_cache import OfflineDataCache
from tfxclient.services.sync.queue import OfflineMutationQueue
from tfxclient.services.sync.scheduler import SyncHandle, SyncScheduler

_log = logging.getLogger("tfx.sync")


class AutoSync:
    def __init__(
        self,
        queue: OfflineMutationQueue,
        cache: OfflineDataCache,
        scheduler: SyncScheduler,
        *,
        api_base: str,
        interval_minutes: float,
        retention_days: int,
    ) -> None:
        self._queue = queue
        self._cache = cache
        self._scheduler = scheduler
        self._api_base = api_base
        self._interval = interval_minutes
        self._retention_days = retention_days
        self.last_result: DrainResult | None = None

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def sync_now(self) -> DrainResult:
        try:
            result = await self._queue.drain(self._api_base)
        except SessionExpiredError:
            # nothing can sync until the user logs in again
            _log.warning("session expired, stopping auto-sync")
            self.stop()
            raise
        self.last_result = result
        return result

    async def start(self) -> SyncHandle:
        handle = self._scheduler.start(self._interval, self.sync_now)
        try:
            await self._cache.prune(self._retention_days)
        except Exception:
            _log.warning("offline data prune failed", exc_info=True)
        return handle

    def stop(self) -> None:
        self._scheduler.stop()


__all__ = ["AutoSync"]
