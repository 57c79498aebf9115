from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

_log = logging.getLogger("tfx.scheduler")

TickCallback = Callable[[], "Awaitable[Any] | Any"]


@dataclass
class SyncHandle:
    """Owned handle of one running timer; ``cancel()`` or the scheduler's ``stop()`` disposes it."""

    interval_seconds: float
    ticks: int = 0
    failures: int = 0
    _task: asyncio.Task | None = field(default=None, repr=False)
    _owner: "SyncScheduler | None" = field(default=None, repr=False)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        if self._owner is not None:
            self._owner._dispose(self)


class SyncScheduler:
    """
    Single-timer periodic trigger for the offline queue flush:
      * ``start()`` always stops the previous timer first;
      * ticks run one after another, never overlapping;
      * a failing tick is logged and the next one still fires on schedule.
    """

    def __init__(self) -> None:
        self._handle: SyncHandle | None = None

    @property
    def handle(self) -> SyncHandle | None:
        return self._handle

    @property
    def running(self) -> bool:
        return self._handle is not None and self._handle.running

    def start(self, interval_minutes: float, on_tick: TickCallback) -> SyncHandle:
        interval = float(interval_minutes) * 60.0
        if interval <= 0:
            raise ValueError("interval_minutes must be positive")
        self.stop()
        handle = SyncHandle(interval_seconds=interval, _owner=self)
        handle._task = asyncio.get_running_loop().create_task(self._run(handle, on_tick), name="tfx-sync-scheduler")
        self._handle = handle
        _log.info("auto-sync started every %s minutes", interval_minutes)
        return handle

    def stop(self) -> None:
        """Cancel the active timer. Idempotent and safe when nothing runs."""
        if self._handle is not None:
            self._dispose(self._handle)

    def _dispose(self, handle: SyncHandle) -> None:
        if handle._task is not None and not handle._task.done():
            handle._task.cancel()
        if self._handle is handle:
            self._handle = None
            _log.info("auto-sync stopped")

    async def _run(self, handle: SyncHandle, on_tick: TickCallback) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time() + handle.interval_seconds
        try:
            while True:
                await asyncio.sleep(max(0.0, next_at - loop.time()))
                await self._fire(handle, on_tick)
                next_at += handle.interval_seconds
                now = loop.time()
                if next_at <= now:
                    # skip slots missed while a slow tick was running
                    missed = int((now - next_at) // handle.interval_seconds) + 1
                    next_at += missed * handle.interval_seconds
        finally:
            _log.debug("sync timer loop exited ticks=%s", handle.ticks)

    async def _fire(self, handle: SyncHandle, on_tick: TickCallback) -> None:
        handle.ticks += 1
        try:
            outcome = on_tick()
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception:
            handle.failures += 1
            _log.warning("auto-sync tick failed", exc_info=True)


_SCHEDULER: SyncScheduler | None = None


def get_sync_scheduler() -> SyncScheduler:
    global _SCHEDULER
    if _SCHEDULER is None:
        _SCHEDULER = SyncScheduler()
    return _SCHEDULER


__all__ = ["SyncHandle", "SyncScheduler", "get_sync_scheduler"]
