"""Offline-first write queue and its periodic flush."""

from .auto_sync import AutoSync
from .models import CachedEntry, DrainResult, QueuedOperation, SyncState
from .offline_cache import OfflineDataCache
from .queue import OfflineMutationQueue
from .scheduler import SyncHandle, SyncScheduler, get_sync_scheduler

__all__ = [
    "AutoSync",
    "CachedEntry",
    "DrainResult",
    "OfflineDataCache",
    "OfflineMutationQueue",
    "QueuedOperation",
    "SyncHandle",
    "SyncScheduler",
    "SyncState",
    "get_sync_scheduler",
]
