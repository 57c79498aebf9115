"""Durable, strictly ordered log of client writes awaiting server confirmation."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Sequence

from tfxclient.config.const import StorageKeys
from tfxclient.ports.storage import KeyValueStore
from tfxclient.services.api.client import ApiClient
from tfxclient.services.api.errors import ApiError, SessionExpiredError, TransportError
from tfxclient.services.api.renewal import SingleFlight
from tfxclient.services.device import get_device_id
from tfxclient.services.sync.models import (
    DrainResult,
    OperationKind,
    QueuedOperation,
    SyncState,
    utc_now_iso,
)

_log = logging.getLogger("tfx.sync")

_DRAIN_KEY = "drain"


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


class OfflineMutationQueue:
    """Ordered queue persisted as one JSON array under ``@tfx_sync_queue``.

    Every mutation is a read-modify-write of the whole list under a lock,
    and the app store replaces the value atomically, so concurrent enqueues
    never interleave partial writes. Drains are single-flight.
    """

    def __init__(self, app_store: KeyValueStore, client: ApiClient) -> None:
        self._store = app_store
        self._client = client
        self._lock = asyncio.Lock()
        self._flights = SingleFlight()

    # ---------- persistence ---------------------------------------------------
    async def _load(self) -> list[QueuedOperation]:
        """Parse the stored queue. Call with ``self._lock`` held.

        Anything that does not parse is moved to ``@tfx_sync_queue_corrupt``
        and the queue is rewritten with the valid entries, so a later
        rewrite never drops an unreadable mutation.
        """
        raw = await self._store.get(StorageKeys.SYNC_QUEUE)
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except json.JSONDecodeError:
            items = None
        if not isinstance(items, list):
            _log.error("stored sync queue is unreadable, moving it to quarantine")
            await self._quarantine([{"raw": raw}])
            await self._store.delete(StorageKeys.SYNC_QUEUE)
            return []
        operations: list[QueuedOperation] = []
        rejected: list[dict[str, Any]] = []
        for item in items:
            try:
                if not isinstance(item, Mapping):
                    raise ValueError("queued operation is not an object")
                operations.append(QueuedOperation.from_wire(item))
            except ValueError:
                _log.warning("moving malformed queued operation to quarantine: %r", item)
                rejected.append({"entry": item})
        if rejected:
            await self._quarantine(rejected)
            await self._write(operations)
        return operations

    async def _quarantine(self, entries: list[dict[str, Any]]) -> None:
        stamp = utc_now_iso()
        kept = await self._read_quarantine()
        kept.extend({**entry, "quarantinedAt": stamp} for entry in entries)
        await self._store.save(StorageKeys.SYNC_QUEUE_CORRUPT, json.dumps(kept, ensure_ascii=False))

    async def _read_quarantine(self) -> list[Any]:
        raw = await self._store.get(StorageKeys.SYNC_QUEUE_CORRUPT)
        if not raw:
            return []
        try:
            kept = json.loads(raw)
        except json.JSONDecodeError:
            kept = None
        return kept if isinstance(kept, list) else [{"raw": raw}]

    async def _write(self, operations: Sequence[QueuedOperation]) -> None:
        if not operations:
            await self._store.delete(StorageKeys.SYNC_QUEUE)
            return
        payload = json.dumps([op.to_wire() for op in operations], ensure_ascii=False)
        await self._store.save(StorageKeys.SYNC_QUEUE, payload)

    # ---------- public API ----------------------------------------------------
    async def enqueue(
        self,
        operation: OperationKind,
        entity_type: str,
        payload: Any = None,
        *,
        entity_id: str | None = None,
    ) -> QueuedOperation:
        queued = QueuedOperation(
            operation=operation,
            entity_type=entity_type,
            payload=payload,
            timestamp=utc_now_iso(),
            entity_id=entity_id,
        )
        async with self._lock:
            operations = await self._load()
            operations.append(queued)
            await self._write(operations)
        _log.info("operation queued op=%s entity=%s", operation, entity_type)
        return queued

    async def list_pending(self) -> list[QueuedOperation]:
        async with self._lock:
            return await self._load()

    async def pending_count(self) -> int:
        return len(await self.list_pending())

    async def quarantined(self) -> list[Any]:
        """Stored entries that could not be parsed, kept for manual recovery."""
        async with self._lock:
            return await self._read_quarantine()

    async def clear(self) -> None:
        async with self._lock:
            await self._store.delete(StorageKeys.SYNC_QUEUE)

    async def last_sync_at(self) -> str | None:
        return await self._store.get(StorageKeys.LAST_SYNC)

    async def sync_state(self) -> SyncState:
        return SyncState(last_sync_at=await self.last_sync_at(), pending_count=await self.pending_count())

    async def clear_all_offline_data(self) -> None:
        """Forget queue, marker and cached offline data (used on logout)."""
        async with self._lock:
            await self._store.delete_many(
                (
                    StorageKeys.SYNC_QUEUE,
                    StorageKeys.SYNC_QUEUE_CORRUPT,
                    StorageKeys.LAST_SYNC,
                    StorageKeys.OFFLINE_DATA,
                )
            )

    # ---------- sync ----------------------------------------------------------
    async def drain(self, api_base: str) -> DrainResult:
        """Send every pending operation to ``{api_base}/sync`` and drop the confirmed prefix.

        Failures keep the queue untouched and are reported as
        ``DrainResult(success=False, processed=0, ...)``. Only a total session
        loss propagates.
        """
        return await self._flights.run(_DRAIN_KEY, lambda: self._drain(api_base))

    async def _drain(self, api_base: str) -> DrainResult:
        snapshot = await self.list_pending()
        try:
            body: dict[str, Any] = {
                "deviceId": await get_device_id(self._store),
                "operations": [op.to_wire() for op in snapshot],
            }
            last_sync = await self.last_sync_at()
            if last_sync:
                body["lastSyncAt"] = last_sync
            _log.info("syncing %s operations", len(snapshot))
            response = await self._client.post(f"{api_base.rstrip('/')}/sync", body)
        except SessionExpiredError:
            raise
        except (ApiError, TransportError) as exc:
            _log.warning("sync failed, queue kept (%s pending): %s", len(snapshot), exc)
            return DrainResult(success=False, processed=0, failed=len(snapshot))

        data = self._unwrap(response)
        if data is None:
            _log.warning("sync rejected by server, queue kept (%s pending)", len(snapshot))
            return DrainResult(success=False, processed=0, failed=len(snapshot))

        processed = min(_as_int(data.get("processed")), len(snapshot))
        failed = _as_int(data.get("failed"))
        confirmed = len(snapshot) if failed == 0 else processed
        await self._drop_prefix(snapshot, confirmed)
        await self._store.save(StorageKeys.LAST_SYNC, utc_now_iso())

        changes = data.get("serverChanges")
        next_sync = data.get("nextSyncAt")
        _log.info("sync completed: %s processed, %s failed", processed, failed)
        return DrainResult(
            success=True,
            processed=processed,
            failed=failed,
            server_changes=tuple(changes) if isinstance(changes, list) else (),
            next_sync_at=str(next_sync) if next_sync else None,
        )

    async def _drop_prefix(self, snapshot: Sequence[QueuedOperation], count: int) -> None:
        if count <= 0:
            return
        async with self._lock:
            current = await self._load()
            if list(current[: len(snapshot)]) != list(snapshot):
                # someone cleared or replaced the queue while the request was in flight
                _log.warning("sync queue changed during drain, leaving it untouched")
                return
            await self._write(current[count:])

    @staticmethod
    def _unwrap(response: Any) -> Mapping[str, Any] | None:
        if not isinstance(response, Mapping):
            return None
        if "success" in response:
            if not response.get("success"):
                return None
            data = response.get("data")
            return data if isinstance(data, Mapping) else None
        return response

    async def fetch_server_status(self, api_base: str) -> Any:
        device_id = await get_device_id(self._store)
        return await self._client.get(f"{api_base.rstrip('/')}/sync/status?deviceId={device_id}")


__all__ = ["OfflineMutationQueue"]
