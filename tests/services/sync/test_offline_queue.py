from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from tfxclient.config.const import StorageKeys
from tfxclient.services.api.errors import SessionExpiredError
from tfxclient.services.sync.queue import OfflineMutationQueue

from conftest import API_BASE, body_of

SYNC_PATH = "/api/mobile/sync"


def _synced(processed, failed, **extra):
    return httpx.Response(
        200,
        json={"success": True, "data": {"processed": processed, "failed": failed, **extra}},
    )


@pytest.fixture
def queue(app_store, api_client):
    return OfflineMutationQueue(app_store, api_client)


@pytest.mark.anyio
async def test_enqueue_keeps_order_and_persists(queue, app_store, api_client):
    await queue.enqueue("create", "booking", {"slot": 1})
    await queue.enqueue("update", "booking", {"slot": 2}, entity_id="b-1")
    await queue.enqueue("delete", "note", entity_id="n-9")

    reopened = OfflineMutationQueue(app_store, api_client)
    pending = await reopened.list_pending()

    assert [(op.operation, op.entity_type, op.entity_id) for op in pending] == [
        ("create", "booking", None),
        ("update", "booking", "b-1"),
        ("delete", "note", "n-9"),
    ]
    assert pending[0].timestamp.endswith("Z")
    assert "entityId" not in pending[0].to_wire()


@pytest.mark.anyio
async def test_enqueue_rejects_unknown_operation(queue):
    with pytest.raises(ValueError):
        await queue.enqueue("upsert", "booking", {})


@pytest.mark.anyio
async def test_concurrent_enqueues_are_all_kept(queue):
    await asyncio.gather(*(queue.enqueue("create", "lesson", {"n": n}) for n in range(20)))
    pending = await queue.list_pending()
    assert sorted(op.payload["n"] for op in pending) == list(range(20))


@pytest.mark.anyio
async def test_partial_success_drops_only_processed_prefix(queue, app_store, fake_api):
    for n in range(3):
        await queue.enqueue("create", "booking", {"n": n})
    fake_api.on("POST", SYNC_PATH, _synced(2, 1))

    result = await queue.drain(API_BASE)

    assert (result.success, result.processed, result.failed) == (True, 2, 1)
    remaining = await queue.list_pending()
    assert [op.payload["n"] for op in remaining] == [2]
    assert await queue.last_sync_at() is not None

    sent = body_of(fake_api.calls("POST", SYNC_PATH)[0])
    assert sent["deviceId"] == await app_store.get(StorageKeys.DEVICE_ID)
    assert [op["payload"]["n"] for op in sent["operations"]] == [0, 1, 2]
    assert "lastSyncAt" not in sent


@pytest.mark.anyio
async def test_full_success_empties_queue_and_sends_marker_next_time(queue, fake_api):
    await queue.enqueue("create", "booking", {"n": 1})
    fake_api.on(
        "POST",
        SYNC_PATH,
        _synced(1, 0, serverChanges=[{"entityType": "booking", "id": "b1"}], nextSyncAt="2026-01-01T10:00:00Z"),
    )

    result = await queue.drain(API_BASE)

    assert await queue.pending_count() == 0
    assert result.server_changes == ({"entityType": "booking", "id": "b1"},)
    assert result.next_sync_at == "2026-01-01T10:00:00Z"
    marker = await queue.last_sync_at()

    await queue.drain(API_BASE)
    second = body_of(fake_api.calls("POST", SYNC_PATH)[1])
    assert second["lastSyncAt"] == marker
    assert second["operations"] == []


@pytest.mark.anyio
async def test_server_error_keeps_queue(queue, fake_api):
    await queue.enqueue("create", "booking", {"n": 1})
    await queue.enqueue("create", "booking", {"n": 2})
    fake_api.on("POST", SYNC_PATH, httpx.Response(500, json={"error": "boom"}))

    result = await queue.drain(API_BASE)

    assert (result.success, result.processed, result.failed) == (False, 0, 2)
    assert await queue.pending_count() == 2
    assert await queue.last_sync_at() is None


@pytest.mark.anyio
async def test_network_failure_keeps_queue(queue, fake_api, sleeps):
    await queue.enqueue("create", "booking", {"n": 1})
    fake_api.on("POST", SYNC_PATH, httpx.ConnectError("offline"))

    result = await queue.drain(API_BASE)

    assert result.success is False
    assert await queue.pending_count() == 1
    assert sleeps.calls == [1.0, 2.0]


@pytest.mark.anyio
async def test_rejected_envelope_keeps_queue(queue, fake_api):
    await queue.enqueue("create", "booking", {"n": 1})
    fake_api.on("POST", SYNC_PATH, httpx.Response(200, json={"success": False, "error": "validation"}))

    result = await queue.drain(API_BASE)

    assert result.success is False
    assert await queue.pending_count() == 1


@pytest.mark.anyio
async def test_operation_queued_during_drain_survives(queue, fake_api):
    await queue.enqueue("create", "booking", {"n": 1})

    async def sync(request):
        await queue.enqueue("create", "booking", {"n": 2})
        return _synced(1, 0)

    fake_api.on("POST", SYNC_PATH, sync)

    await queue.drain(API_BASE)

    assert [op.payload["n"] for op in await queue.list_pending()] == [2]


@pytest.mark.anyio
async def test_concurrent_drains_send_one_request(queue, fake_api):
    await queue.enqueue("create", "booking", {"n": 1})
    fake_api.latency = 0.01
    fake_api.on("POST", SYNC_PATH, _synced(1, 0))

    first, second = await asyncio.gather(queue.drain(API_BASE), queue.drain(API_BASE))

    assert first == second
    assert len(fake_api.calls("POST", SYNC_PATH)) == 1


@pytest.mark.anyio
async def test_session_loss_propagates_and_keeps_queue(queue, credentials, fake_api):
    await credentials.save_tokens("stale", "ref")
    await queue.enqueue("create", "booking", {"n": 1})
    fake_api.on("POST", SYNC_PATH, httpx.Response(401))
    fake_api.on("POST", "/api/mobile/auth/refresh", httpx.Response(401))

    with pytest.raises(SessionExpiredError):
        await queue.drain(API_BASE)

    assert await queue.pending_count() == 1


@pytest.mark.anyio
async def test_clear_all_offline_data(queue, app_store, fake_api):
    await queue.enqueue("create", "booking", {"n": 1})
    await app_store.save(StorageKeys.LAST_SYNC, "2026-01-01T00:00:00Z")
    await app_store.save(StorageKeys.OFFLINE_DATA, json.dumps({"booking": {"data": [], "cachedAt": "x"}}))

    await queue.clear_all_offline_data()

    state = await queue.sync_state()
    assert (state.last_sync_at, state.pending_count) == (None, 0)
    assert await app_store.get(StorageKeys.OFFLINE_DATA) is None


@pytest.mark.anyio
async def test_malformed_entry_survives_enqueue(queue, app_store):
    stored = [
        {"operation": "create", "entityType": "booking", "payload": {"n": 1}, "timestamp": "2026-01-01T00:00:00Z"},
        {"operation": "update", "payload": {"n": 2}, "timestamp": "2026-01-01T00:00:01Z"},
    ]
    await app_store.save(StorageKeys.SYNC_QUEUE, json.dumps(stored))

    await queue.enqueue("create", "booking", {"n": 3})

    assert [op.payload["n"] for op in await queue.list_pending()] == [1, 3]
    quarantined = await queue.quarantined()
    assert [item["entry"] for item in quarantined] == [stored[1]]
    assert quarantined[0]["quarantinedAt"].endswith("Z")


@pytest.mark.anyio
async def test_unreadable_queue_is_quarantined_not_overwritten(queue, app_store):
    await app_store.save(StorageKeys.SYNC_QUEUE, '[{"operation": "create", "entityType": "boo')

    await queue.enqueue("delete", "note", entity_id="n-1")
    await queue.enqueue("delete", "note", entity_id="n-2")

    assert [op.entity_id for op in await queue.list_pending()] == ["n-1", "n-2"]
    quarantined = await queue.quarantined()
    assert len(quarantined) == 1
    assert quarantined[0]["raw"] == '[{"operation": "create", "entityType": "boo'


@pytest.mark.anyio
async def test_quarantine_accumulates(queue, app_store):
    await app_store.save(StorageKeys.SYNC_QUEUE_CORRUPT, "not a list")
    await app_store.save(StorageKeys.SYNC_QUEUE, json.dumps([42]))

    assert await queue.list_pending() == []

    quarantined = await queue.quarantined()
    assert quarantined[0] == {"raw": "not a list"}
    assert quarantined[1]["entry"] == 42

    await queue.clear_all_offline_data()
    assert await queue.quarantined() == []


@pytest.mark.anyio
async def test_fetch_server_status(queue, app_store, fake_api):
    fake_api.on("GET", "/api/mobile/sync/status", httpx.Response(200, json={"pendingOnServer": 0}))

    status = await queue.fetch_server_status(API_BASE)

    assert status == {"pendingOnServer": 0}
    sent = fake_api.calls("GET", "/api/mobile/sync/status")[0]
    assert sent.url.params["deviceId"] == await app_store.get(StorageKeys.DEVICE_ID)
