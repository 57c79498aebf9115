from __future__ import annotations

import logging
import uuid

from tfxclient.config.const import StorageKeys
from tfxclient.ports.storage import KeyValueStore

_log = logging.getLogger("tfx.device")


def new_device_id() -> str:
    return f"tfx-{uuid.uuid4().hex}"


async def get_device_id(app_store: KeyValueStore) -> str:
    """Return the stable identifier of this install, creating it on first use."""
    device_id = await app_store.get(StorageKeys.DEVICE_ID)
    if device_id:
        return device_id
    device_id = new_device_id()
    await app_store.save(StorageKeys.DEVICE_ID, device_id)
    _log.info("device id created device_id=%s", device_id)
    return device_id
