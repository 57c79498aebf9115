"""Wiring of the network access layer for one process."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from tfxclient.adapters.fs.path_provider import PathProvider
from tfxclient.adapters.storage.kv_file import PlainFileStore
from tfxclient.config.settings import ClientSettings, load_settings
from tfxclient.services.api.client import ApiClient, Navigator
from tfxclient.services.auth.credentials import CredentialStore, migrate_legacy_tokens, select_secure_backend
from tfxclient.services.logging import setup_logging
from tfxclient.services.sync.auto_sync import AutoSync
from tfxclient.services.sync.offline_cache import OfflineDataCache
from tfxclient.services.sync.queue import OfflineMutationQueue
from tfxclient.services.sync.scheduler import SyncScheduler, get_sync_scheduler

_log = logging.getLogger("tfx.bootstrap")


@dataclass
class ClientContext:
    settings: ClientSettings
    paths: PathProvider
    app_store: PlainFileStore
    credentials: CredentialStore
    client: ApiClient
    queue: OfflineMutationQueue
    cache: OfflineDataCache
    scheduler: SyncScheduler
    auto_sync: AutoSync

    async def logout(self) -> None:
        """Full logout: stop syncing, forget every credential and all offline data."""
        self.auto_sync.stop()
        await self.credentials.logout()
        await self.queue.clear_all_offline_data()

    async def aclose(self) -> None:
        self.auto_sync.stop()
        await self.client.aclose()


async def build_context(
    settings: ClientSettings | None = None,
    *,
    navigator: Navigator | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    scheduler: SyncScheduler | None = None,
    configure_logging: bool = True,
) -> ClientContext:
    settings = settings or load_settings()
    paths = PathProvider.from_settings(settings).ensure()
    if configure_logging:
        setup_logging(paths.logs_dir(), level=settings.log_level)

    app_store = PlainFileStore(paths.app_store_file())
    secure_backend = select_secure_backend(settings, paths)
    _log.info("secure store backend=%s", secure_backend.name)
    credentials = CredentialStore(secure_backend)
    await migrate_legacy_tokens(app_store, credentials)

    client = ApiClient(
        credentials,
        timeout=settings.http_timeout,
        transport=transport,
        app_secret=settings.app_secret,
        api_base=settings.api_base,
        app_store=app_store,
        on_session_expired=navigator,
    )
    queue = OfflineMutationQueue(app_store, client)
    cache = OfflineDataCache(app_store)
    scheduler = scheduler or get_sync_scheduler()
    auto_sync = AutoSync(
        queue,
        cache,
        scheduler,
        api_base=settings.api_base,
        interval_minutes=settings.sync.interval_minutes,
        retention_days=settings.sync.offline_retention_days,
    )
    return ClientContext(
        settings=settings,
        paths=paths,
        app_store=app_store,
        credentials=credentials,
        client=client,
        queue=queue,
        cache=cache,
        scheduler=scheduler,
        auto_sync=auto_sync,
    )


__all__ = ["ClientContext", "build_context"]
