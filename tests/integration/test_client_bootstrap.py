from __future__ import annotations

import json

import httpx
import pytest
from typer.testing import CliRunner

from tfxclient.apps.cli.main import app
from tfxclient.config.const import StorageKeys
from tfxclient.config.settings import ClientSettings
from tfxclient.services.bootstrap import build_context
from tfxclient.services.logging import setup_logging
from tfxclient.services.sync.scheduler import SyncScheduler

from conftest import API_BASE, FakeApi

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("TFX_BASE_DIR", str(tmp_path))
    monkeypatch.setenv("TFX_SECURE_STORE", "plain")
    monkeypatch.setenv("TFX_API_BASE", API_BASE)
    monkeypatch.setenv("TFX_LOG_LEVEL", "ERROR")
    yield tmp_path
    # drop handlers bound to the runner's captured streams
    setup_logging(None, console=False)


@pytest.mark.anyio
async def test_context_wires_queue_through_client(tmp_path):
    fake = FakeApi()
    fake.on("POST", "/api/mobile/sync", httpx.Response(200, json={"success": True, "data": {"processed": 1, "failed": 0}}))
    settings = ClientSettings(base_dir=tmp_path, api_base=API_BASE, app_secret="s", secure_store="plain")
    navigations = []

    ctx = await build_context(
        settings,
        navigator=lambda: navigations.append("login"),
        transport=fake.transport(),
        scheduler=SyncScheduler(),
        configure_logging=False,
    )
    try:
        await ctx.credentials.save_tokens("acc", "ref")
        await ctx.queue.enqueue("create", "booking", {"n": 1})

        result = await ctx.auto_sync.sync_now()

        assert result.success
        assert fake.requests[0].headers["Authorization"] == "Bearer acc"
        assert fake.requests[0].headers["X-App-Secret"] == "s"
        assert ctx.paths.app_store_file().exists()

        await ctx.logout()
        assert (await ctx.credentials.snapshot()).access_token is None
        assert await ctx.app_store.get(StorageKeys.LAST_SYNC) is None
        assert await ctx.app_store.get(StorageKeys.DEVICE_ID) is not None
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_context_migrates_legacy_tokens_into_keyring(tmp_path, memory_keyring):
    from tfxclient.adapters.storage.kv_file import PlainFileStore

    legacy = PlainFileStore(tmp_path.resolve() / "state" / "app-store.json")
    await legacy.save(StorageKeys.LEGACY_ACCESS_TOKEN, "old-acc")
    settings = ClientSettings(base_dir=tmp_path, secure_store="auto")

    ctx = await build_context(settings, scheduler=SyncScheduler(), configure_logging=False)
    try:
        assert ctx.credentials.backend.name == "keyring"
        assert await ctx.credentials.access_token() == "old-acc"
        assert await ctx.app_store.get(StorageKeys.MIGRATION_DONE) == "true"
    finally:
        await ctx.aclose()


def test_cli_queue_add_and_list(cli_env):
    added = runner.invoke(app, ["queue", "add", "create", "booking", "--payload", '{"slot": 3}'])
    assert added.exit_code == 0, added.output
    assert "queued create booking" in added.stdout

    listed = runner.invoke(app, ["queue", "list", "--json"])
    assert listed.exit_code == 0, listed.output
    operations = json.loads(listed.stdout)
    assert operations[0]["entityType"] == "booking"
    assert operations[0]["payload"] == {"slot": 3}


def test_cli_rejects_unknown_operation(cli_env):
    result = runner.invoke(app, ["queue", "add", "merge", "booking"])
    assert result.exit_code != 0


def test_cli_auth_status_and_logout(cli_env):
    status = runner.invoke(app, ["auth", "status"])
    assert status.exit_code == 0, status.output
    assert "backend: plain" in status.stdout

    logout = runner.invoke(app, ["auth", "logout"])
    assert logout.exit_code == 0
    assert "logged out" in logout.stdout


def test_cli_sync_status_and_clear(cli_env):
    runner.invoke(app, ["queue", "add", "delete", "note", "--id", "n-1"])

    status = runner.invoke(app, ["sync", "status"])
    assert "pending: 1" in status.stdout

    cleared = runner.invoke(app, ["sync", "clear", "--yes"])
    assert cleared.exit_code == 0
    assert "pending: 0" in runner.invoke(app, ["sync", "status"]).stdout
