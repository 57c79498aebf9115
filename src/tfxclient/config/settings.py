"""Client settings persisted in ``client.yaml`` with environment overrides."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Literal, Mapping
import os

import yaml

from tfxclient.config.const import (
    APP_SECRET,
    DEFAULT_API_BASE,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_OFFLINE_RETENTION_DAYS,
    DEFAULT_SYNC_INTERVAL_MINUTES,
)

SecureStoreMode = Literal["auto", "keyring", "plain"]

CONFIG_FILENAME = "client.yaml"
_SECURE_MODES = ("auto", "keyring", "plain")


def default_base_dir() -> Path:
    return Path(os.environ.get("TFX_BASE_DIR") or Path.home() / ".tfxclient").expanduser()


@dataclass(slots=True)
class SyncSettings:
    interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES
    offline_retention_days: int = DEFAULT_OFFLINE_RETENTION_DAYS


@dataclass(slots=True)
class ClientSettings:
    base_dir: Path = field(default_factory=default_base_dir)
    api_base: str = DEFAULT_API_BASE
    app_secret: str = APP_SECRET
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    secure_store: SecureStoreMode = "auto"
    log_level: str = "INFO"
    sync: SyncSettings = field(default_factory=SyncSettings)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("base_dir", None)
        return data


def _as_int(value: Any, fallback: int, *, minimum: int) -> int:
    try:
        return max(minimum, int(value))
    except (TypeError, ValueError):
        return fallback


def _as_float(value: Any, fallback: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    return parsed if parsed > 0 else fallback


def _secure_mode(value: Any) -> SecureStoreMode:
    text = str(value or "auto").strip().lower()
    return text if text in _SECURE_MODES else "auto"  # type: ignore[return-value]


def settings_from_mapping(data: Mapping[str, Any], *, base_dir: Path) -> ClientSettings:
    sync_raw = data.get("sync") if isinstance(data.get("sync"), Mapping) else {}
    sync = SyncSettings(
        interval_minutes=_as_int(sync_raw.get("interval_minutes"), DEFAULT_SYNC_INTERVAL_MINUTES, minimum=1),
        offline_retention_days=_as_int(
            sync_raw.get("offline_retention_days"), DEFAULT_OFFLINE_RETENTION_DAYS, minimum=0
        ),
    )
    return ClientSettings(
        base_dir=base_dir,
        api_base=str(data.get("api_base") or DEFAULT_API_BASE).rstrip("/"),
        app_secret=str(data.get("app_secret") or APP_SECRET),
        http_timeout=_as_float(data.get("http_timeout"), DEFAULT_HTTP_TIMEOUT),
        secure_store=_secure_mode(data.get("secure_store")),
        log_level=str(data.get("log_level") or "INFO").upper(),
        sync=sync,
    )


def _apply_env(settings: ClientSettings, env: Mapping[str, str]) -> ClientSettings:
    if env.get("TFX_API_BASE"):
        settings.api_base = env["TFX_API_BASE"].rstrip("/")
    if env.get("TFX_APP_SECRET"):
        settings.app_secret = env["TFX_APP_SECRET"]
    if env.get("TFX_SECURE_STORE"):
        settings.secure_store = _secure_mode(env["TFX_SECURE_STORE"])
    if env.get("TFX_LOG_LEVEL"):
        settings.log_level = env["TFX_LOG_LEVEL"].upper()
    if env.get("TFX_SYNC_INTERVAL_MINUTES"):
        settings.sync.interval_minutes = _as_int(
            env["TFX_SYNC_INTERVAL_MINUTES"], settings.sync.interval_minutes, minimum=1
        )
    if env.get("TFX_OFFLINE_RETENTION_DAYS"):
        settings.sync.offline_retention_days = _as_int(
            env["TFX_OFFLINE_RETENTION_DAYS"], settings.sync.offline_retention_days, minimum=0
        )
    return settings


def config_path(base_dir: Path) -> Path:
    return base_dir / CONFIG_FILENAME


def load_settings(base_dir: Path | None = None, *, env: Mapping[str, str] | None = None) -> ClientSettings:
    env = os.environ if env is None else env
    if base_dir is None:
        base_dir = Path(env.get("TFX_BASE_DIR") or default_base_dir()).expanduser()
    path = config_path(base_dir)
    data: Any = {}
    if path.exists():
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, Mapping):
        data = {}
    settings = settings_from_mapping(data, base_dir=base_dir)
    return _apply_env(settings, env)


def save_settings(settings: ClientSettings) -> Path:
    path = config_path(settings.base_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(settings.to_dict(), sort_keys=False, allow_unicode=True), encoding="utf-8")
    return path


__all__ = [
    "ClientSettings",
    "SyncSettings",
    "SecureStoreMode",
    "default_base_dir",
    "load_settings",
    "save_settings",
    "settings_from_mapping",
]
