# src/tfxclient/adapters/fs/path_provider.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path

from tfxclient.config.settings import ClientSettings


@dataclass(slots=True)
class PathProvider:
    """Single source of truth for on-disk locations. Always works with pathlib.Path."""

    base: Path

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "PathProvider":
        return cls(base=Path(settings.base_dir).expanduser().resolve())

    def base_dir(self) -> Path:
        return self.base

    def state_dir(self) -> Path:
        return (self.base / "state").resolve()

    def app_store_file(self) -> Path:
        """Non-secret durable state: queue, last sync marker, device id."""
        return self.state_dir() / "app-store.json"

    def plain_secure_file(self) -> Path:
        """Unencrypted token store used only where no keyring backend exists."""
        return self.state_dir() / "credentials.json"

    def logs_dir(self) -> Path:
        return (self.base / "logs").resolve()

    def ensure(self) -> "PathProvider":
        for path in (self.base, self.state_dir(), self.logs_dir()):
            path.mkdir(parents=True, exist_ok=True)
        return self
