# src/tfxclient/config/const.py
from __future__ import annotations

# Hard defaults (changed by developers in code/build, not by users)
APP_SECRET_HEADER: str = "X-App-Secret"
APP_SECRET: str = "sk_trafikskola_prod_acbdca5a99ca581b2528d9da55d5be73"

DEFAULT_API_BASE: str = "https://app.trafikskola.example/api/mobile"
DEFAULT_HTTP_TIMEOUT: float = 30.0

DEFAULT_MAX_NETWORK_RETRIES: int = 2
DEFAULT_MAX_429_RETRIES: int = 3
NETWORK_RETRY_STEP_MS: int = 1000
RATE_LIMIT_BASE_MS: int = 1000
RATE_LIMIT_CAP_MS: int = 30000

DEFAULT_SYNC_INTERVAL_MINUTES: int = 30
DEFAULT_OFFLINE_RETENTION_DAYS: int = 30

SESSION_EXPIRED_MESSAGE: str = "Session expired. Please login again."
KEYRING_SERVICE_NAME: str = "tfxclient/secure-store"


class StorageKeys:
    """Durable key space shared by the secure store and the app store."""

    # Secure store keys (no "@" prefix: keychain style names only)
    ACCESS_TOKEN = "tfx_access_token"
    REFRESH_TOKEN = "tfx_refresh_token"
    SESSION_TOKEN = "tfx_session_token"
    DEVICE_CERT = "tfx_device_cert"

    # App store keys
    DEVICE_ID = "@tfx_device_id"
    SYNC_QUEUE = "@tfx_sync_queue"
    SYNC_QUEUE_CORRUPT = "@tfx_sync_queue_corrupt"
    LAST_SYNC = "@tfx_last_sync"
    OFFLINE_DATA = "@tfx_offline_data"
    SESSION_VALIDATED_AT = "@tfx_session_validated_at"
    MIGRATION_DONE = "@tfx_secure_migration_done"

    # Legacy keys written by older builds straight into the app store
    LEGACY_ACCESS_TOKEN = "@trafikskola_access_token"
    LEGACY_REFRESH_TOKEN = "@trafikskola_refresh_token"


LEGACY_TOKEN_MIGRATIONS: tuple[tuple[str, str], ...] = (
    (StorageKeys.LEGACY_ACCESS_TOKEN, StorageKeys.ACCESS_TOKEN),
    (StorageKeys.LEGACY_REFRESH_TOKEN, StorageKeys.REFRESH_TOKEN),
)
