from .credentials import (
    CredentialSet,
    CredentialStore,
    DeviceCertificate,
    migrate_legacy_tokens,
    select_secure_backend,
)
from .keyring import KeyringBackend, StoreUnavailableError, keyring_available

__all__ = [
    "CredentialSet",
    "CredentialStore",
    "DeviceCertificate",
    "KeyringBackend",
    "StoreUnavailableError",
    "keyring_available",
    "migrate_legacy_tokens",
    "select_secure_backend",
]
