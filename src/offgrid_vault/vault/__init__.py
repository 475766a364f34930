# Vault Module - Encrypted Storage and Sharing Engine
#
# Master password -> PBKDF2 key -> AES-256-GCM records, persisted either
# in the embedded SQLite store or in a user-selected vault file.

from .crypto import VaultCrypto, VaultKey
from .credentials import Credential, CredentialKind
from .errors import (
    Cancelled,
    CorruptData,
    CorruptFile,
    DecryptionFailed,
    InvalidShare,
    PermissionDenied,
    RecordNotFound,
    ShareError,
    ShareExpired,
    StorageUnavailable,
    UnsupportedVersion,
    VaultError,
    VaultStateError,
    ViewLimitReached,
    WrongPassword,
)
from .lifecycle import ImportMode, VaultLifecycle, VaultState, check_support
from .models import StorageKind, VaultSettings

__all__ = [
    "VaultLifecycle",
    "VaultState",
    "ImportMode",
    "check_support",
    "VaultCrypto",
    "VaultKey",
    "Credential",
    "CredentialKind",
    "StorageKind",
    "VaultSettings",
    # Errors
    "VaultError",
    "WrongPassword",
    "CorruptData",
    "DecryptionFailed",
    "CorruptFile",
    "UnsupportedVersion",
    "PermissionDenied",
    "Cancelled",
    "StorageUnavailable",
    "VaultStateError",
    "RecordNotFound",
    "ShareError",
    "InvalidShare",
    "ShareExpired",
    "ViewLimitReached",
]
