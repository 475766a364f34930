# Vault - Data Model
#
# Records as they are persisted. Server definitions and folder names are
# never stored in the clear: they live inside EncryptedBlobs produced by
# vault.crypto. Everything here serializes to the camelCase JSON shapes
# used by the vault file, the embedded store and encrypted backups.

import base64
import binascii
import time
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import CorruptData


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds (the vault's timestamp unit)."""
    return int(time.time() * 1000)


def encode_for_storage(data: bytes) -> str:
    """Encode binary data for JSON/SQLite storage (base64)."""
    return base64.b64encode(data).decode("ascii")


def decode_from_storage(data: str) -> bytes:
    """Decode base64 data read from storage."""
    try:
        return base64.b64decode(data.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, AttributeError) as exc:
        raise CorruptData(f"Invalid base64 field: {exc}") from exc


# ── Enums ────────────────────────────────────────────────────────────


class StorageKind(str, Enum):
    """Where the vault lives."""

    EMBEDDED = "embedded"  # SQLite store managed by the application
    FILE = "file"          # Single user-selected vault file


class HealthStatus(str, Enum):
    """Last observed reachability of a server."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


# ── Encryption envelope ──────────────────────────────────────────────


@dataclass(frozen=True)
class EncryptedBlob:
    """Ciphertext plus the iv it was produced with. Never split."""

    ciphertext: bytes
    iv: bytes

    def to_dict(self) -> Dict[str, str]:
        return {
            "ciphertext": encode_for_storage(self.ciphertext),
            "iv": encode_for_storage(self.iv),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptedBlob":
        if not isinstance(data, dict) or "ciphertext" not in data or "iv" not in data:
            raise CorruptData("Encrypted blob must carry ciphertext and iv")
        return cls(
            ciphertext=decode_from_storage(data["ciphertext"]),
            iv=decode_from_storage(data["iv"]),
        )


# ── Settings ─────────────────────────────────────────────────────────


_SETTINGS_KEYS = {
    "auto_lock_timeout": "autoLockTimeout",
    "auto_save_delay": "autoSaveDelay",
    "clipboard_clear_timeout": "clipboardClearTimeout",
    "auto_save_enabled": "autoSaveEnabled",
    "show_save_indicator": "showSaveIndicator",
    "lock_on_tab_hidden": "lockOnTabHidden",
    "lock_on_tool_switch": "lockOnToolSwitch",
    "health_check_on_unlock": "healthCheckOnUnlock",
    "health_check_notifications": "healthCheckNotifications",
}


@dataclass
class VaultSettings:
    """Per-vault settings. Defaults are resolved here, once, at load time."""

    auto_lock_timeout: int = 15         # minutes, 0 disables auto-lock
    auto_save_delay: int = 500          # milliseconds
    clipboard_clear_timeout: int = 30   # seconds, 0 disables clearing
    auto_save_enabled: bool = True
    show_save_indicator: bool = True
    lock_on_tab_hidden: bool = False
    lock_on_tool_switch: bool = False
    health_check_on_unlock: bool = True
    health_check_notifications: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {camel: getattr(self, name) for name, camel in _SETTINGS_KEYS.items()}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "VaultSettings":
        """Accepts camelCase or snake_case keys; unknown keys are ignored."""
        settings = cls()
        data = data or {}
        for name, camel in _SETTINGS_KEYS.items():
            if camel in data:
                setattr(settings, name, data[camel])
            elif name in data:
                setattr(settings, name, data[name])
        return settings

    def updated(self, **changes) -> "VaultSettings":
        """Copy with changes applied. Unknown names raise TypeError."""
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"Unknown settings: {', '.join(sorted(unknown))}")
        values = asdict(self)
        values.update(changes)
        return VaultSettings(**values)


# ── Records ──────────────────────────────────────────────────────────


@dataclass
class VaultMetadata:
    """One per vault: key-derivation salt, password check and settings."""

    salt: bytes
    verification_token: EncryptedBlob
    storage_kind: StorageKind = StorageKind.EMBEDDED
    settings: VaultSettings = field(default_factory=VaultSettings)
    created_at: int = field(default_factory=now_ms)
    last_accessed_at: int = field(default_factory=now_ms)
    schema_version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "salt": encode_for_storage(self.salt),
            "verificationToken": self.verification_token.to_dict(),
            "storageKind": self.storage_kind.value,
            "settings": self.settings.to_dict(),
            "createdAt": self.created_at,
            "lastAccessedAt": self.last_accessed_at,
            "schemaVersion": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "VaultMetadata":
        if not isinstance(data, dict):
            raise CorruptData("Vault metadata must be an object")
        try:
            return cls(
                salt=decode_from_storage(data["salt"]),
                verification_token=EncryptedBlob.from_dict(data["verificationToken"]),
                storage_kind=StorageKind(data.get("storageKind", StorageKind.EMBEDDED.value)),
                settings=VaultSettings.from_dict(data.get("settings")),
                created_at=int(data.get("createdAt") or now_ms()),
                last_accessed_at=int(data.get("lastAccessedAt") or now_ms()),
                schema_version=int(data.get("schemaVersion", 1)),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise CorruptData(f"Invalid vault metadata: {exc}") from exc


@dataclass
class ServerRecord:
    """A server and its credentials, encrypted as one JSON document."""

    id: str
    encrypted_data: EncryptedBlob
    folder_id: Optional[str] = None
    health_status: HealthStatus = HealthStatus.UNKNOWN
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "folderId": self.folder_id,
            "encryptedData": self.encrypted_data.to_dict(),
            "healthStatus": self.health_status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ServerRecord":
        if not isinstance(data, dict):
            raise CorruptData("Server record must be an object")
        try:
            return cls(
                id=str(data["id"]),
                encrypted_data=EncryptedBlob.from_dict(data["encryptedData"]),
                folder_id=data.get("folderId"),
                health_status=HealthStatus(data.get("healthStatus") or HealthStatus.UNKNOWN.value),
                created_at=int(data.get("createdAt") or now_ms()),
                updated_at=int(data.get("updatedAt") or now_ms()),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise CorruptData(f"Invalid server record: {exc}") from exc


@dataclass
class FolderRecord:
    """A folder node. The tree is carried by parent_id; siblings sort by order."""

    id: str
    encrypted_name: EncryptedBlob
    parent_id: Optional[str] = None
    order: int = 0
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "encryptedName": self.encrypted_name.to_dict(),
            "parentId": self.parent_id,
            "order": self.order,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "FolderRecord":
        if not isinstance(data, dict):
            raise CorruptData("Folder record must be an object")
        try:
            return cls(
                id=str(data["id"]),
                encrypted_name=EncryptedBlob.from_dict(data["encryptedName"]),
                parent_id=data.get("parentId"),
                order=int(data.get("order", 0)),
                created_at=int(data.get("createdAt") or now_ms()),
                updated_at=int(data.get("updatedAt") or now_ms()),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise CorruptData(f"Invalid folder record: {exc}") from exc


@dataclass
class VaultPayload:
    """The full record set of a vault, as written on every file save."""

    servers: List[ServerRecord] = field(default_factory=list)
    folders: List[FolderRecord] = field(default_factory=list)
    settings: VaultSettings = field(default_factory=VaultSettings)


@dataclass(frozen=True)
class VaultStats:
    server_count: int = 0
    credential_count: int = 0
    folder_count: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "serverCount": self.server_count,
            "credentialCount": self.credential_count,
            "folderCount": self.folder_count,
        }
