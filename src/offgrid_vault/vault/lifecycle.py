# Vault - Lifecycle
#
# The single entry point collaborators use:
#
#   UNINITIALIZED --create--> UNLOCKED --lock--> LOCKED --unlock--> UNLOCKED
#   UNLOCKED --migrate--> MIGRATING --> UNLOCKED
#
# Owns the StoreHandle, the embedded store, the file backend, the auto-save
# scheduler and the auto-lock timer. Calls are serialized by one RLock;
# timers are daemon threads that re-enter through the same lock.
#
# Records are kept encrypted in memory (the "mirror") and decrypted on
# demand. lock() flushes pending file saves, wipes the key and drops the
# mirror.

import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Union

from ..core.audit_log import EventSeverity, EventType, get_audit_logger
from ..core.config import get_config
from ..core.db import StoreHandle
from .autosave import AutoSaveScheduler, SaveStatus
from .clipboard import ClipboardClearer
from .credentials import Credential
from .crypto import VaultCrypto, VaultKey, check_crypto_support
from .errors import (
    CorruptData,
    InvalidShare,
    RecordNotFound,
    StorageUnavailable,
    VaultStateError,
    WrongPassword,
)
from .file_backend import FileBackend, PermissionPrompt, UnlockResult, VaultFileHandle
from .health import HealthResult, check_health
from .models import (
    FolderRecord,
    HealthStatus,
    ServerRecord,
    StorageKind,
    VaultMetadata,
    VaultPayload,
    VaultSettings,
    VaultStats,
    now_ms,
)
from .record_store import CONFIG_FILE_PATH, CONFIG_STORAGE_KIND, EmbeddedStore
from .share import credentials_from_share

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1


class VaultState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    MIGRATING = "migrating"


class ImportMode(str, Enum):
    """What to do when an imported record id already exists."""

    SKIP = "skip"
    REPLACE = "replace"


@dataclass(frozen=True)
class ImportResult:
    servers_imported: int = 0
    servers_skipped: int = 0
    folders_imported: int = 0
    folders_skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "serversImported": self.servers_imported,
            "serversSkipped": self.servers_skipped,
            "foldersImported": self.folders_imported,
            "foldersSkipped": self.folders_skipped,
        }


def check_support(store_path: Optional[Union[str, Path]] = None) -> None:
    """
    Verify the host can run a vault.

    Raises:
        StorageUnavailable: AES-GCM or SQLite is unusable.
    """
    check_crypto_support()
    target = ":memory:"
    try:
        if store_path:
            Path(store_path).parent.mkdir(parents=True, exist_ok=True)
            target = str(store_path)
        conn = sqlite3.connect(target)
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except (sqlite3.Error, OSError) as exc:
        raise StorageUnavailable(f"SQLite unavailable at {target}: {exc}") from exc


class VaultLifecycle:
    """
    Create, unlock, lock and migrate one vault; mutate it while unlocked.

    Args:
        store_path: Embedded SQLite store (default: from AppConfig)
        permission_prompt: Host hook asked to grant access to a vault file
        health_timeout: Seconds allowed per server health check
    """

    def __init__(
        self,
        store_path: Optional[Union[str, Path]] = None,
        permission_prompt: Optional[PermissionPrompt] = None,
        health_timeout: Optional[float] = None,
    ):
        config = get_config()
        self._handle = StoreHandle(store_path or config.store_path)
        self.store = EmbeddedStore(self._handle)
        self.files = FileBackend()
        self._prompt = permission_prompt
        self._health_timeout = health_timeout or config.health_timeout

        self._lock = threading.RLock()
        self._key: Optional[VaultKey] = None
        self._metadata: Optional[VaultMetadata] = None
        self._servers: Dict[str, ServerRecord] = {}
        self._folders: Dict[str, FolderRecord] = {}
        self._decrypted: Dict[str, Dict[str, Any]] = {}
        self._auto_lock_timer: Optional[threading.Timer] = None
        self._health_thread: Optional[threading.Thread] = None
        self.failed_attempts = 0

        self.autosave = AutoSaveScheduler(self._save_file)
        self.clipboard = ClipboardClearer()
        self.audit = get_audit_logger()

        self._storage_kind = StorageKind.EMBEDDED
        self._state = self._detect_state()

    def _detect_state(self) -> VaultState:
        """Read the backend pointer and decide whether a vault exists."""
        kind = self.store.get_config(CONFIG_STORAGE_KIND)
        if kind == StorageKind.FILE.value:
            path = self.store.get_config(CONFIG_FILE_PATH)
            if path:
                self._storage_kind = StorageKind.FILE
                self.files.handle = VaultFileHandle(path, self._prompt)
                return VaultState.LOCKED
            logger.warning("Backend pointer names the file backend without a path")
        return VaultState.LOCKED if self.store.vault_exists() else VaultState.UNINITIALIZED

    # ── Accessors ────────────────────────────────────────────────────

    @property
    def state(self) -> VaultState:
        return self._state

    @property
    def storage_kind(self) -> StorageKind:
        return self._storage_kind

    @property
    def file_path(self) -> Optional[Path]:
        if self._storage_kind is StorageKind.FILE and self.files.handle is not None:
            return self.files.handle.path
        return None

    @property
    def is_unlocked(self) -> bool:
        return self._state is VaultState.UNLOCKED

    @property
    def settings(self) -> VaultSettings:
        with self._lock:
            self._require_unlocked()
            return self._metadata.settings

    @property
    def save_status(self) -> SaveStatus:
        return self.autosave.status

    def _require_unlocked(self) -> None:
        if self._state is not VaultState.UNLOCKED:
            raise VaultStateError(f"Vault is {self._state.value}")

    def _audit(self, event_type: EventType, message: str,
               severity: EventSeverity = EventSeverity.INFO, **details) -> None:
        self.audit.log_event(event_type, severity, message, details=details or None)

    # ── Create / unlock / lock ───────────────────────────────────────

    def create(
        self,
        password: str,
        storage_kind: StorageKind = StorageKind.EMBEDDED,
        file_path: Optional[Union[str, Path]] = None,
    ) -> VaultKey:
        """
        Create a new vault and unlock it.

        Raises:
            VaultStateError: A vault already exists.
            ValueError: Empty password, or file backend without a path.
            PermissionDenied: The vault file cannot be written.
        """
        if not password:
            raise ValueError("Master password must not be empty")
        storage_kind = StorageKind(storage_kind)
        if storage_kind is StorageKind.FILE and not file_path:
            raise ValueError("The file backend needs a vault file path")

        with self._lock:
            if self._state is not VaultState.UNINITIALIZED:
                raise VaultStateError("A vault already exists")

            salt = VaultCrypto.generate_salt()
            key = VaultCrypto.derive_key(password, salt)
            metadata = VaultMetadata(
                salt=salt,
                verification_token=VaultCrypto.generate_verification_token(key),
                storage_kind=storage_kind,
            )

            if storage_kind is StorageKind.FILE:
                handle = VaultFileHandle(file_path, self._prompt)
                self.files.handle = handle
                try:
                    self.files.create(metadata)
                except Exception:
                    self.files.handle = None
                    key.wipe()
                    raise
                self._set_pointer(StorageKind.FILE, str(handle.path))
            else:
                self.store.save_metadata(metadata)
                self._set_pointer(StorageKind.EMBEDDED, None)

            self._begin_session(key, metadata, VaultPayload(settings=metadata.settings))
            self._audit(EventType.VAULT_CREATED, "Vault created", storage_kind=storage_kind.value)
            return key

    def _set_pointer(self, kind: StorageKind, path: Optional[str]) -> None:
        self.store.set_config(CONFIG_STORAGE_KIND, kind.value)
        self.store.set_config(CONFIG_FILE_PATH, path)
        self._storage_kind = kind

    def unlock(self, password: str) -> UnlockResult:
        """
        Verify the master password and load the vault.

        Raises:
            WrongPassword: Verification failed; state stays LOCKED.
            VaultStateError: No vault, or already unlocked.
        """
        with self._lock:
            if self._state is VaultState.UNINITIALIZED:
                raise VaultStateError("No vault to unlock")
            if self._state is not VaultState.LOCKED:
                raise VaultStateError("Vault is already unlocked")

            try:
                if self._storage_kind is StorageKind.FILE:
                    result = self.files.load(password)
                else:
                    result = self._unlock_embedded(password)
            except WrongPassword:
                self.failed_attempts += 1
                self._audit(
                    EventType.VAULT_UNLOCK_FAILED, "Incorrect master password",
                    EventSeverity.ALERT, attempt=self.failed_attempts,
                )
                raise

            result.metadata.last_accessed_at = now_ms()
            if self._storage_kind is StorageKind.EMBEDDED:
                self.store.save_metadata(result.metadata)

            self.failed_attempts = 0
            self._begin_session(result.key, result.metadata, result.payload)
            self._audit(
                EventType.VAULT_UNLOCKED, "Vault unlocked",
                storage_kind=self._storage_kind.value,
                servers=len(result.payload.servers),
            )
            if result.metadata.settings.health_check_on_unlock:
                self._start_unlock_health_checks()
            return result

    def _unlock_embedded(self, password: str) -> UnlockResult:
        metadata = self.store.get_metadata()
        if metadata is None:
            raise VaultStateError("Embedded store holds no vault")
        key = VaultCrypto.verify_password(password, metadata.salt, metadata.verification_token)
        if key is None:
            raise WrongPassword("Invalid master password")
        return UnlockResult(key=key, metadata=metadata, payload=self.store.load_payload())

    def _begin_session(self, key: VaultKey, metadata: VaultMetadata, payload: VaultPayload) -> None:
        self._key = key
        self._metadata = metadata
        self._servers = {s.id: s for s in payload.servers}
        self._folders = {f.id: f for f in payload.folders}
        self._decrypted = {}
        self.autosave.delay_ms = metadata.settings.auto_save_delay
        self._state = VaultState.UNLOCKED
        self._arm_auto_lock()

    def lock(self, auto: bool = False) -> None:
        """
        Flush pending saves, wipe the key and drop decrypted data.

        No-op unless the vault is unlocked.
        """
        with self._lock:
            if self._state is not VaultState.UNLOCKED:
                return
            self._cancel_auto_lock()
            if self._storage_kind is StorageKind.FILE and not self.autosave.flush():
                self._audit(
                    EventType.SAVE_FAILED, "Pending changes could not be saved before lock",
                    EventSeverity.CRITICAL, error=self.autosave.last_error,
                )
            self.autosave.cancel()
            self._end_session()
            self._state = VaultState.LOCKED
            if auto:
                self._audit(EventType.VAULT_AUTO_LOCKED, "Vault auto-locked after inactivity")
            else:
                self._audit(EventType.VAULT_LOCKED, "Vault locked")

    def _end_session(self) -> None:
        if self._key is not None:
            self._key.wipe()
        self._key = None
        self._metadata = None
        self._servers = {}
        self._folders = {}
        self._decrypted = {}

    # ── Auto-lock ────────────────────────────────────────────────────

    def _arm_auto_lock(self) -> None:
        self._cancel_auto_lock()
        minutes = self._metadata.settings.auto_lock_timeout if self._metadata else 0
        if minutes and minutes > 0:
            timer = threading.Timer(minutes * 60, self._auto_lock)
            timer.daemon = True
            self._auto_lock_timer = timer
            timer.start()

    def _cancel_auto_lock(self) -> None:
        if self._auto_lock_timer is not None:
            self._auto_lock_timer.cancel()
            self._auto_lock_timer = None

    def _auto_lock(self) -> None:
        logger.info("Auto-lock timeout reached")
        self.lock(auto=True)

    def touch(self) -> None:
        """Activity signal: restart the auto-lock timer."""
        with self._lock:
            if self._state is VaultState.UNLOCKED:
                self._arm_auto_lock()

    def schedule_clipboard_clear(self, clear_fn: Callable[[], None]) -> bool:
        """After a secret is copied: run clear_fn once the clipboard timeout elapses."""
        with self._lock:
            self._require_unlocked()
            seconds = self._metadata.settings.clipboard_clear_timeout
        return self.clipboard.schedule(clear_fn, seconds)

    # ── Persistence plumbing ─────────────────────────────────────────

    def _snapshot(self) -> VaultPayload:
        return VaultPayload(
            servers=list(self._servers.values()),
            folders=list(self._folders.values()),
            settings=self._metadata.settings,
        )

    def _save_file(self, payload: VaultPayload) -> None:
        try:
            self.files.save(payload)
        except Exception as exc:
            self._audit(EventType.SAVE_FAILED, "Vault file save failed", EventSeverity.CRITICAL, error=str(exc))
            raise

    def schedule_save(self) -> None:
        """Queue a debounced save of the file backend (no-op for embedded)."""
        with self._lock:
            self._require_unlocked()
            if self._storage_kind is not StorageKind.FILE:
                return
            settings = self._metadata.settings
            if settings.auto_save_enabled:
                self.autosave.schedule(self._snapshot(), settings.auto_save_delay)
            else:
                self.autosave.hold(self._snapshot())

    def save_now(self) -> bool:
        """Write pending file changes immediately. Returns False on failure."""
        with self._lock:
            self._require_unlocked()
            if self._storage_kind is not StorageKind.FILE:
                return True
            return self.autosave.flush()

    def _mutated(self) -> None:
        if self._storage_kind is StorageKind.FILE:
            self.schedule_save()
        self._arm_auto_lock()

    def _put_server(self, record: ServerRecord) -> None:
        if self._storage_kind is StorageKind.EMBEDDED:
            self.store.servers.put(record)
        self._servers[record.id] = record
        self._decrypted.pop(record.id, None)

    def _put_folder(self, record: FolderRecord) -> None:
        if self._storage_kind is StorageKind.EMBEDDED:
            self.store.folders.put(record)
        self._folders[record.id] = record

    # ── Servers ──────────────────────────────────────────────────────

    def list_servers(self, folder_id: Optional[str] = None, all_folders: bool = True) -> List[ServerRecord]:
        with self._lock:
            self._require_unlocked()
            servers = self._servers.values()
            if not all_folders:
                servers = [s for s in servers if s.folder_id == folder_id]
            return sorted(servers, key=lambda s: s.created_at)

    def get_server_record(self, server_id: str) -> ServerRecord:
        with self._lock:
            self._require_unlocked()
            try:
                return self._servers[server_id]
            except KeyError:
                raise RecordNotFound(f"Server not found: {server_id}") from None

    def get_server(self, server_id: str) -> Dict[str, Any]:
        """Decrypted server definition, credentials included."""
        with self._lock:
            record = self.get_server_record(server_id)
            if server_id not in self._decrypted:
                data = VaultCrypto.decrypt(record.encrypted_data, self._key)
                if not isinstance(data, dict):
                    raise CorruptData(f"Server {server_id} does not decrypt to an object")
                self._decrypted[server_id] = data
            return dict(self._decrypted[server_id])

    def save_server(
        self,
        data: Dict[str, Any],
        server_id: Optional[str] = None,
        folder_id: Optional[str] = None,
    ) -> ServerRecord:
        """
        Insert or update a server.

        A new server is placed in ``folder_id``; an update keeps the
        server's folder (use move_server to change it). Credentials in
        ``data["credentials"]`` are validated and normalized.
        """
        with self._lock:
            self._require_unlocked()
            data = dict(data)
            data["credentials"] = [
                Credential.from_dict(c).to_dict() for c in data.get("credentials") or []
            ]
            encrypted = VaultCrypto.encrypt(data, self._key)
            existing = self._servers.get(server_id) if server_id else None
            if existing is not None:
                record = replace(existing, encrypted_data=encrypted, updated_at=now_ms())
            else:
                self._require_folder(folder_id)
                record = ServerRecord(
                    id=server_id or str(uuid.uuid4()),
                    encrypted_data=encrypted,
                    folder_id=folder_id,
                )
            self._put_server(record)
            self._mutated()
            self._audit(EventType.SERVER_SAVED, "Server saved", server_id=record.id)
            return record

    def move_server(self, server_id: str, folder_id: Optional[str]) -> ServerRecord:
        with self._lock:
            record = self.get_server_record(server_id)
            self._require_folder(folder_id)
            record = replace(record, folder_id=folder_id, updated_at=now_ms())
            self._put_server(record)
            self._mutated()
            return record

    def delete_server(self, server_id: str) -> None:
        with self._lock:
            self.get_server_record(server_id)
            if self._storage_kind is StorageKind.EMBEDDED:
                self.store.servers.delete(server_id)
            del self._servers[server_id]
            self._decrypted.pop(server_id, None)
            self._mutated()
            self._audit(EventType.SERVER_DELETED, "Server deleted", server_id=server_id)

    def set_health_status(self, server_id: str, status: HealthStatus) -> ServerRecord:
        with self._lock:
            record = replace(self.get_server_record(server_id), health_status=HealthStatus(status))
            self._put_server(record)
            if self._storage_kind is StorageKind.FILE:
                self.schedule_save()
            return record

    def run_health_check(self, server_id: str) -> HealthResult:
        """Probe the server's ``healthCheckUrl`` and record the outcome."""
        data = self.get_server(server_id)
        url = data.get("healthCheckUrl")
        if not url:
            raise ValueError(f"Server {server_id} has no health-check URL")
        expected = int(data.get("healthCheckExpectedStatus") or 200)
        # The HTTP call runs outside the lifecycle lock
        result = check_health(url, expected, timeout=self._health_timeout)
        with self._lock:
            if self._state is VaultState.UNLOCKED and server_id in self._servers:
                self.set_health_status(server_id, result.status)
        return result

    def run_all_health_checks(self, on_unlock: bool = False) -> Dict[str, HealthResult]:
        """
        Check every server that has a ``healthCheckUrl``.

        With ``on_unlock`` only servers whose data sets
        ``healthCheckOnUnlock`` are checked. Stops early if the vault
        locks mid-run.
        """
        with self._lock:
            self._require_unlocked()
            targets = []
            for server_id in list(self._servers):
                try:
                    data = self.get_server(server_id)
                except CorruptData as exc:
                    logger.warning("Skipping health check for %s: %s", server_id, exc)
                    continue
                if data.get("healthCheckUrl") and (not on_unlock or data.get("healthCheckOnUnlock")):
                    targets.append(server_id)

        results: Dict[str, HealthResult] = {}
        for server_id in targets:
            try:
                results[server_id] = self.run_health_check(server_id)
            except RecordNotFound:
                continue
            except CorruptData as exc:
                logger.warning("Skipping health check for %s: %s", server_id, exc)
                continue
            except VaultStateError:
                logger.info("Vault locked during health checks; %d of %d done", len(results), len(targets))
                break
        return results

    def _start_unlock_health_checks(self) -> None:
        self._health_thread = threading.Thread(
            target=self._unlock_health_checks, name="vault-health-on-unlock", daemon=True,
        )
        self._health_thread.start()

    def _unlock_health_checks(self) -> None:
        try:
            results = self.run_all_health_checks(on_unlock=True)
        except VaultStateError:
            return
        if results:
            logger.info("Ran %d health check(s) after unlock", len(results))

    # ── Credentials ──────────────────────────────────────────────────

    def list_credentials(self, server_id: str) -> List[Credential]:
        data = self.get_server(server_id)
        return [Credential.from_dict(c) for c in data.get("credentials") or []]

    def save_credential(self, server_id: str, credential: Credential) -> Credential:
        """Insert a credential into a server, or replace the one with its id."""
        with self._lock:
            data = self.get_server(server_id)
            credentials = [c for c in data.get("credentials") or []]
            entry = credential.to_dict()
            for i, existing in enumerate(credentials):
                if existing.get("id") == credential.id:
                    credentials[i] = entry
                    break
            else:
                credentials.append(entry)
            data["credentials"] = credentials
            self.save_server(data, server_id=server_id)
            return credential

    def delete_credential(self, server_id: str, credential_id: str) -> None:
        with self._lock:
            data = self.get_server(server_id)
            credentials = data.get("credentials") or []
            remaining = [c for c in credentials if c.get("id") != credential_id]
            if len(remaining) == len(credentials):
                raise RecordNotFound(f"Credential not found: {credential_id}")
            data["credentials"] = remaining
            self.save_server(data, server_id=server_id)

    # ── Folders ──────────────────────────────────────────────────────

    def _require_folder(self, folder_id: Optional[str]) -> None:
        if folder_id is not None and folder_id not in self._folders:
            raise RecordNotFound(f"Folder not found: {folder_id}")

    def get_folder(self, folder_id: str) -> FolderRecord:
        with self._lock:
            self._require_unlocked()
            self._require_folder(folder_id)
            return self._folders[folder_id]

    def folder_name(self, folder_id: str) -> str:
        with self._lock:
            return VaultCrypto.decrypt(self.get_folder(folder_id).encrypted_name, self._key)

    def list_folders(self, parent_id: Optional[str] = None) -> List[FolderRecord]:
        """Direct children of ``parent_id`` (None = top level), sorted by order."""
        with self._lock:
            self._require_unlocked()
            children = [f for f in self._folders.values() if f.parent_id == parent_id]
            return sorted(children, key=lambda f: (f.order, f.created_at))

    def all_folders(self) -> List[FolderRecord]:
        with self._lock:
            self._require_unlocked()
            return sorted(self._folders.values(), key=lambda f: (f.order, f.created_at))

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> FolderRecord:
        with self._lock:
            self._require_unlocked()
            self._require_folder(parent_id)
            record = FolderRecord(
                id=str(uuid.uuid4()),
                encrypted_name=VaultCrypto.encrypt(name, self._key),
                parent_id=parent_id,
                order=len(self.list_folders(parent_id)),
            )
            self._put_folder(record)
            self._mutated()
            self._audit(EventType.FOLDER_SAVED, "Folder created", folder_id=record.id)
            return record

    def rename_folder(self, folder_id: str, name: str) -> FolderRecord:
        with self._lock:
            record = replace(
                self.get_folder(folder_id),
                encrypted_name=VaultCrypto.encrypt(name, self._key),
                updated_at=now_ms(),
            )
            self._put_folder(record)
            self._mutated()
            self._audit(EventType.FOLDER_SAVED, "Folder renamed", folder_id=folder_id)
            return record

    def _descendants(self, folder_id: str) -> Set[str]:
        found: Set[str] = set()
        frontier = [folder_id]
        while frontier:
            current = frontier.pop()
            for f in self._folders.values():
                if f.parent_id == current and f.id not in found:
                    found.add(f.id)
                    frontier.append(f.id)
        return found

    def move_folder(self, folder_id: str, parent_id: Optional[str]) -> FolderRecord:
        """Re-parent a folder. Moving under itself or a descendant is rejected."""
        with self._lock:
            record = self.get_folder(folder_id)
            self._require_folder(parent_id)
            if parent_id is not None and (parent_id == folder_id or parent_id in self._descendants(folder_id)):
                raise VaultStateError("Cannot move a folder into itself or one of its descendants")
            record = replace(
                record,
                parent_id=parent_id,
                order=len(self.list_folders(parent_id)),
                updated_at=now_ms(),
            )
            self._put_folder(record)
            self._mutated()
            self._audit(EventType.FOLDER_SAVED, "Folder moved", folder_id=folder_id)
            return record

    def delete_folder(self, folder_id: str) -> None:
        """Delete a folder; its child folders and servers move up to its parent."""
        with self._lock:
            record = self.get_folder(folder_id)
            for child in [f for f in self._folders.values() if f.parent_id == folder_id]:
                self._put_folder(replace(child, parent_id=record.parent_id, updated_at=now_ms()))
            for server in [s for s in self._servers.values() if s.folder_id == folder_id]:
                self._put_server(replace(server, folder_id=record.parent_id, updated_at=now_ms()))
            if self._storage_kind is StorageKind.EMBEDDED:
                self.store.folders.delete(folder_id)
            del self._folders[folder_id]
            self._mutated()
            self._audit(EventType.FOLDER_DELETED, "Folder deleted", folder_id=folder_id)

    # ── Stats & settings ─────────────────────────────────────────────

    def stats(self) -> VaultStats:
        with self._lock:
            self._require_unlocked()
            credentials = sum(
                len(self.get_server(sid).get("credentials") or []) for sid in self._servers
            )
            return VaultStats(
                server_count=len(self._servers),
                credential_count=credentials,
                folder_count=len(self._folders),
            )

    def update_settings(self, **changes) -> VaultSettings:
        """Apply settings changes, persist them and re-arm timers."""
        with self._lock:
            self._require_unlocked()
            settings = self._metadata.settings.updated(**changes)
            self._metadata.settings = settings
            self.autosave.delay_ms = settings.auto_save_delay
            if self._storage_kind is StorageKind.EMBEDDED:
                self.store.save_metadata(self._metadata)
            self._mutated()
            self._audit(EventType.SETTINGS_UPDATED, "Settings updated", changed=sorted(changes))
            return settings

    # ── Migration ────────────────────────────────────────────────────

    def migrate(self, target: StorageKind, file_path: Optional[Union[str, Path]] = None) -> None:
        """
        Move the vault to another backend (or another vault file).

        The destination is written in full before the backend pointer is
        switched; on failure the current backend stays active and untouched.
        """
        target = StorageKind(target)
        with self._lock:
            self._require_unlocked()
            if target is StorageKind.FILE and not file_path:
                raise ValueError("Migrating to the file backend needs a vault file path")
            if target is StorageKind.EMBEDDED and self._storage_kind is StorageKind.EMBEDDED:
                raise VaultStateError("Vault already uses the embedded store")

            source = self._storage_kind
            self._state = VaultState.MIGRATING
            try:
                if source is StorageKind.FILE:
                    # A failed flush keeps its payload queued until the switch succeeds
                    self.autosave.flush()
                payload = self._snapshot()
                if target is StorageKind.FILE:
                    handle = VaultFileHandle(file_path, self._prompt)
                    if source is StorageKind.EMBEDDED:
                        self.files.migrate_from_embedded(self.store, handle)
                    else:
                        self.files.migrate_to(handle, self._metadata, payload)
                    self._metadata = self.files.metadata
                    self._set_pointer(StorageKind.FILE, str(handle.path))
                    if source is StorageKind.EMBEDDED:
                        self.store.clear_all()
                else:
                    self.files.migrate_to_embedded(self.store, payload)
                    self._metadata = self.store.get_metadata()
                    self._set_pointer(StorageKind.EMBEDDED, None)
                    self.files.handle = None
                    self.files.metadata = None
            except Exception as exc:
                self._metadata.storage_kind = source
                self._state = VaultState.UNLOCKED
                self._audit(
                    EventType.VAULT_ERROR, "Migration failed",
                    EventSeverity.CRITICAL, source=source.value, target=target.value, error=str(exc),
                )
                raise
            if source is StorageKind.FILE:
                self.autosave.cancel()
            self._state = VaultState.UNLOCKED
            self._arm_auto_lock()
            self._audit(EventType.VAULT_MIGRATED, "Vault migrated", source=source.value, target=target.value)

    # ── Received shares ──────────────────────────────────────────────

    def import_share(
        self,
        data: Any,
        folder_id: Optional[str] = None,
        server_id: Optional[str] = None,
    ) -> ServerRecord:
        """
        Save the records of an opened share link.

        The shared server becomes a new server in ``folder_id`` carrying
        the shared credentials. A share without a server adds its
        credentials to the existing ``server_id``.

        Raises:
            InvalidShare: Not share data, or nowhere to put the credentials.
        """
        if not isinstance(data, dict):
            raise InvalidShare("Invalid share data")
        server_info = data.get("server")
        if server_info is not None and not isinstance(server_info, dict):
            raise InvalidShare("Shared server must be an object")
        credentials = [c.to_dict() for c in credentials_from_share(data.get("credentials") or [])]

        with self._lock:
            self._require_unlocked()
            if server_info:
                server_data = {k: v for k, v in server_info.items() if v is not None}
                server_data["credentials"] = credentials
                record = self.save_server(server_data, folder_id=folder_id)
            elif credentials and server_id:
                server_data = self.get_server(server_id)
                server_data["credentials"] = list(server_data.get("credentials") or []) + credentials
                record = self.save_server(server_data, server_id=server_id)
            elif credentials:
                raise InvalidShare(
                    f"Share carries {len(credentials)} credential(s) but no server; add them to a server"
                )
            else:
                raise InvalidShare("Share carries nothing to import")
            self._audit(
                EventType.SHARE_IMPORTED, "Share imported",
                server_id=record.id, credentials=len(credentials),
            )
            return record

    # ── Backup ───────────────────────────────────────────────────────

    def export_backup(self) -> Dict[str, Any]:
        """Encrypted backup: records stay encrypted under the vault key."""
        with self._lock:
            self._require_unlocked()
            payload = self._snapshot()
            backup = {
                "version": BACKUP_VERSION,
                "exportedAt": now_ms(),
                "metadata": self._metadata.to_dict(),
                "servers": [s.to_dict() for s in payload.servers],
                "folders": [f.to_dict() for f in payload.folders],
            }
            self._audit(EventType.BACKUP_EXPORTED, "Backup exported", servers=len(payload.servers))
            return backup

    def import_backup(self, data: Any, mode: ImportMode = ImportMode.SKIP) -> ImportResult:
        """
        Merge an encrypted backup into the unlocked vault.

        Raises:
            CorruptData: Malformed backup, or one made under another vault key.
        """
        mode = ImportMode(mode)
        with self._lock:
            self._require_unlocked()
            if not isinstance(data, dict) or data.get("version") != BACKUP_VERSION:
                raise CorruptData("Not a vault backup")
            backup_meta = VaultMetadata.from_dict(data.get("metadata"))
            if backup_meta.salt != self._metadata.salt:
                raise CorruptData("Backup was made with a different vault key")
            servers = [ServerRecord.from_dict(s) for s in data.get("servers") or []]
            folders = [FolderRecord.from_dict(f) for f in data.get("folders") or []]

            counts = {"si": 0, "ss": 0, "fi": 0, "fs": 0}
            for folder in folders:
                if folder.id in self._folders and mode is ImportMode.SKIP:
                    counts["fs"] += 1
                    continue
                self._put_folder(folder)
                counts["fi"] += 1
            for server in servers:
                if server.id in self._servers and mode is ImportMode.SKIP:
                    counts["ss"] += 1
                    continue
                if server.folder_id is not None and server.folder_id not in self._folders:
                    server = replace(server, folder_id=None)
                self._put_server(server)
                counts["si"] += 1
            self._mutated()

            result = ImportResult(counts["si"], counts["ss"], counts["fi"], counts["fs"])
            self._audit(EventType.BACKUP_IMPORTED, "Backup imported", mode=mode.value, **result.to_dict())
            return result

    # ── Deletion & teardown ──────────────────────────────────────────

    def delete_vault(self) -> None:
        """Erase the vault. A user's vault file is forgotten, not deleted."""
        with self._lock:
            if self._state is VaultState.UNINITIALIZED:
                raise VaultStateError("No vault to delete")
            if self._state is VaultState.MIGRATING:
                raise VaultStateError("Vault is migrating")
            self._cancel_auto_lock()
            self.autosave.cancel()
            self._end_session()
            self.store.clear_all()
            self.store.set_config(CONFIG_STORAGE_KIND, None)
            self.store.set_config(CONFIG_FILE_PATH, None)
            self.files.handle = None
            self.files.metadata = None
            self._storage_kind = StorageKind.EMBEDDED
            self.failed_attempts = 0
            self._state = VaultState.UNINITIALIZED
            self._audit(EventType.VAULT_DELETED, "Vault deleted", EventSeverity.ALERT)

    def close(self) -> None:
        """Lock (flushing pending saves) and release the store handle."""
        self.lock()
        self._handle.close()
