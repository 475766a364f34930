# Vault - File Backend
#
# The vault persisted as one JSON document in a user-selected file:
#
#   {"format": "offgrid-vault", "version": 2, "metadata": {...},
#    "servers": [...], "folders": [...], "modifiedAt": <ms>}
#
# Leaf values are EncryptedBlobs produced by vault.crypto; this layer
# encrypts nothing itself. The whole document is rewritten on every save,
# through a temp file in the same directory followed by os.replace, so a
# failed save never leaves a truncated vault behind.

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

from .crypto import VaultCrypto, VaultKey
from .errors import (
    Cancelled,
    CorruptData,
    CorruptFile,
    PermissionDenied,
    UnsupportedVersion,
    VaultStateError,
    WrongPassword,
)
from .models import (
    FolderRecord,
    ServerRecord,
    StorageKind,
    VaultMetadata,
    VaultPayload,
    now_ms,
)
from .record_store import EmbeddedStore

logger = logging.getLogger(__name__)

FILE_FORMAT = "offgrid-vault"
FILE_VERSION = 2

# Host hook asked to grant access to a file. Returns True when granted;
# may raise Cancelled if the user dismisses the prompt.
PermissionPrompt = Callable[[Path], bool]


class VaultFileHandle:
    """A user-selected vault file and the access granted to it."""

    def __init__(self, path: Union[str, Path], prompt: Optional[PermissionPrompt] = None):
        self.path = Path(path)
        self._prompt = prompt

    def __repr__(self) -> str:
        return f"VaultFileHandle({str(self.path)!r})"

    def query_permission(self) -> bool:
        """Whether the file can be read and written right now (no prompt)."""
        if self.path.exists():
            return os.access(self.path, os.R_OK | os.W_OK)
        parent = self.path.parent
        return parent.is_dir() and os.access(parent, os.W_OK | os.X_OK)

    def request_permission(self) -> bool:
        """
        Re-acquire read/write access, prompting the host if needed.

        Returns False on denial or cancellation instead of raising.
        """
        if self.query_permission():
            return True
        if self._prompt is None:
            logger.info("No permission prompt available for %s", self.path)
            return False
        try:
            granted = bool(self._prompt(self.path))
        except Cancelled:
            logger.info("Permission prompt dismissed for %s", self.path)
            return False
        return granted and self.query_permission()

    def read_text(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except PermissionError as exc:
            raise PermissionDenied(f"Read access denied: {self.path}") from exc
        except FileNotFoundError as exc:
            raise CorruptFile(f"Vault file not found: {self.path}") from exc
        except IsADirectoryError as exc:
            raise CorruptFile(f"Vault path is a directory: {self.path}") from exc
        except UnicodeDecodeError as exc:
            raise CorruptFile(f"Vault file is not UTF-8 text: {self.path}") from exc
        except OSError as exc:
            raise PermissionDenied(f"Vault file cannot be read: {self.path}: {exc}") from exc

    def write_text(self, text: str) -> None:
        """Replace the file contents atomically (temp file + rename)."""
        directory = self.path.parent
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(directory), prefix=f".{self.path.name}.", suffix=".tmp"
            )
        except PermissionError as exc:
            raise PermissionDenied(f"Write access denied: {directory}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except PermissionError as exc:
            self._discard(tmp_path)
            raise PermissionDenied(f"Write access denied: {self.path}") from exc
        except Exception:
            self._discard(tmp_path)
            raise

    @staticmethod
    def _discard(tmp_path: str) -> None:
        try:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        except OSError:
            logger.warning("Could not remove temp file %s", tmp_path, exc_info=True)


@dataclass
class UnlockResult:
    """Everything one successful unlock read yields."""

    key: VaultKey
    metadata: VaultMetadata
    payload: VaultPayload


def serialize_document(metadata: VaultMetadata, payload: VaultPayload) -> Dict[str, Any]:
    """Build the vault file document for a metadata + payload pair."""
    metadata.settings = payload.settings
    return {
        "format": FILE_FORMAT,
        "version": FILE_VERSION,
        "metadata": metadata.to_dict(),
        "servers": [s.to_dict() for s in payload.servers],
        "folders": [f.to_dict() for f in payload.folders],
        "modifiedAt": now_ms(),
    }


def parse_document(text: str) -> Tuple[VaultMetadata, VaultPayload]:
    """
    Parse and validate a vault file document.

    Raises:
        CorruptFile: Not JSON, not a vault file, or malformed records.
        UnsupportedVersion: A vault file of a version this build cannot read.
    """
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CorruptFile(f"Vault file is not valid JSON: {exc}") from exc
    if not isinstance(doc, dict) or doc.get("format") != FILE_FORMAT:
        raise CorruptFile("Not an offgrid vault file")
    if doc.get("version") != FILE_VERSION:
        raise UnsupportedVersion(f"Unsupported vault file version: {doc.get('version')!r}")
    try:
        metadata = VaultMetadata.from_dict(doc.get("metadata"))
        servers = [ServerRecord.from_dict(s) for s in doc.get("servers") or []]
        folders = [FolderRecord.from_dict(f) for f in doc.get("folders") or []]
    except CorruptData as exc:
        raise CorruptFile(f"Vault file has malformed records: {exc}") from exc
    return metadata, VaultPayload(servers=servers, folders=folders, settings=metadata.settings)


class FileBackend:
    """
    Persistence of the whole vault to one user-granted file.

    The backend remembers the metadata it last read or wrote so that
    ``save(payload)`` can rewrite the full document from the payload alone.
    """

    def __init__(self, handle: Optional[VaultFileHandle] = None):
        self.handle = handle
        self.metadata: Optional[VaultMetadata] = None

    def exists(self) -> bool:
        """Whether a vault file reference is configured."""
        return self.handle is not None

    def _require_handle(self) -> VaultFileHandle:
        if self.handle is None:
            raise VaultStateError("No vault file configured")
        return self.handle

    def request_permission(self) -> bool:
        if self.handle is None:
            return False
        return self.handle.request_permission()

    def _ensure_permission(self, handle: VaultFileHandle) -> None:
        if not handle.request_permission():
            raise PermissionDenied(f"Access to {handle.path} was not granted")

    # ── Read ─────────────────────────────────────────────────────────

    def read(self) -> Tuple[VaultMetadata, VaultPayload]:
        """Read and parse the file without any password check."""
        handle = self._require_handle()
        self._ensure_permission(handle)
        return parse_document(handle.read_text())

    def load(self, password: str) -> UnlockResult:
        """
        Read the file, verify the password and return the vault contents.

        Raises:
            WrongPassword: The verification token does not match.
            CorruptFile / UnsupportedVersion: The file cannot be read.
            PermissionDenied: Access was not granted.
        """
        metadata, payload = self.read()
        key = VaultCrypto.verify_password(password, metadata.salt, metadata.verification_token)
        if key is None:
            raise WrongPassword("Invalid master password")
        self.metadata = metadata
        return UnlockResult(key=key, metadata=metadata, payload=payload)

    # ── Write ────────────────────────────────────────────────────────

    def create(self, metadata: VaultMetadata) -> None:
        """Write a new, empty vault to the configured file."""
        metadata.storage_kind = StorageKind.FILE
        self._write(self._require_handle(), metadata, VaultPayload(settings=metadata.settings))
        self.metadata = metadata
        logger.info("Created vault file %s", self.handle.path)

    def save(self, payload: VaultPayload) -> None:
        """Rewrite the whole vault file with the given payload."""
        if self.metadata is None:
            raise VaultStateError("Vault file has not been loaded or created")
        self._write(self._require_handle(), self.metadata, payload)
        logger.debug(
            "Saved vault file %s (%d servers, %d folders)",
            self.handle.path, len(payload.servers), len(payload.folders),
        )

    def _write(self, handle: VaultFileHandle, metadata: VaultMetadata, payload: VaultPayload) -> None:
        self._ensure_permission(handle)
        text = json.dumps(serialize_document(metadata, payload), indent=2)
        handle.write_text(text)

    # ── Migration ────────────────────────────────────────────────────

    def migrate_to(self, handle: VaultFileHandle, metadata: VaultMetadata, payload: VaultPayload) -> None:
        """
        Copy the full data set to another file, then switch to it.

        The current file is not touched; if the write fails this backend
        keeps pointing at it.
        """
        metadata.storage_kind = StorageKind.FILE
        self._write(handle, metadata, payload)
        self.handle = handle
        self.metadata = metadata
        logger.info("Vault file moved to %s", handle.path)

    def migrate_from_embedded(self, store: EmbeddedStore, handle: VaultFileHandle) -> VaultPayload:
        """Write the embedded store's records into a vault file and adopt it.

        The embedded records are left in place; the caller clears them once
        the backend pointer has been switched.
        """
        metadata = store.get_metadata()
        if metadata is None:
            raise VaultStateError("Embedded store holds no vault")
        payload = store.load_payload()
        self.migrate_to(handle, metadata, payload)
        return payload

    def migrate_to_embedded(self, store: EmbeddedStore, payload: VaultPayload) -> None:
        """Write the current file's records into the embedded store.

        The vault file itself is left on disk untouched.
        """
        if self.metadata is None:
            raise VaultStateError("Vault file has not been loaded or created")
        metadata = VaultMetadata.from_dict(self.metadata.to_dict())
        metadata.storage_kind = StorageKind.EMBEDDED
        metadata.settings = payload.settings
        store.replace_all(metadata, payload.servers, payload.folders)
