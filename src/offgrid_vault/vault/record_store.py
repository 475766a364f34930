# Vault - Embedded Record Store
#
# SQLite-backed collections for the embedded backend:
#
#   metadata      keyed by the singleton id "vault"
#   servers       keyed by id, secondary index on folder_id
#   folders       keyed by id, secondary indexes on parent_id and sort_order
#   vault_config  key/value: active storage kind and vault file path
#
# Each record is stored as its JSON document plus the indexed columns.
# Every call is its own transaction; separate put() calls are not atomic
# together. replace_all() is the one multi-record write and runs in a
# single transaction.

import json
import logging
import sqlite3
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from ..core.db import StoreHandle
from .errors import CorruptData, StorageUnavailable
from .models import FolderRecord, ServerRecord, VaultMetadata, VaultPayload

logger = logging.getLogger(__name__)

METADATA_ID = "vault"

CONFIG_STORAGE_KIND = "storage_kind"
CONFIG_FILE_PATH = "file_path"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS metadata (
        id TEXT PRIMARY KEY,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS servers (
        id TEXT PRIMARY KEY,
        folder_id TEXT,
        data TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_servers_folder ON servers(folder_id)",
    """
    CREATE TABLE IF NOT EXISTS folders (
        id TEXT PRIMARY KEY,
        parent_id TEXT,
        sort_order INTEGER NOT NULL DEFAULT 0,
        data TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_folders_parent ON folders(parent_id)",
    "CREATE INDEX IF NOT EXISTS idx_folders_order ON folders(sort_order)",
    """
    CREATE TABLE IF NOT EXISTS vault_config (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
)

T = TypeVar("T")


class RecordStore(Generic[T]):
    """get / get_all / put / delete / clear over one table.

    Args:
        handle: Store handle owning the database.
        table: Table name (one of the schema tables above).
        decode: Builds a record from its stored JSON document.
        indexes: Indexed column name -> function extracting its value.
    """

    def __init__(
        self,
        handle: StoreHandle,
        table: str,
        decode: Callable[[Any], T],
        indexes: Optional[Dict[str, Callable[[T], Any]]] = None,
    ):
        self._handle = handle
        self._table = table
        self._decode = decode
        self._indexes = indexes or {}

    def _row_to_record(self, row: sqlite3.Row) -> T:
        try:
            return self._decode(json.loads(row["data"]))
        except json.JSONDecodeError as exc:
            raise CorruptData(f"Unreadable {self._table} row {row['id']}: {exc}") from exc

    def get(self, record_id: str) -> Optional[T]:
        with self._handle.transaction() as conn:
            row = conn.execute(
                f"SELECT id, data FROM {self._table} WHERE id = ?", (record_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_all(self) -> List[T]:
        """All records. Order is not guaranteed."""
        with self._handle.transaction() as conn:
            rows = conn.execute(f"SELECT id, data FROM {self._table}").fetchall()
        return [self._row_to_record(r) for r in rows]

    def find_by(self, column: str, value: Any) -> List[T]:
        """Records whose indexed column equals value (None matches NULL)."""
        if column not in self._indexes:
            raise ValueError(f"{self._table} has no index on {column}")
        with self._handle.transaction() as conn:
            rows = conn.execute(
                f"SELECT id, data FROM {self._table} WHERE {column} IS ?", (value,)
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def put(self, record: T, record_id: Optional[str] = None) -> None:
        """Insert or replace a record (upsert by id)."""
        with self._handle.transaction() as conn:
            self._put(conn, record, record_id)

    def _put(self, conn: sqlite3.Connection, record: T, record_id: Optional[str] = None) -> None:
        record_id = record_id or record.id
        columns = ["id", "data", *self._indexes]
        values = [record_id, json.dumps(record.to_dict())]
        values.extend(extract(record) for extract in self._indexes.values())
        placeholders = ", ".join("?" for _ in columns)
        conn.execute(
            f"INSERT OR REPLACE INTO {self._table} ({', '.join(columns)}) VALUES ({placeholders})",
            values,
        )

    def delete(self, record_id: str) -> bool:
        """Delete a record. Returns True if it existed."""
        with self._handle.transaction() as conn:
            cur = conn.execute(f"DELETE FROM {self._table} WHERE id = ?", (record_id,))
            return cur.rowcount > 0

    def clear(self) -> None:
        with self._handle.transaction() as conn:
            conn.execute(f"DELETE FROM {self._table}")

    def count(self) -> int:
        with self._handle.transaction() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()[0]


class EmbeddedStore:
    """The embedded backend: metadata, servers and folders in one SQLite file.

    Args:
        handle: StoreHandle owned by the VaultLifecycle.

    Raises:
        StorageUnavailable: If the database cannot be opened or initialized.
    """

    def __init__(self, handle: StoreHandle):
        self.handle = handle
        self.metadata = RecordStore(handle, "metadata", VaultMetadata.from_dict)
        self.servers = RecordStore(
            handle, "servers", ServerRecord.from_dict,
            indexes={"folder_id": lambda s: s.folder_id},
        )
        self.folders = RecordStore(
            handle, "folders", FolderRecord.from_dict,
            indexes={"parent_id": lambda f: f.parent_id, "sort_order": lambda f: f.order},
        )
        self._init_database()

    def _init_database(self) -> None:
        try:
            with self.handle.transaction() as conn:
                for statement in _SCHEMA:
                    conn.execute(statement)
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot open embedded store at {self.handle.db_path}: {exc}") from exc

    # ── Metadata ─────────────────────────────────────────────────────

    def get_metadata(self) -> Optional[VaultMetadata]:
        return self.metadata.get(METADATA_ID)

    def save_metadata(self, metadata: VaultMetadata) -> None:
        self.metadata.put(metadata, record_id=METADATA_ID)

    def vault_exists(self) -> bool:
        return self.get_metadata() is not None

    # ── Secondary lookups ────────────────────────────────────────────

    def get_servers_by_folder(self, folder_id: Optional[str]) -> List[ServerRecord]:
        return self.servers.find_by("folder_id", folder_id)

    def get_folders_by_parent(self, parent_id: Optional[str]) -> List[FolderRecord]:
        return sorted(self.folders.find_by("parent_id", parent_id), key=lambda f: f.order)

    # ── Whole-vault operations ───────────────────────────────────────

    def load_payload(self) -> VaultPayload:
        metadata = self.get_metadata()
        return VaultPayload(
            servers=self.servers.get_all(),
            folders=self.folders.get_all(),
            settings=metadata.settings if metadata else VaultPayload().settings,
        )

    def replace_all(
        self,
        metadata: VaultMetadata,
        servers: List[ServerRecord],
        folders: List[FolderRecord],
    ) -> None:
        """Replace every record in one transaction (used by migration and import)."""
        with self.handle.transaction() as conn:
            for table in ("metadata", "servers", "folders"):
                conn.execute(f"DELETE FROM {table}")
            self.metadata._put(conn, metadata, METADATA_ID)
            for server in servers:
                self.servers._put(conn, server)
            for folder in folders:
                self.folders._put(conn, folder)

    def clear_all(self) -> None:
        """Delete metadata, servers and folders in one transaction."""
        with self.handle.transaction() as conn:
            for table in ("metadata", "servers", "folders"):
                conn.execute(f"DELETE FROM {table}")

    # ── Backend pointer ──────────────────────────────────────────────

    def get_config(self, key: str) -> Optional[str]:
        with self.handle.transaction() as conn:
            row = conn.execute("SELECT value FROM vault_config WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_config(self, key: str, value: Optional[str]) -> None:
        """Set a config value; None deletes the key."""
        with self.handle.transaction() as conn:
            if value is None:
                conn.execute("DELETE FROM vault_config WHERE key = ?", (key,))
            else:
                conn.execute(
                    """INSERT INTO vault_config (key, value) VALUES (?, ?)
                       ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
                    (key, value),
                )
