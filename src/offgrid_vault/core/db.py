# Core Module — SQLite Store Handle
#
# The embedded store is owned by exactly one VaultLifecycle. Instead of a
# process-wide connection, the lifecycle creates a StoreHandle and passes it
# to the stores that need it; the handle lives as long as its owner.
#
# Every connection it opens gets:
#   - WAL journal mode (a reader never blocks the single writer)
#   - busy_timeout to avoid SQLITE_BUSY under contention
#   - foreign_keys enforcement

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

logger = logging.getLogger(__name__)


def connect(db_path: Union[str, Path], *, row_factory: bool = False) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs."""
    conn = sqlite3.connect(str(db_path), timeout=10, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn


class StoreHandle:
    """Explicit handle on the embedded SQLite database.

    Writes submitted through one handle are applied in submission order:
    a handle-level lock serializes transactions.

    Args:
        db_path: Path to the SQLite file. Parent directories are created.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.closed = False

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """One transaction per call; commits on success, rolls back on error."""
        if self.closed:
            raise sqlite3.ProgrammingError("Store handle is closed")
        with self._lock:
            conn = connect(self.db_path, row_factory=True)
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def close(self) -> None:
        """Refuse further transactions. Connections are per call, so nothing else to release."""
        self.closed = True
        logger.debug("Store handle closed: %s", self.db_path)
