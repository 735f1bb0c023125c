"""
SQLite database handle shared by the Local Store and the Sync Ledger.

One persistent connection in autocommit mode, serialized by a re-entrant
lock. transaction() groups a domain mutation and its ledger mark into a
single SQLite transaction; nested transaction() blocks join the outer one.
"""

import sqlite3
import threading
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Union

from .schema import init_database
from ..migrations import MigrationManager, MigrationRegistry
from ..utils import now_iso

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when a local store operation fails."""
    pass


class StoreNotInitializedError(StoreError):
    """Raised when the database is used before open() or after close()."""
    pass


class Database:
    """
    Engage local database.

    Pattern: Single persistent connection, RLock around every statement
    Lifetime: open() ... close(); usable as a context manager

    Example:
        db = Database("~/.engage360/engage360.db")
        db.open()
        with db.transaction() as conn:
            conn.execute("UPDATE people SET phone = ? WHERE id = ?", ("555", "p1"))
        db.close()
    """

    def __init__(self, db_path: Union[str, Path], enable_wal: bool = True,
                 registry: Optional[MigrationRegistry] = None):
        """
        Args:
            db_path: Path to SQLite database file (or ':memory:')
            enable_wal: Enable WAL mode (default: True)
            registry: Migration registry (default: discover engage.migrations.versions)
        """
        self.db_path = str(db_path) if str(db_path) == ':memory:' else Path(db_path).expanduser()
        self._enable_wal = enable_wal
        self._registry = registry
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._depth = 0

    def open(self) -> "Database":
        """
        Open the connection, create the schema and apply pending migrations.

        Calling open() on an open database is a no-op.
        """
        with self._lock:
            if self._conn is not None:
                return self

            if self.db_path != ':memory:':
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            # check_same_thread=False: the scheduler thread shares this connection
            # isolation_level=None: autocommit, transactions are explicit
            conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
                timeout=30.0
            )
            conn.row_factory = sqlite3.Row
            try:
                init_database(conn, enable_wal=self._enable_wal and self.db_path != ':memory:')
                applied = MigrationManager(conn).apply_pending(self._registry)
            except Exception:
                conn.close()
                raise

            if applied:
                logger.info(f"Applied migrations {applied} to {self.db_path}")
            self._conn = conn
            logger.debug(f"Opened database {self.db_path}")
            return self

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug(f"Closed database {self.db_path}")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def connection(self) -> sqlite3.Connection:
        """
        The open connection.

        Raises:
            StoreNotInitializedError: If the database is not open
        """
        if self._conn is None:
            raise StoreNotInitializedError("Local database is not initialized; call open() first")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside one SQLite transaction.

        Commits when the outermost block exits normally and rolls back when it
        raises. Inner blocks share the outer transaction.
        """
        with self._lock:
            conn = self.connection
            outermost = self._depth == 0
            if outermost:
                conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield conn
            except BaseException:
                self._depth -= 1
                if outermost:
                    conn.execute("ROLLBACK")
                raise
            self._depth -= 1
            if outermost:
                conn.execute("COMMIT")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self.connection.execute(sql, params)

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.connection.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.connection.execute(sql, params).fetchone()

    def schema_version(self) -> int:
        return self.query_one("PRAGMA user_version")[0]

    # sync_state key/value access

    def get_state(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self.query_one("SELECT value FROM sync_state WHERE key = ?", (key,))
        return row["value"] if row and row["value"] is not None else default

    def set_state(self, key: str, value: Optional[str]) -> None:
        self.execute("""
            INSERT INTO sync_state (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """, (key, value, now_iso()))

    def delete_state(self, prefix: str) -> int:
        """Delete every state key starting with prefix; returns the count."""
        cursor = self.execute("DELETE FROM sync_state WHERE key LIKE ?", (f"{prefix}%",))
        return cursor.rowcount

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
