"""
Applies schema migrations to an open Engage database.

The schema version is PRAGMA user_version; the _migrations table keeps one
history row per applied version with its timing.
"""

import sqlite3
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .registry import MigrationRegistry

logger = logging.getLogger(__name__)

HISTORY_DDL = """
    CREATE TABLE IF NOT EXISTS _migrations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        version INTEGER NOT NULL UNIQUE,
        description TEXT NOT NULL,
        applied_at TEXT NOT NULL,
        duration_ms INTEGER,
        metadata TEXT  -- JSON
    );
"""


class MigrationError(Exception):
    """A migration failed and was rolled back."""


@dataclass
class MigrationRecord:
    """Row of the _migrations history table."""
    id: int
    version: int
    description: str
    applied_at: Optional[datetime]
    duration_ms: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_row(cls, row) -> "MigrationRecord":
        return cls(
            id=row[0],
            version=row[1],
            description=row[2],
            applied_at=datetime.fromisoformat(row[3]) if row[3] else None,
            duration_ms=row[4],
            metadata=json.loads(row[5]) if row[5] else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "description": self.description,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "duration_ms": self.duration_ms,
            "metadata": self.metadata or {},
        }


class MigrationManager:
    """
    Runs pending migrations on one connection.

    The connection must be in autocommit mode (isolation_level=None) because
    the manager issues BEGIN/COMMIT itself.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._conn.executescript(HISTORY_DDL)

    def get_schema_version(self) -> int:
        return self._conn.execute("PRAGMA user_version").fetchone()[0]

    def set_schema_version(self, version: int) -> None:
        if version < 0:
            raise ValueError(f"Schema version must be >= 0, got {version}")
        # PRAGMA takes no bound parameters
        self._conn.execute(f"PRAGMA user_version = {int(version)}")

    def record_migration(self, version: int, description: str,
                         duration_ms: Optional[int] = None,
                         metadata: Optional[Dict[str, Any]] = None) -> int:
        """Add a history row and return its id."""
        cursor = self._conn.execute(
            "INSERT INTO _migrations (version, description, applied_at, duration_ms, metadata) "
            "VALUES (?, ?, ?, ?, ?)",
            (version, description, datetime.now().isoformat(), duration_ms,
             json.dumps(metadata) if metadata else None),
        )
        return cursor.lastrowid

    def get_applied_migrations(self) -> List[MigrationRecord]:
        rows = self._conn.execute(
            "SELECT id, version, description, applied_at, duration_ms, metadata "
            "FROM _migrations ORDER BY version"
        ).fetchall()
        return [MigrationRecord.from_row(row) for row in rows]

    def is_migration_applied(self, version: int) -> bool:
        row = self._conn.execute("SELECT 1 FROM _migrations WHERE version = ?", (version,)).fetchone()
        return row is not None

    def apply_pending(self, registry: Optional[MigrationRegistry] = None) -> List[int]:
        """
        Bring the database up to the newest registered version.

        A migration, its history row and the user_version bump commit
        together. On failure that migration is rolled back and no later one
        runs.

        Returns:
            Versions applied by this call, in order

        Raises:
            MigrationError: If a migration fails
        """
        registry = registry or MigrationRegistry()
        applied: List[int] = []

        for migration in registry.get_pending_migrations(self.get_schema_version()):
            started = time.monotonic()
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                migration.up(self._conn)
                elapsed_ms = int((time.monotonic() - started) * 1000)
                if not self.is_migration_applied(migration.version):
                    self.record_migration(migration.version, migration.description, elapsed_ms)
                self.set_schema_version(migration.version)
                self._conn.execute("COMMIT")
            except Exception as e:
                self._conn.execute("ROLLBACK")
                logger.error(f"{migration} failed, rolled back: {e}", exc_info=True)
                raise MigrationError(f"Migration v{migration.version} failed: {e}") from e

            logger.info(f"Applied {migration} in {elapsed_ms}ms")
            applied.append(migration.version)

        return applied
