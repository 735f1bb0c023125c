"""
Migration v001: Add tombstone column to the sync ledger

Local and remote deletions keep their sync_status row; deleted_at marks the
row as a tombstone so an older remote copy is not pulled back in.
"""

import sqlite3
from engage.migrations.migration_base import MigrationBase


class Migration(MigrationBase):
    """Add deleted_at to sync_status."""

    version = 1
    description = "Add deleted_at tombstone column to sync_status"

    def up(self, conn: sqlite3.Connection) -> None:
        if 'deleted_at' not in self.column_names(conn, 'sync_status'):
            conn.execute("ALTER TABLE sync_status ADD COLUMN deleted_at TEXT")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_sync_status_status ON sync_status(sync_status)"
        )

    def down(self, conn: sqlite3.Connection) -> None:
        conn.execute("DROP INDEX IF EXISTS idx_sync_status_status")
        conn.execute("ALTER TABLE sync_status DROP COLUMN deleted_at")
