"""
Migration v002: Add encrypted payload columns to action_items

Databases created before action items carried an encrypted payload lack
these columns. Fresh databases already have them, so each column is only
added when missing.
"""

import sqlite3
from engage.migrations.migration_base import MigrationBase

PAYLOAD_COLUMNS = ('encrypted_content', 'encrypted_keys', 'iv', 'completed_at')


class Migration(MigrationBase):
    """Add encrypted_content, encrypted_keys, iv and completed_at to action_items."""

    version = 2
    description = "Add encrypted payload columns to action_items"

    def up(self, conn: sqlite3.Connection) -> None:
        existing = self.column_names(conn, 'action_items')
        for column in PAYLOAD_COLUMNS:
            if column not in existing:
                conn.execute(f"ALTER TABLE action_items ADD COLUMN {column} TEXT")

    def down(self, conn: sqlite3.Connection) -> None:
        existing = self.column_names(conn, 'action_items')
        for column in PAYLOAD_COLUMNS:
            if column in existing:
                conn.execute(f"ALTER TABLE action_items DROP COLUMN {column}")
