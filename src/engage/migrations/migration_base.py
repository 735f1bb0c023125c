"""
Schema migrations for the Engage local database.

A migration is a MigrationBase subclass living in engage.migrations.versions
with a class-level ``version`` and ``description``. The manager runs up()
inside a transaction it owns, so migrations never commit themselves.
Because a fresh database is created from the current schema before pending
migrations run, up() has to tolerate changes that are already present.
"""

import sqlite3
from abc import ABC, abstractmethod
from typing import List


class MigrationBase(ABC):
    """
    One step of the local schema history.

    Example:
        class AddGroupLabel(MigrationBase):
            version = 3
            description = "groups.label"

            def up(self, conn):
                if 'label' not in self.column_names(conn, 'groups'):
                    conn.execute("ALTER TABLE groups ADD COLUMN label TEXT")

            def down(self, conn):
                conn.execute("ALTER TABLE groups DROP COLUMN label")
    """

    version: int
    description: str

    def __init__(self):
        cls = type(self).__name__
        version = getattr(self, 'version', None)
        if not isinstance(version, int):
            raise ValueError(f"{cls}.version must be an integer")
        if not isinstance(getattr(self, 'description', None), str):
            raise ValueError(f"{cls}.description must be a string")
        if version < 1:
            raise ValueError(f"{cls}.version must be >= 1, got {version}")

    @abstractmethod
    def up(self, conn: sqlite3.Connection) -> None:
        """Bring the schema from version - 1 to version."""

    @abstractmethod
    def down(self, conn: sqlite3.Connection) -> None:
        """Undo up()."""

    @staticmethod
    def column_names(conn: sqlite3.Connection, table: str) -> List[str]:
        """Columns of table, or [] when the table does not exist."""
        return [row[1] for row in conn.execute(f"PRAGMA table_info({table})")]

    def __repr__(self) -> str:
        return f"<Migration v{self.version}: {self.description}>"
