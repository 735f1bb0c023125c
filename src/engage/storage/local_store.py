"""
Local Store - CRUD over the synchronized domain tables.

Every mutation and its ledger mark commit in one SQLite transaction:
- origin LOCAL  (user edits): ledger entry becomes pending
- origin REMOTE (applied by the reconciler): ledger entry becomes synced

Deletions are physical; the ledger keeps a tombstone entry.
"""

import sqlite3
import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .database import Database, StoreError
from .ledger import SyncLedger
from .models import DomainRecord, Table, record_type
from ..utils import now_iso

logger = logging.getLogger(__name__)


class RecordOrigin(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class LocalStore:
    """
    Domain CRUD operations for the Engage local database.

    Example:
        store = LocalStore(db, ledger)
        note = store.insert(Note(id="n1", title="1:1 with Ana"))
        store.update(Table.NOTES, "n1", {"content": "Talked about goals"})
        store.delete(Table.NOTES, "n1")
    """

    def __init__(self, db: Database, ledger: SyncLedger):
        self.db = db
        self.ledger = ledger

    def _write_row(self, conn: sqlite3.Connection, record: DomainRecord) -> None:
        row = record.to_row()
        columns = list(row.keys())
        placeholders = ", ".join("?" for _ in columns)
        assignments = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")
        conn.execute(
            f"INSERT INTO {record.TABLE.value} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {assignments}",
            [row[c] for c in columns]
        )

    def _mark(self, record: DomainRecord, origin: RecordOrigin) -> None:
        if origin == RecordOrigin.LOCAL:
            self.ledger.mark_pending(record.TABLE, record.id, record)
        else:
            self.ledger.mark_synced(record.TABLE, record.id, record)

    def save(self, record: DomainRecord, origin: RecordOrigin = RecordOrigin.LOCAL) -> DomainRecord:
        """
        Insert or replace a record.

        Local saves stamp updated_at (and created_at when missing); remote
        saves keep the server's timestamps.

        Raises:
            StoreError: If the write fails
        """
        origin = RecordOrigin(origin)
        if origin == RecordOrigin.LOCAL:
            stamp = now_iso()
            record = record.with_updates(created_at=record.created_at or stamp, updated_at=stamp)
        elif not record.updated_at:
            raise StoreError(f"Remote {record.TABLE.value} record {record.id} has no updated_at")

        try:
            with self.db.transaction() as conn:
                self._write_row(conn, record)
                self._mark(record, origin)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to save {record.TABLE.value} record {record.id}: {e}") from e

        logger.debug(f"Saved {record.TABLE.value}/{record.id} ({origin.value})")
        return record

    def insert(self, record: DomainRecord, origin: RecordOrigin = RecordOrigin.LOCAL) -> DomainRecord:
        """
        Insert a new record.

        Raises:
            StoreError: If a record with the same id already exists
        """
        if self.find_by_id(record.TABLE, record.id) is not None:
            raise StoreError(f"{record.TABLE.value} record {record.id} already exists")
        return self.save(record, origin)

    def update(self, table: Table, record_id: str, changes: Mapping[str, Any],
               origin: RecordOrigin = RecordOrigin.LOCAL) -> DomainRecord:
        """
        Apply field changes to an existing record.

        Args:
            table: Domain table
            record_id: Record id
            changes: Field values keyed by column or wire name

        Raises:
            StoreError: If the record does not exist or a value is invalid
        """
        existing = self.find_by_id(table, record_id)
        if existing is None:
            raise StoreError(f"{Table.parse(table).value} record {record_id} not found")
        merged: Dict[str, Any] = dict(existing.canonical())
        merged.update(changes)
        merged["id"] = record_id
        try:
            record = type(existing).from_wire(merged)
        except ValueError as e:
            raise StoreError(f"Invalid update for {existing.TABLE.value} record {record_id}: {e}") from e
        return self.save(record, origin)

    def delete(self, table: Table, record_id: str,
               origin: RecordOrigin = RecordOrigin.LOCAL,
               deleted_at: Optional[str] = None) -> bool:
        """
        Delete a record and leave a tombstone in the ledger.

        Returns:
            True if a row was deleted
        """
        table = Table.parse(table)
        origin = RecordOrigin(origin)
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(f"DELETE FROM {table.value} WHERE id = ?", (record_id,))
                if cursor.rowcount == 0:
                    return False
                if origin == RecordOrigin.LOCAL:
                    self.ledger.mark_pending(table, record_id, None)
                else:
                    self.ledger.mark_synced(table, record_id, tombstone=True, deleted_at=deleted_at)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete {table.value} record {record_id}: {e}") from e

        logger.debug(f"Deleted {table.value}/{record_id} ({origin.value})")
        return True

    def find_by_id(self, table: Table, record_id: str) -> Optional[DomainRecord]:
        table = Table.parse(table)
        try:
            row = self.db.query_one(f"SELECT * FROM {table.value} WHERE id = ?", (record_id,))
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read {table.value} record {record_id}: {e}") from e
        return record_type(table).from_row(row) if row else None

    def find_all(self, table: Table) -> List[DomainRecord]:
        """All records of a table, most recently updated first."""
        table = Table.parse(table)
        try:
            rows = self.db.query(f"SELECT * FROM {table.value} ORDER BY updated_at DESC, id ASC")
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read {table.value}: {e}") from e
        cls = record_type(table)
        return [cls.from_row(row) for row in rows]

    def count(self, table: Table) -> int:
        table = Table.parse(table)
        return self.db.query_one(f"SELECT COUNT(*) FROM {table.value}")[0]

    def clear_table(self, table: Table) -> int:
        """
        Remove every row of a table; its ledger entries become synced and cleared.

        Returns:
            Number of rows removed
        """
        table = Table.parse(table)
        try:
            with self.db.transaction() as conn:
                removed = conn.execute(f"DELETE FROM {table.value}").rowcount
                self.ledger.mark_table_cleared(table)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to clear {table.value}: {e}") from e
        logger.info(f"Cleared {removed} {table.value} records")
        return removed
