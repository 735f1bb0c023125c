"""
Sync Ledger - durable per-record synchronization state.

One sync_status row per (table, record_id), written with upserts and never
deleted. Deleted records keep their row as a tombstone: deleted_at is set
and the hash is TOMBSTONE_HASH.

Status transitions:
- local mutation            -> pending
- confirmed round trip      -> synced
- equal timestamps, different content, or server-reported conflict -> conflict
"""

import sqlite3
import threading
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from .database import Database
from .models import DomainRecord, Table
from ..utils import utc_now

logger = logging.getLogger(__name__)

TOMBSTONE_HASH = "tombstone"
CLEARED_HASH = "cleared"


class LedgerError(Exception):
    """Raised when a ledger read or write fails."""
    pass


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    CONFLICT = "conflict"


def ledger_id(table: Table, record_id: str) -> str:
    """
    Examples:
        >>> ledger_id(Table.NOTES, "n1")
        'notes_n1'
    """
    return f"{Table.parse(table).value}_{record_id}"


@dataclass
class SyncLedgerEntry:
    """A sync_status row."""
    id: str
    table: Table
    record_id: str
    local_updated: str
    status: SyncStatus
    last_synced: Optional[str] = None
    content_hash: Optional[str] = None
    deleted_at: Optional[str] = None

    @property
    def is_tombstone(self) -> bool:
        return self.deleted_at is not None

    @property
    def never_synced(self) -> bool:
        return self.last_synced is None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SyncLedgerEntry":
        return cls(
            id=row["id"],
            table=Table.parse(row["table_name"]),
            record_id=row["record_id"],
            local_updated=row["local_updated"],
            status=SyncStatus(row["sync_status"]),
            last_synced=row["last_synced"],
            content_hash=row["hash"],
            deleted_at=row["deleted_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "table": self.table.value,
            "record_id": self.record_id,
            "local_updated": self.local_updated,
            "last_synced": self.last_synced,
            "status": self.status.value,
            "hash": self.content_hash,
            "deleted_at": self.deleted_at,
        }


class SyncLedger:
    """
    Sync-status ledger over the shared Database.

    Every method is safe to call inside Database.transaction(); the write
    then commits or rolls back together with the caller's domain mutation.

    Example:
        ledger = SyncLedger(db)
        ledger.mark_pending(Table.NOTES, "n1", note)
        for entry in ledger.list_pending():
            ...
        ledger.mark_synced(Table.NOTES, "n1", note, expected_local_updated=entry.local_updated)
    """

    def __init__(self, db: Database):
        self.db = db
        self._stamp_lock = threading.Lock()
        self._last_stamp: Optional[datetime] = None

    def _stamp(self) -> str:
        """Strictly increasing UTC timestamp with microsecond precision."""
        with self._stamp_lock:
            now = utc_now()
            if self._last_stamp is not None and now <= self._last_stamp:
                now = self._last_stamp + timedelta(microseconds=1)
            self._last_stamp = now
            return now.isoformat(timespec="microseconds").replace("+00:00", "Z")

    def _upsert(self, entry: SyncLedgerEntry) -> None:
        self.db.execute("""
            INSERT INTO sync_status
                (id, table_name, record_id, last_synced, local_updated, sync_status, hash, deleted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(table_name, record_id) DO UPDATE SET
                last_synced = excluded.last_synced,
                local_updated = excluded.local_updated,
                sync_status = excluded.sync_status,
                hash = excluded.hash,
                deleted_at = excluded.deleted_at
        """, (
            entry.id,
            entry.table.value,
            entry.record_id,
            entry.last_synced,
            entry.local_updated,
            entry.status.value,
            entry.content_hash,
            entry.deleted_at,
        ))

    def get_entry(self, table: Table, record_id: str) -> Optional[SyncLedgerEntry]:
        table = Table.parse(table)
        try:
            row = self.db.query_one(
                "SELECT * FROM sync_status WHERE table_name = ? AND record_id = ?",
                (table.value, record_id)
            )
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to read ledger entry {ledger_id(table, record_id)}: {e}") from e
        return SyncLedgerEntry.from_row(row) if row else None

    def mark_pending(self, table: Table, record_id: str,
                     record: Optional[DomainRecord] = None) -> SyncLedgerEntry:
        """
        Record a local mutation.

        Args:
            table: Domain table
            record_id: Record id
            record: Current record, or None for a local deletion (tombstone)

        Returns:
            The updated entry
        """
        table = Table.parse(table)
        stamp = self._stamp()
        try:
            with self.db.transaction():
                existing = self.get_entry(table, record_id)
                entry = SyncLedgerEntry(
                    id=ledger_id(table, record_id),
                    table=table,
                    record_id=record_id,
                    local_updated=stamp,
                    status=SyncStatus.PENDING,
                    last_synced=existing.last_synced if existing else None,
                    content_hash=record.content_hash() if record is not None else TOMBSTONE_HASH,
                    deleted_at=None if record is not None else stamp,
                )
                self._upsert(entry)
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to mark {ledger_id(table, record_id)} pending: {e}") from e
        return entry

    def mark_synced(self, table: Table, record_id: str,
                    record: Optional[DomainRecord] = None,
                    tombstone: bool = False,
                    expected_local_updated: Optional[str] = None,
                    deleted_at: Optional[str] = None) -> bool:
        """
        Record a confirmed round trip.

        Args:
            table: Domain table
            record_id: Record id
            record: Record content now agreed with the server (updates the hash)
            tombstone: Mark the entry as a synced tombstone
            expected_local_updated: local_updated value seen when the push was
                prepared; if the entry was re-marked since, nothing changes
            deleted_at: Tombstone time (defaults to now)

        Returns:
            True if the entry was written, False if a newer local mutation
            made the call a no-op
        """
        table = Table.parse(table)
        try:
            with self.db.transaction():
                existing = self.get_entry(table, record_id)
                if (expected_local_updated is not None and existing is not None
                        and existing.local_updated != expected_local_updated):
                    logger.debug(f"{ledger_id(table, record_id)} changed during push; leaving it pending")
                    return False

                stamp = self._stamp()
                if tombstone:
                    content_hash = TOMBSTONE_HASH
                    deleted = deleted_at or (existing.deleted_at if existing and existing.deleted_at else stamp)
                elif record is not None:
                    content_hash = record.content_hash()
                    deleted = None
                else:
                    content_hash = existing.content_hash if existing else None
                    deleted = existing.deleted_at if existing else None

                self._upsert(SyncLedgerEntry(
                    id=ledger_id(table, record_id),
                    table=table,
                    record_id=record_id,
                    local_updated=existing.local_updated if existing else stamp,
                    status=SyncStatus.SYNCED,
                    last_synced=stamp,
                    content_hash=content_hash,
                    deleted_at=deleted,
                ))
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to mark {ledger_id(table, record_id)} synced: {e}") from e
        return True

    def mark_conflict(self, table: Table, record_id: str) -> bool:
        """
        Flag an entry as conflicting. The record itself is untouched.

        Returns:
            True if the entry transitioned into conflict, False if it
            already was
        """
        table = Table.parse(table)
        try:
            with self.db.transaction():
                existing = self.get_entry(table, record_id)
                if existing is not None and existing.status == SyncStatus.CONFLICT:
                    return False
                if existing is None:
                    existing = SyncLedgerEntry(
                        id=ledger_id(table, record_id),
                        table=table,
                        record_id=record_id,
                        local_updated=self._stamp(),
                        status=SyncStatus.CONFLICT,
                    )
                existing.status = SyncStatus.CONFLICT
                self._upsert(existing)
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to mark {ledger_id(table, record_id)} conflict: {e}") from e
        logger.warning(f"Conflict recorded for {ledger_id(table, record_id)}")
        return True

    def mark_table_cleared(self, table: Table) -> int:
        """
        Mark every entry of a wiped table as synced and cleared.

        Cleared entries carry CLEARED_HASH and no deleted_at: nothing is
        pushed as a deletion, and a later pull still re-inserts the server's
        copy instead of treating the entry as a local tombstone.

        Returns:
            Number of entries rewritten
        """
        table = Table.parse(table)
        stamp = self._stamp()
        try:
            cursor = self.db.execute("""
                UPDATE sync_status
                SET sync_status = 'synced', hash = ?, last_synced = ?, deleted_at = NULL
                WHERE table_name = ?
            """, (CLEARED_HASH, stamp, table.value))
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to clear ledger for {table.value}: {e}") from e
        return cursor.rowcount

    def _list(self, where: str = "", params: tuple = ()) -> List[SyncLedgerEntry]:
        try:
            rows = self.db.query(
                f"SELECT * FROM sync_status {where} ORDER BY local_updated ASC, id ASC", params
            )
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to read ledger: {e}") from e
        return [SyncLedgerEntry.from_row(row) for row in rows]

    def list_pending(self, table: Optional[Table] = None) -> List[SyncLedgerEntry]:
        """Pending entries, oldest mutation first."""
        if table is None:
            return self._list("WHERE sync_status = 'pending'")
        return self._list("WHERE sync_status = 'pending' AND table_name = ?", (Table.parse(table).value,))

    def list_conflicts(self) -> List[SyncLedgerEntry]:
        return self._list("WHERE sync_status = 'conflict'")

    def list_entries(self, table: Optional[Table] = None) -> List[SyncLedgerEntry]:
        if table is None:
            return self._list()
        return self._list("WHERE table_name = ?", (Table.parse(table).value,))

    def count_pending(self) -> int:
        return self.count_by_status().get(SyncStatus.PENDING.value, 0)

    def count_by_status(self) -> Dict[str, int]:
        """Entry counts keyed by status value (every status present, zero included)."""
        counts = {status.value: 0 for status in SyncStatus}
        try:
            rows = self.db.query(
                "SELECT sync_status, COUNT(*) AS n FROM sync_status GROUP BY sync_status"
            )
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to count ledger entries: {e}") from e
        for row in rows:
            counts[row["sync_status"]] = row["n"]
        return counts
