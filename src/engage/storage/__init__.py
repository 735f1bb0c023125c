"""
Engage storage layer: SQLite database, domain models, sync ledger, local store.
"""

from .database import Database, StoreError, StoreNotInitializedError
from .models import (
    Table,
    DomainRecord,
    Person,
    Group,
    PersonGroup,
    Note,
    ActionItem,
    Device,
    RECORD_TYPES,
    record_type,
)
from .ledger import SyncLedger, SyncLedgerEntry, SyncStatus, LedgerError, TOMBSTONE_HASH, CLEARED_HASH, ledger_id
from .local_store import LocalStore, RecordOrigin

__all__ = [
    "Database",
    "StoreError",
    "StoreNotInitializedError",
    "Table",
    "DomainRecord",
    "Person",
    "Group",
    "PersonGroup",
    "Note",
    "ActionItem",
    "Device",
    "RECORD_TYPES",
    "record_type",
    "SyncLedger",
    "SyncLedgerEntry",
    "SyncStatus",
    "LedgerError",
    "TOMBSTONE_HASH",
    "CLEARED_HASH",
    "ledger_id",
    "LocalStore",
    "RecordOrigin",
]
