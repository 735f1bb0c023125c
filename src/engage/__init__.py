"""
Engage - offline-first CRM client with server synchronization.

People, groups, notes, action items and devices live in a local SQLite
store; every local mutation is tracked in a sync ledger and reconciled with
the Engage sync server (pull then push, last-write-wins, explicit conflicts).
"""

__version__ = "0.1.0"

from .config import EngageConfig, ConfigError, load_config
from .event_bus import EventBus
from .remote_client import ApiError, ApiResponse, RemoteClient
from .storage import (
    ActionItem,
    Database,
    Device,
    Group,
    LocalStore,
    Note,
    Person,
    PersonGroup,
    RecordOrigin,
    StoreError,
    StoreNotInitializedError,
    SyncLedger,
    SyncStatus,
    Table,
)
from .sync import (
    ConflictResolution,
    ConnectivityMonitor,
    Reconciler,
    ResolutionChoice,
    SyncResult,
    SyncScheduler,
    SyncService,
    build_sync_service,
)

__all__ = [
    "__version__",
    "EngageConfig",
    "ConfigError",
    "load_config",
    "EventBus",
    "ApiError",
    "ApiResponse",
    "RemoteClient",
    "ActionItem",
    "Database",
    "Device",
    "Group",
    "LocalStore",
    "Note",
    "Person",
    "PersonGroup",
    "RecordOrigin",
    "StoreError",
    "StoreNotInitializedError",
    "SyncLedger",
    "SyncStatus",
    "Table",
    "ConflictResolution",
    "ConnectivityMonitor",
    "Reconciler",
    "ResolutionChoice",
    "SyncResult",
    "SyncScheduler",
    "SyncService",
    "build_sync_service",
]
