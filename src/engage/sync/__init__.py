"""
Engage sync engine

Pull-then-push reconciliation between the local SQLite store and the
sync server, with conflict flagging, connectivity tracking and a
background scheduler.

Components:
- Reconciler: one reconciliation run at a time
- ConflictResolver: applies local/remote/merge decisions
- ConnectivityMonitor / HealthProbe: online state
- SyncScheduler: interval and reconnect triggers
- SyncService: wiring facade used by the CLI
"""

from .protocol import (
    BatchOperation,
    BatchStatus,
    ConflictResolution,
    ENDPOINTS,
    ReconcilerState,
    ResolutionChoice,
    SYNC_ORDER,
    SyncProtocolError,
    SyncResult,
    TableEndpoint,
    TransportError,
)
from .conflict_resolver import ConflictResolver, merge_records
from .reconciler import Reconciler, SYNC_IN_PROGRESS
from .connectivity import ConnectivityMonitor, HealthProbe, OutageEvent
from .scheduler import SyncScheduler
from .service import SyncService, build_sync_service, OFFLINE

__all__ = [
    "BatchOperation",
    "BatchStatus",
    "ConflictResolution",
    "ENDPOINTS",
    "ReconcilerState",
    "ResolutionChoice",
    "SYNC_ORDER",
    "SyncProtocolError",
    "SyncResult",
    "TableEndpoint",
    "TransportError",
    "ConflictResolver",
    "merge_records",
    "Reconciler",
    "SYNC_IN_PROGRESS",
    "ConnectivityMonitor",
    "HealthProbe",
    "OutageEvent",
    "SyncScheduler",
    "SyncService",
    "build_sync_service",
    "OFFLINE",
]
