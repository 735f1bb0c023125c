"""
Events published by the sync engine on the EventBus.

- SyncStartedEvent: a reconciliation run begins
- SyncCompletedEvent: a run finished, successfully or not
- ConflictDetectedEvent: a ledger entry moved to conflict
- ConnectivityChangedEvent: the online/offline state flipped
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Optional, List, Dict, Any


class _EventDict:
    """JSON-ready to_dict() shared by the event dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"event_type": self.event_type}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, list):
                value = list(value)
            data[f.name] = value
        data["metadata"] = self.metadata or {}
        return data


@dataclass
class SyncStartedEvent(_EventDict):
    trigger: str  # manual | scheduled | reconnect | force_pull | force_push | resolve
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "sync.started"
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class SyncCompletedEvent(_EventDict):
    """Outcome counters of a finished run; errors are user-facing messages."""
    trigger: str
    success: bool
    synchronized: int
    conflicts: int
    errors: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "sync.completed"
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class ConflictDetectedEvent(_EventDict):
    table: str
    record_id: str
    source: str  # pull | push
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "sync.conflict_detected"
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class ConnectivityChangedEvent(_EventDict):
    online: bool
    reason: str = "signal"  # signal | probe
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "connectivity.changed"
    metadata: Optional[Dict[str, Any]] = None


__all__ = [
    "SyncStartedEvent",
    "SyncCompletedEvent",
    "ConflictDetectedEvent",
    "ConnectivityChangedEvent",
]
