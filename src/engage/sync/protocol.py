"""
Sync Protocol Data Structures

Wire contract between the Engage client and the sync server, plus the
value types the reconciler reports with.

Pull:  GET <sync_path>?since=<cursor>&limit=<n>
       -> {data: [...], last_sync: <iso>, has_more: <bool>}
Push:  POST <sync_path> {records: [{id, operation, data?, client_updated_at}]}
       -> {results: [{id, status}]}
Per-record fallback: PUT/POST/DELETE on <resource_path>[/<id>]
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
import logging

from ..storage.models import Table
from ..remote_client import ApiError
from ..utils import utc_now

logger = logging.getLogger(__name__)


class SyncProtocolError(Exception):
    """Raised when the server answers with a malformed payload."""
    pass


class TransportError(Exception):
    """A remote call failed (network error, timeout or HTTP error status)."""

    def __init__(self, message: str, error: Optional[ApiError] = None):
        super().__init__(message)
        self.error = error

    @property
    def code(self) -> int:
        return self.error.code if self.error else 0


class ReconcilerState(Enum):
    """
    Reconciler run state.

    IDLE: No run in progress
    PULLING: Fetching and applying remote changes
    PUSHING: Sending pending local changes
    RESOLVING: Applying a conflict resolution or a forced operation
    """
    IDLE = "idle"
    PULLING = "pulling"
    PUSHING = "pushing"
    RESOLVING = "resolving"


class BatchOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class BatchStatus(str, Enum):
    """Per-record outcome reported by the server."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"

    @classmethod
    def parse(cls, value: Any) -> Optional["BatchStatus"]:
        """Status for a wire value, None if unknown."""
        try:
            return cls(str(value))
        except ValueError:
            return None

    @property
    def applied(self) -> bool:
        return self in (BatchStatus.CREATED, BatchStatus.UPDATED, BatchStatus.DELETED)


class ResolutionChoice(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    MERGE = "merge"


@dataclass
class ConflictResolution:
    """
    Caller's decision for one conflicting record.

    Attributes:
        table: Domain table
        record_id: Conflicting record
        resolution: Which side to keep (or merge both)
        merged_data: Explicit merged content for MERGE; the default
                     field-wise merge is used when omitted
    """
    table: Table
    record_id: str
    resolution: ResolutionChoice
    merged_data: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        self.table = Table.parse(self.table)
        self.resolution = ResolutionChoice(self.resolution)

    @property
    def key(self) -> tuple:
        return (self.table, self.record_id)


@dataclass(frozen=True)
class TableEndpoint:
    """Server endpoints for one table."""
    table: Table
    sync_path: str
    resource_path: str
    batch: bool = True

    def record_path(self, record_id: str) -> str:
        return f"{self.resource_path}/{record_id}"


ENDPOINTS: Dict[Table, TableEndpoint] = {
    Table.PEOPLE: TableEndpoint(Table.PEOPLE, "/sync/people", "/people"),
    Table.GROUPS: TableEndpoint(Table.GROUPS, "/sync/groups", "/groups"),
    Table.PEOPLE_GROUPS: TableEndpoint(Table.PEOPLE_GROUPS, "/sync/people-groups", "/people-groups"),
    Table.NOTES: TableEndpoint(Table.NOTES, "/sync/notes", "/notes"),
    Table.ACTION_ITEMS: TableEndpoint(Table.ACTION_ITEMS, "/sync/actions", "/action-items"),
    Table.DEVICES: TableEndpoint(Table.DEVICES, "/devices", "/devices", batch=False),
}

# Pull order follows references: people and groups before what points at them
SYNC_ORDER: List[Table] = [
    Table.PEOPLE,
    Table.GROUPS,
    Table.PEOPLE_GROUPS,
    Table.NOTES,
    Table.ACTION_ITEMS,
    Table.DEVICES,
]


@dataclass
class PullPage:
    """One page of a pull response."""
    records: List[Dict[str, Any]]
    last_sync: Optional[str] = None
    has_more: bool = False

    @classmethod
    def parse(cls, payload: Any) -> "PullPage":
        """
        Parse a pull response body.

        A bare JSON list is accepted as a single final page.

        Raises:
            SyncProtocolError: If the payload has no usable data list
        """
        if isinstance(payload, list):
            return cls(records=payload)
        if not isinstance(payload, Mapping) or not isinstance(payload.get("data"), list):
            raise SyncProtocolError("Pull response has no 'data' list")
        records = [r for r in payload["data"] if isinstance(r, Mapping)]
        if len(records) != len(payload["data"]):
            logger.warning("Pull response contained non-object entries; skipped")
        return cls(
            records=records,
            last_sync=payload.get("last_sync"),
            has_more=bool(payload.get("has_more", False)),
        )


def parse_batch_results(payload: Any) -> Dict[str, Any]:
    """
    Map record id -> raw status value from a batch response.

    Raises:
        SyncProtocolError: If the payload has no results list
    """
    if not isinstance(payload, Mapping) or not isinstance(payload.get("results"), list):
        raise SyncProtocolError("Batch response has no 'results' list")
    results = {}
    for item in payload["results"]:
        if isinstance(item, Mapping) and item.get("id") is not None:
            results[str(item["id"])] = item.get("status")
    return results


@dataclass
class SyncResult:
    """
    Outcome of one reconciliation run.

    success is False only when the whole run aborted; per-record failures
    are listed in errors and leave success True.
    """
    success: bool = True
    synchronized: int = 0
    conflicts: int = 0
    errors: List[str] = field(default_factory=list)
    trigger: str = "manual"
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    @classmethod
    def aborted(cls, reason: str, trigger: str = "manual") -> "SyncResult":
        result = cls(success=False, errors=[reason], trigger=trigger)
        result.finish()
        return result

    def add_error(self, message: str) -> None:
        logger.warning(message)
        self.errors.append(message)

    def finish(self) -> "SyncResult":
        self.finished_at = utc_now()
        return self

    @property
    def duration_ms(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "synchronized": self.synchronized,
            "conflicts": self.conflicts,
            "errors": list(self.errors),
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
