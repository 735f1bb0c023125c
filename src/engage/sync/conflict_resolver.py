"""
Conflict Resolution for Engage Sync

A conflict is a record whose local and remote copies carry the same
updated_at but different content. Conflicts are never resolved silently;
the caller picks a side:

Local:  Keep the local copy, restamp its updated_at and push it.
Remote: Take the server copy.
Merge:  Field-wise merge of both copies (or caller-supplied merged data),
        written locally and pushed.

Default merge, field by field, starting from the remote copy:
- a non-empty local value replaces an empty remote value
- when both are non-empty, the longer value wins (strings and lists)
- updated_at is stamped with the merge time
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
import logging

from ..storage.models import DomainRecord
from ..utils import now_iso
from .protocol import ConflictResolution, ResolutionChoice

logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _size(value: Any) -> Optional[int]:
    if isinstance(value, (str, list, tuple, dict)):
        return len(value)
    return None


def merge_records(local: Mapping[str, Any], remote: Mapping[str, Any],
                  stamp: Optional[str] = None) -> Dict[str, Any]:
    """
    Merge two record dictionaries field by field.

    Args:
        local: Local field values (column names)
        remote: Remote field values (column names)
        stamp: updated_at for the merged record (default: now)

    Returns:
        Merged field values

    Example:
        >>> merged = merge_records({"title": "Q3 plan", "content": ""},
        ...                        {"title": "Q3", "content": "agenda"},
        ...                        stamp="2025-01-01T00:00:00.000Z")
        >>> merged["title"], merged["content"]
        ('Q3 plan', 'agenda')
    """
    merged = dict(remote)
    for key, local_value in local.items():
        if _is_empty(local_value):
            continue
        remote_value = remote.get(key)
        if _is_empty(remote_value):
            merged[key] = local_value
            continue
        local_size, remote_size = _size(local_value), _size(remote_value)
        if local_size is not None and remote_size is not None and local_size > remote_size:
            merged[key] = local_value
    merged["updated_at"] = stamp or now_iso()
    return merged


@dataclass
class ResolvedRecord:
    """
    Outcome of applying a resolution.

    Attributes:
        record: The record to keep (always written locally)
        push_remote: Whether the record must be upserted on the server
    """
    record: DomainRecord
    push_remote: bool


class ConflictResolver:
    """
    Applies a caller's ConflictResolution to a local/remote pair.

    Stateless; the reconciler owns the writes.
    """

    def resolve(self,
                resolution: ConflictResolution,
                local: Optional[DomainRecord],
                remote: Optional[DomainRecord]) -> ResolvedRecord:
        """
        Decide the surviving record for a conflict.

        Args:
            resolution: Caller's choice
            local: Local copy (None if deleted locally)
            remote: Remote copy (None if the server has none)

        Returns:
            ResolvedRecord describing what to write where

        Raises:
            ValueError: If the chosen side does not exist
        """
        choice = resolution.resolution
        logger.debug(f"Resolving {resolution.table.value}/{resolution.record_id} with {choice.value}")

        if choice == ResolutionChoice.LOCAL:
            if local is None:
                raise ValueError(f"No local copy of {resolution.table.value}/{resolution.record_id}")
            # restamped so the kept copy wins last-write-wins on other clients
            kept = local.with_updates(updated_at=now_iso())
            return ResolvedRecord(kept, push_remote=True)

        if choice == ResolutionChoice.REMOTE:
            if remote is None:
                raise ValueError(f"No remote copy of {resolution.table.value}/{resolution.record_id}")
            return ResolvedRecord(remote, push_remote=False)

        base = local or remote
        if base is None:
            raise ValueError(f"Nothing to merge for {resolution.table.value}/{resolution.record_id}")
        if resolution.merged_data is not None:
            # fields missing from merged_data keep the local (or remote) value
            data = dict(base.canonical())
            data["updated_at"] = now_iso()
            data.update(resolution.merged_data)
        else:
            data = merge_records(
                local.canonical() if local else {},
                remote.canonical() if remote else {},
            )
        data["id"] = resolution.record_id
        merged = type(base).from_wire(data)
        return ResolvedRecord(merged, push_remote=True)
