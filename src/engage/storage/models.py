"""
Domain record models for the Engage local store.

Every synchronized table has a dataclass subclass of DomainRecord. The
record's FIELDS schema is the single place that maps storage columns
(snake_case) to wire names (camelCase for people, snake_case elsewhere) and
decides how each value is normalized.

Values move between three shapes:
- row:   what SQLite stores (JSON text for lists, 0/1 for booleans)
- wire:  what the sync server sends and accepts
- canonical: normalized content used for hashing and comparison
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Type

from ..utils import canonical_json, hash_content, normalize_timestamp, parse_timestamp


class Table(str, Enum):
    """Closed set of synchronized domain tables, in pull order."""
    PEOPLE = "people"
    GROUPS = "groups"
    PEOPLE_GROUPS = "people_groups"
    NOTES = "notes"
    ACTION_ITEMS = "action_items"
    DEVICES = "devices"

    @classmethod
    def parse(cls, value: Any) -> "Table":
        """
        Resolve a table from its name (or a Table).

        Raises:
            ValueError: If the name is not a synchronized table
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace("-", "_"))
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(f"Unknown table '{value}'. Valid tables: {valid}") from None


class FieldKind(str, Enum):
    TEXT = "text"
    INT = "int"
    BOOL = "bool"
    TIMESTAMP = "timestamp"
    JSON_LIST = "json_list"
    JSON = "json"  # opaque JSON value, copied as-is


@dataclass(frozen=True)
class FieldSpec:
    """Schema entry for one record field."""
    name: str
    kind: FieldKind = FieldKind.TEXT
    wire: Optional[str] = None  # explicit wire name; derived from name when None


def camel_case(name: str) -> str:
    """
    Examples:
        >>> camel_case("github_username")
        'githubUsername'
    """
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _normalize(kind: FieldKind, value: Any) -> Any:
    """Coerce a wire or row value into its canonical Python form."""
    if kind == FieldKind.JSON:
        return value
    if kind == FieldKind.JSON_LIST:
        if value is None or value == "":
            return []
        if isinstance(value, str):
            value = json.loads(value)
        if not isinstance(value, list):
            raise ValueError(f"Expected a list, got {type(value).__name__}")
        return value
    if value is None:
        return None
    if kind == FieldKind.TIMESTAMP:
        return normalize_timestamp(value)
    if kind == FieldKind.BOOL:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes")
        return bool(value)
    if kind == FieldKind.INT:
        return int(value)
    return str(value)


BASE_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("id"),
    FieldSpec("created_at", FieldKind.TIMESTAMP),
    FieldSpec("updated_at", FieldKind.TIMESTAMP),
)


@dataclass
class DomainRecord:
    """
    Base class for synchronized records.

    Subclasses set TABLE and FIELDS (their own columns, excluding id,
    created_at and updated_at which every record owns).
    """
    id: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    TABLE: ClassVar[Table]
    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = ()
    CAMEL_CASE_WIRE: ClassVar[bool] = False

    @classmethod
    def schema(cls) -> Tuple[FieldSpec, ...]:
        return BASE_FIELDS + cls.FIELDS

    @classmethod
    def columns(cls) -> List[str]:
        return [spec.name for spec in cls.schema()]

    @classmethod
    def wire_name(cls, spec: FieldSpec) -> str:
        if spec.wire:
            return spec.wire
        return camel_case(spec.name) if cls.CAMEL_CASE_WIRE else spec.name

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DomainRecord":
        """Build a record from a SQLite row (sqlite3.Row or dict)."""
        keys = row.keys()
        values = {}
        for spec in cls.schema():
            raw = row[spec.name] if spec.name in keys else None
            if spec.kind == FieldKind.JSON and isinstance(raw, str):
                raw = json.loads(raw)
            values[spec.name] = _normalize(spec.kind, raw)
        return cls(**values)

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any]) -> "DomainRecord":
        """
        Build a record from a server payload.

        Accepts both the wire name and the column name of each field; unknown
        keys (including deleted_at) are ignored.

        Raises:
            ValueError: If the payload has no id or a value cannot be coerced
        """
        values = {}
        for spec in cls.schema():
            wire = cls.wire_name(spec)
            if wire in payload:
                raw = payload[wire]
            else:
                raw = payload.get(spec.name)
            values[spec.name] = _normalize(spec.kind, raw)
        if not values.get("id"):
            raise ValueError(f"{cls.TABLE.value} payload has no id")
        return cls(**values)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DomainRecord":
        """Alias of from_wire for user-supplied dictionaries."""
        return cls.from_wire(data)

    def canonical(self) -> Dict[str, Any]:
        """All schema fields keyed by column name, normalized."""
        return {spec.name: _normalize(spec.kind, getattr(self, spec.name)) for spec in self.schema()}

    def content_hash(self) -> str:
        """SHA-256 over the sorted-key JSON of canonical()."""
        return hash_content(canonical_json(self.canonical()))

    def to_row(self) -> Dict[str, Any]:
        """Column -> value mapping ready for SQLite parameters."""
        canonical = self.canonical()
        row = {}
        for spec in self.schema():
            value = canonical[spec.name]
            if value is not None and spec.kind in (FieldKind.JSON_LIST, FieldKind.JSON):
                value = json.dumps(value)
            elif value is not None and spec.kind == FieldKind.BOOL:
                value = int(value)
            row[spec.name] = value
        return row

    def to_wire(self) -> Dict[str, Any]:
        """Wire name -> value mapping for the sync server."""
        canonical = self.canonical()
        return {self.wire_name(spec): canonical[spec.name] for spec in self.schema()}

    def to_dict(self) -> Dict[str, Any]:
        return self.canonical()

    @property
    def updated_at_dt(self) -> Optional[datetime]:
        return parse_timestamp(self.updated_at)

    def with_updates(self, **changes: Any) -> "DomainRecord":
        """Copy of this record with the given fields replaced."""
        return replace(self, **changes)


@dataclass
class Person(DomainRecord):
    user_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    job_description: Optional[str] = None
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    github_username: Optional[str] = None
    tags: List[Any] = field(default_factory=list)
    group_id: Optional[str] = None

    TABLE: ClassVar[Table] = Table.PEOPLE
    CAMEL_CASE_WIRE: ClassVar[bool] = True
    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = (
        FieldSpec("user_id"),
        FieldSpec("first_name"),
        FieldSpec("last_name"),
        FieldSpec("job_description"),
        FieldSpec("avatar_url"),
        FieldSpec("phone"),
        FieldSpec("email"),
        FieldSpec("github_username"),
        FieldSpec("tags", FieldKind.JSON_LIST),
        FieldSpec("group_id"),
    )


@dataclass
class Group(DomainRecord):
    user_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    tags: List[Any] = field(default_factory=list)
    color: Optional[str] = None
    member_count: Optional[int] = None

    TABLE: ClassVar[Table] = Table.GROUPS
    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = (
        FieldSpec("user_id"),
        FieldSpec("name"),
        FieldSpec("description"),
        FieldSpec("tags", FieldKind.JSON_LIST),
        FieldSpec("color"),
        FieldSpec("member_count", FieldKind.INT),
    )


@dataclass
class PersonGroup(DomainRecord):
    person_id: Optional[str] = None
    group_id: Optional[str] = None

    TABLE: ClassVar[Table] = Table.PEOPLE_GROUPS
    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = (
        FieldSpec("person_id"),
        FieldSpec("group_id"),
    )


@dataclass
class Note(DomainRecord):
    user_id: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    type: Optional[str] = None
    person_id: Optional[str] = None
    group_id: Optional[str] = None
    tags: List[Any] = field(default_factory=list)
    encrypted: Optional[bool] = None
    encrypted_content: Optional[str] = None
    content_iv: Optional[str] = None
    device_keys: Any = None

    TABLE: ClassVar[Table] = Table.NOTES
    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = (
        FieldSpec("user_id"),
        FieldSpec("title"),
        FieldSpec("content"),
        FieldSpec("type"),
        FieldSpec("person_id"),
        FieldSpec("group_id"),
        FieldSpec("tags", FieldKind.JSON_LIST),
        FieldSpec("encrypted", FieldKind.BOOL),
        FieldSpec("encrypted_content"),
        FieldSpec("content_iv"),
        FieldSpec("device_keys", FieldKind.JSON),
    )


@dataclass
class ActionItem(DomainRecord):
    user_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assignee_id: Optional[str] = None
    assignee_name: Optional[str] = None
    due_date: Optional[str] = None
    person_id: Optional[str] = None
    group_id: Optional[str] = None
    note_id: Optional[str] = None
    encrypted_content: Optional[str] = None
    encrypted_keys: Any = None
    iv: Optional[str] = None
    completed_at: Optional[str] = None

    TABLE: ClassVar[Table] = Table.ACTION_ITEMS
    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = (
        FieldSpec("user_id"),
        FieldSpec("title"),
        FieldSpec("description"),
        FieldSpec("status"),
        FieldSpec("priority"),
        FieldSpec("assignee_id"),
        FieldSpec("assignee_name"),
        FieldSpec("due_date", FieldKind.TIMESTAMP),
        FieldSpec("person_id"),
        FieldSpec("group_id"),
        FieldSpec("note_id"),
        FieldSpec("encrypted_content"),
        FieldSpec("encrypted_keys", FieldKind.JSON),
        FieldSpec("iv"),
        FieldSpec("completed_at", FieldKind.TIMESTAMP),
    )


@dataclass
class Device(DomainRecord):
    user_id: Optional[str] = None
    device_name: Optional[str] = None
    device_type: Optional[str] = None
    platform: Optional[str] = None
    version: Optional[str] = None
    trusted: Optional[bool] = None
    last_used: Optional[str] = None

    TABLE: ClassVar[Table] = Table.DEVICES
    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = (
        FieldSpec("user_id"),
        FieldSpec("device_name"),
        FieldSpec("device_type"),
        FieldSpec("platform"),
        FieldSpec("version"),
        FieldSpec("trusted", FieldKind.BOOL),
        FieldSpec("last_used", FieldKind.TIMESTAMP),
    )


RECORD_TYPES: Dict[Table, Type[DomainRecord]] = {
    Table.PEOPLE: Person,
    Table.GROUPS: Group,
    Table.PEOPLE_GROUPS: PersonGroup,
    Table.NOTES: Note,
    Table.ACTION_ITEMS: ActionItem,
    Table.DEVICES: Device,
}


def record_type(table: Any) -> Type[DomainRecord]:
    """Record class for a table name or Table."""
    return RECORD_TYPES[Table.parse(table)]
