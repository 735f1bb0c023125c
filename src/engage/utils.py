"""
Shared utility functions for Engage
Pattern: Centralized timestamp and hashing helpers so every component
compares the same normalized forms.
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Optional

EPOCH = "1970-01-01T00:00:00.000Z"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """
    Format a datetime as ISO-8601 UTC with millisecond precision and a 'Z' suffix.

    Naive datetimes are assumed to already be UTC.

    Examples:
        >>> from datetime import datetime, timezone
        >>> format_timestamp(datetime(2025, 1, 1, tzinfo=timezone.utc))
        '2025-01-01T00:00:00.000Z'
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return format_timestamp(utc_now())


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts the 'Z' suffix, explicit offsets, naive values (treated as UTC)
    and datetime instances. Empty values return None.

    Args:
        value: String, datetime or None

    Returns:
        Aware datetime in UTC, or None

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp

    Examples:
        >>> parse_timestamp("2025-01-01T00:00:00Z").isoformat()
        '2025-01-01T00:00:00+00:00'
        >>> parse_timestamp(None) is None
        True
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: Any) -> Optional[str]:
    """Re-format any accepted timestamp value into the canonical string form."""
    parsed = parse_timestamp(value)
    return format_timestamp(parsed) if parsed else None


def canonical_json(data: Any) -> str:
    """
    Serialize data deterministically (sorted keys, no whitespace).

    Examples:
        >>> canonical_json({"b": 1, "a": [1, 2]})
        '{"a":[1,2],"b":1}'
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def hash_content(content: str) -> str:
    """
    Generate SHA-256 hash of string content.

    Args:
        content: String content to hash

    Returns:
        SHA-256 hash as hexadecimal string (64 characters)

    Examples:
        >>> h = hash_content('test')
        >>> len(h)
        64
        >>> hash_content('hello') == hash_content('hello')
        True
    """
    sha256 = hashlib.sha256()
    sha256.update(content.encode('utf-8'))
    return sha256.hexdigest()
