"""
Domain time utilities (pure).

Every timestamp stored on a batch or log entry is a timezone-aware UTC
datetime. Supabase returns ISO-8601 strings (sometimes with a trailing 'Z'),
so parsing and serialization live here instead of in each repository.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any


def require_utc_timestamp(name: str, value: datetime) -> None:
    """
    Enforce that a timestamp is timezone-aware with UTC offset 0.
    """

    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware (UTC)")
    if value.utcoffset() != timedelta(0):
        raise ValueError(f"{name} must be a UTC timestamp (offset 0)")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_utc_datetime(value: Any) -> datetime:
    """
    Parse a Supabase timestamp into a timezone-aware UTC datetime.

    Naive values are interpreted as UTC.
    """

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_optional_utc_datetime(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return parse_utc_datetime(value)


def to_iso_utc(dt: datetime, *, name: str = "timestamp") -> str:
    """Serialize a UTC datetime to ISO-8601 (offset 0)."""

    require_utc_timestamp(name, dt)
    return dt.astimezone(timezone.utc).isoformat()
