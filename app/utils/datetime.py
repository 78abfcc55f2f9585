"""Helpers for working with timezone-aware datetimes."""

from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Normalize ``value`` so it is expressed in UTC.

    SQLite drops the offset of ``DateTime(timezone=True)`` columns and hands
    back naive values. Those are stored as UTC, so they are tagged rather than
    converted.
    """

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_or_none(value: datetime | None) -> str | None:
    """Return the ISO-8601 representation of ``value`` in UTC."""

    normalized = ensure_utc(value)
    return normalized.isoformat() if normalized else None
