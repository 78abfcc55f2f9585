"""Parsing of resume cursors and pagination values supplied by clients."""

from __future__ import annotations

from app.domain.errors import InvalidCursorError

# Event ids are stored as signed 64-bit integers.
MAX_CURSOR = 2**63 - 1


def parse_cursor(value: str | None, *, name: str = "cursor") -> int | None:
    """Return ``value`` as a non-negative integer, or ``None`` when absent.

    A malformed value is rejected instead of being read as ``0``: replaying
    from the wrong position would make the client believe it has seen events
    it never received.
    """

    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if not text.isascii() or not text.isdigit():
        raise InvalidCursorError(f"{name} must be a non-negative integer")
    parsed = int(text)
    if parsed > MAX_CURSOR:
        raise InvalidCursorError(f"{name} must not exceed {MAX_CURSOR}")
    return parsed


__all__ = ["MAX_CURSOR", "parse_cursor"]
