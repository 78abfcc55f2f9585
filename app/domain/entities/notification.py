"""Domain entity representing a persisted notification event."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class NotificationEvent:
    """Immutable entry of a user's notification log.

    ``id`` is assigned by the event store and increases strictly across all
    users, so the events of one user ordered by ``id`` are in the order they
    were persisted.
    """

    id: int
    user_id: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    read_at: datetime | None = None


__all__ = ["NotificationEvent"]
