"""Pydantic models describing notification payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.domain.entities import NotificationEvent


class NotificationRead(BaseModel):
    """Representation of a persisted notification event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    user_id: str
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    read_at: datetime | None = None

    @classmethod
    def from_entity(cls, event: NotificationEvent) -> "NotificationRead":
        return cls(
            id=event.id,
            user_id=event.user_id,
            event_type=event.event_type,
            payload=event.payload,
            created_at=event.created_at,
            read_at=event.read_at,
        )


class NotificationReplayResponse(BaseModel):
    """Page of events returned by the replay endpoint, oldest first."""

    notifications: list[NotificationRead]


__all__ = ["NotificationRead", "NotificationReplayResponse"]
