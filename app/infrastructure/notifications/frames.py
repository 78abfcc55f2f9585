"""Server-Sent Events framing for notification streams."""

from __future__ import annotations

import json
from typing import Any

from app.domain.entities import NotificationEvent
from app.utils import isoformat_or_none

CONNECTED_COMMENT = "connected"
HEARTBEAT_COMMENT = "heartbeat"
REPLAY_TRUNCATED_COMMENT = "replay-truncated"


def _single_line(value: str) -> str:
    # A line break inside a field would terminate the frame early.
    return value.replace("\r", " ").replace("\n", " ")


def serialize_frame_data(event: NotificationEvent) -> dict[str, Any]:
    """Return the ``data`` document carried by an event frame."""

    return {
        "notificationId": event.id,
        "eventType": event.event_type,
        "payload": event.payload,
        "createdAt": isoformat_or_none(event.created_at),
    }


def format_event_frame(event: NotificationEvent) -> str:
    """Encode ``event`` as an ``id``/``event``/``data`` frame."""

    data = json.dumps(serialize_frame_data(event), separators=(",", ":"), default=str)
    return (
        f"id: {event.id}\n"
        f"event: {_single_line(event.event_type)}\n"
        f"data: {data}\n\n"
    )


def format_comment_frame(text: str) -> str:
    """Encode a comment-only frame that EventSource clients ignore."""

    return f": {_single_line(text)}\n\n"


__all__ = [
    "CONNECTED_COMMENT",
    "HEARTBEAT_COMMENT",
    "REPLAY_TRUNCATED_COMMENT",
    "format_comment_frame",
    "format_event_frame",
    "serialize_frame_data",
]
