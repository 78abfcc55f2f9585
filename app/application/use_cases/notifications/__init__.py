"""Public helpers for emitting and reading notification events."""

from .cursors import parse_cursor
from .service import NotificationService

__all__ = [
    "NotificationService",
    "parse_cursor",
]
