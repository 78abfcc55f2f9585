"""Domain entities exposed by the application."""

from .notification import NotificationEvent
from .user import User

__all__ = [
    "NotificationEvent",
    "User",
]
