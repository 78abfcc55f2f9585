"""Repository implementations for infrastructure layer."""

from .notification_repository import NotificationRepository, clamp_limit
from .user_repository import UserRepository

__all__ = [
    "NotificationRepository",
    "UserRepository",
    "clamp_limit",
]
