"""ORM models used by the application infrastructure."""

from .user import UserModel
from .notification import NotificationEventModel

__all__ = [
    "UserModel",
    "NotificationEventModel",
]
