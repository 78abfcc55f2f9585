"""Aggregate application use cases."""

from .notifications import NotificationService, parse_cursor
from .users import create_user, delete_user

__all__ = [
    "NotificationService",
    "parse_cursor",
    "create_user",
    "delete_user",
]
