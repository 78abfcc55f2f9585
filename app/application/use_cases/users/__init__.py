"""Use cases for managing users."""

from .create_user import create_user
from .delete_user import delete_user

__all__ = [
    "create_user",
    "delete_user",
]
