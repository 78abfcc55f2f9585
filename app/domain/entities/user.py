"""Domain entity representing a user."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """Authenticated subject that owns a notification log."""

    id: str | None
    name: str
    email: str
    is_active: bool = True
    created_at: datetime | None = None
