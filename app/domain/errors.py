"""Exceptions raised by the notification delivery core."""


class NotificationError(Exception):
    """Base class for notification delivery failures."""


class StoreUnavailableError(NotificationError):
    """The event store could not be reached or the statement failed."""


class RecipientNotFoundError(NotificationError, LookupError):
    """An event was appended for a user that does not exist."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class BusUnavailableError(NotificationError):
    """The distributed notification channel is unreachable."""


class InvalidCursorError(NotificationError, ValueError):
    """A resume cursor or pagination value is not a non-negative integer."""


__all__ = [
    "NotificationError",
    "StoreUnavailableError",
    "RecipientNotFoundError",
    "BusUnavailableError",
    "InvalidCursorError",
]
