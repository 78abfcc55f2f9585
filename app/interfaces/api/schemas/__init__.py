from .notification import NotificationRead, NotificationReplayResponse

__all__ = [
    "NotificationRead",
    "NotificationReplayResponse",
]
