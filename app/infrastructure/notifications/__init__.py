"""Realtime notification helpers for the infrastructure layer."""

from .bus import (
    BusNotificationMessage,
    LocalNotificationBus,
    NotificationBus,
    NotificationHandler,
    RedisNotificationBus,
    build_notification_bus,
    decode_bus_message,
    encode_bus_message,
)
from .frames import format_comment_frame, format_event_frame, serialize_frame_data
from .gateway import NotificationStreamGateway, StreamConnection

__all__ = [
    "BusNotificationMessage",
    "LocalNotificationBus",
    "NotificationBus",
    "NotificationHandler",
    "RedisNotificationBus",
    "build_notification_bus",
    "decode_bus_message",
    "encode_bus_message",
    "format_comment_frame",
    "format_event_frame",
    "serialize_frame_data",
    "NotificationStreamGateway",
    "StreamConnection",
]
