"""Inter-process fan-out of persisted notification events."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.config import Settings
from app.domain.entities import NotificationEvent
from app.domain.errors import BusUnavailableError
from app.utils import ensure_utc, isoformat_or_none

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[NotificationEvent], None]

_LOGGED_PAYLOAD_CHARS = 200
DEFAULT_RECONNECT_DELAY = 1.0
MAX_RECONNECT_DELAY = 30.0


class BusNotificationMessage(BaseModel):
    """Shape of an event travelling over the shared channel."""

    model_config = ConfigDict(strict=True, populate_by_name=True)

    id: int = Field(ge=1)
    user_id: str = Field(alias="userId", min_length=1)
    event_type: str = Field(alias="eventType", min_length=1)
    payload: dict[str, Any]
    created_at: datetime = Field(alias="createdAt")
    read_at: datetime | None = Field(default=None, alias="readAt")

    def to_entity(self) -> NotificationEvent:
        return NotificationEvent(
            id=self.id,
            user_id=self.user_id,
            event_type=self.event_type,
            payload=self.payload,
            created_at=ensure_utc(self.created_at),
            read_at=ensure_utc(self.read_at),
        )


def encode_bus_message(event: NotificationEvent) -> str:
    """Serialize ``event`` for the shared channel."""

    message = {
        "id": event.id,
        "userId": event.user_id,
        "eventType": event.event_type,
        "payload": event.payload,
        "createdAt": isoformat_or_none(event.created_at),
        "readAt": isoformat_or_none(event.read_at),
    }
    return json.dumps(message, separators=(",", ":"), default=str)


def decode_bus_message(raw: str | bytes) -> NotificationEvent | None:
    """Return the event carried by ``raw`` or ``None`` when it is malformed."""

    try:
        message = BusNotificationMessage.model_validate_json(raw)
    except ValidationError:
        logger.warning(
            "Dropping malformed notification bus payload: %r",
            raw[:_LOGGED_PAYLOAD_CHARS],
        )
        return None
    return message.to_entity()


class NotificationBus(ABC):
    """Fan events out to every backend instance."""

    @abstractmethod
    def register_handler(self, handler: NotificationHandler) -> None:
        """Invoke ``handler`` for every event received from the channel."""

    @abstractmethod
    async def publish(self, event: NotificationEvent) -> bool:
        """Send ``event`` to all instances.

        Returns ``False`` when the event was not transmitted and the caller
        must dispatch it locally.
        """

    async def close(self) -> None:
        """Release any connection held by the bus."""


class LocalNotificationBus(NotificationBus):
    """Single-process mode: nothing is transmitted."""

    def __init__(self) -> None:
        self._handlers: list[NotificationHandler] = []

    def register_handler(self, handler: NotificationHandler) -> None:
        self._handlers.append(handler)

    async def publish(self, event: NotificationEvent) -> bool:
        return False


class RedisNotificationBus(NotificationBus):
    """Redis pub/sub bus shared by every backend instance.

    Each process keeps one publisher client and one subscription. The
    publishing process receives its own messages through that subscription,
    which is the only path by which they reach its local connections. A lost
    subscription is restored in the background, retrying with a doubling
    delay capped at ``MAX_RECONNECT_DELAY`` until it succeeds or the bus is
    closed.
    """

    def __init__(
        self,
        redis_url: str,
        channel: str,
        *,
        client_factory: Callable[[], Any] | None = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
    ) -> None:
        self._channel = channel
        self._client_factory = client_factory or (
            lambda: Redis.from_url(redis_url, decode_responses=True)
        )
        self._handlers: list[NotificationHandler] = []
        self._publisher: Any = None
        self._subscriber: Any = None
        self._pubsub: Any = None
        self._listener: asyncio.Task | None = None
        self._start_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._reconnect_delay = reconnect_delay
        self._started = False
        self._closed = False

    @property
    def started(self) -> bool:
        return self._started

    def register_handler(self, handler: NotificationHandler) -> None:
        self._handlers.append(handler)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Without a running loop the connection is opened by the first publish.
            return
        self._spawn(loop, self._start_in_background())

    async def publish(self, event: NotificationEvent) -> bool:
        await self._ensure_started()
        try:
            await self._publisher.publish(self._channel, encode_bus_message(event))
        except (RedisError, OSError) as exc:
            raise BusUnavailableError(
                f"Could not publish to channel {self._channel}"
            ) from exc
        return True

    async def close(self) -> None:
        self._closed = True
        background, self._background = self._background, set()
        for task in background:
            task.cancel()
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
        await self._release_clients()
        self._started = False

    def _spawn(self, loop: asyncio.AbstractEventLoop, coro) -> None:
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _start_in_background(self) -> None:
        try:
            await self._ensure_started()
        except BusUnavailableError:
            logger.exception("Notification bus could not subscribe to %s", self._channel)

    async def _resubscribe(self) -> None:
        delay = self._reconnect_delay
        while not self._closed and not self._started:
            await asyncio.sleep(delay)
            if self._closed:
                return
            try:
                await self._ensure_started()
            except BusUnavailableError:
                delay = min(delay * 2, MAX_RECONNECT_DELAY)
                logger.warning(
                    "Notification bus still cannot reach %s; retrying in %.1fs",
                    self._channel,
                    delay,
                )
            else:
                logger.info("Notification bus resubscribed channel=%s", self._channel)

    async def _ensure_started(self) -> None:
        if self._started:
            return
        task = self._start_task
        if task is None:
            task = asyncio.ensure_future(self._connect())
            self._start_task = task
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and self._start_task is task:
                self._start_task = None

    async def _connect(self) -> None:
        publisher = self._client_factory()
        subscriber = self._client_factory()
        pubsub = subscriber.pubsub()
        try:
            await publisher.ping()
            await pubsub.subscribe(self._channel)
        except (RedisError, OSError) as exc:
            await _close_quietly(pubsub, subscriber, publisher)
            raise BusUnavailableError(
                f"Could not subscribe to channel {self._channel}"
            ) from exc

        if self._closed:
            await _close_quietly(pubsub, subscriber, publisher)
            raise BusUnavailableError(f"Bus for channel {self._channel} is closed")

        self._publisher = publisher
        self._subscriber = subscriber
        self._pubsub = pubsub
        self._listener = asyncio.create_task(self._listen(pubsub))
        self._started = True
        logger.info("Notification bus subscribed channel=%s", self._channel)

    async def _listen(self, pubsub: Any) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                self._handle_payload(message.get("data"))
        except asyncio.CancelledError:
            raise
        except (RedisError, OSError):
            logger.exception("Notification bus lost its subscription to %s", self._channel)
            self._started = False
            await self._release_clients()
            if not self._closed:
                self._spawn(asyncio.get_running_loop(), self._resubscribe())

    def _handle_payload(self, raw: Any) -> None:
        if not isinstance(raw, (str, bytes)):
            logger.warning("Dropping non-text notification bus payload: %r", raw)
            return
        event = decode_bus_message(raw)
        if event is None:
            return
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Notification bus handler failed for event id=%s", event.id
                )

    async def _release_clients(self) -> None:
        pubsub, subscriber, publisher = self._pubsub, self._subscriber, self._publisher
        self._pubsub = self._subscriber = self._publisher = None
        await _close_quietly(pubsub, subscriber, publisher)


async def _close_quietly(*clients: Any) -> None:
    for client in clients:
        if client is None:
            continue
        try:
            await client.aclose()
        except (RedisError, OSError):
            logger.debug("Ignoring error while closing redis client", exc_info=True)


def build_notification_bus(settings: Settings) -> NotificationBus:
    """Return the bus variant selected by ``settings.event_bus_mode``."""

    if settings.event_bus_mode == "redis":
        return RedisNotificationBus(settings.redis_url, settings.redis_event_channel)
    return LocalNotificationBus()


__all__ = [
    "BusNotificationMessage",
    "LocalNotificationBus",
    "NotificationBus",
    "NotificationHandler",
    "RedisNotificationBus",
    "build_notification_bus",
    "decode_bus_message",
    "encode_bus_message",
]
