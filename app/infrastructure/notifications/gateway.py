"""Connection management for notification event streams."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from collections.abc import AsyncIterator, Callable, Iterable
from uuid import uuid4

from app.domain.entities import NotificationEvent

from .frames import (
    CONNECTED_COMMENT,
    HEARTBEAT_COMMENT,
    format_comment_frame,
    format_event_frame,
)

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 25.0
DEFAULT_MAX_PENDING_FRAMES = 1000


def _running_on(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


class StreamConnection:
    """One live client stream owned by a user.

    Frames are queued here and written to the transport by a single consumer,
    :meth:`frames`, so frames never interleave. ``closed`` is the cancellation
    token of the connection: once set, the connection is removed from the
    gateway and no further frames are accepted.
    """

    def __init__(
        self,
        *,
        user_id: str,
        loop: asyncio.AbstractEventLoop,
        on_close: Callable[["StreamConnection"], None],
        after_id: int = 0,
        max_pending_frames: int = DEFAULT_MAX_PENDING_FRAMES,
    ) -> None:
        self.connection_id = uuid4().hex
        self.user_id = user_id
        self.closed = asyncio.Event()
        self._loop = loop
        self._on_close = on_close
        self._max_pending_frames = max_pending_frames
        self._pending: deque[str] = deque()
        self._ready = asyncio.Event()
        self._holding_live = False
        self._held: list[NotificationEvent] = []
        self._replayed_through = after_id
        self._replayed_count = 0
        self._heartbeat_task: asyncio.Task | None = None

    @property
    def is_closed(self) -> bool:
        return self.closed.is_set()

    @property
    def last_replayed_id(self) -> int:
        """Highest event id already written by replay (or the client cursor)."""

        return self._replayed_through

    @property
    def replayed_count(self) -> int:
        return self._replayed_count

    @property
    def pending_frames(self) -> int:
        return len(self._pending)

    def replay(self, events: Iterable[NotificationEvent]) -> None:
        """Write persisted ``events`` (ascending ids) ahead of live delivery."""

        for event in events:
            if event.id <= self._replayed_through:
                continue
            self._write(format_event_frame(event), bounded=False)
            self._replayed_through = event.id
            self._replayed_count += 1

    def hold_live(self) -> None:
        """Buffer live events until :meth:`release` is called."""

        self._holding_live = True

    def release(self, events: Iterable[NotificationEvent] = ()) -> None:
        """Replay ``events``, then flush the buffered live events by id."""

        self.replay(events)
        held, self._held = self._held, []
        self._holding_live = False
        for event in sorted(held, key=lambda item: item.id):
            self.deliver(event)

    def deliver(self, event: NotificationEvent) -> None:
        """Write a live ``event``; must run on the connection's loop."""

        if self.is_closed or event.id <= self._replayed_through:
            return
        if self._holding_live:
            if len(self._held) >= self._max_pending_frames:
                self._drop_slow_consumer()
                return
            self._held.append(event)
            return
        self._write(format_event_frame(event))

    def dispatch(self, event: NotificationEvent) -> None:
        """Thread-safe variant of :meth:`deliver`."""

        if _running_on(self._loop):
            self.deliver(event)
        else:
            self._loop.call_soon_threadsafe(self.deliver, event)

    def send_comment(self, text: str) -> None:
        self._write(format_comment_frame(text))

    def close(self) -> None:
        """Set the cancellation token and tear the connection down once."""

        if self.closed.is_set():
            return
        self.closed.set()
        self._ready.set()
        self._on_close(self)

    async def frames(self) -> AsyncIterator[str]:
        """Yield queued frames in order until the connection is closed.

        Leaving the iterator for any reason (client gone, write error, server
        shutdown) closes the connection.
        """

        try:
            while True:
                while self._pending:
                    yield self._pending.popleft()
                if self.is_closed:
                    return
                self._ready.clear()
                await self._ready.wait()
        finally:
            self.close()

    def _start_heartbeat(self, interval: float) -> None:
        self._heartbeat_task = self._loop.create_task(self._heartbeat(interval))

    def _cancel_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _heartbeat(self, interval: float) -> None:
        while not self.is_closed:
            await asyncio.sleep(interval)
            self.send_comment(HEARTBEAT_COMMENT)

    def _write(self, frame: str, *, bounded: bool = True) -> None:
        if self.is_closed:
            return
        if bounded and len(self._pending) >= self._max_pending_frames:
            self._drop_slow_consumer()
            return
        self._pending.append(frame)
        self._ready.set()

    def _drop_slow_consumer(self) -> None:
        logger.warning(
            "Notification stream %s for user %s is not draining; closing it",
            self.connection_id,
            self.user_id,
        )
        self._held = []
        self.close()


class NotificationStreamGateway:
    """Manage live event streams grouped by user."""

    def __init__(
        self,
        *,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        max_pending_frames: int = DEFAULT_MAX_PENDING_FRAMES,
    ) -> None:
        self._heartbeat_interval = heartbeat_interval
        self._max_pending_frames = max_pending_frames
        self._connections: dict[str, dict[str, StreamConnection]] = {}
        self._lock = threading.Lock()

    def connect(
        self,
        user_id: str,
        replay_events: Iterable[NotificationEvent] = (),
        *,
        after_id: int = 0,
        hold_live: bool = False,
    ) -> StreamConnection:
        """Open a stream for ``user_id`` and register it for live delivery.

        The ``connected`` comment and ``replay_events`` are queued before the
        connection becomes visible to :meth:`publish_to_user`, so replayed
        frames always precede live ones. Must be called from the event loop
        that will consume :meth:`StreamConnection.frames`.
        """

        connection = StreamConnection(
            user_id=user_id,
            loop=asyncio.get_running_loop(),
            on_close=self._teardown,
            after_id=after_id,
            max_pending_frames=self._max_pending_frames,
        )
        connection.send_comment(CONNECTED_COMMENT)
        connection.replay(replay_events)
        if hold_live:
            connection.hold_live()

        with self._lock:
            self._connections.setdefault(user_id, {})[connection.connection_id] = connection
        connection._start_heartbeat(self._heartbeat_interval)

        logger.debug(
            "Notification stream %s opened for user %s",
            connection.connection_id,
            user_id,
        )
        return connection

    def publish_to_user(self, event: NotificationEvent) -> None:
        """Write ``event`` to every stream currently open for its user."""

        with self._lock:
            connections = list(self._connections.get(event.user_id, {}).values())
        for connection in connections:
            connection.dispatch(event)

    def connection_count(self, user_id: str | None = None) -> int:
        with self._lock:
            if user_id is not None:
                return len(self._connections.get(user_id, {}))
            return sum(len(connections) for connections in self._connections.values())

    def close_all(self) -> None:
        """Close every open stream, e.g. on server shutdown."""

        with self._lock:
            connections = [
                connection
                for user_connections in self._connections.values()
                for connection in user_connections.values()
            ]
        for connection in connections:
            connection.close()

    def _teardown(self, connection: StreamConnection) -> None:
        connection._cancel_heartbeat()
        with self._lock:
            user_connections = self._connections.get(connection.user_id)
            if user_connections is not None:
                user_connections.pop(connection.connection_id, None)
                if not user_connections:
                    self._connections.pop(connection.user_id, None)
        logger.debug(
            "Notification stream %s closed for user %s",
            connection.connection_id,
            connection.user_id,
        )


__all__ = ["NotificationStreamGateway", "StreamConnection"]
