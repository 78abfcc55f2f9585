"""Publish, persist and stream notification events."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from functools import partial
from typing import Any

import anyio
from anyio import from_thread, to_thread
from sqlalchemy.orm import Session

from app.config import Settings
from app.domain.entities import NotificationEvent
from app.domain.errors import BusUnavailableError, StoreUnavailableError
from app.infrastructure.notifications import (
    NotificationBus,
    NotificationStreamGateway,
    StreamConnection,
)
from app.infrastructure.notifications.frames import REPLAY_TRUNCATED_COMMENT
from app.infrastructure.repositories import NotificationRepository

logger = logging.getLogger(__name__)


class NotificationService:
    """Entry point used by producers and by the event routes.

    Events are persisted first; live delivery goes through the bus when it
    transmits and falls back to the local gateway when it does not. An event
    is never dispatched locally after the bus accepted it, because this
    process receives it back through its own subscription.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        bus: NotificationBus,
        gateway: NotificationStreamGateway,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._bus = bus
        self._gateway = gateway
        self._settings = settings
        bus.register_handler(gateway.publish_to_user)

    @property
    def gateway(self) -> NotificationStreamGateway:
        return self._gateway

    async def publish_to_user(
        self, user_id: str, event_type: str, payload: dict[str, Any] | None = None
    ) -> NotificationEvent:
        """Persist an event for ``user_id`` and push it to live streams."""

        event = await to_thread.run_sync(
            partial(self._append, user_id, event_type, payload or {})
        )

        try:
            transmitted = await self._bus.publish(event)
        except BusUnavailableError:
            logger.warning(
                "Notification bus unavailable; dispatching event id=%s locally",
                event.id,
                exc_info=True,
            )
            transmitted = False

        if not transmitted:
            self._gateway.publish_to_user(event)
        return event

    def publish_to_user_sync(
        self, user_id: str, event_type: str, payload: dict[str, Any] | None = None
    ) -> NotificationEvent:
        """Variant of :meth:`publish_to_user` for code running in a worker thread."""

        return from_thread.run(self.publish_to_user, user_id, event_type, payload)

    async def list_for_user(
        self,
        user_id: str,
        *,
        after_id: int | None = None,
        limit: int | None = None,
    ) -> list[NotificationEvent]:
        """Return the events of ``user_id`` after ``after_id``, oldest first."""

        try:
            with anyio.fail_after(self._settings.store_timeout_seconds):
                return await to_thread.run_sync(
                    partial(self._list, user_id, after_id=after_id, limit=limit),
                    abandon_on_cancel=True,
                )
        except TimeoutError as exc:
            raise StoreUnavailableError(
                "Timed out while reading notification events"
            ) from exc

    async def open_stream(
        self, user_id: str, *, cursor: int | None = None
    ) -> StreamConnection:
        """Load the first replay page and register a stream for ``user_id``.

        Store failures propagate before anything is registered, so the caller
        can reject the request before opening the response.
        """

        after_id = cursor or 0
        first_page = await self.list_for_user(
            user_id,
            after_id=after_id,
            limit=min(
                self._settings.stream_replay_page_size,
                self._settings.stream_replay_max_events,
            ),
        )
        return self._gateway.connect(
            user_id, first_page, after_id=after_id, hold_live=True
        )

    async def complete_replay(self, connection: StreamConnection) -> None:
        """Replay the rest of the backlog, then switch the stream to live.

        Events persisted between the first replay page and the registration
        of the connection are picked up here, so the stream has no gap. When
        events remain after ``stream_replay_max_events`` were replayed the
        stream is ended after the replayed frames; the client reconnects from
        its advanced cursor. A backlog of exactly that size goes live.
        """

        page_size = min(
            self._settings.stream_replay_page_size,
            self._settings.notification_max_limit,
        )
        max_events = self._settings.stream_replay_max_events
        try:
            while not connection.is_closed:
                remaining = max_events - connection.replayed_count
                if remaining <= 0:
                    if await self._has_backlog(connection):
                        connection.send_comment(REPLAY_TRUNCATED_COMMENT)
                        connection.close()
                        return
                    break
                requested = min(page_size, remaining)
                page = await self.list_for_user(
                    connection.user_id,
                    after_id=connection.last_replayed_id,
                    limit=requested,
                )
                connection.replay(page)
                if len(page) < requested:
                    break
        except StoreUnavailableError:
            logger.warning(
                "Replay failed for notification stream %s; closing it",
                connection.connection_id,
                exc_info=True,
            )
            connection.close()
            return
        if not connection.is_closed:
            connection.release()

    async def stream(self, connection: StreamConnection) -> AsyncIterator[str]:
        """Yield the frames of ``connection`` for the HTTP response body."""

        try:
            await self.complete_replay(connection)
            async for frame in connection.frames():
                yield frame
        finally:
            connection.close()

    async def _has_backlog(self, connection: StreamConnection) -> bool:
        remaining = await self.list_for_user(
            connection.user_id, after_id=connection.last_replayed_id, limit=1
        )
        return bool(remaining)

    def _append(
        self, user_id: str, event_type: str, payload: dict[str, Any]
    ) -> NotificationEvent:
        with self._session_factory() as session:
            return self._repository(session).append(user_id, event_type, payload)

    def _list(
        self, user_id: str, *, after_id: int | None, limit: int | None
    ) -> list[NotificationEvent]:
        with self._session_factory() as session:
            return self._repository(session).list_for_user(
                user_id, after_id=after_id, limit=limit
            )

    def _repository(self, session: Session) -> NotificationRepository:
        return NotificationRepository(
            session,
            default_limit=self._settings.notification_default_limit,
            max_limit=self._settings.notification_max_limit,
        )


__all__ = ["NotificationService"]
