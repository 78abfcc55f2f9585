"""Endpoints for streaming and replaying notification events."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from app.application.use_cases.notifications import NotificationService, parse_cursor
from app.domain.entities import User
from app.domain.errors import InvalidCursorError, StoreUnavailableError
from app.interfaces.api.dependencies import (
    get_current_active_user,
    get_notification_service,
)
from app.interfaces.api.schemas import NotificationRead, NotificationReplayResponse

router = APIRouter(prefix="/events", tags=["events"])

LAST_EVENT_ID_HEADER = "Last-Event-ID"

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _store_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Notification store unavailable",
    )


@router.get("/stream")
async def stream_events(
    request: Request,
    last_event_id: str | None = Query(
        default=None,
        alias="lastEventId",
        description="Resume cursor for clients that cannot set the Last-Event-ID header",
    ),
    current_user: User = Depends(get_current_active_user),
    service: NotificationService = Depends(get_notification_service),
) -> StreamingResponse:
    """Open a Server-Sent Events stream of the user's notifications.

    Events after the resume cursor are replayed first, then live events
    follow on the same stream.
    """

    raw_cursor = request.headers.get(LAST_EVENT_ID_HEADER)
    if raw_cursor is None:
        raw_cursor = last_event_id

    try:
        cursor = parse_cursor(raw_cursor, name=LAST_EVENT_ID_HEADER)
    except InvalidCursorError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        connection = await service.open_stream(current_user.id, cursor=cursor)
    except StoreUnavailableError as exc:
        raise _store_unavailable() from exc

    return StreamingResponse(
        service.stream(connection),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
        # Runs even when the body iterator never started.
        background=BackgroundTask(connection.close),
    )


@router.get("/replay", response_model=NotificationReplayResponse)
async def replay_events(
    after_id: str | None = Query(default=None, alias="afterId"),
    limit: str | None = Query(default=None),
    current_user: User = Depends(get_current_active_user),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationReplayResponse:
    """Return the user's events after ``afterId``, oldest first."""

    try:
        cursor = parse_cursor(after_id, name="afterId")
        page_size = parse_cursor(limit, name="limit")
    except InvalidCursorError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        events = await service.list_for_user(
            current_user.id, after_id=cursor, limit=page_size
        )
    except StoreUnavailableError as exc:
        raise _store_unavailable() from exc

    return NotificationReplayResponse(
        notifications=[NotificationRead.from_entity(event) for event in events]
    )
