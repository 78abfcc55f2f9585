"""Persistence helpers for the notification event log."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.entities import NotificationEvent
from app.domain.errors import RecipientNotFoundError, StoreUnavailableError
from app.infrastructure.models import NotificationEventModel, UserModel
from app.utils import ensure_utc, now_utc

DEFAULT_LIMIT = 100
MAX_LIMIT = 500


def clamp_limit(
    limit: int | None, *, default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT
) -> int:
    """Return ``limit`` bounded to ``[1, maximum]``, or ``default`` when unset."""

    if limit is None:
        limit = default
    return max(1, min(limit, maximum))


class NotificationRepository:
    """Append-only access to :class:`NotificationEvent` rows."""

    def __init__(
        self,
        session: Session,
        *,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
    ) -> None:
        self.session = session
        self.default_limit = default_limit
        self.max_limit = max_limit

    def append(
        self, user_id: str, event_type: str, payload: dict[str, Any] | None = None
    ) -> NotificationEvent:
        """Persist a new event for ``user_id`` and return it with its ``id``."""

        try:
            # Appends for the same user are serialized on the user row so that
            # their ids become visible in commit order.
            owner = self.session.execute(
                select(UserModel.id).where(UserModel.id == user_id).with_for_update()
            ).scalar_one_or_none()
            if owner is None:
                self.session.rollback()
                raise RecipientNotFoundError(user_id)

            model = NotificationEventModel(
                user_id=user_id,
                event_type=event_type,
                payload=dict(payload or {}),
                created_at=now_utc(),
            )
            self.session.add(model)
            self.session.commit()
            self.session.refresh(model)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreUnavailableError("Could not append notification event") from exc
        return self._to_entity(model)

    def list_for_user(
        self,
        user_id: str,
        *,
        after_id: int | None = 0,
        limit: int | None = None,
    ) -> list[NotificationEvent]:
        """Return the events of ``user_id`` with ``id > after_id``, oldest first."""

        bounded = clamp_limit(limit, default=self.default_limit, maximum=self.max_limit)
        statement = (
            select(NotificationEventModel)
            .where(NotificationEventModel.user_id == user_id)
            .where(NotificationEventModel.id > (after_id or 0))
            .order_by(NotificationEventModel.id.asc())
            .limit(bounded)
        )
        try:
            models = self.session.execute(statement).scalars().all()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreUnavailableError("Could not list notification events") from exc
        return [self._to_entity(model) for model in models]

    @staticmethod
    def _to_entity(model: NotificationEventModel) -> NotificationEvent:
        return NotificationEvent(
            id=model.id,
            user_id=model.user_id,
            event_type=model.event_type,
            payload=dict(model.payload or {}),
            created_at=ensure_utc(model.created_at),
            read_at=ensure_utc(model.read_at),
        )


__all__ = ["NotificationRepository", "clamp_limit", "DEFAULT_LIMIT", "MAX_LIMIT"]
