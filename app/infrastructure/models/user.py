"""SQLAlchemy model for the user table."""

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship

from app.infrastructure.database import Base
from app.utils import now_utc


def _generate_user_id() -> str:
    return str(uuid4())


class UserModel(Base):
    """Database representation of the authenticated subject."""

    __tablename__ = "user"

    id = Column(String(36), primary_key=True, default=_generate_user_id)
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    notification_events = relationship(
        "NotificationEventModel",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


__all__ = ["UserModel"]
