"""SQLAlchemy model for the persisted notification event log."""

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, Integer, JSON, String
from sqlalchemy.orm import relationship

from app.infrastructure.database import Base
from app.utils import now_utc

# SQLite only auto-increments a column declared exactly as INTEGER PRIMARY KEY.
EventIdType = BigInteger().with_variant(Integer(), "sqlite")


class NotificationEventModel(Base):
    """Append-only row of the per-user notification log."""

    __tablename__ = "notification_event"
    __table_args__ = (
        Index("ix_notification_event_user_id_id", "user_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = Column(EventIdType, primary_key=True, autoincrement=True)
    user_id = Column(
        String(36),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    read_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("UserModel", back_populates="notification_events")


__all__ = ["NotificationEventModel"]
