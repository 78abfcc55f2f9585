"""Use case for deleting users."""

from sqlalchemy.orm import Session

from app.infrastructure.repositories import UserRepository


def delete_user(session: Session, user_id: str) -> None:
    """Delete ``user_id`` together with its notification log."""

    UserRepository(session).delete(user_id)
