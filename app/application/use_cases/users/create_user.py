"""Use case for creating users."""

from sqlalchemy.orm import Session

from app.domain.entities import User
from app.infrastructure.repositories import UserRepository


def create_user(
    session: Session,
    *,
    name: str,
    email: str,
    is_active: bool = True,
) -> User:
    """Create a new user ensuring unique email addresses."""

    normalized_email = email.strip().lower()
    repository = UserRepository(session)

    if repository.get_by_email(normalized_email):
        raise ValueError("Email address is already registered")

    user = User(id=None, name=name.strip(), email=normalized_email, is_active=is_active)
    return repository.create(user)
