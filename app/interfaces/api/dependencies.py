"""FastAPI dependency utilities."""

from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.application.use_cases.notifications import NotificationService
from app.domain.entities import User
from app.infrastructure.database import SessionLocal
from app.infrastructure.repositories import UserRepository
from app.infrastructure.security import decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Invalid authentication token") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def resolve_current_user(token: str, db: Session) -> User:
    """Resolve the authenticated user for the provided token."""

    try:
        payload = decode_access_token(token)
    except ValueError as exc:
        raise _unauthorized() from exc

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise _unauthorized()

    user = UserRepository(db).get(user_id)
    if user is None:
        raise _unauthorized()
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    token: str | None = Query(
        default=None,
        description="Access token for clients that cannot send an Authorization header",
    ),
) -> User:
    """Return the authenticated user from the bearer header or ``token`` query."""

    raw_token = credentials.credentials if credentials else token
    if not raw_token:
        raise _unauthorized("Missing authorization header")

    # Streaming responses outlive the request scope, so the lookup uses its
    # own short-lived session instead of a request-scoped one.
    with SessionLocal() as db:
        return resolve_current_user(raw_token, db)


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    """Ensure the authenticated user is active."""

    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active",
        )
    return current_user


def get_notification_service(request: Request) -> NotificationService:
    """Return the notification service built during application startup."""

    return request.app.state.notification_service
