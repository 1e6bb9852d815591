import structlog
from fastapi import Depends, Query, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import AuthError, PermissionDenied
from app.core.security import decode_token
from app.db.session import get_db
from app.models.user import User, UserRole

logger = structlog.get_logger()


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization") or ""
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError()
    return token.strip()


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """Get current authenticated user from the bearer token."""
    payload = decode_token(_bearer_token(request))

    user_id = payload.get("sub")
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise AuthError("Invalid authentication credentials")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise AuthError("Invalid authentication credentials")

    if not user.is_active:
        raise PermissionDenied("Account is inactive")

    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


def require_admin(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> User:
    if current_user.role != UserRole.ADMIN:
        logger.warning(
            "admin_access_denied",
            action=f"{request.method} {request.url.path}",
            user_id=current_user.id,
        )
        raise PermissionDenied()

    logger.info(
        "admin_action",
        action=f"{request.method} {request.url.path}",
        admin_user_id=current_user.id,
    )
    return current_user


class Pagination:
    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    ):
        self.page = page
        self.limit = limit
