"""API dependencies for FastAPI route handlers.

This module provides dependency injection functions for:
- Database sessions
- Authentication (JWT issued by the identity provider)
- The notification sink
- Translating domain errors into HTTP responses
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db as get_db_session
from app.core.exceptions import MarketplaceError
from app.models.user import User
from app.services.notification_service import Notifier
from app.services.notification_service import get_notifier as get_default_notifier


# HTTP Bearer token scheme for JWT authentication
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session.

    Yields:
        AsyncSession for database operations
    """
    async for session in get_db_session():
        yield session


def get_notifier() -> Notifier:
    """Dependency to get the notification sink."""
    return get_default_notifier()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> User:
    """Dependency to get the current authenticated user from JWT token.

    The token's ``sub`` claim carries the user ID.

    Args:
        db: Database session
        credentials: HTTP Bearer credentials containing the JWT token

    Returns:
        User: The authenticated user

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired
    """
    if not credentials:
        raise _unauthorized("Not authenticated")

    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        user_id = int(payload["sub"])
    except (JWTError, KeyError, TypeError, ValueError):
        raise _unauthorized("Invalid or expired token")

    user = await db.get(User, user_id)
    if user is None:
        raise _unauthorized("Invalid or expired token")
    return user


def to_http_exception(error: MarketplaceError) -> HTTPException:
    """Map a domain error onto its HTTP status.

    Args:
        error: Error raised by a service

    Returns:
        HTTPException with ``{"code", "message", ...details}`` as detail
    """
    return HTTPException(status_code=error.status_code, detail=error.to_dict())
