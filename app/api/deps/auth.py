"""JWT validation and user authentication dependencies.

Bearer tokens are issued by the auth service and signed with a shared HS256
secret. This module only verifies them and loads the matching user; it never
creates accounts.
"""

import logging
import uuid as uuid_pkg
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import get_db
from app.core.exceptions import ForbiddenError
from app.domain import user_ops
from app.models.user import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> uuid_pkg.UUID:
    """Verify a bearer token and return the user ID from its `sub` claim.

    Raises JWTError or ValueError if the token is invalid.
    """
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
    )
    user_id_str: str | None = payload.get("sub")
    if user_id_str is None:
        raise ValueError("Token has no subject")
    return uuid_pkg.UUID(user_id_str)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Validate the bearer token and return the current user."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    try:
        user_id = decode_access_token(credentials.credentials)
    except (JWTError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from None

    user = await user_ops.get_by_id(db, user_id)
    if not user:
        logger.warning(f"Valid token for unknown user {user_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


async def require_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Require the current user to be an admin.

    Returns the user if authorized, raises 403 otherwise.
    """
    if not current_user.is_admin:
        raise ForbiddenError("Admin access required")
    return current_user


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(require_admin)]
