"""
FastAPI dependencies for authentication.

Provides ``db_session``, ``get_current_user_id`` and ``require_admin``,
used across all protected routes.
"""

from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from auth.jwt import verify_token
from database.helpers import to_uuid
from database.models import User
from database.session import get_db_session

_bearer_scheme = HTTPBearer()


async def db_session(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session for route handlers."""
    yield session


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """
    Extract and verify the Bearer token, returning the authenticated
    ``user_id`` (UUID string).
    """
    return verify_token(credentials.credentials)


async def require_admin(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> str:
    """Allow the request only if the caller's stored role is ``admin``."""
    user = await session.get(User, to_uuid(user_id))
    if user is None or user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return user_id
