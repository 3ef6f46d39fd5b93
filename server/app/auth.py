"""
Bearer token verification and role checks.

Tokens are HS256 JWTs signed with ``JWT_SECRET`` whose ``sub`` claim is the
user id. Tokens are issued by ``create_access_token`` (seed script, tests);
there is no login endpoint.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from app.config import settings
from app.errors import AuthenticationError, AuthorizationError
from app.models.user import User, UserRole
from app.services.database import get_db
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None, **claims: Any) -> str:
    """Sign a token for ``user_id`` (default lifetime ``JWT_EXPIRE_MINUTES``)."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.JWT_EXPIRE_MINUTES))
    to_encode = {**claims, "sub": str(user_id), "exp": expire}
    return jose_jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Verify a token and return its payload.

    Raises:
        AuthenticationError: Signature, expiry or subject invalid
    """
    try:
        payload = jose_jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise AuthenticationError("Invalid or expired token")

    if not str(payload.get("sub", "")).isdigit():
        raise AuthenticationError("Invalid token subject")
    return payload


async def user_from_token(db: AsyncSession, token: str) -> User:
    payload = decode_access_token(token)
    user = await db.get(User, int(payload["sub"]))
    if user is None or not user.is_active:
        raise AuthenticationError("User not found or inactive")
    return user


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """Authenticated user, or None for anonymous requests and bad tokens."""
    if credentials is None:
        return None
    try:
        return await user_from_token(db, credentials.credentials)
    except AuthenticationError:
        return None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None:
        raise AuthenticationError("Access denied. No token provided.")
    return await user_from_token(db, credentials.credentials)


def require_roles(*roles: UserRole):
    """Dependency factory: the current user must hold one of ``roles``."""
    allowed = {UserRole(r) for r in roles}

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if UserRole(user.role) not in allowed:
            raise AuthorizationError("Insufficient permissions")
        return user

    return dependency


require_staff = require_roles(UserRole.STAFF, UserRole.ADMIN)
