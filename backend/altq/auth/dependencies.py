"""
Authentication dependencies for FastAPI.

Roles are read from the database on every request, never from the token,
so a demoted or disabled account loses access immediately.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from altq.auth.jwt import decode_access_token
from altq.config import get_settings
from altq.database import get_db
from altq.models import User, UserRole

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)

STAFF_ROLES = (UserRole.SALON_OWNER.value, UserRole.SUPER_ADMIN.value)


async def load_active_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    role: Optional[UserRole] = None,
) -> Optional[User]:
    """Fetch an enabled account, optionally restricted to one role."""
    query = select(User).where(User.id == user_id, User.is_active == True)
    if role is not None:
        query = query.where(User.role == role.value)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the bearer token to a user, or fail with 401."""
    user_id = decode_access_token(credentials.credentials) if credentials else None
    user = await load_active_user(db, user_id) if user_id else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_salon_owner(
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Require a salon owner (or super admin) account.

    Ownership of the specific salon is still checked by each operation.
    """
    if current_user.role not in STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Salon owner account required",
        )
    return current_user


async def verify_admin_access(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_admin_api_key: Optional[str] = Header(None, alias="X-Admin-API-Key"),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """
    Admin access via a ``super_admin`` token or the ``X-Admin-API-Key`` header.

    Returns the admin user for token access and None for key access.
    A wrong API key is rejected outright rather than falling back to the token.
    """
    forbidden = HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Admin access required. Provide valid admin credentials or X-Admin-API-Key header.",
    )

    if x_admin_api_key:
        configured = get_settings().admin_api_key
        if configured and x_admin_api_key == configured:
            return None
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key",
        )

    user_id = decode_access_token(credentials.credentials) if credentials else None
    if user_id is None:
        raise forbidden
    admin = await load_active_user(db, user_id, role=UserRole.SUPER_ADMIN)
    if admin is None:
        raise forbidden
    return admin
