"""
Authentication API endpoints.

Accounts are created with email and password; customers and salon owners
may self-register, super admins are provisioned out of band.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from altq.auth.dependencies import get_current_user
from altq.auth.jwt import create_access_token
from altq.auth.password import hash_password, verify_password
from altq.database import get_db
from altq.models import User
from altq.schemas.auth import (
    MessageResponse,
    TokenResponse,
    UserLogin,
    UserRegister,
    UserResponse,
)
from altq.utils.timezone import utc_now

router = APIRouter()


async def _find_by_email(db: AsyncSession, email: str):
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id, role=user.role),
        user=UserResponse.model_validate(user),
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: UserRegister,
    db: AsyncSession = Depends(get_db),
):
    """Register a customer or salon owner account and sign it in."""
    if await _find_by_email(db, data.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    user = User(
        id=uuid.uuid4(),
        email=data.email.lower(),
        password_hash=hash_password(data.password),
        name=data.name,
        phone=data.phone,
        role=data.role,
        loyalty_points=0,
        salon_loyalty_points={},
        is_active=True,
        created_at=utc_now(),
    )
    db.add(user)
    await db.flush()
    print(f"Auth: registered {user.role} {user.id}", flush=True)

    return _token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    data: UserLogin,
    db: AsyncSession = Depends(get_db),
):
    """Exchange email and password for an access token."""
    user = await _find_by_email(db, data.email)
    if (
        user is None
        or not user.password_hash
        or not verify_password(data.password, user.password_hash)
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is disabled",
        )

    return _token_response(user)


@router.get("/me", response_model=UserResponse)
async def get_me(
    current_user: User = Depends(get_current_user),
):
    """The signed-in user's profile, with global and per-salon loyalty balances."""
    return UserResponse.model_validate(current_user)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    current_user: User = Depends(get_current_user),
):
    """Tokens are stateless; the client discards its copy."""
    return MessageResponse(message="Successfully logged out")
