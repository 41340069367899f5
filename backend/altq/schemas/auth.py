"""
Pydantic schemas for authentication endpoints.
"""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


# Request schemas

class UserRegister(BaseModel):
    """Schema for user registration."""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=32)
    role: Literal["customer", "salon_owner"] = "customer"


class UserLogin(BaseModel):
    """Schema for user login."""
    email: EmailStr
    password: str


# Response schemas

class UserResponse(BaseModel):
    """Schema for user data in responses."""
    id: UUID
    email: str
    name: Optional[str]
    phone: Optional[str]
    role: str
    loyalty_points: int
    salon_loyalty_points: dict[str, int]
    created_at: datetime

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """Schema for authentication token response."""
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class MessageResponse(BaseModel):
    """Schema for simple message responses."""
    message: str
