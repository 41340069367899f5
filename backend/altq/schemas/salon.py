"""
Pydantic schemas for salon, service and offer endpoints.
"""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SalonCreate(BaseModel):
    """Schema for registering a salon."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    address: str = Field(..., min_length=1)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    salon_type: Literal["men", "women", "unisex"] = "unisex"


class SalonResponse(BaseModel):
    id: UUID
    owner_id: UUID
    name: str
    description: Optional[str] = None
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    salon_type: str
    created_at: datetime

    class Config:
        from_attributes = True


class ServiceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    duration: int = Field(..., gt=0, le=600)  # minutes
    price: float = Field(..., ge=0)
    is_active: bool = True


class ServiceResponse(BaseModel):
    id: UUID
    salon_id: UUID
    name: str
    description: Optional[str] = None
    duration: int
    price: float
    is_active: bool

    class Config:
        from_attributes = True


class OfferCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    discount: int = Field(..., ge=1, le=100)  # percent
    valid_until: datetime
    is_active: bool = True


class OfferResponse(BaseModel):
    id: UUID
    salon_id: UUID
    title: str
    description: Optional[str] = None
    discount: int
    valid_until: datetime
    is_active: bool

    class Config:
        from_attributes = True


class SalonDetailResponse(SalonResponse):
    """Salon with its active services and live queue figures."""
    services: list[ServiceResponse] = []
    queue_length: int = 0
    live_viewers: int = 0
