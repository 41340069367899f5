"""
Pydantic schemas for queue endpoints.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from altq.services.queue_service import CheckInResult, EntryView


# Request schemas

class JoinQueueRequest(BaseModel):
    """Join a salon's queue for one or more services."""
    salon_id: UUID
    service_ids: list[UUID] = Field(..., min_length=1)
    applied_offers: list[UUID] = []
    redeem_loyalty_points: bool = True


class StatusUpdateRequest(BaseModel):
    """Change the status of a queue entry."""
    status: str
    notes: Optional[str] = Field(None, max_length=500)


class NotifyRequest(BaseModel):
    """Tell the customer when to come in."""
    estimated_minutes: int = Field(..., ge=0, le=240)
    message: Optional[str] = Field(None, max_length=500)


class CheckInRequest(BaseModel):
    """Customer arrival report. Location is optional."""
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)


class VerifyArrivalRequest(BaseModel):
    """Salon decision on a pending check-in."""
    confirmed: bool
    notes: Optional[str] = Field(None, max_length=500)


class NoShowRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# Response schemas

class ServiceSummary(BaseModel):
    id: UUID
    name: str
    price: float
    duration: int

    class Config:
        from_attributes = True


class SalonSummary(BaseModel):
    id: UUID
    name: str
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    class Config:
        from_attributes = True


class CustomerSummary(BaseModel):
    id: UUID
    name: Optional[str] = None
    phone: Optional[str] = None
    email: str

    class Config:
        from_attributes = True


class QueueEntryResponse(BaseModel):
    """A queue entry as stored (``initial_position`` is the join-time rank)."""
    id: UUID
    salon_id: UUID
    user_id: UUID
    service_ids: list[str]
    applied_offers: list[str]
    status: str
    initial_position: int
    created_at: datetime
    subtotal_price: float
    discount_amount: float
    total_price: float
    points_redeemed: int
    loyalty_discount_percent: int
    total_duration_minutes: int
    notified_at: Optional[datetime] = None
    notification_minutes: Optional[int] = None
    check_in_attempted_at: Optional[datetime] = None
    check_in_distance: Optional[int] = None
    verified_at: Optional[datetime] = None
    verification_method: Optional[str] = None
    verified_by: Optional[UUID] = None
    service_started_at: Optional[datetime] = None
    service_completed_at: Optional[datetime] = None
    no_show_marked_at: Optional[datetime] = None
    no_show_reason: Optional[str] = None

    class Config:
        from_attributes = True


class QueueEntryDetail(QueueEntryResponse):
    """A queue entry with its live position and queue context."""
    position: int
    total_in_queue: int
    estimated_wait_minutes: int
    salon: Optional[SalonSummary] = None
    services: list[ServiceSummary] = []
    customer: Optional[CustomerSummary] = None

    @classmethod
    def from_view(cls, view: EntryView) -> "QueueEntryDetail":
        base = QueueEntryResponse.model_validate(view.entry).model_dump()
        return cls(
            **base,
            position=view.position,
            total_in_queue=view.total_in_queue,
            estimated_wait_minutes=view.estimated_wait_minutes,
            salon=SalonSummary.model_validate(view.salon) if view.salon else None,
            services=[ServiceSummary.model_validate(s) for s in view.services],
            customer=CustomerSummary.model_validate(view.customer) if view.customer else None,
        )


class CheckInResponse(BaseModel):
    success: bool
    auto_approved: bool
    requires_confirmation: bool
    status: str
    distance: Optional[int] = None
    message: str

    @classmethod
    def from_result(cls, result: CheckInResult) -> "CheckInResponse":
        return cls(**vars(result))
