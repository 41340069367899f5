"""
Queue API endpoints.

Customers join, leave, check in and follow their position; salon owners
notify, verify, call and finish customers. All status changes go through
``QueueService`` so that every path gets the same transition rules,
loyalty bookkeeping and broadcasts.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from altq.auth.dependencies import get_current_user, get_salon_owner
from altq.database import get_db
from altq.dependencies import get_queue_service
from altq.models import User
from altq.schemas.auth import MessageResponse
from altq.schemas.queue import (
    CheckInRequest,
    CheckInResponse,
    JoinQueueRequest,
    NoShowRequest,
    NotifyRequest,
    QueueEntryDetail,
    StatusUpdateRequest,
    VerifyArrivalRequest,
)
from altq.services.queue_service import QueueService

router = APIRouter()


# =============================================================================
# Customer Endpoints
# =============================================================================

@router.post("", response_model=QueueEntryDetail, status_code=status.HTTP_201_CREATED)
async def join_queue(
    data: JoinQueueRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    queue_service: QueueService = Depends(get_queue_service),
):
    """
    Join a salon's queue.

    Loyalty points held at the salon are redeemed automatically unless
    ``redeem_loyalty_points`` is false.
    """
    entry = await queue_service.join(
        db,
        current_user,
        data.salon_id,
        data.service_ids,
        applied_offer_ids=data.applied_offers,
        redeem_loyalty_points=data.redeem_loyalty_points,
    )
    return QueueEntryDetail.from_view(await queue_service.describe(db, entry))


@router.get("/my", response_model=list[QueueEntryDetail])
async def my_queues(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    queue_service: QueueService = Depends(get_queue_service),
):
    """The current user's queue entries with live positions, newest first."""
    views = await queue_service.get_user_entries(db, current_user)
    return [QueueEntryDetail.from_view(v) for v in views]


@router.delete("/{entry_id}", response_model=MessageResponse)
async def leave_queue(
    entry_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    queue_service: QueueService = Depends(get_queue_service),
):
    """Leave the queue. The entry is removed entirely."""
    await queue_service.leave(db, entry_id, current_user)
    return MessageResponse(message="Left queue successfully")


@router.post("/{entry_id}/checkin", response_model=CheckInResponse)
async def check_in(
    entry_id: uuid.UUID,
    data: CheckInRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    queue_service: QueueService = Depends(get_queue_service),
):
    """
    Report arrival at the salon.

    Within the auto-approve radius the entry goes straight to ``nearby``;
    otherwise the salon is asked to confirm.
    """
    result = await queue_service.check_in(
        db,
        entry_id,
        current_user,
        latitude=data.latitude,
        longitude=data.longitude,
        accuracy=data.accuracy,
    )
    return CheckInResponse.from_result(result)


# =============================================================================
# Status Endpoints (customer or salon owner)
# =============================================================================

@router.put("/{entry_id}", response_model=QueueEntryDetail)
@router.put("/{entry_id}/status", response_model=QueueEntryDetail)
async def update_queue_status(
    entry_id: uuid.UUID,
    data: StatusUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    queue_service: QueueService = Depends(get_queue_service),
):
    """
    Change an entry's status.

    Customers may only cancel (``no-show``); they reach ``nearby`` through
    check-in. Every other status is set by the salon owner.
    """
    entry = await queue_service.update_status(
        db, entry_id, current_user, data.status, reason=data.notes
    )
    return QueueEntryDetail.from_view(await queue_service.describe(db, entry))


# =============================================================================
# Salon Owner Endpoints
# =============================================================================

@router.post("/{entry_id}/notify", response_model=QueueEntryDetail)
async def notify_customer(
    entry_id: uuid.UUID,
    data: NotifyRequest,
    owner: User = Depends(get_salon_owner),
    db: AsyncSession = Depends(get_db),
    queue_service: QueueService = Depends(get_queue_service),
):
    """Tell the customer to come in within ``estimated_minutes``."""
    entry = await queue_service.notify_customer(
        db, entry_id, owner, data.estimated_minutes, message=data.message
    )
    return QueueEntryDetail.from_view(await queue_service.describe(db, entry))


@router.post("/{entry_id}/verify-arrival", response_model=QueueEntryDetail)
async def verify_arrival(
    entry_id: uuid.UUID,
    data: VerifyArrivalRequest,
    owner: User = Depends(get_salon_owner),
    db: AsyncSession = Depends(get_db),
    queue_service: QueueService = Depends(get_queue_service),
):
    """Confirm or reject a customer's arrival."""
    entry = await queue_service.verify_arrival(
        db, entry_id, owner, data.confirmed, notes=data.notes
    )
    return QueueEntryDetail.from_view(await queue_service.describe(db, entry))


@router.post("/{entry_id}/call", response_model=QueueEntryDetail)
async def call_customer(
    entry_id: uuid.UUID,
    owner: User = Depends(get_salon_owner),
    db: AsyncSession = Depends(get_db),
    queue_service: QueueService = Depends(get_queue_service),
):
    """Start serving the customer."""
    entry = await queue_service.call_customer(db, entry_id, owner)
    return QueueEntryDetail.from_view(await queue_service.describe(db, entry))


@router.post("/{entry_id}/no-show", response_model=QueueEntryDetail)
async def mark_no_show(
    entry_id: uuid.UUID,
    data: Optional[NoShowRequest] = None,
    owner: User = Depends(get_salon_owner),
    db: AsyncSession = Depends(get_db),
    queue_service: QueueService = Depends(get_queue_service),
):
    """Mark the customer as a no-show."""
    entry = await queue_service.mark_no_show(db, entry_id, owner, reason=data.reason if data else None)
    return QueueEntryDetail.from_view(await queue_service.describe(db, entry))
