"""
Salon API endpoints.

Public reads for customers browsing salons; services, offers and the queue
dashboard for salon owners.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from altq.auth.dependencies import get_salon_owner
from altq.database import get_db
from altq.dependencies import get_queue_service, get_runtime
from altq.models import ACTIVE_STATUSES, Offer, QueueEntry, Salon, Service, User
from altq.schemas.queue import QueueEntryDetail
from altq.schemas.salon import (
    OfferCreate,
    OfferResponse,
    SalonCreate,
    SalonDetailResponse,
    SalonResponse,
    ServiceCreate,
    ServiceResponse,
)
from altq.services.queue_service import QueueService
from altq.services.runtime import Runtime
from altq.utils.timezone import to_naive_utc, utc_now

router = APIRouter()


async def _get_salon_or_404(db: AsyncSession, salon_id: uuid.UUID) -> Salon:
    salon = await db.get(Salon, salon_id)
    if not salon:
        raise HTTPException(status_code=404, detail="Salon not found")
    return salon


# =============================================================================
# Salon Endpoints
# =============================================================================

@router.post("", response_model=SalonResponse, status_code=status.HTTP_201_CREATED)
async def create_salon(
    data: SalonCreate,
    owner: User = Depends(get_salon_owner),
    db: AsyncSession = Depends(get_db),
):
    """Register a salon owned by the current user."""
    salon = Salon(
        id=uuid.uuid4(),
        owner_id=owner.id,
        created_at=utc_now(),
        **data.model_dump(),
    )
    db.add(salon)
    await db.flush()
    print(f"Salons: {owner.email} registered {salon.name}", flush=True)
    return salon


@router.get("", response_model=list[SalonResponse])
async def list_salons(
    db: AsyncSession = Depends(get_db),
):
    """List all salons."""
    result = await db.execute(select(Salon).order_by(Salon.name))
    return result.scalars().all()


@router.get("/{salon_id}", response_model=SalonDetailResponse)
async def get_salon(
    salon_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    """
    Get a salon with its active services, current queue length and the
    number of people looking at it right now.
    """
    salon = await _get_salon_or_404(db, salon_id)

    queue_length = await db.scalar(
        select(func.count()).select_from(QueueEntry).where(
            QueueEntry.salon_id == salon.id,
            QueueEntry.status.in_(ACTIVE_STATUSES),
        )
    )

    services = await db.execute(
        select(Service)
        .where(Service.salon_id == salon.id, Service.is_active == True)
        .order_by(Service.created_at)
    )

    return SalonDetailResponse(
        **SalonResponse.model_validate(salon).model_dump(),
        services=[ServiceResponse.model_validate(s) for s in services.scalars().all()],
        queue_length=queue_length or 0,
        live_viewers=runtime.viewers.viewer_count(str(salon.id)),
    )


# =============================================================================
# Service Endpoints
# =============================================================================

@router.get("/{salon_id}/services", response_model=list[ServiceResponse])
async def list_services(
    salon_id: uuid.UUID,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """List a salon's services."""
    await _get_salon_or_404(db, salon_id)

    query = select(Service).where(Service.salon_id == salon_id)
    if not include_inactive:
        query = query.where(Service.is_active == True)
    result = await db.execute(query.order_by(Service.created_at))
    return result.scalars().all()


@router.post("/{salon_id}/services", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
async def create_service(
    salon_id: uuid.UUID,
    data: ServiceCreate,
    owner: User = Depends(get_salon_owner),
    db: AsyncSession = Depends(get_db),
):
    """Add a service to the owner's salon."""
    salon = await _get_salon_or_404(db, salon_id)
    QueueService.require_salon_owner(salon, owner)

    service = Service(
        id=uuid.uuid4(),
        salon_id=salon.id,
        created_at=utc_now(),
        **data.model_dump(),
    )
    db.add(service)
    await db.flush()
    return service


@router.put("/{salon_id}/services/{service_id}", response_model=ServiceResponse)
async def update_service(
    salon_id: uuid.UUID,
    service_id: uuid.UUID,
    data: ServiceCreate,
    owner: User = Depends(get_salon_owner),
    db: AsyncSession = Depends(get_db),
):
    """Replace a service's details (deactivate with ``is_active: false``)."""
    salon = await _get_salon_or_404(db, salon_id)
    QueueService.require_salon_owner(salon, owner)

    service = await db.get(Service, service_id)
    if not service or service.salon_id != salon.id:
        raise HTTPException(status_code=404, detail="Service not found")

    for field, value in data.model_dump().items():
        setattr(service, field, value)
    await db.flush()
    return service


# =============================================================================
# Offer Endpoints
# =============================================================================

@router.get("/{salon_id}/offers", response_model=list[OfferResponse])
async def list_offers(
    salon_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """List a salon's currently valid offers."""
    await _get_salon_or_404(db, salon_id)

    result = await db.execute(
        select(Offer)
        .where(
            Offer.salon_id == salon_id,
            Offer.is_active == True,
            Offer.valid_until > utc_now(),
        )
        .order_by(Offer.discount.desc())
    )
    return result.scalars().all()


@router.post("/{salon_id}/offers", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
async def create_offer(
    salon_id: uuid.UUID,
    data: OfferCreate,
    owner: User = Depends(get_salon_owner),
    db: AsyncSession = Depends(get_db),
):
    """Publish a percentage offer for the owner's salon."""
    salon = await _get_salon_or_404(db, salon_id)
    QueueService.require_salon_owner(salon, owner)

    offer = Offer(
        id=uuid.uuid4(),
        salon_id=salon.id,
        title=data.title,
        description=data.description,
        discount=data.discount,
        valid_until=to_naive_utc(data.valid_until),
        is_active=data.is_active,
        created_at=utc_now(),
    )
    db.add(offer)
    await db.flush()
    return offer


@router.delete("/{salon_id}/offers/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_offer(
    salon_id: uuid.UUID,
    offer_id: uuid.UUID,
    owner: User = Depends(get_salon_owner),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw an offer."""
    salon = await _get_salon_or_404(db, salon_id)
    QueueService.require_salon_owner(salon, owner)

    offer = await db.get(Offer, offer_id)
    if not offer or offer.salon_id != salon.id:
        raise HTTPException(status_code=404, detail="Offer not found")

    await db.delete(offer)


# =============================================================================
# Queue Dashboard Endpoints (salon owner)
# =============================================================================

@router.get("/{salon_id}/queues", response_model=list[QueueEntryDetail])
async def list_salon_queue(
    salon_id: uuid.UUID,
    active_only: bool = False,
    owner: User = Depends(get_salon_owner),
    db: AsyncSession = Depends(get_db),
    queue_service: QueueService = Depends(get_queue_service),
):
    """All queue entries of the salon with live positions."""
    views = await queue_service.get_salon_entries(db, owner, salon_id, active_only=active_only)
    return [QueueEntryDetail.from_view(v) for v in views]


@router.get("/{salon_id}/pending-verifications", response_model=list[QueueEntryDetail])
async def list_pending_verifications(
    salon_id: uuid.UUID,
    owner: User = Depends(get_salon_owner),
    db: AsyncSession = Depends(get_db),
    queue_service: QueueService = Depends(get_queue_service),
):
    """Check-ins waiting for the owner to confirm the customer is there."""
    views = await queue_service.get_pending_verifications(db, owner, salon_id)
    return [QueueEntryDetail.from_view(v) for v in views]
