"""
Admin API endpoints for operating the queue backend.

All endpoints require admin authentication:
- Authenticated user with the ``super_admin`` role, OR
- Valid `X-Admin-API-Key` header
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from altq.auth.dependencies import verify_admin_access
from altq.database import get_db
from altq.dependencies import get_runtime
from altq.models import CheckInLog, TrustLevel, User, UserReputation
from altq.services.runtime import Runtime

router = APIRouter()


# =============================================================================
# Schemas
# =============================================================================

class SweepRunResponse(BaseModel):
    """Entries changed by each sweep."""
    pending_verification_timeout: int
    queue_timeout: int
    no_show_detection: int


class JobStatusResponse(BaseModel):
    name: str
    interval_seconds: float
    running: bool
    runs: int
    failures: int
    last_run_at: Optional[str] = None
    last_error: Optional[str] = None


class CheckInLogResponse(BaseModel):
    id: uuid.UUID
    queue_entry_id: Optional[uuid.UUID] = None
    salon_id: Optional[uuid.UUID] = None
    distance: Optional[int] = None
    method: str
    auto_approved: bool
    requires_confirmation: bool
    success: bool
    suspicious: bool
    reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ReputationResponse(BaseModel):
    user_id: uuid.UUID
    total_check_ins: int = 0
    successful_check_ins: int = 0
    false_check_ins: int = 0
    no_shows: int = 0
    completed_services: int = 0
    reputation_score: int = 50
    trust_level: str = TrustLevel.NEW.value
    last_check_in_at: Optional[datetime] = None
    last_no_show_at: Optional[datetime] = None
    recent_check_ins: list[CheckInLogResponse] = []

    class Config:
        from_attributes = True


class ConnectionStats(BaseModel):
    connections: int
    authenticated: int
    live_viewers: dict[str, int]


# =============================================================================
# Background Job Endpoints
# =============================================================================

@router.post("/sweeps/run", response_model=SweepRunResponse)
async def run_sweeps(
    runtime: Runtime = Depends(get_runtime),
    _admin: Optional[User] = Depends(verify_admin_access),
):
    """
    Run every timeout sweep once, right now.

    Useful after downtime or when background jobs are disabled.
    """
    counts = await runtime.sweeper.run_all()
    print(f"Admin: manual sweep run {counts}", flush=True)
    return SweepRunResponse(**counts)


@router.get("/jobs", response_model=list[JobStatusResponse])
async def list_jobs(
    runtime: Runtime = Depends(get_runtime),
    _admin: Optional[User] = Depends(verify_admin_access),
):
    """Schedule and run statistics of the background jobs."""
    return runtime.scheduler.status()


# =============================================================================
# Reputation Endpoints
# =============================================================================

@router.get("/reputation/{user_id}", response_model=ReputationResponse)
async def get_reputation(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _admin: Optional[User] = Depends(verify_admin_access),
):
    """A customer's check-in reputation with their latest check-in attempts."""
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    result = await db.execute(
        select(UserReputation).where(UserReputation.user_id == user_id)
    )
    reputation = result.scalar_one_or_none()

    logs = await db.execute(
        select(CheckInLog)
        .where(CheckInLog.user_id == user_id)
        .order_by(CheckInLog.created_at.desc())
        .limit(20)
    )

    response = (
        ReputationResponse.model_validate(reputation)
        if reputation
        else ReputationResponse(user_id=user_id)
    )
    response.recent_check_ins = [CheckInLogResponse.model_validate(log) for log in logs.scalars().all()]
    return response


# =============================================================================
# Live Connection Endpoints
# =============================================================================

@router.get("/connections", response_model=ConnectionStats)
async def connection_stats(
    runtime: Runtime = Depends(get_runtime),
    _admin: Optional[User] = Depends(verify_admin_access),
):
    """Open WebSocket connections and live viewer counts."""
    return ConnectionStats(
        connections=runtime.registry.connection_count,
        authenticated=runtime.registry.authenticated_count,
        live_viewers=runtime.viewers.all_counts(),
    )
