"""
Reputation service - keeps per-customer check-in history up to date.

Check-in verification reads the trust level to decide whether a GPS
check-in can be approved automatically.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from altq.models import TrustLevel, UserReputation


class Outcome(str, Enum):
    """Events that move a customer's reputation."""
    CHECK_IN_SUCCESS = "check_in_success"
    CHECK_IN_PENDING = "check_in_pending"
    CHECK_IN_CONFIRMED = "check_in_confirmed"
    FALSE_CHECK_IN = "false_check_in"
    NO_SHOW = "no_show"
    COMPLETED = "completed"


async def get_or_create_reputation(db: AsyncSession, user_id: uuid.UUID) -> UserReputation:
    """Load the user's reputation row, creating an empty one on first use."""
    result = await db.execute(
        select(UserReputation).where(UserReputation.user_id == user_id)
    )
    reputation = result.scalar_one_or_none()
    if reputation is None:
        reputation = UserReputation(
            user_id=user_id,
            total_check_ins=0,
            successful_check_ins=0,
            false_check_ins=0,
            no_shows=0,
            completed_services=0,
            reputation_score=50,
            trust_level=TrustLevel.NEW.value,
        )
        db.add(reputation)
        await db.flush()
    return reputation


async def record_outcome(
    db: AsyncSession,
    user_id: uuid.UUID,
    outcome: Outcome,
    now: datetime,
) -> UserReputation:
    """Apply one outcome to the user's counters and recompute the score."""
    reputation = await get_or_create_reputation(db, user_id)

    if outcome in (Outcome.CHECK_IN_SUCCESS, Outcome.CHECK_IN_PENDING):
        reputation.total_check_ins += 1
        reputation.last_check_in_at = now
        if outcome == Outcome.CHECK_IN_SUCCESS:
            reputation.successful_check_ins += 1
    elif outcome == Outcome.CHECK_IN_CONFIRMED:
        reputation.successful_check_ins += 1
    elif outcome == Outcome.FALSE_CHECK_IN:
        reputation.false_check_ins += 1
    elif outcome == Outcome.NO_SHOW:
        reputation.no_shows += 1
        reputation.last_no_show_at = now
    elif outcome == Outcome.COMPLETED:
        reputation.completed_services += 1

    reputation.recalculate()
    return reputation


async def get_trust_level(db: AsyncSession, user_id: uuid.UUID) -> TrustLevel:
    """Current trust level, NEW for users without history."""
    result = await db.execute(
        select(UserReputation.trust_level).where(UserReputation.user_id == user_id)
    )
    level = result.scalar_one_or_none()
    return TrustLevel(level) if level else TrustLevel.NEW
