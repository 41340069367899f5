# Database models
from altq.models.user import User, UserRole
from altq.models.salon import Salon
from altq.models.service import Service
from altq.models.offer import Offer
from altq.models.queue_entry import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    QueueEntry,
    QueueStatus,
    VerificationMethod,
)
from altq.models.reputation import CheckInLog, TrustLevel, UserReputation

__all__ = [
    "User",
    "UserRole",
    "Salon",
    "Service",
    "Offer",
    "QueueEntry",
    "QueueStatus",
    "VerificationMethod",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "UserReputation",
    "CheckInLog",
    "TrustLevel",
]
