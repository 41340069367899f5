"""Reputation models - history of check-in outcomes per customer."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from altq.database import Base, JSONType
from altq.utils.timezone import utc_now


class TrustLevel(str, Enum):
    """Coarse trust buckets derived from the reputation score."""
    NEW = "new"
    REGULAR = "regular"
    TRUSTED = "trusted"
    SUSPICIOUS = "suspicious"
    BANNED = "banned"


class UserReputation(Base):
    """
    Aggregated check-in behaviour of a customer.

    The score starts at 50 and moves with each outcome:
    - +5 per successful check-in, +2 per completed service
    - -15 per false check-in, -10 per no-show
    It is clamped to 0..100.
    """

    __tablename__ = "user_reputations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    total_check_ins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_check_ins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    false_check_ins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    no_shows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_services: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    reputation_score: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    trust_level: Mapped[str] = mapped_column(
        String(20),
        default=TrustLevel.NEW.value,
        nullable=False,
    )

    last_check_in_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_no_show_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<UserReputation {self.user_id} {self.reputation_score} ({self.trust_level})>"

    def recalculate(self) -> None:
        """Recompute score and trust level from the counters."""
        score = (
            50
            + 5 * self.successful_check_ins
            + 2 * self.completed_services
            - 15 * self.false_check_ins
            - 10 * self.no_shows
        )
        self.reputation_score = max(0, min(100, score))

        history = self.total_check_ins + self.completed_services + self.no_shows
        if self.reputation_score < 10:
            self.trust_level = TrustLevel.BANNED.value
        elif self.reputation_score < 30:
            self.trust_level = TrustLevel.SUSPICIOUS.value
        elif history == 0:
            self.trust_level = TrustLevel.NEW.value
        elif self.reputation_score >= 80:
            self.trust_level = TrustLevel.TRUSTED.value
        else:
            self.trust_level = TrustLevel.REGULAR.value


class CheckInLog(Base):
    """One row per check-in attempt or manual arrival decision."""

    __tablename__ = "check_in_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    queue_entry_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    salon_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    user_location: Mapped[dict | None] = mapped_column(JSONType)
    distance: Mapped[int | None] = mapped_column(Integer)  # meters
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    auto_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    requires_confirmation: Mapped[bool] = mapped_column(Boolean, default=False)
    verified_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    success: Mapped[bool] = mapped_column(Boolean, default=False)
    reason: Mapped[str | None] = mapped_column(Text)
    suspicious: Mapped[bool] = mapped_column(Boolean, default=False)
    seconds_since_notification: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<CheckInLog {self.queue_entry_id} {self.method} success={self.success}>"
