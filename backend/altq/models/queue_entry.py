"""QueueEntry model - one customer's place in one salon's queue."""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from altq.database import Base, JSONType
from altq.utils.timezone import utc_now


class QueueStatus(str, Enum):
    """Lifecycle states of a queue entry."""
    WAITING = "waiting"
    NOTIFIED = "notified"
    PENDING_VERIFICATION = "pending_verification"
    NEARBY = "nearby"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    NO_SHOW = "no-show"


class VerificationMethod(str, Enum):
    """How a customer's arrival was verified."""
    GPS_AUTO = "gps_auto"
    MANUAL = "manual"
    ADMIN_OVERRIDE = "admin_override"


ACTIVE_STATUSES: tuple[str, ...] = (
    QueueStatus.WAITING.value,
    QueueStatus.NOTIFIED.value,
    QueueStatus.PENDING_VERIFICATION.value,
    QueueStatus.NEARBY.value,
    QueueStatus.IN_PROGRESS.value,
)

TERMINAL_STATUSES: tuple[str, ...] = (
    QueueStatus.COMPLETED.value,
    QueueStatus.NO_SHOW.value,
)


class QueueEntry(Base):
    """
    A customer's entry in a salon queue.

    ``initial_position`` is only the rank the entry had when it was created.
    The live position is always derived with ``recompute_position`` from the
    salon's active entries ordered by ``created_at``.

    Stage timestamps are stamped by the lifecycle service as the entry moves
    through the states; a terminal entry carries exactly one of
    ``service_completed_at`` and ``no_show_marked_at``.
    """

    __tablename__ = "queue_entries"
    __table_args__ = (
        Index("ix_queue_entries_salon_status", "salon_id", "status"),
        Index("ix_queue_entries_user_salon", "user_id", "salon_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    salon_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("salons.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    # What was booked
    service_ids: Mapped[list] = mapped_column(JSONType, nullable=False)  # ordered service id strings
    applied_offers: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    total_duration_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Pricing, recorded at join time
    subtotal_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    points_redeemed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    loyalty_discount_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # State
    status: Mapped[str] = mapped_column(
        String(30),
        default=QueueStatus.WAITING.value,
        nullable=False,
    )
    initial_position: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        nullable=False,
    )

    # Notification
    notified_at: Mapped[datetime | None] = mapped_column(DateTime)
    notification_minutes: Mapped[int | None] = mapped_column(Integer)

    # Arrival verification
    check_in_attempted_at: Mapped[datetime | None] = mapped_column(DateTime)
    check_in_location: Mapped[dict | None] = mapped_column(JSONType)
    check_in_distance: Mapped[int | None] = mapped_column(Integer)  # meters
    verified_at: Mapped[datetime | None] = mapped_column(DateTime)
    verification_method: Mapped[str | None] = mapped_column(String(20))
    verified_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))

    # Service
    service_started_at: Mapped[datetime | None] = mapped_column(DateTime)
    service_completed_at: Mapped[datetime | None] = mapped_column(DateTime)

    # No-show
    no_show_marked_at: Mapped[datetime | None] = mapped_column(DateTime)
    no_show_reason: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<QueueEntry {self.id} - {self.status}>"

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
