"""User model - customers, salon owners and platform admins."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from altq.database import Base, JSONType
from altq.utils.timezone import utc_now


class UserRole(str, Enum):
    """Roles a user can hold."""
    CUSTOMER = "customer"
    SALON_OWNER = "salon_owner"
    SUPER_ADMIN = "super_admin"


class User(Base):
    """
    User entity.

    Loyalty points are tracked twice: ``salon_loyalty_points`` maps a salon id
    to the points earned there (the balance that discounts are redeemed from),
    and ``loyalty_points`` is the running total across all salons.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255))

    # Profile
    name: Mapped[str | None] = mapped_column(String(100))
    phone: Mapped[str | None] = mapped_column(String(32))
    role: Mapped[str] = mapped_column(
        String(20),
        default=UserRole.CUSTOMER.value,
        nullable=False,
    )

    # Loyalty
    loyalty_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    salon_loyalty_points: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN.value

    def points_at(self, salon_id: uuid.UUID) -> int:
        """Loyalty points the user holds at one salon."""
        return int((self.salon_loyalty_points or {}).get(str(salon_id), 0))

    def adjust_points(self, salon_id: uuid.UUID, delta: int) -> None:
        """
        Add (or, with a negative delta, spend) points at a salon.

        The JSON column is replaced rather than mutated in place so the
        change is picked up by the ORM.
        """
        points = dict(self.salon_loyalty_points or {})
        points[str(salon_id)] = self.points_at(salon_id) + delta
        self.salon_loyalty_points = points
        self.loyalty_points = (self.loyalty_points or 0) + delta
