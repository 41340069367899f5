"""Salon model - a business that customers queue at."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from altq.database import Base
from altq.utils.timezone import utc_now


class Salon(Base):
    """
    Salon entity.

    The coordinates are what customer check-ins are measured against.
    """

    __tablename__ = "salons"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    latitude: Mapped[float | None] = mapped_column(Numeric(10, 6, asdecimal=False))
    longitude: Mapped[float | None] = mapped_column(Numeric(10, 6, asdecimal=False))
    salon_type: Mapped[str] = mapped_column(String(20), default="unisex")  # men, women, unisex

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        nullable=False,
    )

    # Relationships
    services: Mapped[list["Service"]] = relationship(
        "Service",
        back_populates="salon",
        lazy="selectin",
        order_by="Service.created_at",
    )

    def __repr__(self) -> str:
        return f"<Salon {self.name}>"

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None
