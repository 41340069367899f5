"""
Queue lifecycle service.

Owns every status change of a queue entry:

    waiting -> notified -> pending_verification -> nearby -> in-progress -> completed
    waiting | notified | pending_verification -> no-show
    pending_verification -> notified   (verification timeout only)

Each change is written as a conditional update on the entry's prior status,
so two concurrent writers cannot both apply a transition from the same
state. Loyalty points for a completed service are credited in the same
transaction as the status change and only when that change actually
happened.

Broadcasts and notifications are sent after the commit and are best effort.
"""

import math
import uuid
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from altq.config import Settings
from altq.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from altq.models import (
    ACTIVE_STATUSES,
    CheckInLog,
    Offer,
    QueueEntry,
    QueueStatus,
    Salon,
    Service,
    TrustLevel,
    User,
    VerificationMethod,
)
from altq.services.broadcast import BroadcastGateway
from altq.services.notifications import Notifier
from altq.services.queue_positions import (
    can_transition,
    estimated_wait_minutes,
    order_active,
    recompute_position,
)
from altq.services.reputation_service import Outcome, get_trust_level, record_outcome
from altq.utils.timezone import Clock, isoformat_utc, utc_now

CENT = Decimal("0.01")
EARTH_RADIUS_METERS = 6_371_000

QUEUE_TIMEOUT_REASON = "Auto-rejected: timed out after {minutes} minutes without a response"
NOTIFICATION_WINDOW_REASON = "Did not arrive within the notification window"
ARRIVAL_REJECTED_REASON = "Arrival not confirmed by salon"
MARKED_BY_SALON_REASON = "Marked as no-show by salon"
LEFT_BY_CUSTOMER_REASON = "Cancelled by customer"

# Statuses a customer may set on their own entry. Arrival goes through check_in.
CUSTOMER_SETTABLE_STATUSES = frozenset({
    QueueStatus.NO_SHOW.value,
})


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in meters."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(a))


def apply_percent_discount(amount: Decimal, percent: int) -> Decimal:
    return (amount * (100 - percent) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class EntryView:
    """A queue entry with its live, recomputed queue context."""
    entry: QueueEntry
    position: int
    total_in_queue: int
    estimated_wait_minutes: int
    salon: Optional[Salon] = None
    services: list[Service] = field(default_factory=list)
    customer: Optional[User] = None


@dataclass
class CheckInResult:
    """Outcome of a customer check-in."""
    success: bool
    auto_approved: bool
    requires_confirmation: bool
    status: str
    distance: Optional[int]
    message: str


def serialize_entry(entry: QueueEntry, active_entries: Sequence[QueueEntry]) -> dict[str, Any]:
    """Broadcast representation of an entry with its live position."""
    return {
        "id": str(entry.id),
        "user_id": str(entry.user_id),
        "status": entry.status,
        "position": recompute_position(entry, active_entries),
        "estimated_wait_time": estimated_wait_minutes(entry, active_entries),
        "service_ids": list(entry.service_ids or []),
        "total_price": float(entry.total_price),
        "created_at": isoformat_utc(entry.created_at),
    }


async def load_active_entries(db: AsyncSession, salon_id: uuid.UUID) -> list[QueueEntry]:
    """Active entries of a salon in queue order."""
    result = await db.execute(
        select(QueueEntry).where(
            QueueEntry.salon_id == salon_id,
            QueueEntry.status.in_(ACTIVE_STATUSES),
        )
    )
    return order_active(result.scalars().all())


async def active_queue_snapshot(db: AsyncSession, salon_id: uuid.UUID) -> list[dict[str, Any]]:
    """The salon's active queue as sent in ``queue_update`` broadcasts."""
    active = await load_active_entries(db, salon_id)
    return [serialize_entry(entry, active) for entry in active]


class QueueService:
    """The queue lifecycle engine."""

    def __init__(
        self,
        gateway: BroadcastGateway,
        notifier: Notifier,
        settings: Settings,
        clock: Clock = utc_now,
    ):
        self.gateway = gateway
        self.notifier = notifier
        self.settings = settings
        self.clock = clock

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_entry(self, db: AsyncSession, entry_id: uuid.UUID) -> QueueEntry:
        entry = await db.get(QueueEntry, entry_id)
        if entry is None:
            raise NotFoundError("Queue entry not found")
        return entry

    async def get_salon(self, db: AsyncSession, salon_id: uuid.UUID) -> Salon:
        salon = await db.get(Salon, salon_id)
        if salon is None:
            raise NotFoundError("Salon not found")
        return salon

    @staticmethod
    def require_salon_owner(salon: Salon, actor: User, allow_admin: bool = False) -> None:
        if salon.owner_id == actor.id:
            return
        if allow_admin and actor.is_super_admin:
            return
        raise AuthorizationError("Only the salon owner can do this")

    async def _load_services(
        self,
        db: AsyncSession,
        salon_id: uuid.UUID,
        service_ids: Sequence[uuid.UUID],
    ) -> list[Service]:
        if len(set(service_ids)) != len(service_ids):
            raise ValidationError(
                "Duplicate services in request",
                errors=[{"field": "service_ids", "message": "each service may be booked once"}],
            )

        result = await db.execute(select(Service).where(Service.id.in_(service_ids)))
        by_id = {s.id: s for s in result.scalars().all()}

        services = []
        for service_id in service_ids:
            service = by_id.get(service_id)
            if service is None:
                raise NotFoundError(f"Service {service_id} not found")
            if service.salon_id != salon_id:
                raise ValidationError(
                    "Service does not belong to this salon",
                    errors=[{"field": "service_ids", "message": f"{service_id} is offered by another salon"}],
                )
            if not service.is_active:
                raise ValidationError(
                    "Service is not currently available",
                    errors=[{"field": "service_ids", "message": f"{service_id} is inactive"}],
                )
            services.append(service)
        return services

    async def _load_offers(
        self,
        db: AsyncSession,
        salon_id: uuid.UUID,
        offer_ids: Sequence[uuid.UUID],
    ) -> list[Offer]:
        if not offer_ids:
            return []

        result = await db.execute(select(Offer).where(Offer.id.in_(offer_ids)))
        by_id = {o.id: o for o in result.scalars().all()}
        now = self.clock()

        offers = []
        for offer_id in dict.fromkeys(offer_ids):
            offer = by_id.get(offer_id)
            if offer is None:
                raise NotFoundError(f"Offer {offer_id} not found")
            if offer.salon_id != salon_id or not offer.is_valid_at(now):
                raise ValidationError(
                    "Offer is not valid for this booking",
                    errors=[{"field": "applied_offers", "message": f"{offer_id} is expired or belongs to another salon"}],
                )
            offers.append(offer)
        return offers

    def loyalty_discount(self, points: int) -> tuple[int, int]:
        """
        Loyalty tier for a points balance.

        Returns ``(points_to_redeem, discount_percent)``.
        """
        s = self.settings
        if points >= s.loyalty_tier_large_points:
            return s.loyalty_tier_large_points, s.loyalty_tier_large_percent
        if points >= s.loyalty_tier_small_points:
            return s.loyalty_tier_small_points, s.loyalty_tier_small_percent
        return 0, 0

    # =========================================================================
    # Join / leave
    # =========================================================================

    async def join(
        self,
        db: AsyncSession,
        customer: User,
        salon_id: uuid.UUID,
        service_ids: Sequence[uuid.UUID],
        applied_offer_ids: Sequence[uuid.UUID] = (),
        redeem_loyalty_points: bool = True,
    ) -> QueueEntry:
        """
        Put a customer in a salon's queue.

        Prices the booking (offers first, then the loyalty tier), spends the
        redeemed points in the same transaction as the insert and announces
        the new entry to the salon.
        """
        if not service_ids:
            raise ValidationError(
                "At least one service is required",
                errors=[{"field": "service_ids", "message": "must not be empty"}],
            )

        salon = await self.get_salon(db, salon_id)
        services = await self._load_services(db, salon.id, list(service_ids))

        existing = await db.execute(
            select(QueueEntry.id).where(
                QueueEntry.user_id == customer.id,
                QueueEntry.salon_id == salon.id,
                QueueEntry.status.in_(ACTIVE_STATUSES),
            ).limit(1)
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("Already in queue for this salon")

        offers = await self._load_offers(db, salon.id, list(applied_offer_ids))

        # Pricing
        subtotal = sum((s.price for s in services), Decimal("0")).quantize(CENT)
        offer_percent = max((o.discount for o in offers), default=0)
        total = apply_percent_discount(subtotal, offer_percent)

        points_redeemed, loyalty_percent = (0, 0)
        if redeem_loyalty_points:
            points_redeemed, loyalty_percent = self.loyalty_discount(customer.points_at(salon.id))
        total = apply_percent_discount(total, loyalty_percent)

        active_count = await db.scalar(
            select(func.count()).select_from(QueueEntry).where(
                QueueEntry.salon_id == salon.id,
                QueueEntry.status.in_(ACTIVE_STATUSES),
            )
        )

        entry = QueueEntry(
            id=uuid.uuid4(),
            salon_id=salon.id,
            user_id=customer.id,
            service_ids=[str(s.id) for s in services],
            applied_offers=[str(o.id) for o in offers],
            total_duration_minutes=sum(s.duration for s in services),
            subtotal_price=subtotal,
            discount_amount=subtotal - total,
            total_price=total,
            points_redeemed=points_redeemed,
            loyalty_discount_percent=loyalty_percent,
            status=QueueStatus.WAITING.value,
            initial_position=(active_count or 0) + 1,
            created_at=self.clock(),
        )
        db.add(entry)
        if points_redeemed:
            customer.adjust_points(salon.id, -points_redeemed)

        await db.commit()
        print(
            f"Queue: {customer.id} joined {salon.name} at position {entry.initial_position} "
            f"(total {entry.total_price}, redeemed {points_redeemed} points)",
            flush=True,
        )

        customer_name = customer.name or "A customer"
        service_name = services[0].name
        await self.gateway.queue_joined(salon.id, {
            "queue_id": str(entry.id),
            "customer_name": customer_name,
            "service_name": service_name,
            "position": entry.initial_position,
        })
        await self.notifier.notify(
            salon.owner_id,
            "New customer in queue",
            f"{customer_name} joined the queue at {salon.name} for {service_name}",
            queue_id=str(entry.id),
        )
        await self.broadcast_queue(
            db,
            salon.id,
            new_queue={
                "id": str(entry.id),
                "user_name": customer.name,
                "service_name": service_name,
                "status": entry.status,
            },
        )
        return entry

    async def leave(self, db: AsyncSession, entry_id: uuid.UUID, customer: User) -> None:
        """Remove the customer's entry entirely."""
        entry = await self.get_entry(db, entry_id)
        if entry.user_id != customer.id:
            raise AuthorizationError("Not authorized to leave this queue")

        salon_id = entry.salon_id
        await db.delete(entry)
        await db.commit()
        print(f"Queue: {customer.id} left queue entry {entry_id}", flush=True)

        await self.broadcast_queue(db, salon_id, removed_queue_id=str(entry_id))

    # =========================================================================
    # Status transitions
    # =========================================================================

    def _stage_values(
        self,
        entry: QueueEntry,
        new_status: str,
        reason: Optional[str],
    ) -> dict[str, Any]:
        """Timestamps (and no-show reason) stamped when entering a state."""
        now = self.clock()
        values: dict[str, Any] = {}
        if new_status == QueueStatus.NOTIFIED.value and entry.notified_at is None:
            values["notified_at"] = now
        elif new_status == QueueStatus.PENDING_VERIFICATION.value:
            values["check_in_attempted_at"] = now
        elif new_status == QueueStatus.NEARBY.value and entry.verified_at is None:
            values["verified_at"] = now
        elif new_status == QueueStatus.IN_PROGRESS.value and entry.service_started_at is None:
            values["service_started_at"] = now
        elif new_status == QueueStatus.COMPLETED.value:
            values["service_completed_at"] = now
        elif new_status == QueueStatus.NO_SHOW.value:
            values["no_show_marked_at"] = now
            values["no_show_reason"] = reason or MARKED_BY_SALON_REASON
        return values

    async def _move(
        self,
        db: AsyncSession,
        entry: QueueEntry,
        new_status: str,
        reason: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
        allow_revert: bool = False,
    ) -> bool:
        """
        Apply one transition with a compare-and-swap on the prior status.

        Returns False if the entry already is in ``new_status`` (nothing to
        do). Raises ConflictError if another writer changed the entry
        between our read and our write, and NotFoundError if it was deleted
        meanwhile. Does not commit.
        """
        prior = entry.status
        if prior == new_status:
            return False
        if not can_transition(prior, new_status, allow_revert=allow_revert):
            raise InvalidTransitionError(f"Cannot change status from {prior} to {new_status}")

        values = {"status": new_status, **self._stage_values(entry, new_status, reason), **(extra or {})}
        result = await db.execute(
            update(QueueEntry)
            .where(QueueEntry.id == entry.id, QueueEntry.status == prior)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            current = await db.scalar(select(QueueEntry.status).where(QueueEntry.id == entry.id))
            if current is None:
                raise NotFoundError("Queue entry not found")
            await db.refresh(entry)
            if current == new_status:
                # Somebody else made the same move first
                return False
            raise ConflictError("Queue entry was modified concurrently, reload and retry")

        await db.refresh(entry)
        return True

    async def _settle(self, db: AsyncSession, entry: QueueEntry) -> None:
        """Bookkeeping that commits together with a transition."""
        now = self.clock()
        if entry.status == QueueStatus.COMPLETED.value:
            customer = await db.get(User, entry.user_id)
            if customer is not None:
                customer.adjust_points(entry.salon_id, self.settings.loyalty_completion_bonus)
            await record_outcome(db, entry.user_id, Outcome.COMPLETED, now)
        elif entry.status == QueueStatus.NO_SHOW.value:
            await record_outcome(db, entry.user_id, Outcome.NO_SHOW, now)

    async def _announce(
        self,
        db: AsyncSession,
        entry: QueueEntry,
        salon: Salon,
        prior: str,
        broadcast_snapshot: bool = True,
    ) -> None:
        """Tell the customer and the salon about a committed transition."""
        print(f"Queue: entry {entry.id} {prior} -> {entry.status}", flush=True)

        services = await self._entry_services(db, entry)
        if entry.status == QueueStatus.IN_PROGRESS.value:
            await self.gateway.service_starting(
                entry.user_id,
                queue_id=str(entry.id),
                salon_name=salon.name,
                services=[{"id": str(s.id), "name": s.name, "duration": s.duration} for s in services],
                estimated_time=entry.total_duration_minutes,
            )
        elif entry.status == QueueStatus.COMPLETED.value:
            await self.gateway.service_completed(
                entry.user_id,
                queue_id=str(entry.id),
                salon_name=salon.name,
                services=[{"id": str(s.id), "name": s.name, "price": float(s.price)} for s in services],
                total_price=float(entry.total_price),
                points_earned=self.settings.loyalty_completion_bonus,
            )
        elif entry.status == QueueStatus.NO_SHOW.value:
            await self.gateway.no_show(
                entry.user_id,
                queue_id=str(entry.id),
                salon_name=salon.name,
                reason=entry.no_show_reason,
            )

        if broadcast_snapshot:
            await self.broadcast_queue(
                db,
                salon.id,
                queue_id=str(entry.id),
                status=entry.status,
                old_status=prior,
            )

    async def _entry_services(self, db: AsyncSession, entry: QueueEntry) -> list[Service]:
        """The booked services of an entry, in booking order."""
        ids = [uuid.UUID(sid) for sid in entry.service_ids or []]
        if not ids:
            return []
        result = await db.execute(select(Service).where(Service.id.in_(ids)))
        by_id = {s.id: s for s in result.scalars().all()}
        return [by_id[i] for i in ids if i in by_id]

    async def update_status(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        actor: User,
        new_status: str,
        reason: Optional[str] = None,
    ) -> QueueEntry:
        """
        Change an entry's status on behalf of its customer or the salon owner.

        Setting the status the entry already has is a no-op, which makes a
        repeated "completed" harmless: points are only credited by the call
        that actually moved the entry.
        """
        try:
            new_status = QueueStatus(new_status).value
        except ValueError:
            raise ValidationError(
                f"Unknown status {new_status!r}",
                errors=[{"field": "status", "message": f"must be one of {[s.value for s in QueueStatus]}"}],
            )

        entry = await self.get_entry(db, entry_id)
        salon = await self.get_salon(db, entry.salon_id)

        is_owner = salon.owner_id == actor.id
        if not is_owner and entry.user_id != actor.id:
            raise AuthorizationError("Not authorized to update this queue entry")
        if not is_owner and new_status not in CUSTOMER_SETTABLE_STATUSES:
            raise AuthorizationError(f"Only the salon can set status {new_status}")

        if new_status == QueueStatus.NO_SHOW.value and not reason:
            reason = MARKED_BY_SALON_REASON if is_owner else LEFT_BY_CUSTOMER_REASON

        prior = entry.status
        changed = await self._move(db, entry, new_status, reason=reason)
        if not changed:
            return entry

        await self._settle(db, entry)
        await db.commit()
        await self._announce(db, entry, salon, prior)
        return entry

    async def apply_system_transition(
        self,
        db: AsyncSession,
        entry: QueueEntry,
        new_status: str,
        reason: Optional[str] = None,
        allow_revert: bool = False,
        broadcast_snapshot: bool = True,
    ) -> bool:
        """
        Transition driven by a background sweep rather than a user.

        Losing a race against a user action is not an error here: the sweep
        simply skips the entry. Returns whether the entry was changed.
        """
        prior = entry.status
        try:
            changed = await self._move(db, entry, new_status, reason=reason, allow_revert=allow_revert)
        except (ConflictError, InvalidTransitionError, NotFoundError):
            return False
        if not changed:
            return False

        await self._settle(db, entry)
        await db.commit()

        salon = await db.get(Salon, entry.salon_id)
        if salon is not None:
            await self._announce(db, entry, salon, prior, broadcast_snapshot=broadcast_snapshot)
        return True

    async def notify_customer(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        owner: User,
        estimated_minutes: int,
        message: Optional[str] = None,
    ) -> QueueEntry:
        """Tell a waiting customer it is almost their turn."""
        if estimated_minutes < 0:
            raise ValidationError(
                "Estimated minutes must not be negative",
                errors=[{"field": "estimated_minutes", "message": "must be >= 0"}],
            )

        entry = await self.get_entry(db, entry_id)
        salon = await self.get_salon(db, entry.salon_id)
        self.require_salon_owner(salon, owner)

        prior = entry.status
        if prior not in (QueueStatus.WAITING.value, QueueStatus.NOTIFIED.value):
            raise InvalidTransitionError(f"Cannot notify a customer whose entry is {prior}")

        changed = await self._move(
            db,
            entry,
            QueueStatus.NOTIFIED.value,
            extra={"notification_minutes": estimated_minutes},
        )
        if not changed:
            # Re-notification with a fresh ETA
            entry.notification_minutes = estimated_minutes
        await db.commit()

        services = await self._entry_services(db, entry)
        await self.gateway.queue_notification(
            entry.user_id,
            queue_id=str(entry.id),
            salon_id=str(salon.id),
            salon_name=salon.name,
            salon_address=salon.address,
            estimated_minutes=estimated_minutes,
            message=message,
            services=[
                {"id": str(s.id), "name": s.name, "price": float(s.price), "duration": s.duration}
                for s in services
            ],
            salon_location={"latitude": salon.latitude, "longitude": salon.longitude},
        )
        await self.notifier.notify(
            entry.user_id,
            "It's almost your turn",
            message or f"Please arrive at {salon.name} within {estimated_minutes} minutes",
            queue_id=str(entry.id),
        )
        if changed:
            await self._announce(db, entry, salon, prior)
        return entry

    async def call_customer(self, db: AsyncSession, entry_id: uuid.UUID, owner: User) -> QueueEntry:
        """Start serving a customer."""
        entry = await self.get_entry(db, entry_id)
        salon = await self.get_salon(db, entry.salon_id)
        self.require_salon_owner(salon, owner)
        return await self.update_status(db, entry_id, owner, QueueStatus.IN_PROGRESS.value)

    async def mark_no_show(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        owner: User,
        reason: Optional[str] = None,
    ) -> QueueEntry:
        """Explicitly mark an entry as a no-show."""
        entry = await self.get_entry(db, entry_id)
        salon = await self.get_salon(db, entry.salon_id)
        self.require_salon_owner(salon, owner)
        return await self.update_status(
            db, entry_id, owner, QueueStatus.NO_SHOW.value, reason=reason or MARKED_BY_SALON_REASON
        )

    # =========================================================================
    # Arrival verification
    # =========================================================================

    async def check_in(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        customer: User,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        accuracy: Optional[float] = None,
    ) -> CheckInResult:
        """
        Customer reports arrival, optionally with their GPS location.

        Close enough (and not flagged as suspicious) is approved straight
        away; anything else waits for the salon to confirm.
        """
        entry = await self.get_entry(db, entry_id)
        if entry.user_id != customer.id:
            raise AuthorizationError("Not authorized to check in for this queue entry")

        prior = entry.status
        if prior not in (QueueStatus.WAITING.value, QueueStatus.NOTIFIED.value):
            raise InvalidTransitionError(f"Cannot check in while status is {prior}")

        salon = await self.get_salon(db, entry.salon_id)
        trust = await get_trust_level(db, customer.id)
        if trust == TrustLevel.BANNED:
            raise AuthorizationError("Check-in is disabled for this account")

        now = self.clock()
        location = None
        distance = None
        if latitude is not None and longitude is not None:
            location = {"latitude": latitude, "longitude": longitude, "accuracy": accuracy}
            if salon.has_location:
                distance = round(haversine_meters(latitude, longitude, salon.latitude, salon.longitude))

        since_notification = None
        if entry.notified_at is not None:
            since_notification = int((now - entry.notified_at).total_seconds())

        log = CheckInLog(
            user_id=customer.id,
            queue_entry_id=entry.id,
            salon_id=salon.id,
            user_location=location,
            distance=distance,
            method=VerificationMethod.GPS_AUTO.value,
            seconds_since_notification=since_notification,
            created_at=now,
        )

        if distance is not None and distance > self.settings.check_in_max_radius_meters:
            log.success = False
            log.suspicious = True
            log.reason = "Too far from salon"
            db.add(log)
            await record_outcome(db, customer.id, Outcome.FALSE_CHECK_IN, now)
            await db.commit()
            raise ValidationError(
                f"You are {distance} m away from the salon, check in when you arrive",
                errors=[{"field": "location", "message": f"{distance} m from salon"}],
            )

        auto_approved = (
            distance is not None
            and distance <= self.settings.check_in_auto_approve_radius_meters
            and trust != TrustLevel.SUSPICIOUS
        )
        extra = {
            "check_in_attempted_at": now,
            "check_in_location": location,
            "check_in_distance": distance,
        }
        if auto_approved:
            new_status = QueueStatus.NEARBY.value
            extra["verification_method"] = VerificationMethod.GPS_AUTO.value
            extra["verified_at"] = now
        else:
            new_status = QueueStatus.PENDING_VERIFICATION.value

        await self._move(db, entry, new_status, extra=extra)

        log.auto_approved = auto_approved
        log.requires_confirmation = not auto_approved
        log.success = auto_approved
        if trust == TrustLevel.SUSPICIOUS:
            log.suspicious = True
            log.reason = "Account flagged, manual confirmation required"
        db.add(log)
        await record_outcome(
            db,
            customer.id,
            Outcome.CHECK_IN_SUCCESS if auto_approved else Outcome.CHECK_IN_PENDING,
            now,
        )
        await db.commit()

        await self.gateway.customer_arrived(
            salon.id,
            queue_id=str(entry.id),
            user_id=str(customer.id),
            user_name=customer.name,
            user_phone=customer.phone,
            verified=auto_approved,
            distance=distance,
            requires_confirmation=not auto_approved,
        )
        if not auto_approved:
            await self.notifier.notify(
                salon.owner_id,
                "Customer waiting for verification",
                f"{customer.name or 'A customer'} says they have arrived at {salon.name}",
                queue_id=str(entry.id),
            )
        await self._announce(db, entry, salon, prior)

        if auto_approved:
            message = "Check-in successful, the salon knows you are here"
        else:
            message = "Waiting for the salon to confirm your arrival"
        return CheckInResult(
            success=True,
            auto_approved=auto_approved,
            requires_confirmation=not auto_approved,
            status=entry.status,
            distance=distance,
            message=message,
        )

    async def verify_arrival(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        owner: User,
        confirmed: bool,
        notes: Optional[str] = None,
    ) -> QueueEntry:
        """
        Salon owner confirms or rejects a customer's arrival.

        Confirming a pending check-in is a manual verification; confirming a
        customer who never checked in is an admin override. Rejecting marks
        the entry as a no-show.
        """
        entry = await self.get_entry(db, entry_id)
        salon = await self.get_salon(db, entry.salon_id)
        self.require_salon_owner(salon, owner)

        prior = entry.status
        if prior not in (
            QueueStatus.WAITING.value,
            QueueStatus.NOTIFIED.value,
            QueueStatus.PENDING_VERIFICATION.value,
        ):
            raise InvalidTransitionError(f"Cannot verify arrival while status is {prior}")

        was_pending = prior == QueueStatus.PENDING_VERIFICATION.value
        method = VerificationMethod.MANUAL if was_pending else VerificationMethod.ADMIN_OVERRIDE
        now = self.clock()

        if confirmed:
            await self._move(
                db,
                entry,
                QueueStatus.NEARBY.value,
                extra={
                    "verification_method": method.value,
                    "verified_by": owner.id,
                    "verified_at": now,
                },
            )
            if was_pending:
                await record_outcome(db, entry.user_id, Outcome.CHECK_IN_CONFIRMED, now)
        else:
            await self._move(db, entry, QueueStatus.NO_SHOW.value, reason=ARRIVAL_REJECTED_REASON)
            await self._settle(db, entry)
            if was_pending:
                await record_outcome(db, entry.user_id, Outcome.FALSE_CHECK_IN, now)

        db.add(CheckInLog(
            user_id=entry.user_id,
            queue_entry_id=entry.id,
            salon_id=salon.id,
            user_location=entry.check_in_location,
            distance=entry.check_in_distance,
            method=method.value,
            auto_approved=False,
            requires_confirmation=False,
            verified_by=owner.id,
            success=confirmed,
            reason=notes,
            created_at=now,
        ))
        await db.commit()

        await self._announce(db, entry, salon, prior)
        return entry

    # =========================================================================
    # Reads
    # =========================================================================

    async def _views(
        self,
        db: AsyncSession,
        entries: Sequence[QueueEntry],
        with_customers: bool = False,
    ) -> list[EntryView]:
        salons: dict[uuid.UUID, Salon] = {}
        active_by_salon: dict[uuid.UUID, list[QueueEntry]] = {}
        customers: dict[uuid.UUID, User] = {}

        if with_customers and entries:
            result = await db.execute(
                select(User).where(User.id.in_(list({e.user_id for e in entries})))
            )
            customers = {u.id: u for u in result.scalars().all()}

        views = []
        for entry in entries:
            if entry.salon_id not in salons:
                salons[entry.salon_id] = await db.get(Salon, entry.salon_id)
                active_by_salon[entry.salon_id] = await load_active_entries(db, entry.salon_id)
            salon = salons[entry.salon_id]
            active = active_by_salon[entry.salon_id]
            views.append(EntryView(
                entry=entry,
                position=recompute_position(entry, active),
                total_in_queue=len(active),
                estimated_wait_minutes=estimated_wait_minutes(entry, active),
                salon=salon,
                services=await self._entry_services(db, entry),
                customer=customers.get(entry.user_id),
            ))
        return views

    async def describe(self, db: AsyncSession, entry: QueueEntry) -> EntryView:
        """One entry with its live position and queue context."""
        return (await self._views(db, [entry], with_customers=True))[0]

    async def get_user_entries(self, db: AsyncSession, customer: User) -> list[EntryView]:
        """All of a customer's entries with live positions, newest first."""
        result = await db.execute(
            select(QueueEntry)
            .where(QueueEntry.user_id == customer.id)
            .order_by(QueueEntry.created_at.desc())
        )
        return await self._views(db, result.scalars().all())

    async def get_salon_entries(
        self,
        db: AsyncSession,
        owner: User,
        salon_id: uuid.UUID,
        active_only: bool = False,
    ) -> list[EntryView]:
        """A salon's entries with live positions, for the owner's dashboard."""
        salon = await self.get_salon(db, salon_id)
        self.require_salon_owner(salon, owner, allow_admin=True)

        query = select(QueueEntry).where(QueueEntry.salon_id == salon.id)
        if active_only:
            query = query.where(QueueEntry.status.in_(ACTIVE_STATUSES))
        result = await db.execute(query.order_by(QueueEntry.created_at))
        return await self._views(db, result.scalars().all(), with_customers=True)

    async def get_pending_verifications(
        self,
        db: AsyncSession,
        owner: User,
        salon_id: uuid.UUID,
    ) -> list[EntryView]:
        views = await self.get_salon_entries(db, owner, salon_id, active_only=True)
        return [v for v in views if v.entry.status == QueueStatus.PENDING_VERIFICATION.value]

    async def broadcast_queue(self, db: AsyncSession, salon_id: uuid.UUID, **extra: Any) -> None:
        """Push the salon's refreshed active queue to live viewers."""
        snapshot = await active_queue_snapshot(db, salon_id)
        await self.gateway.queue_updated(salon_id, snapshot, **extra)
        await self.gateway.positions_updated(salon_id, [
            {
                "id": item["id"],
                "user_id": item["user_id"],
                "position": item["position"],
                "status": item["status"],
                "estimated_wait_time": item["estimated_wait_time"],
            }
            for item in snapshot
        ])
