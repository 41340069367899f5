"""Tests for the queue lifecycle engine."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from altq.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from altq.models import (
    CheckInLog,
    QueueEntry,
    QueueStatus,
    Salon,
    TrustLevel,
    UserReputation,
    UserRole,
)
from altq.services.broadcast import ClientConnection
from altq.services.queue_service import (
    ARRIVAL_REJECTED_REASON,
    LEFT_BY_CUSTOMER_REASON,
    MARKED_BY_SALON_REASON,
    haversine_meters,
)
from conftest import FakeSocket

# About 500 m north of the salon
NEARBY_LATITUDE = 52.5013 + 0.0045
SALON_LONGITUDE = 13.4183


def listen(runtime, user):
    """Register a live connection for ``user`` and return its socket."""
    conn = ClientConnection(socket=FakeSocket())
    runtime.registry.connect(conn)
    runtime.registry.authenticate(conn, str(user.id))
    return conn.socket


async def get_reputation(db, user):
    result = await db.execute(select(UserReputation).where(UserReputation.user_id == user.id))
    return result.scalar_one_or_none()


class TestJoin:
    """Tests for QueueService.join()."""

    async def test_join_creates_waiting_entry(self, db, queue_service, customer, salon, haircut, beard_trim):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id, beard_trim.id])

        assert entry.status == QueueStatus.WAITING.value
        assert entry.initial_position == 1
        assert entry.service_ids == [str(haircut.id), str(beard_trim.id)]
        assert entry.total_duration_minutes == 45
        assert entry.subtotal_price == Decimal("37.00")
        assert entry.total_price == Decimal("37.00")
        assert entry.points_redeemed == 0

    async def test_positions_follow_join_order(
        self, db, clock, queue_service, make_user, customer, salon, haircut
    ):
        other = await make_user(name="Second")
        first = await queue_service.join(db, customer, salon.id, [haircut.id])
        clock.advance(minutes=1)
        second = await queue_service.join(db, other, salon.id, [haircut.id])

        assert second.initial_position == 2

        [view] = await queue_service.get_user_entries(db, other)
        assert view.entry.id == second.id
        assert view.position == 2
        assert view.total_in_queue == 2
        assert view.estimated_wait_minutes == 30

        await queue_service.leave(db, first.id, customer)
        [view] = await queue_service.get_user_entries(db, other)
        assert view.position == 1
        assert view.estimated_wait_minutes == 0

    async def test_cannot_join_twice(self, db, queue_service, customer, salon, haircut):
        await queue_service.join(db, customer, salon.id, [haircut.id])
        with pytest.raises(ConflictError):
            await queue_service.join(db, customer, salon.id, [haircut.id])

    async def test_can_rejoin_after_terminal(self, db, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        await queue_service.mark_no_show(db, entry.id, owner)

        again = await queue_service.join(db, customer, salon.id, [haircut.id])
        assert again.id != entry.id
        assert again.initial_position == 1

    async def test_requires_services(self, db, queue_service, customer, salon):
        with pytest.raises(ValidationError):
            await queue_service.join(db, customer, salon.id, [])

    async def test_unknown_salon(self, db, queue_service, customer, haircut):
        with pytest.raises(NotFoundError):
            await queue_service.join(db, customer, customer.id, [haircut.id])

    async def test_service_of_other_salon(self, db, clock, queue_service, make_user, make_service, customer, salon):
        other_owner = await make_user(UserRole.SALON_OWNER)
        other_salon = Salon(owner_id=other_owner.id, name="Elsewhere", address="Somewhere", created_at=clock())
        db.add(other_salon)
        await db.commit()
        foreign = await make_service(other_salon, "Shave", 20, "15.00")

        with pytest.raises(ValidationError):
            await queue_service.join(db, customer, salon.id, [foreign.id])

    async def test_inactive_service(self, db, queue_service, make_service, customer, salon):
        retired = await make_service(salon, "Perm", 120, "80.00", is_active=False)
        with pytest.raises(ValidationError):
            await queue_service.join(db, customer, salon.id, [retired.id])


class TestPricing:
    """Offers and loyalty redemption at join time."""

    async def test_best_offer_applies(self, db, queue_service, make_offer, customer, salon, haircut):
        small = await make_offer(salon, 10)
        big = await make_offer(salon, 20)

        entry = await queue_service.join(db, customer, salon.id, [haircut.id], applied_offer_ids=[small.id, big.id])

        assert entry.total_price == Decimal("20.00")
        assert entry.discount_amount == Decimal("5.00")
        assert set(entry.applied_offers) == {str(small.id), str(big.id)}

    async def test_expired_offer_rejected(self, db, queue_service, make_offer, customer, salon, haircut):
        stale = await make_offer(salon, 50, valid_for=timedelta(minutes=-1))
        with pytest.raises(ValidationError):
            await queue_service.join(db, customer, salon.id, [haircut.id], applied_offer_ids=[stale.id])

    async def test_large_loyalty_tier(self, db, queue_service, make_user, salon, haircut):
        regular = await make_user(loyalty_points=120, salon_loyalty_points={str(salon.id): 120})

        entry = await queue_service.join(db, regular, salon.id, [haircut.id])

        assert entry.points_redeemed == 100
        assert entry.loyalty_discount_percent == 20
        assert entry.total_price == Decimal("20.00")
        assert regular.points_at(salon.id) == 20
        assert regular.loyalty_points == 20

    async def test_small_loyalty_tier(self, db, queue_service, make_user, salon, haircut):
        regular = await make_user(loyalty_points=60, salon_loyalty_points={str(salon.id): 60})

        entry = await queue_service.join(db, regular, salon.id, [haircut.id])

        assert entry.points_redeemed == 50
        assert entry.total_price == Decimal("22.50")
        assert regular.points_at(salon.id) == 10

    async def test_points_from_other_salon_do_not_count(self, db, queue_service, make_user, salon, haircut):
        visitor = await make_user(loyalty_points=500, salon_loyalty_points={"another-salon": 500})
        entry = await queue_service.join(db, visitor, salon.id, [haircut.id])
        assert entry.points_redeemed == 0
        assert entry.total_price == Decimal("25.00")

    async def test_redemption_can_be_skipped(self, db, queue_service, make_user, salon, haircut):
        saver = await make_user(loyalty_points=120, salon_loyalty_points={str(salon.id): 120})
        entry = await queue_service.join(db, saver, salon.id, [haircut.id], redeem_loyalty_points=False)
        assert entry.points_redeemed == 0
        assert saver.points_at(salon.id) == 120

    async def test_offer_then_loyalty(self, db, queue_service, make_offer, make_user, salon, haircut):
        offer = await make_offer(salon, 20)
        regular = await make_user(loyalty_points=100, salon_loyalty_points={str(salon.id): 100})

        entry = await queue_service.join(db, regular, salon.id, [haircut.id], applied_offer_ids=[offer.id])

        # 25.00 -20% = 20.00, then -20% = 16.00
        assert entry.total_price == Decimal("16.00")


class TestUpdateStatus:
    """Tests for QueueService.update_status()."""

    async def test_completion_credits_points_once(self, db, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        await queue_service.update_status(db, entry.id, owner, "in-progress")

        await queue_service.update_status(db, entry.id, owner, "completed")
        await queue_service.update_status(db, entry.id, owner, "completed")

        assert entry.status == QueueStatus.COMPLETED.value
        assert entry.service_completed_at is not None
        assert customer.points_at(salon.id) == 25
        assert customer.loyalty_points == 25
        reputation = await get_reputation(db, customer)
        assert reputation.completed_services == 1

    async def test_completion_lost_race_credits_nothing(
        self, db, session_maker, queue_service, owner, customer, salon, haircut
    ):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        await queue_service.update_status(db, entry.id, owner, "in-progress")

        # Another writer completes the entry behind this session's back
        async with session_maker() as other:
            await other.execute(
                update(QueueEntry).where(QueueEntry.id == entry.id).values(status="completed")
            )
            await other.commit()

        result = await queue_service.update_status(db, entry.id, owner, "completed")

        assert result.status == QueueStatus.COMPLETED.value
        assert customer.points_at(salon.id) == 0

    async def test_concurrent_change_is_a_conflict(
        self, db, session_maker, queue_service, owner, customer, salon, haircut
    ):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])

        async with session_maker() as other:
            await other.execute(
                update(QueueEntry).where(QueueEntry.id == entry.id).values(status="notified")
            )
            await other.commit()

        with pytest.raises(ConflictError):
            await queue_service.update_status(db, entry.id, owner, "in-progress")
        assert entry.status == QueueStatus.NOTIFIED.value

    async def test_stage_timestamps(self, db, clock, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        clock.advance(minutes=5)
        await queue_service.update_status(db, entry.id, owner, "in-progress")
        assert entry.service_started_at == clock()
        assert entry.notified_at is None

    async def test_customer_can_only_cancel(self, db, queue_service, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])

        with pytest.raises(AuthorizationError):
            await queue_service.update_status(db, entry.id, customer, "completed")

        await queue_service.update_status(db, entry.id, customer, "no-show")
        assert entry.status == QueueStatus.NO_SHOW.value
        assert entry.no_show_reason == LEFT_BY_CUSTOMER_REASON

    @pytest.mark.parametrize("trust", [TrustLevel.NEW, TrustLevel.SUSPICIOUS, TrustLevel.BANNED])
    async def test_customer_cannot_skip_check_in(self, db, queue_service, customer, salon, haircut, trust):
        db.add(UserReputation(user_id=customer.id, trust_level=trust.value))
        await db.commit()
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])

        with pytest.raises(AuthorizationError):
            await queue_service.update_status(db, entry.id, customer, "nearby")

        await db.refresh(entry)
        assert entry.status == QueueStatus.WAITING.value
        assert entry.verification_method is None

    async def test_stranger_rejected(self, db, queue_service, make_user, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        stranger = await make_user(UserRole.SALON_OWNER)
        with pytest.raises(AuthorizationError):
            await queue_service.update_status(db, entry.id, stranger, "in-progress")

    async def test_terminal_is_final(self, db, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        await queue_service.mark_no_show(db, entry.id, owner)
        with pytest.raises(InvalidTransitionError):
            await queue_service.update_status(db, entry.id, owner, "waiting")

    async def test_no_show_after_service_started_rejected(self, db, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        await queue_service.call_customer(db, entry.id, owner)
        with pytest.raises(InvalidTransitionError):
            await queue_service.update_status(db, entry.id, owner, "no-show")

    async def test_unknown_status(self, db, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        with pytest.raises(ValidationError):
            await queue_service.update_status(db, entry.id, owner, "teleported")

    async def test_missing_entry(self, db, queue_service, owner):
        with pytest.raises(NotFoundError):
            await queue_service.update_status(db, owner.id, owner, "completed")

    async def test_no_show_counts_on_reputation(self, db, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        await queue_service.mark_no_show(db, entry.id, owner)

        assert entry.no_show_reason == MARKED_BY_SALON_REASON
        reputation = await get_reputation(db, customer)
        assert reputation.no_shows == 1


class TestLeave:

    async def test_leave_deletes_entry(self, db, queue_service, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        await queue_service.leave(db, entry.id, customer)
        assert await db.get(QueueEntry, entry.id) is None

    async def test_only_own_entry(self, db, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        with pytest.raises(AuthorizationError):
            await queue_service.leave(db, entry.id, owner)

    async def test_salon_sees_shorter_queue(
        self, db, clock, runtime, queue_service, make_user, owner, customer, salon, haircut
    ):
        leaving = await queue_service.join(db, customer, salon.id, [haircut.id])
        clock.advance(minutes=1)
        staying = await queue_service.join(db, await make_user(name="Stays"), salon.id, [haircut.id])
        owner_socket = listen(runtime, owner)

        await queue_service.leave(db, leaving.id, customer)

        last_update = [m for m in owner_socket.sent if m["type"] == "queue_update"][-1]
        assert last_update["data"]["removed_queue_id"] == str(leaving.id)
        assert [q["id"] for q in last_update["data"]["queues"]] == [str(staying.id)]
        assert last_update["data"]["queues"][0]["position"] == 1


class TestBroadcasts:
    """Side effects on live connections."""

    async def test_join_announces_to_salon(self, db, runtime, queue_service, owner, customer, salon, haircut):
        owner_socket = listen(runtime, owner)

        entry = await queue_service.join(db, customer, salon.id, [haircut.id])

        types = owner_socket.types()
        assert types[0] == "queue_join"
        assert "notification" in types
        assert "queue_update" in types
        assert "queue_position_update" in types
        update_message = next(m for m in owner_socket.sent if m["type"] == "queue_update")
        assert update_message["salon_id"] == str(salon.id)
        assert update_message["data"]["queues"][0]["id"] == str(entry.id)
        assert update_message["data"]["queues"][0]["position"] == 1

    async def test_anonymous_viewer_receives_subscribed_salon_only(
        self, db, runtime, queue_service, customer, salon, haircut
    ):
        follower = ClientConnection(socket=FakeSocket())
        follower.subscriptions.add(str(salon.id))
        runtime.registry.connect(follower)
        stranger = ClientConnection(socket=FakeSocket())
        runtime.registry.connect(stranger)

        await queue_service.join(db, customer, salon.id, [haircut.id])

        assert "queue_update" in follower.socket.types()
        assert stranger.socket.sent == []

    async def test_lifecycle_events_reach_customer(self, db, runtime, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        customer_socket = listen(runtime, customer)

        await queue_service.call_customer(db, entry.id, owner)
        await queue_service.update_status(db, entry.id, owner, "completed")

        types = customer_socket.types()
        assert "service_starting" in types
        assert "service_completed" in types
        completed = next(m for m in customer_socket.sent if m["type"] == "service_completed")
        assert completed["points_earned"] == 25

    async def test_broken_socket_does_not_fail_operation(self, db, runtime, queue_service, owner, customer, salon, haircut):
        conn = ClientConnection(socket=FakeSocket(fail=True))
        runtime.registry.connect(conn)
        runtime.registry.authenticate(conn, str(owner.id))

        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        assert entry.status == QueueStatus.WAITING.value


class TestNotifyCustomer:

    async def test_notify_moves_to_notified(self, db, runtime, clock, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        customer_socket = listen(runtime, customer)

        await queue_service.notify_customer(db, entry.id, owner, 10)

        assert entry.status == QueueStatus.NOTIFIED.value
        assert entry.notified_at == clock()
        assert entry.notification_minutes == 10
        notification = next(m for m in customer_socket.sent if m["type"] == "queue_notification")
        assert notification["estimated_minutes"] == 10
        assert notification["salon_name"] == salon.name

    async def test_renotify_updates_eta(self, db, clock, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        await queue_service.notify_customer(db, entry.id, owner, 10)
        first_notified_at = entry.notified_at
        clock.advance(minutes=3)

        await queue_service.notify_customer(db, entry.id, owner, 5)

        assert entry.notification_minutes == 5
        assert entry.notified_at == first_notified_at

    async def test_only_salon_owner(self, db, queue_service, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        with pytest.raises(AuthorizationError):
            await queue_service.notify_customer(db, entry.id, customer, 10)


class TestCheckIn:
    """GPS check-in and arrival verification."""

    async def test_at_the_door_auto_approves(self, db, queue_service, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])

        result = await queue_service.check_in(db, entry.id, customer, latitude=52.5013, longitude=13.4183)

        assert result.auto_approved is True
        assert result.requires_confirmation is False
        assert result.distance == 0
        assert entry.status == QueueStatus.NEARBY.value
        assert entry.verification_method == "gps_auto"
        reputation = await get_reputation(db, customer)
        assert reputation.successful_check_ins == 1

    async def test_within_max_radius_needs_confirmation(self, db, queue_service, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])

        result = await queue_service.check_in(
            db, entry.id, customer, latitude=NEARBY_LATITUDE, longitude=SALON_LONGITUDE
        )

        assert result.auto_approved is False
        assert result.requires_confirmation is True
        assert 400 < result.distance < 600
        assert entry.status == QueueStatus.PENDING_VERIFICATION.value
        assert entry.check_in_attempted_at is not None

    async def test_without_location_needs_confirmation(self, db, queue_service, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        result = await queue_service.check_in(db, entry.id, customer)
        assert result.requires_confirmation is True
        assert result.distance is None

    async def test_too_far_rejected_and_logged(self, db, queue_service, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])

        with pytest.raises(ValidationError):
            await queue_service.check_in(db, entry.id, customer, latitude=52.53, longitude=13.4183)

        assert entry.status == QueueStatus.WAITING.value
        logs = (await db.execute(select(CheckInLog))).scalars().all()
        assert len(logs) == 1
        assert logs[0].suspicious is True
        assert logs[0].success is False
        reputation = await get_reputation(db, customer)
        assert reputation.false_check_ins == 1

    async def test_suspicious_user_always_confirmed_manually(self, db, queue_service, customer, salon, haircut):
        db.add(UserReputation(
            user_id=customer.id,
            total_check_ins=4,
            successful_check_ins=0,
            false_check_ins=2,
            no_shows=0,
            completed_services=0,
            reputation_score=20,
            trust_level=TrustLevel.SUSPICIOUS.value,
        ))
        await db.commit()
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])

        result = await queue_service.check_in(db, entry.id, customer, latitude=52.5013, longitude=13.4183)

        assert result.auto_approved is False
        assert entry.status == QueueStatus.PENDING_VERIFICATION.value

    async def test_banned_user_cannot_check_in(self, db, queue_service, customer, salon, haircut):
        db.add(UserReputation(
            user_id=customer.id,
            total_check_ins=10,
            successful_check_ins=0,
            false_check_ins=6,
            no_shows=3,
            completed_services=0,
            reputation_score=0,
            trust_level=TrustLevel.BANNED.value,
        ))
        await db.commit()
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])

        with pytest.raises(AuthorizationError):
            await queue_service.check_in(db, entry.id, customer, latitude=52.5013, longitude=13.4183)

    async def test_arrival_announced_to_salon(self, db, runtime, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        owner_socket = listen(runtime, owner)

        await queue_service.check_in(db, entry.id, customer, latitude=NEARBY_LATITUDE, longitude=SALON_LONGITUDE)

        arrived = next(m for m in owner_socket.sent if m["type"] == "customer_arrived")
        assert arrived["queue_id"] == str(entry.id)
        assert arrived["requires_confirmation"] is True

    async def test_owner_confirms_pending_arrival(self, db, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        await queue_service.check_in(db, entry.id, customer, latitude=NEARBY_LATITUDE, longitude=SALON_LONGITUDE)

        await queue_service.verify_arrival(db, entry.id, owner, confirmed=True)

        assert entry.status == QueueStatus.NEARBY.value
        assert entry.verification_method == "manual"
        assert entry.verified_by == owner.id
        reputation = await get_reputation(db, customer)
        assert reputation.successful_check_ins == 1

    async def test_owner_confirms_without_check_in(self, db, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        await queue_service.verify_arrival(db, entry.id, owner, confirmed=True)
        assert entry.verification_method == "admin_override"

    async def test_rejected_arrival_is_no_show(self, db, queue_service, owner, customer, salon, haircut):
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        await queue_service.check_in(db, entry.id, customer, latitude=NEARBY_LATITUDE, longitude=SALON_LONGITUDE)

        await queue_service.verify_arrival(db, entry.id, owner, confirmed=False, notes="Nobody here")

        assert entry.status == QueueStatus.NO_SHOW.value
        assert entry.no_show_reason == ARRIVAL_REJECTED_REASON
        reputation = await get_reputation(db, customer)
        assert reputation.false_check_ins == 1
        assert reputation.no_shows == 1

    async def test_pending_verifications_listed(self, db, clock, queue_service, make_user, owner, customer, salon, haircut):
        other = await make_user(name="Other")
        entry = await queue_service.join(db, customer, salon.id, [haircut.id])
        clock.advance(minutes=1)
        await queue_service.join(db, other, salon.id, [haircut.id])
        await queue_service.check_in(db, entry.id, customer)

        views = await queue_service.get_pending_verifications(db, owner, salon.id)

        assert [v.entry.id for v in views] == [entry.id]
        assert views[0].customer.id == customer.id


class TestReads:

    async def test_salon_entries_owner_only(self, db, queue_service, make_user, customer, salon, haircut):
        await queue_service.join(db, customer, salon.id, [haircut.id])
        other_owner = await make_user(UserRole.SALON_OWNER)
        with pytest.raises(AuthorizationError):
            await queue_service.get_salon_entries(db, other_owner, salon.id)

    async def test_super_admin_may_read_salon_entries(self, db, queue_service, make_user, customer, salon, haircut):
        await queue_service.join(db, customer, salon.id, [haircut.id])
        admin = await make_user(UserRole.SUPER_ADMIN)
        views = await queue_service.get_salon_entries(db, admin, salon.id)
        assert len(views) == 1


def test_haversine_distance():
    # One thousandth of a degree of latitude is roughly 111 m
    assert 110 < haversine_meters(52.0, 13.0, 52.001, 13.0) < 112
