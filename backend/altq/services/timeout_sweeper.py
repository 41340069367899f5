"""
Timeout sweeps - time-driven transitions of queue entries.

Three sweeps, each scheduled independently by ``JobScheduler``:

- pending verification timeout: a check-in nobody confirmed within
  ``pending_verification_timeout_minutes`` goes back to ``notified`` so the
  customer can try again
- queue timeout: ``waiting`` / ``notified`` entries older than
  ``queue_timeout_minutes`` become ``no-show``
- no-show detection: notified customers who did not show up within the
  announced ETA plus ``no_show_grace_minutes`` become ``no-show``

Each sweep selects candidates, then transitions them one by one with a
conditional update. An entry a user changed in between is skipped.
"""

import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from altq.config import Settings
from altq.models import QueueEntry, QueueStatus
from altq.services.queue_service import (
    NOTIFICATION_WINDOW_REASON,
    QUEUE_TIMEOUT_REASON,
    QueueService,
)
from altq.utils.timezone import Clock


class TimeoutSweeper:
    """Runs the timeout sweeps against a session factory."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        queue_service: QueueService,
        settings: Settings,
        clock: Optional[Clock] = None,
    ):
        self.session_maker = session_maker
        self.queue_service = queue_service
        self.settings = settings
        self.clock = clock or queue_service.clock

    async def _transition_all(
        self,
        db: AsyncSession,
        entry_ids: list[uuid.UUID],
        expected_statuses: tuple[str, ...],
        new_status: str,
        reason: Optional[str] = None,
        allow_revert: bool = False,
    ) -> list[QueueEntry]:
        """Transition each candidate that still is in an expected status."""
        changed = []
        for entry_id in entry_ids:
            entry = await db.get(QueueEntry, entry_id, populate_existing=True)
            if entry is None or entry.status not in expected_statuses:
                continue
            moved = await self.queue_service.apply_system_transition(
                db,
                entry,
                new_status,
                reason=reason,
                allow_revert=allow_revert,
                broadcast_snapshot=False,
            )
            if moved:
                changed.append(entry)

        for salon_id in dict.fromkeys(e.salon_id for e in changed):
            await self.queue_service.broadcast_queue(db, salon_id, reason=new_status)
        return changed

    async def expire_pending_verifications(self) -> int:
        """Revert stale pending verifications to ``notified``."""
        cutoff = self.clock() - timedelta(minutes=self.settings.pending_verification_timeout_minutes)
        expected = (QueueStatus.PENDING_VERIFICATION.value,)

        async with self.session_maker() as db:
            result = await db.execute(
                select(QueueEntry.id).where(
                    QueueEntry.status == QueueStatus.PENDING_VERIFICATION.value,
                    QueueEntry.check_in_attempted_at <= cutoff,
                )
            )
            changed = await self._transition_all(
                db,
                list(result.scalars().all()),
                expected,
                QueueStatus.NOTIFIED.value,
                allow_revert=True,
            )
            for entry in changed:
                await self.queue_service.notifier.notify(
                    entry.user_id,
                    "Check-in not confirmed",
                    "The salon did not confirm your arrival in time, please check in again",
                    queue_id=str(entry.id),
                )

        if changed:
            print(f"Pending verification sweep: reverted {len(changed)} entries", flush=True)
        return len(changed)

    async def expire_stale_entries(self) -> int:
        """Auto-reject waiting / notified entries that have been queued too long."""
        minutes = self.settings.queue_timeout_minutes
        cutoff = self.clock() - timedelta(minutes=minutes)
        expected = (QueueStatus.WAITING.value, QueueStatus.NOTIFIED.value)

        async with self.session_maker() as db:
            result = await db.execute(
                select(QueueEntry.id).where(
                    QueueEntry.status.in_(expected),
                    QueueEntry.created_at <= cutoff,
                )
            )
            changed = await self._transition_all(
                db,
                list(result.scalars().all()),
                expected,
                QueueStatus.NO_SHOW.value,
                reason=QUEUE_TIMEOUT_REASON.format(minutes=minutes),
            )

        if changed:
            print(f"Queue timeout sweep: auto-rejected {len(changed)} entries", flush=True)
        return len(changed)

    async def detect_no_shows(self) -> int:
        """Mark notified customers who missed their arrival window."""
        now = self.clock()
        grace = timedelta(minutes=self.settings.no_show_grace_minutes)
        expected = (QueueStatus.NOTIFIED.value,)

        async with self.session_maker() as db:
            result = await db.execute(
                select(
                    QueueEntry.id,
                    QueueEntry.notified_at,
                    QueueEntry.notification_minutes,
                ).where(
                    QueueEntry.status == QueueStatus.NOTIFIED.value,
                    QueueEntry.notified_at.is_not(None),
                    QueueEntry.notified_at <= now - grace,
                )
            )
            overdue = [
                row.id for row in result.all()
                if row.notified_at + timedelta(minutes=row.notification_minutes or 0) + grace <= now
            ]
            changed = await self._transition_all(
                db,
                overdue,
                expected,
                QueueStatus.NO_SHOW.value,
                reason=NOTIFICATION_WINDOW_REASON,
            )

        if changed:
            print(f"No-show detection: marked {len(changed)} entries", flush=True)
        return len(changed)

    async def run_all(self) -> dict[str, int]:
        """Run every sweep once (used at startup and by the admin endpoint)."""
        return {
            "pending_verification_timeout": await self.expire_pending_verifications(),
            "queue_timeout": await self.expire_stale_entries(),
            "no_show_detection": await self.detect_no_shows(),
        }
