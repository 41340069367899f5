"""
Process-wide service graph.

The registry, gateway, tracker, lifecycle service, sweeper and scheduler are
plain objects wired together once at startup and stored on ``app.state``.
Tests build their own with an in-memory session factory and a fake clock.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from altq.config import Settings
from altq.services.broadcast import BroadcastGateway, ConnectionRegistry
from altq.services.live_viewers import LiveViewerTracker
from altq.services.notifications import Notifier
from altq.services.queue_service import QueueService
from altq.services.scheduler import JobScheduler
from altq.services.timeout_sweeper import TimeoutSweeper
from altq.utils.timezone import Clock, utc_now


@dataclass
class Runtime:
    settings: Settings
    session_maker: async_sessionmaker[AsyncSession]
    registry: ConnectionRegistry
    gateway: BroadcastGateway
    viewers: LiveViewerTracker
    notifier: Notifier
    queue_service: QueueService
    sweeper: TimeoutSweeper
    scheduler: JobScheduler


def build_runtime(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    clock: Clock = utc_now,
) -> Runtime:
    """Wire up the service graph and register the sweep jobs."""
    registry = ConnectionRegistry()
    gateway = BroadcastGateway(registry)
    notifier = Notifier(gateway)
    queue_service = QueueService(gateway, notifier, settings, clock=clock)
    sweeper = TimeoutSweeper(session_maker, queue_service, settings)

    scheduler = JobScheduler(clock=clock)
    scheduler.add_job(
        "pending_verification_timeout",
        sweeper.expire_pending_verifications,
        settings.pending_verification_interval_seconds,
    )
    scheduler.add_job(
        "queue_timeout",
        sweeper.expire_stale_entries,
        settings.queue_timeout_interval_seconds,
    )
    scheduler.add_job(
        "no_show_detection",
        sweeper.detect_no_shows,
        settings.no_show_interval_seconds,
    )

    return Runtime(
        settings=settings,
        session_maker=session_maker,
        registry=registry,
        gateway=gateway,
        viewers=LiveViewerTracker(),
        notifier=notifier,
        queue_service=queue_service,
        sweeper=sweeper,
        scheduler=scheduler,
    )
