"""
Pure queue logic: the status graph and live position calculation.

Nothing in here touches the database, so it can be used on any list of
entries (ORM rows or test doubles with the same attributes).
"""

from typing import Iterable, Protocol, Sequence

from altq.models.queue_entry import ACTIVE_STATUSES, TERMINAL_STATUSES, QueueStatus


class EntryLike(Protocol):
    id: object
    status: str
    created_at: object
    initial_position: int
    total_duration_minutes: int


# Main line of the lifecycle, in order
LIFECYCLE_ORDER: tuple[str, ...] = (
    QueueStatus.WAITING.value,
    QueueStatus.NOTIFIED.value,
    QueueStatus.PENDING_VERIFICATION.value,
    QueueStatus.NEARBY.value,
    QueueStatus.IN_PROGRESS.value,
    QueueStatus.COMPLETED.value,
)

# States a no-show can be declared from
NO_SHOW_SOURCES: frozenset[str] = frozenset({
    QueueStatus.WAITING.value,
    QueueStatus.NOTIFIED.value,
    QueueStatus.PENDING_VERIFICATION.value,
})


def can_transition(current: str, new: str, allow_revert: bool = False) -> bool:
    """
    Check whether ``current -> new`` is an edge of the lifecycle graph.

    Forward moves along the main line may skip states. ``no-show`` is
    reachable from waiting, notified and pending_verification. The single
    backward edge, pending_verification -> notified, is only allowed with
    ``allow_revert`` (the verification timeout sweep).
    """
    if current in TERMINAL_STATUSES:
        return False
    if new == QueueStatus.NO_SHOW.value:
        return current in NO_SHOW_SOURCES
    if (
        allow_revert
        and current == QueueStatus.PENDING_VERIFICATION.value
        and new == QueueStatus.NOTIFIED.value
    ):
        return True
    if current not in LIFECYCLE_ORDER or new not in LIFECYCLE_ORDER:
        return False
    return LIFECYCLE_ORDER.index(new) > LIFECYCLE_ORDER.index(current)


def order_active(entries: Iterable[EntryLike]) -> list[EntryLike]:
    """Active entries in queue order (join time, then id for ties)."""
    active = [e for e in entries if e.status in ACTIVE_STATUSES]
    return sorted(active, key=lambda e: (e.created_at, str(e.id)))


def recompute_position(entry: EntryLike, active_entries: Sequence[EntryLike]) -> int:
    """
    Live position of an entry.

    0 while being served or once finished; otherwise the 1-based rank
    among the salon's active entries by join time. If the entry is not in
    ``active_entries`` the creation-time position is returned.
    """
    if entry.status == QueueStatus.IN_PROGRESS.value or entry.status in TERMINAL_STATUSES:
        return 0

    for index, other in enumerate(order_active(active_entries), start=1):
        if other.id == entry.id:
            return index
    return entry.initial_position


def estimated_wait_minutes(entry: EntryLike, active_entries: Sequence[EntryLike]) -> int:
    """Sum of the booked durations of everyone ahead of ``entry``."""
    if entry.status not in ACTIVE_STATUSES or entry.status == QueueStatus.IN_PROGRESS.value:
        return 0

    total = 0
    for other in order_active(active_entries):
        if other.id == entry.id:
            return total
        total += other.total_duration_minutes or 0
    return total
