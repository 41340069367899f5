"""
Live viewer tracking - "N people are looking at this salon right now".

In-memory only. Two maps are kept in lockstep: salon -> viewers and
viewer -> salon. A viewer watches at most one salon at a time. State is
lost on restart and rebuilt as clients reconnect.
"""

from typing import Optional


class LiveViewerTracker:
    """Counts concurrent viewers per salon."""

    def __init__(self):
        self._viewers: dict[str, set[str]] = {}
        self._current_view: dict[str, str] = {}

    def join_view(self, salon_id: str, viewer_id: str) -> int:
        """
        Start viewing a salon, leaving any previously viewed one.

        Returns the salon's new viewer count.
        """
        previous = self._current_view.get(viewer_id)
        if previous is not None and previous != salon_id:
            self.leave_view(previous, viewer_id)

        self._viewers.setdefault(salon_id, set()).add(viewer_id)
        self._current_view[viewer_id] = salon_id
        return self.viewer_count(salon_id)

    def leave_view(self, salon_id: str, viewer_id: str) -> int:
        """Stop viewing a salon. Returns the salon's new viewer count."""
        viewers = self._viewers.get(salon_id)
        if viewers is not None:
            viewers.discard(viewer_id)
            if not viewers:
                del self._viewers[salon_id]

        if self._current_view.get(viewer_id) == salon_id:
            del self._current_view[viewer_id]

        return self.viewer_count(salon_id)

    def remove_viewer(self, viewer_id: str) -> Optional[tuple[str, int]]:
        """
        Drop a disconnected viewer.

        Returns ``(salon_id, new_count)`` for the salon they were viewing, or
        None if they were not viewing anything.
        """
        salon_id = self._current_view.get(viewer_id)
        if salon_id is None:
            return None
        return salon_id, self.leave_view(salon_id, viewer_id)

    def viewing(self, viewer_id: str) -> Optional[str]:
        return self._current_view.get(viewer_id)

    def viewer_count(self, salon_id: str) -> int:
        return len(self._viewers.get(salon_id, ()))

    def all_counts(self) -> dict[str, int]:
        return {salon_id: len(viewers) for salon_id, viewers in self._viewers.items()}
