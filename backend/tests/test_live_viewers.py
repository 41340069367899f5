"""Tests for LiveViewerTracker."""

from altq.services.live_viewers import LiveViewerTracker


class TestLiveViewerTracker:

    def test_join_and_leave_counts(self):
        tracker = LiveViewerTracker()
        assert tracker.join_view("salon-a", "u1") == 1
        assert tracker.join_view("salon-a", "u2") == 2
        assert tracker.leave_view("salon-a", "u1") == 1
        assert tracker.viewer_count("salon-a") == 1

    def test_joining_twice_counts_once(self):
        tracker = LiveViewerTracker()
        tracker.join_view("salon-a", "u1")
        assert tracker.join_view("salon-a", "u1") == 1

    def test_one_salon_per_viewer(self):
        tracker = LiveViewerTracker()
        tracker.join_view("salon-a", "u1")
        tracker.join_view("salon-b", "u1")
        assert tracker.viewer_count("salon-a") == 0
        assert tracker.viewer_count("salon-b") == 1
        assert tracker.viewing("u1") == "salon-b"

    def test_leave_unknown_is_harmless(self):
        tracker = LiveViewerTracker()
        assert tracker.leave_view("salon-a", "nobody") == 0

    def test_remove_viewer_reports_salon(self):
        tracker = LiveViewerTracker()
        tracker.join_view("salon-a", "u1")
        tracker.join_view("salon-a", "u2")
        assert tracker.remove_viewer("u1") == ("salon-a", 1)
        assert tracker.remove_viewer("u1") is None

    def test_all_counts_skips_empty_salons(self):
        tracker = LiveViewerTracker()
        tracker.join_view("salon-a", "u1")
        tracker.join_view("salon-b", "u2")
        tracker.leave_view("salon-b", "u2")
        assert tracker.all_counts() == {"salon-a": 1}
