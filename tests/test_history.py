"""Tests for price history queries."""

from datetime import timedelta
from decimal import Decimal

from pantry_tracker.history import (
    active_window,
    closest_to,
    latest_observation,
    lowest_observation,
    prune_history,
)


class TestWindow:
    """Tests for active window selection."""

    def test_window_boundary_inclusive(self, make_item, day):
        """An observation exactly window_weeks old is inside the window."""
        item = make_item([("5.00", "a", 0), ("4.00", "a", -1), ("4.50", "a", 42)])

        window = active_window(item.price_history, day(42), 6)

        assert [obs.price for obs in window] == [Decimal("5.00"), Decimal("4.50")]

    def test_window_sorted_by_time(self, make_item, day):
        """Out-of-order arrival is sorted by timestamp."""
        item = make_item([("3.00", "a", 10), ("2.00", "a", 5)])

        window = active_window(item.price_history, day(10), 6)

        assert [obs.price for obs in window] == [Decimal("2.00"), Decimal("3.00")]


class TestSelectors:
    """Tests for lowest/latest/closest selectors."""

    def test_lowest_tie_prefers_earliest(self, make_item):
        """Equal prices resolve to the earlier observation."""
        item = make_item([("2.00", "late", 5), ("2.00", "early", 1), ("3.00", "x", 0)])

        assert lowest_observation(item.price_history).store_id == "early"

    def test_latest_tie_prefers_cheapest(self, make_item):
        """Same-timestamp observations resolve to the cheaper one."""
        item = make_item([("2.50", "a", 3), ("2.40", "b", 3), ("9.99", "c", 1)])

        assert latest_observation(item.price_history).store_id == "b"

    def test_empty(self):
        """Empty inputs give None."""
        assert lowest_observation([]) is None
        assert latest_observation([]) is None

    def test_closest_tie_prefers_earlier(self, make_item, day):
        """Observations one day either side of the target pick the earlier one."""
        item = make_item([("4.00", "after", 8), ("3.00", "before", 6)])

        chosen = closest_to(item.price_history, day(7))

        assert chosen.store_id == "before"

    def test_closest_by_distance(self, make_item, day):
        """The nearest observation wins regardless of side."""
        item = make_item([("4.00", "far", 0), ("3.00", "near", 7.5)])

        assert closest_to(item.price_history, day(7)).store_id == "near"


class TestPruneHistory:
    """Tests for retention pruning."""

    def test_prunes_older_than_retention(self, make_item, day):
        """Observations past the retention cutoff are dropped."""
        item = make_item([("1.00", "a", 0), ("1.10", "a", 100), ("1.20", "a", 200)])

        removed = prune_history(item, day(200), retention_weeks=15)

        assert removed == 1
        assert [obs.price for obs in item.price_history] == [Decimal("1.10"), Decimal("1.20")]

    def test_none_keeps_everything(self, make_item, day):
        """Unbounded retention removes nothing."""
        item = make_item([("1.00", "a", 0)])

        assert prune_history(item, day(1000), retention_weeks=None) == 0
        assert len(item.price_history) == 1

    def test_cutoff_is_inclusive(self, make_item, day):
        """An observation exactly at the cutoff is kept."""
        item = make_item([("1.00", "a", 0)])

        assert prune_history(item, day(0) + timedelta(weeks=13), retention_weeks=13) == 0
