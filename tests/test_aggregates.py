"""Tests for the rolling aggregate engine."""

from decimal import Decimal

import pytest

from pantry_tracker.aggregates import (
    AggregateComputationError,
    compute_trend,
    percent_change,
    recompute_aggregates,
)
from pantry_tracker.models import Item


@pytest.fixture
def scenario_item(make_item):
    """$5.00 at A (day 0), $4.50 at B (day 7), $4.70 at A (day 14)."""
    return make_item([("5.00", "A", 0), ("4.50", "B", 7), ("4.70", "A", 14)])


class TestScenario:
    """The three-observation walkthrough."""

    def test_price_range(self, scenario_item, day):
        """Range covers the whole six-week window."""
        updated = recompute_aggregates(scenario_item, day(14))

        assert updated.price_range.min == Decimal("4.50")
        assert updated.price_range.max == Decimal("5.00")
        assert updated.price_range.sample_count == 3
        assert updated.price_range.window_weeks == 6

    def test_lowest_and_current(self, scenario_item, day):
        """Lowest is the window minimum; current is the latest observation."""
        updated = recompute_aggregates(scenario_item, day(14))

        assert updated.current_lowest_price.price == Decimal("4.50")
        assert updated.current_lowest_price.store_id == "B"
        assert updated.current_price.price == Decimal("4.70")
        assert updated.current_price.store_id == "A"

    def test_threshold_arithmetic(self, scenario_item, day):
        """4.70 is above 4.50 * 1.02 = 4.59 but within 4.50 * 1.05 = 4.725."""
        rec = recompute_aggregates(scenario_item, day(14)).recommendation

        assert rec.is_lowest_in_period is False
        assert rec.is_buy_recommended is True
        assert rec.reason == "Price is at or near 6-week low"

    def test_trends(self, scenario_item, day):
        """Each horizon compares against the nearest earlier observation."""
        trend = recompute_aggregates(scenario_item, day(14)).price_trend

        assert trend.weekly_change_pct == 4.44
        assert trend.monthly_change_pct == -6.0
        assert trend.three_month_change_pct == -6.0


class TestRecomputeProperties:
    """Invariants of recompute_aggregates."""

    def test_idempotent(self, scenario_item, day):
        """Recomputing twice with the same as_of gives identical output."""
        first = recompute_aggregates(scenario_item, day(14))
        second = recompute_aggregates(first, day(14))

        assert first == second
        assert first.model_dump_json() == second.model_dump_json()

    def test_does_not_mutate_input(self, scenario_item, day):
        """The input item is left untouched."""
        recompute_aggregates(scenario_item, day(14))

        assert scenario_item.price_range is None
        assert scenario_item.aggregates_as_of is None

    def test_window_monotonicity(self, make_item, day):
        """min == lowest price <= max whenever the window is non-empty."""
        item = make_item([("3.10", "a", 0), ("2.90", "b", 3), ("3.40", "c", 9), ("3.00", "a", 20)])

        updated = recompute_aggregates(item, day(20))

        assert updated.price_range.min == updated.current_lowest_price.price
        assert updated.current_lowest_price.price <= updated.price_range.max

    def test_observations_after_as_of_ignored(self, scenario_item, day):
        """Future observations do not leak into the result."""
        scenario_item.price_history.append(
            scenario_item.price_history[0].model_copy(update={"price": Decimal("1.00"), "observed_at": day(20)})
        )

        updated = recompute_aggregates(scenario_item, day(14))

        assert updated.price_range.min == Decimal("4.50")
        assert updated.current_price.price == Decimal("4.70")

    def test_old_observations_outside_window(self, make_item, day):
        """Observations older than the window do not affect the range."""
        item = make_item([("1.00", "a", 0), ("4.00", "a", 50), ("5.00", "a", 60)])

        updated = recompute_aggregates(item, day(60))

        assert updated.price_range.min == Decimal("4.00")
        assert updated.price_range.sample_count == 2
        assert updated.current_lowest_price.price == Decimal("4.00")

    def test_per_item_window(self, make_item, day):
        """A shorter item window narrows the range."""
        item = make_item([("1.00", "a", 0), ("4.00", "a", 10)], window_weeks=1)

        updated = recompute_aggregates(item, day(10))

        assert updated.price_range.min == Decimal("4.00")
        assert updated.price_range.window_weeks == 1


class TestEmptyWindow:
    """No new data must never read as a cleared range."""

    def test_range_retained(self, make_item, day):
        """An empty window keeps the previous range and lowest price."""
        first = recompute_aggregates(make_item([("2.00", "a", 0), ("3.00", "a", 1)]), day(1))

        later = recompute_aggregates(first, day(100))

        assert later.price_range.min == Decimal("2.00")
        assert later.price_range.max == Decimal("3.00")
        assert later.price_range.sample_count == 0
        assert later.current_lowest_price == first.current_lowest_price

    def test_no_recommendation_without_window_data(self, make_item, day):
        """Stale ranges do not produce buy signals."""
        first = recompute_aggregates(make_item([("2.00", "a", 0)]), day(0))
        assert first.recommendation.is_buy_recommended is True

        later = recompute_aggregates(first, day(100))

        assert later.recommendation.is_buy_recommended is False
        assert later.recommendation.reason == ""

    def test_empty_history(self, day):
        """An item with no history recomputes to no data."""
        updated = recompute_aggregates(Item(name="Flour"), day(0))

        assert updated.price_range is None
        assert updated.current_lowest_price is None
        assert updated.current_price is None
        assert updated.recommendation.is_buy_recommended is False
        assert updated.aggregates_as_of == day(0)


class TestTrend:
    """Tests for trend computation."""

    def test_undefined_without_history(self, make_item, day):
        """A single observation leaves every horizon undefined."""
        item = make_item([("2.00", "a", 0)])

        trend = recompute_aggregates(item, day(0)).price_trend

        assert trend.weekly_change_pct is None
        assert trend.monthly_change_pct is None
        assert trend.three_month_change_pct is None

    def test_tie_break_prefers_earlier(self, make_item, day):
        """Observations one day either side of the weekly target pick the earlier."""
        item = make_item([("2.00", "a", 6), ("4.00", "a", 8), ("3.00", "a", 14)])
        current = item.price_history[-1]

        trend = compute_trend(item.price_history, current, day(14))

        assert trend.weekly_change_pct == 50.0

    def test_only_older_observations_are_candidates(self, make_item, day):
        """Same-time observations are not compared with themselves."""
        item = make_item([("3.00", "a", 14), ("3.20", "b", 14)])

        trend = recompute_aggregates(item, day(14)).price_trend

        assert trend.weekly_change_pct is None

    def test_percent_change_rounding(self):
        """Percentages are rounded to two places."""
        assert percent_change(Decimal("4.70"), Decimal("4.50")) == 4.44
        assert percent_change(Decimal("1"), Decimal("3")) == -66.67


class TestSeasonalityFlag:
    """Tests for the in-season flag."""

    def test_in_season(self, make_item, day):
        """as_of month in peak months sets currently_seasonal."""
        item = make_item([("2.00", "a", 0)], seasonality={"peak_months": [3]})

        assert recompute_aggregates(item, day(0)).seasonality.currently_seasonal is True

    def test_out_of_season(self, make_item, day):
        """Other months clear the flag."""
        item = make_item([("2.00", "a", 0)], seasonality={"peak_months": [3]})

        assert recompute_aggregates(item, day(40)).seasonality.currently_seasonal is False


class TestErrors:
    """Tests for unusable item state."""

    def test_invalid_window_raises(self, make_item, day):
        """A corrupted window length is an AggregateComputationError."""
        item = make_item([("2.00", "a", 0)])
        item.window_weeks = 0

        with pytest.raises(AggregateComputationError) as exc_info:
            recompute_aggregates(item, day(0))
        assert exc_info.value.item_id == item.id
