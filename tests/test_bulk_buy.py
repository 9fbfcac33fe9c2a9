"""Tests for bulk purchase savings."""

from decimal import Decimal

import pytest

from pantry_tracker.bulk_buy import calculate_bulk_savings, discount_for


class TestDiscountFor:
    """Tests for the discount schedule lookup."""

    SCHEDULE = {3: Decimal("15"), 6: Decimal("20"), 12: Decimal("25")}

    @pytest.mark.parametrize(
        "months,expected",
        [(1, "0"), (3, "15"), (5, "15"), (6, "20"), (24, "25")],
    )
    def test_tiers(self, months, expected):
        """The largest reached tier applies."""
        assert discount_for(months, self.SCHEDULE) == Decimal(expected)


class TestCalculateBulkSavings:
    """Tests for calculate_bulk_savings."""

    def test_three_month_supply(self):
        """Three months at 2 per month of a $4.00 item."""
        calc = calculate_bulk_savings("Coffee", Decimal("4.00"), 2, months=3)

        assert calc.recommended_quantity == 6
        assert calc.discount_pct == Decimal("15")
        assert calc.bulk_price_per_unit == Decimal("3.40")
        assert calc.savings_amount == Decimal("3.60")
        assert calc.savings_pct == Decimal("15.0")

    def test_fractional_usage_rounds_quantity_up(self):
        calc = calculate_bulk_savings("Rice", Decimal("2.00"), 1.5, months=3)

        assert calc.recommended_quantity == 5

    def test_below_first_tier_saves_nothing(self):
        calc = calculate_bulk_savings("Tea", Decimal("5.00"), 1, months=1)

        assert calc.discount_pct == Decimal("0")
        assert calc.bulk_price_per_unit == Decimal("5.00")
        assert calc.savings_amount == Decimal("0.00")

    def test_custom_schedule(self):
        calc = calculate_bulk_savings("Oats", Decimal("3.00"), 1, months=2, schedule={2: Decimal("10")})

        assert calc.bulk_price_per_unit == Decimal("2.70")
        assert calc.savings_amount == Decimal("0.60")

    @pytest.mark.parametrize(
        "price,usage,months",
        [(Decimal("0"), 1, 3), (Decimal("-1"), 1, 3), (Decimal("1"), 0, 3), (Decimal("1"), 1, 0)],
    )
    def test_invalid_inputs(self, price, usage, months):
        with pytest.raises(ValueError):
            calculate_bulk_savings("Beans", price, usage, months=months)
