"""Bulk purchase savings estimates."""

import math
from decimal import ROUND_HALF_UP, Decimal

from .config import BulkBuyConfig
from .models import BulkBuyCalculation

CENT = Decimal("0.01")


def discount_for(months: int, schedule: dict[int, Decimal]) -> Decimal:
    """Largest scheduled discount whose months-of-supply tier is reached."""
    eligible = [tier for tier in schedule if tier <= months]
    if not eligible:
        return Decimal("0")
    return schedule[max(eligible)]


def calculate_bulk_savings(
    item_name: str,
    price_per_unit: Decimal,
    monthly_usage: float,
    months: int = 3,
    schedule: dict[int, Decimal] | None = None,
) -> BulkBuyCalculation:
    """Estimate savings from buying several months of supply at once.

    Args:
        item_name: Product being evaluated
        price_per_unit: Regular unit price
        monthly_usage: Units used per month
        months: Months of supply to buy
        schedule: Months-of-supply tiers mapped to discount percent

    Returns:
        BulkBuyCalculation with quantity, discounted price and savings

    Raises:
        ValueError: If price, usage or months is not positive
    """
    price_per_unit = Decimal(str(price_per_unit))
    if price_per_unit <= 0:
        raise ValueError("price_per_unit must be positive")
    if monthly_usage <= 0:
        raise ValueError("monthly_usage must be positive")
    if months <= 0:
        raise ValueError("months must be positive")

    if schedule is None:
        schedule = BulkBuyConfig().discount_schedule

    quantity = math.ceil(monthly_usage * months)
    discount_pct = discount_for(months, schedule)
    bulk_price = (price_per_unit * (1 - discount_pct / 100)).quantize(CENT, ROUND_HALF_UP)
    savings_amount = ((price_per_unit - bulk_price) * quantity).quantize(CENT, ROUND_HALF_UP)
    regular_total = price_per_unit * quantity
    savings_pct = (savings_amount / regular_total * 100).quantize(Decimal("0.1"), ROUND_HALF_UP)

    return BulkBuyCalculation(
        item_name=item_name,
        price_per_unit=price_per_unit,
        monthly_usage=monthly_usage,
        months=months,
        recommended_quantity=quantity,
        discount_pct=discount_pct,
        bulk_price_per_unit=bulk_price,
        savings_amount=savings_amount,
        savings_pct=savings_pct,
    )
