"""Buy/no-buy signals derived from an item's price aggregates."""

from .config import PricingConfig
from .models import Item, Recommendation

SEASONAL_REASON = "Seasonal produce currently at peak freshness and value"
MONTHLY_DROP_REASON = "Price has dropped {pct:g}% or more from last month"
NEAR_LOW_REASON = "Price is at or near {weeks}-week low"


def derive_recommendation(item: Item, pricing: PricingConfig | None = None) -> Recommendation:
    """Evaluate the threshold rules against the item's current aggregates.

    Every true condition is reflected in the flags; the reason names the
    highest-priority match (seasonal, then monthly drop, then near-low).
    Without a current price and at least one observation in the active window
    nothing is recommended.

    Args:
        item: Item whose aggregates have just been recomputed
        pricing: Thresholds; defaults apply when omitted

    Returns:
        Recommendation signal
    """
    pricing = pricing or PricingConfig()
    current = item.current_price
    price_range = item.price_range

    if (
        current is None
        or price_range is None
        or price_range.sample_count == 0
        or price_range.min <= 0
    ):
        return Recommendation()

    is_lowest_in_period = current.price <= price_range.min * pricing.lowest_threshold_ratio
    near_low = current.price <= price_range.min * pricing.buy_threshold_ratio

    monthly = item.price_trend.monthly_change_pct
    monthly_drop = monthly is not None and monthly <= pricing.monthly_drop_pct

    seasonal = item.is_seasonal_produce and item.seasonality.currently_seasonal

    if seasonal:
        reason = SEASONAL_REASON
    elif monthly_drop:
        reason = MONTHLY_DROP_REASON.format(pct=abs(pricing.monthly_drop_pct))
    elif near_low:
        reason = NEAR_LOW_REASON.format(weeks=price_range.window_weeks)
    else:
        reason = ""

    return Recommendation(
        is_lowest_in_period=is_lowest_in_period,
        is_seasonal_low=seasonal,
        is_buy_recommended=seasonal or monthly_drop or near_low,
        reason=reason,
    )
