"""Rolling price aggregates: window range, lowest price, trends and seasonality."""

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from .config import PricingConfig
from .history import (
    active_window,
    closest_to,
    latest_observation,
    lowest_observation,
    observations_between,
)
from .models import (
    CurrentPrice,
    Item,
    LowestPrice,
    PriceObservation,
    PriceRange,
    PriceTrend,
    as_utc,
)
from .recommendation import derive_recommendation

logger = logging.getLogger(__name__)

TREND_HORIZONS = {
    "weekly_change_pct": timedelta(days=7),
    "monthly_change_pct": timedelta(days=30),
    "three_month_change_pct": timedelta(days=90),
}


class AggregateComputationError(Exception):
    """Raised when an item's stored state cannot be aggregated."""

    def __init__(self, item_id: str, detail: str):
        self.item_id = item_id
        self.detail = detail
        super().__init__(f"Cannot aggregate item '{item_id}': {detail}")


def percent_change(current: Decimal, previous: Decimal) -> float:
    """Percentage change from ``previous`` to ``current``, rounded to 2 places."""
    return float(round((current - previous) / previous * 100, 2))


def compute_trend(
    history: list[PriceObservation], current: PriceObservation | None, as_of: datetime
) -> PriceTrend:
    """Compare the current price with the observation nearest each horizon.

    Only observations older than the current one are candidates; a horizon
    with no candidate stays None rather than reporting zero change.
    """
    if current is None:
        return PriceTrend()

    candidates = [obs for obs in history if obs.observed_at < current.observed_at]
    changes: dict[str, float | None] = {}
    for field_name, horizon in TREND_HORIZONS.items():
        historical = closest_to(candidates, as_of - horizon)
        changes[field_name] = (
            percent_change(current.price, historical.price) if historical is not None else None
        )
    return PriceTrend(**changes)


def recompute_aggregates(
    item: Item, as_of: datetime, pricing: PricingConfig | None = None
) -> Item:
    """Recompute every derived field of an item as of a point in time.

    The window range, lowest price, current price, trends, seasonality flag and
    recommendation are produced together in one step and returned as a new
    Item; the input is not modified. Observations after ``as_of`` are ignored,
    so the same inputs always give the same output.

    When the active window is empty the previous range and lowest price are
    kept (only the window sample count drops to zero), because no new data
    must never read as a price of zero.

    Args:
        item: Current item state
        as_of: Reference time for the window and trend horizons
        pricing: Recommendation thresholds

    Returns:
        Updated copy of the item

    Raises:
        AggregateComputationError: If the stored item state is unusable
    """
    pricing = pricing or PricingConfig()
    try:
        as_of = as_utc(as_of)
        if item.window_weeks <= 0:
            raise AggregateComputationError(item.id, f"invalid window_weeks {item.window_weeks}")

        history = observations_between(item.price_history, end=as_of)
        window = active_window(history, as_of, item.window_weeks)

        price_range = item.price_range
        lowest_price = item.current_lowest_price
        lowest = lowest_observation(window)
        if lowest is not None:
            price_range = PriceRange(
                min=lowest.price,
                max=max(obs.price for obs in window),
                window_weeks=item.window_weeks,
                sample_count=len(window),
                computed_at=as_of,
            )
            lowest_price = LowestPrice(
                price=lowest.price,
                store_id=lowest.store_id,
                observed_at=lowest.observed_at,
                last_updated=as_of,
            )
        elif price_range is not None:
            price_range = price_range.model_copy(update={"sample_count": 0, "computed_at": as_of})

        latest = latest_observation(history)
        current_price = (
            CurrentPrice(price=latest.price, store_id=latest.store_id, observed_at=latest.observed_at)
            if latest is not None
            else None
        )

        seasonality = item.seasonality.model_copy(
            update={"currently_seasonal": as_of.month in item.seasonality.peak_months}
        )

        updated = item.model_copy(
            deep=True,
            update={
                "price_range": price_range,
                "current_lowest_price": lowest_price,
                "current_price": current_price,
                "price_trend": compute_trend(history, latest, as_of),
                "seasonality": seasonality,
                "aggregates_as_of": as_of,
            },
        )
        updated.recommendation = derive_recommendation(updated, pricing)
    except AggregateComputationError:
        raise
    except (ArithmeticError, TypeError, ValueError, AttributeError) as e:
        raise AggregateComputationError(item.id, str(e)) from e

    logger.debug(
        "Recomputed item %s as of %s: range=%s, buy=%s",
        item.id,
        as_of.isoformat(),
        (price_range.min, price_range.max) if price_range else None,
        updated.recommendation.is_buy_recommended,
    )
    return updated
