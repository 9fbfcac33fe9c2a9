"""Normalization and validation of raw price observations."""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from .models import IngestResult, Item, PriceObservation, RejectedReason, as_utc, utcnow

logger = logging.getLogger(__name__)

_CURRENCY_CHARS = str.maketrans("", "", "$, ")

# Accepted price bounds, min inclusive.
MIN_PRICE = Decimal("0.01")
MAX_PRICE = Decimal("1e9")


class InvalidObservation(ValueError):
    """Raised when a raw price cannot become a PriceObservation."""

    def __init__(self, reason: RejectedReason, raw_price: Any):
        self.reason = reason
        self.raw_price = raw_price
        super().__init__(f"{reason.value}: {raw_price!r}")


def parse_price(raw_price: Any) -> Decimal:
    """Parse a raw price into a positive, finite Decimal.

    Strings may carry a leading currency sign and thousands separators.

    Raises:
        InvalidObservation: If the value is not a finite number greater than zero,
            or lies outside [MIN_PRICE, MAX_PRICE).
    """
    if raw_price is None or isinstance(raw_price, bool):
        raise InvalidObservation(RejectedReason.NON_NUMERIC_PRICE, raw_price)

    try:
        if isinstance(raw_price, Decimal):
            price = raw_price
        elif isinstance(raw_price, (int, float)):
            price = Decimal(str(raw_price))
        elif isinstance(raw_price, str):
            price = Decimal(raw_price.strip().translate(_CURRENCY_CHARS))
        else:
            raise InvalidObservation(RejectedReason.NON_NUMERIC_PRICE, raw_price)
    except InvalidOperation:
        raise InvalidObservation(RejectedReason.NON_NUMERIC_PRICE, raw_price) from None

    if not price.is_finite():
        raise InvalidObservation(RejectedReason.NON_NUMERIC_PRICE, raw_price)
    if price <= 0:
        raise InvalidObservation(RejectedReason.NON_POSITIVE_PRICE, raw_price)
    if not MIN_PRICE <= price < MAX_PRICE:
        raise InvalidObservation(RejectedReason.PRICE_OUT_OF_RANGE, raw_price)
    return price


def normalize_observation(
    store_id: str,
    raw_price: Any,
    observed_at: datetime | None = None,
    now: datetime | None = None,
) -> PriceObservation:
    """Build a canonical observation, defaulting the timestamp to ingestion time.

    Raises:
        InvalidObservation: If the price is rejected.
    """
    price = parse_price(raw_price)
    timestamp = as_utc(observed_at) if observed_at is not None else (now or utcnow())
    return PriceObservation(store_id=store_id, price=price, observed_at=timestamp)


def ingest(
    item: Item,
    store_id: str,
    raw_price: Any,
    observed_at: datetime | None = None,
    now: datetime | None = None,
) -> IngestResult:
    """Validate a raw price and append it to the item's history.

    Aggregates are not recomputed here, so a batch of ingests can be followed
    by a single recompute.

    Args:
        item: Item whose history receives the observation
        store_id: Store the price was seen at
        raw_price: Unvalidated price value
        observed_at: When the price was seen; defaults to now
        now: Clock override for the default timestamp

    Returns:
        IngestResult with either the stored observation or the rejection reason
    """
    try:
        observation = normalize_observation(store_id, raw_price, observed_at, now)
    except InvalidObservation as e:
        logger.warning(
            "Rejected price %r for item %s at store %s: %s",
            raw_price,
            item.id,
            store_id,
            e.reason.value,
        )
        return IngestResult(item_id=item.id, rejected_reason=e.reason, detail=str(e))

    item.price_history.append(observation)
    logger.debug(
        "Recorded $%s for item %s at store %s", observation.price, item.id, store_id
    )
    return IngestResult(item_id=item.id, observation=observation)
