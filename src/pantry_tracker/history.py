"""Queries over an item's append-only price history.

History is kept in arrival order, which is not necessarily date order, so
every query here works on timestamps rather than list positions.
"""

from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta
from typing import TypeVar

from .models import Item, PriceObservation

T = TypeVar("T")


def window_start(as_of: datetime, window_weeks: int) -> datetime:
    """First instant inside a trailing window of ``window_weeks`` ending at ``as_of``."""
    return as_of - timedelta(days=window_weeks * 7)


def observations_between(
    history: Iterable[PriceObservation],
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[PriceObservation]:
    """Observations with ``start <= observed_at <= end``, sorted by time.

    Ties keep arrival order.
    """
    selected = [
        obs
        for obs in history
        if (start is None or obs.observed_at >= start) and (end is None or obs.observed_at <= end)
    ]
    return sorted(selected, key=lambda obs: obs.observed_at)


def active_window(
    history: Iterable[PriceObservation], as_of: datetime, window_weeks: int
) -> list[PriceObservation]:
    """Observations inside the trailing window ending at ``as_of``."""
    return observations_between(history, window_start(as_of, window_weeks), as_of)


def lowest_observation(observations: Sequence[PriceObservation]) -> PriceObservation | None:
    """Cheapest observation; the earliest one wins a tie."""
    if not observations:
        return None
    return min(observations, key=lambda obs: (obs.price, obs.observed_at))


def latest_observation(observations: Sequence[PriceObservation]) -> PriceObservation | None:
    """Most recent observation; the cheapest one wins a tie on timestamp."""
    if not observations:
        return None
    return max(observations, key=lambda obs: (obs.observed_at, -obs.price))


def closest_to(
    records: Iterable[T],
    target: datetime,
    key: Callable[[T], datetime] = lambda r: r.observed_at,  # type: ignore[attr-defined]
) -> T | None:
    """Record whose timestamp is nearest ``target``.

    Equidistant records resolve to the earlier one, so the choice never
    depends on arrival order.
    """
    best: T | None = None
    best_key: tuple[float, datetime] | None = None
    for record in records:
        timestamp = key(record)
        candidate = (abs((timestamp - target).total_seconds()), timestamp)
        if best_key is None or candidate < best_key:
            best = record
            best_key = candidate
    return best


def prune_history(item: Item, as_of: datetime, retention_weeks: int | None) -> int:
    """Drop observations older than the retention period.

    Args:
        item: Item whose history is pruned in place
        as_of: Reference time for the cutoff
        retention_weeks: Weeks to keep; None keeps everything

    Returns:
        Number of observations removed
    """
    if retention_weeks is None:
        return 0
    cutoff = window_start(as_of, retention_weeks)
    kept = [obs for obs in item.price_history if obs.observed_at >= cutoff]
    removed = len(item.price_history) - len(kept)
    if removed:
        item.price_history = kept
    return removed
