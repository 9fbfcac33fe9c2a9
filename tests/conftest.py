"""Shared test fixtures for Pantry Tracker."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from pantry_tracker.config import PricingConfig
from pantry_tracker.data_store import DataStore
from pantry_tracker.models import Category, Item, PriceObservation
from pantry_tracker.sqlite_store import SQLiteStore

# Monday, so weekly triggers and horizons line up on readable dates.
DAY_ZERO = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


@pytest.fixture
def temp_data_dir(tmp_path):
    """Create a temporary data directory."""
    data_dir = tmp_path / "test_data"
    data_dir.mkdir()
    return data_dir


@pytest.fixture
def data_store(temp_data_dir):
    """Create a DataStore with temporary directory."""
    return DataStore(data_dir=temp_data_dir)


@pytest.fixture
def sqlite_store(tmp_path):
    """Create a SQLiteStore in a temporary directory."""
    return SQLiteStore(db_path=tmp_path / "test.db")


@pytest.fixture
def pricing():
    """Default pricing thresholds."""
    return PricingConfig()


@pytest.fixture
def day():
    """Timestamp N days after DAY_ZERO (fractions allowed)."""

    def _day(n: float) -> datetime:
        return DAY_ZERO + timedelta(days=n)

    return _day


@pytest.fixture
def make_item(day):
    """Build an item from (price, store_id, day) tuples."""

    def _make(
        observations=(),
        name: str = "Whole Milk",
        category: Category = Category.DAIRY,
        **fields,
    ) -> Item:
        history = [
            PriceObservation(store_id=store_id, price=Decimal(price), observed_at=day(n))
            for price, store_id, n in observations
        ]
        return Item(name=name, category=category, price_history=history, **fields)

    return _make
