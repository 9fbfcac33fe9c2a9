"""Core data models for Pantry Tracker."""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def new_id() -> str:
    return uuid4().hex


class Category(str, Enum):
    """Product categories."""

    PANTRY = "Pantry"
    PRODUCE = "Produce"
    DAIRY = "Dairy"
    MEAT = "Meat"
    BAKERY = "Bakery"
    FROZEN = "Frozen"
    GRAINS = "Grains"
    CANNED = "Canned"
    BAKING = "Baking"
    OTHER = "Other"


class BrandType(str, Enum):
    """Brand positioning of a product."""

    STORE = "Store"
    NATIONAL = "National"
    ORGANIC = "Organic"
    LOCAL = "Local"


class RejectedReason(str, Enum):
    """Why a raw price observation was refused at ingestion."""

    NON_NUMERIC_PRICE = "NonNumericPrice"
    NON_POSITIVE_PRICE = "NonPositivePrice"
    PRICE_OUT_OF_RANGE = "PriceOutOfRange"


class PriceObservation(BaseModel):
    """A single immutable price sample for an item at a store."""

    model_config = ConfigDict(frozen=True)

    store_id: str
    price: Decimal = Field(gt=0)
    observed_at: datetime

    @field_validator("observed_at")
    @classmethod
    def _normalize_observed_at(cls, value: datetime) -> datetime:
        return as_utc(value)


class RawObservation(BaseModel):
    """An unvalidated price sample as delivered by a source."""

    item_id: str
    store_id: str
    price: Any = None
    observed_at: datetime | None = None


class IngestResult(BaseModel):
    """Outcome of ingesting one raw observation."""

    item_id: str
    observation: PriceObservation | None = None
    rejected_reason: RejectedReason | None = None
    detail: str = ""

    @property
    def accepted(self) -> bool:
        return self.observation is not None


class LowestPrice(BaseModel):
    """Cached projection of the cheapest observation in the active window."""

    price: Decimal
    store_id: str
    observed_at: datetime
    last_updated: datetime


class CurrentPrice(BaseModel):
    """The most recent observation as of the last recompute."""

    price: Decimal
    store_id: str
    observed_at: datetime


class PriceRange(BaseModel):
    """Min/max over the trailing window."""

    min: Decimal
    max: Decimal
    window_weeks: int = 6
    sample_count: int = 0
    computed_at: datetime | None = None


class PriceTrend(BaseModel):
    """Percentage change of the current price against each horizon.

    A value of None means no historical observation existed for the horizon.
    """

    weekly_change_pct: float | None = None
    monthly_change_pct: float | None = None
    three_month_change_pct: float | None = None


class Recommendation(BaseModel):
    """Buy signals derived from the aggregates."""

    is_lowest_in_period: bool = False
    is_seasonal_low: bool = False
    is_buy_recommended: bool = False
    reason: str = ""


class Seasonality(BaseModel):
    """Peak months (1-12) and whether the item is in season."""

    peak_months: list[int] = Field(default_factory=list)
    currently_seasonal: bool = False

    @field_validator("peak_months")
    @classmethod
    def _check_months(cls, value: list[int]) -> list[int]:
        for month in value:
            if not 1 <= month <= 12:
                raise ValueError(f"peak month out of range: {month}")
        return sorted(set(value))


class Item(BaseModel):
    """A tracked grocery product with its price history and derived state."""

    id: str = Field(default_factory=new_id)
    name: str
    category: Category = Category.PANTRY
    brand_type: BrandType = BrandType.NATIONAL
    size: str | None = None
    unit: str | None = None
    is_seasonal_produce: bool = False
    window_weeks: int = Field(default=6, gt=0)
    price_history: list[PriceObservation] = Field(default_factory=list)
    current_price: CurrentPrice | None = None
    current_lowest_price: LowestPrice | None = None
    price_range: PriceRange | None = None
    price_trend: PriceTrend = Field(default_factory=PriceTrend)
    recommendation: Recommendation = Field(default_factory=Recommendation)
    seasonality: Seasonality = Field(default_factory=Seasonality)
    aggregates_as_of: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Store(BaseModel):
    """A store that price observations can be fetched from."""

    id: str = Field(default_factory=new_id)
    name: str
    chain_name: str | None = None
    zip_code: str | None = None
    api_enabled: bool = True


class NotificationPreferences(BaseModel):
    """Per-channel opt-ins for price alerts."""

    email_price_alerts: bool = True
    sms_price_alerts: bool = False


class User(BaseModel):
    """A user as seen by alert selection."""

    id: str = Field(default_factory=new_id)
    name: str
    email: str | None = None
    email_verified: bool = False
    phone_number: str | None = None
    phone_verified: bool = False
    alert_categories: list[str] = Field(default_factory=lambda: ["All"])
    tracked_item_ids: list[str] = Field(default_factory=list)
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)

    @property
    def wants_email(self) -> bool:
        return bool(self.email) and self.email_verified and self.notifications.email_price_alerts

    @property
    def wants_sms(self) -> bool:
        return (
            bool(self.phone_number)
            and self.phone_verified
            and self.notifications.sms_price_alerts
        )


class ItemAlert(BaseModel):
    """Pre-formatted alert payload for one item."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    item_name: str
    category: Category
    price: Decimal
    store_id: str
    reason: str
    range_min: Decimal | None = None
    range_max: Decimal | None = None


class DispatchSummary(BaseModel):
    """Counts from handing alert selections to the notifier."""

    users_notified: int = 0
    emails_sent: int = 0
    sms_sent: int = 0
    failures: int = 0


class FetchFailure(BaseModel):
    """A store fetch that failed during a sweep."""

    store_id: str
    item_id: str
    error: str


class SweepSummary(BaseModel):
    """Result counts of one reconciliation sweep."""

    updated: int = 0
    failed: int = 0
    observations_ingested: int = 0
    observations_rejected: int = 0
    failed_item_ids: list[str] = Field(default_factory=list)
    fetch_failures: list[FetchFailure] = Field(default_factory=list)
    alerts: DispatchSummary | None = None
    skipped: bool = False
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None


class JobState(str, Enum):
    """Lifecycle of a scheduled job run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobStatus(BaseModel):
    """Persisted status record for a job, replacing shared in-memory progress."""

    job_name: str
    state: JobState = JobState.IDLE
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    summary: dict[str, Any] = Field(default_factory=dict)


class RecipeIngredient(BaseModel):
    """An ingredient linked to a tracked item."""

    item_id: str | None = None
    name: str
    quantity: Decimal = Decimal("1")


class RecipePricePoint(BaseModel):
    """Recipe total cost at a point in time."""

    recorded_at: datetime
    total: Decimal
    ingredient_prices: dict[str, Decimal] = Field(default_factory=dict)


class RecipeCurrentPrice(BaseModel):
    total: Decimal
    weekly_change_pct: float | None = None
    monthly_change_pct: float | None = None
    last_updated: datetime


class Recipe(BaseModel):
    """A recipe whose cost is tracked from its ingredients' prices."""

    id: str = Field(default_factory=new_id)
    name: str
    servings: int = 1
    ingredients: list[RecipeIngredient] = Field(default_factory=list)
    price_history: list[RecipePricePoint] = Field(default_factory=list)
    current_price: RecipeCurrentPrice | None = None


class BulkBuyCalculation(BaseModel):
    """Bulk purchase savings estimate."""

    item_name: str
    price_per_unit: Decimal
    monthly_usage: float
    months: int = 3
    recommended_quantity: int
    discount_pct: Decimal
    bulk_price_per_unit: Decimal
    savings_amount: Decimal
    savings_pct: Decimal
