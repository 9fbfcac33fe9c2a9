"""Pantry Tracker - Grocery price history and buy recommendations."""

from .aggregates import AggregateComputationError, recompute_aggregates
from .alerts import AlertNotifier, LoggingNotifier, dispatch_alerts, select_alerts
from .bulk_buy import calculate_bulk_savings
from .config import ConfigError, ConfigManager
from .data_store import (
    BackendType,
    DataStore,
    ItemNotFoundError,
    PersistenceFailure,
    create_data_store,
)
from .ingestion import InvalidObservation, ingest
from .jobs import JobRunner
from .logging_setup import setup_logging
from .models import (
    BrandType,
    Category,
    Item,
    ItemAlert,
    JobState,
    JobStatus,
    PriceObservation,
    PriceRange,
    PriceTrend,
    Recipe,
    Recommendation,
    RejectedReason,
    Store,
    SweepSummary,
    User,
)
from .output_formatter import OutputFormatter
from .price_service import PriceService
from .recipes import calculate_recipe_cost
from .recommendation import derive_recommendation
from .scheduler import JobTrigger, PriceScheduler, next_run_after
from .sources import ExternalFetchFailure, HttpObservationSource
from .sqlite_store import SQLiteStore

__version__ = "0.1.0"

__all__ = [
    "AggregateComputationError",
    "AlertNotifier",
    "BackendType",
    "BrandType",
    "calculate_bulk_savings",
    "calculate_recipe_cost",
    "Category",
    "ConfigError",
    "ConfigManager",
    "create_data_store",
    "DataStore",
    "derive_recommendation",
    "dispatch_alerts",
    "ExternalFetchFailure",
    "HttpObservationSource",
    "ingest",
    "InvalidObservation",
    "Item",
    "ItemAlert",
    "ItemNotFoundError",
    "JobRunner",
    "JobState",
    "JobStatus",
    "JobTrigger",
    "LoggingNotifier",
    "next_run_after",
    "OutputFormatter",
    "PersistenceFailure",
    "PriceObservation",
    "PriceRange",
    "PriceScheduler",
    "PriceService",
    "PriceTrend",
    "Recipe",
    "recompute_aggregates",
    "Recommendation",
    "RejectedReason",
    "select_alerts",
    "setup_logging",
    "SQLiteStore",
    "Store",
    "SweepSummary",
    "User",
]
