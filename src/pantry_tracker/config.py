"""Configuration management for Pantry Tracker."""

import tomllib
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

# Longest trend horizon; retention must keep at least this much history.
LONGEST_TREND_HORIZON_DAYS = 90


class ConfigError(ValueError):
    """Raised when a configuration value is invalid."""


@dataclass
class DataConfig:
    """Data storage configuration."""

    storage_dir: Path
    backend: str = "json"


@dataclass
class PricingConfig:
    """Aggregate and recommendation thresholds."""

    window_weeks: int = 6
    buy_threshold_ratio: Decimal = Decimal("1.05")
    lowest_threshold_ratio: Decimal = Decimal("1.02")
    monthly_drop_pct: float = -10.0
    retention_weeks: int | None = 52


@dataclass
class SweepConfig:
    """Bounds for the reconciliation sweep."""

    max_stores: int = 3
    max_items: int = 500
    fetch_timeout_seconds: float = 10.0
    fetch_concurrency: int = 4
    stale_job_minutes: int = 120


@dataclass
class AlertsConfig:
    """Alert dispatch configuration."""

    sms_max_items: int = 3


@dataclass
class SourceConfig:
    """Store/product price API."""

    base_url: str | None = None
    api_key: str | None = None


@dataclass
class BulkBuyConfig:
    """Deterministic bulk discount schedule: months of supply -> discount percent."""

    discount_schedule: dict[int, Decimal] = field(
        default_factory=lambda: {3: Decimal("15"), 6: Decimal("20"), 12: Decimal("25")}
    )


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class Config:
    """Complete application configuration."""

    data: DataConfig
    pricing: PricingConfig
    sweep: SweepConfig
    alerts: AlertsConfig
    source: SourceConfig
    bulk_buy: BulkBuyConfig
    logging: LoggingConfig


def _decimal(value: Any, key: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e


class ConfigManager:
    """Manages application configuration from TOML files."""

    def __init__(self, config_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            config_path: Optional explicit path to config file.
                        If not provided, searches standard locations.
        """
        self.config_path = config_path or self._find_config()
        self._config = self._load_config()
        self._validate()

    @property
    def data(self) -> DataConfig:
        """Get data configuration."""
        return self._config.data

    @property
    def pricing(self) -> PricingConfig:
        """Get pricing configuration."""
        return self._config.pricing

    @property
    def sweep(self) -> SweepConfig:
        """Get sweep configuration."""
        return self._config.sweep

    @property
    def alerts(self) -> AlertsConfig:
        return self._config.alerts

    @property
    def source(self) -> SourceConfig:
        return self._config.source

    @property
    def bulk_buy(self) -> BulkBuyConfig:
        return self._config.bulk_buy

    @property
    def logging(self) -> LoggingConfig:
        return self._config.logging

    def _find_config(self) -> Path:
        """Find config file in standard locations."""
        locations = [
            Path.cwd() / "config.toml",
            Path.home() / ".config" / "pantry-tracker" / "config.toml",
            Path.home() / ".pantry-tracker" / "config.toml",
        ]

        for loc in locations:
            if loc.exists():
                return loc

        # Return default location if none found
        return Path.home() / ".config" / "pantry-tracker" / "config.toml"

    def _load_config(self) -> Config:
        """Load configuration from TOML file."""
        if not self.config_path.exists():
            return self._default_config()

        try:
            with open(self.config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {self.config_path}: {e}") from e

        data_section = data.get("data", {})
        pricing = data.get("pricing", {})
        sweep = data.get("sweep", {})
        source = data.get("source", {})

        schedule = data.get("bulk_buy", {}).get("discount_schedule")
        if schedule is None:
            bulk_buy = BulkBuyConfig()
        else:
            bulk_buy = BulkBuyConfig(
                discount_schedule={
                    int(months): _decimal(pct, "bulk_buy.discount_schedule")
                    for months, pct in schedule.items()
                }
            )

        return Config(
            data=DataConfig(
                storage_dir=Path(
                    data_section.get("storage_dir", "~/pantry-tracker/data")
                ).expanduser(),
                backend=data_section.get("backend", "json"),
            ),
            pricing=PricingConfig(
                window_weeks=pricing.get("window_weeks", 6),
                buy_threshold_ratio=_decimal(
                    pricing.get("buy_threshold_ratio", "1.05"), "pricing.buy_threshold_ratio"
                ),
                lowest_threshold_ratio=_decimal(
                    pricing.get("lowest_threshold_ratio", "1.02"),
                    "pricing.lowest_threshold_ratio",
                ),
                monthly_drop_pct=float(pricing.get("monthly_drop_pct", -10.0)),
                retention_weeks=pricing.get("retention_weeks", 52) or None,
            ),
            sweep=SweepConfig(
                max_stores=sweep.get("max_stores", 3),
                max_items=sweep.get("max_items", 500),
                fetch_timeout_seconds=float(sweep.get("fetch_timeout_seconds", 10.0)),
                fetch_concurrency=sweep.get("fetch_concurrency", 4),
                stale_job_minutes=sweep.get("stale_job_minutes", 120),
            ),
            alerts=AlertsConfig(
                sms_max_items=data.get("alerts", {}).get("sms_max_items", 3),
            ),
            source=SourceConfig(
                base_url=source.get("base_url"),
                api_key=source.get("api_key"),
            ),
            bulk_buy=bulk_buy,
            logging=LoggingConfig(level=data.get("logging", {}).get("level", "INFO")),
        )

    def _default_config(self) -> Config:
        """Return default configuration."""
        return Config(
            data=DataConfig(storage_dir=Path.home() / "pantry-tracker" / "data"),
            pricing=PricingConfig(),
            sweep=SweepConfig(),
            alerts=AlertsConfig(),
            source=SourceConfig(),
            bulk_buy=BulkBuyConfig(),
            logging=LoggingConfig(),
        )

    def _validate(self) -> None:
        pricing = self.pricing
        if pricing.window_weeks <= 0:
            raise ConfigError("pricing.window_weeks must be positive")
        if pricing.buy_threshold_ratio < 1 or pricing.lowest_threshold_ratio < 1:
            raise ConfigError("pricing threshold ratios must be >= 1")
        if pricing.retention_weeks is not None:
            min_weeks = max(pricing.window_weeks, -(-LONGEST_TREND_HORIZON_DAYS // 7))
            if pricing.retention_weeks < min_weeks:
                raise ConfigError(
                    f"pricing.retention_weeks must be at least {min_weeks} weeks"
                )
        if self.sweep.max_stores <= 0 or self.sweep.max_items <= 0:
            raise ConfigError("sweep bounds must be positive")
        if self.sweep.fetch_timeout_seconds <= 0:
            raise ConfigError("sweep.fetch_timeout_seconds must be positive")
        if self.sweep.fetch_concurrency <= 0:
            raise ConfigError("sweep.fetch_concurrency must be positive")
        if self.data.backend not in ("json", "sqlite"):
            raise ConfigError(f"Unknown data.backend: {self.data.backend}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get config value by dot-notation path.

        Args:
            key_path: Dot-separated path like 'pricing.window_weeks'
            default: Default value if path not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split(".")
        value: Any = self._config

        for key in keys:
            if hasattr(value, key):
                value = getattr(value, key)
            elif isinstance(value, dict):
                value = value.get(key)
                if value is None:
                    return default
            else:
                return default

        return value if value is not None else default
