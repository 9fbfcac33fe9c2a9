"""Tests for configuration management."""

from decimal import Decimal
from pathlib import Path

import pytest

from pantry_tracker.config import ConfigError, ConfigManager


@pytest.fixture
def config_file(tmp_path):
    """Create a temporary config file."""
    config_path = tmp_path / "config.toml"
    config_path.write_text("""
[data]
storage_dir = "/custom/data"
backend = "sqlite"

[pricing]
window_weeks = 8
buy_threshold_ratio = 1.10
lowest_threshold_ratio = "1.03"
monthly_drop_pct = -15
retention_weeks = 26

[sweep]
max_stores = 2
max_items = 50
fetch_timeout_seconds = 2.5

[alerts]
sms_max_items = 2

[source]
base_url = "https://prices.example.com/api"
api_key = "secret"

[bulk_buy.discount_schedule]
2 = 5
4 = 12

[logging]
level = "DEBUG"
""")
    return config_path


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_load_config_file(self, config_file):
        """Load configuration from file."""
        manager = ConfigManager(config_path=config_file)

        assert manager.data.storage_dir == Path("/custom/data")
        assert manager.data.backend == "sqlite"
        assert manager.pricing.window_weeks == 8
        assert manager.pricing.buy_threshold_ratio == Decimal("1.1")
        assert manager.pricing.lowest_threshold_ratio == Decimal("1.03")
        assert manager.pricing.monthly_drop_pct == -15.0
        assert manager.pricing.retention_weeks == 26

    def test_sweep_and_alerts(self, config_file):
        """Load sweep bounds and alert caps."""
        manager = ConfigManager(config_path=config_file)

        assert manager.sweep.max_stores == 2
        assert manager.sweep.max_items == 50
        assert manager.sweep.fetch_timeout_seconds == 2.5
        assert manager.sweep.fetch_concurrency == 4
        assert manager.alerts.sms_max_items == 2

    def test_source_bulk_and_logging(self, config_file):
        """Load source, discount schedule and logging sections."""
        manager = ConfigManager(config_path=config_file)

        assert manager.source.base_url == "https://prices.example.com/api"
        assert manager.source.api_key == "secret"
        assert manager.bulk_buy.discount_schedule == {2: Decimal("5"), 4: Decimal("12")}
        assert manager.logging.level == "DEBUG"

    def test_default_config(self, tmp_path):
        """Missing config file falls back to defaults."""
        manager = ConfigManager(config_path=tmp_path / "missing.toml")

        assert manager.pricing.window_weeks == 6
        assert manager.pricing.buy_threshold_ratio == Decimal("1.05")
        assert manager.pricing.lowest_threshold_ratio == Decimal("1.02")
        assert manager.pricing.monthly_drop_pct == -10.0
        assert manager.sweep.max_stores == 3
        assert manager.sweep.max_items == 500
        assert manager.alerts.sms_max_items == 3
        assert manager.source.base_url is None
        assert manager.bulk_buy.discount_schedule[12] == Decimal("25")

    def test_get_dot_notation(self, config_file):
        """Get config values using dot notation."""
        manager = ConfigManager(config_path=config_file)

        assert manager.get("pricing.window_weeks") == 8
        assert manager.get("sweep.max_items") == 50
        assert manager.get("nonexistent.key", "default") == "default"

    def test_zero_retention_means_unbounded(self, tmp_path):
        """retention_weeks = 0 keeps all history."""
        path = tmp_path / "config.toml"
        path.write_text("[pricing]\nretention_weeks = 0\n")

        assert ConfigManager(config_path=path).pricing.retention_weeks is None


class TestConfigValidation:
    """Tests for invalid configuration values."""

    @pytest.mark.parametrize(
        "body",
        [
            "[pricing]\nwindow_weeks = 0\n",
            "[pricing]\nbuy_threshold_ratio = 0.9\n",
            "[pricing]\nretention_weeks = 4\n",
            "[sweep]\nmax_items = 0\n",
            "[sweep]\nfetch_timeout_seconds = 0\n",
            '[data]\nbackend = "mongo"\n',
            '[pricing]\nbuy_threshold_ratio = "cheap"\n',
        ],
    )
    def test_invalid_values_raise(self, tmp_path, body):
        """Invalid values are rejected at load time."""
        path = tmp_path / "config.toml"
        path.write_text(body)

        with pytest.raises(ConfigError):
            ConfigManager(config_path=path)
