"""Tests for configuration loading."""

from decimal import Decimal

import pytest

from pms_engine.config import ReconciliationConfig, Settings


class TestReconciliationConfig:
    def test_defaults(self):
        config = ReconciliationConfig()

        assert config.modification_window_hours == 4
        assert config.deviation_threshold_percent == Decimal("30")
        assert config.deviation_lookback_days == 14
        assert config.rollover_confirmation_fraction == Decimal("0.5")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"modification_window_hours": -1},
            {"deviation_threshold_percent": Decimal("-5")},
            {"deviation_lookback_days": 0},
            {"rollover_confirmation_fraction": Decimal("0")},
            {"rollover_confirmation_fraction": Decimal("1.5")},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            ReconciliationConfig(**kwargs)


class TestSettings:
    """Settings come from the environment."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./pms.db")
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("MODIFICATION_WINDOW_HOURS", "6")
        monkeypatch.setenv("DEVIATION_THRESHOLD_PERCENT", "25")

        settings = Settings.from_env()

        assert settings.database_url == "sqlite+aiosqlite:///./pms.db"
        assert settings.PORT == 9000
        assert settings.log_level == "DEBUG"
        assert settings.reconciliation.modification_window_hours == 6
        assert settings.reconciliation.deviation_threshold_percent == Decimal("25")
