"""Unit tests for configuration."""
import pytest

from polymirror.config import Settings, TradingConstants
from polymirror.copy_strategy import CopyStrategy, CopyStrategyConfig


class TestSettings:
    """Defaults and environment overrides."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.retry_limit == 3
        assert settings.rate_limit_max_requests == 5
        assert settings.rate_limit_window_seconds == 60.0
        assert settings.proxy_rotation_minutes == 15.0
        assert settings.proxy_cooldown_minutes == 8.0
        assert settings.block_threshold == 3
        assert settings.block_pause_minutes == 15.0
        assert settings.evasion_enabled is True

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("RETRY_LIMIT", "5")
        monkeypatch.setenv("EVASION_ENABLED", "false")

        settings = Settings(_env_file=None)

        assert settings.retry_limit == 5
        assert settings.evasion_enabled is False

    def test_tracked_addresses(self):
        settings = Settings(_env_file=None, user_addresses=" 0xAbC, ,0xdef ")

        assert settings.tracked_addresses == ["0xabc", "0xdef"]

    def test_strategy_config_from_settings(self):
        settings = Settings(
            _env_file=None, copy_strategy="adaptive", tiered_multipliers="1-10:2.0"
        )

        config = CopyStrategyConfig.from_settings(settings)

        assert config.strategy == CopyStrategy.ADAPTIVE
        assert len(config.tiered_multipliers) == 1

    def test_bad_strategy_rejected(self):
        with pytest.raises(ValueError):
            CopyStrategyConfig.from_settings(Settings(_env_file=None, copy_strategy="yolo"))

    def test_ledger_clear_fraction(self):
        assert TradingConstants.LEDGER_CLEAR_FRACTION == 0.99
