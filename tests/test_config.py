"""Tests for detector configuration."""

import logging
import os

import pytest

from levelhunter.config import ConfluenceSettings, DetectorConfig, StrengthWeights
from levelhunter.errors import InvalidInputError

ENV_VARS = [
    "LEVELHUNTER_MIN_TOUCHES",
    "LEVELHUNTER_TOUCH_TOLERANCE_PCT",
    "LEVELHUNTER_MIN_STRENGTH",
    "LEVELHUNTER_LOOKBACK_PERIOD",
    "LEVELHUNTER_VOLUME_WEIGHTING",
    "LEVELHUNTER_LIQUIDITY_GRAB_THRESHOLD",
    "LEVELHUNTER_REVERSAL_CONFIRMATION_PERIOD",
    "LEVELHUNTER_CONFLUENCE_MIN_FACTORS",
    "LEVELHUNTER_CONFLUENCE_TOLERANCE_PCT",
    "LEVELHUNTER_TIME_REFERENCE",
    "LEVELHUNTER_PARALLEL_SOURCES",
    "LEVELHUNTER_BREAKOUT_CONFIRMATION_CANDLES",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestDefaults:
    """Tests for default values."""

    def test_detector_defaults(self):
        """Test default detector settings."""
        config = DetectorConfig()

        assert config.min_touches == 2
        assert config.touch_tolerance_pct == 0.5
        assert config.min_strength == 0.3
        assert config.lookback_period == 100
        assert config.volume_weighting is True
        assert config.liquidity_grab_threshold == 1.5
        assert config.reversal_confirmation_period == 5
        assert config.time_reference == "candle"
        assert config.parallel_sources is False
        assert config.breakout_confirmation_candles == 3

    def test_weights_sum_to_one(self):
        """Test that default strength weights sum to one."""
        assert StrengthWeights().total == pytest.approx(1.0)

    def test_confluence_defaults(self):
        """Test default confluence settings."""
        settings = ConfluenceSettings()
        assert settings.min_factors == 2
        assert settings.price_tolerance_pct == 0.5


class TestValidation:
    """Tests for config validation."""

    def test_default_config_is_valid(self):
        """Test that validate() returns the config itself."""
        config = DetectorConfig()
        assert config.validate() is config

    @pytest.mark.parametrize("changes", [
        {"touch_tolerance_pct": -0.1},
        {"min_touches": -1},
        {"min_strength": 1.5},
        {"lookback_period": 0},
        {"reversal_confirmation_period": 0},
        {"liquidity_grab_threshold": float("nan")},
        {"time_reference": "exchange"},
        {"strength_weights": StrengthWeights(touches=-0.25)},
        {"confluence": ConfluenceSettings(min_factors=0)},
        {"breakout_confirmation_candles": 0},
    ])
    def test_invalid_values_rejected(self, changes):
        """Test that out-of-range settings raise."""
        with pytest.raises(InvalidInputError):
            DetectorConfig().with_overrides(**changes)

    def test_unbalanced_weights_warn_but_pass(self, caplog):
        """Test that unbalanced weights only log a warning."""
        weights = StrengthWeights(touches=0.5)

        with caplog.at_level(logging.WARNING):
            config = DetectorConfig(strength_weights=weights).validate()

        assert config.strength_weights.total == pytest.approx(1.25)
        assert "[Config]" in caplog.text

    def test_with_overrides_returns_new_value(self):
        """Test that with_overrides leaves the original untouched."""
        original = DetectorConfig()
        updated = original.with_overrides(min_touches=4)

        assert updated.min_touches == 4
        assert original.min_touches == 2
        assert updated is not original


class TestFromEnv:
    """Tests for environment loading."""

    def test_defaults_without_env(self, clean_env):
        """Test that no environment gives the defaults."""
        assert DetectorConfig.from_env() == DetectorConfig()

    def test_reads_env_values(self, clean_env):
        """Test reading settings from LEVELHUNTER_* variables."""
        clean_env.setenv("LEVELHUNTER_MIN_TOUCHES", "3")
        clean_env.setenv("LEVELHUNTER_TOUCH_TOLERANCE_PCT", "0.25")
        clean_env.setenv("LEVELHUNTER_VOLUME_WEIGHTING", "false")
        clean_env.setenv("LEVELHUNTER_CONFLUENCE_MIN_FACTORS", "3")
        clean_env.setenv("LEVELHUNTER_TIME_REFERENCE", "WALL_CLOCK")
        clean_env.setenv("LEVELHUNTER_PARALLEL_SOURCES", "1")
        clean_env.setenv("LEVELHUNTER_BREAKOUT_CONFIRMATION_CANDLES", "5")

        config = DetectorConfig.from_env()

        assert config.min_touches == 3
        assert config.touch_tolerance_pct == 0.25
        assert config.volume_weighting is False
        assert config.confluence.min_factors == 3
        assert config.time_reference == "wall_clock"
        assert config.parallel_sources is True
        assert config.breakout_confirmation_candles == 5

    def test_reads_env_file(self, clean_env, tmp_path):
        """Test reading settings from a .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text("LEVELHUNTER_LOOKBACK_PERIOD=60\n")

        try:
            config = DetectorConfig.from_env(str(env_file))
        finally:
            os.environ.pop("LEVELHUNTER_LOOKBACK_PERIOD", None)

        assert config.lookback_period == 60

    def test_bad_integer_raises(self, clean_env):
        """Test that a non-integer value raises."""
        clean_env.setenv("LEVELHUNTER_MIN_TOUCHES", "two")

        with pytest.raises(InvalidInputError):
            DetectorConfig.from_env()

    def test_invalid_value_raises(self, clean_env):
        """Test that an out-of-range environment value raises."""
        clean_env.setenv("LEVELHUNTER_TOUCH_TOLERANCE_PCT", "-1")

        with pytest.raises(InvalidInputError):
            DetectorConfig.from_env()
