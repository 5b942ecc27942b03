"""
Detector configuration.

Config is an immutable value: a detector captures it once at construction
and never mutates it mid-computation. Use `with_overrides()` to derive an
updated config between calls.

Environment variables (optionally from a .env file):
    LEVELHUNTER_MIN_TOUCHES
    LEVELHUNTER_TOUCH_TOLERANCE_PCT
    LEVELHUNTER_MIN_STRENGTH
    LEVELHUNTER_LOOKBACK_PERIOD
    LEVELHUNTER_VOLUME_WEIGHTING
    LEVELHUNTER_LIQUIDITY_GRAB_THRESHOLD
    LEVELHUNTER_REVERSAL_CONFIRMATION_PERIOD
    LEVELHUNTER_CONFLUENCE_MIN_FACTORS
    LEVELHUNTER_CONFLUENCE_TOLERANCE_PCT
    LEVELHUNTER_TIME_REFERENCE       ("candle" or "wall_clock")
    LEVELHUNTER_PARALLEL_SOURCES
    LEVELHUNTER_BREAKOUT_CONFIRMATION_CANDLES
"""

import logging
import math
import os
from dataclasses import dataclass, field, fields, replace
from typing import Optional

from dotenv import load_dotenv

from levelhunter.errors import InvalidInputError

logger = logging.getLogger(__name__)

TIME_REFERENCES = ("candle", "wall_clock")


@dataclass(frozen=True)
class StrengthWeights:
    """Weights of the strength score factors. Conceptually sum to 1.0."""
    touches: float = 0.25
    volume: float = 0.20
    time: float = 0.15
    price_action: float = 0.20
    rejection: float = 0.20

    @property
    def total(self) -> float:
        return self.touches + self.volume + self.time + self.price_action + self.rejection


@dataclass(frozen=True)
class ConfluenceSettings:
    min_factors: int = 2
    price_tolerance_pct: float = 0.5


@dataclass(frozen=True)
class DetectorConfig:
    min_touches: int = 2
    touch_tolerance_pct: float = 0.5  # Percent of level price
    min_strength: float = 0.3
    lookback_period: int = 100
    volume_weighting: bool = True
    liquidity_grab_threshold: float = 1.5
    reversal_confirmation_period: int = 5
    strength_weights: StrengthWeights = field(default_factory=StrengthWeights)
    confluence: ConfluenceSettings = field(default_factory=ConfluenceSettings)
    # "candle": level age measured from the last candle (deterministic)
    # "wall_clock": level age measured from the current time
    time_reference: str = "candle"
    parallel_sources: bool = False
    breakout_confirmation_candles: int = 3  # Latest candles checked for channel breakouts

    def validate(self) -> "DetectorConfig":
        """Raise InvalidInputError for values no analysis can run with."""
        if self.min_touches < 0:
            raise InvalidInputError(f"min_touches must be >= 0, got {self.min_touches}")
        if not math.isfinite(self.touch_tolerance_pct) or self.touch_tolerance_pct < 0:
            raise InvalidInputError(
                f"touch_tolerance_pct must be a finite value >= 0, got {self.touch_tolerance_pct}"
            )
        if not 0 <= self.min_strength <= 1:
            raise InvalidInputError(f"min_strength must be within [0, 1], got {self.min_strength}")
        if self.lookback_period < 1:
            raise InvalidInputError(f"lookback_period must be >= 1, got {self.lookback_period}")
        if not math.isfinite(self.liquidity_grab_threshold) or self.liquidity_grab_threshold < 0:
            raise InvalidInputError(
                f"liquidity_grab_threshold must be a finite value >= 0, got {self.liquidity_grab_threshold}"
            )
        if self.reversal_confirmation_period < 1:
            raise InvalidInputError(
                f"reversal_confirmation_period must be >= 1, got {self.reversal_confirmation_period}"
            )
        for f in fields(self.strength_weights):
            weight = getattr(self.strength_weights, f.name)
            if not math.isfinite(weight) or weight < 0:
                raise InvalidInputError(f"strength weight '{f.name}' must be >= 0, got {weight}")
        if self.confluence.min_factors < 1:
            raise InvalidInputError(
                f"confluence.min_factors must be >= 1, got {self.confluence.min_factors}"
            )
        if not math.isfinite(self.confluence.price_tolerance_pct) or self.confluence.price_tolerance_pct < 0:
            raise InvalidInputError(
                f"confluence.price_tolerance_pct must be >= 0, got {self.confluence.price_tolerance_pct}"
            )
        if self.breakout_confirmation_candles < 1:
            raise InvalidInputError(
                f"breakout_confirmation_candles must be >= 1, got {self.breakout_confirmation_candles}"
            )
        if self.time_reference not in TIME_REFERENCES:
            raise InvalidInputError(
                f"time_reference must be one of {TIME_REFERENCES}, got {self.time_reference!r}"
            )

        if abs(self.strength_weights.total - 1.0) > 1e-6:
            logger.warning(
                f"[Config] Strength weights sum to {self.strength_weights.total:.3f}, not 1.0"
            )
        return self

    def with_overrides(self, **changes) -> "DetectorConfig":
        """Return a new validated config with the given fields replaced."""
        return replace(self, **changes).validate()

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "DetectorConfig":
        """Build a config from LEVELHUNTER_* environment variables."""
        load_dotenv(env_file)
        defaults = cls()

        config = cls(
            min_touches=_env_int("LEVELHUNTER_MIN_TOUCHES", defaults.min_touches),
            touch_tolerance_pct=_env_float("LEVELHUNTER_TOUCH_TOLERANCE_PCT", defaults.touch_tolerance_pct),
            min_strength=_env_float("LEVELHUNTER_MIN_STRENGTH", defaults.min_strength),
            lookback_period=_env_int("LEVELHUNTER_LOOKBACK_PERIOD", defaults.lookback_period),
            volume_weighting=_env_bool("LEVELHUNTER_VOLUME_WEIGHTING", defaults.volume_weighting),
            liquidity_grab_threshold=_env_float(
                "LEVELHUNTER_LIQUIDITY_GRAB_THRESHOLD", defaults.liquidity_grab_threshold
            ),
            reversal_confirmation_period=_env_int(
                "LEVELHUNTER_REVERSAL_CONFIRMATION_PERIOD", defaults.reversal_confirmation_period
            ),
            confluence=ConfluenceSettings(
                min_factors=_env_int("LEVELHUNTER_CONFLUENCE_MIN_FACTORS", defaults.confluence.min_factors),
                price_tolerance_pct=_env_float(
                    "LEVELHUNTER_CONFLUENCE_TOLERANCE_PCT", defaults.confluence.price_tolerance_pct
                ),
            ),
            time_reference=os.getenv("LEVELHUNTER_TIME_REFERENCE", defaults.time_reference).lower(),
            parallel_sources=_env_bool("LEVELHUNTER_PARALLEL_SOURCES", defaults.parallel_sources),
            breakout_confirmation_candles=_env_int(
                "LEVELHUNTER_BREAKOUT_CONFIRMATION_CANDLES", defaults.breakout_confirmation_candles
            ),
        )
        return config.validate()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidInputError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidInputError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
