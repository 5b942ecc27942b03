"""
Candle value objects and the numpy column view used by every detector.

Rules:
- Timestamps are Unix seconds (int), sorted ascending (oldest first).
- Candles are validated ONCE, before any arithmetic:
  prices finite and > 0, volume finite and >= 0,
  high >= max(open, close), low <= min(open, close).
"""

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from levelhunter.errors import InsufficientDataError, InvalidInputError


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar."""
    symbol: str
    timeframe: str
    timestamp: int  # Unix seconds
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class CandleSeries:
    """
    Column view of a validated candle window.

    Built once per analysis call so every detector works on the same
    numpy arrays instead of re-reading Candle attributes.
    """
    timestamps: np.ndarray
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray
    volume: np.ndarray

    def __len__(self):
        return len(self.timestamps)

    @classmethod
    def from_candles(cls, candles: Sequence[Candle]) -> "CandleSeries":
        return cls(
            timestamps=np.array([c.timestamp for c in candles], dtype=np.int64),
            open=np.array([c.open for c in candles], dtype=float),
            high=np.array([c.high for c in candles], dtype=float),
            low=np.array([c.low for c in candles], dtype=float),
            close=np.array([c.close for c in candles], dtype=float),
            volume=np.array([c.volume for c in candles], dtype=float),
        )

    def tail(self, count: int) -> "CandleSeries":
        """Return the last `count` candles as a new series."""
        start = max(0, len(self) - count)
        return CandleSeries(
            timestamps=self.timestamps[start:],
            open=self.open[start:],
            high=self.high[start:],
            low=self.low[start:],
            close=self.close[start:],
            volume=self.volume[start:],
        )

    @property
    def last_close(self) -> float:
        return float(self.close[-1])

    @property
    def price_range(self) -> float:
        return float(np.max(self.high) - np.min(self.low))


def validate_candle(candle: Candle, index: int = 0) -> None:
    """Reject candles that would poison downstream math."""
    for name in ("open", "high", "low", "close"):
        value = getattr(candle, name)
        if not math.isfinite(value):
            raise InvalidInputError(f"candle[{index}].{name} is not finite: {value}")
        if value <= 0:
            raise InvalidInputError(f"candle[{index}].{name} must be positive, got {value}")

    if not math.isfinite(candle.volume):
        raise InvalidInputError(f"candle[{index}].volume is not finite: {candle.volume}")
    if candle.volume < 0:
        raise InvalidInputError(f"candle[{index}].volume must be >= 0, got {candle.volume}")

    if candle.high < max(candle.open, candle.close):
        raise InvalidInputError(
            f"candle[{index}].high {candle.high} is below its body {max(candle.open, candle.close)}"
        )
    if candle.low > min(candle.open, candle.close):
        raise InvalidInputError(
            f"candle[{index}].low {candle.low} is above its body {min(candle.open, candle.close)}"
        )


def validate_candles(candles: Sequence[Candle]) -> None:
    for i, candle in enumerate(candles):
        validate_candle(candle, i)


def prepare_series(
    candles: Sequence[Candle],
    min_candles: int,
    context: str = "analysis",
) -> CandleSeries:
    """
    Validate a candle window and build its column view.

    Raises:
        InsufficientDataError: fewer than `min_candles` candles (or none at all)
        InvalidInputError: any candle fails validation
    """
    required = max(1, min_candles)
    if len(candles) < required:
        raise InsufficientDataError(required, len(candles), context)

    validate_candles(candles)
    return CandleSeries.from_candles(candles)
