"""
Liquidity grab (stop hunt) detection.

Rules (tolerance = level price * touch_tolerance_pct / 100):
- Support grab:    cur.low < price - tol, prev.low >= price - tol, cur.close > price
- Resistance grab: cur.high > price + tol, prev.high <= price + tol, cur.close < price
- volume_spike = cur.volume / mean(volume of up to 10 prior candles)
- strength = min(1, volume_spike * level.strength_score)
- Reversal confirmed when each of the next `reversal_confirmation_period`
  candles closes on the safe side of the level (above support, below
  resistance). Undecided (None) while that window runs past the data.

Batch scans look ahead into later candles. Live feeds use
LiquidityGrabStream, which keeps grabs pending until enough candles arrive.
"""

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np

from levelhunter.config import DetectorConfig
from levelhunter.errors import InvalidInputError
from .candles import Candle, CandleSeries, prepare_series, validate_candle
from .models import EnhancedLevel, LevelType, LiquidityGrab
from .structure import tolerance_for

logger = logging.getLogger(__name__)

VOLUME_LOOKBACK = 10
RECENT_GRAB_WINDOW = 20
MIN_GRAB_CANDLES = 2


def calculate_volume_spike(volume: np.ndarray, index: int, lookback: int = VOLUME_LOOKBACK) -> float:
    """Volume at `index` relative to the mean of up to `lookback` prior candles."""
    start = max(0, index - lookback)
    if start >= index:
        return 0.0

    avg_volume = float(np.mean(volume[start:index]))
    if avg_volume <= 0:
        return 0.0
    return float(volume[index]) / avg_volume


def is_grab(
    prev_low: float,
    prev_high: float,
    cur_low: float,
    cur_high: float,
    cur_close: float,
    price: float,
    level_type: LevelType,
    tolerance: float,
) -> bool:
    """True when the current candle sweeps the level and closes back on the other side."""
    if level_type == LevelType.SUPPORT:
        broke_support = cur_low < price - tolerance and prev_low >= price - tolerance
        return broke_support and cur_close > price

    broke_resistance = cur_high > price + tolerance and prev_high <= price + tolerance
    return broke_resistance and cur_close < price


def _closes_safe(close: float, price: float, level_type: LevelType) -> bool:
    if level_type == LevelType.SUPPORT:
        return close > price
    return close < price


def confirm_reversal(
    close: np.ndarray,
    grab_index: int,
    price: float,
    level_type: LevelType,
    period: int,
) -> Optional[bool]:
    """
    Check the `period` candles after a grab for a held reversal.

    Returns:
        False if any available candle closes on the unsafe side,
        None if the window extends past the data without a failure,
        True if every candle in the window closes on the safe side.
    """
    window = close[grab_index + 1:grab_index + period + 1]
    for value in window:
        if not _closes_safe(float(value), price, level_type):
            return False

    if len(window) < period:
        return None
    return True


def scan_level(
    series: CandleSeries,
    price: float,
    level_type: LevelType,
    strength_score: float,
    config: DetectorConfig,
) -> List[LiquidityGrab]:
    """Find every grab of one level within the window."""
    tolerance = tolerance_for(price, config.touch_tolerance_pct)
    grabs: List[LiquidityGrab] = []

    for i in range(1, len(series)):
        if not is_grab(
            float(series.low[i - 1]), float(series.high[i - 1]),
            float(series.low[i]), float(series.high[i]), float(series.close[i]),
            price, level_type, tolerance,
        ):
            continue

        spike = calculate_volume_spike(series.volume, i)
        grabs.append(LiquidityGrab(
            timestamp=int(series.timestamps[i]),
            price=price,
            grab_type=level_type,
            strength=min(1.0, spike * strength_score),
            reversal_confirmed=confirm_reversal(
                series.close, i, price, level_type, config.reversal_confirmation_period
            ),
            volume_spike=spike,
            volume_confirmed=spike >= config.liquidity_grab_threshold,
            index=i,
        ))

    return grabs


def sort_grabs(grabs: List[LiquidityGrab]) -> List[LiquidityGrab]:
    """Strongest first; ties broken by time then price so ordering is stable."""
    return sorted(grabs, key=lambda g: (-g.strength, g.timestamp, g.price))


def find_liquidity_grabs(
    series: CandleSeries,
    levels: Sequence[EnhancedLevel],
    config: DetectorConfig,
) -> List[LiquidityGrab]:
    grabs: List[LiquidityGrab] = []
    for level in levels:
        grabs.extend(scan_level(series, level.price, level.level_type, level.strength_score, config))
    return sort_grabs(grabs)


def has_recent_liquidity_grab(
    series: CandleSeries,
    price: float,
    level_type: LevelType,
    config: DetectorConfig,
    window: int = RECENT_GRAB_WINDOW,
) -> bool:
    """True when the level was swept within the last `window` candles."""
    recent = series.tail(window)
    if len(recent) < MIN_GRAB_CANDLES:
        return False
    return len(scan_level(recent, price, level_type, 1.0, config)) > 0


def detect_liquidity_grabs(
    candles: Sequence[Candle],
    levels: Sequence[EnhancedLevel],
    config: Optional[DetectorConfig] = None,
) -> List[LiquidityGrab]:
    """
    Detect liquidity grabs against known levels.

    Args:
        candles: Candle window, oldest first
        levels: Scored levels to test
        config: Detector config (defaults when omitted)

    Returns:
        Grabs sorted by strength descending

    Raises:
        InsufficientDataError: fewer than 2 candles
        InvalidInputError: invalid candle values
    """
    config = config or DetectorConfig()
    series = prepare_series(candles, MIN_GRAB_CANDLES, "liquidity grab scan")
    grabs = find_liquidity_grabs(series, levels, config)

    logger.info(
        f"[Grabs] candles={len(series)}, levels={len(levels)}, grabs={len(grabs)}, "
        f"confirmed={sum(1 for g in grabs if g.reversal_confirmed)}"
    )
    return grabs


GrabKey = Tuple[float, LevelType, int]


@dataclass
class PendingConfirmation:
    """A grab waiting for its reversal window to complete."""
    grab: LiquidityGrab
    remaining: int


class ReversalConfirmationTracker:
    """
    Pending reversal confirmations keyed by (level price, level type, grab timestamp).

    Each pending grab lives for at most `horizon` candles. A candle closing
    on the unsafe side resolves it as rejected; surviving the full horizon
    resolves it as confirmed.
    """

    def __init__(self, horizon: int):
        if horizon < 1:
            raise InvalidInputError(f"horizon must be >= 1, got {horizon}")
        self.horizon = horizon
        self._pending: Dict[GrabKey, PendingConfirmation] = {}

    @staticmethod
    def key_for(grab: LiquidityGrab) -> GrabKey:
        return (grab.price, grab.grab_type, grab.timestamp)

    @property
    def pending(self) -> List[LiquidityGrab]:
        return [entry.grab for entry in self._pending.values()]

    def __len__(self):
        return len(self._pending)

    def register(self, grab: LiquidityGrab) -> bool:
        """Start tracking a grab. Returns False if it is already tracked."""
        key = self.key_for(grab)
        if key in self._pending:
            return False
        self._pending[key] = PendingConfirmation(grab=grab, remaining=self.horizon)
        return True

    def update(self, candle: Candle) -> List[LiquidityGrab]:
        """Feed the next candle; return grabs whose confirmation was decided by it."""
        resolved: List[LiquidityGrab] = []

        for key, entry in list(self._pending.items()):
            grab = entry.grab
            if candle.timestamp <= grab.timestamp:
                continue

            if not _closes_safe(candle.close, grab.price, grab.grab_type):
                resolved.append(replace(grab, reversal_confirmed=False))
                del self._pending[key]
                continue

            entry.remaining -= 1
            if entry.remaining == 0:
                resolved.append(replace(grab, reversal_confirmed=True))
                del self._pending[key]

        return resolved


@dataclass
class StreamUpdate:
    """Outcome of feeding one candle into a LiquidityGrabStream."""
    detected: List[LiquidityGrab] = field(default_factory=list)
    resolved: List[LiquidityGrab] = field(default_factory=list)


class LiquidityGrabStream:
    """
    Incremental liquidity-grab detection for a single symbol.

    Keeps the last 10 candles for the volume baseline and a
    ReversalConfirmationTracker for grabs awaiting confirmation. Unlike the
    detector, a stream is stateful: use one per symbol.
    """

    def __init__(self, levels: Sequence[EnhancedLevel], config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()
        self.levels: List[EnhancedLevel] = list(levels)
        self.tracker = ReversalConfirmationTracker(self.config.reversal_confirmation_period)
        self._window: Deque[Candle] = deque(maxlen=VOLUME_LOOKBACK)
        self._bar_index = 0

    def update_levels(self, levels: Sequence[EnhancedLevel]) -> None:
        """Replace the levels new candles are tested against. Pending grabs are kept."""
        self.levels = list(levels)

    @property
    def pending(self) -> List[LiquidityGrab]:
        return self.tracker.pending

    def on_candle(self, candle: Candle) -> StreamUpdate:
        """
        Process the next closed candle.

        Raises:
            InvalidInputError: invalid candle or timestamp not after the previous candle
        """
        validate_candle(candle, self._bar_index)
        if self._window and candle.timestamp <= self._window[-1].timestamp:
            raise InvalidInputError(
                f"candle timestamp {candle.timestamp} is not after previous {self._window[-1].timestamp}"
            )

        # Resolve older grabs first so a new grab is never judged by its own candle
        update = StreamUpdate(resolved=self.tracker.update(candle))

        if self._window:
            prev = self._window[-1]
            volumes = np.array([c.volume for c in self._window] + [candle.volume])
            spike = calculate_volume_spike(volumes, len(volumes) - 1)

            for level in self.levels:
                tolerance = tolerance_for(level.price, self.config.touch_tolerance_pct)
                if not is_grab(
                    prev.low, prev.high, candle.low, candle.high, candle.close,
                    level.price, level.level_type, tolerance,
                ):
                    continue

                grab = LiquidityGrab(
                    timestamp=candle.timestamp,
                    price=level.price,
                    grab_type=level.level_type,
                    strength=min(1.0, spike * level.strength_score),
                    reversal_confirmed=None,
                    volume_spike=spike,
                    volume_confirmed=spike >= self.config.liquidity_grab_threshold,
                    index=self._bar_index,
                )
                if self.tracker.register(grab):
                    update.detected.append(grab)
                    logger.debug(
                        f"[Grabs] {candle.symbol} {grab.grab_type.value} grab at {grab.price:.4f} "
                        f"spike={spike:.2f}"
                    )

        self._window.append(candle)
        self._bar_index += 1
        return update
