"""
Market structure: pivot (fractal) levels, touch counting, volatility.

Rules:
- Pivot high: high[i] strictly above every high within `pivot_distance` bars
  on both sides -> resistance candidate.
- Pivot low: low[i] strictly below every low within `pivot_distance` bars
  on both sides -> support candidate.
- A pivot is kept only if at least `min_touches` OTHER candles touch its price.
- Touches are measured on highs for resistance and on lows for support.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List

import numpy as np

from levelhunter.config import DetectorConfig
from .candles import CandleSeries
from .models import Level, LevelType

PIVOT_DISTANCE = 5
TRADING_DAYS_PER_YEAR = 252
MAX_TOUCH_WEIGHT = 2.0


class Trend(Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    SIDEWAYS = "sideways"


class MarketPhase(Enum):
    ACCUMULATION = "accumulation"
    MARKUP = "markup"
    DISTRIBUTION = "distribution"
    MARKDOWN = "markdown"


class VolumeClass(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class MarketStructure:
    """Coarse description of the recent market regime."""
    trend: Trend
    strength: float  # 0..1
    phase: MarketPhase
    volatility: float  # stdev of simple returns
    volume: VolumeClass


def tolerance_for(price: float, tolerance_pct: float) -> float:
    """Absolute touch tolerance for a level price."""
    return price * (tolerance_pct / 100)


def touch_mask(
    series: CandleSeries,
    price: float,
    level_type: LevelType,
    tolerance_pct: float,
) -> np.ndarray:
    """Boolean mask of candles whose relevant extreme lies within tolerance of `price`."""
    tolerance = tolerance_for(price, tolerance_pct)
    extremes = series.high if level_type == LevelType.RESISTANCE else series.low
    return np.abs(extremes - price) <= tolerance


def count_touches(
    series: CandleSeries,
    price: float,
    level_type: LevelType,
    tolerance_pct: float,
    volume_weighting: bool = True,
    exclude_index: int = -1,
) -> int:
    """
    Count candles touching a level.

    With volume weighting each touch contributes min(2, volume / avg_volume)
    instead of 1; the weighted sum is rounded at the end. When the window has
    no volume at all every touch counts 1.
    """
    mask = touch_mask(series, price, level_type, tolerance_pct)
    if 0 <= exclude_index < len(mask):
        mask = mask.copy()
        mask[exclude_index] = False

    if not np.any(mask):
        return 0

    avg_volume = float(np.mean(series.volume))
    if not volume_weighting or avg_volume <= 0:
        return int(np.count_nonzero(mask))

    weights = np.minimum(MAX_TOUCH_WEIGHT, series.volume[mask] / avg_volume)
    return int(round(float(np.sum(weights))))


def calculate_volatility(close: np.ndarray) -> float:
    """
    Annualized volatility: stdev(ln(close_t / close_t-1)) * sqrt(252).

    Returns 0.0 for fewer than 2 closes.
    """
    if len(close) < 2:
        return 0.0

    log_returns = np.log(close[1:] / close[:-1])
    return float(np.std(log_returns) * np.sqrt(TRADING_DAYS_PER_YEAR))


def adaptive_price_step(series: CandleSeries, volatility: float) -> float:
    """Grid step for clustering: avg_close * 0.001 * (1 + volatility * 0.5)."""
    avg_price = float(np.mean(series.close))
    return avg_price * 0.001 * (1 + volatility * 0.5)


def find_pivot_levels(
    series: CandleSeries,
    config: DetectorConfig,
    pivot_distance: int = PIVOT_DISTANCE,
) -> List[Level]:
    """
    Find pivot highs/lows and keep the ones confirmed by enough touches.

    Args:
        series: Validated candle window
        config: Detector config (min_touches, touch_tolerance_pct, volume_weighting)
        pivot_distance: Bars required on each side of the pivot

    Returns:
        List of candidate Levels sorted by bar index
    """
    high = series.high
    low = series.low
    n = len(series)
    levels: List[Level] = []

    if n < 2 * pivot_distance + 1:
        return levels

    for i in range(pivot_distance, n - pivot_distance):
        left_high_max = np.max(high[i - pivot_distance:i])
        right_high_max = np.max(high[i + 1:i + pivot_distance + 1])

        if high[i] > left_high_max and high[i] > right_high_max:
            touches = count_touches(
                series, float(high[i]), LevelType.RESISTANCE,
                config.touch_tolerance_pct, config.volume_weighting, exclude_index=i,
            )
            if touches >= config.min_touches:
                levels.append(Level(
                    price=float(high[i]),
                    level_type=LevelType.RESISTANCE,
                    touches=touches,
                    last_touch=int(series.timestamps[i]),
                ))

        left_low_min = np.min(low[i - pivot_distance:i])
        right_low_min = np.min(low[i + 1:i + pivot_distance + 1])

        if low[i] < left_low_min and low[i] < right_low_min:
            touches = count_touches(
                series, float(low[i]), LevelType.SUPPORT,
                config.touch_tolerance_pct, config.volume_weighting, exclude_index=i,
            )
            if touches >= config.min_touches:
                levels.append(Level(
                    price=float(low[i]),
                    level_type=LevelType.SUPPORT,
                    touches=touches,
                    last_touch=int(series.timestamps[i]),
                ))

    return levels


def _simple_return_volatility(close: np.ndarray) -> float:
    if len(close) < 2:
        return 0.0
    returns = (close[1:] - close[:-1]) / close[:-1]
    return float(np.std(returns))


def analyze_market_structure(series: CandleSeries, lookback: int = 50) -> MarketStructure:
    """
    Classify trend, phase and volume regime of the last `lookback` candles.

    Trend: bullish above +5% change, bearish below -5%, sideways otherwise.
    Phase:
      markup        change > 2%  and volatility < 3%
      markdown      change < -2% and volatility < 3%
      accumulation  |change| < 1% and volatility < 2%
      distribution  otherwise
    """
    recent = series.tail(lookback)
    first_price = float(recent.close[0])
    last_price = float(recent.close[-1])
    price_change = (last_price - first_price) / first_price

    if price_change > 0.05:
        trend = Trend.BULLISH
    elif price_change < -0.05:
        trend = Trend.BEARISH
    else:
        trend = Trend.SIDEWAYS

    volatility = _simple_return_volatility(recent.close)

    if price_change > 0.02 and volatility < 0.03:
        phase = MarketPhase.MARKUP
    elif price_change < -0.02 and volatility < 0.03:
        phase = MarketPhase.MARKDOWN
    elif abs(price_change) < 0.01 and volatility < 0.02:
        phase = MarketPhase.ACCUMULATION
    else:
        phase = MarketPhase.DISTRIBUTION

    recent_avg = float(np.mean(recent.volume))
    historical_avg = float(np.mean(series.volume))
    volume_ratio = recent_avg / historical_avg if historical_avg > 0 else 0.0

    if volume_ratio > 1.3:
        volume_class = VolumeClass.HIGH
    elif volume_ratio > 0.7:
        volume_class = VolumeClass.MEDIUM
    else:
        volume_class = VolumeClass.LOW

    return MarketStructure(
        trend=trend,
        strength=min(abs(price_change) * 10, 1.0),
        phase=phase,
        volatility=volatility,
        volume=volume_class,
    )
