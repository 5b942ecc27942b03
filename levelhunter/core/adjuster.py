"""
Dynamic level adjustment from price action, volume and trend.

Rules (tolerance = 1% of the level price):
- +2.0%  High volume confirmation   volume at level > 1.5x window average
- +1.0%  Multiple price rejections  more than 2 bearish candles with high at the level
- -0.5%  Bullish trend bias         bullish trend and a Fibonacci retracement level

Only levels with a non-zero total adjustment produce a record.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .candles import Candle, CandleSeries, prepare_series
from .sources import LevelInput, LevelKind
from .structure import MarketStructure, Trend, analyze_market_structure, tolerance_for

logger = logging.getLogger(__name__)

ADJUSTMENT_TOLERANCE_PCT = 1.0
STRUCTURE_LOOKBACK = 50
HIGH_VOLUME_RATIO = 1.5


@dataclass(frozen=True)
class LevelAdjustment:
    original_level: float
    adjusted_level: float
    adjustment_factor: float  # Fraction of the original price, e.g. 0.02 = +2%
    reason: str
    confidence: float  # 0..1
    kind: LevelKind


@dataclass(frozen=True)
class PriceActionSummary:
    rejections: int  # Bearish candles with high at the level
    bounces: int  # Bullish candles with low at the level


@dataclass(frozen=True)
class VolumeSummary:
    average_volume: float  # Mean volume of candles trading through the level band
    historical_average: float  # Mean volume of the whole window


def analyze_price_action_around_level(series: CandleSeries, price: float) -> PriceActionSummary:
    tolerance = tolerance_for(price, ADJUSTMENT_TOLERANCE_PCT)
    bearish = series.close < series.open
    bullish = series.close > series.open

    rejections = (np.abs(series.high - price) <= tolerance) & bearish
    bounces = (np.abs(series.low - price) <= tolerance) & bullish

    return PriceActionSummary(
        rejections=int(np.count_nonzero(rejections)),
        bounces=int(np.count_nonzero(bounces)),
    )


def analyze_volume_around_level(series: CandleSeries, price: float) -> VolumeSummary:
    tolerance = tolerance_for(price, ADJUSTMENT_TOLERANCE_PCT)
    overlaps = (series.low <= price + tolerance) & (series.high >= price - tolerance)

    average_volume = float(np.mean(series.volume[overlaps])) if np.any(overlaps) else 0.0
    historical_average = float(np.mean(series.volume)) if len(series) else 0.0

    return VolumeSummary(average_volume=average_volume, historical_average=historical_average)


def calculate_adjustment_confidence(
    level: LevelInput,
    price_action: PriceActionSummary,
    volume: VolumeSummary,
) -> float:
    confidence = 0.5

    if volume.average_volume > volume.historical_average:
        confidence += 0.2

    if price_action.rejections > 1 or price_action.bounces > 1:
        confidence += 0.2

    confidence += level.strength * 0.3
    return float(min(1.0, max(0.0, confidence)))


def adjust_level(
    series: CandleSeries,
    level: LevelInput,
    structure: MarketStructure,
) -> Optional[LevelAdjustment]:
    """Adjustment record for one level, or None when no rule fires."""
    price_action = analyze_price_action_around_level(series, level.price)
    volume = analyze_volume_around_level(series, level.price)

    factor = 0.0
    reasons: List[str] = []

    if volume.average_volume > volume.historical_average * HIGH_VOLUME_RATIO:
        factor += 0.02
        reasons.append("High volume confirmation")

    if price_action.rejections > 2:
        factor += 0.01
        reasons.append("Multiple price rejections")

    if structure.trend == Trend.BULLISH and level.kind == LevelKind.FIB_RETRACEMENT:
        factor -= 0.005
        reasons.append("Bullish trend bias")

    if factor == 0:
        return None

    return LevelAdjustment(
        original_level=level.price,
        adjusted_level=level.price * (1 + factor),
        adjustment_factor=factor,
        reason="; ".join(reasons),
        confidence=calculate_adjustment_confidence(level, price_action, volume),
        kind=level.kind,
    )


def adjust_series_levels(series: CandleSeries, levels: Sequence[LevelInput]) -> List[LevelAdjustment]:
    """Adjust levels against an already validated window."""
    structure = analyze_market_structure(series, STRUCTURE_LOOKBACK)

    adjustments = []
    for level in levels:
        adjustment = adjust_level(series, level, structure)
        if adjustment is not None:
            adjustments.append(adjustment)

    logger.info(
        f"[Adjuster] levels={len(levels)}, adjusted={len(adjustments)}, trend={structure.trend.value}"
    )
    return adjustments


def adjust_levels_dynamically(
    candles: Sequence[Candle],
    levels: Sequence[LevelInput],
) -> List[LevelAdjustment]:
    """
    Shift levels toward where the market is actually reacting.

    Args:
        candles: Candle window, oldest first
        levels: Levels from any source

    Returns:
        One LevelAdjustment per level whose adjustment is non-zero, in input order

    Raises:
        InsufficientDataError: no candles
        InvalidInputError: invalid candle values
    """
    series = prepare_series(candles, 1, "level adjustment")
    return adjust_series_levels(series, levels)
