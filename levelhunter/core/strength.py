"""
Strength scoring for support/resistance levels.

strength = touches * w_touches + volume * w_volume + time * w_time
         + price_action * w_price_action + rejection * w_rejection
clipped to [0, 1].

Factors (all 0..1):
- touches:      min(1, touches / (5 + 2 * volatility))
- volume:       volume of touching candles / total window volume
- time:         triangular curve over level age in days
                (<1d 0.3, 7-14d 1.0, >30d 0.1, linear in between)
- price_action: mean min(1, wick / body) over touching candles
- rejection:    same wick-to-body measure, weighted separately
"""

import time
from dataclasses import dataclass
from typing import Optional

import numpy as np

from levelhunter.config import DetectorConfig
from .candles import CandleSeries
from .models import EnhancedLevel, Level, LevelType
from .structure import touch_mask

SECONDS_PER_DAY = 86400
REVERSAL_LOOKBACK = 10


@dataclass(frozen=True)
class StrengthBreakdown:
    """Individual factors behind a strength score."""
    touches: float
    volume: float
    time: float
    price_action: float
    rejection: float
    score: float


def _clip01(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


def touch_factor(touches: int, volatility: float) -> float:
    """Volatility-normalized touch score: noisy markets need more touches."""
    return _clip01(touches / (5 + 2 * volatility))


def volume_factor(series: CandleSeries, level: Level, tolerance_pct: float) -> float:
    """Share of window volume traded by candles touching the level."""
    total_volume = float(np.sum(series.volume))
    if total_volume <= 0:
        return 0.0

    mask = touch_mask(series, level.price, level.level_type, tolerance_pct)
    return _clip01(float(np.sum(series.volume[mask])) / total_volume)


def level_age_days(last_touch: int, reference_time: int) -> float:
    return (reference_time - last_touch) / SECONDS_PER_DAY


def time_factor(age_days: float) -> float:
    """Triangular persistence curve: fresh levels are unproven, stale ones fade."""
    if age_days < 1:
        return 0.3
    if age_days < 7:
        return 0.3 + (age_days - 1) / 6 * 0.7
    if age_days <= 14:
        return 1.0
    if age_days <= 30:
        return 1.0 - (age_days - 14) / 16 * 0.9
    return 0.1


def price_action_factor(series: CandleSeries, level: Level, tolerance_pct: float) -> float:
    """
    Mean wick-to-body ratio of candles touching the level, each capped at 1.

    Lower wicks count for support, upper wicks for resistance. A zero-body
    candle counts fully if it has a wick and not at all if it has none.
    """
    mask = touch_mask(series, level.price, level.level_type, tolerance_pct)
    if not np.any(mask):
        return 0.0

    open_ = series.open[mask]
    close = series.close[mask]
    body = np.abs(close - open_)

    if level.level_type == LevelType.SUPPORT:
        wick = np.minimum(open_, close) - series.low[mask]
    else:
        wick = series.high[mask] - np.maximum(open_, close)

    ratios = np.where(
        body > 0,
        np.minimum(1.0, wick / np.where(body > 0, body, 1.0)),
        np.where(wick > 0, 1.0, 0.0),
    )
    return _clip01(float(np.mean(ratios)))


def rejection_factor(series: CandleSeries, level: Level, tolerance_pct: float) -> float:
    return price_action_factor(series, level, tolerance_pct)


def calculate_strength_score(
    level: Level,
    series: CandleSeries,
    volatility: float,
    config: DetectorConfig,
    reference_time: int,
) -> StrengthBreakdown:
    """Score a level from its touches, volume, age and rejection behaviour."""
    weights = config.strength_weights
    tolerance_pct = config.touch_tolerance_pct

    touches = touch_factor(level.touches, volatility)
    volume = volume_factor(series, level, tolerance_pct)
    age = time_factor(level_age_days(level.last_touch, reference_time))
    price_action = price_action_factor(series, level, tolerance_pct)
    rejection = rejection_factor(series, level, tolerance_pct)

    score = (
        touches * weights.touches
        + volume * weights.volume
        + age * weights.time
        + price_action * weights.price_action
        + rejection * weights.rejection
    )

    return StrengthBreakdown(
        touches=touches,
        volume=volume,
        time=age,
        price_action=price_action,
        rejection=rejection,
        score=_clip01(score),
    )


def reversal_potential(series: CandleSeries, price: float) -> float:
    """
    Likelihood that price reacts at the level soon.

    Highest when the last close sits on the level; boosted when the last
    10 closes have been moving toward it, reduced when moving away.
    """
    distance = abs(series.last_close - price) / price
    potential = max(0.0, 1 - distance * 10)

    recent = series.close[-REVERSAL_LOOKBACK:]
    movement = 0.0
    if len(recent) >= 2:
        start_distance = abs(float(recent[0]) - price)
        end_distance = abs(float(recent[-1]) - price)
        if start_distance > 0:
            movement = (start_distance - end_distance) / start_distance

    return _clip01(potential * (1 + movement * 0.5))


def resolve_reference_time(series: CandleSeries, config: DetectorConfig) -> int:
    """
    Point in time level ages are measured from.

    "candle" uses the last candle's timestamp so results only depend on the
    input. "wall_clock" uses the current time for live use.
    """
    if config.time_reference == "wall_clock":
        return int(time.time())
    return int(series.timestamps[-1])


def score_level(
    level: Level,
    series: CandleSeries,
    volatility: float,
    config: DetectorConfig,
    reference_time: int,
    liquidity_grab: bool = False,
    volume_confirmation: Optional[float] = None,
) -> EnhancedLevel:
    """Attach a full strength breakdown to a candidate level."""
    breakdown = calculate_strength_score(level, series, volatility, config, reference_time)

    return EnhancedLevel(
        price=level.price,
        level_type=level.level_type,
        touches=level.touches,
        last_touch=level.last_touch,
        strength_score=breakdown.score,
        liquidity_grab=liquidity_grab,
        reversal_potential=reversal_potential(series, level.price),
        volume_confirmation=breakdown.volume if volume_confirmation is None else _clip01(volume_confirmation),
        time_strength=breakdown.time,
        price_action_strength=breakdown.price_action,
    )
