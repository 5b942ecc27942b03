"""
Confluence zones: price bands where several independent level sources agree.

Grouping:
- Inputs are deduplicated on (kind, price) and sorted by (price, kind).
- Each ungrouped input anchors a new group and absorbs every remaining
  input within price_tolerance_pct of the anchor.
- Groups with fewer than `min_factors` members are dropped.

Zone scoring:
- price_level             mean member price
- strength                min(1, mean member strength)
- reliability             min(1, 0.7 * avg_strength + 0.3 * distinct_kinds / 5)
- breakout_probability    max(0.1, 1 - 10 * |current - price| / price)
- historical_significance min(1, candles with high/low within 2% / 10)
- zone_type               support below current price, resistance above, else reversal

Market bias compares strong zones (strength > 0.7) below vs above price:
bullish when below > 1.5x above, bearish when above > 1.5x below.

Pivot channel breakouts: each of the last `confirmation_candles` closes
beyond a channel boundary is scored
    0.5 + min(10 * penetration, 0.3)
        + 0.3 if volume > 1.5x the 20-candle average (+0.2 if > 1.2x)
        + 0.2 * channel strength
and kept when the score exceeds 0.6. Target = boundary +/- channel width.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np

from levelhunter.config import ConfluenceSettings
from levelhunter.errors import InvalidInputError
from .candles import Candle, CandleSeries, prepare_series
from .sources import LevelInput, LevelKind, PivotChannel
from .structure import tolerance_for
from .volume_profile import VolumeNode, VolumeProfile, nodes_near_price

logger = logging.getLogger(__name__)

STRONG_ZONE_THRESHOLD = 0.7
MAX_FACTOR_KINDS = 5
HISTORICAL_TOLERANCE_PCT = 2.0
HISTORICAL_TOUCH_CAP = 10
DYNAMIC_SUPPORT_WINDOW = 20
DYNAMIC_SUPPORT_TOLERANCE_PCT = 1.0
VOLUME_NODE_TOLERANCE_PCT = 1.0
BIAS_RATIO = 1.5

MIN_BREAKOUT_PROBABILITY = 0.6
BREAKOUT_VOLUME_WINDOW = 20
BREAKOUT_HIGH_VOLUME_RATIO = 1.5
BREAKOUT_ELEVATED_VOLUME_RATIO = 1.2
BREAKOUT_MAX_PENETRATION_BONUS = 0.3


class ZoneType(Enum):
    SUPPORT = "support"
    RESISTANCE = "resistance"
    REVERSAL = "reversal"


class MarketBias(Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class ConfluenceFactor:
    kind: LevelKind
    description: str
    weight: float


@dataclass
class ConfluenceZone:
    price_level: float
    strength: float
    factors: List[ConfluenceFactor]
    zone_type: ZoneType
    reliability: float
    breakout_probability: float
    historical_significance: float
    volume_nodes: List[VolumeNode] = field(default_factory=list)
    dynamic_support: bool = False


@dataclass
class ConfluenceAnalysis:
    zones: List[ConfluenceZone]
    total_zones: int
    strong_zones: List[ConfluenceZone]
    critical_levels: List[float]
    market_bias: MarketBias
    confidence_score: float


def _clip01(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


def _dedupe(inputs: Sequence[LevelInput]) -> List[LevelInput]:
    """Drop repeated (kind, price) inputs, keeping the first occurrence."""
    seen = set()
    unique = []
    for item in inputs:
        key = (item.kind, item.price)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def group_levels_by_proximity(
    inputs: Sequence[LevelInput],
    price_tolerance_pct: float,
) -> List[List[LevelInput]]:
    """Greedy anchor grouping over inputs sorted by price."""
    ordered = sorted(_dedupe(inputs), key=lambda item: (item.price, item.kind.value))
    tolerance = price_tolerance_pct / 100
    used = [False] * len(ordered)
    groups: List[List[LevelInput]] = []

    for i, anchor in enumerate(ordered):
        if used[i]:
            continue

        group = [anchor]
        used[i] = True

        for j in range(i + 1, len(ordered)):
            if used[j]:
                continue
            if abs(ordered[j].price - anchor.price) / anchor.price <= tolerance:
                group.append(ordered[j])
                used[j] = True

        groups.append(group)

    return groups


def calculate_zone_reliability(group: Sequence[LevelInput]) -> float:
    avg_strength = sum(item.strength for item in group) / len(group)
    diversity_bonus = min(1.0, len({item.kind for item in group}) / MAX_FACTOR_KINDS)
    return _clip01(avg_strength * 0.7 + diversity_bonus * 0.3)


def calculate_breakout_probability(price: float, current_price: float) -> float:
    """Closer to the zone means a higher chance price runs through it."""
    distance = abs(current_price - price) / price
    return _clip01(max(0.1, 1 - distance * 10))


def calculate_historical_significance(series: CandleSeries, price: float) -> float:
    tolerance = tolerance_for(price, HISTORICAL_TOLERANCE_PCT)
    touched = (np.abs(series.high - price) <= tolerance) | (np.abs(series.low - price) <= tolerance)
    return min(int(np.count_nonzero(touched)) / HISTORICAL_TOUCH_CAP, 1.0)


def determine_zone_type(price: float, current_price: float) -> ZoneType:
    if price < current_price:
        return ZoneType.SUPPORT
    if price > current_price:
        return ZoneType.RESISTANCE
    return ZoneType.REVERSAL


def is_dynamic_support(series: CandleSeries, price: float) -> bool:
    """At least two recent bullish candles bounced off the price."""
    recent = series.tail(DYNAMIC_SUPPORT_WINDOW)
    tolerance = tolerance_for(price, DYNAMIC_SUPPORT_TOLERANCE_PCT)
    bounced = (np.abs(recent.low - price) <= tolerance) & (recent.close > recent.open)
    return int(np.count_nonzero(bounced)) >= 2


def create_confluence_zone(
    group: Sequence[LevelInput],
    series: CandleSeries,
    volume_profile: Optional[VolumeProfile] = None,
) -> ConfluenceZone:
    current_price = series.last_close
    price_level = sum(item.price for item in group) / len(group)
    avg_strength = sum(item.strength for item in group) / len(group)

    factors = [
        ConfluenceFactor(
            kind=item.kind,
            description=f"{item.kind.value} at {item.price:.4f}",
            weight=item.strength,
        )
        for item in group
    ]

    volume_nodes = []
    if volume_profile is not None:
        volume_nodes = nodes_near_price(volume_profile, price_level, VOLUME_NODE_TOLERANCE_PCT)

    return ConfluenceZone(
        price_level=price_level,
        strength=_clip01(avg_strength),
        factors=factors,
        zone_type=determine_zone_type(price_level, current_price),
        reliability=calculate_zone_reliability(group),
        breakout_probability=calculate_breakout_probability(price_level, current_price),
        historical_significance=calculate_historical_significance(series, price_level),
        volume_nodes=volume_nodes,
        dynamic_support=is_dynamic_support(series, price_level),
    )


def determine_market_bias(zones: Sequence[ConfluenceZone], current_price: float) -> MarketBias:
    strong = [zone for zone in zones if zone.strength > STRONG_ZONE_THRESHOLD]
    below = sum(1 for zone in strong if zone.price_level < current_price)
    above = sum(1 for zone in strong if zone.price_level > current_price)

    if below > above * BIAS_RATIO:
        return MarketBias.BULLISH
    if above > below * BIAS_RATIO:
        return MarketBias.BEARISH
    return MarketBias.NEUTRAL


def calculate_overall_confidence(zones: Sequence[ConfluenceZone]) -> float:
    if not zones:
        return 0.0

    avg_strength = sum(zone.strength for zone in zones) / len(zones)
    strong_ratio = sum(1 for zone in zones if zone.strength > STRONG_ZONE_THRESHOLD) / len(zones)
    return _clip01(avg_strength * 0.7 + strong_ratio * 0.3)


def analyze_confluence(
    series: CandleSeries,
    inputs: Sequence[LevelInput],
    settings: ConfluenceSettings,
    volume_profile: Optional[VolumeProfile] = None,
) -> ConfluenceAnalysis:
    """Build and rank confluence zones over an already validated window."""
    zones = [
        create_confluence_zone(group, series, volume_profile)
        for group in group_levels_by_proximity(inputs, settings.price_tolerance_pct)
        if len(group) >= settings.min_factors
    ]

    zones.sort(key=lambda zone: (-zone.strength, zone.price_level))
    strong_zones = [zone for zone in zones if zone.strength > STRONG_ZONE_THRESHOLD]

    analysis = ConfluenceAnalysis(
        zones=zones,
        total_zones=len(zones),
        strong_zones=strong_zones,
        critical_levels=[zone.price_level for zone in strong_zones],
        market_bias=determine_market_bias(zones, series.last_close),
        confidence_score=calculate_overall_confidence(zones),
    )

    logger.info(
        f"[Confluence] inputs={len(inputs)}, zones={analysis.total_zones}, "
        f"strong={len(strong_zones)}, bias={analysis.market_bias.value}, "
        f"confidence={analysis.confidence_score:.2f}"
    )
    return analysis


def build_confluence_analysis(
    candles: Sequence[Candle],
    inputs: Sequence[LevelInput],
    settings: Optional[ConfluenceSettings] = None,
    volume_profile: Optional[VolumeProfile] = None,
) -> ConfluenceAnalysis:
    """
    Group level inputs into confluence zones and derive market bias.

    Raises:
        InsufficientDataError: no candles
        InvalidInputError: invalid candle values
    """
    series = prepare_series(candles, 1, "confluence analysis")
    return analyze_confluence(series, inputs, settings or ConfluenceSettings(), volume_profile)


class BreakoutDirection(Enum):
    UPPER = "upper"
    LOWER = "lower"


@dataclass(frozen=True)
class PivotChannelBreakout:
    direction: BreakoutDirection
    price: float  # Close of the breakout candle
    timestamp: int
    strength: float  # Channel strength
    target: float  # Broken boundary projected by one channel width
    probability_score: float  # 0..1
    volume_confirmation: float  # Candle volume / recent average volume


def score_breakout(penetration: float, volume_ratio: float, channel_strength: float) -> float:
    """0.5 base, up to +0.3 for depth, +0.2/+0.3 for volume, +0.2 x channel strength."""
    score = 0.5 + min(penetration * 10, BREAKOUT_MAX_PENETRATION_BONUS)

    if volume_ratio > BREAKOUT_HIGH_VOLUME_RATIO:
        score += 0.3
    elif volume_ratio > BREAKOUT_ELEVATED_VOLUME_RATIO:
        score += 0.2

    score += channel_strength * 0.2
    return min(score, 1.0)


def analyze_breakout(
    series: CandleSeries,
    index: int,
    channel: PivotChannel,
    direction: BreakoutDirection,
) -> PivotChannelBreakout:
    """Score the close at `index` breaking one side of a channel."""
    boundary = channel.upper_channel if direction == BreakoutDirection.UPPER else channel.lower_channel
    close = float(series.close[index])
    penetration = abs(close - boundary) / boundary

    average_volume = float(np.mean(series.tail(BREAKOUT_VOLUME_WINDOW).volume))
    volume_ratio = float(series.volume[index]) / average_volume if average_volume > 0 else 0.0

    width = channel.upper_channel - channel.lower_channel
    target = boundary + width if direction == BreakoutDirection.UPPER else boundary - width

    return PivotChannelBreakout(
        direction=direction,
        price=close,
        timestamp=int(series.timestamps[index]),
        strength=channel.strength,
        target=target,
        probability_score=score_breakout(penetration, volume_ratio, channel.strength),
        volume_confirmation=volume_ratio,
    )


def find_channel_breakouts(
    series: CandleSeries,
    channels: Sequence[PivotChannel],
    confirmation_candles: int,
) -> List[PivotChannelBreakout]:
    """Breakouts of each channel by the last `confirmation_candles` closes, best first."""
    start = max(0, len(series) - confirmation_candles)
    breakouts: List[PivotChannelBreakout] = []

    for channel in channels:
        if channel.lower_channel <= 0 or channel.upper_channel < channel.lower_channel:
            raise InvalidInputError(
                f"pivot channel bounds must satisfy 0 < lower <= upper, "
                f"got lower={channel.lower_channel} upper={channel.upper_channel}"
            )

        for i in range(start, len(series)):
            close = float(series.close[i])
            if close > channel.upper_channel:
                breakout = analyze_breakout(series, i, channel, BreakoutDirection.UPPER)
            elif close < channel.lower_channel:
                breakout = analyze_breakout(series, i, channel, BreakoutDirection.LOWER)
            else:
                continue

            if breakout.probability_score > MIN_BREAKOUT_PROBABILITY:
                breakouts.append(breakout)

    breakouts.sort(key=lambda b: (-b.probability_score, b.timestamp))
    return breakouts


def detect_pivot_channel_breakouts(
    candles: Sequence[Candle],
    channels: Sequence[PivotChannel],
    confirmation_candles: int = 3,
) -> List[PivotChannelBreakout]:
    """
    Detect recent closes outside pivot channels and score their follow-through odds.

    Args:
        candles: Candle window, oldest first
        channels: Pivot channels to test
        confirmation_candles: How many of the latest candles are checked

    Returns:
        Breakouts scoring above 0.6, highest probability first

    Raises:
        InsufficientDataError: no candles
        InvalidInputError: invalid candle values, channel bounds or confirmation_candles
    """
    if confirmation_candles < 1:
        raise InvalidInputError(f"confirmation_candles must be >= 1, got {confirmation_candles}")

    series = prepare_series(candles, 1, "breakout detection")
    breakouts = find_channel_breakouts(series, channels, confirmation_candles)

    logger.info(f"[Confluence] channels={len(channels)}, breakouts={len(breakouts)}")
    return breakouts
