"""
Volume Profile calculation module.

Calculates:
- Volume at each price level (histogram)
- POC (Point of Control): price level with highest volume
- VAH (Value Area High): upper bound of 70% volume area
- VAL (Value Area Low): lower bound of 70% volume area
- High-volume nodes on the adaptive price grid, used as a level source
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np

from levelhunter.config import DetectorConfig
from .candles import CandleSeries
from .models import Level, LevelType
from .structure import tolerance_for

MIN_LIQUIDITY_SIGNIFICANCE = 0.5


@dataclass(frozen=True)
class VolumeNode:
    """Volume traded around one price."""
    price: float
    volume: float
    percent: float = 0.0  # Volume relative to the largest node (0-100)
    in_value_area: bool = False


@dataclass(frozen=True)
class VolumeProfile:
    """Volume-by-price distribution with POC and value area."""
    poc: float
    value_area_high: float
    value_area_low: float
    volume_by_price: List[VolumeNode] = field(default_factory=list)
    total_volume: float = 0.0
    value_area_volume: float = 0.0


@dataclass(frozen=True)
class GridNode:
    """Volume accumulated on one step of the adaptive price grid."""
    price: float
    volume: float
    occurrences: int
    liquidity_significance: float


def calculate_volume_profile(
    series: CandleSeries,
    num_bins: int = 50,
    value_area_percent: float = 0.70,
) -> VolumeProfile:
    """
    Calculate volume profile from a candle window.

    Args:
        series: Validated candle window
        num_bins: Number of price levels for histogram
        value_area_percent: Percentage of volume for value area (default 70%)

    Returns:
        VolumeProfile with POC, VAH, VAL and per-bin volume nodes
    """
    highs, lows, closes, volumes = series.high, series.low, series.close, series.volume

    if len(highs) == 0:
        return VolumeProfile(poc=0.0, value_area_high=0.0, value_area_low=0.0)

    # Find price range
    price_min = float(np.min(lows))
    price_max = float(np.max(highs))

    if price_max == price_min:
        # All prices are the same
        total_vol = float(np.sum(volumes))
        return VolumeProfile(
            poc=price_min,
            value_area_high=price_min,
            value_area_low=price_min,
            volume_by_price=[VolumeNode(price=price_min, volume=total_vol, percent=100.0, in_value_area=True)],
            total_volume=total_vol,
            value_area_volume=total_vol,
        )

    # Create price bins
    bin_size = (price_max - price_min) / num_bins
    bin_edges = np.linspace(price_min, price_max, num_bins + 1)
    bin_centers = (bin_edges[:-1] + bin_edges[1:]) / 2

    volume_at_price = np.zeros(num_bins)

    # For each candle, distribute its volume across the price range it covers
    for i in range(len(highs)):
        candle_volume = volumes[i]
        if candle_volume <= 0:
            continue

        low_bin = int((lows[i] - price_min) / bin_size)
        high_bin = int((highs[i] - price_min) / bin_size)

        # Clamp to valid range
        low_bin = max(0, min(num_bins - 1, low_bin))
        high_bin = max(0, min(num_bins - 1, high_bin))

        vol_per_bin = candle_volume / (high_bin - low_bin + 1)
        volume_at_price[low_bin:high_bin + 1] += vol_per_bin

    total_volume = float(np.sum(volume_at_price))

    if total_volume == 0:
        return VolumeProfile(
            poc=float(np.mean(closes)),
            value_area_high=price_max,
            value_area_low=price_min,
        )

    poc_bin = int(np.argmax(volume_at_price))

    # Start from POC and expand outward until the value area is covered
    target_volume = total_volume * value_area_percent
    included_bins = {poc_bin}
    current_volume = float(volume_at_price[poc_bin])

    lower_idx = poc_bin - 1
    upper_idx = poc_bin + 1

    while current_volume < target_volume and (lower_idx >= 0 or upper_idx < num_bins):
        lower_vol = volume_at_price[lower_idx] if lower_idx >= 0 else 0
        upper_vol = volume_at_price[upper_idx] if upper_idx < num_bins else 0

        # Add the bin with higher volume
        if lower_vol >= upper_vol and lower_idx >= 0:
            included_bins.add(lower_idx)
            current_volume += lower_vol
            lower_idx -= 1
        elif upper_idx < num_bins:
            included_bins.add(upper_idx)
            current_volume += upper_vol
            upper_idx += 1
        else:
            break

    max_volume = float(np.max(volume_at_price))
    nodes = [
        VolumeNode(
            price=float(bin_centers[i]),
            volume=float(volume_at_price[i]),
            percent=float(volume_at_price[i]) / max_volume * 100,
            in_value_area=i in included_bins,
        )
        for i in range(num_bins)
        if volume_at_price[i] > 0
    ]

    return VolumeProfile(
        poc=float(bin_centers[poc_bin]),
        value_area_high=float(bin_centers[max(included_bins)]),
        value_area_low=float(bin_centers[min(included_bins)]),
        volume_by_price=nodes,
        total_volume=total_volume,
        value_area_volume=float(current_volume),
    )


def build_grid_nodes(series: CandleSeries, price_step: float) -> List[GridNode]:
    """
    Spread each candle's volume over its [low, high] range on the adaptive grid.

    Grid indices are measured from the window's lowest low, so a price maps
    to the same node no matter which candle contributed it.
    """
    if price_step <= 0 or len(series) == 0:
        return []

    origin = float(np.min(series.low))
    volume_by_idx: Dict[int, float] = {}
    occurrences_by_idx: Dict[int, int] = {}

    for i in range(len(series)):
        candle_low = float(series.low[i])
        price_range = float(series.high[i]) - candle_low
        steps = max(1, int(round(price_range / price_step)))
        volume_per_step = float(series.volume[i]) / steps

        for k in range(steps):
            idx = int(round((candle_low + k * price_step - origin) / price_step))
            volume_by_idx[idx] = volume_by_idx.get(idx, 0.0) + volume_per_step
            occurrences_by_idx[idx] = occurrences_by_idx.get(idx, 0) + 1

    total_volume = sum(volume_by_idx.values())

    nodes = []
    for idx in sorted(volume_by_idx):
        volume = volume_by_idx[idx]
        occurrences = occurrences_by_idx[idx]
        significance = (volume / total_volume) * math.log(occurrences + 1) if total_volume > 0 else 0.0
        nodes.append(GridNode(
            price=origin + idx * price_step,
            volume=volume,
            occurrences=occurrences,
            liquidity_significance=significance,
        ))
    return nodes


def _touch_profile(series: CandleSeries, price: float, tolerance_pct: float) -> Tuple[int, LevelType, int]:
    """Touches on both sides of a price: (total touches, dominant side, last touch)."""
    tolerance = tolerance_for(price, tolerance_pct)
    support_mask = np.abs(series.low - price) <= tolerance
    resistance_mask = np.abs(series.high - price) <= tolerance

    support_touches = int(np.count_nonzero(support_mask))
    resistance_touches = int(np.count_nonzero(resistance_mask))

    touched = support_mask | resistance_mask
    last_touch = int(np.max(series.timestamps[touched])) if np.any(touched) else 0
    level_type = LevelType.SUPPORT if support_touches > resistance_touches else LevelType.RESISTANCE

    return support_touches + resistance_touches, level_type, last_touch


def find_volume_nodes(
    series: CandleSeries,
    config: DetectorConfig,
    price_step: float,
) -> List[Tuple[Level, float]]:
    """
    Detect high-volume price nodes that act as levels.

    A node qualifies when its volume exceeds mean + 1 stddev of all node
    volumes and its liquidity significance exceeds 0.5.

    Returns:
        List of (candidate Level, liquidity_significance) sorted by price
    """
    nodes = build_grid_nodes(series, price_step)
    if not nodes:
        return []

    node_volumes = np.array([node.volume for node in nodes])
    threshold = float(np.mean(node_volumes) + np.std(node_volumes))

    candidates: List[Tuple[Level, float]] = []
    for node in nodes:
        if node.volume <= threshold or node.liquidity_significance <= MIN_LIQUIDITY_SIGNIFICANCE:
            continue

        touches, level_type, last_touch = _touch_profile(series, node.price, config.touch_tolerance_pct)
        if touches < 1:
            continue

        candidates.append((
            Level(price=node.price, level_type=level_type, touches=touches, last_touch=last_touch),
            node.liquidity_significance,
        ))
    return candidates


def nodes_near_price(profile: VolumeProfile, price: float, tolerance_pct: float = 1.0) -> List[VolumeNode]:
    """Volume-profile nodes within `tolerance_pct` percent of a price."""
    tolerance = tolerance_for(price, tolerance_pct)
    return [node for node in profile.volume_by_price if abs(node.price - price) <= tolerance]
