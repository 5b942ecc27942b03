"""
Adaptive horizontal price clusters.

Every candle high is a resistance touch and every candle low a support
touch. Touch prices are sorted and swept once: a touch joins the open
interval while it lies within one adaptive step of the interval's first
price, otherwise it opens a new interval. No rounded price keys.
"""

from dataclasses import dataclass
from typing import List

import numpy as np

from levelhunter.config import DetectorConfig
from .candles import CandleSeries
from .models import Level, LevelType


@dataclass
class PriceCluster:
    """A run of touch prices no wider than one price step."""
    prices: List[float]
    support_touches: int = 0
    resistance_touches: int = 0
    last_touch: int = 0

    @property
    def touches(self) -> int:
        return len(self.prices)

    @property
    def price(self) -> float:
        return float(np.mean(self.prices))

    @property
    def level_type(self) -> LevelType:
        if self.support_touches > self.resistance_touches:
            return LevelType.SUPPORT
        return LevelType.RESISTANCE


def build_price_clusters(series: CandleSeries, price_step: float) -> List[PriceCluster]:
    """Group all highs and lows into intervals at most `price_step` wide."""
    n = len(series)
    if n == 0:
        return []

    prices = np.concatenate([series.high, series.low])
    is_support = np.concatenate([np.zeros(n, dtype=bool), np.ones(n, dtype=bool)])
    timestamps = np.concatenate([series.timestamps, series.timestamps])

    # Stable sort keeps equal prices in input order, so output is deterministic
    order = np.argsort(prices, kind="stable")

    clusters: List[PriceCluster] = []
    current = None
    anchor = 0.0

    for idx in order:
        price = float(prices[idx])
        if current is None or price - anchor > price_step:
            current = PriceCluster(prices=[])
            clusters.append(current)
            anchor = price

        current.prices.append(price)
        if is_support[idx]:
            current.support_touches += 1
        else:
            current.resistance_touches += 1
        current.last_touch = max(current.last_touch, int(timestamps[idx]))

    return clusters


def find_horizontal_clusters(
    series: CandleSeries,
    config: DetectorConfig,
    price_step: float,
) -> List[Level]:
    """
    Detect horizontal levels where highs/lows repeatedly gather.

    Args:
        series: Validated candle window
        config: Detector config (min_touches)
        price_step: Adaptive grid step (see structure.adaptive_price_step)

    Returns:
        Candidate Levels sorted by price
    """
    if price_step <= 0:
        return []

    levels: List[Level] = []
    for cluster in build_price_clusters(series, price_step):
        if cluster.touches < config.min_touches:
            continue
        levels.append(Level(
            price=cluster.price,
            level_type=cluster.level_type,
            touches=cluster.touches,
            last_touch=cluster.last_touch,
        ))
    return levels
