"""
Support/resistance detector: runs the level sources, merges and scores
their candidates, and exposes liquidity grabs, confluence, pivot channel
breakouts and dynamic adjustment on top of the final levels.

Pipeline (detect_enhanced_levels):
1. Validate candles (>= lookback_period) and build the numpy view
2. Pivot levels, horizontal clusters, volume nodes (optionally in parallel)
3. Preliminary scoring, volume-node boost: strength * (1 + 0.3 * significance)
4. Merge similar levels
5. Rescore merged levels
6. Keep touches >= min_touches and strength >= min_strength
7. Sort by strength descending, then price
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from levelhunter.config import DetectorConfig
from .adjuster import LevelAdjustment, adjust_series_levels
from .candles import Candle, CandleSeries, prepare_series
from .clusters import find_horizontal_clusters
from .confluence import (
    ConfluenceAnalysis,
    PivotChannelBreakout,
    analyze_confluence,
    find_channel_breakouts,
)
from .liquidity import MIN_GRAB_CANDLES, find_liquidity_grabs, has_recent_liquidity_grab
from .merger import merge_levels
from .models import EnhancedLevel, Level, LiquidityGrab
from .sources import (
    FibonacciLevels,
    LevelInput,
    PivotChannel,
    collect_level_inputs,
    from_enhanced_levels,
)
from .strength import resolve_reference_time, score_level
from .structure import (
    MarketStructure,
    adaptive_price_step,
    analyze_market_structure,
    calculate_volatility,
    find_pivot_levels,
)
from .volume_profile import VolumeProfile, calculate_volume_profile, find_volume_nodes

logger = logging.getLogger(__name__)

VOLUME_NODE_BOOST = 0.3
SOURCE_WORKERS = 3


@dataclass
class LevelAnalysis:
    """Everything the detector knows about one candle window."""
    symbol: str
    timeframe: str
    last_close: float
    levels: List[EnhancedLevel]
    liquidity_grabs: List[LiquidityGrab]
    confluence: ConfluenceAnalysis
    market_structure: MarketStructure
    volume_profile: Optional[VolumeProfile] = None
    adjustments: List[LevelAdjustment] = field(default_factory=list)
    breakouts: List[PivotChannelBreakout] = field(default_factory=list)


@dataclass
class _SourceCandidates:
    pivots: List[Level]
    clusters: List[Level]
    volume_nodes: List[Tuple[Level, float]]


class SupportResistanceDetector:
    """
    Stateless apart from its immutable config: one instance can serve
    concurrent analyses of different symbols.
    """

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = (config or DetectorConfig()).validate()

    # ------------------------------------------------------------------
    # Levels
    # ------------------------------------------------------------------

    def detect_enhanced_levels(self, candles: Sequence[Candle]) -> List[EnhancedLevel]:
        """
        Detect scored support/resistance levels.

        Raises:
            InsufficientDataError: fewer than lookback_period candles
            InvalidInputError: invalid candle values
        """
        series = prepare_series(candles, self.config.lookback_period, "level detection")
        return self._detect_levels(series)

    def _detect_levels(self, series: CandleSeries) -> List[EnhancedLevel]:
        if series.price_range == 0:
            logger.info(f"[Levels] Flat price window ({len(series)} candles), no levels")
            return []

        config = self.config
        volatility = calculate_volatility(series.close)
        price_step = adaptive_price_step(series, volatility)
        reference_time = resolve_reference_time(series, config)

        sources = self._run_sources(series, price_step)

        candidates: List[EnhancedLevel] = []
        for level in sources.pivots + sources.clusters:
            candidates.append(self._score_candidate(series, level, volatility, reference_time))

        for level, significance in sources.volume_nodes:
            scored = self._score_candidate(
                series, level, volatility, reference_time, volume_confirmation=significance
            )
            boosted = scored.strength_score * (1 + VOLUME_NODE_BOOST * significance)
            candidates.append(replace(scored, strength_score=min(1.0, boosted)))

        merged = merge_levels(candidates)

        final: List[EnhancedLevel] = []
        for level in merged:
            rescored = score_level(
                Level(price=level.price, level_type=level.level_type,
                      touches=level.touches, last_touch=level.last_touch),
                series, volatility, config, reference_time,
                liquidity_grab=level.liquidity_grab,
                volume_confirmation=level.volume_confirmation,
            )
            if rescored.touches >= config.min_touches and rescored.strength_score >= config.min_strength:
                final.append(rescored)

        final.sort(key=lambda level: (-level.strength_score, level.price))

        logger.info(
            f"[Levels] candles={len(series)}, pivots={len(sources.pivots)}, "
            f"clusters={len(sources.clusters)}, volume_nodes={len(sources.volume_nodes)}, "
            f"merged={len(merged)}, final={len(final)}"
        )
        return final

    def _run_sources(self, series: CandleSeries, price_step: float) -> _SourceCandidates:
        """Run the three level sources; results always come back in the same order."""
        config = self.config

        if not config.parallel_sources:
            return _SourceCandidates(
                pivots=find_pivot_levels(series, config),
                clusters=find_horizontal_clusters(series, config, price_step),
                volume_nodes=find_volume_nodes(series, config, price_step),
            )

        with ThreadPoolExecutor(max_workers=SOURCE_WORKERS) as executor:
            pivots = executor.submit(find_pivot_levels, series, config)
            clusters = executor.submit(find_horizontal_clusters, series, config, price_step)
            volume_nodes = executor.submit(find_volume_nodes, series, config, price_step)

            return _SourceCandidates(
                pivots=pivots.result(),
                clusters=clusters.result(),
                volume_nodes=volume_nodes.result(),
            )

    def _score_candidate(
        self,
        series: CandleSeries,
        level: Level,
        volatility: float,
        reference_time: int,
        volume_confirmation: Optional[float] = None,
    ) -> EnhancedLevel:
        grabbed = has_recent_liquidity_grab(series, level.price, level.level_type, self.config)
        return score_level(
            level, series, volatility, self.config, reference_time,
            liquidity_grab=grabbed,
            volume_confirmation=volume_confirmation,
        )

    # ------------------------------------------------------------------
    # Liquidity grabs
    # ------------------------------------------------------------------

    def detect_liquidity_grabs(
        self,
        candles: Sequence[Candle],
        levels: Optional[Sequence[EnhancedLevel]] = None,
    ) -> List[LiquidityGrab]:
        """
        Detect liquidity grabs, detecting levels first when none are given.

        Raises:
            InsufficientDataError: fewer than 2 candles, or fewer than
                lookback_period when levels must be detected
            InvalidInputError: invalid candle values
        """
        if levels is None:
            series = prepare_series(candles, self.config.lookback_period, "level detection")
            levels = self._detect_levels(series)
        else:
            series = prepare_series(candles, MIN_GRAB_CANDLES, "liquidity grab scan")

        grabs = find_liquidity_grabs(series, levels, self.config)
        logger.info(f"[Grabs] candles={len(series)}, levels={len(levels)}, grabs={len(grabs)}")
        return grabs

    # ------------------------------------------------------------------
    # Confluence
    # ------------------------------------------------------------------

    def build_confluence(
        self,
        candles: Sequence[Candle],
        levels: Optional[Sequence[EnhancedLevel]] = None,
        fibonacci: Optional[FibonacciLevels] = None,
        pivot_channels: Sequence[PivotChannel] = (),
        volume_profile: Optional[VolumeProfile] = None,
    ) -> ConfluenceAnalysis:
        """
        Group detected and external levels into confluence zones.

        Raises:
            InsufficientDataError: no candles, or fewer than lookback_period
                when levels must be detected
            InvalidInputError: invalid candle values or level prices
        """
        if levels is None:
            series = prepare_series(candles, self.config.lookback_period, "level detection")
            levels = self._detect_levels(series)
        else:
            series = prepare_series(candles, 1, "confluence analysis")

        inputs = collect_level_inputs(levels, fibonacci, pivot_channels, volume_profile)
        return analyze_confluence(series, inputs, self.config.confluence, volume_profile)

    # ------------------------------------------------------------------
    # Pivot channel breakouts
    # ------------------------------------------------------------------

    def detect_breakouts(
        self,
        candles: Sequence[Candle],
        pivot_channels: Sequence[PivotChannel],
    ) -> List[PivotChannelBreakout]:
        """
        Score recent closes outside the given pivot channels.

        Raises:
            InsufficientDataError: no candles
            InvalidInputError: invalid candle values or channel bounds
        """
        series = prepare_series(candles, 1, "breakout detection")
        breakouts = find_channel_breakouts(
            series, pivot_channels, self.config.breakout_confirmation_candles
        )
        logger.info(f"[Confluence] channels={len(pivot_channels)}, breakouts={len(breakouts)}")
        return breakouts

    # ------------------------------------------------------------------
    # Dynamic adjustment
    # ------------------------------------------------------------------

    def adjust_levels(
        self,
        levels: Sequence[Union[EnhancedLevel, LevelInput]],
        candles: Sequence[Candle],
    ) -> List[LevelAdjustment]:
        """
        Adjust levels from recent price action and volume.

        Raises:
            InsufficientDataError: no candles
            InvalidInputError: invalid candle values
        """
        series = prepare_series(candles, 1, "level adjustment")
        return adjust_series_levels(series, _as_inputs(levels))

    # ------------------------------------------------------------------
    # Full analysis
    # ------------------------------------------------------------------

    def analyze(
        self,
        candles: Sequence[Candle],
        fibonacci: Optional[FibonacciLevels] = None,
        pivot_channels: Sequence[PivotChannel] = (),
        volume_profile: Optional[VolumeProfile] = None,
        adjust: bool = False,
    ) -> LevelAnalysis:
        """
        Run levels, liquidity grabs, confluence and channel breakouts over one candle window.

        The volume profile is computed from the candles when not supplied.

        Raises:
            InsufficientDataError: fewer than lookback_period candles
            InvalidInputError: invalid candle values
        """
        series = prepare_series(candles, self.config.lookback_period, "level analysis")

        levels = self._detect_levels(series)
        grabs = find_liquidity_grabs(series, levels, self.config)

        if volume_profile is None:
            volume_profile = calculate_volume_profile(series)

        inputs = collect_level_inputs(levels, fibonacci, pivot_channels, volume_profile)
        confluence = analyze_confluence(series, inputs, self.config.confluence, volume_profile)

        adjustments: List[LevelAdjustment] = []
        if adjust:
            adjustments = adjust_series_levels(series, inputs)

        breakouts = find_channel_breakouts(
            series, pivot_channels, self.config.breakout_confirmation_candles
        )

        analysis = LevelAnalysis(
            symbol=candles[0].symbol,
            timeframe=candles[0].timeframe,
            last_close=series.last_close,
            levels=levels,
            liquidity_grabs=grabs,
            confluence=confluence,
            market_structure=analyze_market_structure(series),
            volume_profile=volume_profile,
            adjustments=adjustments,
            breakouts=breakouts,
        )

        logger.info(
            f"[Levels] {analysis.symbol} {analysis.timeframe}: levels={len(levels)}, "
            f"grabs={len(grabs)}, zones={confluence.total_zones}, bias={confluence.market_bias.value}"
        )
        return analysis

    def analyze_timeframes(
        self,
        candles_by_timeframe: Mapping[str, Sequence[Candle]],
        fibonacci: Optional[FibonacciLevels] = None,
        pivot_channels: Sequence[PivotChannel] = (),
        adjust: bool = False,
    ) -> Dict[str, LevelAnalysis]:
        """
        Run analyze() on each timeframe's candles.

        Every timeframe gets its own volume profile; Fibonacci levels and
        pivot channels are shared. Results keep the input's timeframe order.

        Raises:
            InsufficientDataError: any timeframe has fewer than lookback_period candles
            InvalidInputError: invalid candle values
        """
        analyses: Dict[str, LevelAnalysis] = {}
        for timeframe, candles in candles_by_timeframe.items():
            analyses[timeframe] = self.analyze(
                candles, fibonacci=fibonacci, pivot_channels=pivot_channels, adjust=adjust
            )

        logger.info(f"[Levels] Multi-timeframe analysis: {', '.join(analyses)}")
        return analyses


def _as_inputs(levels: Sequence[Union[EnhancedLevel, LevelInput]]) -> List[LevelInput]:
    inputs: List[LevelInput] = []
    for level in levels:
        if isinstance(level, LevelInput):
            inputs.append(level)
        else:
            inputs.extend(from_enhanced_levels([level]))
    return inputs
