"""Core level detection: level sources, scoring, liquidity grabs and confluence."""

from .candles import Candle, CandleSeries, prepare_series, validate_candle, validate_candles
from .models import EnhancedLevel, Level, LevelType, LiquidityGrab
from .structure import (
    MarketPhase,
    MarketStructure,
    Trend,
    VolumeClass,
    analyze_market_structure,
    calculate_volatility,
    find_pivot_levels,
)
from .clusters import find_horizontal_clusters
from .volume_profile import VolumeNode, VolumeProfile, calculate_volume_profile, find_volume_nodes
from .strength import StrengthBreakdown, calculate_strength_score, score_level
from .merger import merge_levels
from .liquidity import (
    LiquidityGrabStream,
    ReversalConfirmationTracker,
    StreamUpdate,
    detect_liquidity_grabs,
)
from .sources import (
    FibonacciLevel,
    FibonacciLevels,
    FibonacciType,
    LevelInput,
    LevelKind,
    PivotChannel,
    calculate_fibonacci_levels,
    collect_level_inputs,
)
from .confluence import (
    BreakoutDirection,
    ConfluenceAnalysis,
    ConfluenceFactor,
    ConfluenceZone,
    MarketBias,
    PivotChannelBreakout,
    ZoneType,
    build_confluence_analysis,
    detect_pivot_channel_breakouts,
)
from .adjuster import LevelAdjustment, adjust_levels_dynamically
from .detector import LevelAnalysis, SupportResistanceDetector

__all__ = [
    "Candle",
    "CandleSeries",
    "prepare_series",
    "validate_candle",
    "validate_candles",
    "EnhancedLevel",
    "Level",
    "LevelType",
    "LiquidityGrab",
    "MarketPhase",
    "MarketStructure",
    "Trend",
    "VolumeClass",
    "analyze_market_structure",
    "calculate_volatility",
    "find_pivot_levels",
    "find_horizontal_clusters",
    "VolumeNode",
    "VolumeProfile",
    "calculate_volume_profile",
    "find_volume_nodes",
    "StrengthBreakdown",
    "calculate_strength_score",
    "score_level",
    "merge_levels",
    "LiquidityGrabStream",
    "ReversalConfirmationTracker",
    "StreamUpdate",
    "detect_liquidity_grabs",
    "FibonacciLevel",
    "FibonacciLevels",
    "FibonacciType",
    "LevelInput",
    "LevelKind",
    "PivotChannel",
    "calculate_fibonacci_levels",
    "collect_level_inputs",
    "ConfluenceAnalysis",
    "ConfluenceFactor",
    "ConfluenceZone",
    "MarketBias",
    "ZoneType",
    "build_confluence_analysis",
    "BreakoutDirection",
    "PivotChannelBreakout",
    "detect_pivot_channel_breakouts",
    "LevelAdjustment",
    "adjust_levels_dynamically",
    "LevelAnalysis",
    "SupportResistanceDetector",
]
