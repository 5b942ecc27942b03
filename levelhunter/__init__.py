"""Support/resistance, confluence and liquidity-grab analysis for OHLCV candles."""

from .errors import InsufficientDataError, InvalidInputError, LevelAnalysisError
from .config import ConfluenceSettings, DetectorConfig, StrengthWeights
from .core import Candle, EnhancedLevel, LevelType, LiquidityGrab, SupportResistanceDetector

__all__ = [
    "LevelAnalysisError",
    "InsufficientDataError",
    "InvalidInputError",
    "DetectorConfig",
    "StrengthWeights",
    "ConfluenceSettings",
    "Candle",
    "EnhancedLevel",
    "LevelType",
    "LiquidityGrab",
    "SupportResistanceDetector",
]
