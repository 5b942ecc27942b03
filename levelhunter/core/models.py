"""Level and liquidity-grab value objects shared by all detectors."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class LevelType(Enum):
    SUPPORT = "support"
    RESISTANCE = "resistance"


@dataclass(frozen=True)
class Level:
    """Candidate level produced by a level source."""
    price: float
    level_type: LevelType
    touches: int
    last_touch: int  # Unix seconds of the most recent touch


@dataclass(frozen=True)
class EnhancedLevel(Level):
    """Level with its strength breakdown. Final output unit of level detection."""
    strength_score: float = 0.0
    liquidity_grab: bool = False
    reversal_potential: float = 0.0
    volume_confirmation: float = 0.0
    time_strength: float = 0.0
    price_action_strength: float = 0.0


@dataclass(frozen=True)
class LiquidityGrab:
    """
    Stop-hunt-and-reverse event at a known level.

    reversal_confirmed is None while the confirmation window still
    extends past the available candles.
    """
    timestamp: int
    price: float  # Price of the level that was swept
    grab_type: LevelType
    strength: float
    reversal_confirmed: Optional[bool]
    volume_spike: float
    volume_confirmed: bool = False  # volume_spike >= liquidity_grab_threshold
    index: int = -1  # Bar index of the sweep candle within the analyzed window
