"""
Level sources fed into confluence grouping.

Every source (detected S/R levels, Fibonacci levels, pivot channels,
volume profile) is projected onto the same LevelInput record
{price, kind, strength}, so grouping never needs to know where a level
came from.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from levelhunter.errors import InvalidInputError
from .models import EnhancedLevel, LevelType
from .volume_profile import VolumeProfile

RETRACEMENT_RATIOS = (0.236, 0.382, 0.5, 0.618, 0.786)
EXTENSION_RATIOS = (1.272, 1.618, 2.618)
GOLDEN_RATIOS = (0.618, 1.618)

PIVOT_CENTER_WEIGHT = 0.8
POC_STRENGTH = 0.9
VALUE_AREA_STRENGTH = 0.7


class LevelKind(Enum):
    SUPPORT = "support"
    RESISTANCE = "resistance"
    FIB_RETRACEMENT = "fib_retracement"
    FIB_EXTENSION = "fib_extension"
    PIVOT_RESISTANCE = "pivot_resistance"
    PIVOT_SUPPORT = "pivot_support"
    PIVOT_CENTER = "pivot_center"
    VOLUME_POC = "volume_poc"
    VOLUME_VAH = "volume_vah"
    VOLUME_VAL = "volume_val"


@dataclass(frozen=True)
class LevelInput:
    """Source-agnostic level: the only shape confluence grouping sees."""
    price: float
    kind: LevelKind
    strength: float
    label: str = ""

    def __post_init__(self):
        if not math.isfinite(self.price) or self.price <= 0:
            raise InvalidInputError(f"{self.kind.value} level price must be positive, got {self.price}")
        if not math.isfinite(self.strength):
            raise InvalidInputError(f"{self.kind.value} level strength is not finite: {self.strength}")


class FibonacciType(Enum):
    RETRACEMENT = "retracement"
    EXTENSION = "extension"


@dataclass(frozen=True)
class FibonacciLevel:
    ratio: float
    price: float
    fib_type: FibonacciType
    strength: float


@dataclass(frozen=True)
class FibonacciLevels:
    retracements: List[FibonacciLevel] = field(default_factory=list)
    extensions: List[FibonacciLevel] = field(default_factory=list)

    def all_levels(self) -> List[FibonacciLevel]:
        return list(self.retracements) + list(self.extensions)


@dataclass(frozen=True)
class PivotChannel:
    """Channel boundaries from a pivot-channel detector."""
    upper_channel: float
    lower_channel: float
    center_line: float
    strength: float


def fibonacci_ratio_strength(ratio: float) -> float:
    """Golden ratios weigh most, 0.5/0.382 next, everything else least."""
    if ratio in GOLDEN_RATIOS:
        return 0.9
    if ratio in (0.5, 0.382):
        return 0.8
    return 0.6


def calculate_fibonacci_levels(swing_high: float, swing_low: float) -> FibonacciLevels:
    """
    Retracements measured down from the swing high, extensions projected above it.

    Raises:
        InvalidInputError: swing_high not above swing_low
    """
    if not swing_high > swing_low:
        raise InvalidInputError(f"swing_high {swing_high} must be above swing_low {swing_low}")

    swing_range = swing_high - swing_low
    retracements = [
        FibonacciLevel(
            ratio=ratio,
            price=swing_high - swing_range * ratio,
            fib_type=FibonacciType.RETRACEMENT,
            strength=fibonacci_ratio_strength(ratio),
        )
        for ratio in RETRACEMENT_RATIOS
    ]
    extensions = [
        FibonacciLevel(
            ratio=ratio,
            price=swing_low + swing_range * ratio,
            fib_type=FibonacciType.EXTENSION,
            strength=fibonacci_ratio_strength(ratio),
        )
        for ratio in EXTENSION_RATIOS
    ]
    return FibonacciLevels(retracements=retracements, extensions=extensions)


def from_enhanced_levels(levels: Iterable[EnhancedLevel]) -> List[LevelInput]:
    return [
        LevelInput(
            price=level.price,
            kind=LevelKind.SUPPORT if level.level_type == LevelType.SUPPORT else LevelKind.RESISTANCE,
            strength=level.strength_score,
        )
        for level in levels
    ]


def from_fibonacci(fibonacci: FibonacciLevels) -> List[LevelInput]:
    inputs = []
    for fib in fibonacci.all_levels():
        kind = LevelKind.FIB_RETRACEMENT if fib.fib_type == FibonacciType.RETRACEMENT else LevelKind.FIB_EXTENSION
        inputs.append(LevelInput(
            price=fib.price,
            kind=kind,
            strength=fib.strength,
            label=f"{fib.fib_type.value} {fib.ratio}",
        ))
    return inputs


def from_pivot_channels(channels: Iterable[PivotChannel]) -> List[LevelInput]:
    inputs = []
    for channel in channels:
        inputs.extend([
            LevelInput(price=channel.upper_channel, kind=LevelKind.PIVOT_RESISTANCE, strength=channel.strength),
            LevelInput(price=channel.lower_channel, kind=LevelKind.PIVOT_SUPPORT, strength=channel.strength),
            LevelInput(
                price=channel.center_line,
                kind=LevelKind.PIVOT_CENTER,
                strength=channel.strength * PIVOT_CENTER_WEIGHT,
            ),
        ])
    return inputs


def from_volume_profile(profile: VolumeProfile) -> List[LevelInput]:
    return [
        LevelInput(price=profile.poc, kind=LevelKind.VOLUME_POC, strength=POC_STRENGTH),
        LevelInput(price=profile.value_area_high, kind=LevelKind.VOLUME_VAH, strength=VALUE_AREA_STRENGTH),
        LevelInput(price=profile.value_area_low, kind=LevelKind.VOLUME_VAL, strength=VALUE_AREA_STRENGTH),
    ]


def collect_level_inputs(
    levels: Sequence[EnhancedLevel] = (),
    fibonacci: Optional[FibonacciLevels] = None,
    pivot_channels: Sequence[PivotChannel] = (),
    volume_profile: Optional[VolumeProfile] = None,
) -> List[LevelInput]:
    """Project every available source onto LevelInputs."""
    inputs = from_enhanced_levels(levels)
    if fibonacci is not None:
        inputs.extend(from_fibonacci(fibonacci))
    inputs.extend(from_pivot_channels(pivot_channels))
    if volume_profile is not None:
        inputs.extend(from_volume_profile(volume_profile))
    return inputs
