"""Pydantic schemas for analysis output, plus dataclass -> schema converters."""

from typing import List, Optional

from pydantic import BaseModel

from levelhunter.core.adjuster import LevelAdjustment
from levelhunter.core.confluence import ConfluenceAnalysis, ConfluenceZone, PivotChannelBreakout
from levelhunter.core.detector import LevelAnalysis
from levelhunter.core.models import EnhancedLevel, LiquidityGrab
from levelhunter.core.structure import MarketStructure
from levelhunter.core.volume_profile import VolumeNode, VolumeProfile


class LevelSchema(BaseModel):
    """Scored support/resistance level."""
    price: float
    level_type: str  # "support" or "resistance"
    touches: int
    last_touch: int  # Unix seconds
    strength_score: float
    liquidity_grab: bool
    reversal_potential: float
    volume_confirmation: float
    time_strength: float
    price_action_strength: float


class LiquidityGrabSchema(BaseModel):
    """Liquidity grab event."""
    timestamp: int
    price: float
    grab_type: str
    strength: float
    reversal_confirmed: Optional[bool] = None  # None = still pending
    volume_spike: float
    volume_confirmed: bool
    index: int


class VolumeNodeSchema(BaseModel):
    price: float
    volume: float
    percent: float
    in_value_area: bool


class VolumeProfileSchema(BaseModel):
    poc: float
    value_area_high: float
    value_area_low: float
    total_volume: float
    nodes: List[VolumeNodeSchema] = []


class ConfluenceFactorSchema(BaseModel):
    kind: str
    description: str
    weight: float


class ConfluenceZoneSchema(BaseModel):
    """Price band where several level sources agree."""
    price_level: float
    strength: float
    zone_type: str  # "support", "resistance" or "reversal"
    reliability: float
    breakout_probability: float
    historical_significance: float
    dynamic_support: bool
    factors: List[ConfluenceFactorSchema] = []
    volume_nodes: List[VolumeNodeSchema] = []


class ConfluenceAnalysisSchema(BaseModel):
    zones: List[ConfluenceZoneSchema]
    total_zones: int
    strong_zones: int
    critical_levels: List[float]
    market_bias: str  # "bullish", "bearish" or "neutral"
    confidence_score: float


class MarketStructureSchema(BaseModel):
    trend: str
    strength: float
    phase: str
    volatility: float
    volume: str


class LevelAdjustmentSchema(BaseModel):
    original_level: float
    adjusted_level: float
    adjustment_factor: float
    reason: str
    confidence: float
    kind: str


class PivotChannelBreakoutSchema(BaseModel):
    """Close outside a pivot channel."""
    direction: str  # "upper" or "lower"
    price: float
    timestamp: int
    strength: float
    target: float
    probability_score: float
    volume_confirmation: float


class LevelAnalysisResponse(BaseModel):
    """Full analysis of one candle window."""
    symbol: str
    timeframe: str
    last_close: float
    levels: List[LevelSchema]
    liquidity_grabs: List[LiquidityGrabSchema]
    confluence: ConfluenceAnalysisSchema
    market_structure: MarketStructureSchema
    volume_profile: Optional[VolumeProfileSchema] = None
    adjustments: List[LevelAdjustmentSchema] = []
    breakouts: List[PivotChannelBreakoutSchema] = []


def level_to_schema(level: EnhancedLevel) -> LevelSchema:
    return LevelSchema(
        price=level.price,
        level_type=level.level_type.value,
        touches=level.touches,
        last_touch=level.last_touch,
        strength_score=level.strength_score,
        liquidity_grab=level.liquidity_grab,
        reversal_potential=level.reversal_potential,
        volume_confirmation=level.volume_confirmation,
        time_strength=level.time_strength,
        price_action_strength=level.price_action_strength,
    )


def grab_to_schema(grab: LiquidityGrab) -> LiquidityGrabSchema:
    return LiquidityGrabSchema(
        timestamp=grab.timestamp,
        price=grab.price,
        grab_type=grab.grab_type.value,
        strength=grab.strength,
        reversal_confirmed=grab.reversal_confirmed,
        volume_spike=grab.volume_spike,
        volume_confirmed=grab.volume_confirmed,
        index=grab.index,
    )


def _node_to_schema(node: VolumeNode) -> VolumeNodeSchema:
    return VolumeNodeSchema(
        price=node.price,
        volume=node.volume,
        percent=node.percent,
        in_value_area=node.in_value_area,
    )


def volume_profile_to_schema(profile: VolumeProfile) -> VolumeProfileSchema:
    return VolumeProfileSchema(
        poc=profile.poc,
        value_area_high=profile.value_area_high,
        value_area_low=profile.value_area_low,
        total_volume=profile.total_volume,
        nodes=[_node_to_schema(node) for node in profile.volume_by_price],
    )


def zone_to_schema(zone: ConfluenceZone) -> ConfluenceZoneSchema:
    return ConfluenceZoneSchema(
        price_level=zone.price_level,
        strength=zone.strength,
        zone_type=zone.zone_type.value,
        reliability=zone.reliability,
        breakout_probability=zone.breakout_probability,
        historical_significance=zone.historical_significance,
        dynamic_support=zone.dynamic_support,
        factors=[
            ConfluenceFactorSchema(kind=f.kind.value, description=f.description, weight=f.weight)
            for f in zone.factors
        ],
        volume_nodes=[_node_to_schema(node) for node in zone.volume_nodes],
    )


def confluence_to_schema(analysis: ConfluenceAnalysis) -> ConfluenceAnalysisSchema:
    return ConfluenceAnalysisSchema(
        zones=[zone_to_schema(zone) for zone in analysis.zones],
        total_zones=analysis.total_zones,
        strong_zones=len(analysis.strong_zones),
        critical_levels=list(analysis.critical_levels),
        market_bias=analysis.market_bias.value,
        confidence_score=analysis.confidence_score,
    )


def structure_to_schema(structure: MarketStructure) -> MarketStructureSchema:
    return MarketStructureSchema(
        trend=structure.trend.value,
        strength=structure.strength,
        phase=structure.phase.value,
        volatility=structure.volatility,
        volume=structure.volume.value,
    )


def adjustment_to_schema(adjustment: LevelAdjustment) -> LevelAdjustmentSchema:
    return LevelAdjustmentSchema(
        original_level=adjustment.original_level,
        adjusted_level=adjustment.adjusted_level,
        adjustment_factor=adjustment.adjustment_factor,
        reason=adjustment.reason,
        confidence=adjustment.confidence,
        kind=adjustment.kind.value,
    )


def breakout_to_schema(breakout: PivotChannelBreakout) -> PivotChannelBreakoutSchema:
    return PivotChannelBreakoutSchema(
        direction=breakout.direction.value,
        price=breakout.price,
        timestamp=breakout.timestamp,
        strength=breakout.strength,
        target=breakout.target,
        probability_score=breakout.probability_score,
        volume_confirmation=breakout.volume_confirmation,
    )


def analysis_to_schema(analysis: LevelAnalysis) -> LevelAnalysisResponse:
    """Convert a LevelAnalysis into its JSON-ready response model."""
    profile = None
    if analysis.volume_profile is not None:
        profile = volume_profile_to_schema(analysis.volume_profile)

    return LevelAnalysisResponse(
        symbol=analysis.symbol,
        timeframe=analysis.timeframe,
        last_close=analysis.last_close,
        levels=[level_to_schema(level) for level in analysis.levels],
        liquidity_grabs=[grab_to_schema(grab) for grab in analysis.liquidity_grabs],
        confluence=confluence_to_schema(analysis.confluence),
        market_structure=structure_to_schema(analysis.market_structure),
        volume_profile=profile,
        adjustments=[adjustment_to_schema(a) for a in analysis.adjustments],
        breakouts=[breakout_to_schema(b) for b in analysis.breakouts],
    )
