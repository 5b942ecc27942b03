"""
Merge near-identical levels produced by different sources.

Levels are sorted by price and swept once. The running level absorbs the
next one when both have the same type and their prices differ by less
than 1% of the running price:
- price: strength-weighted average (plain mean when both strengths are 0)
- strength / volume_confirmation: max
- touches: sum
- last_touch: max
- liquidity_grab: OR

Sweeping an already merged list changes nothing.
"""

from dataclasses import replace
from typing import List, Sequence

from .models import EnhancedLevel

MERGE_DISTANCE = 0.01


def should_merge(current: EnhancedLevel, candidate: EnhancedLevel) -> bool:
    if current.level_type != candidate.level_type:
        return False
    return abs(candidate.price - current.price) / current.price < MERGE_DISTANCE


def combine_levels(current: EnhancedLevel, candidate: EnhancedLevel) -> EnhancedLevel:
    """Fold `candidate` into `current`. Neither input is modified."""
    total_weight = current.strength_score + candidate.strength_score
    if total_weight > 0:
        price = (
            current.price * current.strength_score + candidate.price * candidate.strength_score
        ) / total_weight
    else:
        price = (current.price + candidate.price) / 2

    # Keep rounding from pushing the result outside its inputs, so price order holds
    low, high = sorted((current.price, candidate.price))
    price = min(max(price, low), high)

    return replace(
        current,
        price=price,
        strength_score=max(current.strength_score, candidate.strength_score),
        touches=current.touches + candidate.touches,
        last_touch=max(current.last_touch, candidate.last_touch),
        volume_confirmation=max(current.volume_confirmation, candidate.volume_confirmation),
        liquidity_grab=current.liquidity_grab or candidate.liquidity_grab,
    )


def merge_levels(levels: Sequence[EnhancedLevel]) -> List[EnhancedLevel]:
    """
    Merge similar levels.

    Returns:
        Merged levels in ascending price order
    """
    if not levels:
        return []

    ordered = sorted(levels, key=lambda level: level.price)
    merged: List[EnhancedLevel] = []
    current = ordered[0]

    for candidate in ordered[1:]:
        if should_merge(current, candidate):
            current = combine_levels(current, candidate)
        else:
            merged.append(current)
            current = candidate

    merged.append(current)
    return merged
