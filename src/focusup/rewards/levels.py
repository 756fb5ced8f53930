"""
Attribute and character levels.

Attribute XP follows the RuneScape experience table:

    xp_required(L) = floor( sum_{i=1}^{L-1} floor(i + 300 * 2^(i/7)) / 4 )

Attributes cap at level 50. The character level reads the same table
from total attribute XP plus one point per 100 coins, capped at 99.
Crossing the gate levels (10, 20, ..., 90, 99) costs coins and needs the
attribute levels listed in LEVEL_GATES. XP alone stops one level short of
the first gate not bought yet; bought gates are kept per owner in
LevelStore, so a gate is paid for once.
"""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Mapping, Optional

from pydantic import BaseModel

from focusup.cache import PersistentCache
from focusup.constants import Attribute, CacheCollection, Rewards

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def xp_required(level: int) -> int:
    """Total XP needed to reach ``level``."""
    if level <= 1:
        return 0
    points = sum(math.floor(i + 300 * 2 ** (i / 7)) for i in range(1, level))
    return points // 4


def xp_to_level(xp: int, max_level: int = Rewards.MAX_ATTRIBUTE_LEVEL) -> int:
    """Highest level whose XP requirement ``xp`` meets."""
    if xp <= 0:
        return 1
    for level in range(2, max_level + 1):
        if xp < xp_required(level):
            return level - 1
    return max_level


def attribute_levels(attributes: Mapping[str, int]) -> dict[str, int]:
    return {key: xp_to_level(attributes.get(key, 0)) for key in Attribute.keys()}


def next_gate(level: int) -> Optional[int]:
    """First gate level above ``level``."""
    return min((gate for gate in LEVEL_GATES if gate > level), default=None)


def character_level(
    attributes: Mapping[str, int],
    coins: int,
    unlocked_level: Optional[int] = None,
) -> int:
    """
    Character level from total attribute XP plus the coin bonus.

    Given the highest gate bought (``unlocked_level``), XP cannot carry the
    level past the next gate. Without it the raw curve is returned.
    """
    effective = sum(attributes.values()) + max(coins, 0) // Rewards.COINS_PER_BONUS_XP
    level = xp_to_level(effective, max_level=Rewards.MAX_CHARACTER_LEVEL)
    if unlocked_level is None:
        return level
    gate = next_gate(unlocked_level)
    if gate is not None:
        level = min(level, gate - 1)
    return max(level, unlocked_level)


class LevelGate(BaseModel):
    coins: int
    min_attribute_avg: Optional[int] = None
    min_single_attribute: Optional[int] = None
    min_two_attributes: Optional[int] = None
    min_three_attributes: Optional[int] = None
    all_attributes_min: Optional[int] = None


LEVEL_GATES: dict[int, LevelGate] = {
    10: LevelGate(coins=100, min_attribute_avg=5),
    20: LevelGate(coins=500, min_attribute_avg=10, min_single_attribute=8),
    30: LevelGate(coins=2000, min_attribute_avg=15, min_two_attributes=12),
    40: LevelGate(coins=5000, min_attribute_avg=20, min_three_attributes=18),
    50: LevelGate(coins=15000, min_attribute_avg=25, all_attributes_min=22),
    60: LevelGate(coins=40000, min_attribute_avg=30, all_attributes_min=25),
    70: LevelGate(coins=80000, min_attribute_avg=35, all_attributes_min=30),
    80: LevelGate(coins=150000, min_attribute_avg=40, all_attributes_min=35),
    90: LevelGate(coins=300000, min_attribute_avg=45, all_attributes_min=40),
    99: LevelGate(coins=1000000, all_attributes_min=50),
}


class LevelCheck(BaseModel):
    can_level: bool
    next_level: Optional[int] = None
    cost: int = 0
    reason: Optional[str] = None


def _count_at_least(levels: list[int], threshold: int) -> int:
    return sum(1 for level in levels if level >= threshold)


def can_level_up(current_level: int, attributes: Mapping[str, int], coins: int) -> LevelCheck:
    """
    Whether the character may buy its way through the next gate.

    Levels between gates come from XP alone and cannot be bought.
    """
    if current_level >= Rewards.MAX_CHARACTER_LEVEL:
        return LevelCheck(can_level=False, reason=f"Max level ({Rewards.MAX_CHARACTER_LEVEL}) reached!")

    next_level = current_level + 1
    gate = LEVEL_GATES.get(next_level)
    if gate is None:
        return LevelCheck(
            can_level=False,
            next_level=next_level,
            reason=f"Level {next_level} is reached through XP alone",
        )

    if coins < gate.coins:
        return LevelCheck(
            can_level=False,
            next_level=next_level,
            cost=gate.coins,
            reason=f"Need {gate.coins} coins (you have {coins})",
        )

    levels = list(attribute_levels(attributes).values())
    average = sum(levels) / len(levels)

    failures = []
    if gate.min_attribute_avg is not None and average < gate.min_attribute_avg:
        failures.append(f"Need average attribute level {gate.min_attribute_avg} (current: {average:.1f})")
    if gate.min_single_attribute is not None and _count_at_least(levels, gate.min_single_attribute) < 1:
        failures.append(f"Need at least one attribute at level {gate.min_single_attribute}")
    if gate.min_two_attributes is not None and _count_at_least(levels, gate.min_two_attributes) < 2:
        failures.append(f"Need at least two attributes at level {gate.min_two_attributes}")
    if gate.min_three_attributes is not None and _count_at_least(levels, gate.min_three_attributes) < 3:
        failures.append(f"Need at least three attributes at level {gate.min_three_attributes}")
    if gate.all_attributes_min is not None and min(levels) < gate.all_attributes_min:
        failures.append(f"All attributes must be at least level {gate.all_attributes_min}")

    if failures:
        return LevelCheck(can_level=False, next_level=next_level, cost=gate.coins, reason=failures[0])
    return LevelCheck(can_level=True, next_level=next_level, cost=gate.coins)


class LevelStore:
    """Highest gate level each owner has bought, cached per owner."""

    def __init__(self, cache: PersistentCache) -> None:
        self._cache = cache

    async def unlocked(self, owner_id: str) -> int:
        raw = await self._cache.get(CacheCollection.UNLOCKED_LEVEL.key(owner_id))
        if raw is None:
            return 1
        try:
            return max(int(raw), 1)
        except ValueError:
            logger.warning("Discarding unreadable unlocked level for %s", owner_id)
            return 1

    async def unlock(self, owner_id: str, level: int) -> None:
        if level > await self.unlocked(owner_id):
            await self._cache.set(CacheCollection.UNLOCKED_LEVEL.key(owner_id), str(level).encode())

    async def move_owner(self, guest_id: str, auth_id: str) -> None:
        await self.unlock(auth_id, await self.unlocked(guest_id))
        await self.clear(guest_id)

    async def clear(self, owner_id: str) -> None:
        await self._cache.remove(CacheCollection.UNLOCKED_LEVEL.key(owner_id))
