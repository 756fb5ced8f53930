"""
Reward computation: the engine, the daily counters it depends on, level
curves and abuse detection.
"""

from focusup.rewards.context import RewardContext, RewardResult
from focusup.rewards.engine import RewardEngine, ordinal
from focusup.rewards.levels import (
    LEVEL_GATES,
    LevelCheck,
    LevelStore,
    attribute_levels,
    can_level_up,
    character_level,
    next_gate,
    xp_required,
    xp_to_level,
)
from focusup.rewards.service import RewardService
from focusup.rewards.tracker import DailyTracker

__all__ = [
    "RewardContext",
    "RewardResult",
    "RewardEngine",
    "RewardService",
    "DailyTracker",
    "LEVEL_GATES",
    "LevelCheck",
    "LevelStore",
    "attribute_levels",
    "can_level_up",
    "character_level",
    "next_gate",
    "ordinal",
    "xp_required",
    "xp_to_level",
]
