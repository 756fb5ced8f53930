"""
Reward Engine.

Pure functions from a completion context to coins or attribute XP.

    task coins  = base[priority] * max(0.2, 0.9^(n-1)) * focus * streak [* 0.5 rapid]
    habit XP    = 10 * 1/sqrt(n) * focus * streak * variety [* 0.5 rapid]
    sprint coins = 5 * time_of_day * max(0.25, 1 - 0.1(n-1)) [* 0.5 rapid]

A duplicate completion earns nothing, so undo-then-redo is never a
profitable loop. Invalid contexts never raise; they earn nothing.
"""

from __future__ import annotations

import math
from typing import Any

from focusup.constants import Rewards, TaskPriority
from focusup.rewards.context import RewardContext, RewardResult


def ordinal(n: int) -> str:
    """1 -> '1st', 2 -> '2nd', 11 -> '11th', 23 -> '23rd'."""
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def focus_multiplier(during_focus: bool) -> float:
    return Rewards.FOCUS_MULTIPLIER if during_focus else Rewards.NON_FOCUS_MULTIPLIER


def streak_multiplier(streak: int) -> float:
    """Grows with the streak and stops at the maximum multiplier."""
    return min(Rewards.MAX_STREAK_MULTIPLIER, 1.0 + max(streak, 0) / Rewards.STREAK_DIVISOR)


def time_of_day_multiplier(hour: int) -> float:
    if 6 <= hour < 12:
        return Rewards.TIME_BONUS_MORNING
    if 14 <= hour < 18:
        return Rewards.TIME_BONUS_AFTERNOON
    if hour >= 23 or hour < 5:
        return Rewards.TIME_BONUS_LATE_NIGHT
    return Rewards.TIME_BONUS_EVENING


def task_decay(n: int) -> float:
    return max(Rewards.TASK_DECAY_FLOOR, Rewards.TASK_DECAY ** (n - 1))


def habit_decay(n: int) -> float:
    return 1 / math.sqrt(n)


def sprint_decay(n: int) -> float:
    return max(Rewards.SPRINT_DECAY_FLOOR, 1.0 - Rewards.SPRINT_DECAY_STEP * (n - 1))


def _invalid_reason(context: RewardContext) -> str | None:
    if context.item_number < 1:
        return f"Invalid item number {context.item_number}"
    if context.streak < 0:
        return f"Invalid streak {context.streak}"
    if not 0 <= context.hour <= 23:
        return f"Invalid hour {context.hour}"
    return None


class RewardEngine:
    """Stateless reward calculator."""

    def _apply(
        self,
        base: int,
        multipliers: dict[str, float],
        context: RewardContext,
        message: str,
    ) -> RewardResult:
        if context.is_duplicate:
            return RewardResult.rejected(
                f"{message.format(amount=0)} [Already rewarded today]", base_amount=base
            )
        if context.is_rapid_completion:
            multipliers["rapid"] = Rewards.RAPID_COMPLETION_PENALTY

        total = 1.0
        for value in multipliers.values():
            total *= value
        # The small epsilon keeps exact products like 6 * 0.5 * 2.0 from flooring down.
        amount = max(0, math.floor(base * total + 1e-9))

        unit_message = message.format(amount=amount)
        if context.is_rapid_completion:
            unit_message += " [Slow down!]"
        return RewardResult(
            success=True,
            amount=amount,
            base_amount=base,
            multipliers=multipliers,
            message=unit_message,
        )

    def calculate_task_coins(self, priority: Any, context: RewardContext) -> RewardResult:
        """Coins for completing a task of ``priority``."""
        reason = _invalid_reason(context)
        if reason:
            return RewardResult.rejected(reason)
        try:
            priority = TaskPriority(priority)
        except ValueError:
            return RewardResult.rejected(f"Unknown task priority {priority!r}")

        n = context.item_number
        return self._apply(
            Rewards.TASK_BASE_COINS[priority],
            {
                "diminishing": task_decay(n),
                "focus": focus_multiplier(context.during_focus),
                "streak": streak_multiplier(context.streak),
            },
            context,
            f"+{{amount}} coins earned! ({ordinal(n)} task today)",
        )

    def calculate_habit_xp(self, context: RewardContext) -> RewardResult:
        """XP for performing a habit; the attribute is chosen by the caller."""
        reason = _invalid_reason(context)
        if reason:
            return RewardResult.rejected(reason)

        n = context.item_number
        return self._apply(
            Rewards.HABIT_BASE_XP,
            {
                "diminishing": habit_decay(n),
                "focus": focus_multiplier(context.during_focus),
                "streak": streak_multiplier(context.streak),
                "variety": Rewards.VARIETY_BONUS if context.all_attributes_worked_today else 1.0,
            },
            context,
            f"+{{amount}} XP earned! ({ordinal(n)} habit today)",
        )

    def calculate_sprint_reward(self, context: RewardContext) -> RewardResult:
        """Coins for finishing a focus sprint."""
        reason = _invalid_reason(context)
        if reason:
            return RewardResult.rejected(reason)

        n = context.item_number
        return self._apply(
            Rewards.SPRINT_BASE_COINS,
            {
                "time_of_day": time_of_day_multiplier(context.hour),
                "diminishing": sprint_decay(n),
            },
            context,
            f"+{{amount}} coins for sprint #{n}!",
        )
