"""
Reward context and result records.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RewardContext(BaseModel):
    """
    Every signal the reward curves look at. All fields are required so a
    caller cannot forget one; out-of-range values are accepted here and
    rejected by the engine with a zero reward.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    item_number: int = Field(..., description="1-based position among today's rewarded items of this kind")
    during_focus: bool = Field(..., description="Completed while a focus session was active")
    is_duplicate: bool = Field(..., description="Already rewarded today, or a near-copy of such an item")
    is_rapid_completion: bool = Field(..., description="Part of a burst of completions")
    hour: int = Field(..., description="Local hour of day, 0-23")
    streak: int = Field(..., description="Current daily streak")
    all_attributes_worked_today: bool = Field(..., description="All four attributes touched today")

    def with_item_number(self, item_number: int) -> "RewardContext":
        return self.model_copy(update={"item_number": item_number})


class RewardResult(BaseModel):
    """Outcome of one reward calculation. ``success=False`` always carries ``amount=0``."""

    model_config = ConfigDict(frozen=True)

    success: bool
    amount: int = Field(default=0, ge=0)
    base_amount: int = Field(default=0, ge=0)
    multipliers: dict[str, float] = Field(default_factory=dict)
    message: str = ""

    @classmethod
    def rejected(cls, message: str, base_amount: int = 0) -> "RewardResult":
        return cls(success=False, amount=0, base_amount=base_amount, message=message)
