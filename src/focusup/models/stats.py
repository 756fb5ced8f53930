"""
Aggregate statistics, the reward event log and the per-day counter.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator

from focusup.constants import Attribute, RewardType, SyncState
from focusup.models.base import FocusUpModel, OwnedRecord, utc_now
from focusup.models.session import empty_xp


class UserStats(FocusUpModel):
    """Lifetime totals for one owner. ``longest_streak >= current_streak`` always."""

    user_id: str
    total_coins: int = 0
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    total_focus_time: int = Field(default=0, ge=0, description="Seconds")
    total_sessions: int = Field(default=0, ge=0)
    total_sprints: int = Field(default=0, ge=0)
    attributes: dict[str, int] = Field(default_factory=empty_xp)
    last_streak_date: Optional[date] = None
    updated_at: datetime = Field(default_factory=utc_now)
    sync_state: SyncState = SyncState.LOCAL

    @field_validator("attributes", mode="before")
    @classmethod
    def fill_attributes(cls, v: Any) -> dict[str, int]:
        v = v or {}
        return {key: int(v.get(key) or 0) for key in Attribute.keys()}

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        # Rows written by older clients leave counters null.
        data = {k: v for k, v in data.items() if v is not None or k == "last_streak_date"}
        current = int(data.get("current_streak") or 0)
        longest = int(data.get("longest_streak") or 0)
        if longest < current:
            data["longest_streak"] = current
        return data

    @classmethod
    def empty(cls, user_id: str) -> "UserStats":
        return cls(user_id=user_id)

    @property
    def total_xp(self) -> int:
        return sum(self.attributes.values())

    def record_active_day(self, day: date) -> None:
        """Extend the streak for an active ``day``, or restart it after a gap."""
        if self.last_streak_date == day:
            return
        if self.last_streak_date == day - timedelta(days=1):
            self.current_streak += 1
        else:
            self.current_streak = 1
        self.last_streak_date = day
        self.longest_streak = max(self.longest_streak, self.current_streak)

    def merged_with(self, other: "UserStats") -> "UserStats":
        """
        Field-wise maximum of two stats rows, owned by ``self.user_id``.

        Taking the maximum (never the sum) makes repeated merges of the
        same pair produce the same row.
        """
        dates = [d for d in (self.last_streak_date, other.last_streak_date) if d is not None]
        return UserStats(
            user_id=self.user_id,
            total_coins=max(self.total_coins, other.total_coins),
            current_streak=max(self.current_streak, other.current_streak),
            longest_streak=max(self.longest_streak, other.longest_streak),
            total_focus_time=max(self.total_focus_time, other.total_focus_time),
            total_sessions=max(self.total_sessions, other.total_sessions),
            total_sprints=max(self.total_sprints, other.total_sprints),
            attributes={
                key: max(self.attributes.get(key, 0), other.attributes.get(key, 0))
                for key in Attribute.keys()
            },
            last_streak_date=max(dates) if dates else None,
            updated_at=max(self.updated_at, other.updated_at),
            sync_state=self.sync_state,
        )


class RewardEvent(OwnedRecord):
    """A single award of coins or attribute XP."""

    session_id: Optional[str] = None
    type: RewardType
    amount: int = Field(..., ge=0)
    attribute: Optional[Attribute] = None


class DailyCounter(FocusUpModel):
    """Per-owner counters for one local calendar day."""

    user_id: str
    day: date
    tasks_completed: int = 0
    habits_completed: int = 0
    sprints_completed: int = 0
    habits_by_attribute: dict[str, int] = Field(default_factory=empty_xp)
    rewarded_items: list[str] = Field(default_factory=list)
    reward_times: list[float] = Field(default_factory=list)

    @property
    def attributes_worked(self) -> set[str]:
        return {key for key, count in self.habits_by_attribute.items() if count > 0}
