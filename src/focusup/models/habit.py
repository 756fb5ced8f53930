"""
Habit and HabitCompletion models.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import Field, field_validator

from focusup.constants import Attribute
from focusup.models.base import OwnedRecord, local_day, utc_now


class Habit(OwnedRecord):
    """A recurring behaviour that trains one attribute."""

    title: str = Field(..., min_length=1, max_length=200)
    cue: Optional[str] = Field(default=None, max_length=500)
    focus_attribute: Attribute

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Habit title is required")
        return v


class HabitCompletion(OwnedRecord):
    """One performance of a habit; at most one per habit per calendar day."""

    habit_id: str
    completed_at: datetime = Field(default_factory=utc_now)

    @property
    def day(self) -> date:
        return local_day(self.completed_at)
