"""
Task model.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator

from focusup.constants import TaskPriority
from focusup.models.base import OwnedRecord, utc_now


class Task(OwnedRecord):
    """
    A to-do item.

    ``done`` and ``completed_at`` always agree: a done task has a
    completion timestamp and a task with a completion timestamp is done.
    """

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    deadline_at: Optional[datetime] = None
    done: bool = False
    completed_at: Optional[datetime] = None
    priority: TaskPriority = TaskPriority.MEDIUM

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Task title is required")
        return v

    @field_validator("priority", mode="before")
    @classmethod
    def default_priority(cls, v: Any) -> Any:
        # Older rows carry no priority column.
        return TaskPriority.MEDIUM if v is None else v

    @model_validator(mode="before")
    @classmethod
    def align_completion(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        done = bool(data.get("done"))
        completed_at = data.get("completed_at")
        if done and completed_at is None:
            data = {**data, "completed_at": utc_now()}
        elif completed_at is not None and not done:
            data = {**data, "done": True}
        return data

    @staticmethod
    def completion_patch(done: bool) -> dict[str, Any]:
        """Patch that flips completion while keeping the invariant."""
        return {"done": done, "completed_at": utc_now() if done else None}
