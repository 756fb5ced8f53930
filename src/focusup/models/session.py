"""
Focus session and junction models.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from focusup.constants import SESSION_TRANSITIONS, Attribute, SessionMode, SessionState
from focusup.models.base import OwnedRecord


def empty_xp() -> dict[str, int]:
    return {key: 0 for key in Attribute.keys()}


class FocusSession(OwnedRecord):
    """
    A timed focus (or break) session.

    Lifecycle: scheduled -> active -> completing -> completed. The
    ``completing`` state is only ever held in memory; the cached copy is
    either active or completed.
    """

    mode: SessionMode = SessionMode.WORK
    duration: int = Field(default=0, ge=0, description="Planned duration in seconds")
    state: SessionState = SessionState.ACTIVE
    scheduled_for: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    actual_duration: int = Field(default=0, ge=0)
    coins_earned: int = Field(default=0, ge=0)
    xp_earned: dict[str, int] = Field(default_factory=empty_xp)
    reward_messages: list[str] = Field(default_factory=list)

    def can_transition(self, target: SessionState) -> bool:
        return target in SESSION_TRANSITIONS[self.state]

    @property
    def is_completed(self) -> bool:
        return self.state == SessionState.COMPLETED


class SessionTaskLink(OwnedRecord):
    """Ties a task to a session; ``completed`` is scoped to that session."""

    session_id: str
    task_id: str
    completed: bool = False
    completed_at: Optional[datetime] = None


class SessionHabitLink(OwnedRecord):
    """Ties a habit to a session; ``performed`` is scoped to that session."""

    session_id: str
    habit_id: str
    performed: bool = False
    performed_at: Optional[datetime] = None
