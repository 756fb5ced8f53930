"""
Pydantic Input Models for FocusUp MCP Tools.

This module defines all input validation models used by MCP tools.
Each model includes field constraints and descriptions that end up in the
tool schema shown to the model calling the tool.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional, List

from pydantic import BaseModel, Field, ConfigDict, field_validator


class ResponseFormat(str, Enum):
    """Output format for tool responses."""

    MARKDOWN = "markdown"
    JSON = "json"


class BaseMCPInput(BaseModel):
    """Base input model with common configuration."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )


def _lower(v: Any) -> Any:
    return v.lower() if isinstance(v, str) else v


def _upper(v: Any) -> Any:
    return v.upper() if isinstance(v, str) else v


# =============================================================================
# Task Input Models
# =============================================================================


class TaskCreateInput(BaseMCPInput):
    """Input for creating a new task."""

    title: str = Field(
        ...,
        description="Task title (e.g., 'Review quarterly report', 'Buy groceries')",
        min_length=1,
        max_length=200,
    )
    description: Optional[str] = Field(
        default=None,
        description="Task notes",
        max_length=5000,
    )
    deadline_at: Optional[datetime] = Field(
        default=None,
        description="Deadline in ISO format (e.g., '2025-01-15T17:00:00Z')",
    )
    priority: str = Field(
        default="medium",
        description="Priority level: 'low' (3 coins), 'medium' (6 coins), 'high' (10 coins)",
        pattern=r"^(low|medium|high)$",
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format: 'markdown' for human-readable, 'json' for machine-readable",
    )

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v: Any) -> Any:
        return _lower(v)


class TaskGetInput(BaseMCPInput):
    """Input for getting a task by ID."""

    task_id: str = Field(..., description="Task identifier", min_length=1)
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )


class TaskListInput(BaseMCPInput):
    """Input for listing tasks."""

    include_done: bool = Field(
        default=False,
        description="Include tasks already marked done",
    )
    priority: Optional[str] = Field(
        default=None,
        description="Only tasks with this priority",
        pattern=r"^(low|medium|high)$",
    )
    limit: int = Field(
        default=50,
        description="Maximum number of tasks to return",
        ge=1,
        le=500,
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v: Any) -> Any:
        return _lower(v)


class TaskUpdateInput(BaseMCPInput):
    """Input for updating a task. Only the fields given are changed."""

    task_id: str = Field(..., description="Task identifier to update", min_length=1)
    title: Optional[str] = Field(
        default=None,
        description="New task title",
        min_length=1,
        max_length=200,
    )
    description: Optional[str] = Field(
        default=None,
        description="New task notes",
        max_length=5000,
    )
    deadline_at: Optional[datetime] = Field(
        default=None,
        description="New deadline in ISO format",
    )
    priority: Optional[str] = Field(
        default=None,
        description="New priority: 'low', 'medium', 'high'",
        pattern=r"^(low|medium|high)$",
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v: Any) -> Any:
        return _lower(v)


class TaskCompleteInput(BaseMCPInput):
    """Input for completing a task."""

    task_id: str = Field(..., description="Task identifier to complete", min_length=1)
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )


class TaskDeleteInput(BaseMCPInput):
    """Input for deleting a task."""

    task_id: str = Field(..., description="Task identifier to delete", min_length=1)


# =============================================================================
# Habit Input Models
# =============================================================================


class HabitCreateInput(BaseMCPInput):
    """Input for creating a new habit."""

    title: str = Field(
        ...,
        description="Habit title (e.g., 'Morning run', 'Read 20 pages')",
        min_length=1,
        max_length=200,
    )
    focus_attribute: str = Field(
        ...,
        description="Attribute the habit trains: 'PH' physical, 'CO' cognitive, 'EM' heart, 'SO' soul",
        pattern=r"^(PH|CO|EM|SO)$",
    )
    cue: Optional[str] = Field(
        default=None,
        description="What triggers the habit (e.g., 'After coffee')",
        max_length=500,
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )

    @field_validator("focus_attribute", mode="before")
    @classmethod
    def normalize_attribute(cls, v: Any) -> Any:
        return _upper(v)


class HabitListInput(BaseMCPInput):
    """Input for listing habits."""

    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )


class HabitUpdateInput(BaseMCPInput):
    """Input for updating a habit. Only the fields given are changed."""

    habit_id: str = Field(..., description="Habit identifier to update", min_length=1)
    title: Optional[str] = Field(
        default=None,
        description="New habit title",
        min_length=1,
        max_length=200,
    )
    focus_attribute: Optional[str] = Field(
        default=None,
        description="New attribute: 'PH', 'CO', 'EM', 'SO'",
        pattern=r"^(PH|CO|EM|SO)$",
    )
    cue: Optional[str] = Field(
        default=None,
        description="New cue",
        max_length=500,
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )

    @field_validator("focus_attribute", mode="before")
    @classmethod
    def normalize_attribute(cls, v: Any) -> Any:
        return _upper(v)


class HabitDeleteInput(BaseMCPInput):
    """Input for deleting a habit and its completions."""

    habit_id: str = Field(..., description="Habit identifier to delete", min_length=1)


class HabitToggleInput(BaseMCPInput):
    """Input for ticking a habit off for today, or undoing today's tick."""

    habit_id: str = Field(..., description="Habit identifier", min_length=1)
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )


# =============================================================================
# Focus Session Input Models
# =============================================================================


class SessionStartInput(BaseMCPInput):
    """Input for starting a focus session."""

    duration_minutes: Optional[int] = Field(
        default=25,
        description="Planned length in minutes",
        ge=1,
        le=480,
    )
    mode: str = Field(
        default="work",
        description="Session mode: 'work' or 'break'",
        pattern=r"^(work|break)$",
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Start this scheduled session instead of creating a new one",
    )
    task_ids: List[str] = Field(
        default_factory=list,
        description="Tasks to work on during the session",
        max_length=50,
    )
    habit_ids: List[str] = Field(
        default_factory=list,
        description="Habits to perform during the session",
        max_length=50,
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v: Any) -> Any:
        return _lower(v)


class SessionScheduleInput(BaseMCPInput):
    """Input for scheduling a focus session for later."""

    scheduled_for: datetime = Field(
        ...,
        description="Start time in ISO format (e.g., '2025-01-15T09:00:00Z')",
    )
    duration_minutes: int = Field(
        default=25,
        description="Planned length in minutes",
        ge=1,
        le=480,
    )
    mode: str = Field(
        default="work",
        description="Session mode: 'work' or 'break'",
        pattern=r"^(work|break)$",
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v: Any) -> Any:
        return _lower(v)


class SessionAttachInput(BaseMCPInput):
    """Input for linking tasks and habits to a session."""

    session_id: str = Field(..., description="Session identifier", min_length=1)
    task_ids: List[str] = Field(
        default_factory=list,
        description="Tasks to link",
        max_length=50,
    )
    habit_ids: List[str] = Field(
        default_factory=list,
        description="Habits to link",
        max_length=50,
    )


class SessionCompleteInput(BaseMCPInput):
    """Input for completing a focus session and collecting its rewards."""

    session_id: str = Field(..., description="Session identifier", min_length=1)
    done_task_ids: List[str] = Field(
        default_factory=list,
        description="Linked tasks finished during the session",
    )
    performed_habit_ids: List[str] = Field(
        default_factory=list,
        description="Linked habits performed during the session",
    )
    duration_minutes: int = Field(
        default=0,
        description="Minutes actually focused",
        ge=0,
        le=1440,
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )


class SessionListInput(BaseMCPInput):
    """Input for listing focus sessions."""

    state: Optional[str] = Field(
        default=None,
        description="Only sessions in this state: 'scheduled', 'active', 'completed'",
        pattern=r"^(scheduled|active|completed)$",
    )
    limit: int = Field(
        default=20,
        description="Maximum number of sessions to return",
        ge=1,
        le=200,
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format",
    )


# =============================================================================
# Account Input Models
# =============================================================================


class SignInInput(BaseMCPInput):
    """Input for switching to an authenticated account."""

    auth_id: str = Field(
        ...,
        description="Account id (UUID) issued by the auth provider",
        pattern=r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$",
    )
    access_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the remote store",
    )


class BackupImportInput(BaseMCPInput):
    """Input for importing a previously exported backup."""

    payload: str = Field(
        ...,
        description="Backup document as produced by focusup_export_data (JSON string)",
        min_length=2,
    )

    @field_validator("payload")
    @classmethod
    def validate_payload(cls, v: str) -> str:
        if not v.startswith("{"):
            raise ValueError("Backup must be a JSON object")
        return v
