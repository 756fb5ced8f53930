"""
FocusUp MCP Tools Package.

Input models and response formatting for the FocusUp MCP server.
Tools are organized into logical groups:
    - Task tools (create, read, update, delete, complete, list)
    - Habit tools (CRUD, daily toggle)
    - Focus session tools (schedule, start, attach, complete, list)
    - Account tools (stats, level up, sign in, refresh, backup)
"""

from focusup.tools.inputs import (
    ResponseFormat,
    TaskCreateInput,
    TaskGetInput,
    TaskListInput,
    TaskUpdateInput,
    TaskCompleteInput,
    TaskDeleteInput,
    HabitCreateInput,
    HabitListInput,
    HabitUpdateInput,
    HabitDeleteInput,
    HabitToggleInput,
    SessionStartInput,
    SessionScheduleInput,
    SessionAttachInput,
    SessionCompleteInput,
    SessionListInput,
    SignInInput,
    BackupImportInput,
)

__all__ = [
    "ResponseFormat",
    "TaskCreateInput",
    "TaskGetInput",
    "TaskListInput",
    "TaskUpdateInput",
    "TaskCompleteInput",
    "TaskDeleteInput",
    "HabitCreateInput",
    "HabitListInput",
    "HabitUpdateInput",
    "HabitDeleteInput",
    "HabitToggleInput",
    "SessionStartInput",
    "SessionScheduleInput",
    "SessionAttachInput",
    "SessionCompleteInput",
    "SessionListInput",
    "SignInInput",
    "BackupImportInput",
]
