"""
Focus session completion.
"""

from focusup.sessions.orchestrator import (
    CompleteSessionRequest,
    SessionCompletionOrchestrator,
    SessionSummary,
)

__all__ = ["CompleteSessionRequest", "SessionCompletionOrchestrator", "SessionSummary"]
