"""
FocusUp - local-first gamified productivity core with an MCP server.

Tasks, habits and timed focus sessions work fully offline against a
persistent cache, reconcile with a hosted relational store when the user
is signed in, and turn finished work into coins and attribute XP.

Architecture:
    MCP Tools Layer
         │
         ▼
    FocusUp Client (current owner, facade)
         │
    ┌────┴──────────────┬─────────────────────┐
    ▼                   ▼                     ▼
  Session Completion  Reward Service       Identity / Migration
  Orchestrator             │                     │
    └─────────┬────────────┴──────────┬──────────┘
              ▼                       ▼
       Sync Coordinator         Reward Engine + Daily Tracker
         │          │
         ▼          ▼
   Persistent     Remote Store
   Cache          Client
"""

__version__ = "0.1.0"
__author__ = "FocusUp Contributors"

from focusup.exceptions import (
    FocusUpError,
    FocusUpConfigurationError,
    FocusUpValidationError,
    FocusUpMigrationError,
    FocusUpRemoteError,
    FocusUpNetworkError,
    FocusUpConstraintError,
    FocusUpNotFoundError,
    FocusUpAuthenticationError,
)

__all__ = [
    "__version__",
    "FocusUpError",
    "FocusUpConfigurationError",
    "FocusUpValidationError",
    "FocusUpMigrationError",
    "FocusUpRemoteError",
    "FocusUpNetworkError",
    "FocusUpConstraintError",
    "FocusUpNotFoundError",
    "FocusUpAuthenticationError",
]
