"""
FocusUp Exception Hierarchy.

All errors raised by the package derive from FocusUpError so callers can
catch a single base class. The remote-facing subclasses map onto the
recovery policy of the sync layer:

    FocusUpError
     ├── FocusUpConfigurationError
     ├── FocusUpValidationError
     ├── FocusUpMigrationError
     └── FocusUpRemoteError
          ├── FocusUpNetworkError        (recovered locally, cache-only)
          ├── FocusUpConstraintError     (surfaced, local state kept)
          ├── FocusUpNotFoundError       (treated as already satisfied)
          └── FocusUpAuthenticationError
"""

from __future__ import annotations

from typing import Any


class FocusUpError(Exception):
    """Base exception for all FocusUp errors."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.details = details or {}

    def __str__(self) -> str:
        if self.operation:
            return f"{self.message} (operation: {self.operation})"
        return self.message


class FocusUpConfigurationError(FocusUpError):
    """Raised when the package is misconfigured."""


class FocusUpValidationError(FocusUpError):
    """Raised for invalid local input or an illegal state transition."""


class FocusUpMigrationError(FocusUpError):
    """Raised when guest-to-account re-parenting could not finish."""


class FocusUpRemoteError(FocusUpError):
    """Raised when the remote store rejects or fails a request."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation, details=details)
        self.status_code = status_code
        self.code = code


class FocusUpNetworkError(FocusUpRemoteError):
    """Raised when the remote store could not be reached in time."""


class FocusUpConstraintError(FocusUpRemoteError):
    """Raised when the remote store rejects a write (e.g. uniqueness)."""


class FocusUpNotFoundError(FocusUpRemoteError):
    """Raised when the targeted remote row does not exist."""


class FocusUpAuthenticationError(FocusUpRemoteError):
    """Raised when the remote store refuses our credentials."""
