"""
Error types raised by the toggle store.

This module defines the exceptions ToggleStore surfaces to callers:
- ToggleError: Base exception
- SwitchNotFoundError: No latest switch recorded for an identity
- ConflictError: Creation race could not be settled within the retry budget
- DeadlineExceededError: A call ran past its timeout

Backend failures are not wrapped: they reach callers as the
switchdb.kv errors raised by the backend.

Invariants:
    - All store errors inherit from ToggleError
    - Errors include context for debugging
    - Losing the ordering race is not an error
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ToggleError(Exception):
    """Base exception for all toggle store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TOGGLE_ERROR"
        self.details = details or {}


class SwitchNotFoundError(ToggleError):
    """No switch has ever been saved for the identity."""

    def __init__(self, switch_id: str) -> None:
        super().__init__(
            f"No switch found for id '{switch_id}'",
            code="NOT_FOUND",
            details={"id": switch_id},
        )
        self.switch_id = switch_id


class ConflictError(ToggleError):
    """Save kept losing the first-creation race.

    Raised when:
    - Every attempt found no latest switch, then failed to create one
      because a concurrent writer got there first, and the retry budget
      ran out before the compare-and-swap path could be taken
    """

    def __init__(self, switch_id: str, attempts: int) -> None:
        super().__init__(
            f"Could not save switch '{switch_id}' after {attempts} attempts",
            code="CONFLICT",
            details={"id": switch_id, "attempts": attempts},
        )
        self.switch_id = switch_id
        self.attempts = attempts


class DeadlineExceededError(ToggleError):
    """The call did not finish within its timeout."""

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(
            f"{operation} did not complete within {timeout}s",
            code="DEADLINE_EXCEEDED",
            details={"operation": operation, "timeout": timeout},
        )
        self.operation = operation
        self.timeout = timeout
