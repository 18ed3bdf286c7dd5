"""Reduction outcomes that are not a returned result.

Every exception derives from ContextError, so callers can catch the whole
family at once. ``NothingToCompactError``, ``CompactionVetoedError`` and
``CompactionCancelledError`` are expected outcomes a caller surfaces as a
no-op; the rest are real failures.

Example:
    try:
        result = await session.compact()
    except ContextError as e:
        if not is_expected_outcome(e):
            log.error("Compaction failed: %s", e)
"""

from __future__ import annotations

from typing import Any


class ContextError(Exception):
    """Base exception for context reduction errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class NothingToCompactError(ContextError):
    """Raised when there is nothing to reduce.

    This includes:
    - The branch already ends in a compaction entry
    - Compaction is disabled in settings
    """


class CompactionCancelledError(ContextError):
    """Raised when the abort signal was observed before or after a model call."""


class SummarizationFailedError(ContextError):
    """Raised when the model returned an error or the transport raised.

    Example:
        SummarizationFailedError(
            "Summarization failed: overloaded",
            details={"stop_reason": "error"}
        )
    """


class CompactionVetoedError(ContextError):
    """Raised when a session_before_compact hook declined the reduction."""


class ReductionInProgressError(ContextError):
    """Raised when a reduction is requested while another one is running."""


class StaleCompactionError(ContextError):
    """Raised when the log moved away from the plan while summarizing.

    The compaction is not appended; the caller may prepare a new plan.
    """


_EXPECTED = (NothingToCompactError, CompactionVetoedError, CompactionCancelledError)


def is_expected_outcome(error: BaseException) -> bool:
    """True for outcomes that should not be reported as failures."""
    return isinstance(error, _EXPECTED)
