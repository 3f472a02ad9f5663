"""Exception types raised by the activity core."""

from __future__ import annotations

from typing import Any


class ActivityError(Exception):
    """Base class for every failure surfaced by the activity core."""


class MalformedQuestionError(ActivityError, ValueError):
    """Raised when an upstream question cannot be normalized."""


class EmptyActivityError(ActivityError, ValueError):
    """Raised when a session is requested for an empty question set."""


class InvalidAnswerError(ActivityError, ValueError):
    """Raised when a chosen index does not exist for the current question."""


class GradeValidationError(ActivityError, ValueError):
    """Raised when a grade is rejected before it reaches storage."""


class SessionStateError(ActivityError, RuntimeError):
    """Raised when an operation is not valid in the session's current state."""


class SessionNotFoundError(ActivityError, KeyError):
    """Raised when no live session exists for an id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Session not found."


class UnauthenticatedError(ActivityError):
    """Raised when a durable operation has no acting identity."""


class UnauthorizedError(ActivityError, PermissionError):
    """Raised when the acting identity lacks the required role."""


class GenerationError(ActivityError):
    """Raised when the question backend cannot produce a question set."""


class StorageError(Exception):
    """Raised by storage backends when a read or write fails."""


class PersistenceError(ActivityError):
    """Raised when a storage call made on behalf of the core fails."""


class PartialPersistenceError(PersistenceError):
    """Raised when a submission row exists but its answer rows do not.

    Nothing is rolled back. ``submission_id`` and ``pending_rows`` let the
    caller retry the answer write through ``SubmissionRecorder.resume``.
    """

    def __init__(
        self,
        message: str,
        submission_id: str,
        score: float,
        pending_rows: list[dict[str, Any]],
    ) -> None:
        super().__init__(message)
        self.submission_id = submission_id
        self.score = score
        self.pending_rows = pending_rows


class ActivityNotFoundError(ActivityError, KeyError):
    """Raised when a stored activity does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Activity not found."


class ActivityRequestError(ActivityError, ValueError):
    """Raised when a request to build an activity is out of bounds."""
