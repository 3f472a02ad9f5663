"""Teacher-side review of pending submissions."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from numbers import Real
from typing import Any, Mapping

from activity_app.constants.activity_constants import (
    MAX_SCORE,
    ROLE_TEACHER,
    STATUS_GRADED,
    STATUS_PENDING,
    TABLE_ACTIVITIES,
    TABLE_SUBMISSIONS,
    TEACHER_FORM_SCALE,
)
from activity_app.core.errors import (
    GradeValidationError,
    PersistenceError,
    StorageError,
    UnauthenticatedError,
    UnauthorizedError,
)
from activity_app.core.models import PendingSubmission, Submission, UserProfile
from activity_app.core.services.storage import StorageBackend

logger = logging.getLogger(__name__)


def to_percent(score: float, scale: int = TEACHER_FORM_SCALE) -> float:
    """Convert a score given on a ``0..scale`` form into the 0-100 scale."""
    if scale <= 0:
        raise GradeValidationError("Grade scale must be positive.")
    return float(score) * MAX_SCORE / scale


class GradingService:
    """Lists pending submissions and applies grades to them."""

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    def list_pending(self, acting_user: UserProfile | None) -> list[PendingSubmission]:
        """Pending submissions, newest first, with their activity details."""
        _require_teacher(acting_user)
        try:
            rows = self._storage.select(
                TABLE_SUBMISSIONS,
                {"status": STATUS_PENDING},
                order_by="submitted_at",
                descending=True,
            )
            activities: dict[str, Mapping[str, Any] | None] = {}
            for row in rows:
                activity_id = row.get("activity_id")
                if activity_id not in activities:
                    found = self._storage.select(TABLE_ACTIVITIES, {"id": activity_id}, limit=1)
                    activities[activity_id] = found[0] if found else None
        except StorageError as exc:
            raise PersistenceError(f"Could not load pending submissions: {exc}") from exc

        pending: list[PendingSubmission] = []
        for row in rows:
            activity = activities.get(row.get("activity_id"))
            pending.append(
                PendingSubmission(
                    submission=_submission_from_row(row),
                    activity_title=activity.get("title") if activity else None,
                    activity_description=activity.get("description") if activity else None,
                )
            )
        return pending

    def grade(
        self,
        submission_id: str,
        score: float,
        feedback: str,
        acting_user: UserProfile | None,
    ) -> Submission:
        """Store a score and feedback and mark the submission as graded.

        Re-grading overwrites the previous values.
        """
        _require_teacher(acting_user)
        validated_score = _validate_score(score)
        if not isinstance(feedback, str) or not feedback.strip():
            raise GradeValidationError("Feedback cannot be empty.")

        try:
            updated = self._storage.update(
                TABLE_SUBMISSIONS,
                {"id": submission_id},
                {"score": validated_score, "feedback": feedback, "status": STATUS_GRADED},
            )
        except StorageError as exc:
            raise PersistenceError(f"Could not save grade: {exc}") from exc
        if not updated:
            raise PersistenceError(f"Submission {submission_id} no longer exists.")

        logger.info("Graded submission %s with %.2f.", submission_id, validated_score)
        return _submission_from_row(updated[0])


def _require_teacher(acting_user: UserProfile | None) -> None:
    if acting_user is None:
        raise UnauthenticatedError("You need to be signed in to review submissions.")
    if acting_user.role != ROLE_TEACHER:
        raise UnauthorizedError("Only teachers can review submissions.")


def _validate_score(score: Any) -> float:
    if isinstance(score, bool) or not isinstance(score, Real):
        raise GradeValidationError("Score must be a number.")
    value = float(score)
    if math.isnan(value) or not 0 <= value <= MAX_SCORE:
        raise GradeValidationError(f"Score must be between 0 and {MAX_SCORE:g}.")
    return value


def _submission_from_row(row: Mapping[str, Any]) -> Submission:
    submitted_at = row.get("submitted_at")
    if isinstance(submitted_at, str):
        submitted_at = datetime.fromisoformat(submitted_at)
    if isinstance(submitted_at, datetime) and submitted_at.tzinfo is None:
        submitted_at = submitted_at.replace(tzinfo=timezone.utc)
    score = row.get("score")
    return Submission(
        id=str(row["id"]),
        activity_id=str(row.get("activity_id")),
        student_id=str(row.get("student_id")),
        submitted_at=submitted_at,
        status=row.get("status", STATUS_PENDING),
        score=float(score) if score is not None else None,
        feedback=row.get("feedback"),
    )
