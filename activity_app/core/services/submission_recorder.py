"""Service deciding whether a finished session is discarded or persisted."""

from __future__ import annotations

import logging
import math
from typing import Any

from activity_app.constants.activity_constants import (
    MAX_SCORE,
    STATUS_PENDING,
    TABLE_STUDENT_ANSWERS,
    TABLE_SUBMISSIONS,
)
from activity_app.core.errors import (
    PartialPersistenceError,
    PersistenceError,
    StorageError,
    UnauthenticatedError,
)
from activity_app.core.models import Discarded, FinishedSession, Recorded
from activity_app.core.services.storage import StorageBackend

logger = logging.getLogger(__name__)

_ANSWER_CONFLICT_KEYS = ("submission_id", "question_id")


def raw_score(correct_count: int, total: int) -> float:
    """Percentage of correct answers, unrounded."""
    if total <= 0:
        return 0.0
    return MAX_SCORE * correct_count / total


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def display_score(correct_count: int, total: int) -> int:
    """Percentage rounded half up, as shown to students."""
    return round_half_up(raw_score(correct_count, total))


class SubmissionRecorder:
    """Turns finished sessions into outcomes, writing assigned ones to storage."""

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    def record(
        self,
        finished: FinishedSession,
        activity_id: str | None = None,
        student_id: str | None = None,
    ) -> Discarded | Recorded:
        """Discard an ephemeral result or persist an assigned one.

        ``activity_id`` and ``student_id`` default to the ids carried by the
        finished session.
        """
        activity_id = activity_id if activity_id is not None else finished.activity_id
        student_id = student_id if student_id is not None else finished.student_id
        correct_count = finished.correct_count

        if activity_id is None:
            score = display_score(correct_count, finished.total)
            logger.info("Custom activity finished with score %d; nothing persisted.", score)
            return Discarded(score=score)

        if not student_id:
            raise UnauthenticatedError("A signed-in student is required to submit an activity.")

        score = raw_score(correct_count, finished.total)
        try:
            submission_row = self._storage.insert(
                TABLE_SUBMISSIONS,
                {
                    "activity_id": activity_id,
                    "student_id": student_id,
                    "status": STATUS_PENDING,
                    "score": score,
                },
            )
        except StorageError as exc:
            raise PersistenceError(f"Could not save submission: {exc}") from exc

        submission_id = str(submission_row["id"])
        answer_rows = [
            {
                "submission_id": submission_id,
                "question_id": answer.question_id,
                "selected_answer": answer.chosen_letter,
                "is_correct": answer.is_correct,
            }
            for answer in finished.answers
        ]
        self._write_answers(submission_id, score, answer_rows)
        logger.info(
            "Recorded submission %s for activity %s (student %s, score %.2f).",
            submission_id,
            activity_id,
            student_id,
            score,
        )
        return Recorded(submission_id=submission_id, score=score)

    def resume(self, error: PartialPersistenceError) -> Recorded:
        """Retry the answer write of a partially persisted submission."""
        self._write_answers(error.submission_id, error.score, error.pending_rows)
        logger.info("Completed partially persisted submission %s.", error.submission_id)
        return Recorded(submission_id=error.submission_id, score=error.score)

    def _write_answers(self, submission_id: str, score: float, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        try:
            self._storage.upsert(TABLE_STUDENT_ANSWERS, rows, _ANSWER_CONFLICT_KEYS)
        except StorageError as exc:
            logger.error(
                "Submission %s saved but its answers were not: %s", submission_id, exc
            )
            raise PartialPersistenceError(
                f"Submission saved but answers failed: {exc}",
                submission_id=submission_id,
                score=score,
                pending_rows=rows,
            ) from exc
