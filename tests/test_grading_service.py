from datetime import datetime, timedelta, timezone

import pytest

from activity_app.constants.activity_constants import TABLE_ACTIVITIES, TABLE_SUBMISSIONS
from activity_app.core.errors import (
    GradeValidationError,
    PersistenceError,
    UnauthenticatedError,
    UnauthorizedError,
)
from activity_app.core.models import UserProfile
from activity_app.core.services.grading_service import GradingService, to_percent

from conftest import TEACHER


def _submission(storage, activity_id="act-1", minutes_ago=0, status="pending"):
    submitted_at = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
    return storage.insert(
        TABLE_SUBMISSIONS,
        {
            "activity_id": activity_id,
            "student_id": "stu-1",
            "status": status,
            "score": 50.0,
            "submitted_at": submitted_at,
        },
    )["id"]


def test_grade_then_regrade_overwrites(storage):
    submission_id = _submission(storage)
    service = GradingService(storage)

    graded = service.grade(submission_id, 85, "Bom trabalho", TEACHER)
    assert (graded.status, graded.score, graded.feedback) == ("graded", 85.0, "Bom trabalho")

    regraded = service.grade(submission_id, 60, "Revisar", TEACHER)
    stored = storage.select(TABLE_SUBMISSIONS, {"id": submission_id})[0]
    assert (regraded.score, regraded.feedback) == (60.0, "Revisar")
    assert (stored["status"], stored["score"], stored["feedback"]) == ("graded", 60.0, "Revisar")


@pytest.mark.parametrize("score", [-1, 100.5, "85", None, True, float("nan")])
def test_invalid_scores_never_reach_storage(storage, score):
    submission_id = _submission(storage)

    with pytest.raises(GradeValidationError):
        GradingService(storage).grade(submission_id, score, "ok", TEACHER)
    assert storage.writes_to(TABLE_SUBMISSIONS)[-1][0] == "insert"


@pytest.mark.parametrize("feedback", ["", "   ", None])
def test_feedback_is_required(storage, feedback):
    submission_id = _submission(storage)

    with pytest.raises(GradeValidationError):
        GradingService(storage).grade(submission_id, 70, feedback, TEACHER)


def test_missing_submission_is_a_persistence_error(storage):
    with pytest.raises(PersistenceError):
        GradingService(storage).grade("does-not-exist", 70, "ok", TEACHER)


def test_storage_failure_is_a_persistence_error(storage):
    submission_id = _submission(storage)
    storage.fail_tables.add(TABLE_SUBMISSIONS)

    with pytest.raises(PersistenceError):
        GradingService(storage).grade(submission_id, 70, "ok", TEACHER)


def test_list_pending_is_newest_first_and_joined(storage):
    storage.insert(TABLE_ACTIVITIES, {"id": "act-1", "title": "Prova", "description": "Cap. 3"})
    older = _submission(storage, minutes_ago=30)
    newer = _submission(storage, minutes_ago=5)
    _submission(storage, minutes_ago=1, status="graded")
    orphan = _submission(storage, activity_id="gone", minutes_ago=60)

    pending = GradingService(storage).list_pending(TEACHER)

    assert [item.submission.id for item in pending] == [newer, older, orphan]
    assert pending[0].activity_title == "Prova"
    assert pending[0].activity_description == "Cap. 3"
    assert pending[2].activity_title is None


def test_students_cannot_grade(storage):
    submission_id = _submission(storage)
    student = UserProfile(id="stu-1", role="student")
    service = GradingService(storage)

    with pytest.raises(UnauthorizedError):
        service.grade(submission_id, 90, "ok", acting_user=student)
    with pytest.raises(UnauthorizedError):
        service.list_pending(acting_user=student)

    assert service.grade(submission_id, 90, "ok", acting_user=TEACHER).status == "graded"


def test_to_percent():
    assert to_percent(8.5) == 85.0
    assert to_percent(10, scale=10) == 100.0
    with pytest.raises(GradeValidationError):
        to_percent(5, scale=0)


def test_grading_requires_an_acting_identity(storage):
    submission_id = _submission(storage)
    service = GradingService(storage)

    with pytest.raises(UnauthenticatedError):
        service.grade(submission_id, 90, "ok", None)
    with pytest.raises(UnauthenticatedError):
        service.list_pending(None)
    assert storage.writes_to(TABLE_SUBMISSIONS)[-1][0] == "insert"
