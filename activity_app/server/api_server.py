"""FastAPI server that exposes activity and grading endpoints."""

from __future__ import annotations

import logging
from datetime import timezone
from threading import Thread

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field
import uvicorn

from activity_app.constants.about import APP_ABOUT_TEXT, APP_NAME, APP_VERSION
from activity_app.constants.activity_constants import (
    DEFAULT_CUSTOM_QUESTIONS,
    MAX_CUSTOM_QUESTIONS,
    MIN_CUSTOM_QUESTIONS,
)
from activity_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from activity_app.core.activity_manager import ActivityManager
from activity_app.core.errors import (
    ActivityError,
    ActivityNotFoundError,
    GenerationError,
    PartialPersistenceError,
    PersistenceError,
    SessionNotFoundError,
    SessionStateError,
    UnauthenticatedError,
    UnauthorizedError,
)
from activity_app.core.models import (
    ActivitySummary,
    Discarded,
    PendingSubmission,
    Recorded,
    Submission,
    UserProfile,
)
from activity_app.core.question_renderer import renderer
from activity_app.core.services.activity_session import ActivitySession
from activity_app.core.services.grading_service import to_percent
from activity_app.core.services.submission_recorder import round_half_up

logger = logging.getLogger(__name__)


class CustomActivityPayload(BaseModel):
    """Payload schema for starting a custom activity."""

    subject: str
    count: int = Field(
        default=DEFAULT_CUSTOM_QUESTIONS, ge=MIN_CUSTOM_QUESTIONS, le=MAX_CUSTOM_QUESTIONS
    )


class AssignedActivityPayload(BaseModel):
    """Payload schema for starting an assigned activity."""

    student_id: str | None = None


class GeneratePayload(BaseModel):
    """Payload schema for filling the question bank of a subject."""

    subject: str
    count: int = 10


class AnswerPayload(BaseModel):
    """Payload schema for submitted answers."""

    choice_index: int


class GradePayload(BaseModel):
    """Payload schema for a teacher's grade.

    ``scale`` is the maximum of the form the score was entered on; scores
    are stored on the 0-100 scale.
    """

    score: float
    feedback: str
    scale: int = 100


def _get_manager_dependency(manager: ActivityManager):
    def dependency() -> ActivityManager:
        return manager

    return dependency


def _acting_user(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> UserProfile | None:
    if not x_user_id or not x_user_role:
        return None
    return UserProfile(id=x_user_id, role=x_user_role)


def _http_error(exc: ActivityError) -> HTTPException:
    if isinstance(exc, (SessionNotFoundError, ActivityNotFoundError)):
        status = 404
    elif isinstance(exc, UnauthenticatedError):
        status = 401
    elif isinstance(exc, UnauthorizedError):
        status = 403
    elif isinstance(exc, SessionStateError):
        status = 409
    elif isinstance(exc, (PersistenceError, GenerationError)):
        status = 502
    else:
        status = 422
    detail: object = str(exc)
    if isinstance(exc, PartialPersistenceError):
        detail = {"message": str(exc), "submission_id": exc.submission_id}
    return HTTPException(status_code=status, detail=detail)


def _session_view(session_id: str, session: ActivitySession) -> dict[str, object]:
    question = session.get_current_question()
    answer = session.get_current_answer()
    rendered = renderer.render_question(question)
    return {
        "session_id": session_id,
        "activity_id": session.activity_id,
        "finished": session.is_finished(),
        "question_number": session.current_index + 1,
        "question_count": session.question_count,
        "progress": session.progress_fraction,
        "correct_count": session.correct_count,
        "question_id": question.id,
        "subject": question.subject_label,
        "prompt_html": rendered["prompt_html"],
        "choices": list(question.choices),
        "choices_html": rendered["choices_html"],
        "answered": answer is not None,
        "selected_index": answer.chosen_index if answer else None,
        # Only reveal the correct choice once the student has committed
        "correct_choice_index": question.correct_choice_index if answer else None,
        "is_last_question": session.is_last_question(),
    }


def _outcome_view(outcome: Discarded | Recorded) -> dict[str, object]:
    if isinstance(outcome, Recorded):
        return {
            "finished": True,
            "recorded": True,
            "submission_id": outcome.submission_id,
            "score": round_half_up(outcome.score),
        }
    return {"finished": True, "recorded": False, "submission_id": None, "score": outcome.score}


def _submission_view(submission: Submission) -> dict[str, object]:
    submitted_at = submission.submitted_at
    submitted_iso = None
    if submitted_at is not None:
        submitted_iso = submitted_at.astimezone(timezone.utc).isoformat()
    return {
        "id": submission.id,
        "activity_id": submission.activity_id,
        "student_id": submission.student_id,
        "submitted_at": submitted_iso,
        "status": submission.status,
        "score": submission.score,
        "feedback": submission.feedback,
    }


def _pending_view(pending: PendingSubmission) -> dict[str, object]:
    view = _submission_view(pending.submission)
    view["activity_title"] = pending.activity_title
    view["activity_description"] = pending.activity_description
    return view


def _activity_view(activity: ActivitySummary) -> dict[str, object]:
    return {
        "id": activity.id,
        "title": activity.title,
        "description": activity.description,
        "subject_id": activity.subject_id,
        "subject_name": activity.subject_name,
    }


def create_api_app(manager: ActivityManager) -> FastAPI:
    """Create a FastAPI application wired to the provided activity manager."""
    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION, description=APP_ABOUT_TEXT)
    manager_dep = _get_manager_dependency(manager)

    @app.get("/activities")
    def list_activities(
        manager: ActivityManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        try:
            activities = manager.list_activities()
        except ActivityError as exc:
            raise _http_error(exc) from exc
        return [_activity_view(activity) for activity in activities]

    @app.post("/activities/custom", status_code=201)
    def start_custom_activity(
        payload: CustomActivityPayload,
        manager: ActivityManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            session_id = manager.start_custom_activity(payload.subject, payload.count)
            return _session_view(session_id, manager.get_session(session_id))
        except ActivityError as exc:
            raise _http_error(exc) from exc

    @app.post("/activities/{activity_id}/sessions", status_code=201)
    def start_assigned_activity(
        activity_id: str,
        payload: AssignedActivityPayload,
        manager: ActivityManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            session_id = manager.start_assigned_activity(activity_id, payload.student_id)
            return _session_view(session_id, manager.get_session(session_id))
        except ActivityError as exc:
            raise _http_error(exc) from exc

    @app.post("/subjects/{subject_id}/questions", status_code=201)
    def populate_questions(
        subject_id: str,
        payload: GeneratePayload,
        acting_user: UserProfile | None = Depends(_acting_user),
        manager: ActivityManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            result = manager.populate_question_bank(
                subject_id, payload.subject, payload.count, acting_user
            )
        except ActivityError as exc:
            raise _http_error(exc) from exc
        return {
            "count": len(result.saved_ids),
            "question_ids": list(result.saved_ids),
            "skipped_ids": list(result.skipped_ids),
        }

    @app.get("/sessions/{session_id}")
    def get_session(
        session_id: str,
        manager: ActivityManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            return _session_view(session_id, manager.get_session(session_id))
        except ActivityError as exc:
            raise _http_error(exc) from exc

    @app.post("/sessions/{session_id}/answer")
    def submit_answer(
        session_id: str,
        payload: AnswerPayload,
        manager: ActivityManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            recorded = manager.submit_answer(session_id, payload.choice_index)
            view = _session_view(session_id, manager.get_session(session_id))
        except ActivityError as exc:
            raise _http_error(exc) from exc
        view["accepted"] = recorded
        return view

    @app.post("/sessions/{session_id}/advance")
    def advance(
        session_id: str,
        manager: ActivityManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            outcome = manager.advance(session_id)
            if outcome is None:
                return _session_view(session_id, manager.get_session(session_id))
        except ActivityError as exc:
            raise _http_error(exc) from exc
        return _outcome_view(outcome)

    @app.post("/sessions/{session_id}/record")
    def record(
        session_id: str,
        manager: ActivityManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            outcome = manager.record_finished(session_id)
        except ActivityError as exc:
            raise _http_error(exc) from exc
        return _outcome_view(outcome)

    @app.get("/submissions/pending")
    def list_pending(
        acting_user: UserProfile | None = Depends(_acting_user),
        manager: ActivityManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        try:
            pending = manager.list_pending_submissions(acting_user)
        except ActivityError as exc:
            raise _http_error(exc) from exc
        return [_pending_view(item) for item in pending]

    @app.post("/submissions/{submission_id}/grade")
    def grade(
        submission_id: str,
        payload: GradePayload,
        acting_user: UserProfile | None = Depends(_acting_user),
        manager: ActivityManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            score = payload.score
            if payload.scale != 100:
                score = to_percent(payload.score, payload.scale)
            graded = manager.grade_submission(submission_id, score, payload.feedback, acting_user)
        except ActivityError as exc:
            raise _http_error(exc) from exc
        return _submission_view(graded)

    return app


def start_api_server(
    manager: ActivityManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> Thread:
    """Start the FastAPI server in a background daemon thread."""
    app = create_api_app(manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)

    def run_server() -> None:
        server.run()

    thread = Thread(target=run_server, name="ActivityApiServer", daemon=True)
    thread.start()
    logger.info("Activity API listening on %s:%d", host, port)
    return thread
