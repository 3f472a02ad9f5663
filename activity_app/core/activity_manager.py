"""Business logic for live activity sessions shared between callers and the API."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from threading import Lock
from uuid import uuid4

from activity_app.constants.activity_constants import (
    CUSTOM_ACTIVITY_SUBJECTS,
    MAX_CUSTOM_QUESTIONS,
    MIN_CUSTOM_QUESTIONS,
    ROLE_TEACHER,
)
from activity_app.core.errors import (
    ActivityNotFoundError,
    ActivityRequestError,
    PartialPersistenceError,
    SessionNotFoundError,
    SessionStateError,
    UnauthenticatedError,
    UnauthorizedError,
)
from activity_app.core.generation_client import QuestionApiClient
from activity_app.core.models import (
    ActivitySummary,
    BankImport,
    Discarded,
    PendingSubmission,
    Question,
    Recorded,
    Submission,
    UserProfile,
)
from activity_app.core.question_bank import (
    list_activities,
    load_activity,
    load_activity_questions,
    save_generated_questions,
)
from activity_app.core.services.activity_session import ActivitySession
from activity_app.core.services.grading_service import GradingService
from activity_app.core.services.storage import StorageBackend
from activity_app.core.services.submission_recorder import SubmissionRecorder

logger = logging.getLogger(__name__)


class ActivityManager:
    """Facade for activity services: sessions, recorder, question sources and grading."""

    def __init__(
        self,
        storage: StorageBackend,
        question_client: QuestionApiClient | None = None,
    ) -> None:
        self._lock = Lock()
        self._storage = storage
        self._question_client = question_client or QuestionApiClient()
        self._recorder = SubmissionRecorder(storage)
        self._grading = GradingService(storage)
        self._sessions: dict[str, ActivitySession] = {}
        self._partial_failures: dict[str, PartialPersistenceError] = {}
        self._recording: set[str] = set()

    # --- Session launch ---

    def start_session(
        self,
        questions: Iterable[Question],
        activity_id: str | None = None,
        student_id: str | None = None,
    ) -> str:
        session = ActivitySession(questions, activity_id=activity_id, student_id=student_id)
        session_id = uuid4().hex
        with self._lock:
            self._sessions[session_id] = session
        logger.info(
            "Started session %s with %d questions (activity %s).",
            session_id,
            session.question_count,
            activity_id or "custom",
        )
        return session_id

    def start_custom_activity(self, subject: str, count: int, subject_label: str | None = None) -> str:
        """Build an ephemeral activity from the question backend."""
        if not MIN_CUSTOM_QUESTIONS <= count <= MAX_CUSTOM_QUESTIONS:
            raise ActivityRequestError(
                f"A custom activity needs between {MIN_CUSTOM_QUESTIONS} and "
                f"{MAX_CUSTOM_QUESTIONS} questions."
            )
        label = subject_label or CUSTOM_ACTIVITY_SUBJECTS.get(subject, subject)
        questions = self._question_client.fetch_questions(subject, count, label)
        return self.start_session(questions)

    def start_assigned_activity(self, activity_id: str, student_id: str | None) -> str:
        """Start a durable attempt at a stored activity."""
        if not student_id:
            raise UnauthenticatedError("You need to be signed in to take an assigned activity.")
        activity = load_activity(self._storage, activity_id)
        if activity is None:
            raise ActivityNotFoundError(f"Activity {activity_id} does not exist.")
        questions = load_activity_questions(self._storage, activity_id)
        return self.start_session(questions, activity_id=activity_id, student_id=student_id)

    def list_activities(self) -> list[ActivitySummary]:
        return list_activities(self._storage)

    def populate_question_bank(
        self,
        subject_id: str,
        subject: str,
        count: int,
        acting_user: UserProfile | None,
    ) -> BankImport:
        """Fetch generated questions for a subject and store them in the bank."""
        if acting_user is None:
            raise UnauthenticatedError("You need to be signed in to add questions to the bank.")
        if acting_user.role != ROLE_TEACHER:
            raise UnauthorizedError("Only teachers can add questions to the bank.")
        label = CUSTOM_ACTIVITY_SUBJECTS.get(subject, subject)
        questions = self._question_client.fetch_questions(subject, count, label)
        return save_generated_questions(self._storage, subject_id, questions)

    # --- Session state ---

    def get_session(self, session_id: str) -> ActivitySession:
        with self._lock:
            return self._get_session_locked(session_id)

    def submit_answer(self, session_id: str, choice_index: int) -> bool:
        with self._lock:
            return self._get_session_locked(session_id).submit_answer(choice_index)

    def advance(self, session_id: str) -> Discarded | Recorded | None:
        """Advance the session; record it when the last question is passed.

        Returns None while questions remain. A failed recording keeps the
        finished session so ``record_finished`` can be retried.
        """
        with self._lock:
            finished = self._get_session_locked(session_id).advance()
        if not finished:
            return None
        return self.record_finished(session_id)

    def record_finished(self, session_id: str) -> Discarded | Recorded:
        """Hand a finished session to the recorder.

        Only one recording per session runs at a time; an overlapping call
        raises ``SessionStateError`` instead of inserting a second submission.
        """
        with self._lock:
            session = self._get_session_locked(session_id)
            if not session.is_finished():
                raise SessionStateError("Activity is not finished yet.")
            if session_id in self._recording:
                raise SessionStateError("This activity is already being recorded.")
            self._recording.add(session_id)
            partial = self._partial_failures.get(session_id)

        try:
            if partial is not None:
                outcome = self._recorder.resume(partial)
            else:
                outcome = self._recorder.record(session.finish_result())
        except PartialPersistenceError as exc:
            with self._lock:
                self._partial_failures[session_id] = exc
            raise
        finally:
            with self._lock:
                self._recording.discard(session_id)

        with self._lock:
            self._sessions.pop(session_id, None)
            self._partial_failures.pop(session_id, None)
        return outcome

    def discard_session(self, session_id: str) -> None:
        with self._lock:
            self._get_session_locked(session_id)
            self._sessions.pop(session_id, None)
            self._partial_failures.pop(session_id, None)

    def get_session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    # --- Grading delegation ---

    def list_pending_submissions(self, acting_user: UserProfile | None) -> list[PendingSubmission]:
        return self._grading.list_pending(acting_user)

    def grade_submission(
        self,
        submission_id: str,
        score: float,
        feedback: str,
        acting_user: UserProfile | None,
    ) -> Submission:
        return self._grading.grade(submission_id, score, feedback, acting_user)

    def _get_session_locked(self, session_id: str) -> ActivitySession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found.")
        return session
