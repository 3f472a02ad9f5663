"""Domain models for activities, answers and submissions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Question:
    """Canonical multiple-choice question with a single correct choice."""

    id: str
    prompt: str
    choices: tuple[str, ...]
    correct_choice_index: int
    subject_label: str = ""
    correct_index_defaulted: bool = False  # Set when the source letter could not be resolved


@dataclass(frozen=True, slots=True)
class AnswerRecord:
    """Answer committed by a student for one question."""

    question_id: str
    chosen_index: int
    chosen_letter: str
    is_correct: bool


@dataclass(frozen=True, slots=True)
class FinishedSession:
    """Result handed over by a session once it reaches its terminal state."""

    answers: tuple[AnswerRecord, ...]
    total: int
    activity_id: str | None = None
    student_id: str | None = None

    @property
    def correct_count(self) -> int:
        return sum(1 for answer in self.answers if answer.is_correct)


@dataclass(slots=True)
class Submission:
    """Durable record of one student's completed attempt at an activity."""

    id: str
    activity_id: str
    student_id: str
    submitted_at: datetime | None
    status: str
    score: float | None = None
    feedback: str | None = None


@dataclass(frozen=True, slots=True)
class StudentAnswer:
    """Durable answer row belonging to a submission."""

    submission_id: str
    question_id: str
    selected_answer: str
    is_correct: bool


@dataclass(slots=True)
class PendingSubmission:
    """Submission joined with the title and description of its activity."""

    submission: Submission
    activity_title: str | None
    activity_description: str | None


@dataclass(frozen=True, slots=True)
class ActivitySummary:
    """Stored activity a student can start, with its subject name."""

    id: str
    title: str
    description: str | None
    subject_id: str | None
    subject_name: str | None


@dataclass(frozen=True, slots=True)
class BankImport:
    """Result of storing generated questions in the question bank."""

    saved_ids: tuple[str, ...]
    skipped_ids: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Discarded:
    """Outcome of an ephemeral activity: scored, nothing persisted."""

    score: int


@dataclass(frozen=True, slots=True)
class Recorded:
    """Outcome of an assigned activity: persisted as a pending submission."""

    submission_id: str
    score: float


@dataclass(frozen=True, slots=True)
class UserProfile:
    """Acting identity issued by the external auth collaborator."""

    id: str
    role: str
    name: str | None = None
