"""Reading assigned activities from storage and saving generated questions."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from activity_app.constants.activity_constants import (
    STORED_OPTION_LETTERS,
    TABLE_ACTIVITIES,
    TABLE_ACTIVITY_QUESTIONS,
    TABLE_QUESTIONS,
    TABLE_SUBJECTS,
)
from activity_app.core.errors import PersistenceError, StorageError
from activity_app.core.models import ActivitySummary, BankImport, Question
from activity_app.core.question_normalizer import normalize_stored_row
from activity_app.core.services.storage import StorageBackend

logger = logging.getLogger(__name__)


def load_activity_questions(
    storage: StorageBackend,
    activity_id: str,
    subject_label: str = "",
) -> list[Question]:
    """Return the canonical questions linked to a stored activity, in order."""
    try:
        links = storage.select(
            TABLE_ACTIVITY_QUESTIONS,
            {"activity_id": activity_id},
            order_by="position",
        )
        rows = []
        for link in links:
            found = storage.select(TABLE_QUESTIONS, {"id": link["question_id"]}, limit=1)
            if not found:
                logger.warning(
                    "Activity %s links missing question %s; skipping.",
                    activity_id,
                    link["question_id"],
                )
                continue
            rows.append(found[0])
    except StorageError as exc:
        raise PersistenceError(f"Could not load activity questions: {exc}") from exc

    return [normalize_stored_row(row, subject_label) for row in rows]


def load_activity(storage: StorageBackend, activity_id: str) -> dict | None:
    try:
        found = storage.select(TABLE_ACTIVITIES, {"id": activity_id}, limit=1)
    except StorageError as exc:
        raise PersistenceError(f"Could not load activity: {exc}") from exc
    return found[0] if found else None


def list_activities(storage: StorageBackend) -> list[ActivitySummary]:
    """Stored activities, newest first, with the name of their subject."""
    try:
        rows = storage.select(TABLE_ACTIVITIES, order_by="created_at", descending=True)
        subjects: dict[str, str | None] = {}
        for row in rows:
            subject_id = row.get("subject_id")
            if subject_id is not None and subject_id not in subjects:
                found = storage.select(TABLE_SUBJECTS, {"id": subject_id}, limit=1)
                subjects[subject_id] = found[0].get("name") if found else None
    except StorageError as exc:
        raise PersistenceError(f"Could not load activities: {exc}") from exc

    return [
        ActivitySummary(
            id=str(row["id"]),
            title=row.get("title", ""),
            description=row.get("description"),
            subject_id=row.get("subject_id"),
            subject_name=subjects.get(row.get("subject_id")),
        )
        for row in rows
    ]


def save_generated_questions(
    storage: StorageBackend,
    subject_id: str,
    questions: Iterable[Question],
    difficulty: str | None = None,
) -> BankImport:
    """Store usable questions in the question bank.

    Questions without exactly four choices, or whose correct choice was
    guessed during normalization, are skipped with a warning and reported
    in ``skipped_ids``.
    """
    rows: list[dict] = []
    skipped: list[str] = []
    for question in questions:
        problem = _storage_problem(question)
        if problem is not None:
            logger.warning("Not storing question %s: %s", question.id, problem)
            skipped.append(question.id)
            continue
        rows.append(_to_stored_row(question, subject_id, difficulty))

    saved_ids: list[str] = []
    try:
        for row in rows:
            saved_ids.append(str(storage.insert(TABLE_QUESTIONS, row)["id"]))
    except StorageError as exc:
        raise PersistenceError(
            f"Saved {len(saved_ids)} of {len(rows)} questions before failing: {exc}"
        ) from exc
    logger.info(
        "Saved %d generated questions for subject %s (%d skipped).",
        len(saved_ids),
        subject_id,
        len(skipped),
    )
    return BankImport(saved_ids=tuple(saved_ids), skipped_ids=tuple(skipped))


def _storage_problem(question: Question) -> str | None:
    if len(question.choices) != len(STORED_OPTION_LETTERS):
        return f"needs exactly {len(STORED_OPTION_LETTERS)} choices, got {len(question.choices)}"
    if question.correct_index_defaulted:
        return "correct choice could not be resolved"
    return None


def _to_stored_row(question: Question, subject_id: str, difficulty: str | None) -> dict:
    row = {
        "subject_id": subject_id,
        "question_text": question.prompt,
        "correct_answer": STORED_OPTION_LETTERS[question.correct_choice_index],
        "difficulty": difficulty,
    }
    for letter, choice in zip(STORED_OPTION_LETTERS, question.choices):
        row[f"option_{letter.lower()}"] = choice
    return row
