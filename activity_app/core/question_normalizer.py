"""Conversion of upstream question records into canonical questions.

Two upstream shapes are accepted:

    Generation service record (variant A):

        {"id": ..., "available": true, "subject_id": ..., "difficulty": "...",
         "question": {"statement": "...",
                      "alternatives": [{"text": "...", "letter": "A"}, ...],
                      "correct_answer": "B"}}

    Stored four-option row (variant B):

        {"id": ..., "question_text": "...", "option_a": "...", "option_b": "...",
         "option_c": "...", "option_d": "...", "correct_answer": "C"}

Architecture note:
    Choice order is preserved exactly as received because the chosen index is
    the only thing compared when grading. A generation record whose correct
    letter matches none of its alternatives falls back to index 0 and is
    flagged through ``Question.correct_index_defaulted`` instead of failing,
    so one bad record does not block a whole activity.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from activity_app.constants.activity_constants import MIN_CHOICES, STORED_OPTION_LETTERS
from activity_app.core.errors import MalformedQuestionError
from activity_app.core.models import Question

logger = logging.getLogger(__name__)

_STORED_OPTION_FIELDS = tuple(f"option_{letter.lower()}" for letter in STORED_OPTION_LETTERS)


def normalize(raw: Mapping[str, Any], subject_label: str = "") -> Question:
    """Normalize either upstream shape, detected by its keys."""
    if not isinstance(raw, Mapping):
        raise MalformedQuestionError("Question record must be a mapping.")
    if isinstance(raw.get("question"), Mapping):
        return normalize_generated(raw, subject_label)
    if "question_text" in raw:
        return normalize_stored_row(raw, subject_label)
    raise MalformedQuestionError("Unrecognized question record shape.")


def normalize_generated(raw: Mapping[str, Any], subject_label: str = "") -> Question:
    body = raw.get("question")
    if not isinstance(body, Mapping):
        raise MalformedQuestionError("Generated record is missing its 'question' object.")

    alternatives = body.get("alternatives") or []
    if not isinstance(alternatives, list):
        raise MalformedQuestionError("'alternatives' must be a list.")

    choices: list[str] = []
    letters: list[str] = []
    for alternative in alternatives:
        if not isinstance(alternative, Mapping):
            raise MalformedQuestionError("Each alternative must be an object with text and letter.")
        choices.append(_clean_text(alternative.get("text")))
        letters.append(_clean_letter(alternative.get("letter")))
    if len(choices) < MIN_CHOICES:
        raise MalformedQuestionError(f"Question needs at least {MIN_CHOICES} choices.")

    correct_letter = _clean_letter(body.get("correct_answer"))
    if not correct_letter:
        raise MalformedQuestionError("Generated record has no correct answer letter.")

    question_id = _require_id(raw)
    correct_index = next((i for i, letter in enumerate(letters) if letter == correct_letter), None)
    defaulted = correct_index is None
    if defaulted:
        logger.warning(
            "Question %s: correct answer %r matches no alternative; defaulting to choice A.",
            question_id,
            correct_letter,
        )
        correct_index = 0

    return Question(
        id=question_id,
        prompt=_require_prompt(body.get("statement")),
        choices=tuple(choices),
        correct_choice_index=correct_index,
        subject_label=subject_label,
        correct_index_defaulted=defaulted,
    )


def normalize_stored_row(raw: Mapping[str, Any], subject_label: str = "") -> Question:
    choices: list[str] = []
    for field_name in _STORED_OPTION_FIELDS:
        value = raw.get(field_name)
        if value is None:
            raise MalformedQuestionError(f"Stored question is missing '{field_name}'.")
        choices.append(_clean_text(value))

    correct_letter = _clean_letter(raw.get("correct_answer"))
    if correct_letter not in STORED_OPTION_LETTERS:
        raise MalformedQuestionError(
            f"Stored correct answer must be one of {', '.join(STORED_OPTION_LETTERS)}."
        )

    return Question(
        id=_require_id(raw),
        prompt=_require_prompt(raw.get("question_text")),
        choices=tuple(choices),
        correct_choice_index=STORED_OPTION_LETTERS.index(correct_letter),
        subject_label=subject_label,
    )


def _require_id(raw: Mapping[str, Any]) -> str:
    value = raw.get("id")
    if value is None or str(value).strip() == "":
        raise MalformedQuestionError("Question record has no id.")
    return str(value)


def _require_prompt(value: Any) -> str:
    prompt = _clean_text(value)
    if not prompt:
        raise MalformedQuestionError("Question text cannot be empty.")
    return prompt


def _clean_text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _clean_letter(value: Any) -> str:
    return _clean_text(value).upper()
