"""State machine walking one student through an activity's questions."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from activity_app.constants.activity_constants import CHOICE_LETTERS
from activity_app.core.errors import EmptyActivityError, InvalidAnswerError, SessionStateError
from activity_app.core.models import AnswerRecord, FinishedSession, Question

logger = logging.getLogger(__name__)


def choice_letter(choice_index: int) -> str:
    """Letter shown for a choice index (0 -> 'A')."""
    if not 0 <= choice_index < len(CHOICE_LETTERS):
        raise InvalidAnswerError(f"Choice index {choice_index} has no letter.")
    return CHOICE_LETTERS[choice_index]


class ActivitySession:
    """Presents questions one at a time and keeps the answer log.

    The session is ``InProgress(current_index, answered)`` until ``advance``
    is called on the last answered question, after which it is ``Finished``
    and rejects every mutation. The answer log is the only tally kept;
    ``correct_count`` is derived from it.
    """

    def __init__(
        self,
        questions: Iterable[Question],
        activity_id: str | None = None,
        student_id: str | None = None,
    ) -> None:
        self._questions: tuple[Question, ...] = tuple(questions)
        if not self._questions:
            raise EmptyActivityError("Activity must contain at least one question.")
        self._activity_id = activity_id
        self._student_id = student_id
        self._current_index: int = 0
        self._answered: bool = False
        self._finished: bool = False
        self._answers: list[AnswerRecord] = []

    @property
    def activity_id(self) -> str | None:
        return self._activity_id

    @property
    def student_id(self) -> str | None:
        return self._student_id

    @property
    def questions(self) -> tuple[Question, ...]:
        return self._questions

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def question_count(self) -> int:
        return len(self._questions)

    def is_answered(self) -> bool:
        return self._answered

    def is_finished(self) -> bool:
        return self._finished

    def is_last_question(self) -> bool:
        return self._current_index == len(self._questions) - 1

    def get_current_question(self) -> Question:
        return self._questions[self._current_index]

    def get_answers(self) -> list[AnswerRecord]:
        return list(self._answers)

    def get_current_answer(self) -> AnswerRecord | None:
        """Answer committed for the current question, if any."""
        if self._answered:
            return self._answers[-1]
        return None

    @property
    def correct_count(self) -> int:
        return sum(1 for answer in self._answers if answer.is_correct)

    @property
    def progress_fraction(self) -> float:
        if self._finished:
            return 1.0
        return (self._current_index + 1) / len(self._questions)

    def submit_answer(self, choice_index: int) -> bool:
        """Commit an answer for the current question.

        Returns True when the answer was recorded and False when the current
        question was already answered, in which case nothing changes.
        """
        if self._finished:
            raise SessionStateError("Activity is already finished.")
        question = self.get_current_question()
        if isinstance(choice_index, bool) or not isinstance(choice_index, int):
            raise InvalidAnswerError("Choice index must be an integer.")
        if not 0 <= choice_index < len(question.choices):
            raise InvalidAnswerError(
                f"Choice index {choice_index} out of range for {len(question.choices)} choices."
            )
        if self._answered:
            return False

        self._answers.append(
            AnswerRecord(
                question_id=question.id,
                chosen_index=choice_index,
                chosen_letter=choice_letter(choice_index),
                is_correct=choice_index == question.correct_choice_index,
            )
        )
        self._answered = True
        return True

    def advance(self) -> bool:
        """Move past the answered question. Returns True once finished."""
        if self._finished:
            raise SessionStateError("Activity is already finished.")
        if not self._answered:
            raise SessionStateError("Answer the current question before advancing.")

        if self.is_last_question():
            self._finished = True
            logger.info(
                "Activity session finished: %d of %d correct.",
                self.correct_count,
                len(self._questions),
            )
            return True

        self._current_index += 1
        self._answered = False
        return False

    def finish_result(self) -> FinishedSession:
        """Snapshot handed to the submission recorder."""
        if not self._finished:
            raise SessionStateError("Activity is not finished yet.")
        return FinishedSession(
            answers=tuple(self._answers),
            total=len(self._questions),
            activity_id=self._activity_id,
            student_id=self._student_id,
        )
