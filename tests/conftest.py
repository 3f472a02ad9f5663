import pytest

from activity_app.constants.activity_constants import (
    TABLE_ACTIVITIES,
    TABLE_ACTIVITY_QUESTIONS,
    TABLE_QUESTIONS,
)
from activity_app.core.errors import StorageError
from activity_app.core.models import Question, UserProfile
from activity_app.core.services.storage import InMemoryStorage

TEACHER = UserProfile(id="t-1", role="teacher")


class FakeStorage(InMemoryStorage):
    """In-memory storage that records writes and can fail chosen tables."""

    def __init__(self):
        super().__init__()
        self.writes = []
        self.fail_tables = set()
        self.fail_selects = set()

    def _check(self, operation, table):
        if table in self.fail_tables:
            raise StorageError(f"{operation} on {table} failed")

    def insert(self, table, row):
        self._check("insert", table)
        self.writes.append(("insert", table, dict(row)))
        return super().insert(table, row)

    def upsert(self, table, rows, conflict_keys):
        self._check("upsert", table)
        for row in rows:
            self.writes.append(("upsert", table, dict(row)))
        return super().upsert(table, rows, conflict_keys)

    def select(self, table, filters=None, order_by=None, descending=False, limit=None):
        if table in self.fail_selects:
            raise StorageError(f"select on {table} failed")
        return super().select(table, filters, order_by, descending, limit)

    def update(self, table, filters, values):
        self._check("update", table)
        self.writes.append(("update", table, dict(values)))
        return super().update(table, filters, values)

    def writes_to(self, table):
        return [write for write in self.writes if write[1] == table]


def make_question(question_id, correct_index, choice_count=4, subject="Matemática"):
    return Question(
        id=question_id,
        prompt=f"Question {question_id}?",
        choices=tuple(f"Option {i}" for i in range(choice_count)),
        correct_choice_index=correct_index,
        subject_label=subject,
    )


def seed_activity(storage, activity_id="act-1", correct_letters=("B", "A", "C")):
    storage.insert(
        TABLE_ACTIVITIES,
        {"id": activity_id, "title": "Prova de Matemática", "description": "Capítulo 3"},
    )
    for position, letter in enumerate(correct_letters):
        question_id = f"{activity_id}-q{position}"
        storage.insert(
            TABLE_QUESTIONS,
            {
                "id": question_id,
                "question_text": f"Stored question {position}",
                "option_a": "alpha",
                "option_b": "beta",
                "option_c": "gamma",
                "option_d": "delta",
                "correct_answer": letter,
            },
        )
        storage.insert(
            TABLE_ACTIVITY_QUESTIONS,
            {"activity_id": activity_id, "question_id": question_id, "position": position},
        )
    return activity_id


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def three_questions():
    return [make_question("q1", 1), make_question("q2", 1), make_question("q3", 2)]
