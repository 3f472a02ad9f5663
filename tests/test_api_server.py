from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from activity_app.constants.activity_constants import (
    TABLE_ACTIVITIES,
    TABLE_STUDENT_ANSWERS,
    TABLE_SUBJECTS,
    TABLE_SUBMISSIONS,
)
from activity_app.core.activity_manager import ActivityManager
from activity_app.core.errors import GenerationError
from activity_app.server.api_server import create_api_app

from conftest import make_question, seed_activity


class FakeQuestionClient:
    def __init__(self, questions=None, error=None):
        self.questions = questions or []
        self.error = error

    def fetch_questions(self, subject, count, subject_label=None):
        if self.error is not None:
            raise self.error
        return self.questions[:count]


@pytest.fixture
def make_client(storage):
    def factory(questions=None, error=None):
        manager = ActivityManager(storage, question_client=FakeQuestionClient(questions, error))
        return TestClient(create_api_app(manager))

    return factory


def test_custom_activity_flow(make_client, three_questions, storage):
    client = make_client(three_questions)

    started = client.post("/activities/custom", json={"subject": "matematica", "count": 3})
    assert started.status_code == 201
    view = started.json()
    session_id = view["session_id"]
    assert view["question_number"] == 1
    assert view["question_count"] == 3
    assert view["answered"] is False
    assert view["correct_choice_index"] is None
    assert "<p>" in view["prompt_html"]

    for choice in [1, 0, 2]:
        answered = client.post(f"/sessions/{session_id}/answer", json={"choice_index": choice})
        assert answered.status_code == 200
        assert answered.json()["accepted"] is True
        repeat = client.post(f"/sessions/{session_id}/answer", json={"choice_index": choice})
        assert repeat.json()["accepted"] is False
        advanced = client.post(f"/sessions/{session_id}/advance")
        assert advanced.status_code == 200

    assert advanced.json() == {"finished": True, "recorded": False, "submission_id": None, "score": 67}
    assert storage.writes == []
    assert client.get(f"/sessions/{session_id}").status_code == 404


def test_answer_errors(make_client):
    client = make_client([make_question("q1", 0, choice_count=2)])
    session_id = client.post("/activities/custom", json={"subject": "ingles"}).json()["session_id"]

    assert client.post(f"/sessions/{session_id}/advance").status_code == 409
    assert client.post(f"/sessions/{session_id}/answer", json={"choice_index": 5}).status_code == 422
    assert client.post("/sessions/unknown/answer", json={"choice_index": 0}).status_code == 404


def test_custom_activity_errors(make_client):
    assert make_client([]).post("/activities/custom", json={"subject": "ingles"}).status_code == 422
    failing = make_client(error=GenerationError("backend down"))
    response = failing.post("/activities/custom", json={"subject": "ingles"})
    assert response.status_code == 502
    assert response.json()["detail"] == "backend down"


def test_assigned_activity_submission_and_grading(make_client, storage):
    activity_id = seed_activity(storage, correct_letters=("B", "A"))
    client = make_client()

    assert client.post(f"/activities/{activity_id}/sessions", json={}).status_code == 401
    assert client.post("/activities/missing/sessions", json={"student_id": "s"}).status_code == 404

    started = client.post(f"/activities/{activity_id}/sessions", json={"student_id": "stu-1"})
    session_id = started.json()["session_id"]
    for choice in [1, 1]:
        client.post(f"/sessions/{session_id}/answer", json={"choice_index": choice})
        result = client.post(f"/sessions/{session_id}/advance").json()

    assert result["recorded"] is True
    assert result["score"] == 50
    assert len(storage.writes_to(TABLE_STUDENT_ANSWERS)) == 2

    teacher = {"X-User-Id": "t-1", "X-User-Role": "teacher"}
    assert client.get("/submissions/pending").status_code == 401
    pending = client.get("/submissions/pending", headers=teacher).json()
    assert [item["id"] for item in pending] == [result["submission_id"]]
    assert pending[0]["activity_title"] == "Prova de Matemática"

    graded = client.post(
        f"/submissions/{result['submission_id']}/grade",
        json={"score": 8.5, "feedback": "Bom trabalho", "scale": 10},
        headers=teacher,
    )
    assert graded.status_code == 200
    assert graded.json()["status"] == "graded"
    assert graded.json()["score"] == 85.0
    assert client.get("/submissions/pending", headers=teacher).json() == []


def test_grade_rejections(make_client, storage):
    client = make_client()
    submission_id = storage.insert(
        TABLE_SUBMISSIONS,
        {"activity_id": "a", "student_id": "s", "status": "pending", "score": 10.0},
    )["id"]
    student = {"X-User-Id": "s", "X-User-Role": "student"}
    teacher = {"X-User-Id": "t-1", "X-User-Role": "teacher"}

    url = f"/submissions/{submission_id}/grade"
    assert client.post(url, json={"score": 50, "feedback": "x"}).status_code == 401
    assert client.post(url, json={"score": 50, "feedback": "x"}, headers={"X-User-Id": "t-1"}).status_code == 401
    assert client.post(url, json={"score": 150, "feedback": "x"}, headers=teacher).status_code == 422
    assert client.post(url, json={"score": 50, "feedback": " "}, headers=teacher).status_code == 422
    assert client.post(url, json={"score": 50, "feedback": "x"}, headers=student).status_code == 403
    missing = client.post("/submissions/nope/grade", json={"score": 50, "feedback": "x"}, headers=teacher)
    assert missing.status_code == 502
    assert storage.select(TABLE_SUBMISSIONS, {"id": submission_id})[0]["status"] == "pending"


def test_partial_persistence_can_be_retried(make_client, storage):
    activity_id = seed_activity(storage, correct_letters=("A",))
    client = make_client()
    session_id = client.post(
        f"/activities/{activity_id}/sessions", json={"student_id": "stu-1"}
    ).json()["session_id"]
    client.post(f"/sessions/{session_id}/answer", json={"choice_index": 0})

    storage.fail_tables.add(TABLE_STUDENT_ANSWERS)
    failed = client.post(f"/sessions/{session_id}/advance")
    assert failed.status_code == 502
    submission_id = failed.json()["detail"]["submission_id"]

    storage.fail_tables.clear()
    retried = client.post(f"/sessions/{session_id}/record")
    assert retried.status_code == 200
    assert retried.json()["submission_id"] == submission_id
    assert retried.json()["score"] == 100


def test_populate_question_bank(make_client, three_questions, storage):
    client = make_client(three_questions)
    teacher = {"X-User-Id": "t-1", "X-User-Role": "teacher"}
    student = {"X-User-Id": "s-1", "X-User-Role": "student"}

    anonymous = client.post("/subjects/mat/questions", json={"subject": "matematica"})
    assert anonymous.status_code == 401
    denied = client.post("/subjects/mat/questions", json={"subject": "matematica"}, headers=student)
    assert denied.status_code == 403
    assert storage.select("questions") == []

    response = client.post(
        "/subjects/mat/questions", json={"subject": "matematica", "count": 2}, headers=teacher
    )
    assert response.status_code == 201
    assert response.json()["count"] == 2
    assert response.json()["skipped_ids"] == []
    assert len(storage.select("questions", {"subject_id": "mat"})) == 2


def test_populate_reports_skipped_questions(make_client, storage):
    client = make_client([make_question("g1", 0), make_question("g2", 1, choice_count=3)])

    response = client.post(
        "/subjects/mat/questions",
        json={"subject": "matematica", "count": 2},
        headers={"X-User-Id": "t-1", "X-User-Role": "teacher"},
    )

    assert response.status_code == 201
    assert response.json()["count"] == 1
    assert response.json()["skipped_ids"] == ["g2"]


def test_list_activities(make_client, storage):
    storage.insert(TABLE_SUBJECTS, {"id": "mat", "name": "Matemática"})
    storage.insert(
        TABLE_ACTIVITIES,
        {
            "id": "act-9",
            "title": "Revisão",
            "subject_id": "mat",
            "created_at": datetime(2025, 5, 2, tzinfo=timezone.utc),
        },
    )
    seed_activity(storage)
    client = make_client()

    activities = client.get("/activities").json()

    assert [a["id"] for a in activities] == ["act-1", "act-9"]
    assert activities[1] == {
        "id": "act-9",
        "title": "Revisão",
        "description": None,
        "subject_id": "mat",
        "subject_name": "Matemática",
    }


@pytest.mark.parametrize("count", [0, 31])
def test_custom_activity_count_out_of_range(make_client, three_questions, count):
    client = make_client(three_questions)

    response = client.post("/activities/custom", json={"subject": "matematica", "count": count})

    assert response.status_code == 422
