"""Tests for the quiz attempt endpoints (F4)."""

import pytest
from fastapi.testclient import TestClient

from quizcert.db.database import current_db_path, init_db
from quizcert.web.api import create_app

from conftest import COURSE_ID, ORG_ID, QUIZ_ID, USER_ID, quiz_payload

BASE = f"/api/courses/{COURSE_ID}/quizzes/{QUIZ_ID}"
HEADERS = {"X-User-Id": USER_ID, "X-Organization-Id": ORG_ID}
ALL_CORRECT = {"Q1": "a", "Q2": True}


@pytest.fixture
def client(db_path, seeded_course):
    """Test client bound to the seeded database."""
    with TestClient(create_app(db_path=db_path)) as test_client:
        yield test_client


def _start(client):
    response = client.post(f"{BASE}/attempt", json={"action": "start"}, headers=HEADERS)
    assert response.status_code == 200
    return response.json()["attempt"]


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "0.1.0"
        assert "T" in data["timestamp"]


class TestAttemptAction:
    """Tests for POST /attempt."""

    def test_start_returns_attempt(self, client):
        attempt = _start(client)

        assert attempt["status"] == "in_progress"
        assert attempt["attempt_number"] == 1
        assert attempt["answers_json"] == {}

    def test_start_twice_returns_same_attempt(self, client):
        first = _start(client)
        second = _start(client)
        assert second["id"] == first["id"]

    def test_autosave_acknowledges(self, client):
        attempt = _start(client)

        response = client.post(
            f"{BASE}/attempt",
            json={"action": "autosave", "answers_json": {"Q1": "a"}},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True, "attempt_id": attempt["id"]}

    def test_autosave_without_answers(self, client):
        _start(client)

        response = client.post(f"{BASE}/attempt", json={"action": "autosave"}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"] == {
            "code": "VALIDATION_ERROR",
            "message": "Missing answers.",
        }

    def test_autosave_without_attempt(self, client):
        response = client.post(
            f"{BASE}/attempt",
            json={"action": "autosave", "answers_json": {"Q1": "a"}},
            headers=HEADERS,
        )

        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "no_active_attempt"

    def test_retake(self, client):
        first = _start(client)

        response = client.post(f"{BASE}/attempt", json={"action": "retake"}, headers=HEADERS)

        assert response.status_code == 200
        attempt = response.json()["attempt"]
        assert attempt["id"] != first["id"]
        assert attempt["attempt_number"] == 2

    def test_unknown_action(self, client):
        response = client.post(f"{BASE}/attempt", json={"action": "pause"}, headers=HEADERS)
        assert response.status_code == 422

    def test_anonymous(self, client):
        response = client.post(f"{BASE}/attempt", json={"action": "start"})
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "UNAUTHORIZED"

    def test_wrong_role(self, client):
        headers = {**HEADERS, "X-User-Role": "instructor"}
        response = client.post(f"{BASE}/attempt", json={"action": "start"}, headers=headers)
        assert response.status_code == 403

    def test_not_enrolled(self, client):
        headers = {**HEADERS, "X-User-Id": "stranger"}
        response = client.post(f"{BASE}/attempt", json={"action": "start"}, headers=headers)
        assert response.status_code == 403

    def test_unknown_quiz(self, client):
        response = client.post(
            f"/api/courses/{COURSE_ID}/quizzes/nope/attempt",
            json={"action": "start"},
            headers=HEADERS,
        )
        assert response.status_code == 404
        assert response.json()["detail"]["message"] == "Quiz not found."


class TestSubmit:
    """Tests for POST /submit."""

    def test_submit_grades(self, client):
        _start(client)

        response = client.post(f"{BASE}/submit", json={"answers_json": ALL_CORRECT}, headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["score_percent"] == 100
        assert data["passed"] is True
        assert data["passing_grade_percent"] == 80
        assert data["earned_points"] == 2
        assert data["total_points"] == 2
        assert [q["question_id"] for q in data["per_question"]] == ["Q1", "Q2"]
        assert data["state"]["best_score_percent"] == 100
        assert data["state"]["passed_at"] is not None

    def test_submit_without_body(self, client):
        _start(client)

        response = client.post(f"{BASE}/submit", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["score_percent"] == 0

    def test_submit_wrong_answer_example(self, client):
        _start(client)

        response = client.post(f"{BASE}/submit", json={"answers_json": {"Q1": "b"}}, headers=HEADERS)

        data = response.json()
        assert data["score_percent"] == 0
        assert data["passed"] is False
        assert data["per_question"][1]["missing"] is True

    def test_double_submit(self, client):
        attempt = _start(client)
        body = {"answers_json": ALL_CORRECT, "attempt_id": attempt["id"]}

        first = client.post(f"{BASE}/submit", json=body, headers=HEADERS)
        second = client.post(f"{BASE}/submit", json=body, headers=HEADERS)

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["detail"]["reason"] == "already_submitted"

    def test_submit_without_attempt(self, client):
        response = client.post(f"{BASE}/submit", json={}, headers=HEADERS)
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "no_active_attempt"

    def test_attempts_exhausted(self, client, add_quiz):
        add_quiz(payload=quiz_payload(attempts_allowed=1))
        _start(client)
        client.post(f"{BASE}/submit", json={"answers_json": ALL_CORRECT}, headers=HEADERS)

        response = client.post(f"{BASE}/attempt", json={"action": "start"}, headers=HEADERS)

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["reason"] == "attempts_exhausted"
        assert detail["message"] == "Attempts limit reached."


class TestQuizStatus:
    """Tests for GET /attempt."""

    def test_status(self, client):
        attempt = _start(client)

        response = client.get(f"{BASE}/attempt", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["attempts_allowed"] == 0
        assert data["submitted_attempts_count"] == 0
        assert data["attempt"]["id"] == attempt["id"]
        assert data["state"]["last_attempt_id"] == attempt["id"]

    def test_status_after_submit(self, client):
        _start(client)
        client.post(f"{BASE}/submit", json={"answers_json": ALL_CORRECT}, headers=HEADERS)

        data = client.get(f"{BASE}/attempt", headers=HEADERS).json()

        assert data["submitted_attempts_count"] == 1
        assert data["attempt"] is None
        assert data["state"]["best_score_percent"] == 100


class TestAttemptReview:
    """Tests for GET /api/quiz-attempts/{attempt_id}."""

    def test_review(self, client):
        attempt = _start(client)
        client.post(f"{BASE}/submit", json={"answers_json": {"Q1": "b"}}, headers=HEADERS)

        response = client.get(f"/api/quiz-attempts/{attempt['id']}", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["attempt"]["status"] == "submitted"
        assert data["result"]["score_percent"] == 0
        assert data["quiz"] == {"id": QUIZ_ID, "course_id": COURSE_ID, "feedback_mode": "default"}
        assert all(q.get("correct_answer") is None for q in data["result"]["per_question"])

    def test_review_reveal(self, client, add_quiz):
        add_quiz(payload=quiz_payload(feedback_mode="reveal"))
        attempt = _start(client)
        client.post(f"{BASE}/submit", json={"answers_json": {"Q1": "b"}}, headers=HEADERS)

        data = client.get(f"/api/quiz-attempts/{attempt['id']}", headers=HEADERS).json()

        assert data["result"]["per_question"][0]["correct_answer"] == {
            "kind": "options",
            "option_ids": ["a"],
        }

    def test_review_unknown(self, client):
        response = client.get("/api/quiz-attempts/missing", headers=HEADERS)
        assert response.status_code == 404

    def test_review_other_user(self, client, enroll):
        attempt = _start(client)
        enroll(user_id="learner-2")
        headers = {**HEADERS, "X-User-Id": "learner-2"}

        response = client.get(f"/api/quiz-attempts/{attempt['id']}", headers=headers)

        assert response.status_code == 403


class TestAppDatabase:
    """The app keeps the database selected before startup."""

    def test_default_app_uses_selected_database(self, tmp_path, db_path):
        chosen = tmp_path / "chosen.db"
        init_db(chosen)

        with TestClient(create_app()) as test_client:
            assert test_client.get("/health").status_code == 200

        assert current_db_path() == chosen
