"""Tests for the course certification evaluator (F3)."""

import pytest

from quizcert.config.app_config import clear_config_cache
from quizcert.core.attempt_lifecycle import start_attempt, submit_attempt
from quizcert.core.certification import (
    best_results_by_item,
    compute_course_standing,
    evaluate_course_certificate,
    select_gating_item_ids,
)
from quizcert.db.authoring_repository import CourseItemRecord
from quizcert.db.certificates_repository import get_certificate
from quizcert.db.database import get_db
from quizcert.db.results_repository import ResultRecord

from conftest import COURSE_ID, ORG_ID, USER_ID

ALL_CORRECT = {"Q1": "a", "Q2": True}
HALF_CORRECT = {"Q1": "a", "Q2": False}


def _item(item_id, is_required=False):
    return CourseItemRecord(
        item_id=item_id,
        organization_id=ORG_ID,
        course_id=COURSE_ID,
        item_type="quiz",
        title=item_id,
        is_required=is_required,
    )


def _result(item_id, score, graded_at, earned=None, total=10, attempt_id=None):
    return ResultRecord(
        result_id=f"res-{item_id}-{graded_at}",
        attempt_id=attempt_id or f"att-{item_id}-{graded_at}",
        organization_id=ORG_ID,
        course_id=COURSE_ID,
        item_id=item_id,
        user_id=USER_ID,
        graded_at=graded_at,
        score_percent=score,
        passed=score >= 80,
        earned_points=earned if earned is not None else score * total // 100,
        total_points=total,
    )


def _take(caller, item_id, answers):
    start_attempt(caller, COURSE_ID, item_id)
    return submit_attempt(caller, COURSE_ID, item_id, answers=answers)


def _stored_certificate():
    with get_db() as conn:
        return get_certificate(conn, USER_ID, COURSE_ID)


@pytest.fixture
def no_auto_issue(monkeypatch, tmp_path, db_path):
    """Disable the post-submit evaluator so tests drive it explicitly."""
    config_file = tmp_path / "quizcert.yaml"
    config_file.write_text("certificates:\n  auto_issue: false\n", encoding="utf-8")
    monkeypatch.setenv("QUIZCERT_CONFIG", str(config_file))
    clear_config_cache()


class TestGatingSelection:
    """Tests for select_gating_item_ids."""

    def test_required_quizzes_gate(self):
        items = [_item("a", True), _item("b"), _item("c", True)]
        assert select_gating_item_ids(items) == ["a", "c"]

    def test_all_quizzes_when_none_required(self):
        items = [_item("a"), _item("b")]
        assert select_gating_item_ids(items) == ["a", "b"]


class TestBestResults:
    """Tests for best_results_by_item."""

    def test_highest_score_wins(self):
        results = [
            _result("a", 90, "2026-01-01T00:00:00+00:00"),
            _result("a", 60, "2026-01-02T00:00:00+00:00"),
        ]
        assert best_results_by_item(results)["a"].score_percent == 90

    def test_tie_broken_by_latest(self):
        results = [
            _result("a", 80, "2026-01-02T00:00:00+00:00", earned=8, attempt_id="late"),
            _result("a", 80, "2026-01-01T00:00:00+00:00", earned=4, total=5, attempt_id="early"),
        ]
        assert best_results_by_item(results)["a"].attempt_id == "late"


class TestComputeCourseStanding:
    """Tests for compute_course_standing."""

    def test_incomplete_when_gating_quiz_missing(self):
        items = [_item("a", True), _item("b", True)]
        standing = compute_course_standing(items, [_result("a", 100, "2026-01-01")])

        assert standing.complete is False
        assert standing.missing_item_ids == ["b"]
        assert standing.course_percent is None

    def test_sums_points_of_best_results(self):
        items = [_item("a"), _item("b")]
        results = [
            _result("a", 50, "2026-01-01", earned=5, total=10),
            _result("a", 100, "2026-01-02", earned=10, total=10),
            _result("b", 40, "2026-01-01", earned=2, total=5),
        ]
        standing = compute_course_standing(items, results)

        assert standing.complete is True
        assert standing.earned_points == 12
        assert standing.total_points == 15
        assert standing.course_percent == 80

    def test_non_gating_results_ignored(self):
        items = [_item("a", True), _item("b")]
        results = [
            _result("a", 100, "2026-01-01", earned=10, total=10),
            _result("b", 0, "2026-01-01", earned=0, total=90),
        ]
        standing = compute_course_standing(items, results)

        assert standing.course_percent == 100

    def test_no_quizzes(self):
        standing = compute_course_standing([], [])
        assert standing.complete is False


class TestEvaluateCourseCertificate:
    """Tests for evaluate_course_certificate against the database."""

    @pytest.fixture
    def course(self, no_auto_issue, enroll, add_quiz, configure_certificate):
        """Two required quizzes, threshold 70%."""
        enroll()
        add_quiz("quiz-a", is_required=True)
        add_quiz("quiz-b", is_required=True)
        add_quiz("quiz-c")
        configure_certificate(threshold=70)

    def test_required_quiz_unattempted(self, course, caller):
        """Passing quiz A alone is not enough while B has no result."""
        _take(caller, "quiz-a", ALL_CORRECT)

        evaluation = evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID)

        assert evaluation.outcome == "incomplete"
        assert _stored_certificate() is None

    def test_issued_when_threshold_met(self, course, caller):
        _take(caller, "quiz-a", ALL_CORRECT)
        _take(caller, "quiz-b", HALF_CORRECT)

        evaluation = evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID)

        assert evaluation.outcome == "issued"
        assert evaluation.course_percent == 75
        cert = _stored_certificate()
        assert cert.status == "valid"
        assert cert.course_score_percent == 75
        assert cert.template_id == "tpl-1"

    def test_below_threshold(self, course, caller):
        _take(caller, "quiz-a", HALF_CORRECT)
        _take(caller, "quiz-b", HALF_CORRECT)

        evaluation = evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID)

        assert evaluation.outcome == "below_threshold"
        assert evaluation.course_percent == 50
        assert _stored_certificate() is None

    def test_idempotent_and_issued_at_stable(self, course, caller):
        _take(caller, "quiz-a", ALL_CORRECT)
        _take(caller, "quiz-b", ALL_CORRECT)

        first = evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID, now="2026-01-01T00:00:00+00:00")
        second = evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID, now="2026-09-01T00:00:00+00:00")

        assert first.outcome == "issued"
        assert second.outcome == "refreshed"
        assert second.certificate.certificate_id == first.certificate.certificate_id
        assert _stored_certificate().issued_at == "2026-01-01T00:00:00+00:00"

        with get_db() as conn:
            count = conn.execute("SELECT COUNT(*) AS n FROM certificates").fetchone()["n"]
        assert count == 1

    def test_refresh_updates_score_and_template(self, course, caller, configure_certificate):
        _take(caller, "quiz-a", ALL_CORRECT)
        _take(caller, "quiz-b", HALF_CORRECT)
        evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID, now="2026-01-01T00:00:00+00:00")

        _take(caller, "quiz-b", ALL_CORRECT)
        configure_certificate(threshold=70, template_id="tpl-2")
        evaluation = evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID)

        assert evaluation.outcome == "refreshed"
        cert = _stored_certificate()
        assert cert.course_score_percent == 100
        assert cert.template_id == "tpl-2"
        assert cert.issued_at == "2026-01-01T00:00:00+00:00"

    def test_never_revoked(self, course, caller, configure_certificate):
        """Raising the threshold later leaves an issued certificate valid."""
        _take(caller, "quiz-a", ALL_CORRECT)
        _take(caller, "quiz-b", HALF_CORRECT)
        evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID)

        configure_certificate(threshold=90)
        evaluation = evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID)

        assert evaluation.outcome == "below_threshold"
        cert = _stored_certificate()
        assert cert.status == "valid"
        assert cert.course_score_percent == 75

    def test_best_result_counts(self, course, caller):
        """A worse retake does not lower the course score."""
        _take(caller, "quiz-a", ALL_CORRECT)
        _take(caller, "quiz-a", {})
        _take(caller, "quiz-b", ALL_CORRECT)

        evaluation = evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID)

        assert evaluation.course_percent == 100


class TestNotConfigured:
    """The evaluator does nothing until the course is fully configured."""

    @pytest.fixture
    def passed_course(self, no_auto_issue, enroll, add_quiz, caller):
        enroll()
        add_quiz("quiz-a")
        _take(caller, "quiz-a", ALL_CORRECT)

    def test_no_settings(self, passed_course):
        assert evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID).outcome == "not_configured"

    def test_disabled(self, passed_course, configure_certificate):
        configure_certificate(enabled=False)
        assert evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID).outcome == "not_configured"

    @pytest.mark.parametrize("threshold", [None, 0])
    def test_no_threshold(self, passed_course, configure_certificate, threshold):
        configure_certificate(threshold=threshold)
        assert evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID).outcome == "not_configured"

    def test_no_name_placement(self, passed_course, configure_certificate):
        configure_certificate(name_placement={})
        assert evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID).outcome == "not_configured"

    def test_no_template(self, passed_course, configure_certificate):
        configure_certificate(template_id=None)
        assert evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID).outcome == "not_configured"
        assert _stored_certificate() is None

    def test_fully_configured_issues(self, passed_course, configure_certificate):
        configure_certificate()
        assert evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID).outcome == "issued"


class TestNoQuizzes:
    """A course with certificates enabled but no quizzes."""

    def test_no_quizzes(self, db_path, configure_certificate):
        configure_certificate()
        assert evaluate_course_certificate(ORG_ID, USER_ID, COURSE_ID).outcome == "no_quizzes"


class TestAutoIssueOnSubmit:
    """Certificates are issued by the post-submit hook."""

    def test_submit_issues_certificate(self, enroll, add_quiz, configure_certificate, caller):
        enroll()
        add_quiz("quiz-a")
        configure_certificate(threshold=70)

        outcome = _take(caller, "quiz-a", ALL_CORRECT)

        assert outcome.certificate.outcome == "issued"
        assert _stored_certificate().course_score_percent == 100

    def test_fallback_to_all_quizzes(self, enroll, add_quiz, configure_certificate, caller):
        """With no required quiz every quiz must be attempted."""
        enroll()
        add_quiz("quiz-a")
        add_quiz("quiz-b")
        configure_certificate(threshold=70)

        first = _take(caller, "quiz-a", ALL_CORRECT)
        assert first.certificate.outcome == "incomplete"

        second = _take(caller, "quiz-b", ALL_CORRECT)
        assert second.certificate.outcome == "issued"
