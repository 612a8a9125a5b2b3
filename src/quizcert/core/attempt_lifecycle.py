"""Attempt lifecycle controller.

Responsibilities:
- Start, autosave, retake and submit quiz attempts for enrolled learners
- Enforce the attempts quota (0 = unlimited) at start/retake and again at
  submit, which is the hard gate
- Keep at most one in-progress attempt per (user, course, item); concurrent
  starts converge on one row through the database uniqueness constraint
- On submit: grade, append the result and fold it into the quiz state in a
  single transaction, then run post-commit hooks (submission event,
  certificate evaluation) whose failures are logged and swallowed

Attempt states: in_progress -> submitted | abandoned (superseded by retake).
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Generator

import structlog

from quizcert.config.app_config import load_app_config
from quizcert.core.certification import CertificateEvaluation, evaluate_course_certificate
from quizcert.core.errors import (
    AlreadySubmittedError,
    AttemptsExhaustedError,
    ForbiddenError,
    InternalError,
    InvalidRequestError,
    NoActiveAttemptError,
    NotFoundError,
    UnauthorizedError,
)
from quizcert.core.grader import GradeReport, grade_answers
from quizcert.core.hooks import EventSink, LogEventSink, SubmissionEvent, run_and_swallow
from quizcert.core.quiz_definition import QuizDefinition, parse_quiz_definition
from quizcert.core.quiz_state import apply_graded_submission
from quizcert.db import attempts_repository as attempts
from quizcert.db import results_repository as results
from quizcert.db import state_repository as states
from quizcert.db.attempts_repository import AttemptRecord
from quizcert.db.authoring_repository import get_course_item, is_actively_enrolled
from quizcert.db.database import get_db
from quizcert.db.results_repository import ResultRecord
from quizcert.db.state_repository import QuizStateRecord

logger = structlog.get_logger(__name__)

# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class Caller:
    """Authenticated caller of a lifecycle operation."""

    user_id: str
    organization_id: str | None
    role: str = "member"


@dataclass
class StartResult:
    """Result of start/retake."""

    attempt: AttemptRecord
    created: bool


@dataclass
class SubmitOutcome:
    """Result of a successful submit."""

    attempt_id: str
    passed: bool
    passing_grade_percent: int
    grade: GradeReport
    state: QuizStateRecord
    certificate: CertificateEvaluation | None = None

    @property
    def score_percent(self) -> int:
        return self.grade.score_percent

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "attempt_id": self.attempt_id,
            "score_percent": self.grade.score_percent,
            "passed": self.passed,
            "passing_grade_percent": self.passing_grade_percent,
            "earned_points": self.grade.earned_points,
            "total_points": self.grade.total_points,
            "per_question": [q.to_dict() for q in self.grade.per_question],
            "state": self.state.to_dict(),
        }


@dataclass
class QuizStatus:
    """Learner-facing status of one quiz."""

    attempts_allowed: int
    submitted_attempts_count: int
    passing_grade_percent: int
    time_limit_seconds: int
    attempt: AttemptRecord | None = None
    deadline_at: str | None = None
    state: QuizStateRecord | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "attempts_allowed": self.attempts_allowed,
            "submitted_attempts_count": self.submitted_attempts_count,
            "passing_grade_percent": self.passing_grade_percent,
            "time_limit_seconds": self.time_limit_seconds,
            "attempt": self.attempt.to_dict() if self.attempt else None,
            "deadline_at": self.deadline_at,
            "state": self.state.to_dict() if self.state else None,
        }


@dataclass
class AttemptReview:
    """A past attempt with its graded result."""

    attempt: AttemptRecord
    passing_grade_percent: int
    feedback_mode: str
    result: ResultRecord | None = None
    per_question: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        attempt = {
            "id": self.attempt.attempt_id,
            "attempt_number": self.attempt.attempt_number,
            "status": self.attempt.status,
            "started_at": self.attempt.started_at,
            "submitted_at": self.attempt.submitted_at,
        }
        if self.result is None:
            result = {
                "graded_at": "",
                "score_percent": 0,
                "passed": False,
                "passing_grade_percent": self.passing_grade_percent,
                "earned_points": 0,
                "total_points": 0,
                "per_question": [],
            }
        else:
            result = {
                "graded_at": self.result.graded_at,
                "score_percent": self.result.score_percent,
                "passed": self.result.passed,
                "passing_grade_percent": self.passing_grade_percent,
                "earned_points": self.result.earned_points,
                "total_points": self.result.total_points,
                "per_question": self.per_question,
            }
        return {
            "attempt": attempt,
            "result": result,
            "quiz": {
                "id": self.attempt.item_id,
                "course_id": self.attempt.course_id,
                "feedback_mode": self.feedback_mode,
            },
        }


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _transaction(operation: str, immediate: bool = True) -> Generator[sqlite3.Connection, None, None]:
    """Run a lifecycle step in one transaction; persistence errors become InternalError."""
    try:
        with get_db(immediate=immediate) as conn:
            yield conn
    except sqlite3.Error as e:
        logger.error("attempts.persistence_failed", operation=operation, error=str(e))
        raise InternalError(f"Failed to {operation}.") from e


def _require_member(caller: Caller | None) -> str:
    """Validate the caller and return its organization ID."""
    if caller is None or not caller.user_id:
        raise UnauthorizedError()
    if caller.role != "member" or not caller.organization_id:
        raise ForbiddenError()
    return caller.organization_id


def _load_quiz(
    conn: sqlite3.Connection,
    caller: Caller,
    organization_id: str,
    course_id: str,
    item_id: str,
) -> QuizDefinition:
    """Check enrollment and quiz ownership, then normalize the quiz payload."""
    if not is_actively_enrolled(conn, caller.user_id, course_id):
        raise ForbiddenError()

    item = get_course_item(conn, item_id)
    if item is None:
        raise NotFoundError("Quiz not found.")
    if item.course_id != course_id or item.item_type != "quiz":
        raise InvalidRequestError("Invalid quiz.")
    if item.organization_id != organization_id:
        raise ForbiddenError()

    return parse_quiz_definition(item.item_id, item.payload, load_app_config().quiz)


def _check_quota(
    conn: sqlite3.Connection,
    caller: Caller,
    course_id: str,
    item_id: str,
    attempts_allowed: int,
) -> None:
    if attempts_allowed <= 0:
        return
    submitted = attempts.count_submitted_attempts(conn, caller.user_id, course_id, item_id)
    if submitted >= attempts_allowed:
        logger.warning(
            "attempts.quota_exhausted",
            user_id=caller.user_id,
            item_id=item_id,
            submitted=submitted,
            attempts_allowed=attempts_allowed,
        )
        raise AttemptsExhaustedError()


def _validate_answers(answers: Any) -> dict[str, Any]:
    """Check the answer mapping and coerce it to a JSON-storable shape.

    Multiple-choice selections may arrive as sets or tuples; they are stored
    as lists (sets sorted, tuples in order).
    """
    if not isinstance(answers, dict) or not all(isinstance(k, str) for k in answers):
        raise InvalidRequestError("Invalid answers.")

    normalized: dict[str, Any] = {}
    for question_id, value in answers.items():
        if isinstance(value, (set, frozenset)):
            value = sorted(value, key=str)
        elif isinstance(value, tuple):
            value = list(value)
        normalized[question_id] = value

    try:
        json.dumps(normalized)
    except (TypeError, ValueError) as e:
        raise InvalidRequestError("Invalid answers.") from e
    return normalized


def _raise_stale(attempt: AttemptRecord | None, attempt_id: str) -> None:
    """Report an attempt that is no longer in progress."""
    if attempt is not None and attempt.status == attempts.STATUS_SUBMITTED:
        logger.warning("attempts.already_submitted", attempt_id=attempt_id)
        raise AlreadySubmittedError()
    raise NoActiveAttemptError()


def _create_attempt(
    conn: sqlite3.Connection,
    caller: Caller,
    organization_id: str,
    course_id: str,
    item_id: str,
    answers: dict[str, Any] | None,
) -> StartResult:
    attempt, created = attempts.insert_or_get_active_attempt(
        conn,
        organization_id=organization_id,
        course_id=course_id,
        item_id=item_id,
        user_id=caller.user_id,
        attempt_number=attempts.next_attempt_number(conn, caller.user_id, course_id, item_id),
        started_at=_now(),
        answers=answers,
    )
    if created:
        states.touch_last_attempt(
            conn, organization_id, caller.user_id, course_id, item_id, attempt.attempt_id
        )
    return StartResult(attempt=attempt, created=created)


# =============================================================================
# OPERATIONS
# =============================================================================


def start_attempt(
    caller: Caller | None,
    course_id: str,
    item_id: str,
    answers: dict[str, Any] | None = None,
) -> StartResult:
    """Start a quiz attempt, or return the one already in progress.

    Args:
        caller: Authenticated learner
        course_id: Course the quiz belongs to
        item_id: Quiz item
        answers: Optional initial answers for a newly created attempt

    Returns:
        StartResult; created is False when an in-progress attempt was reused

    Raises:
        AttemptsExhaustedError: Submitted attempts already meet the quota
    """
    organization_id = _require_member(caller)
    if answers is not None:
        answers = _validate_answers(answers)

    with _transaction("start attempt") as conn:
        definition = _load_quiz(conn, caller, organization_id, course_id, item_id)

        active = attempts.get_active_attempt(conn, caller.user_id, course_id, item_id)
        if active is not None:
            return StartResult(attempt=active, created=False)

        _check_quota(conn, caller, course_id, item_id, definition.settings.attempts_allowed)
        result = _create_attempt(conn, caller, organization_id, course_id, item_id, answers)

    logger.info(
        "attempts.started",
        attempt_id=result.attempt.attempt_id,
        attempt_number=result.attempt.attempt_number,
        user_id=caller.user_id,
        item_id=item_id,
        created=result.created,
    )
    return result


def retake_attempt(
    caller: Caller | None,
    course_id: str,
    item_id: str,
    answers: dict[str, Any] | None = None,
) -> StartResult:
    """Abandon the in-progress attempt (if any) and start a fresh one.

    The quota is checked before anything is abandoned.
    """
    organization_id = _require_member(caller)
    if answers is not None:
        answers = _validate_answers(answers)

    with _transaction("retake attempt") as conn:
        definition = _load_quiz(conn, caller, organization_id, course_id, item_id)
        _check_quota(conn, caller, course_id, item_id, definition.settings.attempts_allowed)

        active = attempts.get_active_attempt(conn, caller.user_id, course_id, item_id)
        if active is not None:
            abandoned = run_and_swallow(
                "abandon_attempt", attempts.mark_abandoned, conn, active.attempt_id
            )
            if abandoned:
                logger.info("attempts.abandoned", attempt_id=active.attempt_id)

        result = _create_attempt(conn, caller, organization_id, course_id, item_id, answers)

    logger.info(
        "attempts.retaken",
        attempt_id=result.attempt.attempt_id,
        attempt_number=result.attempt.attempt_number,
        user_id=caller.user_id,
        item_id=item_id,
    )
    return result


def autosave_attempt(
    caller: Caller | None,
    course_id: str,
    item_id: str,
    answers: dict[str, Any] | None,
) -> str:
    """Replace the in-progress attempt's answers wholesale.

    Returns:
        ID of the attempt that was saved

    Raises:
        InvalidRequestError: No answers payload
        NoActiveAttemptError: Nothing in progress to save into
    """
    organization_id = _require_member(caller)
    if answers is None:
        raise InvalidRequestError("Missing answers.")
    answers = _validate_answers(answers)

    with _transaction("save answers") as conn:
        _load_quiz(conn, caller, organization_id, course_id, item_id)

        active = attempts.get_active_attempt(conn, caller.user_id, course_id, item_id)
        if active is None or not attempts.replace_answers(conn, active.attempt_id, answers):
            raise NoActiveAttemptError()

        states.touch_last_attempt(
            conn, organization_id, caller.user_id, course_id, item_id, active.attempt_id
        )

    return active.attempt_id


def submit_attempt(
    caller: Caller | None,
    course_id: str,
    item_id: str,
    answers: dict[str, Any] | None = None,
    attempt_id: str | None = None,
    event_sink: EventSink | None = None,
) -> SubmitOutcome:
    """Submit the in-progress attempt for grading.

    Args:
        caller: Authenticated learner
        course_id: Course the quiz belongs to
        item_id: Quiz item
        answers: Optional final answers, flushed before grading
        attempt_id: Attempt the client believes is in progress; when given,
            a stale ID is reported as AlreadySubmittedError
        event_sink: Receiver for the submission event

    Returns:
        SubmitOutcome with grade, pass flag and updated quiz state

    Raises:
        NoActiveAttemptError: Nothing in progress
        AttemptsExhaustedError: Quota already met
        AlreadySubmittedError: The attempt left in_progress before this
            submit could apply
        InternalError: Persistence failure; nothing was recorded
    """
    organization_id = _require_member(caller)
    if answers is not None:
        answers = _validate_answers(answers)

    # Read phase: resolve the target attempt.
    with _transaction("load attempt", immediate=False) as conn:
        definition = _load_quiz(conn, caller, organization_id, course_id, item_id)

        if attempt_id is not None:
            target = attempts.get_attempt_by_id(conn, attempt_id)
            if (
                target is None
                or target.user_id != caller.user_id
                or target.course_id != course_id
                or target.item_id != item_id
            ):
                raise NoActiveAttemptError()
        else:
            target = attempts.get_active_attempt(conn, caller.user_id, course_id, item_id)
            if target is None:
                raise NoActiveAttemptError()

    # Write phase: transition, result and state commit together or not at all.
    with _transaction("submit attempt") as conn:
        attempt = attempts.get_attempt_by_id(conn, target.attempt_id)
        if attempt is None or attempt.status != attempts.STATUS_IN_PROGRESS:
            _raise_stale(attempt, target.attempt_id)

        _check_quota(conn, caller, course_id, item_id, definition.settings.attempts_allowed)

        if answers is not None:
            attempts.replace_answers(conn, attempt.attempt_id, answers)
            attempt.answers = answers

        submitted_at = _now()
        if not attempts.mark_submitted(conn, attempt.attempt_id, submitted_at):
            _raise_stale(attempts.get_attempt_by_id(conn, attempt.attempt_id), attempt.attempt_id)

        grade = grade_answers(definition.questions, attempt.answers)
        passed = grade.score_percent >= definition.settings.passing_grade_percent

        results.insert_result(
            conn,
            attempt_id=attempt.attempt_id,
            organization_id=organization_id,
            course_id=course_id,
            item_id=item_id,
            user_id=caller.user_id,
            graded_at=submitted_at,
            score_percent=grade.score_percent,
            passed=passed,
            earned_points=grade.earned_points,
            total_points=grade.total_points,
            per_question=[q.to_dict() for q in grade.per_question],
        )

        previous = states.get_quiz_state(conn, caller.user_id, course_id, item_id)
        state = apply_graded_submission(
            previous,
            organization_id=organization_id,
            user_id=caller.user_id,
            course_id=course_id,
            item_id=item_id,
            attempt_id=attempt.attempt_id,
            score_percent=grade.score_percent,
            passed=passed,
            now=submitted_at,
        )
        states.save_quiz_state(conn, state)

    logger.info(
        "attempts.submitted",
        attempt_id=attempt.attempt_id,
        user_id=caller.user_id,
        item_id=item_id,
        score_percent=grade.score_percent,
        passed=passed,
    )

    outcome = SubmitOutcome(
        attempt_id=attempt.attempt_id,
        passed=passed,
        passing_grade_percent=definition.settings.passing_grade_percent,
        grade=grade,
        state=state,
    )

    # Post-commit hooks: the grade is recorded, nothing below may fail the submit.
    event = SubmissionEvent(
        attempt_id=attempt.attempt_id,
        organization_id=organization_id,
        user_id=caller.user_id,
        course_id=course_id,
        item_id=item_id,
        score_percent=grade.score_percent,
        passed=passed,
        graded_at=submitted_at,
    )
    sink = event_sink if event_sink is not None else LogEventSink()
    run_and_swallow("emit_submission_event", sink.emit, "quiz.attempt_submitted", event.to_dict())

    if load_app_config().certificates.auto_issue:
        outcome.certificate = run_and_swallow(
            "evaluate_certificate",
            evaluate_course_certificate,
            organization_id,
            caller.user_id,
            course_id,
        )

    return outcome


def get_quiz_status(caller: Caller | None, course_id: str, item_id: str) -> QuizStatus:
    """Report quota usage, the active attempt and the quiz state."""
    organization_id = _require_member(caller)

    with _transaction("load quiz status", immediate=False) as conn:
        definition = _load_quiz(conn, caller, organization_id, course_id, item_id)
        active = attempts.get_active_attempt(conn, caller.user_id, course_id, item_id)
        submitted = attempts.count_submitted_attempts(conn, caller.user_id, course_id, item_id)
        state = states.get_quiz_state(conn, caller.user_id, course_id, item_id)

    settings = definition.settings
    deadline_at = None
    if active is not None and settings.time_limit_seconds > 0:
        started = datetime.fromisoformat(active.started_at)
        deadline_at = (started + timedelta(seconds=settings.time_limit_seconds)).isoformat()

    return QuizStatus(
        attempts_allowed=settings.attempts_allowed,
        submitted_attempts_count=submitted,
        passing_grade_percent=settings.passing_grade_percent,
        time_limit_seconds=settings.time_limit_seconds,
        attempt=active,
        deadline_at=deadline_at,
        state=state,
    )


def get_attempt_review(caller: Caller | None, attempt_id: str) -> AttemptReview:
    """Load one of the caller's attempts with its graded result.

    Correct answers are only included when the quiz's feedback_mode is
    'reveal'.
    """
    organization_id = _require_member(caller)

    with _transaction("load attempt", immediate=False) as conn:
        attempt = attempts.get_attempt_by_id(conn, attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt not found.")
        if attempt.user_id != caller.user_id or attempt.organization_id != organization_id:
            raise ForbiddenError()

        item = get_course_item(conn, attempt.item_id)
        if item is None or item.course_id != attempt.course_id or item.item_type != "quiz":
            raise NotFoundError("Quiz not found.")

        result = results.get_result_for_attempt(conn, attempt_id)

    settings = parse_quiz_definition(item.item_id, item.payload, load_app_config().quiz).settings
    reveal = settings.feedback_mode == "reveal"

    per_question: list[dict[str, Any]] = []
    if result is not None:
        for entry in result.per_question:
            row = dict(entry)
            if not reveal:
                row.pop("correct_answer", None)
            per_question.append(row)

    return AttemptReview(
        attempt=attempt,
        passing_grade_percent=settings.passing_grade_percent,
        feedback_mode=settings.feedback_mode,
        result=result,
        per_question=per_question,
    )
