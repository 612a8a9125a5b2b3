"""Pydantic schemas for the Web API.

Serialization models for attempts, submissions, quiz status and reviews.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================


class AttemptActionRequest(BaseModel):
    """Request body for start / autosave / retake."""

    action: Literal["start", "autosave", "retake"]
    answers_json: dict[str, Any] | None = None


class SubmitRequest(BaseModel):
    """Request body for submit; answers_json flushes the latest answers first."""

    answers_json: dict[str, Any] | None = None
    attempt_id: str | None = Field(default=None, max_length=64)


# =============================================================================
# ATTEMPT SCHEMAS
# =============================================================================


class AttemptResponse(BaseModel):
    """An attempt row."""

    id: str
    attempt_number: int
    status: str
    started_at: str
    submitted_at: str | None = None
    answers_json: dict[str, Any] = Field(default_factory=dict)


class AttemptEnvelope(BaseModel):
    """Response for start / retake."""

    attempt: AttemptResponse


class AckResponse(BaseModel):
    """Response for autosave."""

    ok: bool = True
    attempt_id: str


class QuizStateResponse(BaseModel):
    """Learner's summary for one quiz."""

    best_score_percent: int | None = None
    passed_at: str | None = None
    last_attempt_id: str | None = None
    last_submitted_attempt_id: str | None = None


class QuizStatusResponse(BaseModel):
    """Response for GET attempt."""

    attempts_allowed: int
    submitted_attempts_count: int
    passing_grade_percent: int
    time_limit_seconds: int = 0
    attempt: AttemptResponse | None = None
    deadline_at: str | None = None
    state: QuizStateResponse | None = None


# =============================================================================
# GRADING SCHEMAS
# =============================================================================


class QuestionResultResponse(BaseModel):
    """Per-question grading breakdown."""

    question_id: str
    correct: bool
    earned_points: int
    points: int
    missing: bool
    selected_answer: dict[str, Any] = Field(default_factory=dict)
    correct_answer: dict[str, Any] | None = None


class SubmitResponse(BaseModel):
    """Response for submit."""

    attempt_id: str
    score_percent: int
    passed: bool
    passing_grade_percent: int
    earned_points: int
    total_points: int
    per_question: list[QuestionResultResponse]
    state: QuizStateResponse


class ReviewAttempt(BaseModel):
    """Attempt metadata in a review."""

    id: str
    attempt_number: int
    status: str
    started_at: str
    submitted_at: str | None = None


class ReviewResult(BaseModel):
    """Stored result in a review (zeros when the attempt was never graded)."""

    graded_at: str
    score_percent: int
    passed: bool
    passing_grade_percent: int
    earned_points: int
    total_points: int
    per_question: list[QuestionResultResponse]


class ReviewQuiz(BaseModel):
    """Quiz reference in a review."""

    id: str
    course_id: str
    feedback_mode: Literal["default", "reveal", "retry"]


class AttemptReviewResponse(BaseModel):
    """Response for GET quiz-attempts/{attempt_id}."""

    attempt: ReviewAttempt
    result: ReviewResult
    quiz: ReviewQuiz


# =============================================================================
# HEALTH SCHEMAS
# =============================================================================


class HealthResponse(BaseModel):
    """Response for health check."""

    status: str
    version: str
    timestamp: str
