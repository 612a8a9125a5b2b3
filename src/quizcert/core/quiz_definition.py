"""Quiz definition normalization.

Quiz items store a free-form JSON payload authored in the course editor.
This module turns it into typed questions and settings, dropping anything
the grading engine cannot handle.

Payload structure (JSON):
{
  "questions": [
    {"id": "q1", "type": "single_choice", "points": 1,
     "answer_required": true, "correct_option_id": "a"},
    {"id": "q2", "type": "true_false", "correct_boolean": false},
    {"id": "q3", "type": "multiple_choice", "correct_option_ids": ["a", "c"]}
  ],
  "settings": {"attempts_allowed": 3, "passing_grade_percent": 80,
               "time_limit_value": 15, "time_limit_unit": "minutes",
               "feedback_mode": "default"}
}
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Literal

from quizcert.config.app_config import QuizConfig, load_app_config

QuestionType = Literal["true_false", "single_choice", "multiple_choice"]
FeedbackMode = Literal["default", "reveal", "retry"]

SUPPORTED_TYPES = ("true_false", "single_choice", "multiple_choice")
FEEDBACK_MODES = ("default", "reveal", "retry")

_TIME_UNIT_SECONDS = {"seconds": 1, "minutes": 60, "hours": 3600}

# Marks a key absent from the payload, as opposed to an explicit null
MISSING = object()


@dataclass
class Question:
    """A gradable quiz question."""

    id: str
    type: QuestionType
    points: int = 1
    answer_required: bool = True
    correct_boolean: bool | None = None
    correct_option_id: str | None = None
    correct_option_ids: list[str] = field(default_factory=list)


@dataclass
class QuizSettings:
    """Attempt and grading settings of a quiz."""

    attempts_allowed: int = 0
    passing_grade_percent: int = 80
    time_limit_seconds: int = 0
    feedback_mode: FeedbackMode = "default"


@dataclass
class QuizDefinition:
    """Normalized quiz item."""

    item_id: str
    questions: list[Question]
    settings: QuizSettings


def clamp_int(value: Any, minimum: int, maximum: int, fallback: int) -> int:
    """Coerce to a floored int within [minimum, maximum], or fallback.

    An explicit null or blank string counts as 0; a missing key (MISSING)
    or any other non-numeric value takes the fallback.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        value = 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return max(minimum, min(maximum, math.floor(number)))


def normalize_questions(payload: dict[str, Any], max_points: int = 999) -> list[Question]:
    """Extract supported questions from a quiz payload, in authored order."""
    raw = payload.get("questions")
    if not isinstance(raw, list):
        return []

    questions: list[Question] = []
    for q in raw:
        if not isinstance(q, dict):
            continue
        question_id = q.get("id")
        if not isinstance(question_id, str) or not question_id:
            continue
        question_type = q.get("type")
        if question_type not in SUPPORTED_TYPES:
            continue

        correct_boolean = q.get("correct_boolean")
        correct_option_id = q.get("correct_option_id")
        raw_ids = q.get("correct_option_ids")

        questions.append(
            Question(
                id=question_id,
                type=question_type,
                points=clamp_int(q.get("points", MISSING), 0, max_points, 1),
                answer_required=bool(q.get("answer_required", True)),
                correct_boolean=correct_boolean if isinstance(correct_boolean, bool) else None,
                correct_option_id=correct_option_id if isinstance(correct_option_id, str) else None,
                correct_option_ids=[
                    x for x in raw_ids if isinstance(x, str) and x
                ] if isinstance(raw_ids, list) else [],
            )
        )

    return questions


def normalize_settings(payload: dict[str, Any], quiz_config: QuizConfig | None = None) -> QuizSettings:
    """Extract settings from a quiz payload, applying clamps and defaults."""
    if quiz_config is None:
        quiz_config = load_app_config().quiz

    settings = payload.get("settings")
    if not isinstance(settings, dict):
        settings = {}

    time_limit_value = clamp_int(settings.get("time_limit_value", MISSING), 0, 9999, 0)
    unit = settings.get("time_limit_unit")
    unit_seconds = _TIME_UNIT_SECONDS.get(unit, 60) if isinstance(unit, str) else 60

    feedback_mode = settings.get("feedback_mode")
    if feedback_mode not in FEEDBACK_MODES:
        feedback_mode = "default"

    return QuizSettings(
        attempts_allowed=clamp_int(
            settings.get("attempts_allowed", MISSING), 0, quiz_config.max_attempts_allowed, 0
        ),
        passing_grade_percent=clamp_int(
            settings.get("passing_grade_percent", MISSING), 0, 100, quiz_config.default_passing_grade_percent
        ),
        time_limit_seconds=time_limit_value * unit_seconds,
        feedback_mode=feedback_mode,
    )


def parse_quiz_definition(
    item_id: str,
    payload: dict[str, Any],
    quiz_config: QuizConfig | None = None,
) -> QuizDefinition:
    """Build a QuizDefinition from an authored payload."""
    if quiz_config is None:
        quiz_config = load_app_config().quiz

    return QuizDefinition(
        item_id=item_id,
        questions=normalize_questions(payload, quiz_config.max_points_per_question),
        settings=normalize_settings(payload, quiz_config),
    )
