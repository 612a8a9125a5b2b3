"""Quiz grading engine.

Responsibilities:
- Grade a submitted answer payload against normalized quiz questions
- Deterministic comparison per question type (true_false, single_choice,
  multiple_choice); no I/O, no clock
- Produce a per-question breakdown with selected and correct answers in a
  normalized shape, for correct and incorrect questions alike

Pass/fail is decided by the caller against the quiz's passing grade.

Normalized answer shapes:
- {"kind": "none"}
- {"kind": "boolean", "value": true}
- {"kind": "options", "option_ids": ["a", "c"]}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from quizcert.core.quiz_definition import Question

# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class QuestionGrade:
    """Grade for a single question."""

    question_id: str
    correct: bool
    earned_points: int
    points: int
    missing: bool
    selected_answer: dict[str, Any]
    correct_answer: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "question_id": self.question_id,
            "correct": self.correct,
            "earned_points": self.earned_points,
            "points": self.points,
            "missing": self.missing,
            "selected_answer": self.selected_answer,
            "correct_answer": self.correct_answer,
        }


@dataclass
class GradeReport:
    """Aggregate grade for one answer payload."""

    score_percent: int
    earned_points: int
    total_points: int
    per_question: list[QuestionGrade] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "score_percent": self.score_percent,
            "earned_points": self.earned_points,
            "total_points": self.total_points,
            "per_question": [q.to_dict() for q in self.per_question],
        }


# =============================================================================
# GRADING FUNCTIONS
# =============================================================================


def percent_rounded(part: int, whole: int) -> int:
    """Return round(100 * part / whole) with halves rounded up; 0 if whole is 0."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def _none() -> dict[str, Any]:
    return {"kind": "none"}


def _options(option_ids: list[str]) -> dict[str, Any]:
    return {"kind": "options", "option_ids": option_ids}


def _grade_true_false(question: Question, raw: Any) -> tuple[bool, bool, dict, dict]:
    expected = question.correct_boolean if question.correct_boolean is not None else True
    correct_answer = {"kind": "boolean", "value": expected}

    if not isinstance(raw, bool):
        return False, True, _none(), correct_answer

    return raw == expected, False, {"kind": "boolean", "value": raw}, correct_answer


def _grade_single_choice(question: Question, raw: Any) -> tuple[bool, bool, dict, dict]:
    expected = question.correct_option_id
    correct_answer = _options([expected] if expected else [])

    if not isinstance(raw, str) or not raw:
        return False, True, _none(), correct_answer

    return raw == (expected or ""), False, _options([raw]), correct_answer


def _grade_multiple_choice(question: Question, raw: Any) -> tuple[bool, bool, dict, dict]:
    expected_ids = list(dict.fromkeys(question.correct_option_ids))
    correct_answer = _options(expected_ids)

    if not isinstance(raw, (list, tuple, set, frozenset)):
        return False, True, _none(), correct_answer

    # Dedupe, keep submission order
    selected_ids = list(dict.fromkeys(x for x in raw if isinstance(x, str) and x))
    missing = not selected_ids
    correct = set(selected_ids) == set(expected_ids)

    return correct, missing, _options(selected_ids), correct_answer


_GRADERS = {
    "true_false": _grade_true_false,
    "single_choice": _grade_single_choice,
    "multiple_choice": _grade_multiple_choice,
}


def grade_question(question: Question, answers: dict[str, Any]) -> QuestionGrade:
    """Grade one question against the answer payload."""
    raw = answers.get(question.id)
    correct, missing, selected_answer, correct_answer = _GRADERS[question.type](question, raw)

    # A required question left unanswered never earns points
    if question.answer_required and missing:
        correct = False

    return QuestionGrade(
        question_id=question.id,
        correct=correct,
        earned_points=question.points if correct else 0,
        points=question.points,
        missing=missing,
        selected_answer=selected_answer,
        correct_answer=correct_answer,
    )


def grade_answers(questions: list[Question], answers: dict[str, Any] | None) -> GradeReport:
    """Grade an answer payload.

    Args:
        questions: Normalized questions, in authored order
        answers: Mapping of question id to submitted value

    Returns:
        GradeReport with score_percent, points and per-question breakdown
    """
    if not isinstance(answers, dict):
        answers = {}

    per_question = [grade_question(q, answers) for q in questions]
    total_points = sum(q.points for q in questions)
    earned_points = sum(g.earned_points for g in per_question)

    return GradeReport(
        score_percent=percent_rounded(earned_points, total_points),
        earned_points=earned_points,
        total_points=total_points,
        per_question=per_question,
    )
