"""Quiz state aggregation.

Folds a freshly graded submission into the learner's per-quiz summary:
- best_score_percent never decreases
- passed_at is set on the first passing submission and never moves
- last_attempt_id / last_submitted_attempt_id point at the graded attempt
"""

from __future__ import annotations

from dataclasses import replace

from quizcert.db.state_repository import QuizStateRecord


def apply_graded_submission(
    previous: QuizStateRecord | None,
    organization_id: str,
    user_id: str,
    course_id: str,
    item_id: str,
    attempt_id: str,
    score_percent: int,
    passed: bool,
    now: str,
) -> QuizStateRecord:
    """Return the state that results from recording a graded submission.

    Args:
        previous: Current state row, or None if the learner has none yet
        attempt_id: The attempt that was just graded
        score_percent: Score of that attempt
        passed: Whether it met the quiz passing grade
        now: Timestamp used for passed_at when this is the first pass

    Returns:
        New QuizStateRecord (previous is not modified)
    """
    if previous is None:
        previous = QuizStateRecord(
            user_id=user_id,
            course_id=course_id,
            item_id=item_id,
            organization_id=organization_id,
        )

    if previous.best_score_percent is None:
        best = score_percent
    else:
        best = max(previous.best_score_percent, score_percent)

    passed_at = previous.passed_at
    if passed_at is None and passed:
        passed_at = now

    return replace(
        previous,
        best_score_percent=best,
        passed_at=passed_at,
        last_attempt_id=attempt_id,
        last_submitted_attempt_id=attempt_id,
    )
