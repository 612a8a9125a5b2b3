"""Course certification evaluator.

Responsibilities:
- Decide whether a learner's results across a course's quizzes cross the
  course certificate threshold
- Issue the certificate the first time the threshold is met; afterwards only
  refresh its score and template

Gating rules:
- Quizzes marked is_required form the gating set; if none is marked, every
  quiz of the course does
- Every gating quiz needs at least one graded result before anything is
  computed
- The course percent sums earned/total points of each gating quiz's best
  result (highest score, ties broken by most recent graded_at)
- A certificate is never revoked here, and issued_at never moves

The evaluation is idempotent: re-running it with the same results leaves the
same end state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

import structlog

from quizcert.core.grader import percent_rounded
from quizcert.db.authoring_repository import (
    CourseItemRecord,
    get_certificate_settings,
    get_certificate_template_id,
    list_course_quiz_items,
)
from quizcert.db.certificates_repository import (
    CertificateRecord,
    get_certificate,
    insert_or_get_certificate,
    refresh_certificate,
)
from quizcert.db.database import get_db
from quizcert.db.results_repository import ResultRecord, list_results_for_items

logger = structlog.get_logger(__name__)

# =============================================================================
# TYPES
# =============================================================================

EvaluationOutcome = Literal[
    "not_configured",
    "no_quizzes",
    "incomplete",
    "below_threshold",
    "issued",
    "refreshed",
]


@dataclass
class CourseStanding:
    """In-memory reduction of a learner's results over a course's quizzes."""

    gating_item_ids: list[str]
    missing_item_ids: list[str]
    earned_points: int = 0
    total_points: int = 0
    course_percent: int | None = None
    best_by_item: dict[str, ResultRecord] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        """Every gating quiz has a graded result."""
        return bool(self.gating_item_ids) and not self.missing_item_ids


@dataclass
class CertificateEvaluation:
    """Outcome of one evaluator run."""

    outcome: EvaluationOutcome
    course_percent: int | None = None
    threshold: int | None = None
    certificate: CertificateRecord | None = None


# =============================================================================
# PURE REDUCTION
# =============================================================================


def select_gating_item_ids(quiz_items: list[CourseItemRecord]) -> list[str]:
    """Required quizzes, or all quizzes when none is marked required."""
    required = [item.item_id for item in quiz_items if item.is_required]
    if required:
        return required
    return [item.item_id for item in quiz_items]


def best_results_by_item(results: list[ResultRecord]) -> dict[str, ResultRecord]:
    """Pick each item's best result: highest score, then most recent graded_at."""
    best: dict[str, ResultRecord] = {}
    for result in results:
        current = best.get(result.item_id)
        if current is None:
            best[result.item_id] = result
        elif result.score_percent > current.score_percent:
            best[result.item_id] = result
        elif result.score_percent == current.score_percent and result.graded_at > current.graded_at:
            best[result.item_id] = result
    return best


def compute_course_standing(
    quiz_items: list[CourseItemRecord],
    results: list[ResultRecord],
) -> CourseStanding:
    """Reduce a learner's results to a course standing.

    course_percent stays None while any gating quiz lacks a result.
    """
    gating_ids = select_gating_item_ids(quiz_items)
    best = best_results_by_item([r for r in results if r.item_id in set(gating_ids)])
    missing = [item_id for item_id in gating_ids if item_id not in best]

    standing = CourseStanding(
        gating_item_ids=gating_ids,
        missing_item_ids=missing,
        best_by_item=best,
    )
    if not standing.complete:
        return standing

    standing.earned_points = sum(max(0, best[item_id].earned_points) for item_id in gating_ids)
    standing.total_points = sum(max(0, best[item_id].total_points) for item_id in gating_ids)
    standing.course_percent = percent_rounded(standing.earned_points, standing.total_points)
    return standing


# =============================================================================
# MAIN FUNCTION
# =============================================================================


def evaluate_course_certificate(
    organization_id: str,
    user_id: str,
    course_id: str,
    now: str | None = None,
) -> CertificateEvaluation:
    """Evaluate and, when earned, issue or refresh a course certificate.

    Args:
        organization_id: Organization the certificate is issued under
        user_id: Learner
        course_id: Course to evaluate
        now: Issuance timestamp (defaults to current UTC time)

    Returns:
        CertificateEvaluation describing what happened

    Raises:
        sqlite3.Error: On persistence failure (callers running this as a
            post-submit hook swallow it)
    """
    if now is None:
        now = datetime.now(timezone.utc).isoformat()

    with get_db(immediate=True) as conn:
        settings = get_certificate_settings(conn, course_id)
        template_id = get_certificate_template_id(conn, course_id)

        threshold = settings.course_passing_grade_percent if settings else None
        if threshold is not None:
            threshold = max(0, min(100, threshold))

        if (
            settings is None
            or not settings.enabled
            or not threshold
            or settings.name_placement is None
            or template_id is None
        ):
            logger.debug("certification.not_configured", course_id=course_id)
            return CertificateEvaluation(outcome="not_configured", threshold=threshold)

        quiz_items = list_course_quiz_items(conn, course_id)
        if not quiz_items:
            return CertificateEvaluation(outcome="no_quizzes", threshold=threshold)

        gating_ids = select_gating_item_ids(quiz_items)
        results = list_results_for_items(conn, user_id, course_id, gating_ids)
        standing = compute_course_standing(quiz_items, results)

        if not standing.complete:
            logger.debug(
                "certification.incomplete",
                user_id=user_id,
                course_id=course_id,
                missing=standing.missing_item_ids,
            )
            return CertificateEvaluation(outcome="incomplete", threshold=threshold)

        course_percent = standing.course_percent or 0
        if course_percent < threshold:
            return CertificateEvaluation(
                outcome="below_threshold",
                course_percent=course_percent,
                threshold=threshold,
                certificate=get_certificate(conn, user_id, course_id),
            )

        certificate, created = insert_or_get_certificate(
            conn,
            organization_id=organization_id,
            user_id=user_id,
            course_id=course_id,
            issued_at=now,
            course_score_percent=course_percent,
            template_id=template_id,
        )

        if created:
            logger.info(
                "certification.issued",
                user_id=user_id,
                course_id=course_id,
                course_percent=course_percent,
                certificate_id=certificate.certificate_id,
            )
            return CertificateEvaluation(
                outcome="issued",
                course_percent=course_percent,
                threshold=threshold,
                certificate=certificate,
            )

        refresh_certificate(conn, certificate.certificate_id, course_percent, template_id)
        certificate.course_score_percent = course_percent
        certificate.template_id = template_id

    logger.info(
        "certification.refreshed",
        user_id=user_id,
        course_id=course_id,
        course_percent=course_percent,
        certificate_id=certificate.certificate_id,
    )
    return CertificateEvaluation(
        outcome="refreshed",
        course_percent=course_percent,
        threshold=threshold,
        certificate=certificate,
    )
