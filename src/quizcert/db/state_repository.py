"""Repository functions for the quiz_state summary table."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

import structlog

from quizcert.db.database import insert_or_get

logger = structlog.get_logger(__name__)

_SELECT_STATE = """
    SELECT * FROM quiz_state WHERE user_id = ? AND course_id = ? AND item_id = ?
"""


@dataclass
class QuizStateRecord:
    """Best-known outcome for one learner on one quiz item."""

    user_id: str
    course_id: str
    item_id: str
    organization_id: str
    best_score_percent: int | None = None
    passed_at: str | None = None
    last_attempt_id: str | None = None
    last_submitted_attempt_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "best_score_percent": self.best_score_percent,
            "passed_at": self.passed_at,
            "last_attempt_id": self.last_attempt_id,
            "last_submitted_attempt_id": self.last_submitted_attempt_id,
        }


def get_quiz_state(
    conn: sqlite3.Connection, user_id: str, course_id: str, item_id: str
) -> QuizStateRecord | None:
    """Get quiz state for (user, course, item)."""
    row = conn.execute(_SELECT_STATE, (user_id, course_id, item_id)).fetchone()
    if row is None:
        return None
    return _row_to_record(row)


def ensure_quiz_state(
    conn: sqlite3.Connection,
    organization_id: str,
    user_id: str,
    course_id: str,
    item_id: str,
) -> QuizStateRecord:
    """Return the state row, creating an empty one if none exists yet."""
    row, _ = insert_or_get(
        conn,
        """
        INSERT INTO quiz_state (user_id, course_id, item_id, organization_id)
        VALUES (?, ?, ?, ?)
        """,
        (user_id, course_id, item_id, organization_id),
        _SELECT_STATE,
        (user_id, course_id, item_id),
    )
    return _row_to_record(row)


def save_quiz_state(conn: sqlite3.Connection, state: QuizStateRecord) -> QuizStateRecord:
    """Upsert the full state row."""
    ensure_quiz_state(conn, state.organization_id, state.user_id, state.course_id, state.item_id)
    conn.execute(
        """
        UPDATE quiz_state SET
            best_score_percent = ?,
            passed_at = ?,
            last_attempt_id = ?,
            last_submitted_attempt_id = ?
        WHERE user_id = ? AND course_id = ? AND item_id = ?
        """,
        (
            state.best_score_percent,
            state.passed_at,
            state.last_attempt_id,
            state.last_submitted_attempt_id,
            state.user_id,
            state.course_id,
            state.item_id,
        ),
    )

    logger.debug(
        "quiz_state.saved",
        user_id=state.user_id,
        item_id=state.item_id,
        best_score_percent=state.best_score_percent,
    )
    return state


def touch_last_attempt(
    conn: sqlite3.Connection,
    organization_id: str,
    user_id: str,
    course_id: str,
    item_id: str,
    attempt_id: str,
) -> None:
    """Point last_attempt_id at the attempt most recently started or saved."""
    ensure_quiz_state(conn, organization_id, user_id, course_id, item_id)
    conn.execute(
        """
        UPDATE quiz_state SET last_attempt_id = ?
        WHERE user_id = ? AND course_id = ? AND item_id = ?
        """,
        (attempt_id, user_id, course_id, item_id),
    )


def _row_to_record(row: sqlite3.Row) -> QuizStateRecord:
    """Convert database row to QuizStateRecord."""
    best = row["best_score_percent"]
    return QuizStateRecord(
        user_id=row["user_id"],
        course_id=row["course_id"],
        item_id=row["item_id"],
        organization_id=row["organization_id"],
        best_score_percent=int(best) if best is not None else None,
        passed_at=row["passed_at"],
        last_attempt_id=row["last_attempt_id"],
        last_submitted_attempt_id=row["last_submitted_attempt_id"],
    )
