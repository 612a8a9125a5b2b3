"""Repository functions for the quiz_attempts table.

Every function takes an open connection so the lifecycle controller can
group several writes into one transaction.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog

from quizcert.db.database import insert_or_get

logger = structlog.get_logger(__name__)

STATUS_IN_PROGRESS = "in_progress"
STATUS_SUBMITTED = "submitted"
STATUS_ABANDONED = "abandoned"

_SELECT_ACTIVE = """
    SELECT * FROM quiz_attempts
    WHERE user_id = ? AND course_id = ? AND item_id = ? AND status = 'in_progress'
"""


@dataclass
class AttemptRecord:
    """Attempt record from database."""

    attempt_id: str
    organization_id: str
    course_id: str
    item_id: str
    user_id: str
    attempt_number: int
    status: str
    started_at: str
    submitted_at: str | None = None
    answers: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.attempt_id,
            "attempt_number": self.attempt_number,
            "status": self.status,
            "started_at": self.started_at,
            "submitted_at": self.submitted_at,
            "answers_json": self.answers,
        }


def get_active_attempt(
    conn: sqlite3.Connection, user_id: str, course_id: str, item_id: str
) -> AttemptRecord | None:
    """Get the in-progress attempt for (user, course, item), if any."""
    row = conn.execute(_SELECT_ACTIVE, (user_id, course_id, item_id)).fetchone()
    if row is None:
        return None
    return _row_to_record(row)


def get_attempt_by_id(conn: sqlite3.Connection, attempt_id: str) -> AttemptRecord | None:
    """Get attempt by ID."""
    row = conn.execute(
        "SELECT * FROM quiz_attempts WHERE attempt_id = ?", (attempt_id,)
    ).fetchone()
    if row is None:
        return None
    return _row_to_record(row)


def count_submitted_attempts(
    conn: sqlite3.Connection, user_id: str, course_id: str, item_id: str
) -> int:
    """Count attempts with status=submitted for (user, course, item)."""
    row = conn.execute(
        """
        SELECT COUNT(*) AS n FROM quiz_attempts
        WHERE user_id = ? AND course_id = ? AND item_id = ? AND status = 'submitted'
        """,
        (user_id, course_id, item_id),
    ).fetchone()
    return int(row["n"])


def next_attempt_number(
    conn: sqlite3.Connection, user_id: str, course_id: str, item_id: str
) -> int:
    """Return 1 + the highest attempt_number recorded for (user, course, item)."""
    row = conn.execute(
        """
        SELECT MAX(attempt_number) AS last FROM quiz_attempts
        WHERE user_id = ? AND course_id = ? AND item_id = ?
        """,
        (user_id, course_id, item_id),
    ).fetchone()
    last = row["last"] if row["last"] is not None else 0
    return max(1, int(last) + 1)


def insert_or_get_active_attempt(
    conn: sqlite3.Connection,
    organization_id: str,
    course_id: str,
    item_id: str,
    user_id: str,
    attempt_number: int,
    started_at: str,
    answers: dict[str, Any] | None = None,
) -> tuple[AttemptRecord, bool]:
    """Create a new in-progress attempt, or return the one that already exists.

    The partial unique index on (user, course, item) WHERE in_progress makes
    concurrent starts converge on a single winner.

    Returns:
        (attempt, created)
    """
    row, created = insert_or_get(
        conn,
        """
        INSERT INTO quiz_attempts (
            attempt_id, organization_id, course_id, item_id, user_id,
            attempt_number, status, started_at, answers
        ) VALUES (?, ?, ?, ?, ?, ?, 'in_progress', ?, ?)
        """,
        (
            str(uuid.uuid4()),
            organization_id,
            course_id,
            item_id,
            user_id,
            attempt_number,
            started_at,
            json.dumps(answers or {}),
        ),
        _SELECT_ACTIVE,
        (user_id, course_id, item_id),
    )

    record = _row_to_record(row)
    if created:
        logger.debug(
            "attempts.inserted",
            attempt_id=record.attempt_id,
            attempt_number=record.attempt_number,
        )
    return record, created


def replace_answers(conn: sqlite3.Connection, attempt_id: str, answers: dict[str, Any]) -> bool:
    """Replace the answer payload of an in-progress attempt (last write wins).

    Returns:
        True if the attempt was still in progress and got updated.
    """
    cursor = conn.execute(
        """
        UPDATE quiz_attempts SET answers = ?
        WHERE attempt_id = ? AND status = 'in_progress'
        """,
        (json.dumps(answers), attempt_id),
    )
    updated = cursor.rowcount > 0
    if updated:
        logger.debug("attempts.answers_replaced", attempt_id=attempt_id, answers_count=len(answers))
    return updated


def mark_abandoned(conn: sqlite3.Connection, attempt_id: str) -> bool:
    """Mark an in-progress attempt as abandoned."""
    cursor = conn.execute(
        """
        UPDATE quiz_attempts SET status = 'abandoned'
        WHERE attempt_id = ? AND status = 'in_progress'
        """,
        (attempt_id,),
    )
    return cursor.rowcount > 0


def mark_submitted(conn: sqlite3.Connection, attempt_id: str, submitted_at: str) -> bool:
    """Transition an attempt to submitted, only if it is still in progress.

    Returns:
        False when another request already moved it out of in_progress.
    """
    cursor = conn.execute(
        """
        UPDATE quiz_attempts SET status = 'submitted', submitted_at = ?
        WHERE attempt_id = ? AND status = 'in_progress'
        """,
        (submitted_at, attempt_id),
    )
    return cursor.rowcount > 0


def _row_to_record(row: sqlite3.Row) -> AttemptRecord:
    """Convert database row to AttemptRecord."""
    try:
        answers = json.loads(row["answers"]) if row["answers"] else {}
    except json.JSONDecodeError:
        answers = {}
    if not isinstance(answers, dict):
        answers = {}

    return AttemptRecord(
        attempt_id=row["attempt_id"],
        organization_id=row["organization_id"],
        course_id=row["course_id"],
        item_id=row["item_id"],
        user_id=row["user_id"],
        attempt_number=int(row["attempt_number"]),
        status=row["status"],
        started_at=row["started_at"],
        submitted_at=row["submitted_at"],
        answers=answers,
    )
