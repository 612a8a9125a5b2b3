"""Repository functions for the attempt_results ledger.

Rows are immutable: the schema rejects UPDATE and DELETE, so this module
only inserts and reads.
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


@dataclass
class ResultRecord:
    """Graded result for one submitted attempt."""

    result_id: str
    attempt_id: str
    organization_id: str
    course_id: str
    item_id: str
    user_id: str
    graded_at: str
    score_percent: int
    passed: bool
    earned_points: int
    total_points: int
    per_question: list[dict[str, Any]] = field(default_factory=list)


def insert_result(
    conn: sqlite3.Connection,
    attempt_id: str,
    organization_id: str,
    course_id: str,
    item_id: str,
    user_id: str,
    graded_at: str,
    score_percent: int,
    passed: bool,
    earned_points: int,
    total_points: int,
    per_question: list[dict[str, Any]],
) -> ResultRecord:
    """Append the result for an attempt.

    A second insert for the same attempt returns the stored row unchanged.
    """
    row, created = insert_or_get(
        conn,
        """
        INSERT INTO attempt_results (
            result_id, attempt_id, organization_id, course_id, item_id, user_id,
            graded_at, score_percent, passed, earned_points, total_points, result_json
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            str(uuid.uuid4()),
            attempt_id,
            organization_id,
            course_id,
            item_id,
            user_id,
            graded_at,
            score_percent,
            1 if passed else 0,
            earned_points,
            total_points,
            json.dumps({"per_question": per_question}),
        ),
        "SELECT * FROM attempt_results WHERE attempt_id = ?",
        (attempt_id,),
    )

    if created:
        logger.debug("results.inserted", attempt_id=attempt_id, score_percent=score_percent)
    else:
        logger.warning("results.already_recorded", attempt_id=attempt_id)

    return _row_to_record(row)


def get_result_for_attempt(conn: sqlite3.Connection, attempt_id: str) -> ResultRecord | None:
    """Get the result recorded for an attempt, if graded."""
    row = conn.execute(
        "SELECT * FROM attempt_results WHERE attempt_id = ?", (attempt_id,)
    ).fetchone()
    if row is None:
        return None
    return _row_to_record(row)


def list_results_for_items(
    conn: sqlite3.Connection,
    user_id: str,
    course_id: str,
    item_ids: list[str],
) -> list[ResultRecord]:
    """List every result a learner has for the given course items."""
    if not item_ids:
        return []

    placeholders = ", ".join("?" for _ in item_ids)
    rows = conn.execute(
        f"""
        SELECT * FROM attempt_results
        WHERE user_id = ? AND course_id = ? AND item_id IN ({placeholders})
        ORDER BY graded_at
        """,
        (user_id, course_id, *item_ids),
    ).fetchall()

    return [_row_to_record(row) for row in rows]


def _row_to_record(row: sqlite3.Row) -> ResultRecord:
    """Convert database row to ResultRecord."""
    try:
        payload = json.loads(row["result_json"]) if row["result_json"] else {}
    except json.JSONDecodeError:
        payload = {}
    per_question = payload.get("per_question", []) if isinstance(payload, dict) else []

    return ResultRecord(
        result_id=row["result_id"],
        attempt_id=row["attempt_id"],
        organization_id=row["organization_id"],
        course_id=row["course_id"],
        item_id=row["item_id"],
        user_id=row["user_id"],
        graded_at=row["graded_at"],
        score_percent=int(row["score_percent"]),
        passed=bool(row["passed"]),
        earned_points=int(row["earned_points"]),
        total_points=int(row["total_points"]),
        per_question=per_question,
    )
