"""Repository functions for course authoring data.

Course items, enrollments and certificate configuration are owned by the
authoring side of the platform. The engine only reads them; the writers
exist so fixtures and the CLI can load a course.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class CourseItemRecord:
    """A course item (only item_type='quiz' is relevant here)."""

    item_id: str
    organization_id: str
    course_id: str
    item_type: str
    title: str
    is_required: bool
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class CertificateSettingsRecord:
    """Certificate settings authored per course."""

    course_id: str
    enabled: bool
    course_passing_grade_percent: int | None
    name_placement: dict[str, Any] | None


# =============================================================================
# READERS
# =============================================================================


def get_course_item(conn: sqlite3.Connection, item_id: str) -> CourseItemRecord | None:
    """Get a course item by ID."""
    row = conn.execute(
        "SELECT * FROM course_items WHERE item_id = ?", (item_id,)
    ).fetchone()
    if row is None:
        return None
    return _row_to_item(row)


def list_course_quiz_items(conn: sqlite3.Connection, course_id: str) -> list[CourseItemRecord]:
    """List every quiz item of a course."""
    rows = conn.execute(
        "SELECT * FROM course_items WHERE course_id = ? AND item_type = 'quiz' ORDER BY item_id",
        (course_id,),
    ).fetchall()
    return [_row_to_item(row) for row in rows]


def is_actively_enrolled(conn: sqlite3.Connection, user_id: str, course_id: str) -> bool:
    """Check that the user holds an active enrollment in the course."""
    row = conn.execute(
        "SELECT status FROM course_enrollments WHERE user_id = ? AND course_id = ?",
        (user_id, course_id),
    ).fetchone()
    return row is not None and row["status"] == "active"


def get_certificate_settings(
    conn: sqlite3.Connection, course_id: str
) -> CertificateSettingsRecord | None:
    """Get certificate settings for a course."""
    row = conn.execute(
        "SELECT * FROM certificate_settings WHERE course_id = ?", (course_id,)
    ).fetchone()
    if row is None:
        return None

    try:
        placement = json.loads(row["name_placement"]) if row["name_placement"] else None
    except json.JSONDecodeError:
        placement = None

    threshold = row["course_passing_grade_percent"]
    return CertificateSettingsRecord(
        course_id=row["course_id"],
        enabled=bool(row["enabled"]),
        course_passing_grade_percent=int(threshold) if threshold is not None else None,
        name_placement=placement if isinstance(placement, dict) and placement else None,
    )


def get_certificate_template_id(conn: sqlite3.Connection, course_id: str) -> str | None:
    """Get the certificate template ID of a course, if one was uploaded."""
    row = conn.execute(
        "SELECT template_id FROM certificate_templates WHERE course_id = ?", (course_id,)
    ).fetchone()
    return row["template_id"] if row is not None else None


# =============================================================================
# WRITERS (fixtures / CLI)
# =============================================================================


def upsert_course_item(
    conn: sqlite3.Connection,
    item_id: str,
    organization_id: str,
    course_id: str,
    payload: dict[str, Any],
    title: str = "",
    is_required: bool = False,
    item_type: str = "quiz",
) -> None:
    """Insert or replace a course item."""
    conn.execute(
        """
        INSERT INTO course_items (
            item_id, organization_id, course_id, item_type, title, is_required, payload
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(item_id) DO UPDATE SET
            organization_id = excluded.organization_id,
            course_id = excluded.course_id,
            item_type = excluded.item_type,
            title = excluded.title,
            is_required = excluded.is_required,
            payload = excluded.payload
        """,
        (
            item_id,
            organization_id,
            course_id,
            item_type,
            title,
            1 if is_required else 0,
            json.dumps(payload),
        ),
    )

    logger.debug("course_items.upserted", item_id=item_id, course_id=course_id)


def set_enrollment(
    conn: sqlite3.Connection, user_id: str, course_id: str, status: str = "active"
) -> None:
    """Insert or update a course enrollment."""
    conn.execute(
        """
        INSERT INTO course_enrollments (user_id, course_id, status) VALUES (?, ?, ?)
        ON CONFLICT(user_id, course_id) DO UPDATE SET status = excluded.status
        """,
        (user_id, course_id, status),
    )


def set_certificate_settings(
    conn: sqlite3.Connection,
    course_id: str,
    enabled: bool,
    course_passing_grade_percent: int | None,
    name_placement: dict[str, Any] | None,
) -> None:
    """Insert or update the certificate settings of a course."""
    conn.execute(
        """
        INSERT INTO certificate_settings (
            course_id, enabled, course_passing_grade_percent, name_placement
        ) VALUES (?, ?, ?, ?)
        ON CONFLICT(course_id) DO UPDATE SET
            enabled = excluded.enabled,
            course_passing_grade_percent = excluded.course_passing_grade_percent,
            name_placement = excluded.name_placement
        """,
        (
            course_id,
            1 if enabled else 0,
            course_passing_grade_percent,
            json.dumps(name_placement) if name_placement else None,
        ),
    )


def set_certificate_template(conn: sqlite3.Connection, course_id: str, template_id: str) -> None:
    """Insert or replace the certificate template of a course."""
    conn.execute(
        """
        INSERT INTO certificate_templates (template_id, course_id) VALUES (?, ?)
        ON CONFLICT(course_id) DO UPDATE SET template_id = excluded.template_id
        """,
        (template_id, course_id),
    )


def _row_to_item(row: sqlite3.Row) -> CourseItemRecord:
    """Convert database row to CourseItemRecord."""
    try:
        payload = json.loads(row["payload"]) if row["payload"] else {}
    except json.JSONDecodeError:
        payload = {}

    return CourseItemRecord(
        item_id=row["item_id"],
        organization_id=row["organization_id"],
        course_id=row["course_id"],
        item_type=row["item_type"],
        title=row["title"],
        is_required=bool(row["is_required"]),
        payload=payload if isinstance(payload, dict) else {},
    )
