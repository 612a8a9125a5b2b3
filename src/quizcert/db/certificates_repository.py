"""Repository functions for the certificates table."""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from typing import Any

import structlog

from quizcert.db.database import insert_or_get

logger = structlog.get_logger(__name__)

_SELECT_CERTIFICATE = "SELECT * FROM certificates WHERE user_id = ? AND course_id = ?"


@dataclass
class CertificateRecord:
    """Certificate record from database."""

    certificate_id: str
    organization_id: str
    user_id: str
    course_id: str
    issued_at: str
    status: str
    course_score_percent: int
    template_id: str | None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "certificate_id": self.certificate_id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "course_id": self.course_id,
            "issued_at": self.issued_at,
            "status": self.status,
            "course_score_percent": self.course_score_percent,
            "template_id": self.template_id,
        }


def get_certificate(conn: sqlite3.Connection, user_id: str, course_id: str) -> CertificateRecord | None:
    """Get the certificate for (user, course)."""
    row = conn.execute(_SELECT_CERTIFICATE, (user_id, course_id)).fetchone()
    if row is None:
        return None
    return _row_to_record(row)


def insert_or_get_certificate(
    conn: sqlite3.Connection,
    organization_id: str,
    user_id: str,
    course_id: str,
    issued_at: str,
    course_score_percent: int,
    template_id: str | None,
) -> tuple[CertificateRecord, bool]:
    """Issue a valid certificate unless one already exists for (user, course).

    Returns:
        (certificate, created)
    """
    row, created = insert_or_get(
        conn,
        """
        INSERT INTO certificates (
            certificate_id, organization_id, user_id, course_id,
            issued_at, status, course_score_percent, template_id
        ) VALUES (?, ?, ?, ?, ?, 'valid', ?, ?)
        """,
        (
            str(uuid.uuid4()),
            organization_id,
            user_id,
            course_id,
            issued_at,
            course_score_percent,
            template_id,
        ),
        _SELECT_CERTIFICATE,
        (user_id, course_id),
    )
    return _row_to_record(row), created


def refresh_certificate(
    conn: sqlite3.Connection,
    certificate_id: str,
    course_score_percent: int,
    template_id: str | None,
) -> None:
    """Refresh score and template; issued_at and status are left alone."""
    conn.execute(
        """
        UPDATE certificates SET course_score_percent = ?, template_id = ?
        WHERE certificate_id = ?
        """,
        (course_score_percent, template_id, certificate_id),
    )

    logger.debug("certificates.refreshed", certificate_id=certificate_id, score=course_score_percent)


def _row_to_record(row: sqlite3.Row) -> CertificateRecord:
    """Convert database row to CertificateRecord."""
    return CertificateRecord(
        certificate_id=row["certificate_id"],
        organization_id=row["organization_id"],
        user_id=row["user_id"],
        course_id=row["course_id"],
        issued_at=row["issued_at"],
        status=row["status"],
        course_score_percent=int(row["course_score_percent"]),
        template_id=row["template_id"],
    )
