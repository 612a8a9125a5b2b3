"""SQLite database connection and schema management.

Provides connection/transaction management, schema initialization and the
insert-or-get primitive used for every "create unless it already exists"
write in the engine.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Sequence

import structlog

from quizcert.config.app_config import load_app_config

logger = structlog.get_logger(__name__)

# Current database location (module-level, set by init_db)
_db_path: Path | None = None


def _resolve_db_path() -> Path:
    if _db_path is not None:
        return _db_path
    return Path(load_app_config().database.path)


def current_db_path() -> Path:
    """Database file that connections open."""
    return _resolve_db_path()


def init_db(db_path: Path | None = None) -> None:
    """Initialize database with schema.

    Creates the database file and all required tables if they don't exist.

    Args:
        db_path: Path to database file. Defaults to the path chosen by an
            earlier call, else the configured path (db/quizcert.db unless
            overridden).
    """
    global _db_path
    _db_path = Path(db_path) if db_path is not None else _resolve_db_path()

    # Ensure directory exists
    _db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db() as conn:
        _create_schema(conn)

    logger.info("database.initialized", path=str(_db_path))


@contextmanager
def get_db(immediate: bool = False) -> Generator[sqlite3.Connection, None, None]:
    """Get database connection as context manager.

    The block runs as one transaction: committed on success, rolled back on
    any exception.

    Args:
        immediate: Take the write lock up front (BEGIN IMMEDIATE). Use for
            read-check-write sequences so concurrent writers queue on the
            busy timeout instead of failing on lock upgrade.

    Yields:
        SQLite connection with row factory set to sqlite3.Row

    Example:
        with get_db(immediate=True) as conn:
            conn.execute("UPDATE quiz_attempts SET ...")
    """
    db_path = _resolve_db_path()

    # Ensure directory exists
    db_path.parent.mkdir(parents=True, exist_ok=True)

    timeout = load_app_config().database.busy_timeout_seconds
    conn = sqlite3.connect(db_path, timeout=timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")

    try:
        if immediate:
            conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def insert_or_get(
    conn: sqlite3.Connection,
    insert_sql: str,
    insert_params: Sequence[Any],
    select_sql: str,
    select_params: Sequence[Any],
) -> tuple[sqlite3.Row, bool]:
    """Insert a row, or return the row that already owns the unique key.

    Attempts the insert; on a uniqueness violation re-reads with
    ``select_sql`` and returns the existing row instead of erroring.

    Returns:
        (row, created) where created is False when an existing row won.

    Raises:
        sqlite3.IntegrityError: If the insert conflicts but no row matches
            ``select_sql`` (the violation was not the expected key).
    """
    created = True
    try:
        conn.execute(insert_sql, insert_params)
    except sqlite3.IntegrityError as e:
        created = False
        logger.debug("database.insert_conflict", error=str(e))
        row = conn.execute(select_sql, select_params).fetchone()
        if row is None:
            raise
        return row, created

    row = conn.execute(select_sql, select_params).fetchone()
    return row, created


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Uses IF NOT EXISTS for idempotency.
    """
    conn.executescript(
        """
        -- Authoring store (read-only for the engine)
        CREATE TABLE IF NOT EXISTS course_items (
            item_id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL,
            course_id TEXT NOT NULL,
            item_type TEXT NOT NULL DEFAULT 'quiz',
            title TEXT NOT NULL DEFAULT '',
            is_required INTEGER NOT NULL DEFAULT 0,
            payload TEXT NOT NULL DEFAULT '{}'
        );

        CREATE TABLE IF NOT EXISTS course_enrollments (
            user_id TEXT NOT NULL,
            course_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'active',
            PRIMARY KEY (user_id, course_id)
        );

        CREATE TABLE IF NOT EXISTS certificate_settings (
            course_id TEXT PRIMARY KEY,
            enabled INTEGER NOT NULL DEFAULT 0,
            course_passing_grade_percent INTEGER,
            name_placement TEXT
        );

        CREATE TABLE IF NOT EXISTS certificate_templates (
            template_id TEXT PRIMARY KEY,
            course_id TEXT NOT NULL UNIQUE
        );

        -- Attempts: one row per start/retake
        CREATE TABLE IF NOT EXISTS quiz_attempts (
            attempt_id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL,
            course_id TEXT NOT NULL,
            item_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            attempt_number INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'in_progress'
                CHECK(status IN ('in_progress', 'submitted', 'abandoned')),
            started_at TEXT NOT NULL,
            submitted_at TEXT,
            answers TEXT NOT NULL DEFAULT '{}',
            UNIQUE (user_id, course_id, item_id, attempt_number)
        );

        -- At most one in-progress attempt per (user, course, item)
        CREATE UNIQUE INDEX IF NOT EXISTS idx_attempts_one_active
            ON quiz_attempts(user_id, course_id, item_id)
            WHERE status = 'in_progress';

        -- Results: append-only grading ledger
        CREATE TABLE IF NOT EXISTS attempt_results (
            result_id TEXT PRIMARY KEY,
            attempt_id TEXT NOT NULL UNIQUE REFERENCES quiz_attempts(attempt_id),
            organization_id TEXT NOT NULL,
            course_id TEXT NOT NULL,
            item_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            graded_at TEXT NOT NULL,
            score_percent INTEGER NOT NULL,
            passed INTEGER NOT NULL,
            earned_points INTEGER NOT NULL,
            total_points INTEGER NOT NULL,
            result_json TEXT NOT NULL DEFAULT '{}'
        );

        CREATE TRIGGER IF NOT EXISTS trg_attempt_results_no_update
            BEFORE UPDATE ON attempt_results
        BEGIN
            SELECT RAISE(ABORT, 'attempt_results is append-only');
        END;

        CREATE TRIGGER IF NOT EXISTS trg_attempt_results_no_delete
            BEFORE DELETE ON attempt_results
        BEGIN
            SELECT RAISE(ABORT, 'attempt_results is append-only');
        END;

        -- Per (user, course, item) summary
        CREATE TABLE IF NOT EXISTS quiz_state (
            user_id TEXT NOT NULL,
            course_id TEXT NOT NULL,
            item_id TEXT NOT NULL,
            organization_id TEXT NOT NULL,
            best_score_percent INTEGER,
            passed_at TEXT,
            last_attempt_id TEXT,
            last_submitted_attempt_id TEXT,
            PRIMARY KEY (user_id, course_id, item_id)
        );

        CREATE TABLE IF NOT EXISTS certificates (
            certificate_id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            course_id TEXT NOT NULL,
            issued_at TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'valid',
            course_score_percent INTEGER NOT NULL,
            template_id TEXT,
            UNIQUE (user_id, course_id)
        );

        -- Indexes
        CREATE INDEX IF NOT EXISTS idx_course_items_course ON course_items(course_id, item_type);
        CREATE INDEX IF NOT EXISTS idx_attempts_lookup ON quiz_attempts(user_id, course_id, item_id, status);
        CREATE INDEX IF NOT EXISTS idx_results_lookup ON attempt_results(user_id, course_id, item_id);
        """
    )
