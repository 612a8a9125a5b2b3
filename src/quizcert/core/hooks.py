"""Post-commit hooks.

Side effects that run after a submission has been committed (certificate
evaluation, event emission) go through ``run_and_swallow`` so their
failures are logged and never reach the learner.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable, Protocol, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def run_and_swallow(hook_name: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T | None:
    """Run a best-effort hook, logging and discarding any exception.

    Returns:
        The hook's return value, or None if it raised.
    """
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        logger.error("hooks.failed", hook=hook_name, error=str(e), error_type=type(e).__name__)
        return None


@dataclass
class SubmissionEvent:
    """Emitted once per graded submission."""

    attempt_id: str
    organization_id: str
    user_id: str
    course_id: str
    item_id: str
    score_percent: int
    passed: bool
    graded_at: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


class EventSink(Protocol):
    """Receiver for engine events (audit log, notifications)."""

    def emit(self, event_type: str, payload: dict[str, Any]) -> None: ...


class LogEventSink:
    """Default sink: writes events to the structured log."""

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.info(event_type, **payload)

