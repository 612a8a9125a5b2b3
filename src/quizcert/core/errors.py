"""Error taxonomy for the quiz engine.

Every error carries a machine-readable ``code`` and an HTTP status so the
web and CLI layers can report it without inspecting messages. Conflicts
reflect real business state and are never retried.
"""

from __future__ import annotations

from typing import Any


class QuizEngineError(Exception):
    """Base class for errors reported to callers."""

    code = "INTERNAL"
    status_code = 500
    default_message = "Internal error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"code": self.code, "message": self.message}


class UnauthorizedError(QuizEngineError):
    """No caller, or the caller could not be identified."""

    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(QuizEngineError):
    """Caller not enrolled, wrong role, or quiz outside the caller's organization."""

    code = "FORBIDDEN"
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(QuizEngineError):
    """Quiz, course or attempt unknown."""

    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found."


class InvalidRequestError(QuizEngineError):
    """Malformed request body or an item that is not a quiz of the course."""

    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Invalid request."


class ConflictError(QuizEngineError):
    """Business-state conflict."""

    code = "CONFLICT"
    status_code = 409
    reason = "conflict"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = super().to_dict()
        result["reason"] = self.reason
        return result


class NoActiveAttemptError(ConflictError):
    """No in-progress attempt exists for the caller and quiz."""

    reason = "no_active_attempt"
    default_message = "No active attempt."


class AlreadySubmittedError(ConflictError):
    """The attempt left in_progress before this submit could apply."""

    reason = "already_submitted"
    default_message = "Attempt already submitted."


class AttemptsExhaustedError(ConflictError):
    """The attempts quota has been used up."""

    reason = "attempts_exhausted"
    default_message = "Attempts limit reached."


class InternalError(QuizEngineError):
    """Persistence failure."""
