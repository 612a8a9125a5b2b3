"""Request dependencies shared by the routers."""

from fastapi import Header, HTTPException

from quizcert.core.attempt_lifecycle import Caller
from quizcert.core.errors import QuizEngineError


def get_caller(
    x_user_id: str | None = Header(default=None),
    x_organization_id: str | None = Header(default=None),
    x_user_role: str = Header(default="member"),
) -> Caller | None:
    """Identify the caller from gateway headers; None when anonymous."""
    if not x_user_id:
        return None
    return Caller(user_id=x_user_id, organization_id=x_organization_id, role=x_user_role)


def http_error(error: QuizEngineError) -> HTTPException:
    """Translate an engine error into an HTTPException."""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())
