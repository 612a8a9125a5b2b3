"""Quiz attempt endpoints: status, start/autosave/retake, submit."""

from typing import Union

import structlog
from fastapi import APIRouter, Depends

from quizcert.core.attempt_lifecycle import (
    Caller,
    autosave_attempt,
    get_quiz_status,
    retake_attempt,
    start_attempt,
    submit_attempt,
)
from quizcert.core.errors import QuizEngineError
from quizcert.web.dependencies import get_caller, http_error
from quizcert.web.schemas import (
    AckResponse,
    AttemptActionRequest,
    AttemptEnvelope,
    QuizStatusResponse,
    SubmitRequest,
    SubmitResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/courses/{course_id}/quizzes/{item_id}", tags=["quizzes"])


@router.get("/attempt", response_model=QuizStatusResponse)
def quiz_status(
    course_id: str,
    item_id: str,
    caller: Caller | None = Depends(get_caller),
) -> QuizStatusResponse:
    """Attempts quota, active attempt and best-score state for a quiz."""
    try:
        status = get_quiz_status(caller, course_id, item_id)
    except QuizEngineError as e:
        raise http_error(e) from e

    return QuizStatusResponse.model_validate(status.to_dict())


@router.post("/attempt", response_model=Union[AttemptEnvelope, AckResponse])
def attempt_action(
    course_id: str,
    item_id: str,
    body: AttemptActionRequest,
    caller: Caller | None = Depends(get_caller),
) -> AttemptEnvelope | AckResponse:
    """Start, autosave or retake an attempt."""
    try:
        if body.action == "autosave":
            attempt_id = autosave_attempt(caller, course_id, item_id, body.answers_json)
            return AckResponse(ok=True, attempt_id=attempt_id)

        if body.action == "retake":
            result = retake_attempt(caller, course_id, item_id, body.answers_json)
        else:
            result = start_attempt(caller, course_id, item_id, body.answers_json)
    except QuizEngineError as e:
        logger.info("api.attempt_action_rejected", action=body.action, code=e.code)
        raise http_error(e) from e

    return AttemptEnvelope.model_validate({"attempt": result.attempt.to_dict()})


@router.post("/submit", response_model=SubmitResponse)
def submit(
    course_id: str,
    item_id: str,
    body: SubmitRequest | None = None,
    caller: Caller | None = Depends(get_caller),
) -> SubmitResponse:
    """Submit the in-progress attempt for grading."""
    body = body or SubmitRequest()
    try:
        outcome = submit_attempt(
            caller,
            course_id,
            item_id,
            answers=body.answers_json,
            attempt_id=body.attempt_id,
        )
    except QuizEngineError as e:
        logger.info("api.submit_rejected", code=e.code)
        raise http_error(e) from e

    return SubmitResponse.model_validate(outcome.to_dict())
