"""Attempt review endpoint."""

from fastapi import APIRouter, Depends

from quizcert.core.attempt_lifecycle import Caller, get_attempt_review
from quizcert.core.errors import QuizEngineError
from quizcert.web.dependencies import get_caller, http_error
from quizcert.web.schemas import AttemptReviewResponse

router = APIRouter(prefix="/api/quiz-attempts", tags=["attempts"])


@router.get("/{attempt_id}", response_model=AttemptReviewResponse)
def review_attempt(
    attempt_id: str,
    caller: Caller | None = Depends(get_caller),
) -> AttemptReviewResponse:
    """Review one of the caller's attempts with its graded result."""
    try:
        review = get_attempt_review(caller, attempt_id)
    except QuizEngineError as e:
        raise http_error(e) from e

    return AttemptReviewResponse.model_validate(review.to_dict())
