"""Route handlers for the Web API."""

from quizcert.web.routes.health import router as health_router
from quizcert.web.routes.quizzes import router as quizzes_router
from quizcert.web.routes.attempts import router as attempts_router

__all__ = [
    "health_router",
    "quizzes_router",
    "attempts_router",
]
