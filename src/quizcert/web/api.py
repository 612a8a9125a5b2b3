"""FastAPI application factory.

Main entry point for the quiz engine Web API.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quizcert import __version__
from quizcert.db.database import init_db
from quizcert.web.routes import (
    attempts_router,
    health_router,
    quizzes_router,
)

logger = structlog.get_logger(__name__)


def create_app(db_path: Path | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_path: Database file; defaults to the configured path

    Returns:
        Configured FastAPI app instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Lifespan context manager for startup/shutdown events."""
        init_db(db_path)
        logger.info("api_startup", version=__version__)
        yield

    app = FastAPI(
        title="Quiz Certification API",
        description="Quiz attempt lifecycle and automated course certification",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware for web clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(quizzes_router)
    app.include_router(attempts_router)

    return app


# Default app instance for uvicorn
app = create_app()
