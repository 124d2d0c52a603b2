"""
Pattern Recall API

FastAPI application for spaced repetition practice of algorithm problem
patterns: learners explain how they would solve a problem, an LLM grades the
explanation 0-5, and an SM-2 scheduler decides when to see it again.

Run:
    uvicorn pattern_recall.main:app --reload --app-dir backend
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pattern_recall.config import settings
from pattern_recall.db.base import engine, init_db
from pattern_recall.middleware.error_handling import setup_error_handling
from pattern_recall.routers import health, study

logger = logging.getLogger(__name__)


def configure_logging(level: str = None) -> None:
    """Configure root logging format and level (LOG_LEVEL by default)."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME}")
    await init_db()
    yield
    await engine.dispose()
    logger.info(f"{settings.APP_NAME} stopped")


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware and routers."""
    configure_logging()

    app = FastAPI(title=f"{settings.APP_NAME} API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_error_handling(app, debug=settings.DEBUG)

    app.include_router(health.router)
    app.include_router(study.router)

    return app


app = create_app()
