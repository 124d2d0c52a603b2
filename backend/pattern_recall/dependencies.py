"""
FastAPI Dependencies

Learner identification and service construction for the study routes.

The learner id comes from the X-Learner-ID header. Authentication happens
upstream (gateway or auth proxy); this service only scopes data by learner.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_recall.config import settings
from pattern_recall.db.base import get_db
from pattern_recall.services.learning.grader import AnswerGrader
from pattern_recall.services.learning.queue_replenisher import (
    CatalogRefiller,
    QueueReplenisher,
)
from pattern_recall.services.learning.repository import SqlCardRepository
from pattern_recall.services.learning.review_service import ReviewSessionService
from pattern_recall.services.learning.selection import SelectionPolicy
from pattern_recall.services.learning.sm2 import IntervalEngine, SchedulerConfig
from pattern_recall.services.llm.client import get_llm_client

# Registered by catalog ingestion at startup; None disables refills
_catalog_refiller: Optional[CatalogRefiller] = None


def set_catalog_refiller(refiller: Optional[CatalogRefiller]) -> None:
    """Install the collaborator used for low-pool catalog refills."""
    global _catalog_refiller
    _catalog_refiller = refiller


async def get_learner_id(
    x_learner_id: Optional[str] = Header(None, alias="X-Learner-ID"),
) -> str:
    """
    Resolve the learner for this request.

    Raises:
        HTTPException: 401 if the X-Learner-ID header is missing or blank
    """
    if not x_learner_id or not x_learner_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing learner id. Provide X-Learner-ID header.",
        )
    return x_learner_id.strip()


def get_interval_engine() -> IntervalEngine:
    """Interval engine configured from settings."""
    return IntervalEngine(SchedulerConfig.from_settings(settings))


async def get_review_service(
    db: AsyncSession = Depends(get_db),
    engine: IntervalEngine = Depends(get_interval_engine),
) -> ReviewSessionService:
    """Wire repository, replenisher, selection and grader for one request."""
    repository = SqlCardRepository(db)
    replenisher = QueueReplenisher(
        repository,
        engine,
        catalog_refiller=_catalog_refiller,
        low_water_mark=settings.CATALOG_LOW_WATER_MARK,
    )
    return ReviewSessionService(
        repository,
        engine,
        grader=AnswerGrader(llm_client=get_llm_client()),
        selection_policy=SelectionPolicy(repository, replenisher),
        grading_timeout=settings.GRADING_TIMEOUT_SECONDS,
        max_new_cards_limit=settings.SRS_MAX_NEW_CARDS_LIMIT,
    )
