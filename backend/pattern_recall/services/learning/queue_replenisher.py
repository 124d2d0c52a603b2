"""
New-Card Queue Replenisher

Keeps a learner's pool of New cards topped up before every selection,
bounded by two limits:

1. Daily quota: at most `new_cards_limit` cards are drawn per calendar day
   (counted from card created_at in the configured timezone, any state).
2. Queue space: at most `new_cards_limit` cards sit in the New state at
   once, even across days with no activity.

    needed = min(limit - fetched_today, limit - new_in_queue)

Draws are best-effort: a failed draw is logged and skipped, an exhausted
pool stops the loop, and a question that already has a card for the learner
is never drawn twice.

When the learner's unseen-problem pool drops below the low-water mark, a
catalog refill is scheduled in the background and never awaited.

Usage:
    replenisher = QueueReplenisher(repository, engine, catalog_refiller=refiller)
    created = await replenisher.ensure_queue("learner-1", now)
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol

from pattern_recall.enums.learning import CardState
from pattern_recall.middleware.error_handling import PersistenceError, ReplenishError
from pattern_recall.services.learning.repository import CardRepository
from pattern_recall.services.learning.sm2 import IntervalEngine, local_day_bounds

logger = logging.getLogger(__name__)

DEFAULT_LOW_WATER_MARK = 20


class CatalogRefiller(Protocol):
    """Content-ingestion collaborator that adds problems to the catalog."""

    async def refill(self) -> int:
        """Fetch more problems; returns the number added."""
        ...


NewCardsLimitLookup = Callable[[str], Awaitable[int]]

# Strong references to in-flight refill tasks (the loop only keeps weak ones)
_background_tasks: set[asyncio.Task] = set()


class QueueReplenisher:
    """
    Draws previously unattempted problems into the learner's New queue.

    Attributes:
        repository: Card/question persistence collaborator
        engine: Interval engine used to initialize new cards
        new_cards_limit_for: Optional async lookup of a learner's daily limit;
            defaults to the stored learner setting or the configured default
        catalog_refiller: Optional ingestion collaborator for low-pool refills
        low_water_mark: Unseen-problem count that triggers a refill
    """

    def __init__(
        self,
        repository: CardRepository,
        engine: IntervalEngine,
        new_cards_limit_for: Optional[NewCardsLimitLookup] = None,
        catalog_refiller: Optional[CatalogRefiller] = None,
        low_water_mark: int = DEFAULT_LOW_WATER_MARK,
    ):
        self.repository = repository
        self.engine = engine
        self.new_cards_limit_for = new_cards_limit_for or self._stored_limit
        self.catalog_refiller = catalog_refiller
        self.low_water_mark = low_water_mark

    async def _stored_limit(self, learner_id: str) -> int:
        limit = await self.repository.get_new_cards_limit(learner_id)
        if limit is None:
            return self.engine.config.default_new_cards_limit
        return limit

    async def fetched_today(self, learner_id: str, now: datetime) -> int:
        """Cards drawn during the learner's current calendar day."""
        start, end = local_day_bounds(now, self.engine.config.timezone)
        return await self.repository.count_cards_created_between(learner_id, start, end)

    async def ensure_queue(self, learner_id: str, now: datetime) -> int:
        """
        Top up the learner's New queue.

        Args:
            learner_id: Learner to replenish for
            now: Current time (defines "today" and new cards' timestamps)

        Returns:
            Number of cards created
        """
        limit = await self.new_cards_limit_for(learner_id)

        fetched_today = await self.fetched_today(learner_id, now)
        remaining_quota = limit - fetched_today
        if remaining_quota <= 0:
            logger.debug(
                f"Daily new-card quota reached for {learner_id} "
                f"({fetched_today}/{limit})"
            )
            await self._maybe_refill_catalog(learner_id)
            return 0

        new_in_queue = await self.repository.count_cards_in_state(
            learner_id, CardState.NEW
        )
        queue_space = limit - new_in_queue
        if queue_space <= 0:
            await self._maybe_refill_catalog(learner_id)
            return 0

        needed = min(remaining_quota, queue_space)
        created = await self._draw(learner_id, needed, now)

        if created:
            logger.info(
                f"Replenished {created}/{needed} new cards for {learner_id} "
                f"(fetched today: {fetched_today + created}/{limit})"
            )

        await self._maybe_refill_catalog(learner_id)
        return created

    async def _draw(self, learner_id: str, needed: int, now: datetime) -> int:
        created = 0
        attempted: set[str] = set()

        # Each failed draw still consumes one attempt so a broken store
        # cannot spin this loop forever.
        for _ in range(needed):
            try:
                question = await self.repository.question_unseen_by(
                    learner_id, exclude=attempted
                )
            except ReplenishError as e:
                logger.warning(f"Skipping new-card draw for {learner_id}: {e}")
                continue

            if question is None:
                logger.info(f"No unseen questions left for {learner_id}")
                break

            attempted.add(question.id)

            try:
                existing = await self.repository.card_for(learner_id, question.id)
            except (ReplenishError, PersistenceError) as e:
                logger.warning(f"Could not check existing card for {question.id}: {e}")
                continue

            if existing is not None:
                logger.warning(
                    f"Question {question.id} already has a card for {learner_id}, skipping"
                )
                continue

            card = self.engine.initialize(learner_id, question.id, now)
            try:
                await self.repository.create_card(card)
            except (ReplenishError, PersistenceError) as e:
                logger.warning(f"Failed to create card for {question.id}: {e}")
                continue

            created += 1

        return created

    async def _maybe_refill_catalog(self, learner_id: str) -> None:
        if self.catalog_refiller is None:
            return
        if _background_tasks:
            # A refill is already in flight
            return

        try:
            unseen = await self.repository.count_unseen_questions(learner_id)
        except Exception as e:
            logger.warning(f"Could not count unseen questions for {learner_id}: {e}")
            return

        if unseen >= self.low_water_mark:
            return

        logger.info(
            f"Unseen pool for {learner_id} is low ({unseen} < {self.low_water_mark}), "
            "scheduling catalog refill"
        )
        task = asyncio.create_task(self.catalog_refiller.refill())
        _background_tasks.add(task)
        task.add_done_callback(_on_refill_done)


def _on_refill_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"Background catalog refill failed: {error}")
    else:
        logger.info(f"Catalog refill added {task.result()} problems")
