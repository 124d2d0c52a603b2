"""
Next-Card Selection Policy

Decides which card a learner should study next.

Priority order:
    1. Replenish the New queue (failures never block selection)
    2. New: oldest New card by (created_at, id)
    3. Learning/Relearning due: earliest by (next_review_at, id)
    4. Review due: earliest by (next_review_at, id)
    5. Nothing due: WAIT until the earliest future due time among
       non-suspended cards, or DONE_FOR_TODAY if there is none

With no intervening writes the decision is idempotent: asking twice
returns the same card.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from pattern_recall.enums.learning import CardState, SelectionKind, SelectionOutcome
from pattern_recall.services.learning.queue_replenisher import QueueReplenisher
from pattern_recall.services.learning.repository import CardRepository
from pattern_recall.services.learning.sm2 import CardRecord, local_day_bounds

logger = logging.getLogger(__name__)

LEARNING_DUE_STATES = (CardState.LEARNING, CardState.RELEARNING)
REVIEW_DUE_STATES = (CardState.REVIEW,)


@dataclass
class DueCounts:
    """Per-bucket counts shown alongside the selected card."""

    learning_due: int = 0
    review_due: int = 0
    new_available: int = 0
    new_studied_today: int = 0
    fetched_today: int = 0

    @property
    def total_due(self) -> int:
        return self.learning_due + self.review_due + self.new_available


@dataclass
class SelectionResult:
    """
    Outcome of select_next.

    Exactly one of `card` (outcome CARD) or `next_due_at` (outcome WAIT) is
    set; DONE_FOR_TODAY carries neither.
    """

    outcome: SelectionOutcome
    kind: Optional[SelectionKind] = None
    card: Optional[CardRecord] = None
    next_due_at: Optional[datetime] = None
    due_counts: DueCounts = field(default_factory=DueCounts)


class SelectionPolicy:
    """Picks the next card from the learner's New, Learning and Review buckets."""

    def __init__(
        self,
        repository: CardRepository,
        replenisher: QueueReplenisher,
    ):
        self.repository = repository
        self.replenisher = replenisher

    async def select_next(self, learner_id: str, now: datetime) -> SelectionResult:
        """
        Select the next card for a learner.

        Args:
            learner_id: Learner to select for
            now: Current time; due means next_review_at <= now

        Returns:
            SelectionResult (card, wait or done for today)
        """
        try:
            await self.replenisher.ensure_queue(learner_id, now)
        except Exception as e:
            logger.warning(f"Queue replenishment failed for {learner_id}: {e}")

        due_counts = await self.due_counts(learner_id, now)

        card = await self.repository.oldest_new_card(learner_id)
        if card is not None:
            return self._offer(card, SelectionKind.NEW, due_counts)

        card = await self.repository.earliest_due(learner_id, LEARNING_DUE_STATES, now)
        if card is not None:
            return self._offer(card, SelectionKind.LEARNING, due_counts)

        card = await self.repository.earliest_due(learner_id, REVIEW_DUE_STATES, now)
        if card is not None:
            return self._offer(card, SelectionKind.REVIEW, due_counts)

        next_due_at = await self.repository.earliest_future_due(learner_id, now)
        if next_due_at is not None:
            logger.debug(f"Nothing due for {learner_id}; next card at {next_due_at}")
            return SelectionResult(
                outcome=SelectionOutcome.WAIT,
                next_due_at=next_due_at,
                due_counts=due_counts,
            )

        return SelectionResult(
            outcome=SelectionOutcome.DONE_FOR_TODAY,
            due_counts=due_counts,
        )

    async def due_counts(self, learner_id: str, now: datetime) -> DueCounts:
        """Count due cards per bucket and today's new-card activity."""
        start, end = local_day_bounds(now, self.replenisher.engine.config.timezone)
        fetched_today = await self.repository.count_cards_created_between(
            learner_id, start, end
        )
        new_available = await self.repository.count_cards_in_state(
            learner_id, CardState.NEW
        )
        return DueCounts(
            learning_due=await self.repository.count_due(
                learner_id, LEARNING_DUE_STATES, now
            ),
            review_due=await self.repository.count_due(
                learner_id, REVIEW_DUE_STATES, now
            ),
            new_available=new_available,
            new_studied_today=await self.repository.count_cards_created_between(
                learner_id, start, end, exclude_states=(CardState.NEW,)
            ),
            fetched_today=fetched_today,
        )

    def _offer(
        self, card: CardRecord, kind: SelectionKind, due_counts: DueCounts
    ) -> SelectionResult:
        return SelectionResult(
            outcome=SelectionOutcome.CARD,
            kind=kind,
            card=card,
            due_counts=due_counts,
        )
