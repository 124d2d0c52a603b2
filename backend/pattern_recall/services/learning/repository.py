"""
Card Repository

The persistence boundary of the scheduler. Selection, replenishment and the
review orchestrator depend only on the abstract CardRepository; the
SQLAlchemy implementation converts between ORM rows and the plain
CardRecord / QuestionRecord / HistoryEntry values the engine works with.

Concurrency:
    At most one scheduling mutation per (learner, question) is expected in
    flight. SqlCardRepository.card_for(..., for_update=True) takes a row lock
    for the read-modify-write in the orchestrator, and the unique constraint
    on review_cards rejects duplicate cards from racing replenishers.

Usage:
    from pattern_recall.services.learning.repository import SqlCardRepository

    repository = SqlCardRepository(db)
    card = await repository.card_for("learner-1", "two-sum")
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_recall.db.models import LearnerSettings, Question, ReviewCard, ReviewHistory
from pattern_recall.enums.learning import CardState
from pattern_recall.middleware.error_handling import PersistenceError, ReplenishError
from pattern_recall.services.learning.sm2 import MINUTES_PER_DAY, CardRecord

logger = logging.getLogger(__name__)


@dataclass
class QuestionRecord:
    """Catalog problem as seen by the scheduler and grader."""

    id: str
    title: str
    difficulty: str
    description_markdown: str = ""
    slug: Optional[str] = None
    leetcode_id: Optional[int] = None
    topics: list[str] = field(default_factory=list)


@dataclass
class HistoryEntry:
    """One submitted or skipped review, with the scheduling result it produced."""

    learner_id: str
    question_id: str
    score: int
    state_after: CardState
    interval_minutes_after: int
    easiness_factor_after: float
    reviewed_at: datetime
    card_id: Optional[int] = None
    answer: Optional[str] = None
    feedback: Optional[str] = None
    sub_scores: dict[str, int] = field(default_factory=dict)
    skipped: bool = False
    time_spent_seconds: Optional[int] = None
    question_title: Optional[str] = None
    difficulty: Optional[str] = None
    id: Optional[int] = None


@dataclass
class HistoryFilter:
    """Filters for listing review history (all optional)."""

    difficulties: Collection[str] = ()
    states: Collection[CardState] = ()
    min_score: Optional[int] = None
    max_score: Optional[int] = None
    limit: int = 50
    offset: int = 0


class CardRepository(ABC):
    """
    Abstract persistence collaborator for cards, questions and history.

    Implementations raise PersistenceError for failed writes and
    ReplenishError for failed content draws.
    """

    # --- questions ---

    @abstractmethod
    async def question_unseen_by(
        self, learner_id: str, exclude: Collection[str] = ()
    ) -> Optional[QuestionRecord]:
        """Return a question with no card for this learner, or None if exhausted."""

    @abstractmethod
    async def get_question(self, question_id: str) -> Optional[QuestionRecord]:
        """Return a catalog question by id."""

    @abstractmethod
    async def count_unseen_questions(self, learner_id: str) -> int:
        """Count catalog questions the learner has no card for."""

    # --- cards ---

    @abstractmethod
    async def card_for(
        self, learner_id: str, question_id: str, for_update: bool = False
    ) -> Optional[CardRecord]:
        """Return the learner's card for a question, if one exists."""

    @abstractmethod
    async def create_card(self, card: CardRecord) -> CardRecord:
        """Persist a new card and return it with its id assigned."""

    @abstractmethod
    async def update_card(self, card: CardRecord) -> CardRecord:
        """Persist the scheduling fields of an existing card."""

    @abstractmethod
    async def count_cards_created_between(
        self,
        learner_id: str,
        start: datetime,
        end: datetime,
        exclude_states: Collection[CardState] = (),
    ) -> int:
        """Count cards created in [start, end), optionally excluding some states."""

    @abstractmethod
    async def count_cards_in_state(self, learner_id: str, state: CardState) -> int:
        """Count the learner's cards currently in a state."""

    @abstractmethod
    async def count_due(
        self, learner_id: str, states: Collection[CardState], now: datetime
    ) -> int:
        """Count cards in the given states with next_review_at <= now."""

    @abstractmethod
    async def earliest_due(
        self, learner_id: str, states: Collection[CardState], now: datetime
    ) -> Optional[CardRecord]:
        """Due card in the given states with the earliest (next_review_at, id)."""

    @abstractmethod
    async def oldest_new_card(self, learner_id: str) -> Optional[CardRecord]:
        """New-state card with the earliest (created_at, id)."""

    @abstractmethod
    async def earliest_future_due(
        self, learner_id: str, now: datetime
    ) -> Optional[datetime]:
        """Earliest next_review_at > now among non-suspended cards."""

    @abstractmethod
    async def count_cards_by_maturity(
        self, learner_id: str, mature_interval_days: int
    ) -> tuple[int, int]:
        """Return (young, mature) review-state card counts."""

    # --- learner settings ---

    @abstractmethod
    async def get_new_cards_limit(self, learner_id: str) -> Optional[int]:
        """Return the learner's stored daily new-card limit, if any."""

    @abstractmethod
    async def set_new_cards_limit(self, learner_id: str, limit: int) -> None:
        """Store the learner's daily new-card limit."""

    # --- history ---

    @abstractmethod
    async def add_history(self, entry: HistoryEntry) -> HistoryEntry:
        """Record a submitted or skipped review."""

    @abstractmethod
    async def list_history(
        self,
        learner_id: str,
        filters: Optional[HistoryFilter] = None,
        question_id: Optional[str] = None,
    ) -> list[HistoryEntry]:
        """Newest-first review history for a learner."""

    @abstractmethod
    async def count_reviews_between(
        self, learner_id: str, start: datetime, end: datetime
    ) -> int:
        """Count history rows in [start, end)."""


# ===========================================
# SQLAlchemy implementation
# ===========================================


def card_from_row(row: ReviewCard) -> CardRecord:
    return CardRecord(
        id=row.id,
        learner_id=row.learner_id,
        question_id=row.question_id,
        state=CardState(row.state),
        easiness_factor=row.easiness_factor,
        interval_minutes=row.interval_minutes,
        current_step=row.current_step,
        repetitions=row.repetitions,
        quality=row.quality,
        next_review_at=row.next_review_at,
        last_reviewed_at=row.last_reviewed_at,
        total_reviews=row.total_reviews,
        total_lapses=row.total_lapses,
        created_at=row.created_at,
    )


def question_from_row(row: Question) -> QuestionRecord:
    return QuestionRecord(
        id=row.id,
        title=row.title,
        difficulty=row.difficulty,
        description_markdown=row.description_markdown or "",
        slug=row.slug,
        leetcode_id=row.leetcode_id,
        topics=list(row.topics or []),
    )


def _apply_card_fields(row: ReviewCard, card: CardRecord) -> None:
    row.state = card.state.value
    row.easiness_factor = card.easiness_factor
    row.interval_minutes = card.interval_minutes
    row.current_step = card.current_step
    row.repetitions = card.repetitions
    row.quality = card.quality
    row.next_review_at = card.next_review_at
    row.last_reviewed_at = card.last_reviewed_at
    row.total_reviews = card.total_reviews
    row.total_lapses = card.total_lapses


def _state_values(states: Collection[CardState]) -> list[str]:
    return [CardState(s).value for s in states]


class SqlCardRepository(CardRepository):
    """CardRepository over an async SQLAlchemy session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _unseen_condition(self, learner_id: str):
        seen = select(ReviewCard.question_id).where(ReviewCard.learner_id == learner_id)
        return Question.id.not_in(seen)

    async def question_unseen_by(
        self, learner_id: str, exclude: Collection[str] = ()
    ) -> Optional[QuestionRecord]:
        query = select(Question).where(self._unseen_condition(learner_id))
        if exclude:
            query = query.where(Question.id.not_in(list(exclude)))
        query = query.order_by(func.random()).limit(1)

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise ReplenishError(f"Failed to draw a new question: {e}") from e

        row = result.scalar_one_or_none()
        return question_from_row(row) if row else None

    async def get_question(self, question_id: str) -> Optional[QuestionRecord]:
        result = await self.db.execute(select(Question).where(Question.id == question_id))
        row = result.scalar_one_or_none()
        return question_from_row(row) if row else None

    async def count_unseen_questions(self, learner_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Question.id)).where(self._unseen_condition(learner_id))
        )
        return result.scalar() or 0

    async def _card_row(
        self, learner_id: str, question_id: str, for_update: bool = False
    ) -> Optional[ReviewCard]:
        query = select(ReviewCard).where(
            ReviewCard.learner_id == learner_id,
            ReviewCard.question_id == question_id,
        )
        if for_update:
            query = query.with_for_update()
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load card for question {question_id}: {e}") from e
        return result.scalar_one_or_none()

    async def card_for(
        self, learner_id: str, question_id: str, for_update: bool = False
    ) -> Optional[CardRecord]:
        row = await self._card_row(learner_id, question_id, for_update=for_update)
        return card_from_row(row) if row else None

    async def create_card(self, card: CardRecord) -> CardRecord:
        row = ReviewCard(learner_id=card.learner_id, question_id=card.question_id)
        _apply_card_fields(row, card)
        if card.created_at is not None:
            row.created_at = card.created_at

        self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ReplenishError(
                f"Card already exists for question {card.question_id}"
            ) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Failed to create card: {e}") from e

        await self.db.refresh(row)
        logger.debug(f"Created card {row.id} for {card.learner_id}/{card.question_id}")
        return card_from_row(row)

    async def update_card(self, card: CardRecord) -> CardRecord:
        try:
            row = await self._card_row(card.learner_id, card.question_id)
            if row is None:
                raise PersistenceError(
                    f"Card for question {card.question_id} disappeared before commit"
                )
            _apply_card_fields(row, card)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Failed to update card: {e}") from e

        await self.db.refresh(row)
        return card_from_row(row)

    async def count_cards_created_between(
        self,
        learner_id: str,
        start: datetime,
        end: datetime,
        exclude_states: Collection[CardState] = (),
    ) -> int:
        query = select(func.count(ReviewCard.id)).where(
            ReviewCard.learner_id == learner_id,
            ReviewCard.created_at >= start,
            ReviewCard.created_at < end,
        )
        if exclude_states:
            query = query.where(ReviewCard.state.not_in(_state_values(exclude_states)))
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def count_cards_in_state(self, learner_id: str, state: CardState) -> int:
        result = await self.db.execute(
            select(func.count(ReviewCard.id)).where(
                ReviewCard.learner_id == learner_id,
                ReviewCard.state == CardState(state).value,
            )
        )
        return result.scalar() or 0

    async def count_due(
        self, learner_id: str, states: Collection[CardState], now: datetime
    ) -> int:
        result = await self.db.execute(
            select(func.count(ReviewCard.id)).where(
                ReviewCard.learner_id == learner_id,
                ReviewCard.state.in_(_state_values(states)),
                ReviewCard.next_review_at <= now,
            )
        )
        return result.scalar() or 0

    async def earliest_due(
        self, learner_id: str, states: Collection[CardState], now: datetime
    ) -> Optional[CardRecord]:
        result = await self.db.execute(
            select(ReviewCard)
            .where(
                ReviewCard.learner_id == learner_id,
                ReviewCard.state.in_(_state_values(states)),
                ReviewCard.next_review_at <= now,
            )
            .order_by(ReviewCard.next_review_at.asc(), ReviewCard.id.asc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return card_from_row(row) if row else None

    async def oldest_new_card(self, learner_id: str) -> Optional[CardRecord]:
        result = await self.db.execute(
            select(ReviewCard)
            .where(
                ReviewCard.learner_id == learner_id,
                ReviewCard.state == CardState.NEW.value,
            )
            .order_by(ReviewCard.created_at.asc(), ReviewCard.id.asc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return card_from_row(row) if row else None

    async def earliest_future_due(
        self, learner_id: str, now: datetime
    ) -> Optional[datetime]:
        result = await self.db.execute(
            select(func.min(ReviewCard.next_review_at)).where(
                ReviewCard.learner_id == learner_id,
                ReviewCard.state != CardState.SUSPENDED.value,
                ReviewCard.next_review_at > now,
            )
        )
        return result.scalar()

    async def count_cards_by_maturity(
        self, learner_id: str, mature_interval_days: int
    ) -> tuple[int, int]:
        # interval_days > N  <=>  interval_minutes >= (N + 1) days
        mature_minutes = (mature_interval_days + 1) * MINUTES_PER_DAY
        conditions = [
            ReviewCard.learner_id == learner_id,
            ReviewCard.state == CardState.REVIEW.value,
        ]
        result = await self.db.execute(
            select(
                func.count(ReviewCard.id).filter(
                    ReviewCard.interval_minutes < mature_minutes
                ),
                func.count(ReviewCard.id).filter(
                    ReviewCard.interval_minutes >= mature_minutes
                ),
            ).where(and_(*conditions))
        )
        young, mature = result.one()
        return young or 0, mature or 0

    async def get_new_cards_limit(self, learner_id: str) -> Optional[int]:
        result = await self.db.execute(
            select(LearnerSettings.new_cards_limit).where(
                LearnerSettings.learner_id == learner_id
            )
        )
        return result.scalar_one_or_none()

    async def set_new_cards_limit(self, learner_id: str, limit: int) -> None:
        try:
            row = await self.db.get(LearnerSettings, learner_id)
            if row is None:
                self.db.add(LearnerSettings(learner_id=learner_id, new_cards_limit=limit))
            else:
                row.new_cards_limit = limit
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Failed to save learner settings: {e}") from e

    async def add_history(self, entry: HistoryEntry) -> HistoryEntry:
        row = ReviewHistory(
            learner_id=entry.learner_id,
            question_id=entry.question_id,
            card_id=entry.card_id,
            answer=entry.answer,
            score=entry.score,
            feedback=entry.feedback,
            sub_scores=entry.sub_scores or None,
            skipped=entry.skipped,
            time_spent_seconds=entry.time_spent_seconds,
            state_after=CardState(entry.state_after).value,
            interval_minutes_after=entry.interval_minutes_after,
            easiness_factor_after=entry.easiness_factor_after,
            reviewed_at=entry.reviewed_at,
        )
        self.db.add(row)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Failed to record review history: {e}") from e

        await self.db.refresh(row)
        entry.id = row.id
        return entry

    async def list_history(
        self,
        learner_id: str,
        filters: Optional[HistoryFilter] = None,
        question_id: Optional[str] = None,
    ) -> list[HistoryEntry]:
        filters = filters or HistoryFilter()

        query = (
            select(ReviewHistory, Question.title, Question.difficulty)
            .join(Question, Question.id == ReviewHistory.question_id)
            .where(ReviewHistory.learner_id == learner_id)
        )
        if question_id is not None:
            query = query.where(ReviewHistory.question_id == question_id)
        if filters.difficulties:
            query = query.where(Question.difficulty.in_(list(filters.difficulties)))
        if filters.states:
            query = query.where(ReviewHistory.state_after.in_(_state_values(filters.states)))
        if filters.min_score is not None:
            query = query.where(ReviewHistory.score >= filters.min_score)
        if filters.max_score is not None:
            query = query.where(ReviewHistory.score <= filters.max_score)

        query = (
            query.order_by(ReviewHistory.reviewed_at.desc(), ReviewHistory.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )

        result = await self.db.execute(query)
        return [
            _history_from_row(row, title, difficulty)
            for row, title, difficulty in result.all()
        ]

    async def count_reviews_between(
        self, learner_id: str, start: datetime, end: datetime
    ) -> int:
        result = await self.db.execute(
            select(func.count(ReviewHistory.id)).where(
                ReviewHistory.learner_id == learner_id,
                ReviewHistory.reviewed_at >= start,
                ReviewHistory.reviewed_at < end,
            )
        )
        return result.scalar() or 0


def _history_from_row(row: ReviewHistory, title: Any, difficulty: Any) -> HistoryEntry:
    return HistoryEntry(
        id=row.id,
        learner_id=row.learner_id,
        question_id=row.question_id,
        card_id=row.card_id,
        answer=row.answer,
        score=row.score,
        feedback=row.feedback,
        sub_scores=dict(row.sub_scores or {}),
        skipped=bool(row.skipped),
        time_spent_seconds=row.time_spent_seconds,
        state_after=CardState(row.state_after),
        interval_minutes_after=row.interval_minutes_after,
        easiness_factor_after=row.easiness_factor_after,
        reviewed_at=row.reviewed_at,
        question_title=title,
        difficulty=difficulty,
    )
