"""
Review Session Service

Orchestrates one study session step at the API boundary:
- get_next_card: replenish, select and load the problem to present
- get_question_detail: one problem plus the learner's card for it
- submit_answer: grade, advance the schedule and persist
- skip_card: advance with score 0, no grading
- suspend_card / unsuspend_card
- get_dashboard, get_history, update_new_cards_limit

Failure policy:
- No card for the learner/question (or the card is suspended): NotFoundError.
  Drawing and answering are separate steps; a card is never created here.
- Grading fails or times out: GradingError, and the card is not touched.
- The card write fails: PersistenceError; the computed state is discarded.
- The history write fails after the card committed: logged, not raised.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from collections.abc import Collection
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pattern_recall.enums.learning import CardState
from pattern_recall.middleware.error_handling import (
    GradingError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from pattern_recall.services.learning.grader import AnswerGrader, GradeResult
from pattern_recall.services.learning.repository import (
    CardRepository,
    HistoryEntry,
    HistoryFilter,
    QuestionRecord,
)
from pattern_recall.services.learning.selection import (
    DueCounts,
    SelectionPolicy,
    SelectionResult,
)
from pattern_recall.services.learning.sm2 import (
    CardRecord,
    IntervalEngine,
    local_day_bounds,
    suspend,
    unsuspend,
)

logger = logging.getLogger(__name__)

DEFAULT_GRADING_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_NEW_CARDS_LIMIT = 100
MAX_HISTORY_PAGE_SIZE = 200


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReviewOutcome:
    """Result of a submitted or skipped review."""

    question_id: str
    score: int
    card: CardRecord
    feedback: str = ""
    correct_approach: str = ""
    sub_scores: dict[str, int] = field(default_factory=dict)
    solution: dict[str, Any] = field(default_factory=dict)
    skipped: bool = False

    @property
    def state(self) -> CardState:
        return self.card.state

    @property
    def interval_minutes(self) -> int:
        return self.card.interval_minutes

    @property
    def interval_days(self) -> int:
        return self.card.interval_days

    @property
    def next_review_at(self) -> Optional[datetime]:
        return self.card.next_review_at


@dataclass
class NextCard:
    """Selection result plus the problem to show, when a card was selected."""

    selection: SelectionResult
    question: Optional[QuestionRecord] = None


@dataclass
class QuestionDetail:
    """A catalog problem with the learner's card for it, if one was drawn."""

    question: QuestionRecord
    card: Optional[CardRecord] = None

    @property
    def has_started(self) -> bool:
        return self.card is not None


@dataclass
class Dashboard:
    """Learner overview: card counts by state, due counts and today's activity."""

    new_cards: int
    learning_cards: int
    young_review_cards: int
    mature_review_cards: int
    suspended_cards: int
    due_counts: DueCounts
    reviews_today: int
    new_cards_limit: int
    next_due_at: Optional[datetime] = None

    @property
    def total_cards(self) -> int:
        return (
            self.new_cards
            + self.learning_cards
            + self.young_review_cards
            + self.mature_review_cards
            + self.suspended_cards
        )

    @property
    def all_cards_studied(self) -> bool:
        return self.due_counts.total_due == 0


class ReviewSessionService:
    """
    Boundary service wiring selection, grading and the interval engine.

    Usage:
        service = ReviewSessionService(repository, engine, grader, policy)
        outcome = await service.submit_answer("learner-1", "two-sum", "Use a hash map...")
    """

    def __init__(
        self,
        repository: CardRepository,
        engine: IntervalEngine,
        grader: Optional[AnswerGrader] = None,
        selection_policy: Optional[SelectionPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
        grading_timeout: float = DEFAULT_GRADING_TIMEOUT_SECONDS,
        max_new_cards_limit: int = DEFAULT_MAX_NEW_CARDS_LIMIT,
    ):
        self.repository = repository
        self.engine = engine
        self.grader = grader
        self.selection_policy = selection_policy
        self.clock = clock
        self.grading_timeout = grading_timeout
        self.max_new_cards_limit = max_new_cards_limit

    # ===========================================
    # Selection
    # ===========================================

    async def get_next_card(
        self, learner_id: str, now: Optional[datetime] = None
    ) -> NextCard:
        """Select the learner's next card and load its problem."""
        if self.selection_policy is None:
            raise RuntimeError("ReviewSessionService was built without a selection policy")

        now = now or self.clock()
        selection = await self.selection_policy.select_next(learner_id, now)
        if selection.card is None:
            return NextCard(selection=selection)

        question = await self.repository.get_question(selection.card.question_id)
        return NextCard(selection=selection, question=question)

    async def get_question_detail(
        self, learner_id: str, question_id: str
    ) -> QuestionDetail:
        """
        Look up one problem together with the learner's scheduling state.

        Raises:
            NotFoundError: Unknown question
        """
        question = await self.repository.get_question(question_id)
        if question is None:
            raise NotFoundError(f"Question {question_id} not found")

        card = await self.repository.card_for(learner_id, question_id)
        return QuestionDetail(question=question, card=card)

    # ===========================================
    # Reviews
    # ===========================================

    async def submit_answer(
        self,
        learner_id: str,
        question_id: str,
        answer: str,
        time_spent_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ReviewOutcome:
        """
        Grade an answer and advance the card's schedule.

        Raises:
            NotFoundError: No active card or unknown question
            GradingError: Grading failed or timed out (card untouched)
            PersistenceError: The scheduling result could not be saved
        """
        await self._active_card(learner_id, question_id)

        question = await self.repository.get_question(question_id)
        if question is None:
            raise NotFoundError(f"Question {question_id} not found")

        grade = await self._grade(question, answer)
        return await self._apply(
            learner_id,
            question_id,
            grade,
            now=now,
            answer=answer,
            time_spent_seconds=time_spent_seconds,
        )

    async def skip_card(
        self,
        learner_id: str,
        question_id: str,
        now: Optional[datetime] = None,
    ) -> ReviewOutcome:
        """Skip a card: scheduled exactly like a score of 0, without grading."""
        await self._active_card(learner_id, question_id)
        return await self._apply(
            learner_id,
            question_id,
            GradeResult(score=0, feedback="Skipped"),
            now=now,
            skipped=True,
        )

    async def _active_card(self, learner_id: str, question_id: str) -> CardRecord:
        card = await self.repository.card_for(learner_id, question_id)
        if card is None or card.state == CardState.SUSPENDED:
            raise NotFoundError(
                f"No active card for question {question_id}; draw the card first"
            )
        return card

    async def _grade(self, question: QuestionRecord, answer: str) -> GradeResult:
        if self.grader is None:
            raise GradingError("No grader is configured")

        try:
            return await asyncio.wait_for(
                self.grader.grade(question.title, question.description_markdown, answer),
                timeout=self.grading_timeout,
            )
        except GradingError:
            raise
        except asyncio.TimeoutError as e:
            logger.error(
                f"Grading timed out after {self.grading_timeout}s for {question.id}"
            )
            raise GradingError("Grading timed out, please try again") from e
        except Exception as e:
            logger.error(f"Grading failed for {question.id}: {e}")
            raise GradingError(f"Grading failed: {e}") from e

    async def _apply(
        self,
        learner_id: str,
        question_id: str,
        grade: GradeResult,
        now: Optional[datetime] = None,
        answer: Optional[str] = None,
        time_spent_seconds: Optional[int] = None,
        skipped: bool = False,
    ) -> ReviewOutcome:
        now = now or self.clock()

        # Re-read under a row lock; the card may have changed while grading
        card = await self.repository.card_for(learner_id, question_id, for_update=True)
        if card is None or card.state == CardState.SUSPENDED:
            raise NotFoundError(f"No active card for question {question_id}")

        updated = self.engine.advance(card, grade.score, now)

        try:
            saved = await self.repository.update_card(updated)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save review: {e}") from e

        logger.info(
            f"Card {saved.id} ({question_id}) for {learner_id}: "
            f"{card.state.value} -> {saved.state.value}, score={grade.score}, "
            f"next review at {saved.next_review_at}"
        )

        await self._record_history(
            saved,
            grade,
            now,
            answer=answer,
            time_spent_seconds=time_spent_seconds,
            skipped=skipped,
        )

        return ReviewOutcome(
            question_id=question_id,
            score=grade.score,
            card=saved,
            feedback=grade.feedback,
            correct_approach=grade.correct_approach,
            sub_scores=dict(grade.sub_scores),
            solution=dict(grade.solution),
            skipped=skipped,
        )

    async def _record_history(
        self,
        card: CardRecord,
        grade: GradeResult,
        now: datetime,
        answer: Optional[str],
        time_spent_seconds: Optional[int],
        skipped: bool,
    ) -> None:
        entry = HistoryEntry(
            learner_id=card.learner_id,
            question_id=card.question_id,
            card_id=card.id,
            score=grade.score,
            state_after=card.state,
            interval_minutes_after=card.interval_minutes,
            easiness_factor_after=card.easiness_factor,
            reviewed_at=now,
            answer=answer,
            feedback=grade.feedback,
            sub_scores=dict(grade.sub_scores),
            skipped=skipped,
            time_spent_seconds=time_spent_seconds,
        )
        try:
            await self.repository.add_history(entry)
        except Exception as e:
            logger.warning(f"Failed to record history for card {card.id}: {e}")

    # ===========================================
    # Suspension
    # ===========================================

    async def suspend_card(self, learner_id: str, question_id: str) -> CardRecord:
        """Hide a card from every due query."""
        card = await self._existing_card(learner_id, question_id)
        if card.state == CardState.SUSPENDED:
            return card
        saved = await self.repository.update_card(suspend(card))
        logger.info(f"Suspended card {saved.id} ({question_id}) for {learner_id}")
        return saved

    async def unsuspend_card(self, learner_id: str, question_id: str) -> CardRecord:
        """Restore a suspended card to review or learning."""
        card = await self._existing_card(learner_id, question_id)
        if card.state != CardState.SUSPENDED:
            return card
        saved = await self.repository.update_card(unsuspend(card))
        logger.info(
            f"Unsuspended card {saved.id} ({question_id}) for {learner_id} "
            f"-> {saved.state.value}"
        )
        return saved

    async def _existing_card(self, learner_id: str, question_id: str) -> CardRecord:
        card = await self.repository.card_for(learner_id, question_id, for_update=True)
        if card is None:
            raise NotFoundError(f"No card for question {question_id}")
        return card

    # ===========================================
    # Dashboard, history, settings
    # ===========================================

    async def new_cards_limit(self, learner_id: str) -> int:
        limit = await self.repository.get_new_cards_limit(learner_id)
        if limit is None:
            return self.engine.config.default_new_cards_limit
        return limit

    async def get_dashboard(
        self, learner_id: str, now: Optional[datetime] = None
    ) -> Dashboard:
        """Summarize the learner's cards and today's activity."""
        now = now or self.clock()
        repo = self.repository
        start, end = local_day_bounds(now, self.engine.config.timezone)

        if self.selection_policy is not None:
            due_counts = await self.selection_policy.due_counts(learner_id, now)
        else:
            due_counts = DueCounts()

        learning = await repo.count_cards_in_state(learner_id, CardState.LEARNING)
        relearning = await repo.count_cards_in_state(learner_id, CardState.RELEARNING)
        young, mature = await repo.count_cards_by_maturity(
            learner_id, self.engine.config.mature_interval_days
        )

        return Dashboard(
            new_cards=await repo.count_cards_in_state(learner_id, CardState.NEW),
            learning_cards=learning + relearning,
            young_review_cards=young,
            mature_review_cards=mature,
            suspended_cards=await repo.count_cards_in_state(
                learner_id, CardState.SUSPENDED
            ),
            due_counts=due_counts,
            reviews_today=await repo.count_reviews_between(learner_id, start, end),
            new_cards_limit=await self.new_cards_limit(learner_id),
            next_due_at=await repo.earliest_future_due(learner_id, now),
        )

    async def update_new_cards_limit(self, learner_id: str, limit: int) -> int:
        """
        Change the learner's daily new-card limit.

        Raises:
            ValidationError: If limit is outside 0..max_new_cards_limit
        """
        if limit < 0 or limit > self.max_new_cards_limit:
            raise ValidationError(
                f"New cards limit must be between 0 and {self.max_new_cards_limit}",
                details={"limit": limit},
            )
        await self.repository.set_new_cards_limit(learner_id, limit)
        logger.info(f"New cards limit for {learner_id} set to {limit}")
        return limit

    async def get_history(
        self,
        learner_id: str,
        limit: int = 50,
        offset: int = 0,
        min_score: Optional[int] = None,
        max_score: Optional[int] = None,
        states: Optional[Collection[CardState]] = None,
        difficulties: Optional[Collection[str]] = None,
    ) -> list[HistoryEntry]:
        """List review history, newest first."""
        if limit < 1 or limit > MAX_HISTORY_PAGE_SIZE:
            raise ValidationError(
                f"limit must be between 1 and {MAX_HISTORY_PAGE_SIZE}",
                details={"limit": limit},
            )
        if offset < 0:
            raise ValidationError("offset must not be negative", details={"offset": offset})
        if min_score is not None and max_score is not None and min_score > max_score:
            raise ValidationError("min_score must not exceed max_score")

        filters = HistoryFilter(
            difficulties=tuple(difficulties or ()),
            states=tuple(states or ()),
            min_score=min_score,
            max_score=max_score,
            limit=limit,
            offset=offset,
        )
        return await self.repository.list_history(learner_id, filters)

    async def get_question_history(
        self, learner_id: str, question_id: str
    ) -> list[HistoryEntry]:
        """All attempts at one question, newest first."""
        filters = HistoryFilter(limit=MAX_HISTORY_PAGE_SIZE)
        return await self.repository.list_history(
            learner_id, filters, question_id=question_id
        )
