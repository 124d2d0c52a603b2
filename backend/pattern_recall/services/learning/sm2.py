"""
SM-2 Interval Engine with Sub-Day Learning Steps

Pure scheduling logic for spaced repetition cards. Given a card record and
a 0-5 quality score, computes the next state, interval and easiness factor.
No I/O and no clock: the caller passes `now` explicitly.

Key Concepts:
- Easiness Factor (EF): per-card multiplier for interval growth, >= 1.3
- Learning steps: ordered minute durations a card walks through before
  graduating to day-based review intervals
- Interval: stored in minutes; interval_days is a derived display value

State Machine:
    NEW → LEARNING → REVIEW ↔ RELEARNING
    (NEW/LEARNING/RELEARNING share the learning-phase rules)

Score handling:
    The clamped score is turned into a ReviewDecision once (lapse/hard/good/
    easy) and dispatched through a transition table keyed by
    (phase, decision).

Usage:
    from pattern_recall.services.learning.sm2 import IntervalEngine, SchedulerConfig

    engine = IntervalEngine(SchedulerConfig(learning_steps=(10,)))

    card = engine.initialize("learner-1", "question-1", now)
    card = engine.advance(card, 4, now)
    print(card.state, card.interval_days, card.next_review_at)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, time, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from pattern_recall.enums.learning import (
    CardState,
    LEARNING_PHASE_STATES,
    ReviewDecision,
)

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 1440
MIN_SCORE = 0
MAX_SCORE = 5
PASSING_SCORE = 3


# ===========================================
# Configuration
# ===========================================


@dataclass(frozen=True)
class SchedulerConfig:
    """
    Scheduling parameters injected into the engine, selection policy and
    queue replenisher.

    Attributes:
        learning_steps: Ordered learning step durations in minutes
        graduating_interval_minutes: Interval after graduating with "good"
        easy_interval_minutes: Interval after graduating with "easy"
        initial_easiness: EF of a freshly drawn card
        min_easiness: EF floor
        hard_multiplier: Review-phase multiplier for a "hard" pass
        easy_bonus: Extra review-phase multiplier on top of EF for "easy"
        mature_interval_days: Review cards above this interval are mature
        default_new_cards_limit: Daily new-card quota for learners without
            a stored preference
        timezone: IANA zone defining the learner's calendar day
    """

    learning_steps: tuple[int, ...] = (10,)
    graduating_interval_minutes: int = 1440
    easy_interval_minutes: int = 2880
    initial_easiness: float = 2.5
    min_easiness: float = 1.3
    hard_multiplier: float = 1.2
    easy_bonus: float = 1.3
    mature_interval_days: int = 21
    default_new_cards_limit: int = 5
    timezone: str = "UTC"

    def __post_init__(self):
        steps = tuple(self.learning_steps)
        if not steps:
            raise ValueError("learning_steps must contain at least one step")
        if any(step <= 0 for step in steps):
            raise ValueError("learning_steps must be positive minute durations")
        if self.min_easiness <= 0:
            raise ValueError("min_easiness must be positive")
        object.__setattr__(self, "learning_steps", steps)

    @classmethod
    def from_settings(cls, settings) -> SchedulerConfig:
        """Build a scheduler configuration from application settings."""
        return cls(
            learning_steps=tuple(settings.SRS_LEARNING_STEPS_MINUTES),
            graduating_interval_minutes=settings.SRS_GRADUATING_INTERVAL_MINUTES,
            easy_interval_minutes=settings.SRS_EASY_INTERVAL_MINUTES,
            initial_easiness=settings.SRS_INITIAL_EASINESS,
            min_easiness=settings.SRS_MIN_EASINESS,
            hard_multiplier=settings.SRS_HARD_MULTIPLIER,
            easy_bonus=settings.SRS_EASY_BONUS,
            mature_interval_days=settings.SRS_MATURE_INTERVAL_DAYS,
            default_new_cards_limit=settings.SRS_DEFAULT_NEW_CARDS_LIMIT,
            timezone=settings.SRS_TIMEZONE,
        )


# ===========================================
# Card Record
# ===========================================


@dataclass
class CardRecord:
    """
    Scheduling state for one (learner, question) pair.

    This dataclass mirrors the review_cards table. The engine returns new
    instances and never mutates its input.

    Note: interval_days is derived from interval_minutes; use
    interval_days_for() rather than computing it by hand.
    """

    learner_id: str
    question_id: str
    state: CardState = CardState.NEW
    easiness_factor: float = 2.5
    interval_minutes: int = 0
    current_step: int = 0
    repetitions: int = 0  # Consecutive passing reviews since the last lapse
    quality: Optional[int] = None  # Last score, None before the first review
    next_review_at: Optional[datetime] = None
    last_reviewed_at: Optional[datetime] = None
    total_reviews: int = 0
    total_lapses: int = 0
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def interval_days(self) -> int:
        return interval_days_for(self.interval_minutes)

    def is_due(self, now: datetime) -> bool:
        """A card is due once its next review time has passed."""
        if self.state == CardState.SUSPENDED or self.next_review_at is None:
            return False
        return self.next_review_at <= now


def interval_days_for(interval_minutes: int) -> int:
    """
    Display interval in whole days.

    Floors minutes to days but never reports 0 days for a positive interval.
    """
    days = interval_minutes // MINUTES_PER_DAY
    if days == 0 and interval_minutes > 0:
        return 1
    return days


def is_mature(card: CardRecord, config: SchedulerConfig) -> bool:
    """Mature cards are review cards with an interval above the threshold."""
    return (
        card.state == CardState.REVIEW
        and card.interval_days > config.mature_interval_days
    )


def describe_state(card: CardRecord, config: SchedulerConfig) -> str:
    """Human-readable card state for dashboards and history views."""
    if card.state == CardState.REVIEW:
        return "Mature (Review)" if is_mature(card, config) else "Young (Review)"
    return {
        CardState.NEW: "New card",
        CardState.LEARNING: "Learning",
        CardState.RELEARNING: "Relearning",
        CardState.SUSPENDED: "Suspended",
    }.get(card.state, "Unknown")


# ===========================================
# Score handling
# ===========================================


def clamp_score(score: int) -> int:
    """Clamp a score into the 0-5 range (out-of-range values are not rejected)."""
    return max(MIN_SCORE, min(MAX_SCORE, int(score)))


def decide(score: int) -> ReviewDecision:
    """Map a score to its scheduling decision."""
    score = clamp_score(score)
    if score < PASSING_SCORE:
        return ReviewDecision.LAPSE
    if score == 3:
        return ReviewDecision.HARD
    if score == 4:
        return ReviewDecision.GOOD
    return ReviewDecision.EASY


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (round() would go to even)."""
    return int(math.floor(value + 0.5))


def update_easiness(easiness: float, score: int, min_easiness: float = 1.3) -> float:
    """
    SM-2 easiness recurrence.

    EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)), floored at min_easiness.
    """
    miss = MAX_SCORE - clamp_score(score)
    new_easiness = easiness + (0.1 - miss * (0.08 + miss * 0.02))
    return max(new_easiness, min_easiness)


# ===========================================
# Engine
# ===========================================


_Transition = Callable[["IntervalEngine", CardRecord], None]


@dataclass
class IntervalEngine:
    """
    SM-2 derivative scheduler with sub-day learning steps.

    Attributes:
        config: Injected scheduling parameters
    """

    config: SchedulerConfig = field(default_factory=SchedulerConfig)

    def initialize(
        self,
        learner_id: str,
        question_id: str,
        now: datetime,
    ) -> CardRecord:
        """
        Create the record for a freshly drawn problem.

        New cards start with the initial EF, zero interval/step/repetitions
        and are immediately eligible (next_review_at = now).
        """
        return CardRecord(
            learner_id=learner_id,
            question_id=question_id,
            state=CardState.NEW,
            easiness_factor=self.config.initial_easiness,
            interval_minutes=0,
            current_step=0,
            repetitions=0,
            quality=None,
            next_review_at=now,
            last_reviewed_at=None,
            total_reviews=0,
            total_lapses=0,
            created_at=now,
        )

    def advance(self, card: CardRecord, score: int, now: datetime) -> CardRecord:
        """
        Apply a review score and return the next scheduling state.

        Args:
            card: Current card record (not modified)
            score: Quality score; clamped to 0-5
            now: Review timestamp

        Returns:
            New CardRecord with updated state, interval, EF, counters and
            next review time.

        Raises:
            ValueError: If the card is suspended
        """
        if card.state == CardState.SUSPENDED:
            raise ValueError(f"Card {card.id} is suspended and cannot be reviewed")

        score = clamp_score(score)
        decision = decide(score)
        phase = "learning" if card.state in LEARNING_PHASE_STATES else "review"

        updated = replace(card)
        _TRANSITIONS[(phase, decision)](self, updated)

        updated.easiness_factor = update_easiness(
            card.easiness_factor, score, self.config.min_easiness
        )
        updated.quality = score
        updated.total_reviews = card.total_reviews + 1
        updated.next_review_at = now + timedelta(minutes=updated.interval_minutes)
        updated.last_reviewed_at = now

        logger.debug(
            f"Card {card.id}: {card.state.value} -> {updated.state.value} "
            f"({decision.value}, interval={updated.interval_minutes}m, "
            f"ef={updated.easiness_factor:.2f})"
        )
        return updated

    def skip(self, card: CardRecord, now: datetime) -> CardRecord:
        """Skipping is scheduled exactly like a score of 0."""
        return self.advance(card, MIN_SCORE, now)

    # --- learning phase (NEW, LEARNING, RELEARNING) ---

    def _learning_lapse(self, card: CardRecord) -> None:
        card.current_step = 0
        card.interval_minutes = self.config.learning_steps[0]
        card.repetitions = 0
        card.total_lapses += 1
        if card.state == CardState.NEW:
            card.state = CardState.LEARNING

    def _learning_hard(self, card: CardRecord) -> None:
        card.current_step = max(card.current_step - 1, 0)
        card.interval_minutes = self.config.learning_steps[card.current_step]
        card.repetitions += 1
        if card.state == CardState.NEW:
            card.state = CardState.LEARNING

    def _learning_good(self, card: CardRecord) -> None:
        steps = self.config.learning_steps
        card.current_step += 1
        card.repetitions += 1
        if card.current_step >= len(steps):
            self._graduate(card, self.config.graduating_interval_minutes)
        else:
            card.interval_minutes = steps[card.current_step]
            if card.state == CardState.NEW:
                card.state = CardState.LEARNING

    def _learning_easy(self, card: CardRecord) -> None:
        steps = self.config.learning_steps
        card.repetitions += 1
        if card.current_step >= len(steps) - 2:
            self._graduate(card, self.config.easy_interval_minutes)
        else:
            card.current_step = len(steps) - 2
            card.interval_minutes = steps[card.current_step]
            if card.state == CardState.NEW:
                card.state = CardState.LEARNING

    def _graduate(self, card: CardRecord, interval_minutes: int) -> None:
        card.state = CardState.REVIEW
        card.interval_minutes = interval_minutes
        card.current_step = 0

    # --- review phase ---

    def _review_lapse(self, card: CardRecord) -> None:
        card.state = CardState.RELEARNING
        card.current_step = 0
        card.interval_minutes = self.config.learning_steps[0]
        card.repetitions = 0
        card.total_lapses += 1

    def _review_pass(self, card: CardRecord, multiplier: float) -> None:
        card.repetitions += 1
        days = max(round_half_up(card.interval_days * multiplier), 1)
        card.interval_minutes = days * MINUTES_PER_DAY

    def _review_hard(self, card: CardRecord) -> None:
        self._review_pass(card, self.config.hard_multiplier)

    def _review_good(self, card: CardRecord) -> None:
        self._review_pass(card, card.easiness_factor)

    def _review_easy(self, card: CardRecord) -> None:
        self._review_pass(card, card.easiness_factor * self.config.easy_bonus)


# Transition table keyed by (phase, decision)
_TRANSITIONS: dict[tuple[str, ReviewDecision], _Transition] = {
    ("learning", ReviewDecision.LAPSE): IntervalEngine._learning_lapse,
    ("learning", ReviewDecision.HARD): IntervalEngine._learning_hard,
    ("learning", ReviewDecision.GOOD): IntervalEngine._learning_good,
    ("learning", ReviewDecision.EASY): IntervalEngine._learning_easy,
    ("review", ReviewDecision.LAPSE): IntervalEngine._review_lapse,
    ("review", ReviewDecision.HARD): IntervalEngine._review_hard,
    ("review", ReviewDecision.GOOD): IntervalEngine._review_good,
    ("review", ReviewDecision.EASY): IntervalEngine._review_easy,
}


# ===========================================
# Suspension
# ===========================================


def suspend(card: CardRecord) -> CardRecord:
    """Hide a card from every due query. Only the state changes."""
    return replace(card, state=CardState.SUSPENDED)


def unsuspend(card: CardRecord) -> CardRecord:
    """
    Restore a suspended card.

    Returns NEW for a card that was never reviewed, REVIEW when the card has
    at least a whole day of interval and LEARNING otherwise; no other field
    changes. Uses the floored day count, not interval_days (which reports 1
    for any sub-day step). Non-suspended cards are returned unchanged.
    """
    if card.state != CardState.SUSPENDED:
        return replace(card)
    if card.total_reviews == 0:
        # interval_minutes is 0 only for a never-reviewed New card
        return replace(card, state=CardState.NEW)
    whole_days = card.interval_minutes // MINUTES_PER_DAY
    restored = CardState.REVIEW if whole_days >= 1 else CardState.LEARNING
    return replace(card, state=restored)


def create_engine(config: Optional[SchedulerConfig] = None) -> IntervalEngine:
    """
    Create a configured interval engine.

    Args:
        config: Scheduling parameters (defaults to SchedulerConfig())

    Returns:
        Configured IntervalEngine instance
    """
    return IntervalEngine(config=config or SchedulerConfig())


def local_day_bounds(now: datetime, tz_name: str = "UTC") -> tuple[datetime, datetime]:
    """
    Start and end of the learner's calendar day containing `now`.

    Args:
        now: Timezone-aware timestamp
        tz_name: IANA zone that defines the day boundary

    Returns:
        (start, end) as aware datetimes; the window is [start, end)
    """
    zone = ZoneInfo(tz_name)
    local = now.astimezone(zone)
    start = datetime.combine(local.date(), time.min, tzinfo=zone)
    end = datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=zone)
    return start, end
