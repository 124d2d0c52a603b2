"""
SQLAlchemy Database Models for the Review Scheduler

Tables:
- questions: Practice problem catalog (populated by catalog ingestion)
- review_cards: One scheduling record per (learner, question)
- learner_settings: Per-learner daily new-card quota
- review_history: One row per graded or skipped review

ARCHITECTURE NOTE:
    The scheduler works on plain CardRecord dataclasses
    (services/learning/sm2.py). SqlCardRepository converts between
    ReviewCard rows and CardRecord values; nothing outside the repository
    touches these ORM classes.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from pattern_recall.db.base import Base


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class Question(Base):
    """
    Practice problem in the catalog.

    Attributes:
        id: Stable string identifier (the problem slug by convention).
        leetcode_id: Upstream problem number, when known.
        title: Problem title.
        slug: URL slug on the upstream site.
        difficulty: "Easy", "Medium" or "Hard".
        description_markdown: Problem statement shown to the learner and
            passed to the grader.
        topics: List of topic tags (e.g. ["Array", "Two Pointers"]).
        created_at: When the problem was added to the catalog.
    """

    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    leetcode_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    title: Mapped[str] = mapped_column(String(500))
    slug: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    difficulty: Mapped[str] = mapped_column(String(20), index=True)
    description_markdown: Mapped[Optional[str]] = mapped_column(Text)
    topics: Mapped[Optional[list]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )

    def __repr__(self) -> str:
        return f"<Question(id={self.id!r}, difficulty={self.difficulty!r})>"


class ReviewCard(Base):
    """
    Scheduling record for one learner and one question.

    The unique constraint on (learner_id, question_id) means the store
    itself rejects a second card for the same pair.

    Attributes:
        state: new, learning, review, relearning or suspended.
        easiness_factor: SM-2 EF, never below 1.3.
        interval_minutes: Canonical interval; interval_days is derived.
        current_step: Index into the learning steps (learning phase only).
        repetitions: Consecutive passing reviews since the last lapse.
        quality: Most recent score (0-5), null before the first review.
        next_review_at / last_reviewed_at: Scheduling timestamps.
        total_reviews / total_lapses: Lifetime counters.
    """

    __tablename__ = "review_cards"
    __table_args__ = (
        UniqueConstraint("learner_id", "question_id", name="uq_review_cards_learner_question"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    learner_id: Mapped[str] = mapped_column(String(255), index=True)
    question_id: Mapped[str] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), index=True
    )

    # Scheduling state
    state: Mapped[str] = mapped_column(String(20), default="new", index=True)
    easiness_factor: Mapped[float] = mapped_column(Float, default=2.5)
    interval_minutes: Mapped[int] = mapped_column(Integer, default=0)
    current_step: Mapped[int] = mapped_column(Integer, default=0)
    repetitions: Mapped[int] = mapped_column(Integer, default=0)
    quality: Mapped[Optional[int]] = mapped_column(Integer)

    next_review_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, index=True
    )
    last_reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Stats
    total_reviews: Mapped[int] = mapped_column(Integer, default=0)
    total_lapses: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    def __repr__(self) -> str:
        return (
            f"<ReviewCard(id={self.id}, learner={self.learner_id!r}, "
            f"question={self.question_id!r}, state={self.state!r})>"
        )


class LearnerSettings(Base):
    """Per-learner preferences. Missing rows fall back to configured defaults."""

    __tablename__ = "learner_settings"

    learner_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    new_cards_limit: Mapped[int] = mapped_column(Integer, default=5)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class ReviewHistory(Base):
    """
    Audit row written for every submitted or skipped review.

    Stores the grader output alongside the resulting scheduling values so
    the history view never has to recompute them.
    """

    __tablename__ = "review_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    learner_id: Mapped[str] = mapped_column(String(255), index=True)
    question_id: Mapped[str] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), index=True
    )
    card_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("review_cards.id", ondelete="SET NULL")
    )

    answer: Mapped[Optional[str]] = mapped_column(Text)
    score: Mapped[int] = mapped_column(Integer)
    feedback: Mapped[Optional[str]] = mapped_column(Text)
    sub_scores: Mapped[Optional[dict]] = mapped_column(JSON)
    skipped: Mapped[bool] = mapped_column(Boolean, default=False)
    time_spent_seconds: Mapped[Optional[int]] = mapped_column(Integer)

    # Scheduling result after this review
    state_after: Mapped[str] = mapped_column(String(20))
    interval_minutes_after: Mapped[int] = mapped_column(Integer, default=0)
    easiness_factor_after: Mapped[float] = mapped_column(Float, default=2.5)

    reviewed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, index=True
    )
