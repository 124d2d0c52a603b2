"""
Study API Models (Pydantic)

Request/response schemas for the study session API:
- Next card selection
- Answer submission and skip
- Card suspension
- Dashboard, history and learner settings

ARCHITECTURE NOTE:
    Services return plain dataclasses (CardRecord, ReviewOutcome,
    Dashboard, HistoryEntry); these models only shape them for HTTP.

    Data flows: API Request → Pydantic → Service → Repository → Database
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from pattern_recall.enums.learning import CardState, SelectionKind, SelectionOutcome
from pattern_recall.models.base import StrictRequest, StrictResponse


# ===========================================
# Cards and questions
# ===========================================


class CardResponse(StrictResponse):
    """Scheduling state of one card."""

    id: Optional[int] = None
    question_id: str
    state: CardState
    easiness_factor: float
    interval_minutes: int
    interval_days: int
    current_step: int
    repetitions: int
    quality: Optional[int] = None
    next_review_at: Optional[datetime] = None
    last_reviewed_at: Optional[datetime] = None
    total_reviews: int
    total_lapses: int


class QuestionResponse(StrictResponse):
    """Problem shown to the learner."""

    id: str
    title: str
    difficulty: str
    description_markdown: str = ""
    slug: Optional[str] = None
    leetcode_id: Optional[int] = None
    topics: list[str] = Field(default_factory=list)


class DueCountsResponse(StrictResponse):
    learning_due: int = 0
    review_due: int = 0
    new_available: int = 0
    new_studied_today: int = 0
    fetched_today: int = 0


class NextCardResponse(StrictResponse):
    """
    Next-card selection.

    outcome "card" carries card and question; "wait" carries next_due_at;
    "done_for_today" carries neither.
    """

    outcome: SelectionOutcome
    kind: Optional[SelectionKind] = None
    card: Optional[CardResponse] = None
    question: Optional[QuestionResponse] = None
    next_due_at: Optional[datetime] = None
    due_counts: DueCountsResponse


class QuestionDetailResponse(StrictResponse):
    """A problem with the learner's card for it; card is null before the first draw."""

    question: QuestionResponse
    card: Optional[CardResponse] = None
    has_started: bool


# ===========================================
# Reviews
# ===========================================


class SubmitAnswerRequest(StrictRequest):
    """Learner's explanation of how to solve a problem."""

    question_id: str = Field(..., min_length=1)
    answer: str = Field(..., max_length=20000)
    time_spent_seconds: Optional[int] = Field(None, ge=0)


class SkipCardRequest(StrictRequest):
    question_id: str = Field(..., min_length=1)


class ReviewOutcomeResponse(StrictResponse):
    """Grading feedback plus the card's new schedule."""

    question_id: str
    score: int = Field(..., ge=0, le=5)
    skipped: bool = False
    feedback: str = ""
    correct_approach: str = ""
    sub_scores: dict[str, int] = Field(default_factory=dict)
    solution: dict[str, Any] = Field(default_factory=dict)
    state: CardState
    interval_minutes: int
    interval_days: int
    next_review_at: Optional[datetime] = None


# ===========================================
# Dashboard, history, settings
# ===========================================


class DashboardResponse(StrictResponse):
    new_cards: int
    learning_cards: int
    young_review_cards: int
    mature_review_cards: int
    suspended_cards: int
    total_cards: int
    due_counts: DueCountsResponse
    reviews_today: int
    new_cards_limit: int
    next_due_at: Optional[datetime] = None
    all_cards_studied: bool


class HistoryEntryResponse(StrictResponse):
    id: Optional[int] = None
    question_id: str
    question_title: Optional[str] = None
    difficulty: Optional[str] = None
    score: int
    skipped: bool = False
    answer: Optional[str] = None
    feedback: Optional[str] = None
    sub_scores: dict[str, int] = Field(default_factory=dict)
    state_after: CardState
    interval_minutes_after: int
    easiness_factor_after: float
    time_spent_seconds: Optional[int] = None
    reviewed_at: datetime


class HistoryResponse(StrictResponse):
    items: list[HistoryEntryResponse]
    limit: int
    offset: int


class NewCardsLimitRequest(StrictRequest):
    """Daily new-card limit; the upper bound is enforced by the service."""

    limit: int = Field(..., ge=0)


class NewCardsLimitResponse(StrictResponse):
    limit: int
