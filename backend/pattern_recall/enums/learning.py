"""
Learning System Enums

Defines enums for the SM-2 spaced repetition scheduler, the next-card
selection policy and the problem catalog.
"""

from enum import Enum


class CardState(str, Enum):
    """
    Card states in the scheduling state machine.

    State transitions:
    - NEW → LEARNING (first review, any score except a graduating one)
    - NEW/LEARNING/RELEARNING → REVIEW (graduated)
    - REVIEW → REVIEW (pass) or RELEARNING (lapse)
    - any → SUSPENDED (manual), SUSPENDED → NEW/LEARNING/REVIEW (unsuspend)
    """

    NEW = "new"  # Drawn but never reviewed
    LEARNING = "learning"  # Sub-day learning steps
    REVIEW = "review"  # Graduated, day-based intervals
    RELEARNING = "relearning"  # Lapsed from review
    SUSPENDED = "suspended"  # Hidden from every due query


LEARNING_PHASE_STATES = frozenset(
    {CardState.NEW, CardState.LEARNING, CardState.RELEARNING}
)


class ReviewDecision(str, Enum):
    """
    Scheduling decision derived once from a clamped 0-5 score.

    - LAPSE: score 0-2, the card was not recalled
    - HARD: score 3
    - GOOD: score 4
    - EASY: score 5
    """

    LAPSE = "lapse"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


class SelectionKind(str, Enum):
    """Which priority bucket a selected card came from."""

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"


class SelectionOutcome(str, Enum):
    """Result type of a next-card selection."""

    CARD = "card"  # A card should be presented now
    WAIT = "wait"  # Nothing due; next card becomes due later
    DONE_FOR_TODAY = "done_for_today"  # Nothing due and nothing scheduled


class QuestionDifficulty(str, Enum):
    """Catalog difficulty labels for practice problems."""

    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"
