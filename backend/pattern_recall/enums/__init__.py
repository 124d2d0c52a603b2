"""
Centralized enum definitions for the application.

Usage:
    from pattern_recall.enums import CardState, ReviewDecision

    # Or import from the specific module
    from pattern_recall.enums.learning import SelectionKind
"""

from pattern_recall.enums.learning import (
    CardState,
    LEARNING_PHASE_STATES,
    QuestionDifficulty,
    ReviewDecision,
    SelectionKind,
    SelectionOutcome,
)

__all__ = [
    "CardState",
    "LEARNING_PHASE_STATES",
    "QuestionDifficulty",
    "ReviewDecision",
    "SelectionKind",
    "SelectionOutcome",
]
