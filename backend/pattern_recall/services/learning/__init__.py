"""
Learning System Services

Services for the SM-2 spaced repetition scheduler and the study session.

Modules:
- sm2: Interval engine (pure scheduling logic)
- repository: Card/question persistence boundary
- queue_replenisher: Daily new-card draws and catalog refill trigger
- selection: Next-card selection policy
- grader: LLM answer grading
- review_service: Session orchestration (submit, skip, suspend, dashboard)

Usage:
    from pattern_recall.services.learning import (
        IntervalEngine,
        SchedulerConfig,
        SelectionPolicy,
        QueueReplenisher,
        ReviewSessionService,
    )
"""

from pattern_recall.services.learning.sm2 import (
    CardRecord,
    IntervalEngine,
    SchedulerConfig,
    clamp_score,
    create_engine,
    decide,
    interval_days_for,
    is_mature,
    suspend,
    unsuspend,
)
from pattern_recall.services.learning.repository import (
    CardRepository,
    HistoryEntry,
    HistoryFilter,
    QuestionRecord,
    SqlCardRepository,
)
from pattern_recall.services.learning.queue_replenisher import (
    CatalogRefiller,
    QueueReplenisher,
)
from pattern_recall.services.learning.selection import (
    DueCounts,
    SelectionPolicy,
    SelectionResult,
)
from pattern_recall.services.learning.grader import AnswerGrader, GradeResult
from pattern_recall.services.learning.review_service import (
    Dashboard,
    NextCard,
    ReviewOutcome,
    ReviewSessionService,
)

__all__ = [
    # Engine
    "CardRecord",
    "IntervalEngine",
    "SchedulerConfig",
    "clamp_score",
    "create_engine",
    "decide",
    "interval_days_for",
    "is_mature",
    "suspend",
    "unsuspend",
    # Persistence
    "CardRepository",
    "HistoryEntry",
    "HistoryFilter",
    "QuestionRecord",
    "SqlCardRepository",
    # Queue and selection
    "CatalogRefiller",
    "QueueReplenisher",
    "DueCounts",
    "SelectionPolicy",
    "SelectionResult",
    # Grading and orchestration
    "AnswerGrader",
    "GradeResult",
    "Dashboard",
    "NextCard",
    "ReviewOutcome",
    "ReviewSessionService",
]
