"""Pydantic models for the study API."""

from pattern_recall.models.base import StrictRequest, StrictResponse
from pattern_recall.models.learning import (
    CardResponse,
    DashboardResponse,
    DueCountsResponse,
    HistoryEntryResponse,
    HistoryResponse,
    NewCardsLimitRequest,
    NewCardsLimitResponse,
    NextCardResponse,
    QuestionDetailResponse,
    QuestionResponse,
    ReviewOutcomeResponse,
    SkipCardRequest,
    SubmitAnswerRequest,
)

__all__ = [
    "StrictRequest",
    "StrictResponse",
    "CardResponse",
    "DashboardResponse",
    "DueCountsResponse",
    "HistoryEntryResponse",
    "HistoryResponse",
    "NewCardsLimitRequest",
    "NewCardsLimitResponse",
    "NextCardResponse",
    "QuestionDetailResponse",
    "QuestionResponse",
    "ReviewOutcomeResponse",
    "SkipCardRequest",
    "SubmitAnswerRequest",
]
