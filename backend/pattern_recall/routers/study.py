"""
Study API Router

Endpoints for the spaced repetition study session.

Endpoints:
- GET /api/study/next - Select the next card (or when to come back)
- POST /api/study/submit - Grade an answer and reschedule the card
- POST /api/study/skip - Skip a card (scheduled as a score of 0)
- GET /api/study/dashboard - Card counts, due counts and today's activity
- GET /api/questions/{question_id} - One problem and the learner's card for it
- POST /api/cards/{question_id}/suspend - Hide a card from study
- POST /api/cards/{question_id}/unsuspend - Restore a suspended card
- GET /api/history - Review history with filters
- GET /api/history/{question_id} - All attempts at one question
- PUT /api/settings/new-cards-limit - Change the daily new-card limit

Errors from the service layer (NotFoundError, GradingError, ...) are
rendered by the error handling middleware.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from pattern_recall.dependencies import get_learner_id, get_review_service
from pattern_recall.enums.learning import CardState
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
from pattern_recall.services.learning.review_service import ReviewSessionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["study"])


# ===========================================
# Study session
# ===========================================


@router.get("/study/next", response_model=NextCardResponse)
async def get_next_card(
    learner_id: str = Depends(get_learner_id),
    service: ReviewSessionService = Depends(get_review_service),
) -> NextCardResponse:
    """
    Get the next card to study.

    Draws today's new problems first, then picks New, due Learning and due
    Review cards in that order. When nothing is due the response says when
    the next card becomes due ("wait") or that the day is done.
    """
    result = await service.get_next_card(learner_id)
    selection = result.selection

    return NextCardResponse(
        outcome=selection.outcome,
        kind=selection.kind,
        card=CardResponse.model_validate(selection.card) if selection.card else None,
        question=(
            QuestionResponse.model_validate(result.question) if result.question else None
        ),
        next_due_at=selection.next_due_at,
        due_counts=DueCountsResponse.model_validate(selection.due_counts),
    )


@router.post("/study/submit", response_model=ReviewOutcomeResponse)
async def submit_answer(
    request: SubmitAnswerRequest,
    learner_id: str = Depends(get_learner_id),
    service: ReviewSessionService = Depends(get_review_service),
) -> ReviewOutcomeResponse:
    """
    Submit an explanation for grading.

    The answer is scored 0-5 by the grader and the card is rescheduled.
    Returns 404 if the card was never drawn and 503 if grading failed
    (the card is left unchanged; retry the submission).
    """
    outcome = await service.submit_answer(
        learner_id,
        request.question_id,
        request.answer,
        time_spent_seconds=request.time_spent_seconds,
    )
    return ReviewOutcomeResponse.model_validate(outcome)


@router.post("/study/skip", response_model=ReviewOutcomeResponse)
async def skip_card(
    request: SkipCardRequest,
    learner_id: str = Depends(get_learner_id),
    service: ReviewSessionService = Depends(get_review_service),
) -> ReviewOutcomeResponse:
    """Skip a card. Scheduled exactly like a failed review."""
    outcome = await service.skip_card(learner_id, request.question_id)
    return ReviewOutcomeResponse.model_validate(outcome)


@router.get("/study/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    learner_id: str = Depends(get_learner_id),
    service: ReviewSessionService = Depends(get_review_service),
) -> DashboardResponse:
    """Get card counts by state, due counts and today's review count."""
    dashboard = await service.get_dashboard(learner_id)
    return DashboardResponse(
        new_cards=dashboard.new_cards,
        learning_cards=dashboard.learning_cards,
        young_review_cards=dashboard.young_review_cards,
        mature_review_cards=dashboard.mature_review_cards,
        suspended_cards=dashboard.suspended_cards,
        total_cards=dashboard.total_cards,
        due_counts=DueCountsResponse.model_validate(dashboard.due_counts),
        reviews_today=dashboard.reviews_today,
        new_cards_limit=dashboard.new_cards_limit,
        next_due_at=dashboard.next_due_at,
        all_cards_studied=dashboard.all_cards_studied,
    )


# ===========================================
# Questions
# ===========================================


@router.get("/questions/{question_id}", response_model=QuestionDetailResponse)
async def get_question_detail(
    question_id: str,
    learner_id: str = Depends(get_learner_id),
    service: ReviewSessionService = Depends(get_review_service),
) -> QuestionDetailResponse:
    """Get a problem with the learner's scheduling state for it."""
    detail = await service.get_question_detail(learner_id, question_id)
    return QuestionDetailResponse(
        question=QuestionResponse.model_validate(detail.question),
        card=CardResponse.model_validate(detail.card) if detail.card else None,
        has_started=detail.has_started,
    )


# ===========================================
# Card management
# ===========================================


@router.post("/cards/{question_id}/suspend", response_model=CardResponse)
async def suspend_card(
    question_id: str,
    learner_id: str = Depends(get_learner_id),
    service: ReviewSessionService = Depends(get_review_service),
) -> CardResponse:
    """Suspend a card so it is never offered for study."""
    card = await service.suspend_card(learner_id, question_id)
    return CardResponse.model_validate(card)


@router.post("/cards/{question_id}/unsuspend", response_model=CardResponse)
async def unsuspend_card(
    question_id: str,
    learner_id: str = Depends(get_learner_id),
    service: ReviewSessionService = Depends(get_review_service),
) -> CardResponse:
    """Restore a suspended card to Review (day-scale interval) or Learning."""
    card = await service.unsuspend_card(learner_id, question_id)
    return CardResponse.model_validate(card)


# ===========================================
# History
# ===========================================


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    min_score: Optional[int] = Query(None, ge=0, le=5),
    max_score: Optional[int] = Query(None, ge=0, le=5),
    states: Optional[list[CardState]] = Query(None),
    difficulties: Optional[list[str]] = Query(None),
    learner_id: str = Depends(get_learner_id),
    service: ReviewSessionService = Depends(get_review_service),
) -> HistoryResponse:
    """List past reviews, newest first."""
    entries = await service.get_history(
        learner_id,
        limit=limit,
        offset=offset,
        min_score=min_score,
        max_score=max_score,
        states=states,
        difficulties=difficulties,
    )
    return HistoryResponse(
        items=[HistoryEntryResponse.model_validate(e) for e in entries],
        limit=limit,
        offset=offset,
    )


@router.get("/history/{question_id}", response_model=list[HistoryEntryResponse])
async def get_question_history(
    question_id: str,
    learner_id: str = Depends(get_learner_id),
    service: ReviewSessionService = Depends(get_review_service),
) -> list[HistoryEntryResponse]:
    """List every attempt at one question, newest first."""
    entries = await service.get_question_history(learner_id, question_id)
    return [HistoryEntryResponse.model_validate(e) for e in entries]


# ===========================================
# Settings
# ===========================================


@router.put("/settings/new-cards-limit", response_model=NewCardsLimitResponse)
async def update_new_cards_limit(
    request: NewCardsLimitRequest,
    learner_id: str = Depends(get_learner_id),
    service: ReviewSessionService = Depends(get_review_service),
) -> NewCardsLimitResponse:
    """Change how many new problems are drawn per day."""
    limit = await service.update_new_cards_limit(learner_id, request.limit)
    return NewCardsLimitResponse(limit=limit)
