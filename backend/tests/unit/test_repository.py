"""
Unit tests for the SQLAlchemy card repository.

Uses the mock async session from conftest: tests check row conversion,
error translation (IntegrityError → ReplenishError, other failures →
PersistenceError) and the shape of the generated queries.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from pattern_recall.db.models import LearnerSettings, Question, ReviewCard, ReviewHistory
from pattern_recall.enums.learning import CardState
from pattern_recall.middleware.error_handling import PersistenceError, ReplenishError
from pattern_recall.services.learning.repository import (
    HistoryEntry,
    HistoryFilter,
    SqlCardRepository,
    card_from_row,
)
from pattern_recall.services.learning.sm2 import MINUTES_PER_DAY, CardRecord

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def result_with(**methods) -> MagicMock:
    """Build a fake execute() result whose methods return the given values."""
    result = MagicMock()
    for name, value in methods.items():
        getattr(result, name).return_value = value
    return result


def card_row(**overrides) -> ReviewCard:
    fields = dict(
        id=7,
        learner_id="learner-1",
        question_id="two-sum",
        state="review",
        easiness_factor=2.36,
        interval_minutes=6 * MINUTES_PER_DAY,
        current_step=0,
        repetitions=2,
        quality=3,
        next_review_at=NOW + timedelta(days=6),
        last_reviewed_at=NOW,
        total_reviews=4,
        total_lapses=1,
        created_at=NOW - timedelta(days=10),
    )
    fields.update(overrides)
    return ReviewCard(**fields)


def compiled(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


class TestRowConversion:
    def test_card_from_row(self):
        card = card_from_row(card_row())

        assert card.id == 7
        assert card.state == CardState.REVIEW
        assert card.interval_days == 6
        assert card.easiness_factor == 2.36
        assert card.total_lapses == 1


class TestQuestions:
    """Tests for drawing and loading questions."""

    @pytest.mark.asyncio
    async def test_draw_returns_question(self, mock_db_session):
        row = Question(id="two-sum", title="Two Sum", difficulty="Easy", topics=["Array"])
        mock_db_session.execute.return_value = result_with(scalar_one_or_none=row)

        question = await SqlCardRepository(mock_db_session).question_unseen_by(
            "learner-1", exclude={"valid-anagram"}
        )

        assert question.id == "two-sum"
        assert question.topics == ["Array"]
        sql = compiled(mock_db_session.execute.await_args.args[0])
        assert "random()" in sql
        assert "NOT IN" in sql

    @pytest.mark.asyncio
    async def test_draw_returns_none_when_exhausted(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(scalar_one_or_none=None)

        assert await SqlCardRepository(mock_db_session).question_unseen_by("l") is None

    @pytest.mark.asyncio
    async def test_draw_failure_is_replenish_error(self, mock_db_session):
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(ReplenishError):
            await SqlCardRepository(mock_db_session).question_unseen_by("learner-1")


class TestCards:
    """Tests for card reads and writes."""

    @pytest.mark.asyncio
    async def test_card_for_update_locks_row(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(scalar_one_or_none=card_row())

        card = await SqlCardRepository(mock_db_session).card_for(
            "learner-1", "two-sum", for_update=True
        )

        assert card.question_id == "two-sum"
        assert "FOR UPDATE" in compiled(mock_db_session.execute.await_args.args[0])

    @pytest.mark.asyncio
    async def test_card_for_without_lock(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(scalar_one_or_none=None)

        card = await SqlCardRepository(mock_db_session).card_for("learner-1", "two-sum")

        assert card is None
        assert "FOR UPDATE" not in compiled(mock_db_session.execute.await_args.args[0])

    @pytest.mark.asyncio
    async def test_card_read_failure_is_persistence_error(self, mock_db_session):
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(PersistenceError):
            await SqlCardRepository(mock_db_session).card_for("learner-1", "two-sum")

    @pytest.mark.asyncio
    async def test_create_card_commits(self, mock_db_session):
        card = CardRecord(
            learner_id="learner-1",
            question_id="two-sum",
            state=CardState.NEW,
            next_review_at=NOW,
            created_at=NOW,
        )

        created = await SqlCardRepository(mock_db_session).create_card(card)

        row = mock_db_session.add.call_args.args[0]
        assert isinstance(row, ReviewCard)
        assert row.state == "new"
        assert row.created_at == NOW
        mock_db_session.commit.assert_awaited_once()
        assert created.question_id == "two-sum"

    @pytest.mark.asyncio
    async def test_duplicate_card_is_replenish_error(self, mock_db_session):
        mock_db_session.commit.side_effect = IntegrityError("INSERT", {}, Exception("dup"))
        card = CardRecord(
            learner_id="learner-1", question_id="two-sum", state=CardState.NEW, created_at=NOW
        )

        with pytest.raises(ReplenishError):
            await SqlCardRepository(mock_db_session).create_card(card)

        mock_db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_failure_is_persistence_error(self, mock_db_session):
        mock_db_session.commit.side_effect = OperationalError("INSERT", {}, Exception("down"))
        card = CardRecord(
            learner_id="learner-1", question_id="two-sum", state=CardState.NEW, created_at=NOW
        )

        with pytest.raises(PersistenceError):
            await SqlCardRepository(mock_db_session).create_card(card)

        mock_db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_card_applies_fields(self, mock_db_session):
        row = card_row(state="learning", interval_minutes=10)
        mock_db_session.execute.return_value = result_with(scalar_one_or_none=row)
        updated = card_from_row(card_row())
        updated.state = CardState.RELEARNING
        updated.interval_minutes = 10
        updated.total_lapses = 2

        saved = await SqlCardRepository(mock_db_session).update_card(updated)

        assert row.state == "relearning"
        assert row.total_lapses == 2
        assert saved.state == CardState.RELEARNING
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_missing_card(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(scalar_one_or_none=None)

        with pytest.raises(PersistenceError):
            await SqlCardRepository(mock_db_session).update_card(card_from_row(card_row()))

        mock_db_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_commit_failure(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(scalar_one_or_none=card_row())
        mock_db_session.commit.side_effect = OperationalError("UPDATE", {}, Exception("down"))

        with pytest.raises(PersistenceError):
            await SqlCardRepository(mock_db_session).update_card(card_from_row(card_row()))

        mock_db_session.rollback.assert_awaited_once()


class TestQueries:
    """Tests for counting and ordering queries."""

    @pytest.mark.asyncio
    async def test_count_due_filters_states_and_time(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(scalar=3)

        count = await SqlCardRepository(mock_db_session).count_due(
            "learner-1", (CardState.LEARNING, CardState.RELEARNING), NOW
        )

        assert count == 3
        sql = compiled(mock_db_session.execute.await_args.args[0])
        assert "review_cards.next_review_at <=" in sql
        assert "review_cards.state IN" in sql

    @pytest.mark.asyncio
    async def test_count_defaults_to_zero(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(scalar=None)

        assert await SqlCardRepository(mock_db_session).count_cards_in_state(
            "learner-1", CardState.NEW
        ) == 0

    @pytest.mark.asyncio
    async def test_earliest_due_orders_by_time_then_id(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(scalar_one_or_none=card_row())

        await SqlCardRepository(mock_db_session).earliest_due(
            "learner-1", (CardState.REVIEW,), NOW
        )

        sql = compiled(mock_db_session.execute.await_args.args[0])
        assert "ORDER BY review_cards.next_review_at ASC, review_cards.id ASC" in sql

    @pytest.mark.asyncio
    async def test_oldest_new_card_orders_by_created_then_id(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(scalar_one_or_none=None)

        assert await SqlCardRepository(mock_db_session).oldest_new_card("learner-1") is None

        sql = compiled(mock_db_session.execute.await_args.args[0])
        assert "ORDER BY review_cards.created_at ASC, review_cards.id ASC" in sql

    @pytest.mark.asyncio
    async def test_created_between_can_exclude_states(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(scalar=2)

        count = await SqlCardRepository(mock_db_session).count_cards_created_between(
            "learner-1", NOW, NOW + timedelta(days=1), exclude_states=(CardState.NEW,)
        )

        assert count == 2
        assert "NOT IN" in compiled(mock_db_session.execute.await_args.args[0])

    @pytest.mark.asyncio
    async def test_maturity_counts(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(one=(3, 1))

        young, mature = await SqlCardRepository(mock_db_session).count_cards_by_maturity(
            "learner-1", 21
        )

        assert (young, mature) == (3, 1)
        params = (
            mock_db_session.execute.await_args.args[0]
            .compile(dialect=postgresql.dialect())
            .params
        )
        assert 22 * MINUTES_PER_DAY in params.values()


class TestLearnerSettings:
    @pytest.mark.asyncio
    async def test_stored_limit(self, mock_db_session):
        mock_db_session.execute.return_value = result_with(scalar_one_or_none=12)

        assert await SqlCardRepository(mock_db_session).get_new_cards_limit("l") == 12

    @pytest.mark.asyncio
    async def test_set_limit_creates_row(self, mock_db_session):
        await SqlCardRepository(mock_db_session).set_new_cards_limit("learner-1", 8)

        row = mock_db_session.add.call_args.args[0]
        assert isinstance(row, LearnerSettings)
        assert row.new_cards_limit == 8
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_set_limit_updates_row(self, mock_db_session):
        existing = LearnerSettings(learner_id="learner-1", new_cards_limit=5)
        mock_db_session.get.return_value = existing

        await SqlCardRepository(mock_db_session).set_new_cards_limit("learner-1", 0)

        assert existing.new_cards_limit == 0
        mock_db_session.add.assert_not_called()


class TestHistory:
    """Tests for review history rows."""

    @pytest.mark.asyncio
    async def test_add_history(self, mock_db_session):
        entry = HistoryEntry(
            learner_id="learner-1",
            question_id="two-sum",
            card_id=7,
            score=0,
            state_after=CardState.RELEARNING,
            interval_minutes_after=10,
            easiness_factor_after=1.7,
            reviewed_at=NOW,
            skipped=True,
        )

        await SqlCardRepository(mock_db_session).add_history(entry)

        row = mock_db_session.add.call_args.args[0]
        assert isinstance(row, ReviewHistory)
        assert row.state_after == "relearning"
        assert row.skipped is True
        assert row.sub_scores is None

    @pytest.mark.asyncio
    async def test_list_history_joins_question(self, mock_db_session):
        row = ReviewHistory(
            id=1,
            learner_id="learner-1",
            question_id="two-sum",
            score=4,
            state_after="review",
            interval_minutes_after=MINUTES_PER_DAY,
            easiness_factor_after=2.5,
            reviewed_at=NOW,
            skipped=False,
        )
        mock_db_session.execute.return_value = result_with(all=[(row, "Two Sum", "Easy")])

        entries = await SqlCardRepository(mock_db_session).list_history(
            "learner-1", HistoryFilter(difficulties=("Easy",), min_score=3, limit=10)
        )

        assert entries[0].question_title == "Two Sum"
        assert entries[0].difficulty == "Easy"
        assert entries[0].state_after == CardState.REVIEW
        sql = compiled(mock_db_session.execute.await_args.args[0])
        assert "JOIN questions" in sql
        assert "ORDER BY review_history.reviewed_at DESC, review_history.id DESC" in sql
