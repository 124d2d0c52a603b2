"""
Unit tests for the new-card queue replenisher.

Tests the daily quota, queue-space bound, draw failure handling,
duplicate protection and the background catalog refill trigger.
"""

import asyncio
import logging
from datetime import timedelta

import pytest

from pattern_recall.enums.learning import CardState
from pattern_recall.middleware.error_handling import PersistenceError
from pattern_recall.services.learning import queue_replenisher as replenisher_module
from pattern_recall.services.learning.queue_replenisher import QueueReplenisher
from pattern_recall.services.learning.sm2 import CardRecord
from tests.fakes import InMemoryCardRepository, StubCatalogRefiller, make_question

LEARNER = "learner-1"


@pytest.fixture(autouse=True)
def clear_background_tasks():
    """Each test runs on its own event loop; drop refs from earlier loops."""
    replenisher_module._background_tasks.clear()
    yield
    replenisher_module._background_tasks.clear()


def make_repository(question_count: int) -> InMemoryCardRepository:
    return InMemoryCardRepository([make_question(f"q-{i:03d}") for i in range(question_count)])


def existing_card(question_id: str, state: CardState, created_at, **fields) -> CardRecord:
    return CardRecord(
        learner_id=LEARNER,
        question_id=question_id,
        state=state,
        created_at=created_at,
        next_review_at=created_at,
        **fields,
    )


class TestDailyQuota:
    """Tests for the two-term bound on new draws."""

    @pytest.mark.asyncio
    async def test_fills_empty_queue_up_to_limit(self, engine, now):
        repository = make_repository(10)
        replenisher = QueueReplenisher(repository, engine)

        created = await replenisher.ensure_queue(LEARNER, now)

        assert created == 5
        new_cards = [c for c in repository.cards_for(LEARNER) if c.state == CardState.NEW]
        assert len(new_cards) == 5
        assert all(c.created_at == now and c.next_review_at == now for c in new_cards)

    @pytest.mark.asyncio
    async def test_second_call_same_day_draws_nothing(self, engine, now):
        repository = make_repository(10)
        replenisher = QueueReplenisher(repository, engine)

        await replenisher.ensure_queue(LEARNER, now)
        created = await replenisher.ensure_queue(LEARNER, now + timedelta(minutes=5))

        assert created == 0
        assert len(repository.cards_for(LEARNER)) == 5

    @pytest.mark.asyncio
    async def test_quota_reached_even_when_queue_empty(self, engine, now):
        """Cards drawn today count against the quota in any state."""
        repository = make_repository(20)
        for i in range(5):
            repository.add_card(
                existing_card(f"q-{i:03d}", CardState.LEARNING, now - timedelta(hours=1))
            )
        replenisher = QueueReplenisher(repository, engine)

        created = await replenisher.ensure_queue(LEARNER, now)

        assert created == 0
        assert await repository.count_cards_in_state(LEARNER, CardState.NEW) == 0

    @pytest.mark.asyncio
    async def test_queue_space_bounds_draws(self, engine, now):
        """Unstudied New cards from earlier days use up queue space."""
        repository = make_repository(20)
        for i in range(3):
            repository.add_card(
                existing_card(f"q-{i:03d}", CardState.NEW, now - timedelta(days=2))
            )
        replenisher = QueueReplenisher(repository, engine)

        created = await replenisher.ensure_queue(LEARNER, now)

        assert created == 2
        assert await repository.count_cards_in_state(LEARNER, CardState.NEW) == 5

    @pytest.mark.asyncio
    async def test_remaining_quota_bounds_draws(self, engine, now):
        repository = make_repository(20)
        for i in range(4):
            repository.add_card(
                existing_card(f"q-{i:03d}", CardState.REVIEW, now - timedelta(hours=2))
            )
        replenisher = QueueReplenisher(repository, engine)

        assert await replenisher.ensure_queue(LEARNER, now) == 1

    @pytest.mark.asyncio
    async def test_yesterdays_draws_do_not_count(self, engine, now):
        repository = make_repository(20)
        for i in range(5):
            repository.add_card(
                existing_card(f"q-{i:03d}", CardState.REVIEW, now - timedelta(days=1))
            )
        replenisher = QueueReplenisher(repository, engine)

        assert await replenisher.ensure_queue(LEARNER, now) == 5

    @pytest.mark.asyncio
    async def test_stored_learner_limit_is_used(self, engine, now):
        repository = make_repository(10)
        repository.limits[LEARNER] = 2
        replenisher = QueueReplenisher(repository, engine)

        assert await replenisher.ensure_queue(LEARNER, now) == 2

    @pytest.mark.asyncio
    async def test_limit_lookup_can_be_injected(self, engine, now):
        repository = make_repository(10)

        async def limit_for(learner_id):
            return 3

        replenisher = QueueReplenisher(repository, engine, new_cards_limit_for=limit_for)

        assert await replenisher.ensure_queue(LEARNER, now) == 3

    @pytest.mark.asyncio
    async def test_zero_limit_draws_nothing(self, engine, now):
        repository = make_repository(10)
        repository.limits[LEARNER] = 0
        replenisher = QueueReplenisher(repository, engine)

        assert await replenisher.ensure_queue(LEARNER, now) == 0


class TestDrawFailures:
    """Tests for best-effort draws."""

    @pytest.mark.asyncio
    async def test_exhausted_pool_stops_early(self, engine, now):
        repository = make_repository(2)
        replenisher = QueueReplenisher(repository, engine)

        assert await replenisher.ensure_queue(LEARNER, now) == 2

    @pytest.mark.asyncio
    async def test_failed_draw_is_skipped(self, engine, now):
        repository = make_repository(10)
        repository.fail_draws = 1
        replenisher = QueueReplenisher(repository, engine)

        assert await replenisher.ensure_queue(LEARNER, now) == 4

    @pytest.mark.asyncio
    async def test_failed_create_is_skipped(self, engine, now):
        repository = make_repository(10)
        repository.fail_creates = 2
        replenisher = QueueReplenisher(repository, engine)

        created = await replenisher.ensure_queue(LEARNER, now)

        assert created == 3
        assert repository.create_calls == 5

    @pytest.mark.asyncio
    async def test_never_creates_duplicate_cards(self, engine, now):
        """A draw that returns an already-carded question is skipped."""

        class LeakyRepository(InMemoryCardRepository):
            async def question_unseen_by(self, learner_id, exclude=()):
                for question in self.questions.values():
                    if question.id not in exclude:
                        return question
                return None

        repository = LeakyRepository([make_question(f"q-{i:03d}") for i in range(10)])
        repository.add_card(
            existing_card("q-000", CardState.REVIEW, now - timedelta(days=3))
        )
        replenisher = QueueReplenisher(repository, engine)

        created = await replenisher.ensure_queue(LEARNER, now)

        question_ids = [c.question_id for c in repository.cards_for(LEARNER)]
        assert len(question_ids) == len(set(question_ids))
        assert created == 4
        assert repository.create_calls == 4

    @pytest.mark.asyncio
    async def test_failed_existing_card_check_is_skipped(self, engine, now):
        """A failing duplicate check skips that draw but not the rest."""

        class FlakyLookupRepository(InMemoryCardRepository):
            lookup_failures = 1

            async def card_for(self, learner_id, question_id, for_update=False):
                if self.lookup_failures:
                    self.lookup_failures -= 1
                    raise PersistenceError("connection reset")
                return await super().card_for(learner_id, question_id, for_update)

        repository = FlakyLookupRepository([make_question(f"q-{i:03d}") for i in range(10)])
        replenisher = QueueReplenisher(repository, engine)

        created = await replenisher.ensure_queue(LEARNER, now)

        assert created == 4
        assert repository.create_calls == 4
        assert "q-000" not in {c.question_id for c in repository.cards_for(LEARNER)}


class TestCatalogRefill:
    """Tests for the fire-and-forget catalog refill trigger."""

    @pytest.mark.asyncio
    async def test_refill_scheduled_when_pool_low(self, engine, now):
        repository = make_repository(8)
        refiller = StubCatalogRefiller()
        replenisher = QueueReplenisher(
            repository, engine, catalog_refiller=refiller, low_water_mark=20
        )

        await replenisher.ensure_queue(LEARNER, now)
        await asyncio.sleep(0)

        assert refiller.calls == 1

    @pytest.mark.asyncio
    async def test_no_refill_when_pool_healthy(self, engine, now):
        repository = make_repository(50)
        refiller = StubCatalogRefiller()
        replenisher = QueueReplenisher(
            repository, engine, catalog_refiller=refiller, low_water_mark=20
        )

        await replenisher.ensure_queue(LEARNER, now)
        await asyncio.sleep(0)

        assert refiller.calls == 0

    @pytest.mark.asyncio
    async def test_refill_is_not_awaited(self, engine, now):
        release = asyncio.Event()
        finished = []

        class SlowRefiller:
            async def refill(self):
                await release.wait()
                finished.append(True)
                return 10

        replenisher = QueueReplenisher(
            make_repository(3), engine, catalog_refiller=SlowRefiller()
        )

        created = await replenisher.ensure_queue(LEARNER, now)

        assert created == 3
        assert finished == []

        release.set()
        for _ in range(3):
            await asyncio.sleep(0)
        assert finished == [True]

    @pytest.mark.asyncio
    async def test_refill_failure_is_logged_not_raised(self, engine, now, caplog):
        refiller = StubCatalogRefiller(error=RuntimeError("catalog offline"))
        replenisher = QueueReplenisher(
            make_repository(3), engine, catalog_refiller=refiller
        )

        with caplog.at_level(logging.WARNING):
            created = await replenisher.ensure_queue(LEARNER, now)
            for _ in range(3):
                await asyncio.sleep(0)

        assert created == 3
        assert refiller.calls == 1
        assert "catalog offline" in caplog.text

    @pytest.mark.asyncio
    async def test_refill_checked_even_when_quota_reached(self, engine, now):
        repository = make_repository(3)
        repository.limits[LEARNER] = 0
        refiller = StubCatalogRefiller()
        replenisher = QueueReplenisher(repository, engine, catalog_refiller=refiller)

        await replenisher.ensure_queue(LEARNER, now)
        await asyncio.sleep(0)

        assert refiller.calls == 1
