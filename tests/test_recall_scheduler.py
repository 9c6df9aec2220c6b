"""
Recall Scheduler Tests

Covers item creation with its scheduling state, reviews, the due and
implicit queues, suggestions and the dashboard counters.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from second_brain.core.base import ErrorCode
from second_brain.core.errors import (
    AuthorizationError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    RecallConflictError,
    ServiceError,
    StorageError,
    TimeoutError,
)
from second_brain.domain.models import RecallSource, RecallStatus, RecallType
from second_brain.infrastructure.repositories.in_memory import InMemoryStore
from second_brain.services.recall_scheduler import RecallScheduler, review_streak

USER = "user-1"


def chunk_source() -> RecallSource:
    return RecallSource(chunk_id=uuid4())


class TestCreateRecallItem:
    @pytest.mark.asyncio
    async def test_item_and_strength_created_together(self, scheduler, store, clock):
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "the mitochondria", delay_days=3)

        item, strength = scheduled.item, scheduled.strength
        assert item.recall_type == RecallType.EXPLICIT
        assert item.status == RecallStatus.ACTIVE
        assert strength.interval_days == 3
        assert strength.ease_factor == 2.5
        assert strength.review_count == 0
        assert strength.strength == 0.0
        assert strength.last_review_at is None
        assert strength.next_review_at == clock() + timedelta(days=3)
        assert store.strengths[item.id] == strength

    @pytest.mark.asyncio
    async def test_memory_source_and_note_are_kept(self, scheduler, store):
        source = RecallSource(memory_id="mem-42")
        scheduled = await scheduler.create_recall_item(USER, source, "a derived memory", note="from the book club")

        stored = store.items[scheduled.item.id]
        assert stored.source_chunk_id is None
        assert stored.metadata.memory_id == "mem-42"
        assert stored.metadata.note == "from the book club"

    @pytest.mark.asyncio
    async def test_duplicate_active_source_conflicts(self, scheduler, store):
        source = chunk_source()
        first = await scheduler.create_recall_item(USER, source, "content")

        with pytest.raises(RecallConflictError) as exc:
            await scheduler.create_recall_item(USER, source, "content again")

        assert exc.value.existing_item_id == str(first.item.id)
        assert exc.value.code == ErrorCode.RESOURCE_CONFLICT
        assert len(store.items) == 1
        assert len(store.strengths) == 1

    @pytest.mark.asyncio
    async def test_same_source_for_another_user_is_fine(self, scheduler, store):
        source = chunk_source()
        await scheduler.create_recall_item(USER, source, "content")
        await scheduler.create_recall_item("user-2", source, "content")
        assert len(store.items) == 2

    @pytest.mark.asyncio
    async def test_source_is_free_again_after_delete(self, scheduler, store):
        source = chunk_source()
        first = await scheduler.create_recall_item(USER, source, "content")
        await scheduler.delete_recall_item(first.item.id, USER)

        second = await scheduler.create_recall_item(USER, source, "content")
        assert second.item.id != first.item.id
        assert list(store.strengths) == [second.item.id]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("delay", [0, 366, -1])
    async def test_delay_out_of_range(self, scheduler, store, delay):
        with pytest.raises(InvalidInputError):
            await scheduler.create_recall_item(USER, chunk_source(), "content", delay_days=delay)
        assert store.items == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("delay", [1, 365])
    async def test_delay_bounds_are_inclusive(self, scheduler, delay):
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content", delay_days=delay)
        assert scheduled.strength.interval_days == delay

    @pytest.mark.asyncio
    async def test_missing_fields(self, scheduler):
        with pytest.raises(InvalidInputError):
            await scheduler.create_recall_item("", chunk_source(), "content")
        with pytest.raises(InvalidInputError):
            await scheduler.create_recall_item(USER, chunk_source(), "   ")

    @pytest.mark.asyncio
    async def test_failed_strength_write_removes_item(self, clock):
        class FailingStrengthStore(InMemoryStore):
            async def insert_strength(self, strength):
                raise StorageError("write failed")

        store = FailingStrengthStore()
        scheduler = RecallScheduler(store, clock=clock, retry_delay=0)

        with pytest.raises(StorageError):
            await scheduler.create_recall_item(USER, chunk_source(), "content")

        assert store.items == {}
        assert store.strengths == {}
        assert store.active_keys == {}


class TestSubmitReview:
    @pytest.mark.asyncio
    async def test_perfect_reviews_follow_the_ladder(self, scheduler, clock):
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")
        item_id = scheduled.item.id

        intervals = []
        for _ in range(3):
            clock.advance(hours=1)
            strength = await scheduler.submit_review(item_id, 5, USER)
            intervals.append(strength.interval_days)
            assert strength.last_review_at == clock()
            assert strength.next_review_at == clock() + timedelta(days=strength.interval_days)

        assert intervals == [1, 6, 17]
        assert strength.ease_factor == pytest.approx(2.8)
        assert strength.review_count == 3
        assert strength.strength == pytest.approx(3 * 2.8)

    @pytest.mark.asyncio
    async def test_failed_review_resets_schedule(self, scheduler, store):
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")
        item_id = scheduled.item.id
        await scheduler.submit_review(item_id, 5, USER)
        await scheduler.submit_review(item_id, 5, USER)

        strength = await scheduler.submit_review(item_id, 1, USER)

        assert strength.interval_days == 1
        assert strength.review_count == 0
        assert store.strengths[item_id] == strength

    @pytest.mark.asyncio
    async def test_unknown_item(self, scheduler):
        with pytest.raises(NotFoundError):
            await scheduler.submit_review(uuid4(), 4, USER)

    @pytest.mark.asyncio
    async def test_other_users_item(self, scheduler, store):
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")
        before = store.strengths[scheduled.item.id]

        with pytest.raises(AuthorizationError):
            await scheduler.submit_review(scheduled.item.id, 4, "intruder")
        assert store.strengths[scheduled.item.id] == before

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quality", [6, -1, 4.5, "3"])
    async def test_invalid_quality_changes_nothing(self, scheduler, store, quality):
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")
        before = store.strengths[scheduled.item.id]

        with pytest.raises(InvalidInputError):
            await scheduler.submit_review(scheduled.item.id, quality, USER)
        assert store.strengths[scheduled.item.id] == before

    @pytest.mark.asyncio
    async def test_suggestions_cannot_be_reviewed(self, scheduler):
        suggestion = await scheduler.suggest(USER, "maybe review this", source=chunk_source())
        with pytest.raises(InvalidStateError):
            await scheduler.submit_review(suggestion.id, 4, USER)


class ContendedStore(InMemoryStore):
    """Loses the compare-and-set a fixed number of times, as if another review landed first."""

    def __init__(self, lost_races: int):
        super().__init__()
        self.lost_races = lost_races
        self.attempts = 0

    async def compare_and_set_strength(self, expected, updated):
        self.attempts += 1
        if self.lost_races:
            self.lost_races -= 1
            return False
        return await super().compare_and_set_strength(expected, updated)


class TestConcurrentReviews:
    @pytest.mark.asyncio
    async def test_lost_race_is_recomputed(self, clock):
        store = ContendedStore(lost_races=2)
        scheduler = RecallScheduler(store, clock=clock, max_retries=2, retry_delay=0)
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")

        strength = await scheduler.submit_review(scheduled.item.id, 5, USER)

        assert store.attempts == 3
        assert strength.review_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_bounded_retries(self, clock):
        store = ContendedStore(lost_races=10)
        scheduler = RecallScheduler(store, clock=clock, max_retries=2, retry_delay=0)
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")
        before = store.strengths[scheduled.item.id]

        with pytest.raises(ServiceError) as exc:
            await scheduler.submit_review(scheduled.item.id, 5, USER)

        assert exc.value.code == ErrorCode.RESOURCE_CONFLICT
        assert store.attempts == 3
        assert store.strengths[scheduled.item.id] == before

    @pytest.mark.asyncio
    async def test_concurrent_reviews_both_apply(self, scheduler, store):
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")

        await asyncio.gather(
            scheduler.submit_review(scheduled.item.id, 5, USER),
            scheduler.submit_review(scheduled.item.id, 5, USER),
        )

        assert store.strengths[scheduled.item.id].review_count == 2

    @pytest.mark.asyncio
    async def test_transient_storage_failure_is_retried(self, clock):
        class FlakyStore(InMemoryStore):
            failures = 1

            async def get_strength(self, item_id):
                if self.failures:
                    self.failures -= 1
                    raise StorageError("connection reset")
                return await super().get_strength(item_id)

        store = FlakyStore()
        scheduler = RecallScheduler(store, clock=clock, max_retries=2, retry_delay=0)
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")

        strength = await scheduler.submit_review(scheduled.item.id, 4, USER)
        assert strength.review_count == 1

    @pytest.mark.asyncio
    async def test_failures_and_lost_races_share_one_retry_budget(self, clock):
        class UnluckyStore(ContendedStore):
            failures = 1
            reads = 0

            async def get_strength(self, item_id):
                self.reads += 1
                if self.failures:
                    self.failures -= 1
                    raise StorageError("connection reset")
                return await super().get_strength(item_id)

        store = UnluckyStore(lost_races=10)
        scheduler = RecallScheduler(store, clock=clock, max_retries=2, retry_delay=0)
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")

        with pytest.raises(ServiceError) as exc:
            await scheduler.submit_review(scheduled.item.id, 5, USER)

        assert exc.value.code == ErrorCode.RESOURCE_CONFLICT
        assert store.reads == 3
        assert store.attempts == 2

    @pytest.mark.asyncio
    async def test_slow_store_times_out(self, clock):
        class SlowStore(InMemoryStore):
            async def get_strength(self, item_id):
                await asyncio.sleep(1)
                return await super().get_strength(item_id)

        store = SlowStore()
        scheduler = RecallScheduler(store, clock=clock, timeout_seconds=0.05, retry_delay=0)
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")

        with pytest.raises(TimeoutError) as exc:
            await scheduler.submit_review(scheduled.item.id, 4, USER)
        assert exc.value.code == ErrorCode.TIMEOUT


class TestQueues:
    @pytest.mark.asyncio
    async def test_due_and_implicit_are_disjoint(self, scheduler, clock):
        soon = await scheduler.create_recall_item(USER, chunk_source(), "soon", delay_days=1)
        later = await scheduler.create_recall_item(USER, chunk_source(), "later", delay_days=5)
        much_later = await scheduler.create_recall_item(USER, chunk_source(), "much later", delay_days=30)

        clock.advance(days=2)
        due = await scheduler.due_queue(USER)
        implicit = await scheduler.implicit_queue(USER)

        assert [s.item.id for s in due] == [soon.item.id]
        assert {s.item.id for s in implicit} == {later.item.id, much_later.item.id}

    @pytest.mark.asyncio
    async def test_due_is_most_overdue_first(self, scheduler, clock):
        recent = await scheduler.create_recall_item(USER, chunk_source(), "recent", delay_days=3)
        oldest = await scheduler.create_recall_item(USER, chunk_source(), "oldest", delay_days=1)
        clock.advance(days=10)

        due = await scheduler.due_queue(USER)
        assert [s.item.id for s in due] == [oldest.item.id, recent.item.id]

    @pytest.mark.asyncio
    async def test_item_due_exactly_now_is_due(self, scheduler, clock):
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content", delay_days=1)
        clock.advance(days=1)

        assert [s.item.id for s in await scheduler.due_queue(USER)] == [scheduled.item.id]
        assert await scheduler.implicit_queue(USER) == []

    @pytest.mark.asyncio
    async def test_implicit_prefers_least_recently_reviewed(self, scheduler, clock):
        items = [
            await scheduler.create_recall_item(USER, chunk_source(), f"item {n}", delay_days=30) for n in range(4)
        ]
        # Review all but the last, oldest review first
        for scheduled in items[:3]:
            clock.advance(hours=1)
            await scheduler.submit_review(scheduled.item.id, 5, USER)

        implicit = await scheduler.implicit_queue(USER)

        assert len(implicit) == 3
        assert implicit[0].item.id == items[3].item.id
        assert [s.item.id for s in implicit[1:]] == [items[0].item.id, items[1].item.id]

    @pytest.mark.asyncio
    async def test_queues_only_hold_active_items(self, scheduler, clock):
        await scheduler.suggest(USER, "just a suggestion")
        clock.advance(days=400)
        assert await scheduler.due_queue(USER) == []
        assert await scheduler.implicit_queue(USER) == []

    @pytest.mark.asyncio
    async def test_limits(self, scheduler, clock):
        for n in range(5):
            await scheduler.create_recall_item(USER, chunk_source(), f"item {n}", delay_days=1)
        clock.advance(days=1)
        assert len(await scheduler.due_queue(USER, limit=2)) == 2


class TestSuggestions:
    @pytest.mark.asyncio
    async def test_suggestion_has_no_schedule(self, scheduler, store):
        suggestion = await scheduler.suggest(USER, "worth revisiting", source=chunk_source(), reason="often linked")

        assert suggestion.status == RecallStatus.SUGGESTED
        assert suggestion.recall_type == RecallType.IMPLICIT
        assert suggestion.metadata.reason == "often linked"
        assert suggestion.id not in store.strengths
        assert [s.id for s in await scheduler.list_suggestions(USER)] == [suggestion.id]

    @pytest.mark.asyncio
    async def test_accept_activates_and_schedules(self, scheduler, store, clock):
        suggestion = await scheduler.suggest(USER, "worth revisiting", source=chunk_source())

        accepted = await scheduler.accept_suggestion(suggestion.id, USER, delay_days=2)

        assert accepted.item.status == RecallStatus.ACTIVE
        assert accepted.strength.next_review_at == clock() + timedelta(days=2)
        assert store.strengths[suggestion.id] == accepted.strength
        assert await scheduler.list_suggestions(USER) == []

    @pytest.mark.asyncio
    async def test_accept_twice_is_rejected(self, scheduler, store):
        suggestion = await scheduler.suggest(USER, "worth revisiting")
        await scheduler.accept_suggestion(suggestion.id, USER)

        with pytest.raises(InvalidStateError):
            await scheduler.accept_suggestion(suggestion.id, USER)
        assert len(store.strengths) == 1

    @pytest.mark.asyncio
    async def test_accept_conflicts_with_active_item(self, scheduler, store):
        source = chunk_source()
        existing = await scheduler.create_recall_item(USER, source, "already tracked")
        suggestion = await scheduler.suggest(USER, "already tracked", source=source)

        with pytest.raises(RecallConflictError) as exc:
            await scheduler.accept_suggestion(suggestion.id, USER)

        assert exc.value.existing_item_id == str(existing.item.id)
        assert store.items[suggestion.id].status == RecallStatus.SUGGESTED

    @pytest.mark.asyncio
    async def test_failed_schedule_write_reverts_acceptance(self, clock):
        class FailingStrengthStore(InMemoryStore):
            async def insert_strength(self, strength):
                raise StorageError("write failed")

        store = FailingStrengthStore()
        scheduler = RecallScheduler(store, clock=clock, retry_delay=0)
        suggestion = await scheduler.suggest(USER, "worth revisiting", source=chunk_source())

        with pytest.raises(StorageError):
            await scheduler.accept_suggestion(suggestion.id, USER)

        assert store.items[suggestion.id].status == RecallStatus.SUGGESTED
        assert store.active_keys == {}

    @pytest.mark.asyncio
    async def test_dismiss(self, scheduler, store):
        suggestion = await scheduler.suggest(USER, "not interested")

        dismissed = await scheduler.dismiss_suggestion(suggestion.id, USER)

        assert dismissed.status == RecallStatus.DISMISSED
        assert await scheduler.list_suggestions(USER) == []
        with pytest.raises(InvalidStateError):
            await scheduler.accept_suggestion(suggestion.id, USER)

    @pytest.mark.asyncio
    async def test_only_owner_may_resolve(self, scheduler):
        suggestion = await scheduler.suggest(USER, "mine")
        with pytest.raises(AuthorizationError):
            await scheduler.accept_suggestion(suggestion.id, "intruder")
        with pytest.raises(AuthorizationError):
            await scheduler.dismiss_suggestion(suggestion.id, "intruder")


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_item_and_strength(self, scheduler, store):
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")
        await scheduler.delete_recall_item(scheduled.item.id, USER)
        assert store.items == {}
        assert store.strengths == {}

    @pytest.mark.asyncio
    async def test_delete_checks_owner(self, scheduler):
        scheduled = await scheduler.create_recall_item(USER, chunk_source(), "content")
        with pytest.raises(AuthorizationError):
            await scheduler.delete_recall_item(scheduled.item.id, "intruder")
        with pytest.raises(NotFoundError):
            await scheduler.delete_recall_item(uuid4(), USER)


class TestStats:
    @pytest.mark.asyncio
    async def test_counters(self, scheduler, clock):
        # clock starts at 09:00 UTC
        due_now = await scheduler.create_recall_item(USER, chunk_source(), "a", delay_days=1)
        await scheduler.create_recall_item(USER, chunk_source(), "b", delay_days=1)
        await scheduler.create_recall_item(USER, chunk_source(), "c", delay_days=10)
        await scheduler.suggest(USER, "not counted")

        clock.advance(days=1)
        await scheduler.submit_review(due_now.item.id, 5, USER)
        # End of the day: "b" is due, "a" moved a day out, "c" is far away
        clock.advance(hours=14)

        stats = await scheduler.stats(USER)

        assert stats.total_active == 3
        assert stats.due_today == 1
        assert stats.reviewed_today == 1
        assert stats.streak == 1

    @pytest.mark.asyncio
    async def test_due_today_counts_until_midnight(self, scheduler, clock):
        # 09:00 + 1 day lands tomorrow morning; at 23:00 today it is not yet due today
        await scheduler.create_recall_item(USER, chunk_source(), "a", delay_days=1)
        clock.advance(hours=14)
        assert (await scheduler.stats(USER)).due_today == 0

        clock.advance(hours=2)
        assert (await scheduler.stats(USER)).due_today == 1

    @pytest.mark.asyncio
    async def test_streak_over_consecutive_days(self, scheduler, clock):
        items = [await scheduler.create_recall_item(USER, chunk_source(), f"item {n}") for n in range(3)]
        for scheduled in items:
            await scheduler.submit_review(scheduled.item.id, 4, USER)
            clock.advance(days=1)
        clock.advance(days=-1)

        stats = await scheduler.stats(USER)
        assert stats.streak == 3
        assert stats.reviewed_today == 1

    @pytest.mark.asyncio
    async def test_empty_user(self, scheduler):
        stats = await scheduler.stats("nobody")
        assert stats.model_dump() == {"due_today": 0, "total_active": 0, "reviewed_today": 0, "streak": 0}


class TestReviewStreak:
    NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

    def test_counts_back_from_today(self):
        times = [self.NOW - timedelta(days=d) for d in (0, 1, 2)]
        assert review_streak(times, self.NOW) == 3

    def test_gap_ends_streak(self):
        times = [self.NOW, self.NOW - timedelta(days=1), self.NOW - timedelta(days=3)]
        assert review_streak(times, self.NOW) == 2

    def test_no_review_today(self):
        assert review_streak([self.NOW - timedelta(days=1)], self.NOW) == 0

    def test_several_reviews_same_day_count_once(self):
        times = [self.NOW, self.NOW - timedelta(hours=2), self.NOW - timedelta(days=1)]
        assert review_streak(times, self.NOW) == 2

    def test_empty(self):
        assert review_streak([], self.NOW) == 0
