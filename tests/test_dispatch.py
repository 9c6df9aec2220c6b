"""
Job Dispatch Tests

Retry bounds, fail-fast on non-transient errors, and the engine handlers
running through a dispatcher.
"""

from uuid import uuid4

import pytest

from second_brain.core.base import ErrorCode
from second_brain.core.errors import InvalidInputError, NotFoundError, StorageError
from second_brain.core.logging import get_log_context
from second_brain.domain.models import RecallSource, RecallStatus
from second_brain.jobs.dispatch import AsyncioJobDispatcher, InMemoryJobDispatcher, JobStatus
from second_brain.jobs.handlers import (
    CANONICALIZE,
    CANONICALIZE_USER,
    COMPACT_CANONICALS,
    SUBMIT_REVIEW,
    SUGGEST_RECALL,
    EngineJobHandlers,
)

from .conftest import make_chunk


class Flaky:
    """Handler failing a fixed number of times before succeeding."""

    def __init__(self, failures: int, error: Exception | None = None):
        self.failures = failures
        self.error = error or StorageError("neo4j unavailable")
        self.calls = 0

    async def __call__(self, payload):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return {"echo": payload}


@pytest.fixture
def dispatcher():
    return InMemoryJobDispatcher(max_attempts=3, initial_delay=0, max_delay=0)


@pytest.fixture
def handlers(store, engine, scheduler, dispatcher):
    handlers = EngineJobHandlers(store, engine, scheduler)
    handlers.register_all(dispatcher)
    return handlers


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, dispatcher):
        handler = Flaky(failures=2)
        dispatcher.register("flaky", handler)

        job_id = await dispatcher.enqueue("flaky", {"n": 1})
        outcome = dispatcher.get_outcome(job_id)

        assert outcome.status == JobStatus.SUCCEEDED
        assert outcome.attempts == 3
        assert outcome.result == {"echo": {"n": 1}}

    @pytest.mark.asyncio
    async def test_attempts_are_bounded(self, dispatcher):
        handler = Flaky(failures=10)
        dispatcher.register("flaky", handler)

        outcome = dispatcher.get_outcome(await dispatcher.enqueue("flaky", {}))

        assert outcome.status == JobStatus.FAILED
        assert outcome.attempts == 3
        assert handler.calls == 3
        assert outcome.error_code == ErrorCode.DB_OPERATION.value

    @pytest.mark.asyncio
    async def test_invalid_input_fails_fast(self, dispatcher):
        handler = Flaky(failures=10, error=InvalidInputError("bad payload"))
        dispatcher.register("strict", handler)

        outcome = dispatcher.get_outcome(await dispatcher.enqueue("strict", {}))

        assert outcome.status == JobStatus.FAILED
        assert handler.calls == 1
        assert outcome.error_code == ErrorCode.INVALID_INPUT.value

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_not_retried(self, dispatcher):
        handler = Flaky(failures=10, error=RuntimeError("bug"))
        dispatcher.register("buggy", handler)

        outcome = dispatcher.get_outcome(await dispatcher.enqueue("buggy", {}))

        assert outcome.status == JobStatus.FAILED
        assert handler.calls == 1
        assert outcome.error == "bug"

    @pytest.mark.asyncio
    async def test_unknown_job(self, dispatcher):
        with pytest.raises(NotFoundError):
            await dispatcher.enqueue("nope", {})

    @pytest.mark.asyncio
    async def test_handlers_run_with_job_log_context(self, dispatcher):
        seen = {}

        async def capture(payload):
            seen.update(get_log_context())
            return {}

        dispatcher.register("capture", capture)
        job_id = await dispatcher.enqueue("capture", {})

        assert seen == {"job_id": job_id, "job_name": "capture"}
        assert "job_id" not in get_log_context()


class TestAsyncioDispatcher:
    @pytest.mark.asyncio
    async def test_workers_drain_the_queue(self):
        dispatcher = AsyncioJobDispatcher(workers=2, max_attempts=2, initial_delay=0, max_delay=0)
        flaky = Flaky(failures=1)
        dispatcher.register("flaky", flaky)
        await dispatcher.start()
        try:
            job_ids = [await dispatcher.enqueue("flaky", {"n": n}) for n in range(3)]
            await dispatcher.join()
        finally:
            await dispatcher.stop()

        outcomes = [dispatcher.get_outcome(job_id) for job_id in job_ids]
        assert all(o.status == JobStatus.SUCCEEDED for o in outcomes)
        assert flaky.calls == 4
        assert dispatcher.get_status()["queued"] == 0

    @pytest.mark.asyncio
    async def test_queued_job_reports_queued(self):
        dispatcher = AsyncioJobDispatcher(workers=1)
        dispatcher.register("noop", Flaky(failures=0))

        job_id = await dispatcher.enqueue("noop", {})

        assert dispatcher.get_outcome(job_id).status == JobStatus.QUEUED
        await dispatcher.start()
        await dispatcher.stop()
        assert dispatcher.get_outcome(job_id).status == JobStatus.SUCCEEDED


class TestEngineHandlers:
    @pytest.mark.asyncio
    async def test_canonicalize_job(self, handlers, dispatcher, store):
        chunk = make_chunk(None, content="embed me first")
        await store.add_chunk(chunk)

        outcome = dispatcher.get_outcome(await dispatcher.enqueue(CANONICALIZE, {"chunk_id": str(chunk.id)}))

        assert outcome.status == JobStatus.SUCCEEDED
        assert outcome.result["chunk_id"] == str(chunk.id)
        assert outcome.result["created_canonical"] is True
        assert chunk.id in store.links

    @pytest.mark.asyncio
    async def test_canonicalize_missing_chunk(self, handlers, dispatcher):
        outcome = dispatcher.get_outcome(await dispatcher.enqueue(CANONICALIZE, {"chunk_id": str(uuid4())}))
        assert outcome.status == JobStatus.FAILED
        assert outcome.error_code == ErrorCode.NOT_FOUND.value
        assert outcome.attempts == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"chunk_id": "not-a-uuid"}])
    async def test_canonicalize_bad_payload(self, handlers, dispatcher, payload):
        outcome = dispatcher.get_outcome(await dispatcher.enqueue(CANONICALIZE, payload))
        assert outcome.status == JobStatus.FAILED
        assert outcome.error_code == ErrorCode.INVALID_INPUT.value

    @pytest.mark.asyncio
    async def test_canonicalize_user_job(self, handlers, dispatcher, store):
        for _ in range(3):
            await store.add_chunk(make_chunk([1.0, 0.0, 0.0, 0.0]))

        outcome = dispatcher.get_outcome(await dispatcher.enqueue(CANONICALIZE_USER, {"user_id": "user-1"}))

        assert outcome.status == JobStatus.SUCCEEDED
        assert len(outcome.result) == 3
        assert len(store.canonicals) == 1

    @pytest.mark.asyncio
    async def test_review_job(self, handlers, dispatcher, scheduler):
        scheduled = await scheduler.create_recall_item("user-1", RecallSource(chunk_id=uuid4()), "content")

        outcome = dispatcher.get_outcome(
            await dispatcher.enqueue(
                SUBMIT_REVIEW, {"item_id": str(scheduled.item.id), "quality": 5, "caller_id": "user-1"}
            )
        )

        assert outcome.status == JobStatus.SUCCEEDED
        assert outcome.result["review_count"] == 1

    @pytest.mark.asyncio
    async def test_review_job_rejects_bad_quality(self, handlers, dispatcher, scheduler):
        scheduled = await scheduler.create_recall_item("user-1", RecallSource(chunk_id=uuid4()), "content")

        outcome = dispatcher.get_outcome(
            await dispatcher.enqueue(
                SUBMIT_REVIEW, {"item_id": str(scheduled.item.id), "quality": 9, "caller_id": "user-1"}
            )
        )

        assert outcome.status == JobStatus.FAILED
        assert outcome.attempts == 1

    @pytest.mark.asyncio
    async def test_suggest_job(self, handlers, dispatcher, store):
        outcome = dispatcher.get_outcome(
            await dispatcher.enqueue(
                SUGGEST_RECALL,
                {"user_id": "user-1", "content": "revisit", "memory_id": "mem-1", "reason": "resurfaced"},
            )
        )

        assert outcome.status == JobStatus.SUCCEEDED
        item = next(iter(store.items.values()))
        assert item.status == RecallStatus.SUGGESTED
        assert item.metadata.memory_id == "mem-1"

    @pytest.mark.asyncio
    async def test_suggest_job_rejects_two_sources(self, handlers, dispatcher, store):
        outcome = dispatcher.get_outcome(
            await dispatcher.enqueue(
                SUGGEST_RECALL,
                {"user_id": "user-1", "content": "x", "memory_id": "mem-1", "chunk_id": str(uuid4())},
            )
        )
        assert outcome.status == JobStatus.FAILED
        assert outcome.error_code == ErrorCode.INVALID_INPUT.value
        assert store.items == {}

    @pytest.mark.asyncio
    async def test_compact_job(self, handlers, dispatcher):
        outcome = dispatcher.get_outcome(await dispatcher.enqueue(COMPACT_CANONICALS, {}))
        assert outcome.status == JobStatus.SUCCEEDED
        assert outcome.result == {"merges": [], "orphans_collected": 0}
