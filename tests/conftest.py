"""
Shared test fixtures.

Everything runs against the in-memory store with a frozen clock, so the
suite needs neither Neo4j nor an embedding provider.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from second_brain.domain.models import CanonicalChunk, Chunk
from second_brain.infrastructure.repositories.in_memory import InMemoryStore
from second_brain.services.canonicalization import CanonicalizationEngine
from second_brain.services.recall_scheduler import RecallScheduler

START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FrozenClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class FakeEmbedder:
    """Embedding provider returning fixed vectors per text."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, default: list[float] | None = None):
        self.vectors = vectors or {}
        self.default = default or [1.0, 0.0, 0.0, 0.0]
        self.calls: list[str] = []

    async def embed_text(self, text: str) -> list[float]:
        self.calls.append(text)
        return list(self.vectors.get(text, self.default))

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_text(t) for t in texts]


def make_chunk(embedding: list[float] | None, user_id: str = "user-1", content: str | None = None, **kwargs) -> Chunk:
    return Chunk(
        capture_id=uuid4(),
        user_id=user_id,
        content=content or f"chunk {uuid4()}",
        embedding=embedding,
        **kwargs,
    )


def make_canonical(embedding: list[float], created_at: datetime, user_id: str = "user-1") -> CanonicalChunk:
    return CanonicalChunk(
        user_id=user_id,
        canonical_text="seeded canonical",
        representative_embedding=embedding,
        created_at=created_at,
    )


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def engine(store, embedder, clock):
    return CanonicalizationEngine(
        store,
        store,
        embeddings=embedder,
        threshold=0.92,
        epsilon=1e-9,
        candidate_limit=50,
        orphan_grace_seconds=300,
        clock=clock,
    )


@pytest.fixture
def scheduler(store, clock):
    return RecallScheduler(store, clock=clock, max_retries=2, timeout_seconds=1.0, retry_delay=0)
