from datetime import datetime
from typing import ClassVar
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from .base import GraphModel, NodeLabel, utc_now


class Chunk(GraphModel):
    """A unit of ingested text belonging to one capture.

    Written by the ingestion pipeline; the engine reads it and, at most once,
    fills in a missing embedding.
    """

    node_label: ClassVar[NodeLabel] = NodeLabel.CHUNK

    id: UUID = Field(default_factory=uuid4)
    capture_id: UUID
    user_id: str
    content: str
    embedding: list[float] | None = None
    sequence_index: int = 0
    created_at: datetime = Field(default_factory=utc_now)

    def __str__(self) -> str:
        return f"Chunk(id={self.id}, capture={self.capture_id}, content='{self.content[:40]}...')"


class CanonicalChunk(GraphModel):
    """Representative of a cluster of near-duplicate chunks.

    ``representative_embedding`` is the founding chunk's vector and is never
    recomputed, so linking more chunks never changes the cluster's position.
    """

    node_label: ClassVar[NodeLabel] = NodeLabel.CANONICAL_CHUNK

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    canonical_text: str
    representative_embedding: list[float]
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def found(cls, chunk: Chunk, created_at: datetime | None = None) -> "CanonicalChunk":
        """Start a new cluster from a chunk that matched nothing."""
        if chunk.embedding is None:
            raise ValueError("Cannot found a canonical chunk from an unembedded chunk")
        return cls(
            user_id=chunk.user_id,
            canonical_text=chunk.content,
            representative_embedding=list(chunk.embedding),
            created_at=created_at or utc_now(),
        )

    def __str__(self) -> str:
        return f"CanonicalChunk(id={self.id}, text='{self.canonical_text[:40]}...')"


class CanonicalLink(GraphModel):
    """Maps one chunk to its canonical chunk. At most one per chunk."""

    node_label: ClassVar[NodeLabel] = NodeLabel.CANONICAL_LINK

    chunk_id: UUID
    canonical_id: UUID
    similarity_score: float = Field(ge=-1.0, le=1.0)
    created_at: datetime = Field(default_factory=utc_now)


class CanonicalizationOutcome(BaseModel):
    """Result of canonicalizing one chunk."""

    chunk_id: UUID
    canonical_id: UUID
    similarity_score: float
    created_canonical: bool = False
    already_linked: bool = False


class CanonicalMerge(BaseModel):
    """One newer canonical chunk folded into an older one by the merge pass."""

    kept_id: UUID
    merged_id: UUID
    similarity: float
    relinked: int


class CompactionReport(BaseModel):
    """What one compaction pass changed."""

    merges: list[CanonicalMerge] = Field(default_factory=list)
    orphans_collected: int = 0
