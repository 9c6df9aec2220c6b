from datetime import datetime, timedelta
from enum import Enum
from typing import ClassVar
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from second_brain.core.constants import INITIAL_STRENGTH, SM2_INITIAL_EASE_FACTOR, SM2_MIN_EASE_FACTOR

from .base import GraphModel, NodeLabel, utc_now


class RecallType(str, Enum):
    EXPLICIT = "explicit"  # marked by the user
    IMPLICIT = "implicit"  # proposed by a background job


class RecallStatus(str, Enum):
    ACTIVE = "active"
    SUGGESTED = "suggested"
    DISMISSED = "dismissed"


class RecallSource(BaseModel):
    """What a recall item points at: a chunk or a derived memory, never both."""

    chunk_id: UUID | None = None
    memory_id: str | None = None

    @model_validator(mode="after")
    def exactly_one(self) -> "RecallSource":
        if (self.chunk_id is None) == (self.memory_id is None):
            raise ValueError("Exactly one of chunk_id or memory_id is required")
        return self

    @property
    def kind(self) -> str:
        return "chunk" if self.chunk_id is not None else "memory"

    def key(self, user_id: str) -> str:
        """Identity of the source for the one-active-item-per-source rule."""
        value = self.chunk_id if self.chunk_id is not None else self.memory_id
        return f"{user_id}:{self.kind}:{value}"


class RecallMetadata(BaseModel):
    note: str | None = None
    memory_id: str | None = None
    reason: str | None = None


class RecallItem(GraphModel):
    """A unit tracked for spaced-repetition review."""

    node_label: ClassVar[NodeLabel] = NodeLabel.RECALL_ITEM
    flattened_fields: ClassVar[tuple[str, ...]] = ("metadata",)

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    content: str
    source_chunk_id: UUID | None = None
    recall_type: RecallType = RecallType.EXPLICIT
    status: RecallStatus = RecallStatus.ACTIVE
    metadata: RecallMetadata = Field(default_factory=RecallMetadata)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def source(self) -> RecallSource | None:
        if self.source_chunk_id is not None:
            return RecallSource(chunk_id=self.source_chunk_id)
        if self.metadata.memory_id is not None:
            return RecallSource(memory_id=self.metadata.memory_id)
        return None

    def source_key(self) -> str | None:
        source = self.source
        return source.key(self.user_id) if source else None


class MemoryStrength(GraphModel):
    """SM-2 scheduling state, 1:1 with an active recall item."""

    node_label: ClassVar[NodeLabel] = NodeLabel.MEMORY_STRENGTH

    recall_item_id: UUID
    strength: float = INITIAL_STRENGTH
    interval_days: int = Field(default=1, ge=1)
    ease_factor: float = Field(default=SM2_INITIAL_EASE_FACTOR, ge=SM2_MIN_EASE_FACTOR)
    review_count: int = Field(default=0, ge=0)
    last_review_at: datetime | None = None
    next_review_at: datetime

    @classmethod
    def initial(cls, recall_item_id: UUID, delay_days: int, now: datetime) -> "MemoryStrength":
        """Scheduling state for an item that has never been reviewed."""
        return cls(
            recall_item_id=recall_item_id,
            interval_days=delay_days,
            next_review_at=now + timedelta(days=delay_days),
        )

    def is_due(self, now: datetime) -> bool:
        return self.next_review_at <= now


class ScheduledRecallItem(BaseModel):
    """A recall item together with its scheduling state, as queues return them."""

    item: RecallItem
    strength: MemoryStrength


class RecallStats(BaseModel):
    due_today: int = 0
    total_active: int = 0
    reviewed_today: int = 0
    streak: int = 0
