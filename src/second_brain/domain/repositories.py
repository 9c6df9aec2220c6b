"""Storage contracts used by the engine.

Both the Neo4j repositories and the in-memory store implement these; services
only depend on the protocols.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from second_brain.domain.models import (
    CanonicalChunk,
    CanonicalLink,
    Chunk,
    MemoryStrength,
    RecallItem,
    RecallStatus,
    ScheduledRecallItem,
)


@runtime_checkable
class ChunkStore(Protocol):
    """Chunks are written by ingestion; the engine reads them and fills missing vectors."""

    async def add_chunk(self, chunk: Chunk) -> Chunk:
        ...

    async def get_chunk(self, chunk_id: UUID) -> Chunk | None:
        ...

    async def set_embedding_if_missing(self, chunk_id: UUID, embedding: list[float]) -> Chunk | None:
        """Store the vector unless one is already present; return the stored chunk."""
        ...

    async def list_unlinked_chunks(self, user_id: str, limit: int) -> list[Chunk]:
        """Chunks of a user with no canonical link, oldest first."""
        ...


@runtime_checkable
class CanonicalStore(Protocol):
    async def get_link(self, chunk_id: UUID) -> CanonicalLink | None:
        ...

    async def list_candidates(self, user_id: str, limit: int) -> list[CanonicalChunk]:
        """Canonical chunks of a user, oldest first."""
        ...

    async def create_canonical(self, canonical: CanonicalChunk) -> CanonicalChunk:
        ...

    async def insert_link_if_absent(self, link: CanonicalLink) -> tuple[CanonicalLink | None, bool]:
        """Insert unless the chunk is already linked.

        Returns the stored link and whether this call inserted it. The link
        is only written while its canonical chunk exists; ``(None, False)``
        means the target is gone and nothing was written.
        """
        ...

    async def delete_canonical_if_unlinked(self, canonical_id: UUID) -> bool:
        ...

    async def delete_orphans(self, created_before: datetime) -> int:
        """Delete canonical chunks created before the cutoff with zero links; return how many."""
        ...

    async def relink(self, from_id: UUID, to_id: UUID, similarity: float) -> int:
        """Point every link of ``from_id`` at ``to_id`` and delete ``from_id``."""
        ...

    async def count_links(self, canonical_id: UUID) -> int:
        ...

    async def list_canonical_users(self) -> list[str]:
        ...


@runtime_checkable
class RecallStore(Protocol):
    """Recall items and their 1:1 memory strength rows.

    An active item's source key is unique per store; ``insert_item`` and
    ``transition_status`` raise ``RecallConflictError`` when activating would
    break that.
    """

    async def insert_item(self, item: RecallItem) -> RecallItem:
        ...

    async def get_item(self, item_id: UUID) -> RecallItem | None:
        ...

    async def find_active_by_source(self, source_key: str) -> RecallItem | None:
        ...

    async def delete_item(self, item_id: UUID) -> bool:
        """Delete the item and its strength row."""
        ...

    async def transition_status(
        self, item_id: UUID, expected: RecallStatus, new: RecallStatus
    ) -> RecallItem | None:
        """Change status only if it is still ``expected``; None when it was not."""
        ...

    async def insert_strength(self, strength: MemoryStrength) -> MemoryStrength:
        ...

    async def get_strength(self, item_id: UUID) -> MemoryStrength | None:
        ...

    async def delete_strength(self, item_id: UUID) -> bool:
        ...

    async def compare_and_set_strength(self, expected: MemoryStrength, updated: MemoryStrength) -> bool:
        """Write ``updated`` only if the stored row still matches ``expected``."""
        ...

    async def due_items(self, user_id: str, now: datetime, limit: int) -> list[ScheduledRecallItem]:
        ...

    async def implicit_items(self, user_id: str, now: datetime, limit: int) -> list[ScheduledRecallItem]:
        ...

    async def list_items(self, user_id: str, status: RecallStatus, limit: int) -> list[RecallItem]:
        """Items of a user in one status, newest first."""
        ...

    async def count_active(self, user_id: str) -> int:
        ...

    async def count_due_before(self, user_id: str, until: datetime) -> int:
        ...

    async def count_reviewed_since(self, user_id: str, since: datetime) -> int:
        ...

    async def recent_review_times(self, user_id: str, limit: int) -> list[datetime]:
        """Latest ``last_review_at`` values of the user's items, newest first."""
        ...
