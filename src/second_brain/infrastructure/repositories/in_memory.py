"""Process-local store implementing every storage contract.

Used by the test suite and by ``STORAGE_BACKEND=memory`` for single-process
development. A single lock serializes mutations, standing in for the unique
constraints the Neo4j schema provides.
"""

import asyncio
from datetime import datetime
from uuid import UUID

from second_brain.core.errors import ProcessingError, RecallConflictError
from second_brain.domain.models import (
    CanonicalChunk,
    CanonicalLink,
    Chunk,
    MemoryStrength,
    RecallItem,
    RecallStatus,
    ScheduledRecallItem,
)


class InMemoryStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.chunks: dict[UUID, Chunk] = {}
        self.canonicals: dict[UUID, CanonicalChunk] = {}
        self.links: dict[UUID, CanonicalLink] = {}
        self.items: dict[UUID, RecallItem] = {}
        self.strengths: dict[UUID, MemoryStrength] = {}
        self.active_keys: dict[str, UUID] = {}

    # Chunks

    async def add_chunk(self, chunk: Chunk) -> Chunk:
        async with self._lock:
            self.chunks[chunk.id] = chunk.model_copy(deep=True)
        return chunk

    async def get_chunk(self, chunk_id: UUID) -> Chunk | None:
        chunk = self.chunks.get(chunk_id)
        return chunk.model_copy(deep=True) if chunk else None

    async def set_embedding_if_missing(self, chunk_id: UUID, embedding: list[float]) -> Chunk | None:
        async with self._lock:
            chunk = self.chunks.get(chunk_id)
            if chunk is None:
                return None
            if chunk.embedding is None:
                chunk = chunk.model_copy(update={"embedding": list(embedding)})
                self.chunks[chunk_id] = chunk
            return chunk.model_copy(deep=True)

    async def list_unlinked_chunks(self, user_id: str, limit: int) -> list[Chunk]:
        unlinked = [c for c in self.chunks.values() if c.user_id == user_id and c.id not in self.links]
        unlinked.sort(key=lambda c: (c.created_at, str(c.id)))
        return [c.model_copy(deep=True) for c in unlinked[:limit]]

    # Canonical chunks and links

    async def get_link(self, chunk_id: UUID) -> CanonicalLink | None:
        link = self.links.get(chunk_id)
        return link.model_copy() if link else None

    async def list_candidates(self, user_id: str, limit: int) -> list[CanonicalChunk]:
        owned = [c for c in self.canonicals.values() if c.user_id == user_id]
        owned.sort(key=lambda c: (c.created_at, str(c.id)))
        return [c.model_copy(deep=True) for c in owned[:limit]]

    async def create_canonical(self, canonical: CanonicalChunk) -> CanonicalChunk:
        async with self._lock:
            self.canonicals[canonical.id] = canonical.model_copy(deep=True)
        return canonical

    async def insert_link_if_absent(self, link: CanonicalLink) -> tuple[CanonicalLink | None, bool]:
        async with self._lock:
            if link.canonical_id not in self.canonicals:
                return None, False
            existing = self.links.get(link.chunk_id)
            if existing is not None:
                return existing.model_copy(), False
            self.links[link.chunk_id] = link.model_copy()
            return link, True

    async def delete_canonical_if_unlinked(self, canonical_id: UUID) -> bool:
        async with self._lock:
            if canonical_id not in self.canonicals or self._link_count(canonical_id):
                return False
            del self.canonicals[canonical_id]
            return True

    async def delete_orphans(self, created_before: datetime) -> int:
        async with self._lock:
            orphans = [
                c.id
                for c in self.canonicals.values()
                if c.created_at < created_before and not self._link_count(c.id)
            ]
            for canonical_id in orphans:
                del self.canonicals[canonical_id]
            return len(orphans)

    async def relink(self, from_id: UUID, to_id: UUID, similarity: float) -> int:
        async with self._lock:
            relinked = 0
            for chunk_id, link in list(self.links.items()):
                if link.canonical_id == from_id:
                    self.links[chunk_id] = link.model_copy(
                        update={"canonical_id": to_id, "similarity_score": similarity}
                    )
                    relinked += 1
            self.canonicals.pop(from_id, None)
            return relinked

    async def count_links(self, canonical_id: UUID) -> int:
        return self._link_count(canonical_id)

    async def list_canonical_users(self) -> list[str]:
        return sorted({c.user_id for c in self.canonicals.values()})

    def _link_count(self, canonical_id: UUID) -> int:
        return sum(1 for link in self.links.values() if link.canonical_id == canonical_id)

    # Recall items

    async def insert_item(self, item: RecallItem) -> RecallItem:
        async with self._lock:
            key = item.source_key() if item.status == RecallStatus.ACTIVE else None
            self._claim(key, item.id)
            self.items[item.id] = item.model_copy(deep=True)
        return item

    async def get_item(self, item_id: UUID) -> RecallItem | None:
        item = self.items.get(item_id)
        return item.model_copy(deep=True) if item else None

    async def find_active_by_source(self, source_key: str) -> RecallItem | None:
        item_id = self.active_keys.get(source_key)
        return await self.get_item(item_id) if item_id else None

    async def delete_item(self, item_id: UUID) -> bool:
        async with self._lock:
            item = self.items.pop(item_id, None)
            self.strengths.pop(item_id, None)
            if item is None:
                return False
            self._release(item)
            return True

    async def transition_status(
        self, item_id: UUID, expected: RecallStatus, new: RecallStatus
    ) -> RecallItem | None:
        async with self._lock:
            item = self.items.get(item_id)
            if item is None or item.status != expected:
                return None
            updated = item.model_copy(update={"status": new})
            if new == RecallStatus.ACTIVE:
                self._claim(updated.source_key(), item_id)
            else:
                self._release(item)
            self.items[item_id] = updated
            return updated.model_copy(deep=True)

    def _claim(self, key: str | None, item_id: UUID) -> None:
        if key is None:
            return
        holder = self.active_keys.get(key)
        if holder is not None and holder != item_id:
            raise RecallConflictError(
                "An active recall item already exists for this source",
                existing_item_id=str(holder),
            )
        self.active_keys[key] = item_id

    def _release(self, item: RecallItem) -> None:
        key = item.source_key()
        if key is not None and self.active_keys.get(key) == item.id:
            del self.active_keys[key]

    # Memory strength

    async def insert_strength(self, strength: MemoryStrength) -> MemoryStrength:
        async with self._lock:
            if strength.recall_item_id in self.strengths:
                raise ProcessingError(
                    f"Memory strength already exists for {strength.recall_item_id}",
                    details={"source": "in_memory_store", "operation": "insert_strength"},
                )
            self.strengths[strength.recall_item_id] = strength.model_copy()
        return strength

    async def get_strength(self, item_id: UUID) -> MemoryStrength | None:
        strength = self.strengths.get(item_id)
        return strength.model_copy() if strength else None

    async def delete_strength(self, item_id: UUID) -> bool:
        async with self._lock:
            return self.strengths.pop(item_id, None) is not None

    async def compare_and_set_strength(self, expected: MemoryStrength, updated: MemoryStrength) -> bool:
        async with self._lock:
            current = self.strengths.get(expected.recall_item_id)
            if current is None or current != expected:
                return False
            self.strengths[expected.recall_item_id] = updated.model_copy()
            return True

    # Queues and stats

    def _scheduled(self, user_id: str) -> list[ScheduledRecallItem]:
        return [
            ScheduledRecallItem(item=item.model_copy(deep=True), strength=self.strengths[item.id].model_copy())
            for item in self.items.values()
            if item.user_id == user_id and item.status == RecallStatus.ACTIVE and item.id in self.strengths
        ]

    async def due_items(self, user_id: str, now: datetime, limit: int) -> list[ScheduledRecallItem]:
        due = [s for s in self._scheduled(user_id) if s.strength.next_review_at <= now]
        due.sort(key=lambda s: s.strength.next_review_at)
        return due[:limit]

    async def implicit_items(self, user_id: str, now: datetime, limit: int) -> list[ScheduledRecallItem]:
        upcoming = [s for s in self._scheduled(user_id) if s.strength.next_review_at > now]
        upcoming.sort(
            key=lambda s: (
                s.strength.last_review_at is not None,
                s.strength.last_review_at or s.strength.next_review_at,
                s.strength.next_review_at,
            )
        )
        return upcoming[:limit]

    async def list_items(self, user_id: str, status: RecallStatus, limit: int) -> list[RecallItem]:
        matching = [i for i in self.items.values() if i.user_id == user_id and i.status == status]
        matching.sort(key=lambda i: i.created_at, reverse=True)
        return [i.model_copy(deep=True) for i in matching[:limit]]

    async def count_active(self, user_id: str) -> int:
        return sum(1 for i in self.items.values() if i.user_id == user_id and i.status == RecallStatus.ACTIVE)

    async def count_due_before(self, user_id: str, until: datetime) -> int:
        return sum(1 for s in self._scheduled(user_id) if s.strength.next_review_at <= until)

    async def count_reviewed_since(self, user_id: str, since: datetime) -> int:
        return sum(
            1
            for item_id, strength in self.strengths.items()
            if self.items.get(item_id) is not None
            and self.items[item_id].user_id == user_id
            and strength.last_review_at is not None
            and strength.last_review_at >= since
        )

    async def recent_review_times(self, user_id: str, limit: int) -> list[datetime]:
        times = [
            strength.last_review_at
            for item_id, strength in self.strengths.items()
            if strength.last_review_at is not None
            and self.items.get(item_id) is not None
            and self.items[item_id].user_id == user_id
        ]
        times.sort(reverse=True)
        return times[:limit]
