"""Canonicalization of near-duplicate chunks.

Every chunk is mapped to exactly one canonical chunk of the same user. The hot
path only inserts (link insert-or-no-op on the chunk id); the batch merge pass
is the only writer that re-points existing links.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import logfire

from second_brain.core.base import (
    ErrorCode,
    ErrorLevel,
    ResourceErrorDetails,
    ServiceErrorDetails,
    ValidationErrorDetails,
)
from second_brain.core.config import settings
from second_brain.core.constants import CANONICALIZE_MAX_ATTEMPTS, DEDUP_BATCH_SIZE, FOUNDING_SIMILARITY
from second_brain.core.decorators import error_context, with_error_handling
from second_brain.core.errors import InvalidInputError, NotFoundError, ServiceError
from second_brain.core.logging import get_logger
from second_brain.domain.models import (
    CanonicalChunk,
    CanonicalizationOutcome,
    CanonicalLink,
    CanonicalMerge,
    Chunk,
    CompactionReport,
    utc_now,
)
from second_brain.domain.similarity import best_match

if TYPE_CHECKING:
    from second_brain.domain.repositories import CanonicalStore, ChunkStore
    from second_brain.services import EmbeddingService

logger = get_logger(__name__)

merge_counter = logfire.metric_counter(
    "canonical_merges",
    unit="1",
    description="Duplicate canonical chunks folded together by the merge pass",
)


class CanonicalizationEngine:
    """Assigns chunks to canonical clusters and keeps the clusters tidy."""

    def __init__(
        self,
        chunks: "ChunkStore",
        canonicals: "CanonicalStore",
        embeddings: "EmbeddingService | None" = None,
        threshold: float | None = None,
        epsilon: float | None = None,
        candidate_limit: int | None = None,
        orphan_grace_seconds: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.chunks = chunks
        self.canonicals = canonicals
        self.embeddings = embeddings
        self.threshold = settings.dedup_threshold if threshold is None else threshold
        self.epsilon = settings.similarity_epsilon if epsilon is None else epsilon
        self.candidate_limit = candidate_limit or settings.canonical_candidate_limit
        self.orphan_grace = timedelta(
            seconds=settings.orphan_grace_seconds if orphan_grace_seconds is None else orphan_grace_seconds
        )
        self._clock = clock

    async def _candidates(self, user_id: str) -> list[CanonicalChunk]:
        candidates = await self.canonicals.list_candidates(user_id, self.candidate_limit + 1)
        if len(candidates) > self.candidate_limit:
            logger.warning(
                "Canonical candidate set truncated",
                user_id=user_id,
                limit=self.candidate_limit,
            )
            candidates = candidates[: self.candidate_limit]
        return candidates

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def ensure_embedded(self, chunk: Chunk) -> Chunk:
        """Embed a chunk that arrived without a vector and persist the vector once."""
        if chunk.embedding is not None:
            return chunk
        if self.embeddings is None:
            raise InvalidInputError(
                f"Chunk {chunk.id} has no embedding and no embedding provider is configured",
                details={"source": "canonicalization", "operation": "ensure_embedded"},
            )

        embedding = await self.embeddings.embed_text(chunk.content)
        stored = await self.chunks.set_embedding_if_missing(chunk.id, embedding)
        if stored is None:
            raise NotFoundError(
                f"Chunk {chunk.id} disappeared while being embedded",
                details=ResourceErrorDetails(
                    source="canonicalization",
                    operation="ensure_embedded",
                    resource_id=str(chunk.id),
                    resource_type="chunk",
                    action="embed",
                ),
            )
        logger.debug("Chunk embedded", chunk_id=str(chunk.id), dimensions=len(embedding))
        return stored

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def canonicalize(self, chunk: Chunk) -> CanonicalizationOutcome:
        """Link a chunk to the most similar canonical chunk, founding one if none is close enough.

        Safe to repeat: a chunk that is already linked keeps its link.

        Args:
            chunk: An embedded chunk

        Returns:
            The link that now exists for the chunk

        Raises:
            InvalidInputError: If the chunk has no embedding or a mismatched dimension
        """
        existing = await self.canonicals.get_link(chunk.id)
        if existing is not None:
            logger.debug("Chunk already canonicalized", chunk_id=str(chunk.id))
            return _outcome(existing, already_linked=True)

        if chunk.embedding is None:
            raise InvalidInputError(
                f"Chunk {chunk.id} has no embedding",
                details=ValidationErrorDetails(
                    source="canonicalization",
                    operation="canonicalize",
                    field="embedding",
                    constraint="required",
                ),
            )

        for attempt in range(CANONICALIZE_MAX_ATTEMPTS):
            outcome = await self._link(chunk)
            if outcome is not None:
                return outcome
            logger.info(
                "Canonical chunk merged away while linking, reselecting",
                chunk_id=str(chunk.id),
                attempt=attempt + 1,
            )

        raise ServiceError(
            f"Chunk {chunk.id} kept losing its canonical chunk to concurrent merges",
            details=ServiceErrorDetails(
                source="canonicalization",
                operation="canonicalize",
                service_name="canonical_store",
            ),
            code=ErrorCode.RESOURCE_CONFLICT,
        )

    async def _link(self, chunk: Chunk) -> CanonicalizationOutcome | None:
        """One select-and-link round; None when the chosen canonical chunk vanished first."""
        candidates = await self._candidates(chunk.user_id)
        try:
            match = best_match(chunk.embedding, candidates, self.epsilon)
        except ValueError as e:
            raise InvalidInputError(
                str(e),
                details={"source": "canonicalization", "operation": "canonicalize"},
            ) from e

        founded: CanonicalChunk | None = None
        if match is not None and match.score >= self.threshold:
            link = CanonicalLink(
                chunk_id=chunk.id,
                canonical_id=match.canonical.id,
                similarity_score=match.score,
                created_at=self._clock(),
            )
        else:
            founded = CanonicalChunk.found(chunk, created_at=self._clock())
            await self.canonicals.create_canonical(founded)
            link = CanonicalLink(
                chunk_id=chunk.id,
                canonical_id=founded.id,
                similarity_score=FOUNDING_SIMILARITY,
                created_at=self._clock(),
            )

        stored, inserted = await self.canonicals.insert_link_if_absent(link)
        if stored is None:
            return None
        if not inserted:
            # Another worker linked this chunk first; its link stands
            if founded is not None:
                await self.canonicals.delete_canonical_if_unlinked(founded.id)
            logger.info(
                "Lost canonicalization race",
                chunk_id=str(chunk.id),
                canonical_id=str(stored.canonical_id),
            )
            return _outcome(stored, already_linked=True)

        logger.info(
            "Chunk canonicalized",
            chunk_id=str(chunk.id),
            canonical_id=str(stored.canonical_id),
            similarity=stored.similarity_score,
            created_canonical=founded is not None,
        )
        return _outcome(stored, created_canonical=founded is not None)

    async def canonicalize_pending(self, user_id: str, limit: int = DEDUP_BATCH_SIZE) -> list[CanonicalizationOutcome]:
        """Canonicalize a user's unlinked chunks, oldest first.

        Chunks that cannot be canonicalized (no vector and no provider, bad
        dimensions) are skipped; transient failures propagate.
        """
        pending = await self.chunks.list_unlinked_chunks(user_id, limit)
        outcomes: list[CanonicalizationOutcome] = []
        for chunk in pending:
            try:
                chunk = await self.ensure_embedded(chunk)
                outcomes.append(await self.canonicalize(chunk))
            except (InvalidInputError, NotFoundError) as e:
                logger.warning("Skipping chunk", chunk_id=str(chunk.id), reason=e.message)
        logger.info("Pending chunks canonicalized", user_id=user_id, pending=len(pending), linked=len(outcomes))
        return outcomes

    @error_context(error_level=ErrorLevel.ERROR)
    async def collect_orphans(self) -> int:
        """Delete canonical chunks that no link points at.

        Chunks younger than the grace period are left alone so a canonical
        whose first link is still being written is never collected.
        """
        collected = await self.canonicals.delete_orphans(self._clock() - self.orphan_grace)
        if collected:
            logger.info("Collected orphan canonical chunks", collected=collected)
        return collected

    @error_context(error_level=ErrorLevel.ERROR)
    async def merge_canonicals(self, user_id: str) -> list[CanonicalMerge]:
        """Fold canonical chunks whose representatives are near-duplicates into the oldest one.

        Concurrent first arrivals of the same content can each found a
        cluster; this pass reconciles them. Running it twice changes nothing.
        """
        canonicals = await self._candidates(user_id)
        survivors: list[CanonicalChunk] = []
        merges: list[CanonicalMerge] = []

        for canonical in canonicals:
            match = best_match(canonical.representative_embedding, survivors, self.epsilon)
            if match is None or match.score < self.threshold:
                survivors.append(canonical)
                continue

            relinked = await self.canonicals.relink(canonical.id, match.canonical.id, match.score)
            merges.append(
                CanonicalMerge(
                    kept_id=match.canonical.id,
                    merged_id=canonical.id,
                    similarity=match.score,
                    relinked=relinked,
                )
            )
            merge_counter.add(1)
            logger.warning(
                "Merged duplicate canonical chunk",
                user_id=user_id,
                kept_id=str(match.canonical.id),
                merged_id=str(canonical.id),
                similarity=match.score,
                relinked=relinked,
            )

        return merges

    async def compact(self, user_id: str | None = None) -> CompactionReport:
        """Merge duplicates for one user (or every user), then collect orphans."""
        users = [user_id] if user_id else await self.canonicals.list_canonical_users()
        report = CompactionReport()
        for owner in users:
            report.merges.extend(await self.merge_canonicals(owner))
        report.orphans_collected = await self.collect_orphans()
        logger.info(
            "Canonical compaction finished",
            users=len(users),
            merges=len(report.merges),
            orphans_collected=report.orphans_collected,
        )
        return report


def _outcome(
    link: CanonicalLink, created_canonical: bool = False, already_linked: bool = False
) -> CanonicalizationOutcome:
    return CanonicalizationOutcome(
        chunk_id=link.chunk_id,
        canonical_id=link.canonical_id,
        similarity_score=link.similarity_score,
        created_canonical=created_canonical,
        already_linked=already_linked,
    )
