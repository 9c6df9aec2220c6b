from datetime import datetime
from uuid import UUID, uuid4

from neo4j import AsyncDriver, AsyncManagedTransaction, AsyncSession

from second_brain.core.decorators import with_session
from second_brain.core.logging import get_logger
from second_brain.domain.models import CanonicalChunk, CanonicalLink, Chunk
from second_brain.infrastructure.neo4j.driver import neo4j_errors, node_properties
from second_brain.infrastructure.neo4j.queries import CanonicalQueries, ChunkQueries

logger = get_logger(__name__)


class Neo4jChunkRepository:
    """Chunk reads and the one-time embedding write."""

    def __init__(self, driver: AsyncDriver):
        self.driver = driver

    @neo4j_errors("add_chunk")
    @with_session()
    async def add_chunk(self, session: AsyncSession, chunk: Chunk) -> Chunk:
        query, _ = ChunkQueries.merge_chunk()
        result = await session.run(query, id=str(chunk.id), properties=chunk.to_neo4j_properties())
        await result.consume()
        return chunk

    @neo4j_errors("get_chunk")
    @with_session()
    async def get_chunk(self, session: AsyncSession, chunk_id: UUID) -> Chunk | None:
        query, _ = ChunkQueries.get_chunk()
        result = await session.run(query, id=str(chunk_id))
        record = await result.single()
        return Chunk.from_neo4j_record(node_properties(record, "c")) if record else None

    @neo4j_errors("set_embedding_if_missing")
    @with_session()
    async def set_embedding_if_missing(
        self, session: AsyncSession, chunk_id: UUID, embedding: list[float]
    ) -> Chunk | None:
        query, _ = ChunkQueries.set_embedding_if_missing()
        result = await session.run(query, id=str(chunk_id), embedding=embedding)
        record = await result.single()
        return Chunk.from_neo4j_record(node_properties(record, "c")) if record else None

    @neo4j_errors("list_unlinked_chunks")
    @with_session()
    async def list_unlinked_chunks(self, session: AsyncSession, user_id: str, limit: int) -> list[Chunk]:
        query, _ = ChunkQueries.list_unlinked()
        result = await session.run(query, user_id=user_id, limit=limit)
        return [Chunk.from_neo4j_record(node_properties(record, "c")) async for record in result]


class Neo4jCanonicalRepository:
    """Canonical chunks and their links, stored as separate nodes keyed by id."""

    def __init__(self, driver: AsyncDriver):
        self.driver = driver

    @neo4j_errors("get_link")
    @with_session()
    async def get_link(self, session: AsyncSession, chunk_id: UUID) -> CanonicalLink | None:
        query, _ = CanonicalQueries.get_link()
        result = await session.run(query, chunk_id=str(chunk_id))
        record = await result.single()
        return CanonicalLink.from_neo4j_record(node_properties(record, "l")) if record else None

    @neo4j_errors("list_candidates")
    @with_session()
    async def list_candidates(self, session: AsyncSession, user_id: str, limit: int) -> list[CanonicalChunk]:
        query, _ = CanonicalQueries.list_candidates()
        result = await session.run(query, user_id=user_id, limit=limit)
        return [CanonicalChunk.from_neo4j_record(node_properties(record, "c")) async for record in result]

    @neo4j_errors("create_canonical")
    @with_session()
    async def create_canonical(self, session: AsyncSession, canonical: CanonicalChunk) -> CanonicalChunk:
        query, _ = CanonicalQueries.create_canonical()
        result = await session.run(query, properties=canonical.to_neo4j_properties())
        await result.consume()
        logger.debug("Created canonical chunk", canonical_id=str(canonical.id), user_id=canonical.user_id)
        return canonical

    @neo4j_errors("insert_link_if_absent")
    @with_session()
    async def insert_link_if_absent(
        self, session: AsyncSession, link: CanonicalLink
    ) -> tuple[CanonicalLink | None, bool]:
        query, _ = CanonicalQueries.insert_link_if_absent()
        result = await session.run(
            query,
            chunk_id=str(link.chunk_id),
            canonical_id=str(link.canonical_id),
            properties=link.to_neo4j_properties(),
            token=str(uuid4()),
        )
        record = await result.single()
        if record is None:
            return None, False
        return CanonicalLink.from_neo4j_record(node_properties(record, "l")), bool(record["inserted"])

    @neo4j_errors("delete_canonical_if_unlinked")
    @with_session()
    async def delete_canonical_if_unlinked(self, session: AsyncSession, canonical_id: UUID) -> bool:
        query, _ = CanonicalQueries.delete_canonical_if_unlinked()
        result = await session.run(query, id=str(canonical_id))
        record = await result.single()
        return bool(record and record["deleted"])

    @neo4j_errors("delete_orphans")
    @with_session()
    async def delete_orphans(self, session: AsyncSession, created_before: datetime) -> int:
        query, _ = CanonicalQueries.delete_orphans()
        result = await session.run(query, created_before=created_before.timestamp())
        record = await result.single()
        return int(record["deleted"]) if record else 0

    @neo4j_errors("relink")
    @with_session()
    async def relink(self, session: AsyncSession, from_id: UUID, to_id: UUID, similarity: float) -> int:
        return await session.execute_write(self._relink_tx, str(from_id), str(to_id), similarity)

    @staticmethod
    async def _relink_tx(tx: AsyncManagedTransaction, from_id: str, to_id: str, similarity: float) -> int:
        repoint, _ = CanonicalQueries.repoint_links()
        result = await tx.run(repoint, from_id=from_id, to_id=to_id, similarity=similarity)
        record = await result.single()
        relinked = int(record["relinked"]) if record else 0

        delete, _ = CanonicalQueries.delete_canonical()
        await tx.run(delete, id=from_id)
        return relinked

    @neo4j_errors("count_links")
    @with_session()
    async def count_links(self, session: AsyncSession, canonical_id: UUID) -> int:
        query, _ = CanonicalQueries.count_links()
        result = await session.run(query, canonical_id=str(canonical_id))
        record = await result.single()
        return int(record["links"]) if record else 0

    @neo4j_errors("list_canonical_users")
    @with_session()
    async def list_canonical_users(self, session: AsyncSession) -> list[str]:
        query, _ = CanonicalQueries.list_users()
        result = await session.run(query)
        return [record["user_id"] async for record in result]
