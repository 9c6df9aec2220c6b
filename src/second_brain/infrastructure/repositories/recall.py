from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from neo4j import AsyncDriver, AsyncSession
from neo4j.exceptions import ConstraintError

from second_brain.core.decorators import with_session
from second_brain.core.errors import RecallConflictError
from second_brain.core.logging import get_logger
from second_brain.domain.models import MemoryStrength, RecallItem, RecallStatus, ScheduledRecallItem
from second_brain.infrastructure.neo4j.driver import neo4j_errors, node_properties
from second_brain.infrastructure.neo4j.queries import RecallQueries

logger = get_logger(__name__)


def active_key(item: RecallItem, status: RecallStatus | None = None) -> str | None:
    """Uniqueness key stored on active items only."""
    return item.source_key() if (status or item.status) == RecallStatus.ACTIVE else None


class Neo4jRecallRepository:
    """Recall items and memory strength rows.

    The ``active_key`` property is unique in the database, so two racing
    creates (or accepts) for the same source cannot both succeed.
    """

    def __init__(self, driver: AsyncDriver):
        self.driver = driver

    async def _conflict(self, key: str) -> RecallConflictError:
        existing = await self.find_active_by_source(key)
        existing_id = str(existing.id) if existing else ""
        return RecallConflictError(
            "An active recall item already exists for this source",
            existing_item_id=existing_id,
        )

    @neo4j_errors("insert_item")
    async def insert_item(self, item: RecallItem) -> RecallItem:
        properties = item.to_neo4j_properties()
        properties["active_key"] = key = active_key(item)
        try:
            async with self.driver.session() as session:
                query, _ = RecallQueries.create_item()
                result = await session.run(query, properties=properties)
                await result.consume()
        except ConstraintError as e:
            if key is None:
                raise
            raise await self._conflict(key) from e
        return item

    @neo4j_errors("get_item")
    @with_session()
    async def get_item(self, session: AsyncSession, item_id: UUID) -> RecallItem | None:
        query, _ = RecallQueries.get_item()
        result = await session.run(query, id=str(item_id))
        record = await result.single()
        return RecallItem.from_neo4j_record(node_properties(record, "r")) if record else None

    @neo4j_errors("find_active_by_source")
    @with_session()
    async def find_active_by_source(self, session: AsyncSession, source_key: str) -> RecallItem | None:
        query, _ = RecallQueries.find_active_by_source()
        result = await session.run(query, active_key=source_key)
        record = await result.single()
        return RecallItem.from_neo4j_record(node_properties(record, "r")) if record else None

    @neo4j_errors("delete_item")
    @with_session()
    async def delete_item(self, session: AsyncSession, item_id: UUID) -> bool:
        query, _ = RecallQueries.delete_item()
        result = await session.run(query, id=str(item_id))
        record = await result.single()
        return bool(record and record["deleted"])

    @neo4j_errors("transition_status")
    async def transition_status(
        self, item_id: UUID, expected: RecallStatus, new: RecallStatus
    ) -> RecallItem | None:
        item = await self.get_item(item_id)
        if item is None:
            return None
        key = active_key(item, new)
        try:
            async with self.driver.session() as session:
                query, _ = RecallQueries.transition_status()
                result = await session.run(
                    query, id=str(item_id), expected=expected.value, status=new.value, active_key=key
                )
                record = await result.single()
        except ConstraintError as e:
            if key is None:
                raise
            raise await self._conflict(key) from e
        return RecallItem.from_neo4j_record(node_properties(record, "r")) if record else None

    @neo4j_errors("insert_strength")
    @with_session()
    async def insert_strength(self, session: AsyncSession, strength: MemoryStrength) -> MemoryStrength:
        query, _ = RecallQueries.create_strength()
        result = await session.run(query, properties=strength.to_neo4j_properties())
        await result.consume()
        return strength

    @neo4j_errors("get_strength")
    @with_session()
    async def get_strength(self, session: AsyncSession, item_id: UUID) -> MemoryStrength | None:
        query, _ = RecallQueries.get_strength()
        result = await session.run(query, item_id=str(item_id))
        record = await result.single()
        return MemoryStrength.from_neo4j_record(node_properties(record, "s")) if record else None

    @neo4j_errors("delete_strength")
    @with_session()
    async def delete_strength(self, session: AsyncSession, item_id: UUID) -> bool:
        query, _ = RecallQueries.delete_strength()
        result = await session.run(query, item_id=str(item_id))
        record = await result.single()
        return bool(record and record["deleted"])

    @neo4j_errors("compare_and_set_strength")
    @with_session()
    async def compare_and_set_strength(
        self, session: AsyncSession, expected: MemoryStrength, updated: MemoryStrength
    ) -> bool:
        before = expected.to_neo4j_properties()
        query, _ = RecallQueries.compare_and_set_strength()
        result = await session.run(
            query,
            item_id=str(expected.recall_item_id),
            expected_review_count=before["review_count"],
            expected_ease_factor=before["ease_factor"],
            expected_next_review_at=before["next_review_at"],
            expected_last_review_at=before["last_review_at"],
            properties=updated.to_neo4j_properties(),
        )
        record = await result.single()
        return bool(record and record["updated"])

    @neo4j_errors("due_items")
    @with_session()
    async def due_items(self, session: AsyncSession, user_id: str, now: datetime, limit: int) -> list[ScheduledRecallItem]:
        query, params = RecallQueries.due_items()
        result = await session.run(query, user_id=user_id, now=now.timestamp(), limit=limit, **params)
        return [_scheduled(record) async for record in result]

    @neo4j_errors("implicit_items")
    @with_session()
    async def implicit_items(
        self, session: AsyncSession, user_id: str, now: datetime, limit: int
    ) -> list[ScheduledRecallItem]:
        query, params = RecallQueries.implicit_items()
        result = await session.run(query, user_id=user_id, now=now.timestamp(), limit=limit, **params)
        return [_scheduled(record) async for record in result]

    @neo4j_errors("list_items")
    @with_session()
    async def list_items(self, session: AsyncSession, user_id: str, status: RecallStatus, limit: int) -> list[RecallItem]:
        query, _ = RecallQueries.list_items_by_status()
        result = await session.run(query, user_id=user_id, status=status.value, limit=limit)
        return [RecallItem.from_neo4j_record(node_properties(record, "r")) async for record in result]

    @neo4j_errors("count_active")
    @with_session()
    async def count_active(self, session: AsyncSession, user_id: str) -> int:
        query, params = RecallQueries.count_active()
        return await _count(session, query, user_id=user_id, **params)

    @neo4j_errors("count_due_before")
    @with_session()
    async def count_due_before(self, session: AsyncSession, user_id: str, until: datetime) -> int:
        query, params = RecallQueries.count_due_before()
        return await _count(session, query, user_id=user_id, until=until.timestamp(), **params)

    @neo4j_errors("count_reviewed_since")
    @with_session()
    async def count_reviewed_since(self, session: AsyncSession, user_id: str, since: datetime) -> int:
        query, _ = RecallQueries.count_reviewed_since()
        return await _count(session, query, user_id=user_id, since=since.timestamp())

    @neo4j_errors("recent_review_times")
    @with_session()
    async def recent_review_times(self, session: AsyncSession, user_id: str, limit: int) -> list[datetime]:
        query, _ = RecallQueries.recent_review_times()
        result = await session.run(query, user_id=user_id, limit=limit)
        return [datetime.fromtimestamp(record["reviewed_at"], UTC) async for record in result]


def _scheduled(record: Any) -> ScheduledRecallItem:
    return ScheduledRecallItem(
        item=RecallItem.from_neo4j_record(node_properties(record, "r")),
        strength=MemoryStrength.from_neo4j_record(node_properties(record, "s")),
    )


async def _count(session: AsyncSession, query: Any, **params: Any) -> int:
    result = await session.run(query, **params)
    record = await result.single()
    return int(record["total"]) if record else 0
