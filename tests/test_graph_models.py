"""
Graph Model Tests

Property mapping between domain models and Neo4j nodes, and the Neo4j
recall repository against a fake driver.
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from neo4j.exceptions import ServiceUnavailable

from second_brain.core.errors import StorageError
from second_brain.domain.models import (
    MemoryStrength,
    RecallItem,
    RecallMetadata,
    RecallStatus,
    RecallType,
)
from second_brain.infrastructure.repositories.recall import Neo4jRecallRepository, active_key

from .conftest import START


class FakeResult:
    def __init__(self, record):
        self.record = record

    async def single(self):
        return self.record

    async def consume(self):
        return None


class FakeSession:
    def __init__(self, driver):
        self.driver = driver

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def run(self, query, **params):
        self.driver.queries.append((query, params))
        if self.driver.error is not None:
            raise self.driver.error
        return FakeResult(self.driver.record)


class FakeDriver:
    def __init__(self, record=None, error=None):
        self.record = record
        self.error = error
        self.queries: list = []

    def session(self):
        return FakeSession(self)


class TestPropertyMapping:
    def test_recall_item_flattens_metadata(self):
        item = RecallItem(
            user_id="user-1",
            content="revisit",
            recall_type=RecallType.IMPLICIT,
            status=RecallStatus.SUGGESTED,
            metadata=RecallMetadata(memory_id="mem-1", reason="resurfaced"),
            created_at=START,
        )

        props = item.to_neo4j_properties()

        assert props["id"] == str(item.id)
        assert props["status"] == "suggested"
        assert props["created_at"] == START.timestamp()
        assert props["metadata_memory_id"] == "mem-1"
        assert props["metadata_reason"] == "resurfaced"
        assert "metadata" not in props
        assert "metadata_note" not in props

        assert RecallItem.from_neo4j_record(props) == item

    def test_unreviewed_strength(self):
        strength = MemoryStrength.initial(uuid4(), delay_days=3, now=START)

        props = strength.to_neo4j_properties()
        restored = MemoryStrength.from_neo4j_record(props)

        assert props["last_review_at"] is None
        assert restored.last_review_at is None
        assert restored.next_review_at == datetime(2026, 3, 5, 9, 0, tzinfo=UTC)

    def test_active_key_only_on_active_items(self):
        item = RecallItem(user_id="user-1", content="x", metadata=RecallMetadata(memory_id="mem-1"))

        assert active_key(item) == "user-1:memory:mem-1"
        assert active_key(item, RecallStatus.DISMISSED) is None


class TestNeo4jRecallRepository:
    @pytest.mark.asyncio
    async def test_get_item(self):
        item = RecallItem(user_id="user-1", content="x", source_chunk_id=uuid4(), created_at=START)
        driver = FakeDriver(record={"r": item.to_neo4j_properties() | {"active_key": active_key(item)}})

        found = await Neo4jRecallRepository(driver).get_item(item.id)

        assert found == item
        assert driver.queries[0][1] == {"id": str(item.id)}

    @pytest.mark.asyncio
    async def test_missing_item(self):
        assert await Neo4jRecallRepository(FakeDriver()).get_item(uuid4()) is None

    @pytest.mark.asyncio
    async def test_insert_stores_active_key(self):
        item = RecallItem(user_id="user-1", content="x", source_chunk_id=uuid4())
        driver = FakeDriver()

        await Neo4jRecallRepository(driver).insert_item(item)

        _, params = driver.queries[0]
        assert params["properties"]["active_key"] == f"user-1:chunk:{item.source_chunk_id}"

    @pytest.mark.asyncio
    async def test_unavailable_database_is_a_storage_error(self):
        driver = FakeDriver(error=ServiceUnavailable("connection refused"))

        with pytest.raises(StorageError) as exc:
            await Neo4jRecallRepository(driver).get_item(uuid4())
        assert exc.value.details.operation == "get_item"
