from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar, Self
from uuid import UUID

from pydantic import BaseModel


def utc_now() -> datetime:
    return datetime.now(UTC)


class NodeLabel(str, Enum):
    """Neo4j labels of the entities owned or read by the engine."""

    CHUNK = "Chunk"
    CANONICAL_CHUNK = "CanonicalChunk"
    CANONICAL_LINK = "CanonicalLink"
    RECALL_ITEM = "RecallItem"
    MEMORY_STRENGTH = "MemoryStrength"


class GraphModel(BaseModel):
    """Base class for entities persisted as Neo4j nodes.

    Datetimes are stored as epoch seconds, UUIDs and enums as strings, and
    nested models listed in ``flattened_fields`` as prefixed top-level
    properties (Neo4j properties cannot hold maps).
    """

    node_label: ClassVar[NodeLabel]
    flattened_fields: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def labels(cls) -> list[str]:
        """Get Neo4j labels for this entity."""
        return [cls.node_label.value]

    def to_neo4j_properties(self) -> dict[str, Any]:
        """Convert to Neo4j-compatible property dict."""
        props: dict[str, Any] = {}
        for key, value in self.model_dump().items():
            if key in self.flattened_fields:
                for nested_key, nested_value in (value or {}).items():
                    if nested_value is not None:
                        props[f"{key}_{nested_key}"] = nested_value
                continue
            props[key] = _to_property(value)
        return props

    @classmethod
    def from_neo4j_record(cls, record: dict[str, Any]) -> Self:
        """Create instance from Neo4j node properties."""
        data = dict(record)

        for field in cls.flattened_fields:
            prefix = f"{field}_"
            nested = {key[len(prefix):]: data.pop(key) for key in list(data) if key.startswith(prefix)}
            data[field] = nested

        for key, value in data.items():
            if key.endswith("_at") and isinstance(value, int | float):
                data[key] = datetime.fromtimestamp(value, UTC)

        return cls.model_validate(data)


def _to_property(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, Enum):
        return value.value
    return value
