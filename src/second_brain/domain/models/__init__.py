"""Domain models for the consolidation and recall engine."""

from .base import GraphModel, NodeLabel, utc_now
from .chunks import (
    CanonicalChunk,
    CanonicalizationOutcome,
    CanonicalLink,
    CanonicalMerge,
    Chunk,
    CompactionReport,
)
from .recall import (
    MemoryStrength,
    RecallItem,
    RecallMetadata,
    RecallSource,
    RecallStats,
    RecallStatus,
    RecallType,
    ScheduledRecallItem,
)

__all__ = [
    # Canonicalization
    "CanonicalChunk",
    "CanonicalLink",
    "CanonicalMerge",
    "CanonicalizationOutcome",
    "Chunk",
    "CompactionReport",
    # Base
    "GraphModel",
    # Recall
    "MemoryStrength",
    "NodeLabel",
    "RecallItem",
    "RecallMetadata",
    "RecallSource",
    "RecallStats",
    "RecallStatus",
    "RecallType",
    "ScheduledRecallItem",
    "utc_now",
]
