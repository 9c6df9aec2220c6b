"""Job handlers exposing the engine's operations to a dispatcher."""

from typing import Any
from uuid import UUID

from second_brain.core.base import ResourceErrorDetails, ValidationErrorDetails
from second_brain.core.errors import InvalidInputError, NotFoundError
from second_brain.domain.models import (
    CanonicalizationOutcome,
    CompactionReport,
    MemoryStrength,
    RecallItem,
    RecallSource,
)
from second_brain.domain.repositories import ChunkStore
from second_brain.jobs.dispatch import JobDispatcher
from second_brain.services.canonicalization import CanonicalizationEngine
from second_brain.services.recall_scheduler import RecallScheduler

CANONICALIZE = "canonicalize"
CANONICALIZE_USER = "canonicalize_user"
SUBMIT_REVIEW = "submit_review"
SUGGEST_RECALL = "suggest_recall"
COMPACT_CANONICALS = "compact_canonicals"


def _field(payload: dict[str, Any], name: str) -> Any:
    value = payload.get(name)
    if value is None:
        raise InvalidInputError(
            f"Job payload is missing '{name}'",
            details=ValidationErrorDetails(
                source="job_handlers",
                operation="parse_payload",
                field=name,
                constraint="required",
            ),
        )
    return value


def _uuid(payload: dict[str, Any], name: str) -> UUID:
    value = _field(payload, name)
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError as e:
        raise InvalidInputError(
            f"Job payload field '{name}' is not a valid id",
            details=ValidationErrorDetails(
                source="job_handlers",
                operation="parse_payload",
                field=name,
                actual_value=str(value),
                expected_type="uuid",
            ),
        ) from e


class EngineJobHandlers:
    """Binds job names to engine operations."""

    def __init__(self, chunks: ChunkStore, engine: CanonicalizationEngine, scheduler: RecallScheduler):
        self.chunks = chunks
        self.engine = engine
        self.scheduler = scheduler

    def register_all(self, dispatcher: JobDispatcher) -> None:
        dispatcher.register(CANONICALIZE, self.canonicalize)
        dispatcher.register(CANONICALIZE_USER, self.canonicalize_user)
        dispatcher.register(SUBMIT_REVIEW, self.submit_review)
        dispatcher.register(SUGGEST_RECALL, self.suggest_recall)
        dispatcher.register(COMPACT_CANONICALS, self.compact_canonicals)

    async def canonicalize(self, payload: dict[str, Any]) -> CanonicalizationOutcome:
        """``{chunk_id}``: embed the chunk if needed, then link it to a canonical chunk."""
        chunk_id = _uuid(payload, "chunk_id")
        chunk = await self.chunks.get_chunk(chunk_id)
        if chunk is None:
            raise NotFoundError(
                f"Chunk {chunk_id} not found",
                details=ResourceErrorDetails(
                    source="job_handlers",
                    operation=CANONICALIZE,
                    resource_id=str(chunk_id),
                    resource_type="chunk",
                    action="canonicalize",
                ),
            )
        chunk = await self.engine.ensure_embedded(chunk)
        return await self.engine.canonicalize(chunk)

    async def canonicalize_user(self, payload: dict[str, Any]) -> list[CanonicalizationOutcome]:
        """``{user_id, limit?}``: canonicalize the user's unlinked chunks."""
        user_id = str(_field(payload, "user_id"))
        limit = payload.get("limit")
        if limit is None:
            return await self.engine.canonicalize_pending(user_id)
        return await self.engine.canonicalize_pending(user_id, limit=int(limit))

    async def submit_review(self, payload: dict[str, Any]) -> MemoryStrength:
        """``{item_id, quality, caller_id}``."""
        return await self.scheduler.submit_review(
            _uuid(payload, "item_id"),
            _field(payload, "quality"),
            str(_field(payload, "caller_id")),
        )

    async def suggest_recall(self, payload: dict[str, Any]) -> RecallItem:
        """``{user_id, content, chunk_id?, memory_id?, reason?}``."""
        source = None
        if payload.get("chunk_id") is not None or payload.get("memory_id") is not None:
            try:
                source = RecallSource(chunk_id=payload.get("chunk_id"), memory_id=payload.get("memory_id"))
            except ValueError as e:
                raise InvalidInputError(
                    "Suggestion source must name exactly one of chunk_id or memory_id",
                    details={"source": "job_handlers", "operation": SUGGEST_RECALL},
                ) from e
        return await self.scheduler.suggest(
            str(_field(payload, "user_id")),
            str(_field(payload, "content")),
            source=source,
            reason=payload.get("reason"),
        )

    async def compact_canonicals(self, payload: dict[str, Any]) -> CompactionReport:
        """``{user_id?}``: merge duplicate clusters and collect orphans."""
        return await self.engine.compact(payload.get("user_id"))
