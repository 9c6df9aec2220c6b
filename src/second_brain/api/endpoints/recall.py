"""Recall API endpoints.

Request and response bodies use the camelCase keys the review UI sends.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from second_brain.api.dependencies import get_caller_id, get_recall_scheduler
from second_brain.core.decorators import with_error_handling
from second_brain.core.errors import InvalidInputError
from second_brain.core.logging import get_logger
from second_brain.domain.models import (
    MemoryStrength,
    RecallItem,
    RecallSource,
    RecallStats,
    ScheduledRecallItem,
)
from second_brain.services.recall_scheduler import RecallScheduler

logger = get_logger(__name__)
router = APIRouter()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateRecallRequest(CamelModel):
    """Mark a chunk or a memory for review."""

    user_id: str
    chunk_id: UUID | None = None
    memory_id: str | None = None
    content: str
    note: str | None = None
    delay_days: int = Field(default=1, description="Days until the first review (1-365)")


class CreateRecallResponse(CamelModel):
    item_id: UUID
    next_review_at: datetime


class ReviewRequest(CamelModel):
    item_id: UUID
    # Range and type are checked by the scheduler so bad grades get its error code
    quality: Any = Field(default=None, description="SM-2 grade, an integer from 0 to 5")


class ReviewResponse(CamelModel):
    next_review_at: datetime
    interval_days: int
    ease_factor: float
    review_count: int

    @classmethod
    def from_strength(cls, strength: MemoryStrength) -> "ReviewResponse":
        return cls(
            next_review_at=strength.next_review_at,
            interval_days=strength.interval_days,
            ease_factor=strength.ease_factor,
            review_count=strength.review_count,
        )


class StatsResponse(CamelModel):
    due_today: int
    total_active: int
    reviewed_today: int
    streak: int

    @classmethod
    def from_stats(cls, stats: RecallStats) -> "StatsResponse":
        return cls(**stats.model_dump())


class RecallItemView(CamelModel):
    item_id: UUID
    user_id: str
    content: str
    recall_type: str
    status: str
    chunk_id: UUID | None = None
    memory_id: str | None = None
    note: str | None = None
    reason: str | None = None
    created_at: datetime
    next_review_at: datetime | None = None
    last_review_at: datetime | None = None
    interval_days: int | None = None
    ease_factor: float | None = None
    review_count: int | None = None
    strength: float | None = None

    @classmethod
    def build(cls, item: RecallItem, strength: MemoryStrength | None = None) -> "RecallItemView":
        view = cls(
            item_id=item.id,
            user_id=item.user_id,
            content=item.content,
            recall_type=item.recall_type.value,
            status=item.status.value,
            chunk_id=item.source_chunk_id,
            memory_id=item.metadata.memory_id,
            note=item.metadata.note,
            reason=item.metadata.reason,
            created_at=item.created_at,
        )
        if strength is not None:
            view.next_review_at = strength.next_review_at
            view.last_review_at = strength.last_review_at
            view.interval_days = strength.interval_days
            view.ease_factor = strength.ease_factor
            view.review_count = strength.review_count
            view.strength = strength.strength
        return view

    @classmethod
    def scheduled(cls, scheduled: ScheduledRecallItem) -> "RecallItemView":
        return cls.build(scheduled.item, scheduled.strength)


class RecallListResponse(CamelModel):
    items: list[RecallItemView]


class SuggestionActionRequest(CamelModel):
    item_id: UUID
    action: Literal["accept", "dismiss"]
    delay_days: int = 1


@router.post("/create", response_model=CreateRecallResponse, operation_id="create_recall_item")
@with_error_handling(reraise=True)
async def create_recall_item(
    request: CreateRecallRequest,
    scheduler: RecallScheduler = Depends(get_recall_scheduler),
) -> CreateRecallResponse:
    """Create an explicit recall item and schedule its first review."""
    try:
        source = RecallSource(chunk_id=request.chunk_id, memory_id=request.memory_id)
    except ValueError as e:
        raise InvalidInputError(
            "Exactly one of chunkId or memoryId is required",
            details={"source": "recall_endpoint", "operation": "create_recall_item"},
        ) from e

    scheduled = await scheduler.create_recall_item(
        request.user_id,
        source,
        request.content,
        delay_days=request.delay_days,
        note=request.note,
    )
    return CreateRecallResponse(item_id=scheduled.item.id, next_review_at=scheduled.strength.next_review_at)


@router.post("/review", response_model=ReviewResponse, operation_id="review_recall_item")
@with_error_handling(reraise=True)
async def review_recall_item(
    request: ReviewRequest,
    caller_id: str = Depends(get_caller_id),
    scheduler: RecallScheduler = Depends(get_recall_scheduler),
) -> ReviewResponse:
    """Record a review grade and return the next schedule."""
    strength = await scheduler.submit_review(request.item_id, request.quality, caller_id)
    return ReviewResponse.from_strength(strength)


@router.get("/stats", response_model=StatsResponse, operation_id="recall_stats")
async def recall_stats(
    user_id: str = Query(..., alias="userId"),
    scheduler: RecallScheduler = Depends(get_recall_scheduler),
) -> StatsResponse:
    return StatsResponse.from_stats(await scheduler.stats(user_id))


@router.get("", response_model=RecallListResponse, operation_id="recall_queue")
async def recall_queue(
    user_id: str = Query(..., alias="userId"),
    mode: Literal["due", "implicit"] = Query("due"),
    limit: int | None = Query(None, ge=1, le=100),
    scheduler: RecallScheduler = Depends(get_recall_scheduler),
) -> RecallListResponse:
    """Items to review now (``due``) or to resurface early (``implicit``)."""
    if mode == "due":
        queue = await scheduler.due_queue(user_id, limit)
    else:
        queue = await scheduler.implicit_queue(user_id, limit)
    return RecallListResponse(items=[RecallItemView.scheduled(s) for s in queue])


@router.get("/suggestions", response_model=RecallListResponse, operation_id="recall_suggestions")
async def list_suggestions(
    user_id: str = Query(..., alias="userId"),
    limit: int = Query(50, ge=1, le=200),
    scheduler: RecallScheduler = Depends(get_recall_scheduler),
) -> RecallListResponse:
    suggestions = await scheduler.list_suggestions(user_id, limit)
    return RecallListResponse(items=[RecallItemView.build(item) for item in suggestions])


@router.post("/suggestions", response_model=RecallItemView, operation_id="resolve_suggestion")
@with_error_handling(reraise=True)
async def resolve_suggestion(
    request: SuggestionActionRequest,
    caller_id: str = Depends(get_caller_id),
    scheduler: RecallScheduler = Depends(get_recall_scheduler),
) -> RecallItemView:
    """Accept a suggestion into the review schedule or dismiss it."""
    if request.action == "accept":
        scheduled = await scheduler.accept_suggestion(request.item_id, caller_id, delay_days=request.delay_days)
        return RecallItemView.scheduled(scheduled)

    dismissed = await scheduler.dismiss_suggestion(request.item_id, caller_id)
    return RecallItemView.build(dismissed)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT, operation_id="delete_recall_item")
@with_error_handling(reraise=True)
async def delete_recall_item(
    item_id: UUID,
    caller_id: str = Depends(get_caller_id),
    scheduler: RecallScheduler = Depends(get_recall_scheduler),
) -> None:
    await scheduler.delete_recall_item(item_id, caller_id)
    logger.debug("Recall item removed via API", item_id=str(item_id))
