"""Spaced-repetition recall scheduling.

Recall items are created explicitly by the user or accepted from suggestions;
each active item owns exactly one MemoryStrength row that SM-2 updates on
every review.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from second_brain.core.base import (
    ErrorCode,
    ErrorLevel,
    ResourceErrorDetails,
    ServiceErrorDetails,
    ValidationErrorDetails,
)
from second_brain.core.circuit_breaker import CircuitBreaker, RetryWithCircuitBreaker
from second_brain.core.config import settings
from second_brain.core.constants import STREAK_LOOKBACK_REVIEWS
from second_brain.core.decorators import with_error_handling
from second_brain.core.errors import (
    AuthorizationError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    TRANSIENT_ERRORS,
    RecallConflictError,
    ServiceError,
    TimeoutError,
)
from second_brain.core.logging import get_logger
from second_brain.domain.models import (
    MemoryStrength,
    RecallItem,
    RecallMetadata,
    RecallSource,
    RecallStats,
    RecallStatus,
    RecallType,
    ScheduledRecallItem,
    utc_now,
)
from second_brain.domain.sm2 import calculate_sm2, validate_quality

if TYPE_CHECKING:
    from second_brain.domain.repositories import RecallStore

logger = get_logger(__name__)


class ReviewRaceLost(Exception):
    """Another review updated the strength row between our read and write."""


class RecallScheduler:
    """Creates recall items, applies reviews and builds the review queues."""

    def __init__(
        self,
        store: "RecallStore",
        clock: Callable[[], datetime] = utc_now,
        max_retries: int | None = None,
        timeout_seconds: float | None = None,
        retry_delay: float = 0.05,
    ):
        self.store = store
        self._clock = clock
        self.max_retries = settings.review_max_retries if max_retries is None else max_retries
        self.timeout_seconds = timeout_seconds or settings.review_timeout_seconds
        self._retry = RetryWithCircuitBreaker(
            circuit_breaker=CircuitBreaker(name="recall_store", failure_threshold=5, recovery_timeout=30.0),
            max_retries=self.max_retries,
            initial_delay=retry_delay,
            backoff_factor=2.0,
            max_delay=self.timeout_seconds,
            retryable_exceptions=(*TRANSIENT_ERRORS, ReviewRaceLost),
        )

    # Validation and lookups

    @staticmethod
    def _validate_delay(delay_days: int) -> int:
        low, high = settings.recall_min_delay_days, settings.recall_max_delay_days
        if isinstance(delay_days, bool) or not isinstance(delay_days, int) or not low <= delay_days <= high:
            raise InvalidInputError(
                f"delayDays must be an integer between {low} and {high}",
                details=ValidationErrorDetails(
                    source="recall_scheduler",
                    operation="validate_delay",
                    field="delay_days",
                    actual_value=repr(delay_days),
                    constraint=f"{low} <= delay_days <= {high}",
                ),
            )
        return delay_days

    @staticmethod
    def _require(value: str | None, field: str) -> str:
        if not value or not value.strip():
            raise InvalidInputError(
                f"{field} is required",
                details=ValidationErrorDetails(
                    source="recall_scheduler",
                    operation="validate",
                    field=field,
                    constraint="non-empty",
                ),
            )
        return value

    async def _owned_item(self, item_id: UUID, caller_id: str, action: str) -> RecallItem:
        item = await self.store.get_item(item_id)
        details = ResourceErrorDetails(
            source="recall_scheduler",
            operation=action,
            resource_id=str(item_id),
            resource_type="recall_item",
            action=action,
        )
        if item is None:
            raise NotFoundError(f"Recall item {item_id} not found", details=details)
        if item.user_id != caller_id:
            raise AuthorizationError(f"Recall item {item_id} belongs to another user", details=details)
        return item

    # Creation

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def create_recall_item(
        self,
        user_id: str,
        source: RecallSource,
        content: str,
        delay_days: int = 1,
        note: str | None = None,
    ) -> ScheduledRecallItem:
        """Start tracking a chunk or memory for review.

        The item and its scheduling state are created together: if the
        strength row cannot be written the item is removed again.

        Raises:
            InvalidInputError: Missing fields or delay outside [1, 365]
            RecallConflictError: An active item already tracks this source
        """
        self._require(user_id, "userId")
        self._require(content, "content")
        self._validate_delay(delay_days)

        existing = await self.store.find_active_by_source(source.key(user_id))
        if existing is not None:
            raise RecallConflictError(
                "An active recall item already exists for this source",
                existing_item_id=str(existing.id),
            )

        now = self._clock()
        item = RecallItem(
            user_id=user_id,
            content=content,
            source_chunk_id=source.chunk_id,
            recall_type=RecallType.EXPLICIT,
            status=RecallStatus.ACTIVE,
            metadata=RecallMetadata(note=note, memory_id=source.memory_id),
            created_at=now,
        )
        await self.store.insert_item(item)
        strength = await self._attach_strength(item, delay_days, now, compensate=self._remove_item)

        logger.info(
            "Recall item created",
            item_id=str(item.id),
            user_id=user_id,
            source=source.kind,
            next_review_at=strength.next_review_at.isoformat(),
        )
        return ScheduledRecallItem(item=item, strength=strength)

    async def _attach_strength(
        self,
        item: RecallItem,
        delay_days: int,
        now: datetime,
        compensate: Callable[[RecallItem], Awaitable[None]],
    ) -> MemoryStrength:
        strength = MemoryStrength.initial(item.id, delay_days, now)
        try:
            await self.store.insert_strength(strength)
        except Exception:
            logger.warning("Scheduling state write failed, compensating", item_id=str(item.id))
            await compensate(item)
            raise
        return strength

    async def _remove_item(self, item: RecallItem) -> None:
        await self.store.delete_item(item.id)

    async def _revert_to_suggested(self, item: RecallItem) -> None:
        await self.store.transition_status(item.id, RecallStatus.ACTIVE, RecallStatus.SUGGESTED)

    # Reviews

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def submit_review(self, item_id: UUID, quality: int, caller_id: str) -> MemoryStrength:
        """Apply one SM-2 review and return the new scheduling state.

        Raises:
            InvalidInputError: Quality is not an integer in [0, 5]
            NotFoundError: No such item
            AuthorizationError: The caller does not own the item
            InvalidStateError: The item is not active
            TimeoutError: The review did not complete in time
        """
        quality = validate_quality(quality)
        try:
            async with asyncio.timeout(self.timeout_seconds):
                return await self._review(item_id, quality, caller_id)
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Review of {item_id} did not complete within {self.timeout_seconds}s",
                details={"source": "recall_scheduler", "operation": "submit_review"},
            ) from e

    async def _review(self, item_id: UUID, quality: int, caller_id: str) -> MemoryStrength:
        item = await self._owned_item(item_id, caller_id, "review")
        if item.status != RecallStatus.ACTIVE:
            raise InvalidStateError(
                f"Recall item {item_id} is {item.status.value}, only active items can be reviewed",
                details=ResourceErrorDetails(
                    source="recall_scheduler",
                    operation="review",
                    resource_id=str(item_id),
                    resource_type="recall_item",
                    action="review",
                ),
            )

        try:
            updated = await self._retry.call_async(self._apply_review, item_id, quality)
        except ReviewRaceLost as e:
            raise ServiceError(
                f"Review of {item_id} kept conflicting with concurrent reviews",
                details=ServiceErrorDetails(
                    source="recall_scheduler",
                    operation="submit_review",
                    service_name="recall_store",
                ),
                code=ErrorCode.RESOURCE_CONFLICT,
            ) from e

        logger.info(
            "Review recorded",
            item_id=str(item_id),
            quality=quality,
            interval_days=updated.interval_days,
            ease_factor=updated.ease_factor,
            review_count=updated.review_count,
        )
        return updated

    async def _apply_review(self, item_id: UUID, quality: int) -> MemoryStrength:
        """One read-compute-write round; raises ReviewRaceLost when another review won."""
        current = await self.store.get_strength(item_id)
        if current is None:
            raise InvalidStateError(
                f"Recall item {item_id} has no scheduling state",
                details={"source": "recall_scheduler", "operation": "review"},
            )

        result = calculate_sm2(quality, current.interval_days, current.ease_factor, current.review_count)
        now = self._clock()
        updated = current.model_copy(
            update={
                "interval_days": result.interval_days,
                "ease_factor": result.ease_factor,
                "review_count": result.review_count,
                "strength": result.strength,
                "last_review_at": now,
                "next_review_at": now + timedelta(days=result.interval_days),
            }
        )
        if not await self.store.compare_and_set_strength(current, updated):
            raise ReviewRaceLost(f"Strength of {item_id} changed during review")
        return updated

    # Queues

    async def due_queue(self, user_id: str, limit: int | None = None) -> list[ScheduledRecallItem]:
        """Active items whose review time has come, most overdue first."""
        return await self.store.due_items(user_id, self._clock(), limit or settings.recall_due_page_size)

    async def implicit_queue(self, user_id: str, limit: int | None = None) -> list[ScheduledRecallItem]:
        """Active items not yet due, least recently reviewed first."""
        return await self.store.implicit_items(user_id, self._clock(), limit or settings.recall_implicit_page_size)

    # Suggestions

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def suggest(
        self,
        user_id: str,
        content: str,
        source: RecallSource | None = None,
        reason: str | None = None,
    ) -> RecallItem:
        """Propose an item for review; it has no scheduling state until accepted."""
        self._require(user_id, "userId")
        self._require(content, "content")
        item = RecallItem(
            user_id=user_id,
            content=content,
            source_chunk_id=source.chunk_id if source else None,
            recall_type=RecallType.IMPLICIT,
            status=RecallStatus.SUGGESTED,
            metadata=RecallMetadata(reason=reason, memory_id=source.memory_id if source else None),
            created_at=self._clock(),
        )
        await self.store.insert_item(item)
        logger.info("Recall suggestion created", item_id=str(item.id), user_id=user_id)
        return item

    async def list_suggestions(self, user_id: str, limit: int = 50) -> list[RecallItem]:
        return await self.store.list_items(user_id, RecallStatus.SUGGESTED, limit)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def accept_suggestion(self, item_id: UUID, caller_id: str, delay_days: int = 1) -> ScheduledRecallItem:
        """Turn a suggestion into an active item with fresh scheduling state."""
        self._validate_delay(delay_days)
        item = await self._owned_item(item_id, caller_id, "accept")

        activated = await self.store.transition_status(item_id, RecallStatus.SUGGESTED, RecallStatus.ACTIVE)
        if activated is None:
            raise InvalidStateError(
                f"Recall item {item_id} is {item.status.value}, not a pending suggestion",
                details={"source": "recall_scheduler", "operation": "accept_suggestion"},
            )

        strength = await self._attach_strength(
            activated, delay_days, self._clock(), compensate=self._revert_to_suggested
        )
        logger.info("Recall suggestion accepted", item_id=str(item_id), user_id=caller_id)
        return ScheduledRecallItem(item=activated, strength=strength)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def dismiss_suggestion(self, item_id: UUID, caller_id: str) -> RecallItem:
        item = await self._owned_item(item_id, caller_id, "dismiss")
        dismissed = await self.store.transition_status(item_id, RecallStatus.SUGGESTED, RecallStatus.DISMISSED)
        if dismissed is None:
            raise InvalidStateError(
                f"Recall item {item_id} is {item.status.value}, not a pending suggestion",
                details={"source": "recall_scheduler", "operation": "dismiss_suggestion"},
            )
        logger.info("Recall suggestion dismissed", item_id=str(item_id), user_id=caller_id)
        return dismissed

    # Removal and stats

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def delete_recall_item(self, item_id: UUID, caller_id: str) -> None:
        await self._owned_item(item_id, caller_id, "delete")
        await self.store.delete_item(item_id)
        logger.info("Recall item deleted", item_id=str(item_id), user_id=caller_id)

    async def stats(self, user_id: str) -> RecallStats:
        """Dashboard counters for one user, computed on UTC day boundaries."""
        self._require(user_id, "userId")
        now = self._clock().astimezone(UTC)
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end_of_day = start_of_day + timedelta(days=1) - timedelta(microseconds=1)

        recent = await self.store.recent_review_times(user_id, STREAK_LOOKBACK_REVIEWS)
        return RecallStats(
            due_today=await self.store.count_due_before(user_id, end_of_day),
            total_active=await self.store.count_active(user_id),
            reviewed_today=await self.store.count_reviewed_since(user_id, start_of_day),
            streak=review_streak(recent, now),
        )


def review_streak(review_times: list[datetime], now: datetime) -> int:
    """Consecutive UTC days, ending today, with at least one review."""
    days = {t.astimezone(UTC).date() for t in review_times}
    day = now.astimezone(UTC).date()
    streak = 0
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak
