"""Job dispatch contract and two process-local dispatchers.

A job is a name plus a JSON-able payload; handlers are registered per name.
Only transient failures are retried, with the same circuit breaker and
backoff helper the service clients use.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from pydantic import BaseModel, Field

from second_brain.core.base import ApplicationError, ErrorCode
from second_brain.core.circuit_breaker import CircuitBreaker, RetryWithCircuitBreaker
from second_brain.core.config import settings
from second_brain.core.constants import JOB_HISTORY_SIZE
from second_brain.core.errors import NotFoundError
from second_brain.core.logging import get_logger, log_context

logger = get_logger(__name__)

JobHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class JobStatus(str, Enum):
    QUEUED = "queued"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobOutcome(BaseModel):
    job_id: str
    job_name: str
    status: JobStatus
    attempts: int = 0
    result: Any = None
    error: str | None = None
    error_code: str | None = None


@runtime_checkable
class JobDispatcher(Protocol):
    def register(self, job_name: str, handler: JobHandler) -> None:
        ...

    async def enqueue(self, job_name: str, payload: dict[str, Any]) -> str:
        """Submit a job and return its id."""
        ...


class _Job(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    payload: dict[str, Any]


class BaseJobDispatcher:
    """Handler registry and the retrying execution of one job."""

    def __init__(
        self,
        max_attempts: int | None = None,
        initial_delay: float | None = None,
        max_delay: float | None = None,
    ):
        self.max_attempts = max_attempts or settings.job_max_attempts
        self.initial_delay = settings.job_retry_initial_delay if initial_delay is None else initial_delay
        self.max_delay = settings.job_retry_max_delay if max_delay is None else max_delay
        self._handlers: dict[str, JobHandler] = {}
        self._breakers: dict[str, CircuitBreaker] = {}

    def register(self, job_name: str, handler: JobHandler) -> None:
        self._handlers[job_name] = handler
        self._breakers[job_name] = CircuitBreaker(name=f"job:{job_name}", failure_threshold=10, recovery_timeout=30.0)
        logger.debug("Registered job handler", job_name=job_name)

    def _handler(self, job_name: str) -> JobHandler:
        handler = self._handlers.get(job_name)
        if handler is None:
            raise NotFoundError(
                f"No handler registered for job '{job_name}'",
                details={"source": "job_dispatch", "operation": "enqueue"},
            )
        return handler

    async def _execute(self, job: _Job) -> JobOutcome:
        handler = self._handler(job.name)
        retry = RetryWithCircuitBreaker(
            circuit_breaker=self._breakers[job.name],
            max_retries=self.max_attempts - 1,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
        )

        with log_context(job_id=job.id, job_name=job.name):
            try:
                result = await retry.call_async(handler, job.payload)
            except ApplicationError as e:
                logger.warning(
                    "Job failed",
                    attempts=retry.last_attempts,
                    error_code=e.code.value,
                    error=e.message,
                )
                return JobOutcome(
                    job_id=job.id,
                    job_name=job.name,
                    status=JobStatus.FAILED,
                    attempts=retry.last_attempts,
                    error=e.message,
                    error_code=e.code.value,
                )
            except Exception as e:
                logger.exception("Job crashed", attempts=retry.last_attempts)
                return JobOutcome(
                    job_id=job.id,
                    job_name=job.name,
                    status=JobStatus.FAILED,
                    attempts=retry.last_attempts,
                    error=str(e),
                    error_code=ErrorCode.UNKNOWN.value,
                )

            logger.info("Job succeeded", attempts=retry.last_attempts)
            return JobOutcome(
                job_id=job.id,
                job_name=job.name,
                status=JobStatus.SUCCEEDED,
                attempts=retry.last_attempts,
                result=_jsonable(result),
            )


class InMemoryJobDispatcher(BaseJobDispatcher):
    """Runs each job inline when it is enqueued.

    For tests and single-process development; ``outcomes`` keeps every result.
    """

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self.outcomes: dict[str, JobOutcome] = {}

    async def enqueue(self, job_name: str, payload: dict[str, Any]) -> str:
        self._handler(job_name)
        job = _Job(name=job_name, payload=payload)
        self.outcomes[job.id] = await self._execute(job)
        return job.id

    def get_outcome(self, job_id: str) -> JobOutcome | None:
        return self.outcomes.get(job_id)


class AsyncioJobDispatcher(BaseJobDispatcher):
    """asyncio queue drained by a fixed pool of worker tasks."""

    def __init__(self, workers: int | None = None, history_size: int = JOB_HISTORY_SIZE, **kwargs: Any):
        super().__init__(**kwargs)
        self.workers = workers or settings.dispatch_workers
        self._queue: asyncio.Queue[_Job] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []
        self._history: deque[JobOutcome] = deque(maxlen=history_size)
        self._pending: dict[str, JobOutcome] = {}

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [asyncio.create_task(self._worker(), name=f"job-worker-{n}") for n in range(self.workers)]
        logger.info("Job dispatcher started", workers=self.workers)

    async def stop(self) -> None:
        """Finish queued jobs, then stop the workers."""
        await self._queue.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Job dispatcher stopped")

    async def enqueue(self, job_name: str, payload: dict[str, Any]) -> str:
        self._handler(job_name)
        job = _Job(name=job_name, payload=payload)
        self._pending[job.id] = JobOutcome(job_id=job.id, job_name=job_name, status=JobStatus.QUEUED)
        await self._queue.put(job)
        logger.debug("Job enqueued", job_id=job.id, job_name=job_name, queue_size=self._queue.qsize())
        return job.id

    async def _worker(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                outcome = await self._execute(job)
                self._pending.pop(job.id, None)
                self._history.append(outcome)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every enqueued job has finished."""
        await self._queue.join()

    def get_outcome(self, job_id: str) -> JobOutcome | None:
        if job_id in self._pending:
            return self._pending[job_id]
        return next((o for o in reversed(self._history) if o.job_id == job_id), None)

    def get_status(self) -> dict[str, Any]:
        return {
            "workers": len(self._tasks),
            "queued": self._queue.qsize(),
            "recent": [o.model_dump(mode="json") for o in list(self._history)[-20:]],
        }


def _jsonable(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_jsonable(r) for r in result]
    return result
