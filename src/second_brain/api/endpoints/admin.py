"""Admin endpoints for dedup and canonical cluster management."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from second_brain.api.dependencies import (
    get_canonicalization_engine,
    get_job_dispatcher,
    get_maintenance,
)
from second_brain.core.decorators import with_error_handling
from second_brain.core.logging import get_logger
from second_brain.domain.models import CompactionReport
from second_brain.jobs.dispatch import AsyncioJobDispatcher, InMemoryJobDispatcher
from second_brain.jobs.handlers import CANONICALIZE_USER
from second_brain.services.canonicalization import CanonicalizationEngine
from second_brain.services.maintenance import MaintenanceOrchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class DedupRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str = Field(..., min_length=1)
    limit: int | None = Field(default=None, ge=1)


class CompactRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str | None = None


class JobStatusResponse(BaseModel):
    scheduler_running: bool
    active_jobs: int
    jobs: list[dict]
    dispatcher: dict | None = None


@router.post("/dedup", operation_id="dedup")
@with_error_handling(reraise=True)
async def enqueue_dedup(
    request: DedupRequest,
    dispatcher: AsyncioJobDispatcher | InMemoryJobDispatcher = Depends(get_job_dispatcher),
):
    """Queue canonicalization of every unlinked chunk a user owns."""
    payload: dict = {"user_id": request.user_id}
    if request.limit is not None:
        payload["limit"] = request.limit
    job_id = await dispatcher.enqueue(CANONICALIZE_USER, payload)
    logger.info("Dedup job queued", job_id=job_id, user_id=request.user_id)
    return {"jobId": job_id, "jobName": CANONICALIZE_USER}


@router.post("/canonicals/compact", response_model=CompactionReport, operation_id="compact_canonicals")
@with_error_handling(reraise=True)
async def compact_canonicals(
    request: CompactRequest,
    engine: CanonicalizationEngine = Depends(get_canonicalization_engine),
) -> CompactionReport:
    """Merge duplicate clusters now instead of waiting for the nightly pass."""
    return await engine.compact(request.user_id)


@router.get("/jobs/status", response_model=JobStatusResponse, operation_id="job_status")
async def get_job_status(
    orchestrator: MaintenanceOrchestrator = Depends(get_maintenance),
    dispatcher: AsyncioJobDispatcher | InMemoryJobDispatcher = Depends(get_job_dispatcher),
):
    """Maintenance schedule plus recent dispatcher activity."""
    status = orchestrator.get_job_status()
    return JobStatusResponse(
        scheduler_running=status["scheduler_running"],
        active_jobs=len(status["jobs"]),
        jobs=status["jobs"],
        dispatcher=dispatcher.get_status() if isinstance(dispatcher, AsyncioJobDispatcher) else None,
    )


@router.post("/jobs/trigger/{job_id}", operation_id="trigger")
@with_error_handling(reraise=True)
async def trigger_job(job_id: str, orchestrator: MaintenanceOrchestrator = Depends(get_maintenance)):
    """Manually trigger a maintenance job."""
    await orchestrator.trigger(job_id)
    return {"message": f"Job {job_id} triggered successfully"}
