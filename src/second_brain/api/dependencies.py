"""API dependencies."""

from fastapi import Header, HTTPException

from second_brain.core.errors import AuthenticationError
from second_brain.jobs.dispatch import AsyncioJobDispatcher, InMemoryJobDispatcher
from second_brain.services.canonicalization import CanonicalizationEngine
from second_brain.services.maintenance import MaintenanceOrchestrator
from second_brain.services.recall_scheduler import RecallScheduler

# These will be set by the main.py lifespan
canonicalization_engine: CanonicalizationEngine | None = None
recall_scheduler: RecallScheduler | None = None
job_dispatcher: AsyncioJobDispatcher | InMemoryJobDispatcher | None = None
maintenance: MaintenanceOrchestrator | None = None


def get_recall_scheduler() -> RecallScheduler:
    if recall_scheduler is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return recall_scheduler


def get_canonicalization_engine() -> CanonicalizationEngine:
    if canonicalization_engine is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return canonicalization_engine


def get_job_dispatcher() -> AsyncioJobDispatcher | InMemoryJobDispatcher:
    if job_dispatcher is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")
    return job_dispatcher


def get_maintenance() -> MaintenanceOrchestrator:
    if maintenance is None:
        raise HTTPException(status_code=503, detail="Maintenance jobs not running")
    return maintenance


def get_caller_id(x_user_id: str | None = Header(default=None)) -> str:
    """Identity of the caller, as forwarded by the authenticating proxy."""
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError(
            "X-User-Id header is required",
            details={"source": "api", "operation": "get_caller_id"},
        )
    return x_user_id
