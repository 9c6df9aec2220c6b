"""Core API endpoints for the Second Brain core service."""

from fastapi import APIRouter

from second_brain.api import dependencies
from second_brain.core.logging import get_logger
from second_brain.domain.models import utc_now

logger = get_logger(__name__)

router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with application status."""
    return {
        "message": "Second Brain Core API",
        "version": "0.1.0",
        "status": "running",
        "features": [
            "canonical_dedup",
            "sm2_recall",
            "recall_suggestions",
            "job_dispatch",
            "canonical_maintenance",
        ],
    }


@router.get("/health", operation_id="health")
async def health_check():
    """Health check endpoint."""
    ready = dependencies.recall_scheduler is not None and dependencies.canonicalization_engine is not None
    return {
        "status": "healthy" if ready else "starting",
        "timestamp": utc_now().isoformat(),
    }
