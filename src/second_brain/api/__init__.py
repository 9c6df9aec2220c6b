"""API module."""

from fastapi import APIRouter

from .endpoints import admin, core, recall

router = APIRouter()

# Include endpoint routers
router.include_router(core.router)
router.include_router(recall.router, prefix="/recall", tags=["recall"])
router.include_router(admin.router)
