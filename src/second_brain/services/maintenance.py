from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from second_brain.core.base import ErrorLevel
from second_brain.core.config import settings
from second_brain.core.decorators import with_error_handling
from second_brain.core.errors import NotFoundError
from second_brain.core.logging import get_logger, log_context

if TYPE_CHECKING:
    from second_brain.services.canonicalization import CanonicalizationEngine

logger = get_logger(__name__)


class MaintenanceOrchestrator:
    """Background upkeep of the canonical clusters."""

    def __init__(
        self,
        engine: "CanonicalizationEngine",
        orphan_sweep_minutes: int | None = None,
        merge_hour: int | None = None,
        merge_minute: int | None = None,
    ):
        self.engine = engine
        self.orphan_sweep_minutes = orphan_sweep_minutes or settings.orphan_sweep_interval_minutes
        self.merge_hour = settings.nightly_merge_hour if merge_hour is None else merge_hour
        self.merge_minute = settings.nightly_merge_minute if merge_minute is None else merge_minute
        self.scheduler = AsyncIOScheduler()
        self._setup_jobs()

    def _setup_jobs(self):
        """Configure the maintenance jobs with proper scheduling."""
        self.scheduler.add_job(
            self.collect_orphans,
            "interval",
            minutes=self.orphan_sweep_minutes,
            id="collect_orphans",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.merge_canonicals,
            "cron",
            hour=self.merge_hour,
            minute=self.merge_minute,
            id="merge_canonicals",
            max_instances=1,
        )

    async def start(self):
        self.scheduler.start()
        logger.info("MaintenanceOrchestrator started - canonical upkeep active")

    async def shutdown(self):
        self.scheduler.shutdown(wait=False)
        logger.info("MaintenanceOrchestrator shutdown complete")

    @with_error_handling(error_level=ErrorLevel.WARNING, reraise=False)
    async def collect_orphans(self):
        """Delete canonical chunks left without links."""
        with log_context(maintenance_job="collect_orphans"):
            collected = await self.engine.collect_orphans()
            logger.info(f"Orphan sweep complete - removed {collected} canonical chunks")

    @with_error_handling(error_level=ErrorLevel.WARNING, reraise=False)
    async def merge_canonicals(self):
        """Reconcile duplicate clusters for every user, then sweep orphans."""
        with log_context(maintenance_job="merge_canonicals"):
            report = await self.engine.compact()
            logger.info(
                f"Nightly merge complete - {len(report.merges)} merges, "
                f"{report.orphans_collected} orphans removed"
            )

    async def trigger(self, job_id: str) -> None:
        """Run a scheduled job now, outside its schedule."""
        jobs: dict[str, Any] = {
            "collect_orphans": self.collect_orphans,
            "merge_canonicals": self.merge_canonicals,
        }
        if job_id not in jobs:
            raise NotFoundError(
                f"Unknown maintenance job: {job_id}",
                details={"source": "maintenance", "operation": "trigger"},
            )
        logger.info(f"Manually triggering maintenance job {job_id}")
        await jobs[job_id]()

    def get_job_status(self) -> dict:
        """Get status of all scheduled jobs."""
        jobs = self.scheduler.get_jobs()
        return {
            "scheduler_running": self.scheduler.running,
            "jobs": [
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": getattr(job, "next_run_time", None) and job.next_run_time.isoformat(),
                    "func": job.func.__name__,
                }
                for job in jobs
            ],
        }
