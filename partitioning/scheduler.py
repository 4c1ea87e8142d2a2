import logging
from typing import Iterable, List

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from partitioning.manager import PartitionManager
from schemas.partitioning import MaintenanceResult

logger = logging.getLogger(__name__)


class PartitionMaintenanceScheduler:
    """Runs a maintenance pass for every managed model on an interval"""

    def __init__(self, managers: Iterable[PartitionManager], interval_hours: int = None):
        self.managers = list(managers)
        self.interval_hours = interval_hours or settings.MAINTENANCE_INTERVAL_HOURS
        self.scheduler = BackgroundScheduler()

    def run_maintenance_job(self) -> List[MaintenanceResult]:
        """Job to run one maintenance pass per model"""
        logger.info(f"Scheduler: Starting partition maintenance for {len(self.managers)} models")
        results = []
        for manager in self.managers:
            try:
                result = manager.run_maintenance()
            except Exception as e:
                logger.error(f"Scheduler: Maintenance job failed for {manager.model.__name__} - {e}")
                result = MaintenanceResult(
                    model=manager.model.__name__,
                    status="failed",
                    error={"error_type": type(e).__name__, "message": str(e)}
                )
            results.append(result)

        failed = [r.model for r in results if r.status != "success"]
        if failed:
            logger.warning(f"Scheduler: Maintenance failed for {', '.join(failed)}")
        return results

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_maintenance_job,
            trigger=IntervalTrigger(hours=self.interval_hours),
            id="partition_maintenance_job",
            replace_existing=True
        )
        self.scheduler.start()
        logger.info("Partition Maintenance Scheduler started")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Partition Maintenance Scheduler stopped")
