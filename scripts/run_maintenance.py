"""
Script to run one partition maintenance pass for all partitioned models
"""

import argparse
import time
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import get_engine
from core.logging import setup_logging
from models.employee import Employee
from partitioning.manager import PartitionManager
from partitioning.scheduler import PartitionMaintenanceScheduler

logger = logging.getLogger(__name__)

PARTITIONED_MODELS = [Employee]


def run_maintenance(schedule: bool = False) -> int:
    """Run maintenance once, or keep running it on the configured interval"""
    engine = get_engine()
    scheduler = PartitionMaintenanceScheduler(
        PartitionManager(model, engine=engine) for model in PARTITIONED_MODELS
    )

    if schedule:
        scheduler.start()
        try:
            scheduler.run_maintenance_job()
            # BackgroundScheduler runs in its own thread
            while True:
                time.sleep(60)
        except (KeyboardInterrupt, SystemExit):
            scheduler.stop()
        return 0

    results = scheduler.run_maintenance_job()
    for result in results:
        logger.info(
            f"{result.model}: {result.status} "
            f"(created={len(result.created)}, archived={len(result.archived)}, dropped={len(result.dropped)})"
        )
    engine.dispose()
    return 0 if all(result.status == "success" for result in results) else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Partition maintenance")
    parser.add_argument("--schedule", action="store_true", help="keep running on the maintenance interval")
    args = parser.parse_args()

    setup_logging()
    sys.exit(run_maintenance(schedule=args.schedule))
