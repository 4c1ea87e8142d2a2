"""
Logging configuration for partition maintenance
"""

import logging
import sys
from core.config import settings


def setup_logging():
    """Configure logging for the partition manager, its adapter and the scheduler"""

    # Get log level from settings
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # The schema adapter logs each DDL statement at DEBUG
    ddl_level = getattr(logging, settings.PARTITION_DDL_LOG_LEVEL.upper(), log_level)
    logging.getLogger("partitioning.adapter").setLevel(ddl_level)

    # SQLAlchemy would echo the same statements again
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Partition maintenance logging configured at {settings.LOG_LEVEL} level "
        f"(DDL at {settings.PARTITION_DDL_LOG_LEVEL})"
    )
