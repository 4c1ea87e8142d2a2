import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import get_engine
from core.logging import setup_logging
from models.base import Base
# Import all models to ensure they are registered
from models.company import Company
from models.employee import Employee
from partitioning.manager import PartitionManager

logger = logging.getLogger(__name__)

PARTITIONED_MODELS = [Employee]


def init_database():
    engine = get_engine()

    logger.info("Creating tables...")
    Base.metadata.create_all(engine)
    logger.info("Tables created successfully.")

    for model in PARTITIONED_MODELS:
        PartitionManager(model, engine=engine).create_infrastructure()
    logger.info("Partition infrastructure created successfully.")

    engine.dispose()


if __name__ == "__main__":
    setup_logging()
    init_database()
