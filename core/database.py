"""
Database engine and session management with SQLAlchemy
"""

from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from core.config import settings
import logging

logger = logging.getLogger(__name__)

# Create engine
engine = create_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    future=True
)

# Create session factory
session_maker = sessionmaker(
    engine,
    class_=Session,
    expire_on_commit=False,
    autoflush=False
)


def get_engine() -> Engine:
    """Get the process wide engine"""
    return engine


def get_session() -> Iterator[Session]:
    """Get database session"""
    with session_maker() as session:
        yield session
