"""
Core utilities and configuration for the partition janitor.

This package provides foundational components used by the partition manager:

Modules:
    config: Application configuration and environment variable management
    database: Database engine and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import get_engine
    from core.exceptions import ConfigurationError, SchemaAdapterError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Run a maintenance pass
    manager = PartitionManager(Employee, engine=get_engine())
    manager.run_maintenance()
"""

__all__ = [
    "settings",
    "get_engine",
    "get_session",
    "setup_logging",
    # Exceptions
    "PartitioningError",
    "ConfigurationError",
    "CodecError",
    "PartitionNameEncodeError",
    "PartitionNameDecodeError",
    "TemplateResolutionError",
    "SchemaAdapterError",
    "LifecycleOperationError",
]
