"""
Custom exceptions for partition management with structured error context.

This module provides the exception hierarchy used by the policy resolvers,
the partition name codec, the SQL schema adapter and the lifecycle manager.
Each exception includes context information for debugging and monitoring.

Exception Hierarchy:
    PartitioningError (base)
    ├── ConfigurationError
    ├── CodecError
    │   ├── PartitionNameEncodeError
    │   └── PartitionNameDecodeError
    ├── TemplateResolutionError
    ├── SchemaAdapterError
    └── LifecycleOperationError
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class PartitioningError(Exception):
    """
    Base exception for all partitioning errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (model, key values, table, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(PartitioningError):
    """
    Exception raised when a partition policy is missing or inconsistent.

    Fatal: surfaced immediately and never retried.

    Context should include:
        - model: Name of the partitioned model
        - field: Policy field that could not be resolved
        - level: Partitioning level index (if applicable)
        - partition_key_values: Key values being processed (if applicable)
    """
    pass


# ============================================================================
# Codec Errors
# ============================================================================

class CodecError(PartitioningError):
    """Base exception for partition name encoding/decoding failures."""
    pass


class PartitionNameEncodeError(CodecError):
    """
    Exception raised when key values cannot be turned into a partition name.

    Context should include:
        - partition_key_values: The key values being encoded
        - fragment: The offending base name fragment
    """
    pass


class PartitionNameDecodeError(CodecError):
    """
    Exception raised when a partition name was not produced by the naming scheme.

    Context should include:
        - partition_name: The name that failed to decode
        - fragment: The fragment that failed (if applicable)
    """
    pass


# ============================================================================
# Policy Errors
# ============================================================================

class TemplateResolutionError(PartitioningError):
    """
    Exception raised when a policy template cannot be interpolated.

    The resolver reports it and treats the layer as not defining the field.
    """
    pass


# ============================================================================
# Schema Adapter Errors
# ============================================================================

class SchemaAdapterError(PartitioningError):
    """
    Exception raised when a DDL or catalog statement fails.

    Context should include:
        - operation: Adapter operation (create_partition_table, ...)
        - table_name: Name of the table
        - statement: SQL statement that failed (if applicable)
    """
    pass


# ============================================================================
# Lifecycle Errors
# ============================================================================

class LifecycleOperationError(PartitioningError):
    """
    Exception raised for the first unrecovered failure of a maintenance pass.

    Context should include:
        - model: Name of the partitioned model
        - operation: Lifecycle step that failed
        - partition_key_values: Key values of the partition being processed
        - table_name: Partition table name (if it could be computed)
    """
    pass
