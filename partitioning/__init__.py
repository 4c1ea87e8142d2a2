"""
Multi-level table partitioning for PostgreSQL table inheritance.

Modules:
    policy: Level policy declarations and the ``PartitionedBase`` sentinel
    resolver: Field by field resolution of one level's policy
    hierarchy: Per-level dispatch for a whole partition hierarchy
    naming: Partition name encoding and decoding
    adapter: Schema adapter contract and its PostgreSQL implementation
    manager: Partition lifecycle (create, archive, drop)
    levels: Built-in integer, foreign key and time levels
    scheduler: Periodic maintenance of several models

Usage:
    from partitioning import PartitionManager

    manager = PartitionManager(Employee, engine=engine)
    manager.create_infrastructure()
    manager.run_maintenance()
"""

from partitioning.policy import (
    Computed,
    Constant,
    LevelPolicy,
    MultiLevel,
    PartitionedBase,
    Template,
)
from partitioning.hierarchy import HierarchyResolver
from partitioning.resolver import LevelResolver
from partitioning.adapter import SchemaAdapter, SqlAdapter
from partitioning.manager import PartitionManager

__all__ = [
    "Computed",
    "Constant",
    "Template",
    "LevelPolicy",
    "PartitionedBase",
    "MultiLevel",
    "LevelResolver",
    "HierarchyResolver",
    "SchemaAdapter",
    "SqlAdapter",
    "PartitionManager",
]
