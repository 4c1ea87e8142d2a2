"""
Pydantic schemas for declarative partition policy values.

Schemas:
    partitioning: index, foreign key and ordering declarations plus the
        per-model maintenance result

Usage:
    from schemas.partitioning import IndexOptions, ForeignKeySpec, OrderType

Example:
    __partition__ = LevelPolicy(
        indexes={"id": IndexOptions(unique=True)},
        foreign_keys={ForeignKeySpec(field="company_id", referenced_table="companies")},
        order_type=OrderType(kind="numeric"),
    )

Validation:
    All declarations are frozen (hashable), so foreign keys can be merged
    as a set across policy layers.
"""

from schemas.partitioning import IndexOptions, ForeignKeySpec, OrderType, MaintenanceResult

__all__ = [
    "IndexOptions",
    "ForeignKeySpec",
    "OrderType",
    "MaintenanceResult",
]
