"""
Pytest configuration and fixtures
"""

from datetime import date, timedelta
from typing import Dict, List, Optional, Set, Tuple

import pytest

from core.exceptions import SchemaAdapterError
from partitioning.adapter import SchemaAdapter
from partitioning.hierarchy import HierarchyResolver
from partitioning.levels import ByWeeklyTimeField
from partitioning.manager import PartitionManager
from partitioning.policy import LevelPolicy, MultiLevel, PartitionedBase, Template
from schemas.partitioning import ForeignKeySpec, IndexOptions

# Monday of a fixed week so week arithmetic in tests is stable
TODAY = date(2024, 3, 6)
THIS_WEEK = date(2024, 3, 4)


def week(offset: int) -> date:
    """Start of the week ``offset`` weeks from THIS_WEEK"""
    return THIS_WEEK + timedelta(weeks=offset)


class InMemorySchemaAdapter(SchemaAdapter):
    """
    Schema adapter keeping the partition tree in a dict.

    Records every physical operation as ``(operation, key_values)`` in
    ``calls`` and can be told to fail an operation with ``fail_on``.
    """

    def __init__(self, configurator: HierarchyResolver):
        super().__init__(configurator)
        self.tables: Dict[str, str] = {}
        self.archived: Dict[str, str] = {}
        self.guarded: Set[str] = set()
        self.indexes: Dict[str, list] = {}
        self.references: Dict[str, set] = {}
        self.schema_created = False
        self.calls: List[Tuple[str, tuple]] = []
        self.failures: Dict[str, Optional[tuple]] = {}

    def fail_on(self, operation: str, *values) -> None:
        """Fail ``operation`` for these key values (any key values when none given)"""
        self.failures[operation] = values or None

    def _record(self, operation: str, values: tuple) -> None:
        self.calls.append((operation, values))
        if operation in self.failures:
            expected = self.failures[operation]
            if expected is None or expected == values:
                raise SchemaAdapterError(
                    f"{operation} failed",
                    context={"operation": operation, "table_name": self.configurator.table_name(*values)}
                )

    def operations(self, operation: str) -> List[tuple]:
        return [values for op, values in self.calls if op == operation]

    def create_partition_schema(self) -> None:
        self._record("create_partition_schema", ())
        self.schema_created = True

    def add_parent_table_rules(self, *values) -> None:
        self._record("add_parent_table_rules", values)
        self.guarded.add(self.configurator.table_name(*values))

    def create_partition_table(self, *values) -> None:
        self._record("create_partition_table", values)
        table = self.configurator.table_name(*values)
        parent = self.configurator.parent_table_name(*values)
        if len(values) > 1 and parent not in self.tables:
            raise SchemaAdapterError("parent table does not exist", context={"table_name": parent})
        self.configurator.check_constraint(*values)
        self.tables.setdefault(table, parent)

    def drop_partition_table(self, *values) -> None:
        self._record("drop_partition_table", values)
        self._drop(self.configurator.table_name(*values))

    def _drop(self, table: str) -> None:
        for child in [name for name, parent in self.tables.items() if parent == table]:
            self._drop(child)
        self.tables.pop(table, None)

    def add_partition_table_index(self, *values) -> None:
        self._record("add_partition_table_index", values)
        self.indexes[self.configurator.table_name(*values)] = list(self.configurator.indexes(*values).items())

    def add_references_to_partition_table(self, *values) -> None:
        self._record("add_references_to_partition_table", values)
        self.references[self.configurator.table_name(*values)] = self.configurator.foreign_keys(*values)

    def archive_partition_table(self, *values) -> None:
        self._record("archive_partition_table", values)
        table = self.configurator.table_name(*values)
        if table in self.tables:
            self.archived[table] = self.tables.pop(table)

    def child_partition_names(self, *values) -> List[str]:
        parent = self.configurator.table_name(*values)
        order_type = self.configurator.order_type(*values)
        children = [name for name, p in self.tables.items() if p == parent]

        def relname(name):
            relation = name.rsplit(".", 1)[-1]
            return (len(relation), relation) if order_type.kind == "numeric" else relation

        return sorted(children, key=relname, reverse=order_type.descending)

    def partition_exists(self, *values) -> bool:
        return self.configurator.table_name(*values) in self.tables


# ============================================================================
# TEST HIERARCHIES
# ============================================================================

class TenantLevel(PartitionedBase):
    """Tenant level whose needed tenants are set per test"""

    tenants_needed = [1, 2]
    tenants_dropped = []

    __partition__ = LevelPolicy(
        on_field="tenant_id",
        base_name=lambda cls, value: str(int(value)),
        key_value=lambda cls, fragment: int(fragment),
        check_constraint=Template("tenant_id = {value}"),
        order_type={"kind": "numeric"},
        janitorial_creates_needed=lambda manager, *values: [
            (tenant,) for tenant in TenantLevel.tenants_needed if not manager.partition_exists(tenant)
        ],
        janitorial_drops_needed=lambda manager, *values: [(tenant,) for tenant in TenantLevel.tenants_dropped],
        foreign_keys=ForeignKeySpec(field="tenant_id", referenced_table="public.tenants"),
    )


class WeekLevel(ByWeeklyTimeField):
    """Week level creating weeks 0 and 1 and dropping the weeks listed per test"""

    partition_field = "created_at"
    weeks_dropped = []

    __partition__ = LevelPolicy(
        janitorial_creates_needed=lambda manager, *values: [
            values + (week(offset),) for offset in (0, 1) if not manager.partition_exists(*values, week(offset))
        ],
        janitorial_drops_needed=lambda manager, *values: [
            values + (child,) for child in WeekLevel.weeks_dropped if manager.partition_exists(*values, child)
        ],
    )


class TenantEvent(MultiLevel):
    __tablename__ = "tenant_events"

    __partition__ = LevelPolicy(
        using_classes=[TenantLevel, WeekLevel],
        indexes={"id": IndexOptions(unique=True)},
    )


class Reading(WeekLevel):
    """Single level model partitioned by week"""
    __tablename__ = "readings"


@pytest.fixture(autouse=True)
def reset_levels():
    """Restore the per test janitorial inputs"""
    TenantLevel.tenants_needed = [1, 2]
    TenantLevel.tenants_dropped = []
    WeekLevel.weeks_dropped = []
    yield


@pytest.fixture
def hierarchy():
    return HierarchyResolver(TenantEvent)


@pytest.fixture
def adapter(hierarchy):
    return InMemorySchemaAdapter(hierarchy)


@pytest.fixture
def manager(hierarchy, adapter):
    return PartitionManager(TenantEvent, adapter=adapter, configurator=hierarchy)
