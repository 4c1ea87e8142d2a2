"""
Unit tests for the partition lifecycle manager
"""

from unittest.mock import Mock, patch

import pytest

from conftest import InMemorySchemaAdapter, TenantLevel, WeekLevel, week
from core.config import settings
from core.exceptions import (
    ConfigurationError,
    LifecycleOperationError,
    PartitionNameEncodeError,
    SchemaAdapterError,
)
from partitioning.hierarchy import HierarchyResolver
from partitioning.manager import PartitionManager
from partitioning.policy import LevelPolicy, MultiLevel, PartitionedBase, Template
from schemas.partitioning import ForeignKeySpec, IndexOptions

SCHEMA = f"tenant_events{settings.PARTITION_SCHEMA_SUFFIX}"
PREFIX = settings.PARTITION_NAME_PREFIX

LEAVES = {(1, week(0)), (1, week(1)), (2, week(0)), (2, week(1))}


class ArchivingWeek(WeekLevel):
    __partition__ = LevelPolicy(
        janitorial_archives_needed=lambda manager, *values: [values] if values[-1] < week(1) else [],
    )


class ArchivedEvent(MultiLevel):
    __tablename__ = "archived_events"
    __partition__ = LevelPolicy(using_classes=[TenantLevel, ArchivingWeek])


class UndeclaredLevel(PartitionedBase):
    """Level that never says which field it partitions on"""


class UndeclaredEvent(MultiLevel):
    __tablename__ = "undeclared_events"
    __partition__ = LevelPolicy(using_classes=[TenantLevel, UndeclaredLevel])


class SlugLevel(PartitionedBase):
    __partition__ = LevelPolicy(on_field="slug", check_constraint=Template("slug = '{value}'"))


class SlugEvent(SlugLevel):
    __tablename__ = "slug_events"


def manager_for(model):
    hierarchy = HierarchyResolver(model)
    return PartitionManager(model, adapter=InMemorySchemaAdapter(hierarchy), configurator=hierarchy)


class TestConstruction:
    """Test manager setup"""

    def test_requires_engine_or_adapter(self):
        with pytest.raises(ConfigurationError):
            PartitionManager(ArchivedEvent)

    def test_create_infrastructure(self, manager, adapter):
        manager.create_infrastructure()

        assert adapter.schema_created
        assert adapter.guarded == {"public.tenant_events"}


class TestCreatePartitions:
    """Test top-down partition creation"""

    def test_creation_fan_out(self, manager, adapter):
        created = manager.create_new_partitions()

        # Tenant tables first, then two weeks per tenant
        assert created[:2] == [(1,), (2,)]
        assert set(created[2:]) == LEAVES
        assert len(adapter.operations("create_partition_table")) == 6

    def test_leaves_get_indexes_and_foreign_keys(self, manager, adapter):
        manager.create_new_partitions()

        assert set(adapter.operations("add_partition_table_index")) == LEAVES
        assert set(adapter.operations("add_references_to_partition_table")) == LEAVES
        for tenant, monday in LEAVES:
            table = f"{SCHEMA}.{PREFIX}{tenant}_{monday.strftime('%Y%m%d')}"
            assert adapter.indexes[table] == [("id", IndexOptions(unique=True))]
            assert adapter.references[table] == {
                ForeignKeySpec(field="tenant_id", referenced_table="public.tenants")
            }

    def test_only_intermediate_tables_are_guarded(self, manager, adapter):
        manager.create_new_partitions()

        assert set(adapter.operations("add_parent_table_rules")) == {(1,), (2,)}

    def test_parents_created_before_children(self, manager, adapter):
        manager.create_new_partitions()

        creates = adapter.operations("create_partition_table")
        for values in creates:
            if len(values) == 2:
                assert creates.index(values[:1]) < creates.index(values)

    def test_second_pass_is_a_no_op(self, manager, adapter):
        manager.create_new_partitions()
        adapter.calls.clear()

        assert manager.create_new_partitions() == []
        assert adapter.operations("create_partition_table") == []

    def test_existing_children_are_populated(self, manager, adapter):
        # tenant 3 exists but is no longer needed; its weeks are still created
        manager.create_new_partition_tables([(3,)])
        TenantLevel.tenants_needed = [1]

        created = manager.create_new_partitions()

        assert created == [(1,), (3, week(0)), (3, week(1)), (1, week(0)), (1, week(1))]
        assert manager.partition_exists(3, week(1))

    def test_after_create_hooks_run_on_leaves(self):
        hook = Mock()

        class HookedEvent(MultiLevel):
            __tablename__ = "hooked_events"
            __partition__ = LevelPolicy(using_classes=[TenantLevel, WeekLevel], after_create_hooks=hook)

        manager = manager_for(HookedEvent)
        manager.create_new_partitions()

        called_with = {call.args[1:] for call in hook.call_args_list}
        assert called_with == LEAVES
        assert all(call.args[0] is manager for call in hook.call_args_list)

    def test_create_new_partition_tables_orders_parents_first(self, manager, adapter):
        created = manager.create_new_partition_tables([(1, week(0)), (1,)])

        assert created == [(1,), (1, week(0))]
        assert manager.partition_exists(1, week(0))

    def test_candidate_outside_prefix_rejected(self, manager, hierarchy):
        with patch.object(hierarchy, "janitorial_creates_needed", return_value=[(1, week(0))]):
            with pytest.raises(ConfigurationError):
                manager.create_new_partitions()


class TestDropPartitions:
    """Test bottom-up partition drops"""

    def test_children_dropped_before_parent_decision(self, manager, adapter):
        manager.create_new_partitions()
        WeekLevel.weeks_dropped = [week(0)]
        TenantLevel.tenants_dropped = [1]

        dropped = manager.drop_old_partitions()

        assert dropped == [(2, week(0)), (1, week(0)), (1,)]
        assert adapter.operations("drop_partition_table") == dropped
        assert not manager.partition_exists(1, week(1))
        assert manager.partition_exists(2, week(1))

    def test_nothing_to_drop(self, manager, adapter):
        manager.create_new_partitions()

        assert manager.drop_old_partitions() == []


class TestArchivePartitions:
    """Test archiving of leaf partitions"""

    def test_only_leaves_archived(self):
        manager = manager_for(ArchivedEvent)
        manager.create_new_partitions()

        archived = manager.archive_old_partitions()

        assert set(archived) == {(1, week(0)), (2, week(0))}
        assert all(len(values) == 2 for values in manager.adapter.operations("archive_partition_table"))
        assert not manager.partition_exists(1, week(0))
        assert manager.partition_exists(1, week(1))

    def test_archive_rule_must_return_leaves(self):
        class SloppyArchivedEvent(MultiLevel):
            __tablename__ = "sloppy_archived_events"
            __partition__ = LevelPolicy(
                using_classes=[TenantLevel, WeekLevel],
                janitorial_archives_needed=lambda manager, *values: [values[:1]],
            )

        manager = manager_for(SloppyArchivedEvent)
        manager.create_new_partitions()

        with pytest.raises(ConfigurationError):
            manager.archive_old_partitions()


class TestErrorSurfacing:
    """Test that the first failure stops the pass with its context"""

    def test_failure_reports_operation_and_key_values(self, manager, adapter):
        adapter.fail_on("create_partition_table", 2, week(1))

        with pytest.raises(LifecycleOperationError) as exc_info:
            manager.create_new_partitions()

        error = exc_info.value
        assert error.context["operation"] == "create_partition_table"
        assert error.context["partition_key_values"] == (2, week(1))
        assert error.context["table_name"] == f"{SCHEMA}.{PREFIX}2_{week(1).strftime('%Y%m%d')}"
        assert isinstance(error.original_exception, SchemaAdapterError)

    def test_failed_pass_resumes(self, manager, adapter):
        adapter.fail_on("create_partition_table", 2, week(1))
        with pytest.raises(LifecycleOperationError):
            manager.create_new_partitions()
        adapter.failures.clear()

        created = manager.create_new_partitions()

        assert set(created) == {(2, week(1)), (1, week(0)), (1, week(1))}

    def test_janitorial_failure_wrapped(self, manager):
        TenantLevel.tenants_needed = None

        with pytest.raises(LifecycleOperationError) as exc_info:
            manager.create_new_partitions()

        assert exc_info.value.context["operation"] == "janitorial_creates_needed"
        assert isinstance(exc_info.value.original_exception, TypeError)


class TestMaintenance:
    """Test a full maintenance pass"""

    def test_successful_pass(self, manager):
        result = manager.run_maintenance()

        assert result.status == "success"
        assert result.model == "TenantEvent"
        assert len(result.created) == 6
        assert result.archived == []
        assert result.dropped == []

    def test_failed_pass_reported(self, manager, adapter):
        adapter.fail_on("add_partition_table_index")

        result = manager.run_maintenance()

        assert result.status == "failed"
        assert result.error["error_type"] == "LifecycleOperationError"
        assert result.error["context"]["operation"] == "add_partition_table_index"


class TestQueries:
    """Test queries exposed to janitorial rules"""

    def test_child_names_most_recent_first(self, manager):
        manager.create_new_partitions()

        assert manager.child_partition_names() == [f"{SCHEMA}.{PREFIX}2", f"{SCHEMA}.{PREFIX}1"]
        assert manager.last_n_child_partition_names(1) == [f"{SCHEMA}.{PREFIX}2"]
        assert manager.last_n_child_partition_names(5) == manager.child_partition_names()
        assert manager.last_n_child_partition_names(0) == []

    def test_key_values_from_partition_name(self, manager):
        assert manager.key_values_from_partition_name(f"{SCHEMA}.{PREFIX}2") == (2,)
        assert manager.partition_table_name(2) == f"{SCHEMA}.{PREFIX}2"


class TestLevelDeclarations:
    """Test that every traversal checks the level below a non-leaf partition"""

    def test_create_requires_partition_field(self):
        TenantLevel.tenants_needed = [1]
        manager = manager_for(UndeclaredEvent)

        with pytest.raises(ConfigurationError) as exc_info:
            manager.create_new_partitions()

        assert exc_info.value.context["operation"] == "create_new_partitions"
        assert exc_info.value.context["partition_key_values"] == (1,)
        assert exc_info.value.context["field"] == "on_field"

    def test_drop_requires_partition_field(self):
        manager = manager_for(UndeclaredEvent)
        manager.create_new_partition_tables([(1,)])

        with pytest.raises(ConfigurationError) as exc_info:
            manager.drop_old_partitions()

        assert exc_info.value.context["operation"] == "drop_old_partitions"
        assert manager.adapter.operations("drop_partition_table") == []

    def test_archive_requires_partition_field(self):
        manager = manager_for(UndeclaredEvent)
        manager.create_new_partition_tables([(1,)])

        with pytest.raises(ConfigurationError) as exc_info:
            manager.archive_old_partitions()

        assert exc_info.value.context["operation"] == "archive_old_partitions"
        assert exc_info.value.context["partition_key_values"] == (1,)


class TestNamingFailures:
    """Test that unencodable key values are reported with their operation"""

    @pytest.mark.parametrize("method, operation", [
        ("create_new_partition", "create_partition_table"),
        ("drop_old_partition", "drop_partition_table"),
        ("archive_old_partition", "archive_partition_table"),
    ])
    def test_separator_in_key_value(self, method, operation):
        manager = manager_for(SlugEvent)

        with pytest.raises(LifecycleOperationError) as exc_info:
            getattr(manager, method)("acme_corp")

        error = exc_info.value
        assert error.context["operation"] == operation
        assert error.context["partition_key_values"] == ("acme_corp",)
        assert error.context["table_name"] is None
        assert isinstance(error.original_exception, PartitionNameEncodeError)
        assert manager.adapter.calls == []

    def test_encodable_key_value_created(self):
        manager = manager_for(SlugEvent)

        manager.create_new_partition("acme")

        assert manager.partition_exists("acme")
