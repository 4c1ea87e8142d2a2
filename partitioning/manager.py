# ============================================================================
# File: partitioning/manager.py
# Description: Partition lifecycle orchestration over the partition tree
# ============================================================================
"""
Partition Manager - create, archive and drop partitions at every level.

The partition tree is walked depth first, keyed by the tuple of fixed key
values (its length is the level being worked on):

- create is top-down: a level's new tables exist before its children are
  asked to populate themselves
- drop is bottom-up: every descendant is evaluated before its parent decides
  which of its own children go
- archive only visits leaves, the only tables holding rows

Nothing is persisted beyond what the schema adapter reports. Every physical
step is idempotent, so a pass that failed part way is resumed by running it
again.
"""

from typing import Any, Callable, Iterable, List, Optional, Tuple
import logging

from sqlalchemy.engine import Engine

from core.exceptions import (
    ConfigurationError,
    LifecycleOperationError,
    PartitioningError,
)
from partitioning.adapter import SchemaAdapter, SqlAdapter
from partitioning.hierarchy import HierarchyResolver
from schemas.partitioning import MaintenanceResult

logger = logging.getLogger(__name__)

KeyValues = Tuple[Any, ...]


class PartitionManager:
    """
    Partition lifecycle manager for one partitioned model.

    Responsibilities:
    - Create infrastructure (partition schema, root insert guard)
    - Create partitions the janitorial rules ask for, at every level
    - Archive and drop partitions that are no longer needed
    - Surface the first failure with the operation and key values behind it

    Janitorial rules and after-create hooks receive this manager as their
    first argument.
    """

    def __init__(
        self,
        model: type,
        engine: Optional[Engine] = None,
        adapter: Optional[SchemaAdapter] = None,
        configurator: Optional[HierarchyResolver] = None
    ):
        self.model = model
        self.engine = engine
        self.configurator = configurator or HierarchyResolver(model)
        if adapter is None:
            if engine is None:
                raise ConfigurationError(
                    "PartitionManager needs an engine or a schema adapter",
                    context={"model": model.__name__}
                )
            adapter = SqlAdapter(self.configurator, engine)
        self.adapter = adapter

    # ------------------------------------------------------------------
    # Queries used by janitorial rules
    # ------------------------------------------------------------------

    def partition_exists(self, *values) -> bool:
        return self.adapter.partition_exists(*values)

    def child_partition_names(self, *values) -> List[str]:
        return self.adapter.child_partition_names(*values)

    def last_n_child_partition_names(self, n: int, *values) -> List[str]:
        return self.adapter.last_n_child_partition_names(n, *values)

    def key_values_from_partition_name(self, partition_name: str) -> KeyValues:
        return self.configurator.key_values_from_partition_name(partition_name)

    def partition_table_name(self, *values) -> str:
        return self.configurator.table_name(*values)

    def is_leaf_partition(self, *values) -> bool:
        """
        Is the table a child table without children of its own.

        Leaf tables get the indexes and foreign keys because they hold the
        rows; every other table gets the insert guard instead.
        """
        return self.configurator.is_leaf(*values)

    # ------------------------------------------------------------------
    # Error surfacing
    # ------------------------------------------------------------------

    def _run(self, operation: str, step: Callable[..., Any], *values) -> Any:
        """Run one step, reporting the first failure with its operation and key values"""
        try:
            return step(*values)
        except LifecycleOperationError:
            raise
        except ConfigurationError as e:
            e.context.setdefault("model", self.model.__name__)
            e.context.setdefault("operation", operation)
            if not e.context.get("partition_key_values"):
                e.context["partition_key_values"] = values
            raise
        except Exception as e:
            try:
                table_name = self.configurator.table_name(*values)
            except PartitioningError:
                table_name = None
            error = LifecycleOperationError(
                f"{operation} failed for {self.model.__name__}{list(values)}",
                context={
                    "model": self.model.__name__,
                    "operation": operation,
                    "partition_key_values": values,
                    "table_name": table_name
                },
                original_exception=e
            )
            logger.error(error.message, extra={"error_context": error.to_dict()})
            raise error

    def _require_partitioned_level(self, operation: str, *values) -> None:
        """The level below a non-leaf partition must name the field it partitions on"""
        self._run(operation, lambda *keys: self.configurator.on_field(len(keys)), *values)

    def _validate_children(self, operation: str, prefix: KeyValues, children: Iterable[KeyValues]) -> List[KeyValues]:
        """Children must sit exactly one level below their prefix"""
        validated = []
        for child in children:
            if len(child) != len(prefix) + 1 or tuple(child[:len(prefix)]) != tuple(prefix):
                raise ConfigurationError(
                    f"{operation} produced key values outside the partition",
                    context={
                        "model": self.model.__name__,
                        "operation": operation,
                        "partition_key_values": prefix,
                        "child_key_values": child
                    }
                )
            validated.append(tuple(child))
        return validated

    def _existing_children(self, *values) -> List[KeyValues]:
        names = self._run("child_partition_names", self.adapter.child_partition_names, *values)
        children = self._run(
            "key_values_from_partition_name",
            lambda *keys: [self.configurator.key_values_from_partition_name(name) for name in names],
            *values
        )
        return self._validate_children("child_partition_names", values, children)

    # ------------------------------------------------------------------
    # Infrastructure
    # ------------------------------------------------------------------

    def create_infrastructure(self) -> None:
        """
        The once called function to prepare the root table for partitioning
        and create the schema the child tables are placed in.
        """
        logger.info(f"Creating partition infrastructure for {self.model.__name__}")
        self._run("create_partition_schema", self.adapter.create_partition_schema)
        self._run("add_parent_table_rules", self.adapter.add_parent_table_rules)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_new_partition(self, *values) -> None:
        """
        Create one child table whose parent already exists.

        Leaves get their indexes, foreign keys and after-create hooks;
        non-leaf tables get the insert guard.
        """
        table_name = self._run("create_partition_table", self.configurator.table_name, *values)
        logger.info(f"Creating partition {table_name}")
        self._run("create_partition_table", self.adapter.create_partition_table, *values)
        if self.is_leaf_partition(*values):
            self._run("add_partition_table_index", self.adapter.add_partition_table_index, *values)
            self._run("add_references_to_partition_table", self.adapter.add_references_to_partition_table, *values)
            self._run(
                "after_partition_table_create_hooks",
                lambda *keys: self.configurator.run_after_create_hooks(self, *keys),
                *values
            )
        else:
            self._run("add_parent_table_rules", self.adapter.add_parent_table_rules, *values)

    def create_new_partition_tables(self, key_values_set: Iterable[KeyValues]) -> List[KeyValues]:
        """Create any partition tables from a list, parents first"""
        created = []
        for values in sorted((tuple(v) for v in key_values_set), key=len):
            self.create_new_partition(*values)
            created.append(values)
        return created

    def create_new_partitions(self, *values) -> List[KeyValues]:
        """
        Create the partitions the janitorial rules ask for below ``values``.

        Returns:
            Key values of every partition created, in creation order
        """
        logger.debug(f"Evaluating creates below {self.model.__name__}{list(values)}")
        if self.is_leaf_partition(*values):
            return []

        self._require_partitioned_level("create_new_partitions", *values)
        needed = self._run(
            "janitorial_creates_needed",
            lambda *keys: self.configurator.janitorial_creates_needed(self, *keys),
            *values
        )
        created = []
        for child in self._validate_children("janitorial_creates_needed", values, needed):
            self.create_new_partition(*child)
            created.append(child)

        for child in self._existing_children(*values):
            created.extend(self.create_new_partitions(*child))
        return created

    # ------------------------------------------------------------------
    # Drop
    # ------------------------------------------------------------------

    def drop_old_partition(self, *values) -> None:
        table_name = self._run("drop_partition_table", self.configurator.table_name, *values)
        logger.info(f"Dropping partition {table_name}")
        self._run("drop_partition_table", self.adapter.drop_partition_table, *values)

    def drop_old_partitions(self, *values) -> List[KeyValues]:
        """
        Drop partitions that are no longer needed below ``values``.

        Descendants are evaluated and dropped before this level's own
        drop decision.

        Returns:
            Key values of every partition dropped, in drop order
        """
        logger.debug(f"Evaluating drops below {self.model.__name__}{list(values)}")
        if self.is_leaf_partition(*values):
            return []

        self._require_partitioned_level("drop_old_partitions", *values)
        dropped = []
        for child in self._existing_children(*values):
            dropped.extend(self.drop_old_partitions(*child))

        old = self._run(
            "janitorial_drops_needed",
            lambda *keys: self.configurator.janitorial_drops_needed(self, *keys),
            *values
        )
        for child in self._validate_children("janitorial_drops_needed", values, old):
            self.drop_old_partition(*child)
            dropped.append(child)
        return dropped

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    def archive_old_partition(self, *values) -> None:
        table_name = self._run("archive_partition_table", self.configurator.table_name, *values)
        logger.info(f"Archiving partition {table_name}")
        self._run("archive_partition_table", self.adapter.archive_partition_table, *values)

    def archive_old_partitions(self, *values) -> List[KeyValues]:
        """
        Archive leaf partitions that need it. Non-leaf partitions hold no
        rows, so they are only traversed.

        Returns:
            Key values of every partition archived
        """
        logger.debug(f"Evaluating archives below {self.model.__name__}{list(values)}")
        archived = []
        if self.is_leaf_partition(*values):
            needed = self._run(
                "janitorial_archives_needed",
                lambda *keys: self.configurator.janitorial_archives_needed(self, *keys),
                *values
            )
            for leaf in needed:
                if not self.is_leaf_partition(*leaf):
                    raise ConfigurationError(
                        "janitorial_archives_needed must return leaf key values",
                        context={
                            "model": self.model.__name__,
                            "partition_key_values": values,
                            "returned": leaf
                        }
                    )
                self.archive_old_partition(*leaf)
                archived.append(tuple(leaf))
            return archived

        self._require_partitioned_level("archive_old_partitions", *values)
        for child in self._existing_children(*values):
            archived.extend(self.archive_old_partitions(*child))
        return archived

    # ------------------------------------------------------------------
    # Maintenance pass
    # ------------------------------------------------------------------

    def run_maintenance(self) -> MaintenanceResult:
        """
        One full maintenance pass: create, then archive, then drop.

        Failures are reported in the result rather than raised so a
        scheduler can continue with other models.
        """
        result = MaintenanceResult(model=self.model.__name__)
        try:
            result.created = self.create_new_partitions()
            result.archived = self.archive_old_partitions()
            result.dropped = self.drop_old_partitions()
        except PartitioningError as e:
            logger.error(
                f"Maintenance failed for {self.model.__name__}: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            result.status = "failed"
            result.error = e.to_dict()
            return result

        logger.info(
            f"Maintenance completed for {self.model.__name__}: "
            f"Created={len(result.created)}, Archived={len(result.archived)}, Dropped={len(result.dropped)}"
        )
        return result
