"""
Policy of a whole partition hierarchy.

A model partitioned by N levels gets one ``LevelResolver`` per level, index 0
being the outermost key. The model's own override chain is kept as a separate
resolver for the table wide settings (schema, name prefix, root table) and
for everything attached to leaf tables.

Dispatch by the length L of the key values in a query:

    index L      what is needed to populate depth L + 1 (janitorial creates
                 and drops, child ordering)
    index L - 1  what constrains the table at depth L (check constraint)
    index N      the leaf table itself (the model's own resolver)
"""

from typing import Any, Dict, List, Set, Tuple
import logging

from core.exceptions import ConfigurationError, PartitionNameDecodeError
from partitioning import naming
from partitioning.resolver import IndexKey, LevelResolver
from schemas.partitioning import ForeignKeySpec, IndexOptions, OrderType

logger = logging.getLogger(__name__)


class HierarchyResolver:
    """
    Resolves partition policy for every level of a model.

    Constructed once per model and process, then passed to the
    ``PartitionManager``.
    """

    def __init__(self, model: type):
        self.model = model
        self.own = LevelResolver(model)
        level_classes = self.own.using_classes()
        if level_classes is None:
            level_classes = (model,)
        elif not level_classes:
            raise ConfigurationError(
                "Multi-level model declares no level classes",
                context={"model": model.__name__, "field": "using_classes"}
            )
        self.levels: List[LevelResolver] = [
            self.own if level_class is model else LevelResolver(model, level_class)
            for level_class in level_classes
        ]

    def __repr__(self) -> str:
        return f"HierarchyResolver({self.model.__name__}, levels={self.levels})"

    @property
    def depth(self) -> int:
        """Number of partitioning levels (N)"""
        return len(self.levels)

    def using_resolver(self, index: int) -> LevelResolver:
        """Resolver for a level index; ``depth`` selects the leaf table resolver"""
        if 0 <= index < self.depth:
            return self.levels[index]
        if index == self.depth:
            return self.own
        raise ConfigurationError(
            "Partitioning level out of range",
            context={"model": self.model.__name__, "level": index, "depth": self.depth}
        )

    def leaf_resolvers(self) -> List[LevelResolver]:
        """The model's own resolver followed by each level, innermost first"""
        resolvers = [self.own]
        for level in reversed(self.levels):
            if level is not self.own:
                resolvers.append(level)
        return resolvers

    # ------------------------------------------------------------------
    # Levels
    # ------------------------------------------------------------------

    def on_field(self, index: int) -> str:
        level = self.using_resolver(index)
        return level.required("on_field", level.on_field())

    def on_fields(self) -> List[str]:
        """Partition column of every level, outermost first"""
        return [self.on_field(index) for index in range(self.depth)]

    def is_leaf(self, *values) -> bool:
        """Leaf tables hold rows; every other partition only has children"""
        return len(values) == self.depth

    # ------------------------------------------------------------------
    # Names
    # ------------------------------------------------------------------

    def schema_name(self) -> str:
        return self.own.required("schema_name", self.own.schema_name())

    def name_prefix(self) -> str:
        prefix = self.own.name_prefix()
        return self.own.required("name_prefix", prefix)

    def archive_schema_name(self) -> str:
        return self.own.required("archive_schema_name", self.own.archive_schema_name())

    def root_table_name(self) -> str:
        """Schema qualified name of the table every partition descends from"""
        schema = self.own.required("parent_table_schema_name", self.own.parent_table_schema_name())
        name = self.own.required("parent_table_name", self.own.parent_table_name())
        return naming.qualified_name(schema, name)

    def _encoder(self, index: int):
        level = self.using_resolver(index)
        return lambda value: level.required("base_name", level.base_name(value), value)

    def _decoder(self, index: int):
        level = self.using_resolver(index)
        return lambda fragment: level.required("key_value", level.key_value(fragment), fragment)

    def base_name(self, *values) -> str:
        """Base name of a partition: one fragment per fixed key value"""
        return naming.encode_key_values([self._encoder(i) for i in range(self.depth)], values)

    def part_name(self, *values) -> str:
        return naming.part_name(self.name_prefix(), self.base_name(*values))

    def table_name(self, *values) -> str:
        """Schema qualified table name; no key values names the root table"""
        if not values:
            return self.root_table_name()
        return naming.qualified_name(self.schema_name(), self.part_name(*values))

    def parent_table_schema_name(self, *values) -> str:
        if len(values) <= 1:
            return self.own.required("parent_table_schema_name", self.own.parent_table_schema_name(*values))
        return self.schema_name()

    def parent_table_name(self, *values) -> str:
        """Schema qualified name of the table one level shallower"""
        if len(values) <= 1:
            return self.root_table_name()
        return naming.qualified_name(self.schema_name(), self.part_name(*naming.parent_key_values(values)))

    def key_values_from_partition_name(self, partition_name: str) -> Tuple[Any, ...]:
        """
        Decode a partition name back into its key values.

        The decoded values must encode to the same base name again, so a
        name produced outside the naming scheme is never silently coerced.
        """
        base_name = naming.base_name_from_partition_name(
            partition_name, self.schema_name(), self.name_prefix()
        )
        values = naming.decode_base_name([self._decoder(i) for i in range(self.depth)], base_name)
        if self.base_name(*values) != base_name:
            raise PartitionNameDecodeError(
                "Partition name does not round trip through the naming scheme",
                context={"partition_name": partition_name, "partition_key_values": values}
            )
        return values

    # ------------------------------------------------------------------
    # Table definition
    # ------------------------------------------------------------------

    def check_constraint(self, *values) -> str:
        """Constraint on the key newly fixed by this table (the last value)"""
        if not values:
            raise ConfigurationError(
                "The root table has no partition check constraint",
                context={"model": self.model.__name__}
            )
        level = self.using_resolver(len(values) - 1)
        return level.required("check_constraint", level.check_constraint(values[-1]), *values)

    def order_type(self, *values) -> OrderType:
        """Ordering of the children of the partition named by ``values``"""
        return self.using_resolver(len(values)).order_type(*values)

    def indexes(self, *values) -> Dict[IndexKey, IndexOptions]:
        bag: Dict[IndexKey, IndexOptions] = {}
        for resolver in self.leaf_resolvers():
            for columns, options in resolver.indexes(*values).items():
                bag.setdefault(columns, options)
        return bag

    def foreign_keys(self, *values) -> Set[ForeignKeySpec]:
        specs: Set[ForeignKeySpec] = set()
        for resolver in self.leaf_resolvers():
            specs |= resolver.foreign_keys(*values)
        return specs

    def run_after_create_hooks(self, manager: Any, *values) -> None:
        for resolver in self.leaf_resolvers():
            resolver.run_after_create_hooks(manager, *values)

    # ------------------------------------------------------------------
    # Janitorial dispatch
    # ------------------------------------------------------------------

    def janitorial_creates_needed(self, manager: Any, *values) -> List[Tuple[Any, ...]]:
        return self._children_level(values).janitorial_creates_needed(manager, *values)

    def janitorial_drops_needed(self, manager: Any, *values) -> List[Tuple[Any, ...]]:
        return self._children_level(values).janitorial_drops_needed(manager, *values)

    def janitorial_archives_needed(self, manager: Any, *values) -> List[Tuple[Any, ...]]:
        """
        Archive rules apply to leaf tables: the model's own rule wins,
        otherwise the innermost level's rule is used.
        """
        for resolver in self.leaf_resolvers()[:2]:
            if resolver.defines("janitorial_archives_needed"):
                return resolver.janitorial_archives_needed(manager, *values)
        return []

    def _children_level(self, values: Tuple[Any, ...]) -> LevelResolver:
        if self.is_leaf(*values):
            raise ConfigurationError(
                "Leaf partitions have no children",
                context={"model": self.model.__name__, "partition_key_values": values}
            )
        return self.using_resolver(len(values))
