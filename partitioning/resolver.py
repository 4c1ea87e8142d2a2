"""
Effective policy of a single partitioning level.

Each field is resolved on its own by scanning the override chain from the
most specialized layer to ``PartitionedBase``:

    first match wins     on_field, schema_name, name_prefix, base_name,
                         key_value, check_constraint, order_type, parent
                         table names, janitorial rules
    union across layers  indexes (keyed by column, closest layer sets a
                         column), foreign_keys (set), after_create_hooks
                         (concatenated)

A subclass can therefore override only ``check_constraint`` and still inherit
``indexes`` from a distant ancestor.
"""

from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union
import logging

from core.exceptions import ConfigurationError, TemplateResolutionError
from partitioning.policy import LevelPolicy, override_chain
from schemas.partitioning import ForeignKeySpec, IndexOptions, OrderType

logger = logging.getLogger(__name__)

IndexKey = Union[str, Tuple[str, ...]]


class LevelResolver:
    """
    Resolves one level's policy for a partitioned model.

    Args:
        model: The partitioned SQLAlchemy model
        level_class: Class whose override chain defines this level
            (defaults to the model itself); passed to naming and
            constraint callables
    """

    def __init__(self, model: type, level_class: Optional[type] = None):
        self.model = model
        self.level_class = level_class or model
        self.layers: List[LevelPolicy] = override_chain(self.level_class)

    def __repr__(self) -> str:
        return f"LevelResolver({self.model.__name__}, {self.level_class.__name__})"

    # ------------------------------------------------------------------
    # Cascading primitives
    # ------------------------------------------------------------------

    def defines(self, field: str) -> bool:
        """True when any layer declares the field"""
        return any(layer.get(field) is not None for layer in self.layers)

    def _first(self, field: str, target: Any, values: Tuple[Any, ...]) -> Any:
        for layer in self.layers:
            declared = layer.get(field)
            if declared is None:
                continue
            try:
                return declared.resolve(target, values)
            except TemplateResolutionError as e:
                logger.warning(
                    f"Ignoring {field} template of {self.level_class.__name__}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
        return None

    def _collect(self, field: str, target: Any, values: Tuple[Any, ...]) -> List[Any]:
        collected = []
        for layer in self.layers:
            for declared in layer.get(field) or ():
                try:
                    value = declared.resolve(target, values)
                except TemplateResolutionError as e:
                    logger.warning(
                        f"Ignoring {field} template of {self.level_class.__name__}: {e.message}",
                        extra={"error_context": e.to_dict()}
                    )
                    continue
                if value is not None:
                    collected.append(value)
        return collected

    def required(self, field: str, value: Any, *values: Any) -> Any:
        """Fail with a configuration error when a resolved field is absent"""
        if value is None:
            raise ConfigurationError(
                f"No policy layer defines '{field}'",
                context={
                    "model": self.model.__name__,
                    "level_class": self.level_class.__name__,
                    "field": field,
                    "partition_key_values": values
                }
            )
        return value

    # ------------------------------------------------------------------
    # First match fields
    # ------------------------------------------------------------------

    def on_field(self) -> Optional[str]:
        return self._first("on_field", self.level_class, ())

    def schema_name(self, *values) -> Optional[str]:
        return self._first("schema_name", self.level_class, values)

    def name_prefix(self, *values) -> Optional[str]:
        return self._first("name_prefix", self.level_class, values)

    def base_name(self, value: Any) -> Optional[str]:
        return self._first("base_name", self.level_class, (value,))

    def key_value(self, fragment: str) -> Any:
        return self._first("key_value", self.level_class, (fragment,))

    def check_constraint(self, value: Any) -> Optional[str]:
        return self._first("check_constraint", self.level_class, (value,))

    def parent_table_name(self, *values) -> Optional[str]:
        return self._first("parent_table_name", self.level_class, values)

    def parent_table_schema_name(self, *values) -> Optional[str]:
        return self._first("parent_table_schema_name", self.level_class, values)

    def archive_schema_name(self, *values) -> Optional[str]:
        return self._first("archive_schema_name", self.level_class, values)

    def order_type(self, *values) -> OrderType:
        """Ordering of child partition names, most recent first by default"""
        order_type = self._first("order_type", self.level_class, values)
        if order_type is None:
            return OrderType()
        if isinstance(order_type, str):
            return OrderType(kind="sql", clause=order_type)
        if isinstance(order_type, dict):
            return OrderType(**order_type)
        return order_type

    def using_classes(self) -> Optional[Tuple[type, ...]]:
        for layer in self.layers:
            if layer.using_classes is not None:
                return layer.using_classes
        return None

    # ------------------------------------------------------------------
    # Janitorial rules
    # ------------------------------------------------------------------

    def _janitorial(self, field: str, manager: Any, values: Tuple[Any, ...]) -> List[Tuple[Any, ...]]:
        needed = self._first(field, manager, values)
        if needed is None:
            return []
        key_values_set = []
        for key_values in needed:
            if not isinstance(key_values, (tuple, list)):
                raise ConfigurationError(
                    f"{field} must return key value sequences",
                    context={
                        "model": self.model.__name__,
                        "level_class": self.level_class.__name__,
                        "returned": key_values
                    }
                )
            key_values_set.append(tuple(key_values))
        return key_values_set

    def janitorial_creates_needed(self, manager: Any, *values) -> List[Tuple[Any, ...]]:
        """Child key values that should exist but do not yet"""
        return self._janitorial("janitorial_creates_needed", manager, values)

    def janitorial_archives_needed(self, manager: Any, *values) -> List[Tuple[Any, ...]]:
        """Leaf key values whose data should be archived"""
        return self._janitorial("janitorial_archives_needed", manager, values)

    def janitorial_drops_needed(self, manager: Any, *values) -> List[Tuple[Any, ...]]:
        """Existing child key values that are no longer needed"""
        return self._janitorial("janitorial_drops_needed", manager, values)

    # ------------------------------------------------------------------
    # Union fields
    # ------------------------------------------------------------------

    def indexes(self, *values) -> Dict[IndexKey, IndexOptions]:
        bag: Dict[IndexKey, IndexOptions] = {}
        for declared in self._collect("indexes", self.level_class, values):
            for columns, options in declared.items():
                columns = tuple(columns) if isinstance(columns, (list, tuple)) else columns
                if options is None:
                    options = IndexOptions()
                elif isinstance(options, dict):
                    options = IndexOptions(**options)
                bag.setdefault(columns, options)
        return bag

    def foreign_keys(self, *values) -> Set[ForeignKeySpec]:
        specs: Set[ForeignKeySpec] = set()
        for declared in self._collect("foreign_keys", self.level_class, values):
            items = [declared] if isinstance(declared, (ForeignKeySpec, dict)) else declared
            for item in items:
                specs.add(ForeignKeySpec(**item) if isinstance(item, dict) else item)
        return specs

    def after_create_hooks(self) -> List[Callable[..., Any]]:
        hooks = []
        for layer in self.layers:
            hooks.extend(layer.after_create_hooks or ())
        return hooks

    def run_after_create_hooks(self, manager: Any, *values) -> None:
        for hook in self.after_create_hooks():
            hook(manager, *values)
