"""
Partition policy declarations.

A partitioned model (or an abstract level class) declares its policy with a
``__partition__ = LevelPolicy(...)`` class attribute. Every class between the
model and ``PartitionedBase`` in the method resolution order that declares its
own ``__partition__`` is one layer of the override chain; resolvers walk that
chain field by field, most specialized layer first.

Policy values are one of three explicit variants, resolved lazily with the
target and the partition key values only when a resolver is queried:

    Constant(value)     returned as is
    Computed(fn)        fn(target, *values)
    Template(text)      text.format(value=<most recently fixed key>)

Bare callables are wrapped in ``Computed`` and any other value in ``Constant``.
"""

from dataclasses import dataclass
from string import Formatter
from typing import Any, Callable, Optional, Sequence, Tuple, List
import logging

from core.config import settings
from core.exceptions import ConfigurationError, TemplateResolutionError
from schemas.partitioning import OrderType

logger = logging.getLogger(__name__)


# ============================================================================
# POLICY VALUES
# ============================================================================

class PolicyValue:
    """A lazily resolved policy field value"""

    def resolve(self, target: Any, values: Sequence[Any]) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class Constant(PolicyValue):
    value: Any

    def resolve(self, target, values):
        return self.value


@dataclass(frozen=True)
class Computed(PolicyValue):
    fn: Callable[..., Any]

    def resolve(self, target, values):
        return self.fn(target, *values)


@dataclass(frozen=True)
class Template(PolicyValue):
    """
    String interpolated with the most recently fixed key value.

    Only ``{value}`` is available. The text is formatted, never evaluated.
    """
    text: str

    def resolve(self, target, values):
        if not values:
            raise TemplateResolutionError(
                "Template references a key value but none is fixed",
                context={"template": self.text}
            )
        try:
            fields = [field for _, field, _, _ in Formatter().parse(self.text) if field is not None]
            if any(field != "value" for field in fields):
                raise TemplateResolutionError(
                    "Template may only reference {value}",
                    context={"template": self.text, "fields": fields}
                )
            return self.text.format_map({"value": values[-1]})
        except (KeyError, IndexError, AttributeError, ValueError) as e:
            raise TemplateResolutionError(
                "Template could not be interpolated",
                context={"template": self.text, "value": values[-1]},
                original_exception=e
            )


def as_policy_value(raw: Any) -> Optional[PolicyValue]:
    """Wrap a raw declaration in its policy value variant"""
    if raw is None or isinstance(raw, PolicyValue):
        return raw
    if callable(raw):
        return Computed(raw)
    return Constant(raw)


def _as_value_collection(raw: Any, single_types: Tuple[type, ...]) -> Optional[Tuple[PolicyValue, ...]]:
    if raw is None:
        return None
    if isinstance(raw, PolicyValue) or callable(raw) or isinstance(raw, single_types):
        return (as_policy_value(raw),)
    return tuple(as_policy_value(item) for item in raw)


# ============================================================================
# LEVEL POLICY
# ============================================================================

class LevelPolicy:
    """
    The policy one override layer contributes for one partitioning level.

    Every field is optional; an absent field defers to a less specialized
    layer.

    Naming and constraint fields are resolved with the class declaring the
    level as target (the partitioned model itself for a single level):
        on_field, schema_name, name_prefix, parent_table_name,
        parent_table_schema_name, archive_schema_name,
        order_type                   fn(cls, *key_values)
        base_name, check_constraint  fn(cls, value)
        key_value                    fn(cls, base_name_fragment)
        indexes                      mapping of column(s) -> IndexOptions
        foreign_keys                 ForeignKeySpec or a collection of them

    Janitorial fields and hooks are resolved with the partition manager as
    target (it exposes ``model``, ``engine``, ``partition_exists``,
    ``child_partition_names``, ``last_n_child_partition_names`` and
    ``key_values_from_partition_name``):
        janitorial_creates_needed, janitorial_archives_needed,
        janitorial_drops_needed      fn(manager, *prefix_key_values) -> key value tuples
        after_create_hooks           fn(manager, *key_values), run after a leaf is created

    ``using_classes`` lists the level classes of a multi-level model,
    outermost first.
    """

    VALUE_FIELDS = (
        "on_field",
        "schema_name",
        "name_prefix",
        "base_name",
        "key_value",
        "check_constraint",
        "order_type",
        "parent_table_name",
        "parent_table_schema_name",
        "archive_schema_name",
        "janitorial_creates_needed",
        "janitorial_archives_needed",
        "janitorial_drops_needed",
    )

    def __init__(
        self,
        *,
        on_field=None,
        schema_name=None,
        name_prefix=None,
        base_name=None,
        key_value=None,
        check_constraint=None,
        order_type=None,
        parent_table_name=None,
        parent_table_schema_name=None,
        archive_schema_name=None,
        janitorial_creates_needed=None,
        janitorial_archives_needed=None,
        janitorial_drops_needed=None,
        indexes=None,
        foreign_keys=None,
        after_create_hooks=None,
        using_classes=None
    ):
        self.on_field = as_policy_value(on_field)
        self.schema_name = as_policy_value(schema_name)
        self.name_prefix = as_policy_value(name_prefix)
        self.base_name = as_policy_value(base_name)
        self.key_value = as_policy_value(key_value)
        self.check_constraint = as_policy_value(check_constraint)
        self.order_type = as_policy_value(order_type)
        self.parent_table_name = as_policy_value(parent_table_name)
        self.parent_table_schema_name = as_policy_value(parent_table_schema_name)
        self.archive_schema_name = as_policy_value(archive_schema_name)
        self.janitorial_creates_needed = as_policy_value(janitorial_creates_needed)
        self.janitorial_archives_needed = as_policy_value(janitorial_archives_needed)
        self.janitorial_drops_needed = as_policy_value(janitorial_drops_needed)

        # Union fields: merged across layers instead of overridden
        self.indexes = _as_value_collection(indexes, (dict,))
        if _is_spec(foreign_keys):
            self.foreign_keys = (Constant(foreign_keys),)
        else:
            self.foreign_keys = _as_value_collection(foreign_keys, ())
        if after_create_hooks is None:
            self.after_create_hooks = None
        elif callable(after_create_hooks):
            self.after_create_hooks = (after_create_hooks,)
        else:
            self.after_create_hooks = tuple(after_create_hooks)

        self.using_classes = tuple(using_classes) if using_classes is not None else None

    def get(self, field: str) -> Any:
        """Raw declaration of a field, None when this layer does not define it"""
        return getattr(self, field)

    def __repr__(self) -> str:
        defined = [
            name for name in self.VALUE_FIELDS + ("indexes", "foreign_keys", "after_create_hooks", "using_classes")
            if getattr(self, name) is not None
        ]
        return f"LevelPolicy({', '.join(defined)})"


def _is_spec(value: Any) -> bool:
    # a single ForeignKeySpec is itself iterable (pydantic models iterate their fields)
    return value is not None and hasattr(value, "referenced_table")


# ============================================================================
# HOST REFLECTION
# ============================================================================

def model_table(model: Any) -> Tuple[Optional[str], str]:
    """(schema, name) of a model's physical root table"""
    table = getattr(model, "__table__", None)
    if table is not None:
        return table.schema, table.name
    name = getattr(model, "__tablename__", None)
    if not name:
        raise ConfigurationError(
            "Partitioned model has no table",
            context={"model": getattr(model, "__name__", repr(model))}
        )
    return None, name


def override_chain(cls: type) -> List[LevelPolicy]:
    """
    Policy layers visible to ``cls``, most specialized first.

    The scan stops at ``PartitionedBase``; a class outside that hierarchy
    is a configuration error.
    """
    layers = []
    for klass in cls.__mro__:
        policy = klass.__dict__.get("__partition__")
        if isinstance(policy, LevelPolicy):
            layers.append(policy)
        if klass is PartitionedBase:
            return layers
    raise ConfigurationError(
        "Class is not partitioned",
        context={"class": cls.__name__, "expected_base": PartitionedBase.__name__}
    )


# ============================================================================
# SENTINEL BASE
# ============================================================================

def _default_schema_name(model, *values):
    return f"{model_table(model)[1]}{settings.PARTITION_SCHEMA_SUFFIX}"


def _default_archive_schema_name(model, *values):
    return f"{model_table(model)[1]}{settings.ARCHIVE_SCHEMA_SUFFIX}"


def _default_name_prefix(model, *values):
    return settings.PARTITION_NAME_PREFIX


class PartitionedBase:
    """
    Root of every partition override chain.

    Mix into a declarative model (``class Event(ByCreatedAt, Base)``) or
    subclass to define abstract partitioning levels.
    """

    __partition__ = LevelPolicy(
        schema_name=_default_schema_name,
        name_prefix=_default_name_prefix,
        base_name=lambda model, value: str(value),
        key_value=lambda model, fragment: fragment,
        order_type=OrderType(kind="lexical", descending=True),
        parent_table_name=lambda model, *values: model_table(model)[1],
        parent_table_schema_name=lambda model, *values: model_table(model)[0] or "public",
        archive_schema_name=_default_archive_schema_name,
    )


class MultiLevel(PartitionedBase):
    """
    A model partitioned by several levels in turn.

    Subclasses list their level classes, outermost first::

        class Employee(MultiLevel, Base):
            __partition__ = LevelPolicy(using_classes=[ByCompanyId, ByCreatedAt])
    """

