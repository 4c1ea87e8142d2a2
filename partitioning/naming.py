"""
Partition name codec.

Pure functions converting between partition key fragments and table names:

    base name       "7_20240304"                 one fragment per fixed level
    part name       "p7_20240304"                name prefix + base name
    table name      "employees_partitions.p7_20240304"

Level boundaries are positional: fragment ``i`` always belongs to level ``i``,
so no level may encode a value containing the separator.
"""

from typing import Callable, List, Optional, Sequence, Tuple, Any

from core.exceptions import PartitionNameDecodeError, PartitionNameEncodeError

SEPARATOR = "_"


def join_base_name(fragments: Sequence[str]) -> str:
    """Join per-level fragments into a base name"""
    for fragment in fragments:
        if not isinstance(fragment, str) or not fragment:
            raise PartitionNameEncodeError(
                "Base name fragment must be a non-empty string",
                context={"fragment": fragment, "fragments": list(fragments)}
            )
        if SEPARATOR in fragment:
            raise PartitionNameEncodeError(
                f"Base name fragment contains the separator '{SEPARATOR}'",
                context={"fragment": fragment, "fragments": list(fragments)}
            )
    return SEPARATOR.join(fragments)


def split_base_name(base_name: str, max_levels: int) -> List[str]:
    """Split a base name into per-level fragments"""
    fragments = base_name.split(SEPARATOR) if base_name else []
    if not fragments or len(fragments) > max_levels or not all(fragments):
        raise PartitionNameDecodeError(
            "Base name does not match the partition naming scheme",
            context={"base_name": base_name, "max_levels": max_levels}
        )
    return fragments


def part_name(name_prefix: str, base_name: str) -> str:
    return f"{name_prefix}{base_name}"


def qualified_name(schema_name: Optional[str], name: str) -> str:
    if not schema_name:
        return name
    return f"{schema_name}.{name}"


def base_name_from_partition_name(partition_name: str, schema_name: str, name_prefix: str) -> str:
    """
    Strip the schema and the name prefix from a partition name.

    Accepts both ``schema.p7_20240304`` and ``p7_20240304``.
    """
    name = partition_name
    schema_qualifier = f"{schema_name}."
    if name.startswith(schema_qualifier):
        name = name[len(schema_qualifier):]
    elif "." in name:
        raise PartitionNameDecodeError(
            "Partition name is in another schema",
            context={"partition_name": partition_name, "schema_name": schema_name}
        )
    if not name.startswith(name_prefix):
        raise PartitionNameDecodeError(
            "Partition name does not carry the name prefix",
            context={"partition_name": partition_name, "name_prefix": name_prefix}
        )
    return name[len(name_prefix):]


def encode_key_values(encoders: Sequence[Callable[[Any], str]], key_values: Sequence[Any]) -> str:
    """Base name of a key value tuple, one encoder per level"""
    if len(key_values) > len(encoders):
        raise PartitionNameEncodeError(
            "More key values than partitioning levels",
            context={"partition_key_values": tuple(key_values), "levels": len(encoders)}
        )
    return join_base_name([encoders[i](value) for i, value in enumerate(key_values)])


def decode_base_name(
    decoders: Sequence[Callable[[str], Any]],
    base_name: str
) -> Tuple[Any, ...]:
    """Key value tuple of a base name, one decoder per level"""
    fragments = split_base_name(base_name, len(decoders))
    values = []
    for index, fragment in enumerate(fragments):
        try:
            values.append(decoders[index](fragment))
        except (ValueError, TypeError, ArithmeticError) as e:
            raise PartitionNameDecodeError(
                "Base name fragment could not be decoded",
                context={"base_name": base_name, "fragment": fragment, "level": index},
                original_exception=e
            )
    return tuple(values)


def parent_key_values(key_values: Sequence[Any]) -> Tuple[Any, ...]:
    """Key values of the table one level shallower"""
    return tuple(key_values[:-1])
