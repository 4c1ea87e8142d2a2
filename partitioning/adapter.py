"""
Schema adapters: the physical side of partition management.

``SchemaAdapter`` is the contract the partition manager drives.
``SqlAdapter`` implements it for PostgreSQL table inheritance through a
SQLAlchemy engine: every child table ``INHERITS`` its parent and carries a
``CHECK`` constraint on the key it fixes.

Repeated maintenance passes must converge, so "already exists" and
"already gone" are no-ops here rather than errors.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Sequence
import hashlib
import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import ConfigurationError, SchemaAdapterError
from partitioning.hierarchy import HierarchyResolver
from schemas.partitioning import OrderType

logger = logging.getLogger(__name__)

INSERT_GUARD_TRIGGER = "partition_insert_guard"
INSERT_GUARD_FUNCTION = "reject_direct_insert"
MAX_IDENTIFIER_LENGTH = 63


def _digest(*parts: str) -> str:
    return hashlib.sha1("\x00".join(parts).encode("utf-8")).hexdigest()[:8]


class SchemaAdapter(ABC):
    """
    Abstract base class for physical partition operations.

    Every method taking ``*values`` addresses the partition named by those
    key values; no key values addresses the root table.
    """

    def __init__(self, configurator: HierarchyResolver):
        self.configurator = configurator

    @abstractmethod
    def create_partition_schema(self) -> None:
        """Create the schema holding all partition tables"""
        pass

    @abstractmethod
    def add_parent_table_rules(self, *values) -> None:
        """Block direct inserts into a table that only has children"""
        pass

    @abstractmethod
    def create_partition_table(self, *values) -> None:
        pass

    @abstractmethod
    def drop_partition_table(self, *values) -> None:
        pass

    @abstractmethod
    def add_partition_table_index(self, *values) -> None:
        pass

    @abstractmethod
    def add_references_to_partition_table(self, *values) -> None:
        pass

    @abstractmethod
    def archive_partition_table(self, *values) -> None:
        pass

    @abstractmethod
    def child_partition_names(self, *values) -> List[str]:
        """Schema qualified names of existing children, most recent first"""
        pass

    @abstractmethod
    def partition_exists(self, *values) -> bool:
        pass

    def last_n_child_partition_names(self, n: int, *values) -> List[str]:
        """The ``n`` most recent children"""
        if n <= 0:
            return []
        return self.child_partition_names(*values)[:n]

    def partition_table_name(self, *values) -> str:
        return self.configurator.table_name(*values)


class SqlAdapter(SchemaAdapter):
    """
    PostgreSQL implementation of ``SchemaAdapter``.

    Each operation runs in its own transaction; a pass that fails part way
    leaves earlier operations committed and is resumed by running it again.
    """

    def __init__(self, configurator: HierarchyResolver, engine: Engine):
        super().__init__(configurator)
        self.engine = engine
        self.preparer = engine.dialect.identifier_preparer

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _quote_table(self, qualified: str) -> str:
        return ".".join(self.preparer.quote(part) for part in qualified.split(".", 1))

    def _execute(self, operation: str, table_name: str, statements: Sequence[str]) -> None:
        statement = None
        try:
            with self.engine.begin() as conn:
                for statement in statements:
                    logger.debug(f"{operation}: {statement}")
                    conn.execute(text(statement))
        except SQLAlchemyError as e:
            raise SchemaAdapterError(
                f"{operation} failed",
                context={
                    "operation": operation,
                    "table_name": table_name,
                    "statement": statement
                },
                original_exception=e
            )

    def _fetch(self, operation: str, table_name: str, query: str, **params: Any) -> List[Any]:
        try:
            with self.engine.connect() as conn:
                return list(conn.execute(text(query), params))
        except SQLAlchemyError as e:
            raise SchemaAdapterError(
                f"{operation} failed",
                context={"operation": operation, "table_name": table_name},
                original_exception=e
            )

    def _identifier(self, *parts: str) -> str:
        """
        Index/constraint name within PostgreSQL's identifier length.

        Longer names keep their head and end in a digest of the full name, so
        two names sharing a long prefix stay distinct.
        """
        name = "_".join(parts)
        if len(name) <= MAX_IDENTIFIER_LENGTH:
            return name
        suffix = _digest(name)
        return f"{name[:MAX_IDENTIFIER_LENGTH - len(suffix) - 1]}_{suffix}"

    def _index_name(self, part_name: str, columns: Sequence[str], options) -> str:
        if options.name:
            return self._identifier(part_name, options.name)
        # digest of the column tuple tells ("a_b",) from ("a", "b")
        return self._identifier(part_name, *columns, _digest(*columns), "idx")

    def _foreign_key_name(self, part_name: str, spec) -> str:
        if spec.name:
            return self._identifier(part_name, spec.name)
        digest = _digest(spec.field, spec.referenced_table, spec.referenced_field)
        return self._identifier(part_name, spec.field, digest, "fkey")

    @staticmethod
    def _require_unique_names(table_name: str, kind: str, names: Iterable[str]) -> None:
        seen = set()
        for name in names:
            if name in seen:
                raise ConfigurationError(
                    f"Two {kind} declarations on {table_name} resolve to the name {name}",
                    context={"table_name": table_name, "name": name}
                )
            seen.add(name)

    # ------------------------------------------------------------------
    # Infrastructure
    # ------------------------------------------------------------------

    def create_partition_schema(self) -> None:
        schema = self.configurator.schema_name()
        self._execute(
            "create_partition_schema",
            schema,
            [f"CREATE SCHEMA IF NOT EXISTS {self.preparer.quote(schema)}"]
        )

    def add_parent_table_rules(self, *values) -> None:
        table = self.configurator.table_name(*values)
        function = f"{self.preparer.quote(self.configurator.schema_name())}.{INSERT_GUARD_FUNCTION}"
        quoted_table = self._quote_table(table)
        self._execute(
            "add_parent_table_rules",
            table,
            [
                f"""
                CREATE OR REPLACE FUNCTION {function}() RETURNS trigger
                LANGUAGE plpgsql AS $$
                BEGIN
                    RAISE EXCEPTION 'direct inserts into %.% are not allowed, insert into a leaf partition',
                        TG_TABLE_SCHEMA, TG_TABLE_NAME;
                END
                $$
                """,
                f"DROP TRIGGER IF EXISTS {INSERT_GUARD_TRIGGER} ON {quoted_table}",
                f"""
                CREATE TRIGGER {INSERT_GUARD_TRIGGER} BEFORE INSERT ON {quoted_table}
                FOR EACH ROW EXECUTE FUNCTION {function}()
                """,
            ]
        )

    # ------------------------------------------------------------------
    # Partition tables
    # ------------------------------------------------------------------

    def create_partition_table(self, *values) -> None:
        table = self.configurator.table_name(*values)
        parent = self.configurator.parent_table_name(*values)
        constraint = self.configurator.check_constraint(*values)
        self._execute(
            "create_partition_table",
            table,
            [
                f"CREATE TABLE IF NOT EXISTS {self._quote_table(table)} "
                f"(CHECK ({constraint})) INHERITS ({self._quote_table(parent)})"
            ]
        )

    def drop_partition_table(self, *values) -> None:
        table = self.configurator.table_name(*values)
        self._execute(
            "drop_partition_table",
            table,
            [f"DROP TABLE IF EXISTS {self._quote_table(table)} CASCADE"]
        )

    def add_partition_table_index(self, *values) -> None:
        table = self.configurator.table_name(*values)
        part_name = self.configurator.part_name(*values)
        indexes = []
        for columns, options in self.configurator.indexes(*values).items():
            columns = (columns,) if isinstance(columns, str) else tuple(columns)
            indexes.append((self._index_name(part_name, columns, options), columns, options))
        self._require_unique_names(table, "index", [name for name, _, _ in indexes])

        statements = []
        for name, columns, options in indexes:
            statement = (
                f"CREATE {'UNIQUE ' if options.unique else ''}INDEX IF NOT EXISTS "
                f"{self.preparer.quote(name)} ON {self._quote_table(table)}"
            )
            if options.using:
                statement += f" USING {options.using}"
            statement += f" ({', '.join(self.preparer.quote(c) for c in columns)})"
            if options.where:
                statement += f" WHERE {options.where}"
            statements.append(statement)
        if statements:
            self._execute("add_partition_table_index", table, statements)

    def add_references_to_partition_table(self, *values) -> None:
        table = self.configurator.table_name(*values)
        part_name = self.configurator.part_name(*values)
        specs = sorted(
            self.configurator.foreign_keys(*values),
            key=lambda s: (s.field, s.referenced_table, s.referenced_field)
        )
        keys = [(self._foreign_key_name(part_name, spec), spec) for spec in specs]
        self._require_unique_names(table, "foreign key", [name for name, _ in keys])

        statements = []
        for name, spec in keys:
            if self._constraint_exists(table, name):
                logger.debug(f"Foreign key {name} already exists on {table}")
                continue
            statement = (
                f"ALTER TABLE {self._quote_table(table)} ADD CONSTRAINT {self.preparer.quote(name)} "
                f"FOREIGN KEY ({self.preparer.quote(spec.field)}) "
                f"REFERENCES {self._quote_table(spec.referenced_table)} ({self.preparer.quote(spec.referenced_field)})"
            )
            if spec.on_delete:
                statement += f" ON DELETE {spec.on_delete}"
            statements.append(statement)
        if statements:
            self._execute("add_references_to_partition_table", table, statements)

    def archive_partition_table(self, *values) -> None:
        """Detach a leaf from the hierarchy and move it to the archive schema"""
        if not self.partition_exists(*values):
            logger.info(f"Partition {self.configurator.table_name(*values)} already archived or dropped")
            return
        table = self._quote_table(self.configurator.table_name(*values))
        parent = self._quote_table(self.configurator.parent_table_name(*values))
        archive_schema = self.preparer.quote(self.configurator.archive_schema_name())
        self._execute(
            "archive_partition_table",
            self.configurator.table_name(*values),
            [
                f"CREATE SCHEMA IF NOT EXISTS {archive_schema}",
                f"ALTER TABLE {table} NO INHERIT {parent}",
                f"ALTER TABLE {table} SET SCHEMA {archive_schema}",
            ]
        )

    # ------------------------------------------------------------------
    # Catalog queries
    # ------------------------------------------------------------------

    def _order_by(self, order_type: OrderType) -> str:
        if order_type.kind == "sql":
            return order_type.clause
        direction = "DESC" if order_type.descending else "ASC"
        if order_type.kind == "numeric":
            return f"length(c.relname) {direction}, c.relname {direction}"
        return f"c.relname {direction}"

    def child_partition_names(self, *values) -> List[str]:
        parent = self.configurator.table_name(*values)
        query = f"""
            SELECT n.nspname || '.' || c.relname AS partition_name
            FROM pg_inherits i
            JOIN pg_class c ON c.oid = i.inhrelid
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE i.inhparent = to_regclass(:parent)
            ORDER BY {self._order_by(self.configurator.order_type(*values))}
        """
        rows = self._fetch("child_partition_names", parent, query, parent=parent)
        return [row.partition_name for row in rows]

    def partition_exists(self, *values) -> bool:
        table = self.configurator.table_name(*values)
        rows = self._fetch(
            "partition_exists",
            table,
            "SELECT to_regclass(:table_name) IS NOT NULL AS present",
            table_name=table
        )
        return bool(rows and rows[0].present)

    def _constraint_exists(self, table: str, name: str) -> bool:
        rows = self._fetch(
            "constraint_exists",
            table,
            "SELECT 1 FROM pg_constraint WHERE conrelid = to_regclass(:table_name) AND conname = :name",
            table_name=table,
            name=name
        )
        return bool(rows)
