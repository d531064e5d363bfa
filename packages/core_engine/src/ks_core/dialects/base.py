"""Dialect interface and registry.

A dialect renders constraint DDL and the introspection queries used to find
constraints that already exist. Adding a database means adding one subclass
and registering it; the pipeline never branches on dialect names.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ks_core.model import FOREIGN_KEY, PRIMARY_KEY, UNIQUE_KEY, TableIdentity, kind_suffix

# (fk columns, referenced table as [schema.]identifier, referenced columns)
ForeignKeyRow = Tuple[Tuple[str, ...], str, Tuple[str, ...]]


def sql_literal(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def referenced_table(row: Dict[str, Any]) -> str:
    """``schema.table`` when the introspection row carries the schema, else the table."""
    schema = str(row.get("pk_schema_name") or "")
    table = str(row.get("pk_table_name", ""))
    return f"{schema}.{table}" if schema else table


def group_rows(
    rows: Iterable[Dict[str, Any]],
    name_key: str = "constraint_name",
    sequence_key: str = "ordinal_position",
) -> Dict[str, List[Dict[str, Any]]]:
    """Group introspection rows by constraint name, ordered by key position."""
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows:
        grouped.setdefault(str(row.get(name_key, "")), []).append(row)
    for name, members in grouped.items():
        if all(member.get(sequence_key) is not None for member in members):
            members.sort(key=lambda member: int(member[sequence_key]))
    return grouped


class Dialect(ABC):
    """Abstract base class for all SQL dialects."""

    name: str = ""
    display_name: str = ""
    required_package: str = ""
    quote_char: str = '"'
    max_identifier_length: int = 255
    supported_kinds: Tuple[str, ...] = (PRIMARY_KEY, UNIQUE_KEY, FOREIGN_KEY)
    uppercase_names: bool = False

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def quote(self, identifier: str) -> str:
        escaped = identifier.replace(self.quote_char, self.quote_char * 2)
        return f"{self.quote_char}{escaped}{self.quote_char}"

    def relation_name(self, table: TableIdentity) -> str:
        return ".".join(part for part in (table.database, table.schema, table.identifier) if part)

    def column_list(self, columns: Sequence[str], quote_columns: bool = False) -> str:
        if quote_columns:
            return ", ".join(self.quote(col) for col in columns)
        return ", ".join(columns)

    def constraint_name(
        self,
        table: TableIdentity,
        columns: Sequence[str],
        kind: str,
        ref_table: Optional[TableIdentity] = None,
    ) -> str:
        """Deterministic name; foreign keys also carry the referenced table."""
        parts = [table.identifier, *columns]
        if kind == FOREIGN_KEY and ref_table is not None:
            parts.append(ref_table.identifier)
        raw = "_".join([*parts, kind_suffix(kind)])
        name = raw.upper() if self.uppercase_names else raw.lower()
        if len(name) <= self.max_identifier_length:
            return name
        digest = hashlib.md5(name.encode("utf-8")).hexdigest()[:8]
        return f"{name[: self.max_identifier_length - 9]}_{digest}"

    def supports(self, kind: str) -> bool:
        return kind in self.supported_kinds

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    def hint(self, kind: str, rely: bool) -> str:
        """Optimizer hint appended to a constraint clause, with leading space."""
        return ""

    def create_primary_key_sql(
        self, table: TableIdentity, columns: Sequence[str], quote_columns: bool = False, rely: bool = True
    ) -> str:
        name = self.constraint_name(table, columns, PRIMARY_KEY)
        return (
            f"ALTER TABLE {self.relation_name(table)} ADD CONSTRAINT {name} "
            f"PRIMARY KEY ({self.column_list(columns, quote_columns)}){self.hint(PRIMARY_KEY, rely)}"
        )

    def create_unique_key_sql(
        self, table: TableIdentity, columns: Sequence[str], quote_columns: bool = False, rely: bool = True
    ) -> str:
        name = self.constraint_name(table, columns, UNIQUE_KEY)
        return (
            f"ALTER TABLE {self.relation_name(table)} ADD CONSTRAINT {name} "
            f"UNIQUE ({self.column_list(columns, quote_columns)}){self.hint(UNIQUE_KEY, rely)}"
        )

    def create_foreign_key_sql(
        self,
        table: TableIdentity,
        columns: Sequence[str],
        ref_table: TableIdentity,
        ref_columns: Sequence[str],
        quote_columns: bool = False,
        rely: bool = True,
    ) -> str:
        name = self.constraint_name(table, columns, FOREIGN_KEY, ref_table)
        return (
            f"ALTER TABLE {self.relation_name(table)} ADD CONSTRAINT {name} "
            f"FOREIGN KEY ({self.column_list(columns, quote_columns)}) "
            f"REFERENCES {self.relation_name(ref_table)} ({self.column_list(ref_columns, quote_columns)})"
            f"{self.hint(FOREIGN_KEY, rely)}"
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @abstractmethod
    def unique_keys_queries(self, table: TableIdentity) -> List[str]:
        """Queries listing primary and unique key columns of ``table``."""

    @abstractmethod
    def foreign_keys_queries(self, table: TableIdentity) -> List[str]:
        """Queries listing foreign key columns of ``table`` and what they reference."""

    def parse_unique_keys(self, rows: List[Dict[str, Any]]) -> List[Tuple[str, ...]]:
        grouped = group_rows(rows)
        return [tuple(str(row["column_name"]) for row in members) for members in grouped.values()]

    def parse_foreign_keys(self, rows: List[Dict[str, Any]]) -> List[ForeignKeyRow]:
        grouped = group_rows(rows)
        result: List[ForeignKeyRow] = []
        for members in grouped.values():
            result.append(
                (
                    tuple(str(row["column_name"]) for row in members),
                    referenced_table(members[0]),
                    tuple(str(row["pk_column_name"]) for row in members),
                )
            )
        return result


# ---------------------------------------------------------------------------
# Dialect registry
# ---------------------------------------------------------------------------

_REGISTRY: Dict[str, Dialect] = {}


def _register(dialect: Dialect) -> None:
    _REGISTRY[dialect.name] = dialect


def get_dialect(name: str) -> Optional[Dialect]:
    """Get a dialect by name."""
    return _REGISTRY.get((name or "").lower())


def list_dialects() -> List[Dict[str, Any]]:
    """List all registered dialects with their driver status."""
    from ks_core.connections import check_driver

    result = []
    for name, dialect in sorted(_REGISTRY.items()):
        ok, msg = check_driver(dialect.required_package)
        result.append({
            "name": name,
            "display_name": dialect.display_name,
            "driver": dialect.required_package or "none",
            "installed": ok,
            "status": msg,
            "constraints": [kind_suffix(kind) for kind in dialect.supported_kinds],
        })
    return result


def register_all() -> None:
    """Register all built-in dialects."""
    from ks_core.dialects.bigquery import BigQueryDialect
    from ks_core.dialects.databricks import DatabricksDialect
    from ks_core.dialects.postgres import PostgresDialect
    from ks_core.dialects.redshift import RedshiftDialect
    from ks_core.dialects.snowflake import SnowflakeDialect

    for cls in [
        SnowflakeDialect,
        PostgresDialect,
        RedshiftDialect,
        BigQueryDialect,
        DatabricksDialect,
    ]:
        _register(cls())
