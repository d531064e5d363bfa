"""Database adapter boundary.

The pipeline talks to the database only through the five operations of
``ConstraintAdapter``. ``SqlConstraintAdapter`` runs them against a live
connection; ``PlanAdapter`` keeps an in-memory catalog for dry runs.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ks_core.dialects.base import Dialect, ForeignKeyRow
from ks_core.errors import ExecutionError
from ks_core.model import TableIdentity, fold

logger = logging.getLogger(__name__)


def unique_matches(existing: Sequence[str], columns: Sequence[str]) -> bool:
    return set(fold(tuple(existing))) == set(fold(tuple(columns)))


def foreign_key_matches(
    existing: ForeignKeyRow,
    columns: Sequence[str],
    ref_table: TableIdentity,
    ref_columns: Sequence[str],
) -> bool:
    """Same column pairing and same referenced table; the schema is compared when known."""
    fk_columns, pk_table_name, pk_columns = existing
    parts = pk_table_name.upper().split(".")
    if parts[-1] != ref_table.identifier.upper():
        return False
    if len(parts) > 1 and ref_table.schema and parts[-2] != ref_table.schema.upper():
        return False
    if len(fk_columns) != len(pk_columns):
        return False
    existing_pairs = sorted(zip(fold(tuple(fk_columns)), fold(tuple(pk_columns))))
    return existing_pairs == sorted(zip(fold(tuple(columns)), fold(tuple(ref_columns))))


# ---------------------------------------------------------------------------
# Execution layer
# ---------------------------------------------------------------------------


class Executor(ABC):
    """Runs SQL against the target database."""

    @abstractmethod
    def execute(self, sql: str) -> None:
        """Run a statement that returns no rows."""

    @abstractmethod
    def fetch(self, sql: str) -> List[Dict[str, Any]]:
        """Run a query and return rows keyed by lower-cased column name."""


class DbApiExecutor(Executor):
    """Executor over any PEP 249 connection."""

    def __init__(self, connection: Any) -> None:
        self.connection = connection

    def execute(self, sql: str) -> None:
        cur = self.connection.cursor()
        try:
            cur.execute(sql)
        finally:
            cur.close()

    def fetch(self, sql: str) -> List[Dict[str, Any]]:
        cur = self.connection.cursor()
        try:
            cur.execute(sql)
            names = [str(col[0]).lower() for col in (cur.description or [])]
            return [dict(zip(names, row)) for row in cur.fetchall()]
        finally:
            cur.close()

    def close(self) -> None:
        self.connection.close()


class DryRunExecutor(Executor):
    """Reads through to a live executor but only records DDL."""

    def __init__(self, inner: Executor) -> None:
        self.inner = inner
        self.recorded: List[str] = []

    def execute(self, sql: str) -> None:
        self.recorded.append(sql)

    def fetch(self, sql: str) -> List[Dict[str, Any]]:
        return self.inner.fetch(sql)


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class ConstraintAdapter(ABC):
    """The five database operations the pipeline relies on."""

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect

    @abstractmethod
    def create_primary_key(
        self, table: TableIdentity, columns: Sequence[str], quote_columns: bool = False, rely: bool = True
    ) -> str:
        """Create a primary key; returns the statement issued."""

    @abstractmethod
    def create_unique_key(
        self, table: TableIdentity, columns: Sequence[str], quote_columns: bool = False, rely: bool = True
    ) -> str:
        """Create a unique key; returns the statement issued."""

    @abstractmethod
    def create_foreign_key(
        self,
        table: TableIdentity,
        columns: Sequence[str],
        ref_table: TableIdentity,
        ref_columns: Sequence[str],
        quote_columns: bool = False,
        rely: bool = True,
    ) -> str:
        """Create a foreign key; returns the statement issued."""

    @abstractmethod
    def unique_constraint_exists(self, table: TableIdentity, columns: Sequence[str]) -> bool:
        """True if a primary or unique key already covers exactly ``columns``."""

    @abstractmethod
    def foreign_key_exists(
        self,
        table: TableIdentity,
        columns: Sequence[str],
        ref_table: TableIdentity,
        ref_columns: Sequence[str],
    ) -> bool:
        """True if an equivalent foreign key already exists."""


class SqlConstraintAdapter(ConstraintAdapter):
    """Adapter that renders SQL with a dialect and runs it through an executor."""

    def __init__(self, dialect: Dialect, executor: Executor) -> None:
        super().__init__(dialect)
        self.executor = executor
        self.statement_count = 0

    def _execute(self, sql: str, table: TableIdentity) -> str:
        self.statement_count += 1
        try:
            self.executor.execute(sql)
        except Exception as exc:
            raise ExecutionError(sql, exc, statement_index=self.statement_count, table=table.name) from exc
        logger.info("Executed: %s", sql)
        return sql

    def _fetch_all(self, queries: List[str], table: TableIdentity) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for sql in queries:
            self.statement_count += 1
            try:
                rows.extend(self.executor.fetch(sql))
            except Exception as exc:
                raise ExecutionError(sql, exc, statement_index=self.statement_count, table=table.name) from exc
        return rows

    def create_primary_key(self, table, columns, quote_columns=False, rely=True):
        return self._execute(self.dialect.create_primary_key_sql(table, columns, quote_columns, rely), table)

    def create_unique_key(self, table, columns, quote_columns=False, rely=True):
        return self._execute(self.dialect.create_unique_key_sql(table, columns, quote_columns, rely), table)

    def create_foreign_key(self, table, columns, ref_table, ref_columns, quote_columns=False, rely=True):
        sql = self.dialect.create_foreign_key_sql(table, columns, ref_table, ref_columns, quote_columns, rely)
        return self._execute(sql, table)

    def unique_constraint_exists(self, table, columns):
        rows = self._fetch_all(self.dialect.unique_keys_queries(table), table)
        return any(unique_matches(existing, columns) for existing in self.dialect.parse_unique_keys(rows))

    def foreign_key_exists(self, table, columns, ref_table, ref_columns):
        rows = self._fetch_all(self.dialect.foreign_keys_queries(table), table)
        return any(
            foreign_key_matches(existing, columns, ref_table, ref_columns)
            for existing in self.dialect.parse_foreign_keys(rows)
        )


class PlanAdapter(ConstraintAdapter):
    """Dry-run adapter backed by an in-memory constraint catalog.

    Created constraints are added to the catalog, so a second run against the
    same adapter emits nothing.
    """

    def __init__(self, dialect: Dialect) -> None:
        super().__init__(dialect)
        self.statements: List[str] = []
        self.introspections = 0
        self._unique: Dict[Tuple[str, str, str], List[Tuple[str, ...]]] = {}
        self._foreign: Dict[Tuple[str, str, str], List[ForeignKeyRow]] = {}

    def add_unique(self, table: TableIdentity, columns: Sequence[str]) -> None:
        self._unique.setdefault(table.key, []).append(tuple(columns))

    def add_foreign_key(
        self,
        table: TableIdentity,
        columns: Sequence[str],
        ref_table: TableIdentity,
        ref_columns: Sequence[str],
    ) -> None:
        ref_name = f"{ref_table.schema}.{ref_table.identifier}" if ref_table.schema else ref_table.identifier
        self._foreign.setdefault(table.key, []).append((tuple(columns), ref_name, tuple(ref_columns)))

    def create_primary_key(self, table, columns, quote_columns=False, rely=True):
        sql = self.dialect.create_primary_key_sql(table, columns, quote_columns, rely)
        self.statements.append(sql)
        self.add_unique(table, columns)
        return sql

    def create_unique_key(self, table, columns, quote_columns=False, rely=True):
        sql = self.dialect.create_unique_key_sql(table, columns, quote_columns, rely)
        self.statements.append(sql)
        self.add_unique(table, columns)
        return sql

    def create_foreign_key(self, table, columns, ref_table, ref_columns, quote_columns=False, rely=True):
        sql = self.dialect.create_foreign_key_sql(table, columns, ref_table, ref_columns, quote_columns, rely)
        self.statements.append(sql)
        self.add_foreign_key(table, columns, ref_table, ref_columns)
        return sql

    def unique_constraint_exists(self, table, columns):
        self.introspections += 1
        return any(unique_matches(existing, columns) for existing in self._unique.get(table.key, []))

    def foreign_key_exists(self, table, columns, ref_table, ref_columns):
        self.introspections += 1
        return any(
            foreign_key_matches(existing, columns, ref_table, ref_columns)
            for existing in self._foreign.get(table.key, [])
        )


def build_adapter(dialect: Dialect, connection: Optional[Any] = None) -> ConstraintAdapter:
    """A live adapter when a connection is given, otherwise a dry-run one."""
    if connection is None:
        return PlanAdapter(dialect)
    return SqlConstraintAdapter(dialect, DbApiExecutor(connection))
