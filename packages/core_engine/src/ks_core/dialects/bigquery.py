"""BigQuery dialect: unenforced PRIMARY KEY and FOREIGN KEY, no UNIQUE."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from ks_core.dialects.base import Dialect, ForeignKeyRow, group_rows, referenced_table, sql_literal
from ks_core.model import FOREIGN_KEY, PRIMARY_KEY, TableIdentity


def _distinct(values: List[str]) -> tuple:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen)


class BigQueryDialect(Dialect):
    name = "bigquery"
    display_name = "Google BigQuery"
    required_package = "google.cloud.bigquery"
    quote_char = "`"
    max_identifier_length = 1024
    supported_kinds = (PRIMARY_KEY, FOREIGN_KEY)

    def relation_name(self, table: TableIdentity) -> str:
        parts = [p for p in [table.database, table.schema, table.identifier] if p]
        return ".".join([f"`{p}`" for p in parts])

    def _dataset(self, table: TableIdentity) -> str:
        parts = [p for p in [table.database, table.schema] if p]
        return ".".join([f"`{p}`" for p in parts])

    def hint(self, kind: str, rely: bool) -> str:
        # Mandatory: BigQuery only accepts unenforced keys
        return " NOT ENFORCED"

    def create_primary_key_sql(
        self, table: TableIdentity, columns: Sequence[str], quote_columns: bool = False, rely: bool = True
    ) -> str:
        return (
            f"ALTER TABLE {self.relation_name(table)} "
            f"ADD PRIMARY KEY ({self.column_list(columns, quote_columns)}){self.hint(PRIMARY_KEY, rely)}"
        )

    def unique_keys_queries(self, table: TableIdentity) -> List[str]:
        dataset = self._dataset(table)
        return [
            f"""SELECT tc.constraint_name, kcu.column_name, kcu.ordinal_position
FROM {dataset}.INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
JOIN {dataset}.INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
  ON kcu.constraint_name = tc.constraint_name
 AND kcu.table_name = tc.table_name
WHERE tc.constraint_type = 'PRIMARY KEY'
  AND upper(tc.table_name) = upper({sql_literal(table.identifier)})
ORDER BY tc.constraint_name, kcu.ordinal_position"""
        ]

    def foreign_keys_queries(self, table: TableIdentity) -> List[str]:
        dataset = self._dataset(table)
        return [
            f"""SELECT kcu.constraint_name, kcu.column_name, kcu.ordinal_position,
       ccu.table_schema AS pk_schema_name, ccu.table_name AS pk_table_name, ccu.column_name AS pk_column_name
FROM {dataset}.INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
JOIN {dataset}.INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
  ON kcu.constraint_name = tc.constraint_name
 AND kcu.table_name = tc.table_name
JOIN {dataset}.INFORMATION_SCHEMA.CONSTRAINT_COLUMN_USAGE ccu
  ON ccu.constraint_name = tc.constraint_name
WHERE tc.constraint_type = 'FOREIGN KEY'
  AND upper(tc.table_name) = upper({sql_literal(table.identifier)})
ORDER BY kcu.constraint_name, kcu.ordinal_position"""
        ]

    def parse_foreign_keys(self, rows: List[Dict[str, Any]]) -> List[ForeignKeyRow]:
        # CONSTRAINT_COLUMN_USAGE has no position, so the join fans out per column
        grouped = group_rows(rows)
        result: List[ForeignKeyRow] = []
        for members in grouped.values():
            result.append(
                (
                    _distinct([str(row["column_name"]) for row in members]),
                    referenced_table(members[0]),
                    _distinct([str(row["pk_column_name"]) for row in members]),
                )
            )
        return result
