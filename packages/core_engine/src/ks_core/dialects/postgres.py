"""PostgreSQL dialect: constraints are enforced, so no optimizer hints."""

from __future__ import annotations

from typing import List

from ks_core.dialects.base import Dialect, sql_literal
from ks_core.model import TableIdentity


class PostgresDialect(Dialect):
    name = "postgres"
    display_name = "PostgreSQL"
    required_package = "psycopg2"
    max_identifier_length = 63

    information_schema = "information_schema"

    def _table_filter(self, alias: str, table: TableIdentity) -> str:
        return (
            f"upper({alias}.table_schema) = upper({sql_literal(table.schema)})\n"
            f"  AND upper({alias}.table_name) = upper({sql_literal(table.identifier)})"
        )

    def unique_keys_queries(self, table: TableIdentity) -> List[str]:
        ischema = self.information_schema
        return [
            f"""SELECT tc.constraint_name, kcu.column_name, kcu.ordinal_position
FROM {ischema}.table_constraints tc
JOIN {ischema}.key_column_usage kcu
  ON tc.constraint_schema = kcu.constraint_schema
 AND tc.constraint_name = kcu.constraint_name
WHERE tc.constraint_type IN ('PRIMARY KEY', 'UNIQUE')
  AND {self._table_filter('tc', table)}
ORDER BY tc.constraint_name, kcu.ordinal_position"""
        ]

    def foreign_keys_queries(self, table: TableIdentity) -> List[str]:
        ischema = self.information_schema
        return [
            f"""SELECT kcu.constraint_name, kcu.column_name, kcu.ordinal_position,
       pk.table_schema AS pk_schema_name, pk.table_name AS pk_table_name,
       pk.column_name AS pk_column_name
FROM {ischema}.referential_constraints rc
JOIN {ischema}.key_column_usage kcu
  ON kcu.constraint_schema = rc.constraint_schema
 AND kcu.constraint_name = rc.constraint_name
JOIN {ischema}.key_column_usage pk
  ON pk.constraint_schema = rc.unique_constraint_schema
 AND pk.constraint_name = rc.unique_constraint_name
 AND pk.ordinal_position = kcu.position_in_unique_constraint
WHERE {self._table_filter('kcu', table)}
ORDER BY kcu.constraint_name, kcu.ordinal_position"""
        ]
