"""Snowflake dialect: informational constraints with RELY / NORELY."""

from __future__ import annotations

from typing import Any, Dict, List

from ks_core.dialects.base import Dialect, ForeignKeyRow, group_rows, referenced_table
from ks_core.model import TableIdentity


class SnowflakeDialect(Dialect):
    name = "snowflake"
    display_name = "Snowflake"
    required_package = "snowflake.connector"
    max_identifier_length = 255
    uppercase_names = True

    def hint(self, kind: str, rely: bool) -> str:
        # Snowflake never enforces these; RELY lets the optimizer eliminate joins
        return " RELY" if rely else " NORELY"

    def unique_keys_queries(self, table: TableIdentity) -> List[str]:
        relation = self.relation_name(table)
        return [
            f"SHOW PRIMARY KEYS IN TABLE {relation}",
            f"SHOW UNIQUE KEYS IN TABLE {relation}",
        ]

    def foreign_keys_queries(self, table: TableIdentity) -> List[str]:
        return [f"SHOW IMPORTED KEYS IN TABLE {self.relation_name(table)}"]

    def parse_unique_keys(self, rows: List[Dict[str, Any]]) -> List[tuple]:
        grouped = group_rows(rows, name_key="constraint_name", sequence_key="key_sequence")
        return [tuple(str(row["column_name"]) for row in members) for members in grouped.values()]

    def parse_foreign_keys(self, rows: List[Dict[str, Any]]) -> List[ForeignKeyRow]:
        grouped = group_rows(rows, name_key="fk_name", sequence_key="key_sequence")
        result: List[ForeignKeyRow] = []
        for members in grouped.values():
            result.append(
                (
                    tuple(str(row["fk_column_name"]) for row in members),
                    referenced_table(members[0]),
                    tuple(str(row["pk_column_name"]) for row in members),
                )
            )
        return result
