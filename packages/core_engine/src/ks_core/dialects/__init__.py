"""SQL dialects for constraint DDL and constraint introspection.

Each dialect implements the same interface:
  create_*_sql(...) -> str and *_queries(table) -> List[str]
"""

from ks_core.dialects.base import (
    Dialect,
    get_dialect,
    list_dialects,
    register_all,
)
from ks_core.dialects.bigquery import BigQueryDialect
from ks_core.dialects.databricks import DatabricksDialect
from ks_core.dialects.postgres import PostgresDialect
from ks_core.dialects.redshift import RedshiftDialect
from ks_core.dialects.snowflake import SnowflakeDialect

register_all()

__all__ = [
    "BigQueryDialect",
    "DatabricksDialect",
    "Dialect",
    "PostgresDialect",
    "RedshiftDialect",
    "SnowflakeDialect",
    "get_dialect",
    "list_dialects",
]
