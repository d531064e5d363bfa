"""Amazon Redshift dialect.

Redshift accepts PRIMARY KEY, UNIQUE and FOREIGN KEY but treats them as
informational only; the planner trusts them without any extra keyword.
"""

from __future__ import annotations

from ks_core.dialects.postgres import PostgresDialect


class RedshiftDialect(PostgresDialect):
    name = "redshift"
    display_name = "Amazon Redshift"
    required_package = "redshift_connector"
    max_identifier_length = 127
