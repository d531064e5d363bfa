"""Turn raw test declarations into uniform ``TestRecord`` values.

Inline single-column tests are rewritten into the one-element list form so all
later stages only ever deal with column lists.
"""

import logging
import re
from typing import Any, List, Optional, Tuple

from ks_core import issues as codes
from ks_core.errors import MalformedTestError
from ks_core.issues import Issue
from ks_core.metadata import GraphMetadataStore, RawTest
from ks_core.model import (
    FOREIGN_KEY,
    LEGACY_RELATIONSHIP,
    LEGACY_UNIQUE,
    LEGACY_UNIQUE_COMBINATION,
    PRIMARY_KEY,
    UNIQUE_KEY,
    TableIdentity,
    TestRecord,
)

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")

TEST_NAME_KINDS = {
    "primary_key": PRIMARY_KEY,
    "unique_key": UNIQUE_KEY,
    "foreign_key": FOREIGN_KEY,
    "unique": LEGACY_UNIQUE,
    "unique_combination_of_columns": LEGACY_UNIQUE_COMBINATION,
    "relationships": LEGACY_RELATIONSHIP,
}


def is_identifier(value: Any) -> bool:
    return isinstance(value, str) and bool(IDENTIFIER_RE.match(value))


def check_columns(columns: Any, label: str, test_id: str = "", table: Optional[str] = None) -> Tuple[str, ...]:
    """Validate a column list: non-empty, bare identifiers, no repeats."""
    if not isinstance(columns, (list, tuple)) or not columns:
        raise MalformedTestError(f"{label} must be a non-empty list of columns", test_id=test_id, table=table)
    result: List[str] = []
    seen = set()
    for col in columns:
        if not is_identifier(col):
            raise MalformedTestError(
                f"{label} entry {col!r} is not a bare column name", test_id=test_id, table=table
            )
        folded = col.upper()
        if folded in seen:
            raise MalformedTestError(f"{label} repeats column {col!r}", test_id=test_id, table=table)
        seen.add(folded)
        result.append(col)
    return tuple(result)


def _list_arg(raw: RawTest, list_key: str, single_key: str) -> Optional[List[Any]]:
    value = raw.kwargs.get(list_key)
    if value is not None:
        return value if isinstance(value, list) else [value]
    single = raw.kwargs.get(single_key)
    if single is not None:
        return [single]
    return None


def _owning_columns(raw: RawTest, list_key: str) -> Optional[List[Any]]:
    if raw.column_name:
        return [raw.column_name]
    return _list_arg(raw, list_key, "column_name")


def _resolve(graph: GraphMetadataStore, expr: Any, test_id: str, table: str) -> TableIdentity:
    node_id = graph.resolve_relation(expr)
    identity = graph.table_identity(node_id) if node_id else None
    if identity is None:
        raise MalformedTestError(f"Referenced relation {expr!r} is not in the project", test_id=test_id, table=table)
    return identity


def normalize_test(raw: RawTest, graph: GraphMetadataStore) -> Optional[TestRecord]:
    """Normalize one raw test; returns None for tests that back no constraint."""
    kind = TEST_NAME_KINDS.get(raw.name.lower())
    if kind is None:
        return None

    table = graph.table_identity(raw.node_id)
    if table is None:
        raise MalformedTestError(f"Test is attached to unknown node {raw.node_id}", test_id=raw.test_id)

    ref_table = None
    ref_columns: Tuple[str, ...] = ()

    if kind == FOREIGN_KEY:
        if raw.column_name:
            fk_columns = [raw.column_name]
        else:
            fk_columns = _list_arg(raw, "fk_column_names", "fk_column_name")
        columns = check_columns(fk_columns, "fk_column_names", raw.test_id, table.name)
        ref_table = _resolve(graph, raw.kwargs.get("pk_table_name"), raw.test_id, table.name)
        ref_columns = check_columns(
            _list_arg(raw, "pk_column_names", "pk_column_name"), "pk_column_names", raw.test_id, table.name
        )
    elif kind == LEGACY_RELATIONSHIP:
        columns = check_columns(_owning_columns(raw, "column_names"), "column_name", raw.test_id, table.name)
        ref_table = _resolve(graph, raw.kwargs.get("to"), raw.test_id, table.name)
        field = raw.kwargs.get("field")
        ref_columns = check_columns([field] if field is not None else None, "field", raw.test_id, table.name)
    elif kind == LEGACY_UNIQUE_COMBINATION:
        columns = check_columns(
            _list_arg(raw, "combination_of_columns", "column_name"), "combination_of_columns", raw.test_id, table.name
        )
    else:
        columns = check_columns(_owning_columns(raw, "column_names"), "column_names", raw.test_id, table.name)

    if ref_table is not None and len(columns) != len(ref_columns):
        raise MalformedTestError(
            f"Foreign key has {len(columns)} column(s) but references {len(ref_columns)}",
            test_id=raw.test_id,
            table=table.name,
        )

    quote = raw.kwargs.get("quote_columns")
    return TestRecord(
        test_id=raw.test_id,
        kind=kind,
        table=table,
        columns=columns,
        ref_table=ref_table,
        ref_columns=ref_columns,
        status=raw.status,
        inline=raw.inline,
        quote_columns=bool(quote) if quote is not None else None,
        always_create=bool(raw.config.get("always_create_constraint", False)),
        filtered=bool(raw.config.get("where")),
    )


def normalize_tests(raw_tests: List[RawTest], graph: GraphMetadataStore) -> Tuple[List[TestRecord], List[Issue]]:
    records: List[TestRecord] = []
    issues: List[Issue] = []
    for raw in raw_tests:
        try:
            record = normalize_test(raw, graph)
        except MalformedTestError as exc:
            logger.warning("Dropping test %s: %s", raw.test_id, exc)
            issues.append(codes.warn(codes.MALFORMED_TEST, f"{raw.test_id}: {exc.message}", exc.table or raw.node_id))
            continue
        if record is not None:
            records.append(record)
    return records, issues
