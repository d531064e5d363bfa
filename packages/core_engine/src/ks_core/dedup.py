"""Collapse normalized test records into a minimal set of constraint specs per table."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ks_core import issues as codes
from ks_core.errors import DuplicatePrimaryKeyError
from ks_core.issues import Issue
from ks_core.model import (
    FOREIGN_KEY,
    PRIMARY_KEY,
    UNIQUE_KEY,
    ConstraintSpec,
    TestRecord,
    fold,
    is_legacy,
)

logger = logging.getLogger(__name__)


@dataclass
class DedupResult:
    specs_by_table: Dict[Tuple[str, str, str], List[ConstraintSpec]] = field(default_factory=dict)
    issues: List[Issue] = field(default_factory=list)
    failures: List[DuplicatePrimaryKeyError] = field(default_factory=list)
    # PK spec key -> the UK on the same columns, used if that PK is skipped
    fallbacks: Dict[Tuple, ConstraintSpec] = field(default_factory=dict)

    @property
    def specs(self) -> List[ConstraintSpec]:
        return [spec for table_key in sorted(self.specs_by_table) for spec in self.specs_by_table[table_key]]


def _spec_from(record: TestRecord) -> ConstraintSpec:
    return ConstraintSpec(
        kind=record.constraint_kind,
        table=record.table,
        columns=record.columns,
        ref_table=record.ref_table,
        ref_columns=record.ref_columns,
        tests=(record,),
        quote_columns=record.quote_columns,
    )


def _merge(spec: ConstraintSpec, record: TestRecord) -> ConstraintSpec:
    quote = spec.quote_columns if spec.quote_columns is not None else record.quote_columns
    return ConstraintSpec(
        kind=spec.kind,
        table=spec.table,
        columns=spec.columns,
        ref_table=spec.ref_table,
        ref_columns=spec.ref_columns,
        tests=spec.tests + (record,),
        quote_columns=quote,
    )


def _collapse(records: List[TestRecord]) -> List[ConstraintSpec]:
    """Collapse records of one effective kind, new-style tests first."""
    merged: Dict[Tuple, ConstraintSpec] = {}
    new_style = set()
    for record in sorted(records, key=lambda r: is_legacy(r.kind)):
        spec = _spec_from(record)
        key = spec.key
        if key not in merged:
            merged[key] = spec
            if not is_legacy(record.kind):
                new_style.add(key)
        elif is_legacy(record.kind) and key in new_style:
            logger.debug("Ignoring %s, covered by a new-style test on %s", record.test_id, spec.describe())
        else:
            merged[key] = _merge(merged[key], record)
    return list(merged.values())


def deduplicate_table(
    records: List[TestRecord], fallbacks: Optional[Dict[Tuple, ConstraintSpec]] = None
) -> List[ConstraintSpec]:
    """Deduplicate the records of a single table.

    A UK on the primary key's columns is dropped; when ``fallbacks`` is given
    it is kept there under the PK's key. Raises DuplicatePrimaryKeyError when
    primary_key tests disagree on columns.
    """
    by_kind: Dict[str, List[TestRecord]] = {PRIMARY_KEY: [], UNIQUE_KEY: [], FOREIGN_KEY: []}
    for record in records:
        by_kind[record.constraint_kind].append(record)

    pks = _collapse(by_kind[PRIMARY_KEY])
    if len(pks) > 1:
        raise DuplicatePrimaryKeyError(pks[0].table.name, [spec.columns for spec in pks])

    pk_set = set(fold(pks[0].columns)) if pks else None
    uks: List[ConstraintSpec] = []
    for spec in _collapse(by_kind[UNIQUE_KEY]):
        if pk_set is not None and set(fold(spec.columns)) == pk_set:
            logger.debug("Ignoring %s, same columns as the primary key", spec.describe())
            if fallbacks is not None:
                fallbacks[pks[0].key] = spec
            continue
        uks.append(spec)

    fks = _collapse(by_kind[FOREIGN_KEY])
    return sorted(pks + uks + fks, key=lambda spec: spec.sort_key)


def deduplicate(records: List[TestRecord]) -> DedupResult:
    grouped: Dict[Tuple[str, str, str], List[TestRecord]] = {}
    for record in records:
        grouped.setdefault(record.table.key, []).append(record)

    result = DedupResult()
    for table_key in sorted(grouped):
        table_records = grouped[table_key]
        try:
            result.specs_by_table[table_key] = deduplicate_table(table_records, result.fallbacks)
        except DuplicatePrimaryKeyError as exc:
            logger.warning("Skipping all constraints on %s: %s", exc.table, exc.message)
            result.failures.append(exc)
            result.issues.append(codes.error(codes.DUPLICATE_PRIMARY_KEY, exc.message, exc.table or "/"))
            result.specs_by_table[table_key] = []
    return result
