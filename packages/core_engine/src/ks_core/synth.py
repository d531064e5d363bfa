"""Constraint synthesis pipeline.

normalize -> deduplicate -> filter -> order -> existence gate -> emit
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ks_core import issues as codes
from ks_core.adapter import ConstraintAdapter
from ks_core.cache import ExistenceCache
from ks_core.config import RunConfig, load_run_config
from ks_core.dedup import deduplicate
from ks_core.dependency import flatten, resolve_order
from ks_core.eligibility import filter_eligible
from ks_core.errors import ExecutionError, SynthesisError
from ks_core.issues import Issue
from ks_core.metadata import GraphMetadataStore, ProjectMetadata, TestMetadataSource
from ks_core.model import FOREIGN_KEY, PRIMARY_KEY, ConstraintSpec, TableIdentity
from ks_core.normalizer import normalize_tests

logger = logging.getLogger(__name__)


@dataclass
class SynthesisResult:
    """Outcome of one synthesis run."""

    dialect: str
    enabled: bool = True
    statements: List[Tuple[str, str]] = field(default_factory=list)
    created: List[ConstraintSpec] = field(default_factory=list)
    existing: List[ConstraintSpec] = field(default_factory=list)
    skipped: List[Tuple[ConstraintSpec, str]] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)
    failures: List[SynthesisError] = field(default_factory=list)
    execution_errors: List[ExecutionError] = field(default_factory=list)
    tests_found: int = 0
    levels: int = 0

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def sql(self) -> List[str]:
        return [sql for _, sql in self.statements]

    def statements_by_table(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for table, sql in self.statements:
            grouped.setdefault(table, []).append(sql)
        return grouped

    def summary(self) -> str:
        if not self.enabled:
            return "Constraint synthesis is disabled."
        lines = [
            f"Dialect: {self.dialect}",
            f"Tests: {self.tests_found}",
            f"Created: {len(self.created)}",
            f"Already present: {len(self.existing)}",
            f"Skipped: {len(self.skipped)}",
        ]
        if self.execution_errors:
            lines.append(f"Execution errors: {len(self.execution_errors)}")
        if self.failures:
            lines.append(f"Failures: {len(self.failures)}")
            for failure in self.failures:
                lines.append(f"  - {failure}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dialect": self.dialect,
            "enabled": self.enabled,
            "statements": [{"table": table, "sql": sql} for table, sql in self.statements],
            "created": [spec.describe() for spec in self.created],
            "existing": [spec.describe() for spec in self.existing],
            "skipped": [{"constraint": spec.describe(), "reason": code} for spec, code in self.skipped],
            "issues": [issue.to_dict() for issue in self.issues],
            "failures": [failure.to_dict() for failure in self.failures],
            "execution_errors": [err.to_dict() for err in self.execution_errors],
        }


def _emit(adapter: ConstraintAdapter, spec: ConstraintSpec, config: RunConfig) -> str:
    quote = spec.quote_columns if spec.quote_columns is not None else config.quote_columns
    rely = config.rely and spec.rely
    if spec.kind == PRIMARY_KEY:
        return adapter.create_primary_key(spec.table, spec.columns, quote, rely)
    if spec.kind == FOREIGN_KEY:
        return adapter.create_foreign_key(spec.table, spec.columns, spec.ref_table, spec.ref_columns, quote, rely)
    return adapter.create_unique_key(spec.table, spec.columns, quote, rely)


def synthesize_constraints(
    tests: TestMetadataSource,
    graph: GraphMetadataStore,
    adapter: ConstraintAdapter,
    config: RunConfig,
) -> SynthesisResult:
    """Run the whole pipeline and issue DDL through ``adapter``.

    Raises DependencyCycleError before any DDL is issued if the constraints
    cannot be ordered. Every other problem is scoped to a table or a single
    constraint and reported on the result.
    """
    result = SynthesisResult(dialect=adapter.dialect.name, enabled=config.enabled)
    if not config.enabled:
        logger.info("Constraint synthesis is disabled; nothing to do")
        return result

    raw_tests = tests.list_tests()
    result.tests_found = len(raw_tests)
    logger.info("Synthesizing constraints from %d test(s) for %s", len(raw_tests), adapter.dialect.display_name)

    records, issues = normalize_tests(raw_tests, graph)
    result.issues.extend(issues)

    dedup = deduplicate(records)
    result.issues.extend(dedup.issues)
    result.failures.extend(dedup.failures)

    cache = ExistenceCache(adapter)

    def record_execution_error(exc: ExecutionError) -> None:
        logger.warning("%s", exc)
        result.execution_errors.append(exc)
        result.issues.append(codes.warn(codes.EXECUTION_FAILED, exc.message, exc.table or "/"))

    def parent_lookup(table: TableIdentity, columns: Sequence[str]) -> bool:
        try:
            return cache.parent_key_exists(table, columns)
        except ExecutionError as exc:
            record_execution_error(exc)
            return False

    eligibility = filter_eligible(
        dedup.specs_by_table, config, adapter.dialect, parent_key_exists=parent_lookup, fallbacks=dedup.fallbacks
    )
    result.issues.extend(eligibility.issues)
    result.skipped.extend(eligibility.skipped)

    levels = resolve_order(eligibility.eligible, eligibility.edges)
    result.levels = len(levels)

    failed_tables = set()
    satisfied = set()

    def skip(spec: ConstraintSpec, code: str, message: str) -> None:
        logger.debug("Skipping %s: %s", spec.describe(), message)
        result.skipped.append((spec, code))
        result.issues.append(codes.info(code, f"{spec.describe()}: {message}", spec.table.name))

    for spec in flatten(levels):
        if spec.table.key in failed_tables:
            skip(spec, codes.TABLE_ABORTED, "an earlier statement on this table failed")
            continue

        parent_key = eligibility.edges.get(spec.key)
        if parent_key is not None and parent_key not in satisfied:
            skip(spec, codes.MISSING_PARENT_KEY, "the referenced key could not be created")
            continue

        try:
            if cache.exists(spec):
                logger.debug("Already present: %s", spec.describe())
                result.existing.append(spec)
                result.issues.append(
                    codes.info(codes.CONSTRAINT_EXISTS, f"{spec.describe()}: already present", spec.table.name)
                )
                satisfied.add(spec.key)
                continue
            sql = _emit(adapter, spec, config)
        except ExecutionError as exc:
            record_execution_error(exc)
            failed_tables.add(spec.table.key)
            continue

        cache.mark_created(spec)
        satisfied.add(spec.key)
        result.created.append(spec)
        result.statements.append((spec.table.name, sql))

    logger.info(
        "Constraint synthesis finished: %d created, %d already present, %d skipped",
        len(result.created),
        len(result.existing),
        len(result.skipped),
    )
    return result


def synthesize_project(
    project: Dict[str, Any],
    adapter: ConstraintAdapter,
    run_results: Optional[Dict[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> SynthesisResult:
    """Convenience wrapper: synthesize constraints for a parsed project YAML."""
    config = load_run_config(project, overrides)
    metadata = ProjectMetadata(project, run_results)
    return synthesize_constraints(metadata, metadata, adapter, config)
