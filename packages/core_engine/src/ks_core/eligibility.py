"""Decide, per constraint spec, whether it can be synthesized or must be skipped."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ks_core import issues as codes
from ks_core.config import RunConfig
from ks_core.dialects.base import Dialect
from ks_core.errors import MissingParentKeyError
from ks_core.issues import Issue
from ks_core.model import FOREIGN_KEY, ConstraintSpec, TableIdentity, fold
from ks_core.normalizer import is_identifier

logger = logging.getLogger(__name__)

ParentKeyLookup = Callable[[TableIdentity, Sequence[str]], bool]


@dataclass
class EligibilityResult:
    eligible: List[ConstraintSpec] = field(default_factory=list)
    # FK spec key -> key of the PK/UK spec it depends on
    edges: Dict[Tuple, Tuple] = field(default_factory=dict)
    skipped: List[Tuple[ConstraintSpec, str]] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)


def _materialization_reason(spec: ConstraintSpec) -> Optional[str]:
    if not spec.table.is_constrainable:
        return f"{spec.table.name} is materialized as {spec.table.materialization}"
    if spec.ref_table is not None and not spec.ref_table.is_constrainable:
        return f"referenced {spec.ref_table.name} is materialized as {spec.ref_table.materialization}"
    return None


def _status_reason(spec: ConstraintSpec) -> Optional[Tuple[str, str]]:
    if spec.always_create:
        return None
    failed = [t.test_id for t in spec.tests if t.status is not None and not t.passed]
    if failed:
        return codes.SKIP_TEST_FAILED, f"test did not pass: {', '.join(failed)}"
    missing = [t.test_id for t in spec.tests if t.status is None]
    if missing:
        return codes.SKIP_TEST_NOT_RUN, f"no result for test: {', '.join(missing)}"
    if spec.filtered:
        return codes.SKIP_FILTERED_TEST, "test has a where filter and does not cover every row"
    return None


def skip_reason(spec: ConstraintSpec, config: RunConfig, dialect: Dialect) -> Optional[Tuple[str, str]]:
    """Checks that do not depend on other specs. Returns (code, message) or None."""
    if not config.kind_enabled(spec.kind):
        return codes.SKIP_DISABLED, f"{spec.kind} constraints are disabled"
    if not dialect.supports(spec.kind):
        return codes.SKIP_UNSUPPORTED, f"{dialect.display_name} does not support {spec.kind} constraints"

    reason = _materialization_reason(spec)
    if reason:
        return codes.SKIP_MATERIALIZATION, reason

    status = _status_reason(spec)
    if status:
        return status

    columns = list(spec.columns) + list(spec.ref_columns)
    bad = [col for col in columns if not is_identifier(col)]
    if bad:
        return codes.MALFORMED_TEST, f"not bare column names: {', '.join(map(repr, bad))}"
    return None


def find_parent(spec: ConstraintSpec, candidates: List[ConstraintSpec]) -> Optional[ConstraintSpec]:
    """The PK/UK whose columns equal the FK's referenced columns, position by position."""
    wanted = fold(spec.ref_columns)
    for candidate in candidates:
        if fold(candidate.columns) == wanted:
            return candidate
    return None


def filter_eligible(
    specs_by_table: Dict[Tuple[str, str, str], List[ConstraintSpec]],
    config: RunConfig,
    dialect: Dialect,
    parent_key_exists: Optional[ParentKeyLookup] = None,
    fallbacks: Optional[Dict[Tuple, ConstraintSpec]] = None,
) -> EligibilityResult:
    """Split specs into eligible and skipped, and link each FK to its parent key.

    ``fallbacks`` maps a PK's key to a UK on the same columns that stands in
    for the PK when the PK itself is skipped.
    """
    result = EligibilityResult()
    fallbacks = fallbacks or {}

    def skip(spec: ConstraintSpec, code: str, message: str) -> None:
        logger.debug("Skipping %s: %s", spec.describe(), message)
        result.skipped.append((spec, code))
        severity = codes.warn if code == codes.MALFORMED_TEST else codes.info
        result.issues.append(severity(code, f"{spec.describe()}: {message}", spec.table.name))

    ordered = [spec for key in sorted(specs_by_table) for spec in specs_by_table[key]]

    parents: Dict[Tuple[str, str, str], List[ConstraintSpec]] = {}
    for spec in ordered:
        if spec.kind == FOREIGN_KEY:
            continue
        reason = skip_reason(spec, config, dialect)
        if reason:
            skip(spec, *reason)
            standby = fallbacks.get(spec.key)
            if standby is None or skip_reason(standby, config, dialect) is not None:
                continue
            logger.debug("Using %s in place of the skipped primary key", standby.describe())
            spec = standby
        result.eligible.append(spec)
        parents.setdefault(spec.table.key, []).append(spec)

    for spec in ordered:
        if spec.kind != FOREIGN_KEY:
            continue
        reason = skip_reason(spec, config, dialect)
        if reason:
            skip(spec, *reason)
            continue

        parent = find_parent(spec, parents.get(spec.ref_table.key, []))
        if parent is not None:
            result.eligible.append(spec)
            result.edges[spec.key] = parent.key
            continue

        if parent_key_exists is not None and parent_key_exists(spec.ref_table, spec.ref_columns):
            logger.debug("Parent key for %s already exists in the database", spec.describe())
            result.eligible.append(spec)
            continue

        missing = MissingParentKeyError(spec.table.name, spec.ref_table.name, spec.ref_columns)
        skip(spec, codes.MISSING_PARENT_KEY, missing.message)

    return result
