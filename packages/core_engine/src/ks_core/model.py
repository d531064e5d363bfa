"""Core value types shared by every stage of the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

# Materializations
TABLE = "table"
INCREMENTAL = "incremental"
SNAPSHOT = "snapshot"
VIEW = "view"
EPHEMERAL = "ephemeral"
SOURCE = "source"

CONSTRAINABLE = {TABLE, INCREMENTAL, SNAPSHOT}

# Constraint kinds
PRIMARY_KEY = "primary_key"
UNIQUE_KEY = "unique_key"
FOREIGN_KEY = "foreign_key"

_KIND_RANK = {PRIMARY_KEY: 0, UNIQUE_KEY: 1, FOREIGN_KEY: 2}
_KIND_SUFFIX = {PRIMARY_KEY: "PK", UNIQUE_KEY: "UK", FOREIGN_KEY: "FK"}

# Test kinds
LEGACY_UNIQUE = "legacy_unique"
LEGACY_UNIQUE_COMBINATION = "legacy_unique_combination"
LEGACY_RELATIONSHIP = "legacy_relationship"

TEST_KINDS = {
    PRIMARY_KEY: PRIMARY_KEY,
    UNIQUE_KEY: UNIQUE_KEY,
    FOREIGN_KEY: FOREIGN_KEY,
    LEGACY_UNIQUE: UNIQUE_KEY,
    LEGACY_UNIQUE_COMBINATION: UNIQUE_KEY,
    LEGACY_RELATIONSHIP: FOREIGN_KEY,
}

PASSING_STATUSES = {"pass", "success"}


def constraint_kind(test_kind: str) -> str:
    """Map a test kind to the constraint kind it backs."""
    return TEST_KINDS[test_kind]


def is_legacy(test_kind: str) -> bool:
    return test_kind.startswith("legacy_")


def kind_suffix(kind: str) -> str:
    return _KIND_SUFFIX[kind]


def fold(columns: Tuple[str, ...]) -> Tuple[str, ...]:
    """Case-fold column names for comparison."""
    return tuple(col.upper() for col in columns)


@dataclass(frozen=True)
class TableIdentity:
    node_id: str
    database: str
    schema: str
    identifier: str
    materialization: str = TABLE

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.database.upper(), self.schema.upper(), self.identifier.upper())

    @property
    def name(self) -> str:
        return ".".join(part for part in (self.database, self.schema, self.identifier) if part)

    @property
    def is_source(self) -> bool:
        return self.materialization == SOURCE

    @property
    def is_constrainable(self) -> bool:
        return self.materialization in CONSTRAINABLE


@dataclass(frozen=True)
class TestRecord:
    __test__ = False

    test_id: str
    kind: str
    table: TableIdentity
    columns: Tuple[str, ...]
    ref_table: Optional[TableIdentity] = None
    ref_columns: Tuple[str, ...] = ()
    status: Optional[str] = None
    inline: bool = False
    quote_columns: Optional[bool] = None
    always_create: bool = False
    filtered: bool = False

    @property
    def constraint_kind(self) -> str:
        return constraint_kind(self.kind)

    @property
    def passed(self) -> bool:
        return (self.status or "").lower() in PASSING_STATUSES


@dataclass(frozen=True)
class ConstraintSpec:
    kind: str
    table: TableIdentity
    columns: Tuple[str, ...]
    ref_table: Optional[TableIdentity] = None
    ref_columns: Tuple[str, ...] = ()
    tests: Tuple[TestRecord, ...] = field(default=(), compare=False)
    quote_columns: Optional[bool] = field(default=None, compare=False)

    @property
    def key(self) -> Tuple:
        """Identity of the constraint, independent of declaration order."""
        if self.kind == FOREIGN_KEY:
            pairs = tuple(sorted(zip(fold(self.columns), fold(self.ref_columns))))
            ref_key = self.ref_table.key if self.ref_table else ()
            return (self.table.key, self.kind, pairs, ref_key)
        return (self.table.key, self.kind, tuple(sorted(fold(self.columns))))

    @property
    def sort_key(self) -> Tuple:
        ref_key = self.ref_table.key if self.ref_table else ()
        return (self.table.key, _KIND_RANK[self.kind], fold(self.columns), ref_key, fold(self.ref_columns))

    @property
    def passed(self) -> bool:
        return bool(self.tests) and all(test.passed for test in self.tests)

    @property
    def always_create(self) -> bool:
        return any(test.always_create for test in self.tests)

    @property
    def filtered(self) -> bool:
        return any(test.filtered for test in self.tests)

    @property
    def rely(self) -> bool:
        """Whether the data is known to comply, so optimizer hints are safe."""
        return self.passed and not self.filtered

    def describe(self) -> str:
        text = f"{self.kind}({', '.join(self.columns)}) on {self.table.name}"
        if self.kind == FOREIGN_KEY and self.ref_table is not None:
            text += f" -> {self.ref_table.name}({', '.join(self.ref_columns)})"
        return text
