"""Exception hierarchy for constraint synthesis.

Errors are scoped to a single table wherever possible so one misconfigured
model never blocks constraint synthesis for the rest of the project. Only
``DuplicatePrimaryKeyError`` and ``DependencyCycleError`` are reported as
run-level failures.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "SynthesisError",
    "ConfigurationError",
    "MalformedTestError",
    "DuplicatePrimaryKeyError",
    "DependencyCycleError",
    "MissingParentKeyError",
    "ExecutionError",
]


class SynthesisError(Exception):
    """Base exception for all constraint synthesis errors."""

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.table = table
        self.details = details or {}
        text = f"[{table}] {message}" if table else message
        super().__init__(text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "table": self.table,
            "details": self.details,
        }


class ConfigurationError(SynthesisError):
    """Invalid run configuration, project file or dialect name."""


class MalformedTestError(SynthesisError):
    """A test declaration has a shape the engine cannot turn into a constraint.

    The offending record is dropped with a warning; the run continues.
    """

    def __init__(self, message: str, *, test_id: str = "", table: Optional[str] = None) -> None:
        self.test_id = test_id
        super().__init__(message, table=table, details={"test_id": test_id} if test_id else None)


class DuplicatePrimaryKeyError(SynthesisError):
    """Two primary_key tests on one table declare different column sets."""

    def __init__(self, table: str, column_sets: Any) -> None:
        self.column_sets = [list(cols) for cols in column_sets]
        rendered = "; ".join("(" + ", ".join(cols) + ")" for cols in self.column_sets)
        super().__init__(
            f"Conflicting primary keys declared: {rendered}",
            table=table,
            details={"column_sets": self.column_sets},
        )


class DependencyCycleError(SynthesisError):
    """Constraint dependencies could not be ordered. Aborts the whole run."""

    def __init__(self, message: str, *, remaining: Any = None) -> None:
        self.remaining = list(remaining or [])
        super().__init__(message, details={"remaining": self.remaining} if self.remaining else None)


class MissingParentKeyError(SynthesisError):
    """A foreign key references columns with no primary or unique key."""

    def __init__(self, table: str, parent: str, parent_columns: Any) -> None:
        self.parent = parent
        self.parent_columns = list(parent_columns)
        super().__init__(
            f"No primary or unique key on {parent} ({', '.join(self.parent_columns)})",
            table=table,
            details={"parent": parent, "parent_columns": self.parent_columns},
        )


class ExecutionError(SynthesisError):
    """A DDL or introspection statement was rejected by the database."""

    def __init__(self, statement: str, error: Exception, *, statement_index: int = 0, table: Optional[str] = None) -> None:
        self.statement = statement
        self.error = error
        self.statement_index = statement_index
        preview = " ".join(statement.split())
        if len(preview) > 180:
            preview = preview[:177] + "..."
        prefix = f"statement #{statement_index}" if statement_index else "statement"
        super().__init__(
            f"{prefix} failed: {preview} ({error})",
            table=table,
            details={"statement": statement},
        )
