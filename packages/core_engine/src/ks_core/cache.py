"""Per-run cache of constraint existence checks."""

import logging
from typing import Dict, Sequence, Tuple

from ks_core.adapter import ConstraintAdapter
from ks_core.model import FOREIGN_KEY, ConstraintSpec, TableIdentity, fold

logger = logging.getLogger(__name__)

_UNIQUE = "unique"


class ExistenceCache:
    """Remembers which constraints exist so each one is introspected once per run.

    Primary and unique keys share one lookup: either kind on the same column
    set satisfies both.
    """

    def __init__(self, adapter: ConstraintAdapter) -> None:
        self.adapter = adapter
        self._known: Dict[Tuple, bool] = {}
        self.queries = 0
        self.hits = 0

    @staticmethod
    def _unique_key(table: TableIdentity, columns: Sequence[str]) -> Tuple:
        return (table.key, _UNIQUE, tuple(sorted(fold(tuple(columns)))))

    @staticmethod
    def _spec_key(spec: ConstraintSpec) -> Tuple:
        if spec.kind == FOREIGN_KEY:
            return spec.key
        return ExistenceCache._unique_key(spec.table, spec.columns)

    def _lookup(self, key: Tuple, check) -> bool:
        if key in self._known:
            self.hits += 1
            logger.debug("Existence cache hit for %s", key)
            return self._known[key]
        self.queries += 1
        found = bool(check())
        self._known[key] = found
        return found

    def exists(self, spec: ConstraintSpec) -> bool:
        if spec.kind == FOREIGN_KEY:
            return self._lookup(
                self._spec_key(spec),
                lambda: self.adapter.foreign_key_exists(spec.table, spec.columns, spec.ref_table, spec.ref_columns),
            )
        return self.parent_key_exists(spec.table, spec.columns)

    def parent_key_exists(self, table: TableIdentity, columns: Sequence[str]) -> bool:
        return self._lookup(
            self._unique_key(table, columns),
            lambda: self.adapter.unique_constraint_exists(table, columns),
        )

    def mark_created(self, spec: ConstraintSpec) -> None:
        self._known[self._spec_key(spec)] = True
