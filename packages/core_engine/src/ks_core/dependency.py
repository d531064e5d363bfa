"""Order constraint creation so every foreign key follows the key it references."""

import logging
from typing import Dict, List, Set, Tuple

from ks_core.errors import DependencyCycleError
from ks_core.model import ConstraintSpec

logger = logging.getLogger(__name__)


def resolve_order(specs: List[ConstraintSpec], edges: Dict[Tuple, Tuple]) -> List[List[ConstraintSpec]]:
    """Group specs into dependency levels using Kahn's algorithm.

    ``edges`` maps a dependent constraint key to the key of the constraint it needs.
    Everything in a level depends only on earlier levels, and each level is
    sorted by table, kind, then columns so the output is deterministic.
    """
    by_key: Dict[Tuple, ConstraintSpec] = {}
    for spec in specs:
        by_key.setdefault(spec.key, spec)

    dependents: Dict[Tuple, List[Tuple]] = {key: [] for key in by_key}
    indegree: Dict[Tuple, int] = {key: 0 for key in by_key}
    for child, parent in edges.items():
        if child not in by_key or parent not in by_key:
            raise DependencyCycleError(
                "Dependency edge refers to a constraint that is not being synthesized",
                remaining=[str(child), str(parent)],
            )
        dependents[parent].append(child)
        indegree[child] += 1

    levels: List[List[ConstraintSpec]] = []
    ready = [key for key, degree in indegree.items() if degree == 0]
    placed: Set[Tuple] = set()
    while ready:
        level = sorted((by_key[key] for key in ready), key=lambda spec: spec.sort_key)
        levels.append(level)
        placed.update(ready)
        following: List[Tuple] = []
        for key in ready:
            for child in dependents[key]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    following.append(child)
        ready = following

    if len(placed) != len(by_key):
        remaining = sorted(by_key[key].describe() for key in by_key if key not in placed)
        raise DependencyCycleError(
            f"Cannot order {len(remaining)} constraint(s); dependencies form a cycle",
            remaining=remaining,
        )

    logger.debug("Resolved %d constraint(s) into %d level(s)", len(by_key), len(levels))
    return levels


def flatten(levels: List[List[ConstraintSpec]]) -> List[ConstraintSpec]:
    return [spec for level in levels for spec in level]
