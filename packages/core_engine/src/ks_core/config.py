"""Run-scoped configuration for a synthesis run.

Settings come from the project's ``vars:`` block and can be overridden from the
command line (``--vars``), the same way dbt project variables work.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

import yaml

from ks_core.errors import ConfigurationError

_VAR_PREFIX = "constraints_"

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"Variable {_VAR_PREFIX}{name} must be a boolean, got {value!r}")


@dataclass(frozen=True)
class RunConfig:
    """Configuration for one synthesis run."""

    enabled: bool = True
    pk_enabled: bool = True
    uk_enabled: bool = True
    fk_enabled: bool = True
    quote_columns: bool = False
    rely: bool = True
    dialect: str = "snowflake"

    @classmethod
    def from_vars(cls, variables: Optional[Dict[str, Any]] = None) -> "RunConfig":
        """Build a config from ``constraints_*`` variables; other keys are ignored."""
        values: Dict[str, Any] = {}
        known = {f.name: f for f in fields(cls)}
        for raw_key, raw_value in (variables or {}).items():
            key = str(raw_key)
            if not key.startswith(_VAR_PREFIX):
                continue
            name = key[len(_VAR_PREFIX):]
            if name not in known:
                raise ConfigurationError(f"Unknown variable: {key}")
            if name == "dialect":
                values[name] = str(raw_value).strip().lower()
            else:
                values[name] = _as_bool(name, raw_value)
        return cls(**values)

    def merged(self, variables: Optional[Dict[str, Any]] = None) -> "RunConfig":
        """Return a copy with the given ``constraints_*`` variables applied."""
        if not variables:
            return self
        overrides = RunConfig.from_vars(variables)
        changed = {
            f.name: getattr(overrides, f.name)
            for f in fields(self)
            if f"{_VAR_PREFIX}{f.name}" in {str(k) for k in variables}
        }
        return replace(self, **changed)

    def kind_enabled(self, kind: str) -> bool:
        return {
            "primary_key": self.pk_enabled,
            "unique_key": self.uk_enabled,
            "foreign_key": self.fk_enabled,
        }.get(kind, False)

    def to_vars(self) -> Dict[str, Any]:
        return {f"{_VAR_PREFIX}{f.name}": getattr(self, f.name) for f in fields(self)}


def parse_vars(text: str) -> Dict[str, Any]:
    """Parse a ``--vars`` argument: a YAML (or JSON) mapping."""
    if not text or not text.strip():
        return {}
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Could not parse vars: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("Vars must parse to a YAML object/map.")
    return data


def load_run_config(project: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None) -> RunConfig:
    variables = project.get("vars") or {}
    if not isinstance(variables, dict):
        raise ConfigurationError("Project 'vars' must be a map.")
    return RunConfig.from_vars(variables).merged(overrides)
