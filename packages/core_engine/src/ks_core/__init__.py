from ks_core.adapter import DbApiExecutor, PlanAdapter, SqlConstraintAdapter, build_adapter
from ks_core.config import RunConfig, load_run_config, parse_vars
from ks_core.connections import ConnectorConfig, check_connection, open_connection
from ks_core.dialects import get_dialect, list_dialects
from ks_core.errors import (
    ConfigurationError,
    DependencyCycleError,
    DuplicatePrimaryKeyError,
    ExecutionError,
    MalformedTestError,
    MissingParentKeyError,
    SynthesisError,
)
from ks_core.loader import load_run_results, load_yaml_project, parse_run_results
from ks_core.metadata import ProjectMetadata
from ks_core.schema import load_schema, project_issues
from ks_core.synth import SynthesisResult, synthesize_constraints, synthesize_project

__all__ = [
    "build_adapter",
    "check_connection",
    "ConfigurationError",
    "ConnectorConfig",
    "DbApiExecutor",
    "DependencyCycleError",
    "DuplicatePrimaryKeyError",
    "ExecutionError",
    "get_dialect",
    "list_dialects",
    "load_run_config",
    "load_run_results",
    "load_schema",
    "load_yaml_project",
    "MalformedTestError",
    "MissingParentKeyError",
    "open_connection",
    "parse_run_results",
    "parse_vars",
    "PlanAdapter",
    "project_issues",
    "ProjectMetadata",
    "RunConfig",
    "SqlConstraintAdapter",
    "synthesize_constraints",
    "synthesize_project",
    "SynthesisError",
    "SynthesisResult",
]
