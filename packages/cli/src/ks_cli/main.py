import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from ks_core import (
    ConfigurationError,
    ConnectorConfig,
    DbApiExecutor,
    DependencyCycleError,
    ProjectMetadata,
    SqlConstraintAdapter,
    build_adapter,
    check_connection,
    get_dialect,
    list_dialects,
    load_run_config,
    load_run_results,
    load_schema,
    load_yaml_project,
    open_connection,
    parse_vars,
    project_issues,
    synthesize_constraints,
)
from ks_core.adapter import DryRunExecutor
from ks_core.config import RunConfig
from ks_core.dedup import deduplicate
from ks_core.issues import DEPENDENCY_CYCLE, Issue, error, has_errors, to_lines
from ks_core.normalizer import normalize_tests

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _print_issues(issues: List[Issue], stream=None) -> None:
    stream = stream or sys.stdout
    if not issues:
        print("No issues found.", file=stream)
        return
    for line in to_lines(issues):
        print(line, file=stream)


def _normalize_host_and_port(host: str, port: int) -> Tuple[str, int]:
    """Accept URL-ish host input and normalize it to hostname + port."""
    clean_host = (host or "").strip()
    clean_port = port or 0
    if not clean_host:
        return "", clean_port

    target = clean_host if "://" in clean_host else f"//{clean_host}"
    parsed = urlparse(target)
    normalized_host = parsed.hostname or clean_host.split("/", 1)[0].strip()

    parsed_port = 0
    try:
        parsed_port = parsed.port or 0
    except ValueError:
        parsed_port = 0

    if not clean_port and parsed_port:
        clean_port = parsed_port

    return normalized_host, clean_port


def _load_project(args: argparse.Namespace) -> Tuple[Dict[str, Any], List[Issue]]:
    project = load_yaml_project(args.project)
    schema = load_schema(getattr(args, "schema", None))
    return project, project_issues(project, schema)


def _sets_dialect(project: Dict[str, Any], overrides: Dict[str, Any]) -> bool:
    project_vars = project.get("vars")
    return "constraints_dialect" in overrides or (
        isinstance(project_vars, dict) and "constraints_dialect" in project_vars
    )


def _run_config(args: argparse.Namespace, project: Dict[str, Any]) -> RunConfig:
    overrides = parse_vars(getattr(args, "vars", "") or "")
    dialect = getattr(args, "dialect", None)
    connector = getattr(args, "connector", None)
    if not dialect and connector and not _sets_dialect(project, overrides):
        # apply defaults to the dialect of the database it connects to
        dialect = connector
    if dialect:
        overrides["constraints_dialect"] = dialect
    return load_run_config(project, overrides)


def _write_json(path: str, payload: Dict[str, Any]) -> None:
    Path(path).write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def _render_sql(statements: List[Tuple[str, str]]) -> str:
    lines: List[str] = []
    current = None
    for table, sql in statements:
        if table != current:
            if lines:
                lines.append("")
            lines.append(f"-- {table}")
            current = table
        lines.append(f"{sql};")
    return "\n".join(lines)


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        project, issues = _load_project(args)
    except (FileNotFoundError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    if not has_errors(issues):
        try:
            metadata = ProjectMetadata(project)
            load_run_config(project)
        except ConfigurationError as exc:
            print(str(exc), file=sys.stderr)
            return 1
        records, normalize_issues = normalize_tests(metadata.list_tests(), metadata)
        issues.extend(normalize_issues)
        issues.extend(deduplicate(records).issues)

    _print_issues(issues)
    return 1 if has_errors(issues) else 0


def _synthesize(args: argparse.Namespace, project: Dict[str, Any], config: RunConfig, adapter) -> Optional[Any]:
    run_results = load_run_results(getattr(args, "run_results", None))
    metadata = ProjectMetadata(project, run_results)
    if getattr(args, "assume_pass", False):
        metadata.assume_passed()
    try:
        return synthesize_constraints(metadata, metadata, adapter, config)
    except DependencyCycleError as exc:
        _print_issues([error(DEPENDENCY_CYCLE, exc.message)], sys.stderr)
        print("Synthesis aborted: no DDL was issued.", file=sys.stderr)
        return None


def cmd_plan(args: argparse.Namespace) -> int:
    try:
        project, issues = _load_project(args)
        if has_errors(issues):
            _print_issues(issues, sys.stderr)
            return 1
        config = _run_config(args, project)
    except (FileNotFoundError, ValueError, ConfigurationError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    dialect = get_dialect(config.dialect)
    if dialect is None:
        print(f"Unknown dialect: {config.dialect}", file=sys.stderr)
        print(f"Available: {', '.join(d['name'] for d in list_dialects())}", file=sys.stderr)
        return 1

    try:
        result = _synthesize(args, project, config, build_adapter(dialect))
    except (FileNotFoundError, ValueError, ConfigurationError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    if result is None:
        return 1

    if getattr(args, "output_json", False):
        print(json.dumps(result.to_dict(), indent=2))
    else:
        sql_text = _render_sql(result.statements)
        if args.out:
            Path(args.out).write_text(sql_text + "\n", encoding="utf-8")
            print(f"Wrote constraint DDL: {args.out}")
        elif sql_text:
            print(sql_text)
        _print_issues(result.issues, sys.stderr)
        print(result.summary(), file=sys.stderr)

    return 1 if result.has_failures else 0


def _build_connector_config(args: argparse.Namespace) -> ConnectorConfig:
    host, port = _normalize_host_and_port(
        getattr(args, "host", "") or "",
        getattr(args, "port", 0) or 0,
    )
    extra: Dict[str, Any] = {}
    if getattr(args, "http_path", ""):
        extra["http_path"] = args.http_path

    return ConnectorConfig(
        connector_type=args.connector,
        host=host,
        port=port,
        database=getattr(args, "database", "") or "",
        schema=getattr(args, "db_schema", "") or "",
        user=getattr(args, "user", "") or "",
        password=getattr(args, "password", "") or "",
        warehouse=getattr(args, "warehouse", "") or "",
        role=getattr(args, "role", "") or "",
        project=getattr(args, "gcp_project", "") or "",
        catalog=getattr(args, "catalog", "") or "",
        token=getattr(args, "token", "") or "",
        private_key_path=getattr(args, "private_key_path", "") or "",
        extra=extra,
    )


def cmd_apply(args: argparse.Namespace) -> int:
    connection_config = _build_connector_config(args)

    if getattr(args, "test", False):
        ok, msg = check_connection(connection_config)
        print(f"{'OK' if ok else 'FAIL'}: {msg}")
        return 0 if ok else 1

    try:
        project, issues = _load_project(args)
        if has_errors(issues):
            _print_issues(issues, sys.stderr)
            print("Apply failed: validation errors detected.", file=sys.stderr)
            return 1
        config = _run_config(args, project)
    except (FileNotFoundError, ValueError, ConfigurationError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    dialect = get_dialect(config.dialect)
    if dialect is None:
        print(f"Unknown dialect: {config.dialect}", file=sys.stderr)
        return 1

    try:
        connection = open_connection(connection_config)
    except ImportError as exc:
        print(f"Driver not installed: {exc}", file=sys.stderr)
        return 1
    except ConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    executor = DbApiExecutor(connection)
    dry_run = DryRunExecutor(executor) if args.dry_run else None
    adapter = SqlConstraintAdapter(dialect, dry_run or executor)
    print(f"Synthesizing constraints on {dialect.display_name}...")
    try:
        result = _synthesize(args, project, config, adapter)
    except (FileNotFoundError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    finally:
        executor.close()
    if result is None:
        return 1

    if dry_run is not None:
        print("Dry run: no DDL was executed.")
        if result.statements:
            print(_render_sql(result.statements))

    _print_issues(result.issues)
    print(f"\n{result.summary()}")

    if args.report_json:
        payload = result.to_dict()
        payload["dry_run"] = bool(args.dry_run)
        payload["connector"] = connection_config.connector_type
        _write_json(args.report_json, payload)
        print(f"Wrote apply report: {args.report_json}")

    return 1 if result.has_failures else 0


def cmd_dialects(args: argparse.Namespace) -> int:
    dialects = list_dialects()
    if getattr(args, "output_json", False):
        print(json.dumps(dialects, indent=2))
    else:
        print("Available dialects:\n")
        for d in dialects:
            status = "installed" if d["installed"] else "NOT INSTALLED"
            kinds = "/".join(d["constraints"])
            print(f"  {d['name']:12s}  {d['display_name']:24s}  {kinds:10s}  driver: {d['driver']:22s}  [{status}]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ks", description="Synthesize database key constraints from data tests")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    validate_parser = sub.add_parser("validate", help="Validate a project file and its key tests")
    validate_parser.add_argument("project", help="Path to project YAML")
    validate_parser.add_argument("--schema", help="Path to a custom project JSON schema")
    validate_parser.set_defaults(func=cmd_validate)

    plan_parser = sub.add_parser("plan", help="Print the constraint DDL a run would issue")
    plan_parser.add_argument("project", help="Path to project YAML")
    plan_parser.add_argument("--run-results", help="dbt run_results.json or a test_id -> status map")
    plan_parser.add_argument("--dialect", help="SQL dialect (overrides constraints_dialect)")
    plan_parser.add_argument("--vars", default="", help="YAML map of constraints_* variables")
    plan_parser.add_argument("--assume-pass", action="store_true", help="Treat tests without a result as passing")
    plan_parser.add_argument("--schema", help="Path to a custom project JSON schema")
    plan_parser.add_argument("--out", help="Output SQL file path")
    plan_parser.add_argument("--output-json", action="store_true", help="Print the run result as JSON")
    plan_parser.set_defaults(func=cmd_plan)

    apply_parser = sub.add_parser("apply", help="Create constraints on a live database")
    apply_parser.add_argument("project", help="Path to project YAML")
    apply_parser.add_argument(
        "--connector",
        required=True,
        choices=["snowflake", "postgres", "redshift", "bigquery", "databricks"],
        help="Target connector",
    )
    apply_parser.add_argument("--dialect", help="SQL dialect (defaults to constraints_dialect, then the connector)")
    apply_parser.add_argument("--run-results", help="dbt run_results.json or a test_id -> status map")
    apply_parser.add_argument("--vars", default="", help="YAML map of constraints_* variables")
    apply_parser.add_argument("--schema", help="Path to a custom project JSON schema")
    apply_parser.add_argument("--host", help="Database host/account")
    apply_parser.add_argument("--port", type=int, help="Database port")
    apply_parser.add_argument("--database", help="Database name")
    apply_parser.add_argument("--db-schema", help="Schema name")
    apply_parser.add_argument("--user", help="Database user")
    apply_parser.add_argument("--password", help="Database password or key passphrase")
    apply_parser.add_argument("--warehouse", help="Snowflake warehouse")
    apply_parser.add_argument("--role", help="Snowflake role")
    apply_parser.add_argument("--gcp-project", help="BigQuery project ID")
    apply_parser.add_argument("--catalog", help="Databricks catalog")
    apply_parser.add_argument("--token", help="Databricks token")
    apply_parser.add_argument("--http-path", help="Databricks SQL Warehouse/Cluster HTTP path")
    apply_parser.add_argument("--private-key-path", help="Path to RSA private key PEM file (Snowflake key-pair auth)")
    apply_parser.add_argument("--test", action="store_true", help="Only test the connection")
    apply_parser.add_argument("--dry-run", action="store_true", help="Check existing constraints but do not run DDL")
    apply_parser.add_argument("--report-json", help="Write structured apply report JSON to file")
    apply_parser.set_defaults(func=cmd_apply)

    dialects_parser = sub.add_parser("dialects", help="List supported dialects and driver status")
    dialects_parser.add_argument("--output-json", action="store_true", help="Print as JSON")
    dialects_parser.set_defaults(func=cmd_dialects)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
