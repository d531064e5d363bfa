"""Read-only metadata interfaces consumed by the synthesis engine.

``TestMetadataSource`` yields declared tests with their last status and
``GraphMetadataStore`` resolves relations to ``TableIdentity`` values.
``ProjectMetadata`` implements both from a dbt-style project YAML:

    models:
      - name: orders
        materialized: table
        columns:
          - name: order_id
            tests: [primary_key]
        tests:
          - foreign_key:
              fk_column_names: [customer_id]
              pk_table_name: ref('customers')
              pk_column_names: [customer_id]
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ks_core.errors import ConfigurationError
from ks_core.model import SNAPSHOT, SOURCE, TABLE, TableIdentity

DBT_REF_RE = re.compile(r"ref\(\s*['\"]([^'\"]+)['\"]\s*\)", flags=re.IGNORECASE)
DBT_SOURCE_RE = re.compile(
    r"source\(\s*['\"]([^'\"]+)['\"]\s*,\s*['\"]([^'\"]+)['\"]\s*\)",
    flags=re.IGNORECASE,
)

# Keys lifted out of a test's arguments into its config
_CONFIG_KEYS = ("where", "severity", "always_create_constraint", "name", "enabled")


@dataclass
class RawTest:
    """One declared test, as found in the project before normalization."""

    __test__ = False

    test_id: str
    name: str
    node_id: str
    namespace: Optional[str] = None
    column_name: Optional[str] = None
    kwargs: Dict[str, Any] = field(default_factory=dict)
    config: Dict[str, Any] = field(default_factory=dict)
    status: Optional[str] = None
    inline: bool = False


class TestMetadataSource(ABC):
    """Yields every declared test together with its last run status."""

    __test__ = False

    @abstractmethod
    def list_tests(self) -> List[RawTest]:
        """Return all declared tests."""


class GraphMetadataStore(ABC):
    """Resolves graph nodes to database relations."""

    @abstractmethod
    def table_identity(self, node_id: str) -> Optional[TableIdentity]:
        """Return the relation behind ``node_id`` or None if unknown."""

    @abstractmethod
    def columns(self, node_id: str) -> List[str]:
        """Return the declared column names of ``node_id``."""

    @abstractmethod
    def resolve_relation(self, expr: Any) -> Optional[str]:
        """Resolve ``ref('x')``, ``source('s', 't')`` or a bare name to a node id."""


def _as_test_list(tests: Any) -> List[Any]:
    if tests is None:
        return []
    if isinstance(tests, list):
        return tests
    return [tests]


def _split_test_name(raw_name: str) -> Tuple[Optional[str], str]:
    text = str(raw_name).strip()
    if "." in text:
        namespace, name = text.rsplit(".", 1)
        return namespace, name
    return None, text


def dbt_test_name(namespace: Optional[str], name: str, node_id: str, args: Dict[str, Any]) -> str:
    """The name dbt gives a generic test, e.g. ``relationships_orders_customer_id__customer_id__ref_customers_``.

    It is the middle part of the test's ``unique_id`` in ``run_results.json``.
    """
    kind, _, target = node_id.partition(".")
    prefix = name
    if kind == "source":
        prefix = f"source_{name}"
        target = target.replace(".", "_")
    if namespace:
        prefix = f"{namespace}_{prefix}"

    flat: List[str] = []
    for arg_name in sorted(args):
        if arg_name == "model":
            continue
        value = args[arg_name]
        if isinstance(value, dict):
            parts = list(value.values())
        elif isinstance(value, (list, tuple)):
            parts = list(value)
        else:
            parts = [value]
        flat.extend(re.sub(r"[^0-9a-zA-Z_]+", "_", str(part)) for part in parts)
    return f"{prefix}_{target}_{'__'.join(flat)}"


class ProjectMetadata(TestMetadataSource, GraphMetadataStore):
    """Test and graph metadata read from a parsed project YAML."""

    def __init__(self, project: Dict[str, Any], run_results: Optional[Dict[str, str]] = None) -> None:
        if not isinstance(project, dict):
            raise ConfigurationError("Project must be a map.")
        self.project = project
        self.run_results = dict(run_results or {})
        settings = project.get("project") or {}
        self.default_database = str(settings.get("database", "") or "")
        self.default_schema = str(settings.get("schema", "") or "")

        self._tables: Dict[str, TableIdentity] = {}
        self._columns: Dict[str, List[str]] = {}
        self._nodes_by_name: Dict[str, str] = {}
        self._tests: List[RawTest] = []
        self._test_ids: Dict[str, int] = {}
        self._load()

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def _register(self, node_id: str, node: Dict[str, Any], database: str, schema: str, materialization: str) -> None:
        config = node.get("config") if isinstance(node.get("config"), dict) else {}
        identifier = str(
            node.get("identifier") or node.get("alias") or config.get("alias") or node.get("name")
        )
        self._tables[node_id] = TableIdentity(
            node_id=node_id,
            database=str(node.get("database") or config.get("database") or database or ""),
            schema=str(node.get("schema") or config.get("schema") or schema or ""),
            identifier=identifier,
            materialization=materialization,
        )
        columns = node.get("columns") if isinstance(node.get("columns"), list) else []
        self._columns[node_id] = [
            str(col.get("name")) for col in columns if isinstance(col, dict) and col.get("name")
        ]

    def _load(self) -> None:
        pending: List[Tuple[str, Dict[str, Any]]] = []

        for section, default_mat in (("models", TABLE), ("snapshots", SNAPSHOT)):
            for node in self.project.get(section) or []:
                if not isinstance(node, dict) or not node.get("name"):
                    continue
                name = str(node["name"])
                prefix = "snapshot" if section == "snapshots" else "model"
                node_id = f"{prefix}.{name}"
                config = node.get("config") if isinstance(node.get("config"), dict) else {}
                materialization = str(node.get("materialized") or config.get("materialized") or default_mat).lower()
                if section == "snapshots":
                    materialization = SNAPSHOT
                self._register(node_id, node, self.default_database, self.default_schema, materialization)
                self._nodes_by_name[name.lower()] = node_id
                pending.append((node_id, node))

        for source in self.project.get("sources") or []:
            if not isinstance(source, dict) or not source.get("name"):
                continue
            source_name = str(source["name"])
            database = str(source.get("database") or self.default_database)
            schema = str(source.get("schema") or source_name)
            for table in source.get("tables") or []:
                if not isinstance(table, dict) or not table.get("name"):
                    continue
                node_id = f"source.{source_name}.{table['name']}"
                self._register(node_id, table, database, schema, SOURCE)
                self._nodes_by_name[f"{source_name}.{table['name']}".lower()] = node_id
                pending.append((node_id, table))

        for node_id, node in pending:
            self._collect_tests(node_id, node)

    def table_identity(self, node_id: str) -> Optional[TableIdentity]:
        return self._tables.get(node_id)

    def columns(self, node_id: str) -> List[str]:
        return list(self._columns.get(node_id, []))

    def resolve_relation(self, expr: Any) -> Optional[str]:
        if not isinstance(expr, str):
            return None
        text = expr.strip()
        if not text:
            return None

        ref_match = DBT_REF_RE.search(text)
        if ref_match:
            return self._nodes_by_name.get(ref_match.group(1).lower())

        source_match = DBT_SOURCE_RE.search(text)
        if source_match:
            node_id = f"source.{source_match.group(1)}.{source_match.group(2)}"
            return node_id if node_id in self._tables else None

        if text in self._tables:
            return text
        return self._nodes_by_name.get(text.strip("'\"").lower())

    # ------------------------------------------------------------------
    # Tests
    # ------------------------------------------------------------------

    def list_tests(self) -> List[RawTest]:
        return list(self._tests)

    def assume_passed(self) -> int:
        """Treat every test without a run result as passing. Returns how many changed."""
        changed = 0
        for test in self._tests:
            if test.status is None:
                test.status = "pass"
                changed += 1
        return changed

    def _unique_test_id(self, base: str) -> str:
        count = self._test_ids.get(base, 0) + 1
        self._test_ids[base] = count
        return base if count == 1 else f"{base}_{count}"

    def _add_test(self, node_id: str, test_def: Any, column_name: Optional[str]) -> None:
        if isinstance(test_def, str):
            raw_name, args = test_def, {}
        elif isinstance(test_def, dict) and len(test_def) == 1:
            raw_name, cfg = next(iter(test_def.items()))
            args = dict(cfg) if isinstance(cfg, dict) else {}
        else:
            return

        namespace, name = _split_test_name(raw_name)
        config = dict(args.pop("config", None) or {})
        for key in _CONFIG_KEYS:
            if key in args:
                config.setdefault(key, args.pop(key))

        if config.get("enabled") is False:
            return

        naming_args = dict(args)
        if column_name:
            naming_args["column_name"] = column_name
        base = config.get("name") or dbt_test_name(namespace, name, node_id, naming_args)
        test_id = self._unique_test_id(str(base))
        status = self.run_results.get(test_id)

        self._tests.append(
            RawTest(
                test_id=test_id,
                name=name,
                namespace=namespace,
                node_id=node_id,
                column_name=column_name,
                kwargs=args,
                config=config,
                status=status,
                inline=column_name is not None,
            )
        )

    def _collect_tests(self, node_id: str, node: Dict[str, Any]) -> None:
        columns = node.get("columns") if isinstance(node.get("columns"), list) else []
        for col in columns:
            if not isinstance(col, dict) or not col.get("name"):
                continue
            tests = _as_test_list(col.get("tests")) + _as_test_list(col.get("data_tests"))
            for test_def in tests:
                self._add_test(node_id, test_def, str(col["name"]))

        tests = _as_test_list(node.get("tests")) + _as_test_list(node.get("data_tests"))
        for test_def in tests:
            self._add_test(node_id, test_def, None)
