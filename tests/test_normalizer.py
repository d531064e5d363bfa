"""Normalization of declared tests into uniform TestRecords.

Covers:
  - Project metadata: relation identities, test ids, config lifting
  - New-style and legacy test shapes (inline and model-level)
  - Malformed declarations are dropped with a warning
"""

import sys
import unittest
from pathlib import Path
from typing import Any, Dict

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "packages" / "core_engine" / "src"))

from ks_core.errors import ConfigurationError, MalformedTestError
from ks_core.issues import MALFORMED_TEST
from ks_core.loader import parse_run_results
from ks_core.metadata import ProjectMetadata, RawTest, dbt_test_name
from ks_core.model import (
    FOREIGN_KEY,
    LEGACY_RELATIONSHIP,
    LEGACY_UNIQUE,
    LEGACY_UNIQUE_COMBINATION,
    PRIMARY_KEY,
    SOURCE,
    UNIQUE_KEY,
)
from ks_core.normalizer import check_columns, is_identifier, normalize_test, normalize_tests


def _project(**overrides) -> Dict[str, Any]:
    base: Dict[str, Any] = {
        "project": {"name": "shop", "database": "ANALYTICS", "schema": "PUBLIC"},
        "models": [
            {
                "name": "customers",
                "columns": [
                    {"name": "customer_id", "tests": ["primary_key"]},
                    {"name": "email"},
                ],
            },
            {
                "name": "orders",
                "columns": [
                    {"name": "order_id", "tests": ["unique", "not_null"]},
                    {
                        "name": "customer_id",
                        "tests": [
                            {"relationships": {"to": "ref('customers')", "field": "customer_id"}},
                        ],
                    },
                ],
                "tests": [
                    {"dbt_utils.unique_combination_of_columns": {"combination_of_columns": ["order_id", "customer_id"]}},
                    {
                        "foreign_key": {
                            "fk_column_names": ["customer_id"],
                            "pk_table_name": "ref('customers')",
                            "pk_column_names": ["customer_id"],
                        }
                    },
                ],
            },
        ],
        "sources": [
            {
                "name": "raw",
                "database": "RAW",
                "tables": [{"name": "payments", "columns": [{"name": "payment_id"}]}],
            }
        ],
    }
    base.update(overrides)
    return base


def _records(project: Dict[str, Any]):
    metadata = ProjectMetadata(project)
    return normalize_tests(metadata.list_tests(), metadata)


def _raw(name: str, node_id: str = "model.orders", column_name=None, **kwargs) -> RawTest:
    return RawTest(test_id=f"{name}_test", name=name, node_id=node_id, column_name=column_name, kwargs=kwargs)


# ===========================================================================
# Project metadata
# ===========================================================================

class TestProjectMetadata(unittest.TestCase):

    def test_model_identity_uses_project_defaults(self):
        metadata = ProjectMetadata(_project())
        table = metadata.table_identity("model.orders")
        self.assertEqual(table.database, "ANALYTICS")
        self.assertEqual(table.schema, "PUBLIC")
        self.assertEqual(table.identifier, "orders")
        self.assertEqual(table.name, "ANALYTICS.PUBLIC.orders")
        self.assertEqual(table.materialization, "table")

    def test_source_schema_defaults_to_source_name(self):
        metadata = ProjectMetadata(_project())
        table = metadata.table_identity("source.raw.payments")
        self.assertEqual(table.database, "RAW")
        self.assertEqual(table.schema, "raw")
        self.assertEqual(table.materialization, SOURCE)
        self.assertTrue(table.is_source)
        self.assertFalse(table.is_constrainable)

    def test_alias_overrides_identifier(self):
        project = _project(models=[{"name": "orders", "alias": "fct_orders", "schema": "MART"}])
        table = ProjectMetadata(project).table_identity("model.orders")
        self.assertEqual(table.identifier, "fct_orders")
        self.assertEqual(table.schema, "MART")

    def test_resolve_relation_forms(self):
        metadata = ProjectMetadata(_project())
        self.assertEqual(metadata.resolve_relation("ref('customers')"), "model.customers")
        self.assertEqual(metadata.resolve_relation('ref("orders")'), "model.orders")
        self.assertEqual(metadata.resolve_relation("source('raw', 'payments')"), "source.raw.payments")
        self.assertEqual(metadata.resolve_relation("customers"), "model.customers")
        self.assertIsNone(metadata.resolve_relation("ref('missing')"))
        self.assertIsNone(metadata.resolve_relation(None))

    def test_columns(self):
        metadata = ProjectMetadata(_project())
        self.assertEqual(metadata.columns("model.customers"), ["customer_id", "email"])
        self.assertEqual(metadata.columns("model.unknown"), [])

    def test_test_ids_and_statuses(self):
        project = _project()
        metadata = ProjectMetadata(project, run_results={"primary_key_customers_customer_id": "pass"})
        by_id = {t.test_id: t for t in metadata.list_tests()}
        self.assertIn("primary_key_customers_customer_id", by_id)
        self.assertIn("unique_orders_order_id", by_id)
        self.assertIn("relationships_orders_customer_id__customer_id__ref_customers_", by_id)
        self.assertIn("dbt_utils_unique_combination_of_columns_orders_order_id__customer_id", by_id)
        self.assertIn("foreign_key_orders_customer_id__customer_id__ref_customers_", by_id)
        self.assertEqual(by_id["primary_key_customers_customer_id"].status, "pass")
        self.assertIsNone(by_id["unique_orders_order_id"].status)

    def test_dbt_run_results_match_namespaced_tests(self):
        project = _project(
            models=[
                {"name": "customers", "columns": [{"name": "customer_id"}]},
                {
                    "name": "orders",
                    "columns": [
                        {"name": "order_id", "tests": ["dbt_constraints.primary_key"]},
                        {
                            "name": "customer_id",
                            "tests": [{"relationships": {"to": "ref('customers')", "field": "customer_id"}}],
                        },
                    ],
                },
            ],
            sources=[{"name": "raw", "tables": [{"name": "payments", "columns": [{"name": "id", "tests": ["unique"]}]}]}],
        )
        run_results = parse_run_results({
            "results": [
                {"unique_id": "test.shop.dbt_constraints_primary_key_orders_order_id.1a2b3c", "status": "pass"},
                {
                    "unique_id": "test.shop.relationships_orders_customer_id__customer_id__ref_customers_.c6ec7f58f2",
                    "status": "fail",
                },
                {"unique_id": "test.shop.source_unique_raw_payments_id.99aa00", "status": "pass"},
            ]
        })
        statuses = {t.name: t.status for t in ProjectMetadata(project, run_results).list_tests()}
        self.assertEqual(statuses, {"primary_key": "pass", "relationships": "fail", "unique": "pass"})

    def test_dbt_test_name(self):
        self.assertEqual(
            dbt_test_name("dbt_utils", "unique_combination_of_columns", "model.orders", {"combination_of_columns": ["a", "b"]}),
            "dbt_utils_unique_combination_of_columns_orders_a__b",
        )
        self.assertEqual(dbt_test_name(None, "primary_key", "snapshot.orders_snap", {}), "primary_key_orders_snap_")

    def test_namespace_is_split(self):
        metadata = ProjectMetadata(_project())
        combo = [t for t in metadata.list_tests() if t.name == "unique_combination_of_columns"]
        self.assertEqual(len(combo), 1)
        self.assertEqual(combo[0].namespace, "dbt_utils")

    def test_duplicate_test_ids_get_suffix(self):
        project = _project(models=[{"name": "orders", "columns": [{"name": "order_id", "tests": ["unique", "unique"]}]}])
        ids = [t.test_id for t in ProjectMetadata(project).list_tests()]
        self.assertEqual(ids, ["unique_orders_order_id", "unique_orders_order_id_2"])

    def test_config_keys_are_lifted(self):
        project = _project(models=[{
            "name": "orders",
            "columns": [{
                "name": "order_id",
                "tests": [{"primary_key": {"where": "order_id > 0", "config": {"always_create_constraint": True}}}],
            }],
        }])
        test = ProjectMetadata(project).list_tests()[0]
        self.assertEqual(test.config["where"], "order_id > 0")
        self.assertTrue(test.config["always_create_constraint"])
        self.assertNotIn("where", test.kwargs)

    def test_disabled_tests_are_dropped(self):
        project = _project(models=[{
            "name": "orders",
            "columns": [{"name": "order_id", "tests": [{"primary_key": {"config": {"enabled": False}}}]}],
        }])
        self.assertEqual(ProjectMetadata(project).list_tests(), [])

    def test_custom_test_name(self):
        project = _project(models=[{
            "name": "orders",
            "columns": [{"name": "order_id", "tests": [{"primary_key": {"name": "orders_pk"}}]}],
        }])
        self.assertEqual(ProjectMetadata(project).list_tests()[0].test_id, "orders_pk")

    def test_assume_passed_fills_missing_statuses(self):
        metadata = ProjectMetadata(_project(), run_results={"unique_orders_order_id": "fail"})
        changed = metadata.assume_passed()
        statuses = {t.test_id: t.status for t in metadata.list_tests()}
        self.assertEqual(statuses["unique_orders_order_id"], "fail")
        self.assertEqual(statuses["primary_key_customers_customer_id"], "pass")
        self.assertEqual(changed, len(statuses) - 1)

    def test_non_map_project_rejected(self):
        with self.assertRaises(ConfigurationError):
            ProjectMetadata(["not", "a", "map"])


# ===========================================================================
# Test shapes
# ===========================================================================

class TestNormalizeShapes(unittest.TestCase):

    def setUp(self):
        self.records, self.issues = _records(_project())
        self.by_kind = {}
        for record in self.records:
            self.by_kind.setdefault(record.kind, []).append(record)

    def test_no_issues_for_valid_project(self):
        self.assertEqual(self.issues, [])

    def test_non_key_tests_are_ignored(self):
        self.assertEqual(len(self.records), 5)

    def test_inline_primary_key(self):
        record = self.by_kind[PRIMARY_KEY][0]
        self.assertEqual(record.columns, ("customer_id",))
        self.assertTrue(record.inline)
        self.assertEqual(record.constraint_kind, PRIMARY_KEY)

    def test_inline_legacy_unique(self):
        record = self.by_kind[LEGACY_UNIQUE][0]
        self.assertEqual(record.columns, ("order_id",))
        self.assertEqual(record.constraint_kind, UNIQUE_KEY)

    def test_legacy_relationship(self):
        record = self.by_kind[LEGACY_RELATIONSHIP][0]
        self.assertEqual(record.columns, ("customer_id",))
        self.assertEqual(record.ref_table.identifier, "customers")
        self.assertEqual(record.ref_columns, ("customer_id",))
        self.assertEqual(record.constraint_kind, FOREIGN_KEY)

    def test_unique_combination(self):
        record = self.by_kind[LEGACY_UNIQUE_COMBINATION][0]
        self.assertEqual(record.columns, ("order_id", "customer_id"))
        self.assertFalse(record.inline)

    def test_model_level_foreign_key(self):
        record = self.by_kind[FOREIGN_KEY][0]
        self.assertEqual(record.columns, ("customer_id",))
        self.assertEqual(record.ref_table.node_id, "model.customers")
        self.assertEqual(record.ref_columns, ("customer_id",))

    def test_model_level_unique_key_list(self):
        metadata = ProjectMetadata(_project(models=[{
            "name": "orders",
            "tests": [{"unique_key": {"column_names": ["order_id", "line_no"]}}],
        }]))
        record = normalize_test(metadata.list_tests()[0], metadata)
        self.assertEqual(record.kind, UNIQUE_KEY)
        self.assertEqual(record.columns, ("order_id", "line_no"))

    def test_foreign_key_to_source(self):
        metadata = ProjectMetadata(_project(models=[{
            "name": "orders",
            "columns": [{
                "name": "payment_id",
                "tests": [{"foreign_key": {"pk_table_name": "source('raw', 'payments')", "pk_column_name": "payment_id"}}],
            }],
        }]))
        record = normalize_test(metadata.list_tests()[0], metadata)
        self.assertEqual(record.columns, ("payment_id",))
        self.assertTrue(record.ref_table.is_source)

    def test_where_and_always_create_flags(self):
        metadata = ProjectMetadata(_project(models=[{
            "name": "orders",
            "columns": [{
                "name": "order_id",
                "tests": [{"primary_key": {"where": "status = 'done'", "always_create_constraint": True}}],
            }],
        }]))
        record = normalize_test(metadata.list_tests()[0], metadata)
        self.assertTrue(record.filtered)
        self.assertTrue(record.always_create)

    def test_quote_columns_argument(self):
        metadata = ProjectMetadata(_project(models=[{
            "name": "orders",
            "columns": [{"name": "Order Id", "tests": [{"primary_key": {"quote_columns": True}}]}],
        }]))
        with self.assertRaises(MalformedTestError):
            normalize_test(metadata.list_tests()[0], metadata)

        metadata = ProjectMetadata(_project(models=[{
            "name": "orders",
            "columns": [{"name": "order_id", "tests": [{"primary_key": {"quote_columns": True}}]}],
        }]))
        self.assertTrue(normalize_test(metadata.list_tests()[0], metadata).quote_columns)


# ===========================================================================
# Malformed declarations
# ===========================================================================

class TestMalformedTests(unittest.TestCase):

    def setUp(self):
        self.metadata = ProjectMetadata(_project())

    def test_identifier_check(self):
        self.assertTrue(is_identifier("order_id"))
        self.assertTrue(is_identifier("_x$1"))
        self.assertFalse(is_identifier("lower(order_id)"))
        self.assertFalse(is_identifier("1abc"))
        self.assertFalse(is_identifier(None))

    def test_check_columns(self):
        self.assertEqual(check_columns(["a", "b"], "cols"), ("a", "b"))
        with self.assertRaises(MalformedTestError):
            check_columns([], "cols")
        with self.assertRaises(MalformedTestError):
            check_columns("a", "cols")
        with self.assertRaises(MalformedTestError):
            check_columns(["a", "A"], "cols")

    def test_expression_column_rejected(self):
        raw = _raw("unique_key", column_names=["lower(email)"])
        with self.assertRaises(MalformedTestError):
            normalize_test(raw, self.metadata)

    def test_column_count_mismatch(self):
        raw = _raw(
            "foreign_key",
            fk_column_names=["customer_id", "region"],
            pk_table_name="ref('customers')",
            pk_column_names=["customer_id"],
        )
        with self.assertRaises(MalformedTestError) as ctx:
            normalize_test(raw, self.metadata)
        self.assertIn("2 column(s)", ctx.exception.message)

    def test_unknown_referenced_relation(self):
        raw = _raw("relationships", column_name="customer_id", to="ref('nope')", field="id")
        with self.assertRaises(MalformedTestError):
            normalize_test(raw, self.metadata)

    def test_relationship_without_field(self):
        raw = _raw("relationships", column_name="customer_id", to="ref('customers')")
        with self.assertRaises(MalformedTestError):
            normalize_test(raw, self.metadata)

    def test_unknown_node(self):
        raw = _raw("primary_key", node_id="model.ghost", column_name="id")
        with self.assertRaises(MalformedTestError):
            normalize_test(raw, self.metadata)

    def test_malformed_records_dropped_with_warning(self):
        good = _raw("primary_key", column_name="order_id")
        bad = _raw("unique_key", column_names=[])
        records, issues = normalize_tests([good, bad], self.metadata)
        self.assertEqual([r.test_id for r in records], ["primary_key_test"])
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].code, MALFORMED_TEST)
        self.assertEqual(issues[0].severity, "warn")
        self.assertIn("unique_key_test", issues[0].message)


if __name__ == "__main__":
    unittest.main()
