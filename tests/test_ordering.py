"""Dependency ordering and the per-run existence cache."""

import random
import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "packages" / "core_engine" / "src"))

from ks_core.adapter import PlanAdapter, foreign_key_matches
from ks_core.cache import ExistenceCache
from ks_core.dependency import flatten, resolve_order
from ks_core.dialects import get_dialect
from ks_core.errors import DependencyCycleError
from ks_core.model import FOREIGN_KEY, PRIMARY_KEY, UNIQUE_KEY, ConstraintSpec, TableIdentity


def _table(name: str) -> TableIdentity:
    return TableIdentity(f"model.{name}", "ANALYTICS", "PUBLIC", name)


ACCOUNTS = _table("accounts")
CUSTOMERS = _table("customers")
ORDERS = _table("orders")
ZONES = _table("zones")


def _pk(table, *columns) -> ConstraintSpec:
    return ConstraintSpec(kind=PRIMARY_KEY, table=table, columns=tuple(columns))


def _uk(table, *columns) -> ConstraintSpec:
    return ConstraintSpec(kind=UNIQUE_KEY, table=table, columns=tuple(columns))


def _fk(table, columns, ref_table, ref_columns) -> ConstraintSpec:
    return ConstraintSpec(
        kind=FOREIGN_KEY,
        table=table,
        columns=tuple(columns),
        ref_table=ref_table,
        ref_columns=tuple(ref_columns),
    )


# ===========================================================================
# Dependency resolution
# ===========================================================================

class TestResolveOrder(unittest.TestCase):

    def test_foreign_key_follows_parent(self):
        parent = _pk(ZONES, "zone_id")
        child = _fk(ACCOUNTS, ["zone_id"], ZONES, ["zone_id"])
        levels = resolve_order([child, parent], {child.key: parent.key})
        self.assertEqual(levels, [[parent], [child]])

    def test_independent_specs_share_a_level(self):
        specs = [_pk(ORDERS, "order_id"), _pk(CUSTOMERS, "customer_id"), _uk(ORDERS, "order_number")]
        levels = resolve_order(specs, {})
        self.assertEqual(len(levels), 1)
        self.assertEqual(
            [(s.table.identifier, s.kind) for s in levels[0]],
            [("customers", PRIMARY_KEY), ("orders", PRIMARY_KEY), ("orders", UNIQUE_KEY)],
        )

    def test_order_is_deterministic(self):
        zones_pk = _pk(ZONES, "zone_id")
        cust_pk = _pk(CUSTOMERS, "customer_id")
        specs = [
            zones_pk,
            cust_pk,
            _uk(CUSTOMERS, "email"),
            _fk(ORDERS, ["customer_id"], CUSTOMERS, ["customer_id"]),
            _fk(ACCOUNTS, ["zone_id"], ZONES, ["zone_id"]),
            _fk(CUSTOMERS, ["zone_id"], ZONES, ["zone_id"]),
        ]
        edges = {specs[3].key: cust_pk.key, specs[4].key: zones_pk.key, specs[5].key: zones_pk.key}
        expected = flatten(resolve_order(specs, edges))

        rng = random.Random(7)
        for _ in range(10):
            shuffled = list(specs)
            rng.shuffle(shuffled)
            self.assertEqual(flatten(resolve_order(shuffled, edges)), expected)

    def test_every_fk_after_its_parent(self):
        a = _pk(ACCOUNTS, "account_id")
        c = _pk(CUSTOMERS, "customer_id")
        fk_c = _fk(CUSTOMERS, ["account_id"], ACCOUNTS, ["account_id"])
        fk_o = _fk(ORDERS, ["customer_id"], CUSTOMERS, ["customer_id"])
        edges = {fk_c.key: a.key, fk_o.key: c.key}
        order = flatten(resolve_order([fk_o, fk_c, c, a], edges))
        position = {spec.key: index for index, spec in enumerate(order)}
        for child, parent in edges.items():
            self.assertLess(position[parent], position[child])

    def test_cycle_detected(self):
        first = _pk(ACCOUNTS, "account_id")
        second = _pk(CUSTOMERS, "customer_id")
        with self.assertRaises(DependencyCycleError) as ctx:
            resolve_order([first, second], {first.key: second.key, second.key: first.key})
        self.assertEqual(len(ctx.exception.remaining), 2)

    def test_edge_to_unknown_spec(self):
        child = _fk(ORDERS, ["customer_id"], CUSTOMERS, ["customer_id"])
        with self.assertRaises(DependencyCycleError):
            resolve_order([child], {child.key: _pk(CUSTOMERS, "customer_id").key})

    def test_empty(self):
        self.assertEqual(resolve_order([], {}), [])


# ===========================================================================
# Existence cache
# ===========================================================================

class TestExistenceCache(unittest.TestCase):

    def setUp(self):
        self.adapter = PlanAdapter(get_dialect("snowflake"))
        self.cache = ExistenceCache(self.adapter)

    def test_each_key_introspected_once(self):
        spec = _pk(ORDERS, "order_id")
        self.assertFalse(self.cache.exists(spec))
        self.assertFalse(self.cache.exists(spec))
        self.assertEqual(self.adapter.introspections, 1)
        self.assertEqual(self.cache.queries, 1)
        self.assertEqual(self.cache.hits, 1)

    def test_primary_and_unique_keys_share_lookup(self):
        self.adapter.add_unique(CUSTOMERS, ["customer_id"])
        self.assertTrue(self.cache.exists(_uk(CUSTOMERS, "CUSTOMER_ID")))
        self.assertTrue(self.cache.parent_key_exists(CUSTOMERS, ["customer_id"]))
        self.assertTrue(self.cache.exists(_pk(CUSTOMERS, "customer_id")))
        self.assertEqual(self.adapter.introspections, 1)

    def test_column_order_ignored(self):
        self.adapter.add_unique(ORDERS, ["order_id", "line_no"])
        self.assertTrue(self.cache.parent_key_exists(ORDERS, ["line_no", "order_id"]))

    def test_foreign_key_lookup(self):
        spec = _fk(ORDERS, ["customer_id"], CUSTOMERS, ["customer_id"])
        self.adapter.add_foreign_key(ORDERS, ["CUSTOMER_ID"], CUSTOMERS, ["CUSTOMER_ID"])
        self.assertTrue(self.cache.exists(spec))
        other = _fk(ORDERS, ["customer_id"], ACCOUNTS, ["customer_id"])
        self.assertFalse(self.cache.exists(other))

    def test_foreign_key_lookup_keeps_column_pairing(self):
        parent = _table("parent")
        self.adapter.add_foreign_key(ORDERS, ["A", "B"], parent, ["X", "Y"])
        self.assertTrue(self.cache.exists(_fk(ORDERS, ["b", "a"], parent, ["y", "x"])))
        self.assertFalse(self.cache.exists(_fk(ORDERS, ["a", "b"], parent, ["y", "x"])))

    def test_foreign_key_lookup_compares_schema(self):
        other_parent = TableIdentity("model.parent", "ANALYTICS", "OTHER", "parent")
        self.adapter.add_foreign_key(ORDERS, ["A", "B"], other_parent, ["X", "Y"])
        self.assertFalse(self.cache.exists(_fk(ORDERS, ["a", "b"], _table("parent"), ["x", "y"])))
        self.assertTrue(foreign_key_matches((("A",), "PARENT", ("X",)), ["a"], _table("parent"), ["x"]))
        self.assertFalse(foreign_key_matches((("A",), "OTHER.PARENT", ("X",)), ["a"], _table("parent"), ["x"]))
        self.assertTrue(foreign_key_matches((("A",), "public.parent", ("X",)), ["a"], _table("parent"), ["x"]))

    def test_mark_created_skips_introspection(self):
        spec = _fk(ORDERS, ["customer_id"], CUSTOMERS, ["customer_id"])
        self.cache.mark_created(spec)
        self.assertTrue(self.cache.exists(spec))
        self.assertEqual(self.adapter.introspections, 0)

    def test_created_primary_key_satisfies_parent_lookup(self):
        self.cache.mark_created(_pk(CUSTOMERS, "customer_id"))
        self.assertTrue(self.cache.parent_key_exists(CUSTOMERS, ["customer_id"]))
        self.assertEqual(self.adapter.introspections, 0)


if __name__ == "__main__":
    unittest.main()
