from __future__ import annotations

import sys
import unittest
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from nested_result import NestedTable, assemble_nested  # noqa: E402

SCHEMAS = [
    {"id": "customer", "label": "Customer", "fields": [{"id": "id"}, {"id": "name"}, {"id": "tier"}]},
    {"id": "sales-order", "label": "Order", "fields": [{"id": "number"}, {"id": "total"}, {"id": "margin", "hidden": True}]},
    {"id": "line-item", "label": "Line Item", "fields": [{"id": "sku"}]},
]


def _payload() -> dict:
    return {
        "schema": "customer",
        "schemas": SCHEMAS,
        "data": [
            {
                "id": "c1",
                "tier": "gold",
                "name": "Acme",
                "children": [
                    {
                        "schema": "salesorder",
                        "data": [
                            {
                                "number": "SO-1",
                                "total": 500,
                                "margin": 0.2,
                                "children": [{"schema": "line-item", "data": [{"sku": "A"}, {"sku": "B"}]}],
                            }
                        ],
                    },
                    {"schema": "invoice", "data": [{"amount": 10}]},
                ],
            },
            {"id": "c2", "name": "Globex"},
        ],
    }


class AssembleNestedTests(unittest.TestCase):
    def test_root_table(self):
        table = assemble_nested(_payload())
        self.assertTrue(table.has_data)
        self.assertEqual(table.schema.id, "customer")
        self.assertEqual(table.match_strategy, "exact")
        self.assertEqual([column.key for column in table.columns], ["name", "tier"])
        self.assertEqual(table.rows[0].values, {"id": "c1", "tier": "gold", "name": "Acme"})
        self.assertEqual(table.rows[1].children, [])

    def test_child_schema_resolved_without_hyphens(self):
        block = assemble_nested(_payload()).rows[0].children[0]
        self.assertTrue(block.found)
        self.assertEqual(block.match_strategy, "normalized")
        self.assertEqual(block.schema.id, "sales-order")
        self.assertEqual(block.row_count, 1)
        self.assertEqual([column.key for column in block.table.columns], ["number", "total"])

    def test_unknown_child_schema_becomes_placeholder(self):
        table = assemble_nested(_payload())
        block = table.rows[0].children[1]
        self.assertFalse(block.found)
        self.assertTrue(block.schema.placeholder)
        self.assertEqual(block.schema.display_label, "schema not found")
        self.assertEqual(block.table.columns[0].key, "amount")
        self.assertEqual(block.table.columns[0].component, "number")
        # The rest of the tree is still assembled.
        self.assertTrue(table.rows[0].children[0].found)

    def test_non_string_child_schema_becomes_placeholder(self):
        table = assemble_nested(
            {
                "schema": "customer",
                "schemas": SCHEMAS,
                "data": [{"name": "Acme", "children": [{"schema": 5, "data": [{"x": 1}]}, {"schema": "line-item", "data": []}]}],
            }
        )
        broken, intact = table.rows[0].children
        self.assertFalse(broken.found)
        self.assertEqual(broken.schema.id, "5")
        self.assertTrue(broken.schema.placeholder)
        self.assertEqual(broken.table.rows[0].values, {"x": 1})
        self.assertTrue(intact.found)

    def test_malformed_catalog_entries_do_not_abort(self):
        table = assemble_nested(
            {
                "schema": "customer",
                "schemas": [{"id": "customer", "fields": None}, {"id": "order", "fields": [{"label": "X"}]}],
                "data": [{"name": "Acme"}],
            }
        )
        self.assertTrue(table.has_data)
        self.assertEqual(table.match_strategy, "exact")
        self.assertEqual([column.key for column in table.columns], ["name"])

    def test_children_are_assembled_lazily(self):
        block = assemble_nested(_payload()).rows[0].children[0]
        self.assertNotIn("table", block.__dict__)
        grandchild = block.table.rows[0].children[0]
        self.assertIn("table", block.__dict__)
        self.assertEqual(grandchild.depth, 2)
        self.assertEqual([row.values["sku"] for row in grandchild.table.rows], ["A", "B"])

    def test_show_ids_puts_id_first(self):
        table = assemble_nested(_payload(), show_ids=True)
        self.assertEqual([column.key for column in table.columns], ["id", "name", "tier"])

    def test_missing_schema_or_data_is_empty(self):
        for payload in (None, {}, {"schema": "customer"}, {"data": []}, {"schema": "customer", "data": "x"}):
            table = assemble_nested(payload)
            self.assertFalse(table.has_data)
            self.assertEqual(table.to_payload()["message"], "No data")

    def test_empty_rows_are_not_data(self):
        table = assemble_nested({"schema": "customer", "data": [], "schemas": SCHEMAS})
        self.assertFalse(table.has_data)
        self.assertEqual(table.schema.id, "customer")

    def test_catalog_argument_is_searched(self):
        table = assemble_nested({"schema": "customer", "data": [{"name": "Acme"}]}, catalog=SCHEMAS)
        self.assertEqual(table.schema.display_label, "Customer")

    def test_payload_collapses_below_expand_depth(self):
        payload = assemble_nested(_payload()).to_payload(expand_depth=1)
        child = payload["rows"][0]["children"][0]
        self.assertFalse(child["collapsed"])
        self.assertEqual(child["label"], "Order")
        grandchild = child["table"]["rows"][0]["children"][0]
        self.assertTrue(grandchild["collapsed"])
        self.assertIsNone(grandchild["table"])
        self.assertEqual(grandchild["rowCount"], 2)

    def test_payload_expand_depth_zero(self):
        payload = assemble_nested(_payload()).to_payload(expand_depth=0)
        self.assertTrue(all(child["collapsed"] for child in payload["rows"][0]["children"]))

    def test_empty_table_payload(self):
        self.assertEqual(
            NestedTable.empty().to_payload(),
            {"hasData": False, "message": "No data", "schema": None, "columns": [], "rows": []},
        )


if __name__ == "__main__":
    unittest.main()
