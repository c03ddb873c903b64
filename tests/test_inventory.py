"""Tests for sheet/batch intake, remnants, batch edits and pruning."""

import pytest

from metalerp.db import q, q1
from metalerp.services.catalog import add_metal_type, generate_sheet_code, sheet_weight_from_density
from metalerp.services.inventory import (
    add_batch_to_sheet,
    add_sheet_with_batch,
    backfill_sheet_weights,
    create_remnant,
    get_batch,
    get_batches_by_sheet,
    list_sheets,
    prune_empty_batches,
    record_inventory_movement,
    update_batch,
)
from metalerp.services.ledger import SUPPLIER, get_balance
from metalerp.services.sales import process_sale


def _ids(store, name, metal_id, table):
    return int(q1(store, f"SELECT id FROM {table} WHERE metal_type_id=? AND name=?", (metal_id, name))["id"])


class TestSheetCode:
    def test_full_code(self, store, metal_id):
        code = generate_sheet_code(
            store,
            metal_type_id=metal_id,
            length_mm=3000,
            width_mm=1500,
            thickness_mm=3,
            grade_id=_ids(store, "304", metal_id, "grades"),
            finish_id=_ids(store, "2B", metal_id, "finishes"),
        )
        assert code == "SS-3000x1500x3-304-2B"

    def test_remnant_without_grade_or_finish(self, store, metal_id):
        code = generate_sheet_code(store, metal_type_id=metal_id, length_mm=1200, width_mm=800, thickness_mm=1.5, is_remnant=True)
        assert code == "RSS-1200x800x1.5-xx-xx"

    def test_unknown_metal(self, store):
        from metalerp.errors import ValidationError

        with pytest.raises(ValidationError):
            generate_sheet_code(store, metal_type_id=999, length_mm=1, width_mm=1, thickness_mm=1)


class TestIntake:
    def test_new_sheet_gets_generated_code_and_density_weight(self, store, metal_id):
        res = add_sheet_with_batch(
            store,
            {"metal_type_id": metal_id, "length_mm": 2000, "width_mm": 1000, "thickness_mm": 2},
            {"quantity": 10, "received_date": "2024-01-10", "price_per_kg": 3.0},
        )

        assert res.success, res.error
        assert res["code"] == "SS-2000x1000x2-xx-xx"
        assert res["linked"] is False
        sheet = q1(store, "SELECT * FROM sheets WHERE id=?", (res["sheet_id"],))
        assert sheet["weight_per_sheet_kg"] == sheet_weight_from_density(2000, 1000, 2, 7.93) == 31.72
        batch = get_batch(store, res["batch_id"])
        assert batch["quantity_original"] == batch["quantity_remaining"] == 10
        assert batch["total_cost"] == 951.6

    def test_same_code_links_to_existing_sheet(self, store, make_sheet, metal_id):
        sheet_id, _ = make_sheet(quantity=5)
        res = add_sheet_with_batch(
            store,
            {"code": "TEST-1", "metal_type_id": metal_id, "length_mm": 2440, "width_mm": 1220, "thickness_mm": 1.5},
            {"quantity": 7, "received_date": "2024-01-11"},
        )
        assert res["linked"] is True
        assert res["sheet_id"] == sheet_id
        assert len(get_batches_by_sheet(store, sheet_id)) == 2

    def test_price_per_kg_derived_from_total_cost(self, store, make_sheet, add_batch):
        sheet_id, _ = make_sheet(quantity=1)
        batch_id = add_batch(sheet_id, 10, "2024-01-11", price_per_kg=None, total_cost=250)
        assert get_batch(store, batch_id)["price_per_kg"] == 2.5

    def test_supplier_purchase_posts_to_ledger(self, store, make_sheet, supplier_id):
        _, batch_id = make_sheet(quantity=10, price_per_kg=2.0, supplier_id=supplier_id)

        assert get_balance(store, SUPPLIER, supplier_id) == 200.0
        entry = q1(store, "SELECT * FROM supplier_transactions WHERE supplier_id=?", (supplier_id,))
        assert (entry["transaction_type"], entry["reference_type"], entry["reference_id"]) == ("purchase", "batch", batch_id)

    def test_purchase_movement_recorded(self, store, make_sheet):
        sheet_id, batch_id = make_sheet(quantity=12)
        m = q1(store, "SELECT * FROM inventory_movements WHERE batch_id=?", (batch_id,))
        assert (m["movement_type"], m["quantity"], m["reference_type"]) == ("IN", 12, "purchase")

    def test_invalid_input_writes_nothing(self, store, metal_id):
        res = add_sheet_with_batch(
            store,
            {"metal_type_id": metal_id, "length_mm": 0, "width_mm": 1000, "thickness_mm": 2},
            {"quantity": 10, "received_date": "2024-01-10"},
        )
        assert res.code == "VALIDATION_ERROR"
        assert q1(store, "SELECT COUNT(*) AS n FROM sheets")["n"] == 0

    def test_batch_for_unknown_sheet(self, store):
        res = add_batch_to_sheet(store, {"sheet_id": 77, "quantity": 1, "received_date": "2024-01-10"})
        assert res.code == "NOT_FOUND"

    def test_unknown_supplier_rolls_back(self, store, make_sheet):
        sheet_id, _ = make_sheet(quantity=1)
        res = add_batch_to_sheet(
            store, {"sheet_id": sheet_id, "quantity": 3, "received_date": "2024-01-10", "supplier_id": 555, "total_cost": 10}
        )
        assert res.code == "CONSTRAINT_VIOLATION"
        assert len(get_batches_by_sheet(store, sheet_id)) == 1


class TestBatchReads:
    def test_ordered_and_filtered(self, store, make_sheet, add_batch):
        sheet_id, b1 = make_sheet(quantity=5, received_date="2024-01-20")
        b2 = add_batch(sheet_id, 5, "2024-01-05")
        b3 = add_batch(sheet_id, 5, "2024-01-20")
        process_sale(store, {"invoice_number": "INV-1", "sale_date": "2024-02-01", "items": [{"sheet_id": sheet_id, "quantity": 5, "unit_price": 1}]})

        assert [b["id"] for b in get_batches_by_sheet(store, sheet_id)] == [b1, b3]
        assert [b["id"] for b in get_batches_by_sheet(store, sheet_id, include_empty=True)] == [b2, b1, b3]

    def test_list_sheets_totals(self, store, make_sheet, add_batch):
        sheet_id, _ = make_sheet(quantity=5, price_per_kg=2.0)
        add_batch(sheet_id, 7, "2024-01-12", price_per_kg=3.0)

        (row,) = list_sheets(store)
        assert row["total_quantity"] == 12
        assert (row["min_price"], row["max_price"]) == (2.0, 3.0)
        assert row["grade_name"] == "xx"


class TestUpdateBatch:
    def test_allowed_fields(self, store, make_sheet):
        _, batch_id = make_sheet(quantity=5)
        res = update_batch(store, batch_id, storage_location=" Rack C ", notes="checked", price_per_kg=2.2)
        assert res.success, res.error
        b = get_batch(store, batch_id)
        assert (b["storage_location"], b["notes"], b["price_per_kg"]) == ("Rack C", "checked", 2.2)

    def test_quantities_are_not_editable(self, store, make_sheet, batch_qty):
        _, batch_id = make_sheet(quantity=5)
        res = update_batch(store, batch_id, quantity_remaining=100)
        assert res.code == "VALIDATION_ERROR"
        assert batch_qty(batch_id) == 5

    def test_unknown_batch(self, store):
        assert update_batch(store, 404, notes="x").code == "NOT_FOUND"


class TestWeights:
    def test_backfill_fills_missing_weights(self, store, make_sheet):
        sheet_id, _ = make_sheet(quantity=1)
        store.conn.execute("UPDATE sheets SET weight_per_sheet_kg = NULL WHERE id=?", (sheet_id,))

        res = backfill_sheet_weights(store)

        assert res["updated"] == 1
        expected = sheet_weight_from_density(2440, 1220, 1.5, 7.93)
        assert q1(store, "SELECT weight_per_sheet_kg FROM sheets WHERE id=?", (sheet_id,))["weight_per_sheet_kg"] == expected

    def test_no_density_no_weight(self, store):
        metal = add_metal_type(store, name="Brass", abbreviation="br")
        assert metal.success
        assert q1(store, "SELECT abbreviation FROM metal_types WHERE id=?", (metal["id"],))["abbreviation"] == "BR"
        assert sheet_weight_from_density(1000, 1000, 1, None) is None


class TestRemnants:
    def test_remnant_inherits_material_and_cost(self, store, make_sheet, batch_qty):
        parent_id, parent_batch = make_sheet(quantity=2, price_per_kg=4.0)

        res = create_remnant(store, parent_id, [{"length_mm": 1200, "width_mm": 600, "quantity": 1}])

        assert res.success, res.error
        (rem,) = res["remnants"]
        sheet = q1(store, "SELECT * FROM sheets WHERE id=?", (rem["sheet_id"],))
        assert rem["code"].startswith("RSS-1200x600x1.5")
        assert (sheet["is_remnant"], sheet["parent_sheet_id"]) == (1, parent_id)
        assert get_batch(store, rem["batch_id"])["price_per_kg"] == 4.0
        assert batch_qty(parent_batch) == 2

    def test_remnant_after_parent_sold_out(self, store, make_sheet):
        parent_id, _ = make_sheet(quantity=1, price_per_kg=5.0)
        process_sale(store, {"invoice_number": "INV-1", "sale_date": "2024-02-01", "items": [{"sheet_id": parent_id, "quantity": 1, "unit_price": 1}]})

        res = create_remnant(store, parent_id, [{"length_mm": 500, "width_mm": 500, "quantity": 2}])

        assert get_batch(store, res["remnants"][0]["batch_id"])["price_per_kg"] == 5.0

    def test_needs_pieces(self, store, make_sheet):
        parent_id, _ = make_sheet(quantity=1)
        assert create_remnant(store, parent_id, []).code == "VALIDATION_ERROR"
        assert create_remnant(store, 999, [{"length_mm": 1, "width_mm": 1, "quantity": 1}]).code == "NOT_FOUND"


class TestMovements:
    def test_rejects_unknown_type(self, store, make_sheet):
        from metalerp.errors import ValidationError

        sheet_id, batch_id = make_sheet(quantity=1)
        with pytest.raises(ValidationError):
            record_inventory_movement(store, "SIDEWAYS", sheet_id, batch_id, 1)


class TestPrune:
    def _empty_batch(self, store, sheet_id):
        store.conn.execute(
            "INSERT INTO batches (sheet_id, quantity_original, quantity_remaining, received_date) VALUES (?, 3, 0, '2023-12-01')",
            (sheet_id,),
        )

    def test_idempotent(self, store, make_sheet):
        sheet_id, _ = make_sheet(quantity=5)
        self._empty_batch(store, sheet_id)
        self._empty_batch(store, sheet_id)

        assert prune_empty_batches(store)["deleted"] == 2
        assert prune_empty_batches(store)["deleted"] == 0

    def test_referenced_batches_are_kept(self, store, make_sheet, batch_qty):
        sheet_id, b1 = make_sheet(quantity=5)
        process_sale(store, {"invoice_number": "INV-1", "sale_date": "2024-02-01", "items": [{"sheet_id": sheet_id, "quantity": 5, "unit_price": 1}]})
        assert batch_qty(b1) == 0

        assert prune_empty_batches(store)["deleted"] == 0
        assert batch_qty(b1) == 0

    def test_movements_survive_pruning(self, store, make_sheet):
        sheet_id, _ = make_sheet(quantity=5)
        self._empty_batch(store, sheet_id)
        empty_id = q(store, "SELECT id FROM batches ORDER BY id DESC LIMIT 1")[0]["id"]
        record_inventory_movement(store, "IN", sheet_id, empty_id, 3, reference_type="purchase", reference_id=empty_id)

        assert prune_empty_batches(store)["deleted"] == 1
        assert q1(store, "SELECT COUNT(*) AS n FROM inventory_movements WHERE batch_id=?", (empty_id,))["n"] == 1
