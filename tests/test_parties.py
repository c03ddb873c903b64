"""Tests for customers, suppliers and supplier payments."""

from metalerp.db import q1
from metalerp.services.ledger import SUPPLIER, get_balance, verify_ledger
from metalerp.services.parties import (
    add_customer,
    add_supplier,
    add_supplier_payment,
    delete_customer,
    delete_supplier,
    list_customers,
    list_suppliers,
    update_customer,
)
from metalerp.services.sales import process_sale


class TestCustomers:
    def test_add_and_list_with_balance(self, store, make_sheet):
        cid = add_customer(store, {"name": "  Omar Haddad ", "phone1": "+971 50 123 4567"})["id"]
        sheet_id, _ = make_sheet(quantity=5)
        process_sale(
            store,
            {"invoice_number": "INV-1", "sale_date": "2024-02-01", "customer_id": cid,
             "items": [{"sheet_id": sheet_id, "quantity": 1, "unit_price": 80}]},
        )

        (row,) = list_customers(store)
        assert row["name"] == "Omar Haddad"
        assert row["balance"] == 80.0

    def test_invalid_input(self, store):
        res = add_customer(store, {"name": "", "email": "nope"})
        assert res.code == "VALIDATION_ERROR"
        assert res.error == "Customer name is required. Invalid email address"

    def test_update(self, store, customer_id):
        assert update_customer(store, customer_id, {"name": "Omar H.", "company_name": "Haddad Fab"}).success
        assert q1(store, "SELECT company_name FROM customers WHERE id=?", (customer_id,))["company_name"] == "Haddad Fab"
        assert update_customer(store, 404, {"name": "X"}).code == "NOT_FOUND"

    def test_delete_without_history(self, store, customer_id):
        assert delete_customer(store, customer_id)["outcome"] == "deleted"
        assert list_customers(store, active_only=False) == []

    def test_delete_with_history_deactivates(self, store, customer_id, make_sheet):
        sheet_id, _ = make_sheet(quantity=5)
        process_sale(
            store,
            {"invoice_number": "INV-1", "sale_date": "2024-02-01", "customer_id": customer_id,
             "items": [{"sheet_id": sheet_id, "quantity": 1, "unit_price": 10}]},
        )

        assert delete_customer(store, customer_id)["outcome"] == "deactivated"
        assert list_customers(store) == []
        assert len(list_customers(store, active_only=False)) == 1


class TestSuppliers:
    def test_duplicate_name(self, store, supplier_id):
        res = add_supplier(store, {"name": "Gulf Metals Trading"})
        assert res.code == "CONSTRAINT_VIOLATION"
        assert res.error == "This name is already in use."

    def test_delete(self, store, supplier_id, make_sheet):
        other = add_supplier(store, {"name": "Eastern Steel Supply"})["id"]
        make_sheet(quantity=1, supplier_id=supplier_id)

        assert delete_supplier(store, supplier_id)["outcome"] == "deactivated"
        assert delete_supplier(store, other)["outcome"] == "deleted"
        assert [s["id"] for s in list_suppliers(store, active_only=False)] == [supplier_id]


class TestSupplierPayments:
    def test_payment_reduces_balance(self, store, supplier_id, make_sheet):
        _, batch_id = make_sheet(quantity=10, price_per_kg=2.0, supplier_id=supplier_id)

        res = add_supplier_payment(store, supplier_id=supplier_id, amount=150, payment_date="2024-01-20", batch_id=batch_id)

        assert res.success, res.error
        assert res["balance"] == 50.0
        assert get_balance(store, SUPPLIER, supplier_id) == 50.0
        entry = q1(store, "SELECT * FROM supplier_transactions ORDER BY id DESC LIMIT 1")
        assert (entry["amount"], entry["reference_type"], entry["reference_id"]) == (-150.0, "payment", res["id"])
        assert verify_ledger(store, SUPPLIER, supplier_id)["ok"]

    def test_rejects_bad_amount_and_unknown_supplier(self, store, supplier_id):
        assert add_supplier_payment(store, supplier_id=supplier_id, amount=0).code == "VALIDATION_ERROR"
        assert add_supplier_payment(store, supplier_id=999, amount=5).code == "NOT_FOUND"
        assert get_balance(store, SUPPLIER, supplier_id) == 0.0
