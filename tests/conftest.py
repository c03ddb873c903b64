"""
Pytest fixtures for the metal ERP test suite.

Every test gets its own in-memory store with the schema migrated and the
reference data (currencies, metal types, service types, expense categories)
seeded, plus small factories for sheets, batches and parties.
"""

import pytest

from metalerp.db import open_store, q1
from metalerp.logging_config import reset_logging
from metalerp.services.demo_data import upsert_reference_data
from metalerp.services.inventory import add_batch_to_sheet, add_sheet_with_batch
from metalerp.services.parties import add_customer, add_supplier
from metalerp.services.profile import update_company_profile


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def store():
    s = open_store(":memory:")
    upsert_reference_data(s)
    yield s
    s.close()


@pytest.fixture
def metal_id(store) -> int:
    return int(q1(store, "SELECT id FROM metal_types WHERE abbreviation='SS'")["id"])


@pytest.fixture
def customer_id(store) -> int:
    return add_customer(store, {"name": "Omar Haddad", "email": "omar@example.com"})["id"]


@pytest.fixture
def supplier_id(store) -> int:
    return add_supplier(store, {"name": "Gulf Metals Trading"})["id"]


@pytest.fixture
def make_sheet(store, metal_id):
    """Create a 10 kg sheet with one batch; returns (sheet_id, batch_id)."""
    counter = {"n": 0}

    def _make(quantity=50, received_date="2024-01-10", price_per_kg=2.0, weight=10.0, **batch_extra):
        counter["n"] += 1
        res = add_sheet_with_batch(
            store,
            {
                "code": f"TEST-{counter['n']}",
                "metal_type_id": metal_id,
                "length_mm": 2440,
                "width_mm": 1220,
                "thickness_mm": 1.5,
                "weight_per_sheet_kg": weight,
            },
            {"quantity": quantity, "received_date": received_date, "price_per_kg": price_per_kg, **batch_extra},
        )
        assert res.success, res.error
        return res["sheet_id"], res["batch_id"]

    return _make


@pytest.fixture
def add_batch(store):
    def _add(sheet_id, quantity, received_date, price_per_kg=2.0, **extra):
        res = add_batch_to_sheet(
            store,
            {"sheet_id": sheet_id, "quantity": quantity, "received_date": received_date, "price_per_kg": price_per_kg, **extra},
        )
        assert res.success, res.error
        return res["id"]

    return _add


@pytest.fixture
def batch_qty(store):
    def _qty(batch_id):
        r = q1(store, "SELECT quantity_remaining FROM batches WHERE id=?", (batch_id,))
        return None if r is None else float(r["quantity_remaining"])

    return _qty


@pytest.fixture
def vat_15(store):
    res = update_company_profile(store, {"company_name": "Test Metals", "vat_rate": 15, "vat_enabled": True})
    assert res.success, res.error
