"""Tests for reference data seeding, demo data and wiping."""

from metalerp.db import open_store, q, q1
from metalerp.services.demo_data import DEFAULT_METALS, load_demo_data, upsert_reference_data, wipe_all
from metalerp.services.ledger import CUSTOMER, verify_ledger
from metalerp.services.profile import get_company_profile


def _count(store, table):
    return int(q1(store, f"SELECT COUNT(*) AS n FROM {table}")["n"])


def test_reference_data_is_idempotent(store):
    before = {t: _count(store, t) for t in ("metal_types", "grades", "finishes", "service_types", "currencies")}
    upsert_reference_data(store)
    after = {t: _count(store, t) for t in before}
    assert before == after
    assert before["metal_types"] == len(DEFAULT_METALS)
    assert before["service_types"] == 4


def test_demo_data_is_consistent(store):
    summary = load_demo_data(store)
    assert summary == {"suppliers": 2, "customers": 3, "sheets": 4, "sales": 4}
    assert _count(store, "batches") == 8
    assert _count(store, "sales") == 4

    # Stock is never negative and every customer ledger chains.
    assert q1(store, "SELECT MIN(quantity_remaining) AS m FROM batches")["m"] >= 0
    for r in q(store, "SELECT id FROM customers"):
        assert verify_ledger(store, CUSTOMER, int(r["id"]))["ok"]


def test_wipe_keeps_reference_data(store):
    load_demo_data(store)
    wipe_all(store)

    for t in ("sales", "sheets", "batches", "customers", "suppliers", "customer_transactions"):
        assert _count(store, t) == 0
    assert _count(store, "metal_types") == len(DEFAULT_METALS)


def test_wipe_including_reference(store):
    wipe_all(store, include_reference=True)
    assert _count(store, "metal_types") == 0
    assert _count(store, "currencies") == 0

    upsert_reference_data(store)
    assert _count(store, "currencies") == 3


def test_configured_base_currency_seeds_a_new_profile():
    s = open_store(":memory:")
    upsert_reference_data(s, base_currency="eur")
    assert get_company_profile(s).base_currency == "EUR"

    # An existing profile keeps its own choice.
    upsert_reference_data(s, base_currency="GBP")
    assert get_company_profile(s).base_currency == "EUR"
    s.close()
