"""Tests for the append-only customer/supplier ledgers."""

import sqlite3

import pytest

from metalerp.db import q, q1, unit_of_work
from metalerp.errors import ValidationError
from metalerp.utils import round2
from metalerp.services.ledger import (
    CUSTOMER,
    SUPPLIER,
    append_entry,
    get_balance,
    get_statement,
    post_adjustment,
    remove_or_reverse,
    settle_payment,
    verify_ledger,
)


def _append(store, account_id, amount, kind=CUSTOMER, **kw):
    with unit_of_work(store):
        return append_entry(
            store,
            kind,
            account_id,
            amount,
            transaction_type=kw.pop("transaction_type", "sale"),
            transaction_date=kw.pop("transaction_date", "2024-01-01"),
            **kw,
        )


class TestAppendProtocol:
    def test_empty_account_is_zero(self, store, customer_id):
        assert get_balance(store, CUSTOMER, customer_id) == 0.0

    def test_prefix_sum_invariant(self, store, customer_id):
        """balance_after of entry k equals the sum of amounts 1..k."""
        amounts = [100.10, -20.05, 0.01, 333.33, -413.39, 12.5]
        for a in amounts:
            _append(store, customer_id, a)

        rows = q(store, "SELECT amount, balance_after FROM customer_transactions WHERE customer_id=? ORDER BY id", (customer_id,))
        running = 0.0
        for r in rows:
            running = round2(running + r["amount"])
            assert r["balance_after"] == running
        assert get_balance(store, CUSTOMER, customer_id) == 12.5
        assert verify_ledger(store, CUSTOMER, customer_id) == {
            "ok": True, "entries": 6, "first_mismatch_id": None, "balance": 12.5,
        }

    def test_accounts_are_independent(self, store, customer_id):
        _append(store, customer_id, 50)
        _append(store, customer_id, 25, kind=CUSTOMER)
        assert get_balance(store, SUPPLIER, customer_id) == 0.0
        assert get_balance(store, CUSTOMER, customer_id) == 75.0

    def test_amounts_rounded_half_up(self, store, customer_id):
        entry = _append(store, customer_id, 1.005)
        assert (entry.amount, entry.balance_after) == (1.01, 1.01)

    def test_unknown_kind(self, store, customer_id):
        with pytest.raises(ValidationError):
            get_balance(store, "employee", customer_id)

    def test_rolled_back_entries_leave_no_trace(self, store, customer_id):
        with pytest.raises(RuntimeError):
            with unit_of_work(store):
                append_entry(store, CUSTOMER, customer_id, 10, transaction_type="sale", transaction_date="2024-01-01")
                raise RuntimeError("boom")
        assert get_balance(store, CUSTOMER, customer_id) == 0.0


class TestImmutability:
    def test_entries_cannot_be_updated(self, store, customer_id):
        entry = _append(store, customer_id, 10)
        with pytest.raises(sqlite3.DatabaseError):
            store.conn.execute("UPDATE customer_transactions SET amount = 99 WHERE id=?", (entry.id,))
        assert get_balance(store, CUSTOMER, customer_id) == 10.0

    def test_supplier_entries_cannot_be_updated(self, store, supplier_id):
        entry = _append(store, supplier_id, 10, kind=SUPPLIER, transaction_type="purchase")
        with pytest.raises(sqlite3.DatabaseError):
            store.conn.execute("UPDATE supplier_transactions SET balance_after = 0 WHERE id=?", (entry.id,))


class TestVerify:
    def test_detects_a_broken_chain(self, store, customer_id):
        _append(store, customer_id, 10)
        # Bypass the protocol on purpose.
        store.conn.execute(
            """
            INSERT INTO customer_transactions (customer_id, transaction_type, amount, balance_after, transaction_date)
            VALUES (?, 'sale', 5, 99, '2024-01-02')
            """,
            (customer_id,),
        )
        report = verify_ledger(store, CUSTOMER, customer_id)
        assert report["ok"] is False
        assert report["expected"] == 15.0


class TestSettleAndAdjust:
    def test_settle_payment(self, store, customer_id):
        _append(store, customer_id, 300)
        res = settle_payment(store, CUSTOMER, customer_id, 120, payment_date="2024-01-05", payment_method="Bank Transfer")
        assert res.success, res.error
        assert res["balance"] == 180.0
        entry = q1(store, "SELECT * FROM customer_transactions WHERE id=?", (res["entry_id"],))
        assert entry["transaction_type"] == "payment"
        assert entry["notes"] == "Payment - Bank Transfer"

    def test_settle_rejects_non_positive(self, store, customer_id):
        assert settle_payment(store, CUSTOMER, customer_id, 0).code == "VALIDATION_ERROR"
        assert settle_payment(store, CUSTOMER, customer_id, -5).code == "VALIDATION_ERROR"

    def test_settle_unknown_account(self, store):
        assert settle_payment(store, SUPPLIER, 404, 10).code == "NOT_FOUND"

    def test_adjustment_is_a_new_entry(self, store, customer_id):
        first = _append(store, customer_id, 100)
        res = post_adjustment(store, CUSTOMER, customer_id, -15, notes="Price correction")
        assert res["balance"] == 85.0
        assert q1(store, "SELECT amount FROM customer_transactions WHERE id=?", (first.id,))["amount"] == 100.0

    def test_adjustment_needs_reason_and_amount(self, store, customer_id):
        assert post_adjustment(store, CUSTOMER, customer_id, 10, notes=" ").code == "VALIDATION_ERROR"
        assert post_adjustment(store, CUSTOMER, customer_id, 0, notes="x").code == "VALIDATION_ERROR"


class TestStatement:
    def test_ordered_by_date_then_id(self, store, customer_id):
        _append(store, customer_id, 10, transaction_date="2024-03-01")
        _append(store, customer_id, 20, transaction_date="2024-01-01")
        _append(store, customer_id, 30, transaction_date="2024-02-01")

        rows = get_statement(store, CUSTOMER, customer_id)
        assert [r["amount"] for r in rows] == [20.0, 30.0, 10.0]
        assert [r["amount"] for r in get_statement(store, CUSTOMER, customer_id, "2024-02-01", "2024-02-28")] == [30.0]


class TestRemoveOrReverse:
    def test_tail_entries_are_deleted(self, store, customer_id):
        _append(store, customer_id, 40)
        a = _append(store, customer_id, 100, reference_type="sale", reference_id=1)
        b = _append(store, customer_id, -60, transaction_type="payment", reference_type="payment", reference_id=1)

        with unit_of_work(store):
            outcome = remove_or_reverse(
                store, CUSTOMER, customer_id, [a.id, b.id], reversal_reference_type="sale_reversal", reversal_reference_id=1
            )

        assert outcome == "deleted"
        assert get_balance(store, CUSTOMER, customer_id) == 40.0
        assert verify_ledger(store, CUSTOMER, customer_id)["entries"] == 1

    def test_entries_followed_by_others_are_reversed(self, store, customer_id):
        a = _append(store, customer_id, 100, reference_type="sale", reference_id=7)
        _append(store, customer_id, -30, transaction_type="payment")

        with unit_of_work(store):
            outcome = remove_or_reverse(
                store, CUSTOMER, customer_id, [a.id], reversal_reference_type="sale_reversal", reversal_reference_id=7
            )

        assert outcome == "reversed"
        assert get_balance(store, CUSTOMER, customer_id) == -30.0
        last = q1(store, "SELECT * FROM customer_transactions ORDER BY id DESC LIMIT 1")
        assert (last["transaction_type"], last["amount"], last["reference_type"]) == ("reversal", -100.0, "sale_reversal")
        assert verify_ledger(store, CUSTOMER, customer_id)["ok"]

    def test_nothing_to_remove(self, store, customer_id):
        with unit_of_work(store):
            assert remove_or_reverse(
                store, CUSTOMER, customer_id, [], reversal_reference_type="sale_reversal", reversal_reference_id=1
            ) == "none"
