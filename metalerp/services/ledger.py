"""
Append-only customer/supplier ledgers.

There is no "current balance" column: the balance of an account is the
``balance_after`` of its highest-id entry. Appending reads that value and
writes ``round2(previous + amount)`` inside the caller's unit of work, so the
read and the write can never interleave with another writer (the store's
write lock is held for the whole transaction).

Positive amounts increase what the counterparty owes (customer) or what we
owe (supplier); payments are negative. Entries are never updated; corrections
are new offsetting entries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from metalerp.db import Store, operation, q, q1, x, unit_of_work
from metalerp.errors import NotFoundError, OpResult, ValidationError
from metalerp.logging_config import get_logger
from metalerp.utils import clean_text, iso_now, iso_today, round2, safe_float
from metalerp import validation

logger = get_logger("ledger")

CUSTOMER = "customer"
SUPPLIER = "supplier"


@dataclass(frozen=True)
class _LedgerSql:
    balance: str
    insert: str
    statement: str
    entries: str
    later_exists: str
    delete_one: str


# Static per-kind SQL; the kind is only ever used as a key into this mapping.
_SQL: dict[str, _LedgerSql] = {
    CUSTOMER: _LedgerSql(
        balance="SELECT balance_after FROM customer_transactions WHERE customer_id=? ORDER BY id DESC LIMIT 1",
        insert="""
            INSERT INTO customer_transactions (
                customer_id, transaction_type, amount, reference_type, reference_id,
                balance_after, notes, transaction_date, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        statement="""
            SELECT * FROM customer_transactions
            WHERE customer_id=? AND transaction_date >= ? AND transaction_date <= ?
            ORDER BY transaction_date ASC, id ASC
        """,
        entries="SELECT * FROM customer_transactions WHERE customer_id=? ORDER BY id ASC",
        later_exists="SELECT id FROM customer_transactions WHERE customer_id=? AND id > ? ORDER BY id",
        delete_one="DELETE FROM customer_transactions WHERE id=?",
    ),
    SUPPLIER: _LedgerSql(
        balance="SELECT balance_after FROM supplier_transactions WHERE supplier_id=? ORDER BY id DESC LIMIT 1",
        insert="""
            INSERT INTO supplier_transactions (
                supplier_id, transaction_type, amount, reference_type, reference_id,
                balance_after, notes, transaction_date, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        statement="""
            SELECT * FROM supplier_transactions
            WHERE supplier_id=? AND transaction_date >= ? AND transaction_date <= ?
            ORDER BY transaction_date ASC, id ASC
        """,
        entries="SELECT * FROM supplier_transactions WHERE supplier_id=? ORDER BY id ASC",
        later_exists="SELECT id FROM supplier_transactions WHERE supplier_id=? AND id > ? ORDER BY id",
        delete_one="DELETE FROM supplier_transactions WHERE id=?",
    ),
}

_ACCOUNT_EXISTS = {
    CUSTOMER: "SELECT id FROM customers WHERE id=?",
    SUPPLIER: "SELECT id FROM suppliers WHERE id=?",
}


def _sql(kind: str) -> _LedgerSql:
    try:
        return _SQL[kind]
    except KeyError:
        raise ValidationError(f"Unknown account kind: {kind!r}") from None


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    account_id: int
    amount: float
    balance_after: float


def get_balance(store: Store, kind: str, account_id: int) -> float:
    r = q1(store, _sql(kind).balance, (int(account_id),))
    return safe_float(r["balance_after"]) if r else 0.0


def append_entry(
    store: Store,
    kind: str,
    account_id: int,
    amount: float,
    *,
    transaction_type: str,
    transaction_date: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> LedgerEntry:
    """Read the last balance, add, write the new balance. Joins the caller's unit of work."""
    sql = _sql(kind)
    amt = round2(amount)
    with unit_of_work(store):
        new_balance = round2(get_balance(store, kind, account_id) + amt)
        entry_id = x(
            store,
            sql.insert,
            (
                int(account_id),
                str(transaction_type),
                amt,
                reference_type,
                int(reference_id) if reference_id is not None else None,
                new_balance,
                clean_text(notes),
                str(transaction_date),
                iso_now(),
            ),
        )
    return LedgerEntry(id=entry_id, account_id=int(account_id), amount=amt, balance_after=new_balance)


def get_statement(store: Store, kind: str, account_id: int, from_date: Optional[str] = None, to_date: Optional[str] = None):
    return q(store, _sql(kind).statement, (int(account_id), from_date or "0000-01-01", to_date or "9999-12-31"))


def verify_ledger(store: Store, kind: str, account_id: int) -> dict:
    """Recompute the running balance and report the first entry that disagrees."""
    running = 0.0
    rows = q(store, _sql(kind).entries, (int(account_id),))
    for r in rows:
        running = round2(running + safe_float(r["amount"]))
        if abs(running - safe_float(r["balance_after"])) > 0.005:
            return {"ok": False, "entries": len(rows), "first_mismatch_id": int(r["id"]), "expected": running}
    return {"ok": True, "entries": len(rows), "first_mismatch_id": None, "balance": running}


def remove_or_reverse(
    store: Store,
    kind: str,
    account_id: int,
    entry_ids: Iterable[int],
    *,
    reversal_reference_type: str,
    reversal_reference_id: int,
    notes: Optional[str] = None,
) -> str:
    """
    Take a set of entries out of an account's balance.

    When they are the newest entries of the account they are deleted, which
    leaves the ledger exactly as before they were written. When later entries
    exist, their balance_after already includes these amounts, so the
    originals stay and one offsetting reversal entry is appended instead.
    Returns "deleted", "reversed" or "none".
    """
    sql = _sql(kind)
    ids = sorted({int(i) for i in entry_ids})
    if not ids:
        return "none"

    with unit_of_work(store):
        later = [int(r["id"]) for r in q(store, sql.later_exists, (int(account_id), ids[0]))]
        own = set(ids)
        foreign = [i for i in later if i not in own]
        if not foreign:
            for entry_id in ids:
                x(store, sql.delete_one, (entry_id,))
            return "deleted"

        net = round2(sum(safe_float(r["amount"]) for r in q(store, sql.entries, (int(account_id),)) if int(r["id"]) in own))
        if net != 0:
            append_entry(
                store,
                kind,
                account_id,
                -net,
                transaction_type="reversal",
                transaction_date=iso_today(),
                reference_type=reversal_reference_type,
                reference_id=reversal_reference_id,
                notes=notes,
            )
        logger.info(
            "ledger_reversed",
            extra={"kind": kind, "account_id": int(account_id), "entries": ids, "net": net},
        )
        return "reversed"


def _require_account(store: Store, kind: str, account_id: int) -> None:
    _sql(kind)
    if q1(store, _ACCOUNT_EXISTS[kind], (int(account_id),)) is None:
        raise NotFoundError(kind.capitalize(), account_id)


@operation("settle payment")
def settle_payment(
    store: Store,
    kind: str,
    account_id: int,
    amount: float,
    *,
    payment_date: Optional[str] = None,
    payment_method: str = "Cash",
    notes: Optional[str] = None,
) -> OpResult:
    msg = validation.positive_number(amount, "Payment amount")
    if not msg and payment_date:
        msg = validation.valid_iso_date(payment_date, "Payment date")
    if msg:
        raise ValidationError(msg)

    with unit_of_work(store) as uow:
        _require_account(store, kind, account_id)
        entry = append_entry(
            store,
            kind,
            account_id,
            -safe_float(amount),
            transaction_type="payment",
            transaction_date=payment_date or iso_today(),
            reference_type="payment",
            notes=notes or f"Payment - {payment_method}",
        )
    return OpResult.ok(warnings=uow.warnings, entry_id=entry.id, balance=entry.balance_after)


@operation("post ledger adjustment")
def post_adjustment(
    store: Store,
    kind: str,
    account_id: int,
    amount: float,
    *,
    notes: str,
    transaction_date: Optional[str] = None,
) -> OpResult:
    if safe_float(amount) == 0:
        raise ValidationError("Adjustment amount must not be zero")
    msg = validation.required(notes, "Adjustment reason")
    if msg:
        raise ValidationError(msg)

    with unit_of_work(store) as uow:
        _require_account(store, kind, account_id)
        entry = append_entry(
            store,
            kind,
            account_id,
            safe_float(amount),
            transaction_type="adjustment",
            transaction_date=transaction_date or iso_today(),
            reference_type="adjustment",
            notes=notes,
        )
    return OpResult.ok(warnings=uow.warnings, entry_id=entry.id, balance=entry.balance_after)
