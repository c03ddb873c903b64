from __future__ import annotations

from typing import Optional

from metalerp.db import Store, operation, q, q1, x, xc, unit_of_work
from metalerp.errors import NotFoundError, OpResult, ValidationError
from metalerp.logging_config import get_logger
from metalerp.services.ledger import CUSTOMER, SUPPLIER, append_entry, get_balance
from metalerp.utils import clean_text, iso_now, iso_today, safe_float
from metalerp import validation

logger = get_logger("parties")

_PARTY_FIELDS = ("name", "company_name", "phone1", "address", "email", "notes")


def _party_values(data: dict) -> tuple:
    return tuple(clean_text(data.get(f)) for f in _PARTY_FIELDS)


# -------------------------
# Customers
# -------------------------

def list_customers(store: Store, active_only: bool = True) -> list[dict]:
    sql = "SELECT * FROM customers WHERE is_active = 1 ORDER BY name" if active_only else "SELECT * FROM customers ORDER BY name"
    return [{**dict(r), "balance": get_balance(store, CUSTOMER, int(r["id"]))} for r in q(store, sql)]


@operation("add customer")
def add_customer(store: Store, data: dict) -> OpResult:
    msg = validation.validate_party(data, is_customer=True)
    if msg:
        raise ValidationError(msg)
    with unit_of_work(store) as uow:
        customer_id = x(
            store,
            """
            INSERT INTO customers (name, company_name, phone1, address, email, notes, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            _party_values(data) + (iso_now(),),
        )
    return OpResult.ok(warnings=uow.warnings, id=customer_id)


@operation("update customer")
def update_customer(store: Store, customer_id: int, data: dict) -> OpResult:
    msg = validation.validate_party(data, is_customer=True)
    if msg:
        raise ValidationError(msg)
    with unit_of_work(store) as uow:
        n = xc(
            store,
            """
            UPDATE customers
            SET name=?, company_name=?, phone1=?, address=?, email=?, notes=?
            WHERE id=?
            """,
            _party_values(data) + (int(customer_id),),
        )
        if n == 0:
            raise NotFoundError("Customer", customer_id)
    return OpResult.ok(warnings=uow.warnings)


@operation("delete customer")
def delete_customer(store: Store, customer_id: int) -> OpResult:
    """Customers with history are deactivated, others are removed."""
    with unit_of_work(store) as uow:
        if q1(store, "SELECT id FROM customers WHERE id=?", (int(customer_id),)) is None:
            raise NotFoundError("Customer", customer_id)
        has_history = q1(
            store,
            """
            SELECT 1 AS x FROM sales WHERE customer_id=?
            UNION ALL SELECT 1 FROM customer_transactions WHERE customer_id=?
            LIMIT 1
            """,
            (int(customer_id), int(customer_id)),
        )
        if has_history:
            x(store, "UPDATE customers SET is_active = 0 WHERE id=?", (int(customer_id),))
            outcome = "deactivated"
        else:
            x(store, "DELETE FROM customers WHERE id=?", (int(customer_id),))
            outcome = "deleted"
    return OpResult.ok(warnings=uow.warnings, outcome=outcome)


# -------------------------
# Suppliers
# -------------------------

def list_suppliers(store: Store, active_only: bool = True) -> list[dict]:
    sql = "SELECT * FROM suppliers WHERE is_active = 1 ORDER BY name" if active_only else "SELECT * FROM suppliers ORDER BY name"
    return [{**dict(r), "balance": get_balance(store, SUPPLIER, int(r["id"]))} for r in q(store, sql)]


@operation("add supplier")
def add_supplier(store: Store, data: dict) -> OpResult:
    msg = validation.validate_party(data, is_customer=False)
    if msg:
        raise ValidationError(msg)
    with unit_of_work(store) as uow:
        supplier_id = x(
            store,
            """
            INSERT INTO suppliers (name, company_name, phone1, address, email, notes, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            _party_values(data) + (iso_now(),),
        )
    return OpResult.ok(warnings=uow.warnings, id=supplier_id)


@operation("update supplier")
def update_supplier(store: Store, supplier_id: int, data: dict) -> OpResult:
    msg = validation.validate_party(data, is_customer=False)
    if msg:
        raise ValidationError(msg)
    with unit_of_work(store) as uow:
        n = xc(
            store,
            """
            UPDATE suppliers
            SET name=?, company_name=?, phone1=?, address=?, email=?, notes=?
            WHERE id=?
            """,
            _party_values(data) + (int(supplier_id),),
        )
        if n == 0:
            raise NotFoundError("Supplier", supplier_id)
    return OpResult.ok(warnings=uow.warnings)


@operation("delete supplier")
def delete_supplier(store: Store, supplier_id: int) -> OpResult:
    with unit_of_work(store) as uow:
        if q1(store, "SELECT id FROM suppliers WHERE id=?", (int(supplier_id),)) is None:
            raise NotFoundError("Supplier", supplier_id)
        has_history = q1(
            store,
            """
            SELECT 1 AS x FROM batches WHERE supplier_id=?
            UNION ALL SELECT 1 FROM supplier_transactions WHERE supplier_id=?
            UNION ALL SELECT 1 FROM supplier_payments WHERE supplier_id=?
            LIMIT 1
            """,
            (int(supplier_id), int(supplier_id), int(supplier_id)),
        )
        if has_history:
            x(store, "UPDATE suppliers SET is_active = 0 WHERE id=?", (int(supplier_id),))
            outcome = "deactivated"
        else:
            x(store, "DELETE FROM suppliers WHERE id=?", (int(supplier_id),))
            outcome = "deleted"
    return OpResult.ok(warnings=uow.warnings, outcome=outcome)


@operation("add supplier payment")
def add_supplier_payment(
    store: Store,
    *,
    supplier_id: int,
    amount: float,
    payment_date: Optional[str] = None,
    payment_method: Optional[str] = None,
    batch_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> OpResult:
    msg = validation.positive_number(amount, "Payment amount")
    if not msg and payment_date:
        msg = validation.valid_iso_date(payment_date, "Payment date")
    if msg:
        raise ValidationError(msg)

    pay_date = payment_date or iso_today()
    with unit_of_work(store) as uow:
        if q1(store, "SELECT id FROM suppliers WHERE id=?", (int(supplier_id),)) is None:
            raise NotFoundError("Supplier", supplier_id)
        payment_id = x(
            store,
            """
            INSERT INTO supplier_payments (supplier_id, batch_id, amount, payment_method, payment_date, notes)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (int(supplier_id), batch_id, safe_float(amount), payment_method, pay_date, clean_text(notes)),
        )
        entry = append_entry(
            store,
            SUPPLIER,
            supplier_id,
            -safe_float(amount),
            transaction_type="payment",
            transaction_date=pay_date,
            reference_type="payment",
            reference_id=payment_id,
            notes=notes or "Supplier payment",
        )

    logger.info("supplier_payment_recorded", extra={"supplier_id": int(supplier_id), "payment_id": payment_id})
    return OpResult.ok(warnings=uow.warnings, id=payment_id, balance=entry.balance_after)
