"""
Sale processing and its compensating deletion.

A sale is written in one unit of work: header, FIFO-allocated material rows,
service rows, the optional payment and the customer ledger entries. Any
failure rolls all of it back and comes out as a failed OpResult.

Amounts are entered in the sale currency and persisted in base currency,
rounded half-up to cents at each step (subtotal, tax, total, then each
conversion) so totals match what the invoice shows.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional, Union

from metalerp.db import Store, operation, q, q1, x, xc, unit_of_work
from metalerp.errors import NotFoundError, OpResult, ValidationError
from metalerp.logging_config import get_logger
from metalerp.services.currencies import get_exchange_rates, to_base
from metalerp.services.fifo import Allocation, plan_fifo, snapshot_from_row
from metalerp.services.inventory import get_batches_by_sheet, prune_empty_batches, record_inventory_movement
from metalerp.services.ledger import CUSTOMER, append_entry, remove_or_reverse
from metalerp.services.profile import get_company_profile
from metalerp.utils import clean_text, iso_now, iso_today, round2, safe_float
from metalerp import validation

logger = get_logger("sales")

_INVOICE_RE = re.compile(r"INV-(\d+)")


@dataclass
class SaleRequest:
    invoice_number: str
    sale_date: str
    items: list[dict] = field(default_factory=list)
    customer_id: Optional[int] = None
    currency_code: Optional[str] = None
    discount: float = 0.0
    amount_paid: float = 0.0
    payment_method: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "SaleRequest":
        return cls(
            invoice_number=data.get("invoice_number"),
            sale_date=data.get("sale_date"),
            items=list(data.get("items") or []),
            customer_id=data.get("customer_id") or None,
            currency_code=data.get("currency_code") or None,
            discount=data.get("discount") or 0.0,
            amount_paid=data.get("amount_paid") or 0.0,
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
        )

    def as_dict(self) -> dict:
        return {
            "invoice_number": self.invoice_number,
            "sale_date": self.sale_date,
            "items": self.items,
            "customer_id": self.customer_id,
            "currency_code": self.currency_code,
            "discount": self.discount,
            "amount_paid": self.amount_paid,
            "payment_method": self.payment_method,
            "notes": self.notes,
        }


def _is_service(item: dict) -> bool:
    return (item.get("item_type") or "material") == "service"


def payment_status(paid: float, total: float) -> str:
    if paid >= total:
        return "paid"
    if paid > 0:
        return "partial"
    return "unpaid"


def generate_invoice_number(store: Store) -> str:
    last = 0
    for r in q(store, "SELECT invoice_number FROM sales WHERE invoice_number LIKE 'INV-%'"):
        m = _INVOICE_RE.fullmatch(str(r["invoice_number"]))
        if m:
            last = max(last, int(m.group(1)))
    return f"INV-{last + 1:04d}"


# -------------------------
# Line writers
# -------------------------

def _check_references(store: Store, items: list[dict]) -> None:
    for n, item in enumerate(items, start=1):
        if _is_service(item):
            st_id = item.get("service_type_id")
            if st_id and q1(store, "SELECT id FROM service_types WHERE id=?", (int(st_id),)) is None:
                raise ValidationError(f"Line {n}: service type {st_id} not found")
        elif q1(store, "SELECT id FROM sheets WHERE id=?", (int(item["sheet_id"]),)) is None:
            raise ValidationError(f"Line {n}: sheet {item['sheet_id']} not found")


def _write_material_line(store: Store, sale_id: int, invoice: str, item: dict, unit_price_base: float) -> list[Allocation]:
    sheet_id = int(item["sheet_id"])
    sheet = q1(store, "SELECT weight_per_sheet_kg FROM sheets WHERE id=?", (sheet_id,))
    weight_per_unit = safe_float(sheet["weight_per_sheet_kg"])

    custom_weight = None
    if item.get("is_custom_size") and safe_float(item.get("sold_weight")) > 0:
        custom_weight = safe_float(item["sold_weight"])

    snapshot = [snapshot_from_row(b, weight_per_unit) for b in get_batches_by_sheet(store, sheet_id)]
    plan = plan_fifo(
        snapshot,
        safe_float(item["quantity"]),
        weight_per_unit=weight_per_unit,
        custom_total_weight=custom_weight,
        sheet_id=sheet_id,
    )

    for a in plan:
        x(
            store,
            """
            INSERT INTO sale_items (
                sale_id, item_type, sheet_id, batch_id, quantity_sold, unit_price, total_price,
                sold_dimensions, sold_weight, is_custom_size, cogs_per_unit, cogs_total
            ) VALUES (?, 'material', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                sale_id,
                sheet_id,
                a.batch_id,
                a.quantity,
                unit_price_base,
                round2(a.quantity * unit_price_base),
                clean_text(item.get("sold_dimensions")),
                a.weight,
                1 if item.get("is_custom_size") else 0,
                a.cogs_per_unit,
                a.cogs_total,
            ),
        )
        xc(
            store,
            "UPDATE batches SET quantity_remaining = ROUND(quantity_remaining - ?, 6) WHERE id=?",
            (a.quantity, a.batch_id),
        )
        record_inventory_movement(
            store, "OUT", sheet_id, a.batch_id, a.quantity, reference_type="sale", reference_id=sale_id,
            notes=f"Sale - invoice {invoice}",
        )
    return plan


def _service_unit_cost(store: Store, item: dict, to_base_amount) -> float:
    # Explicit override, else the service type's default cost, else zero.
    if item.get("service_cost") not in (None, ""):
        return round2(to_base_amount(safe_float(item["service_cost"])))
    if item.get("service_type_id"):
        r = q1(store, "SELECT default_cost FROM service_types WHERE id=?", (int(item["service_type_id"]),))
        if r is not None:
            return safe_float(r["default_cost"])
    return 0.0


def _write_service_line(store: Store, sale_id: int, item: dict, to_base_amount) -> None:
    qty = safe_float(item.get("quantity"), 1.0) or 1.0
    price_base = round2(to_base_amount(safe_float(item.get("service_price"))))
    unit_cost = _service_unit_cost(store, item, to_base_amount)
    x(
        store,
        """
        INSERT INTO sale_items (
            sale_id, item_type, service_type_id, quantity_sold, service_price, total_price,
            material_description, notes, service_cost, service_cost_total
        ) VALUES (?, 'service', ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            sale_id,
            item.get("service_type_id") or None,
            qty,
            price_base,
            round2(price_base * qty),
            clean_text(item.get("material_description")),
            clean_text(item.get("notes")),
            unit_cost,
            round2(unit_cost * qty),
        ),
    )


# -------------------------
# Public operations
# -------------------------

@operation("process sale")
def process_sale(store: Store, request: Union[SaleRequest, dict], *, today: Optional[date] = None) -> OpResult:
    req = request if isinstance(request, SaleRequest) else SaleRequest.from_dict(request)

    msg = validation.validate_sale(req.as_dict(), today=today)
    if msg:
        raise ValidationError(msg)
    invoice = str(req.invoice_number).strip()

    with unit_of_work(store) as uow:
        _check_references(store, req.items)
        if req.customer_id and q1(store, "SELECT id FROM customers WHERE id=?", (int(req.customer_id),)) is None:
            raise ValidationError(f"Customer {req.customer_id} not found")

        # Rates are captured once for the whole sale.
        profile = get_company_profile(store)
        base = profile.base_currency
        rates = get_exchange_rates(store)
        currency = (req.currency_code or base).upper()
        if currency not in rates:
            raise ValidationError(f"Unknown or inactive currency: {currency}")

        def conv(amount: float) -> float:
            return to_base(amount, currency, base, rates)

        subtotal = 0.0
        for item in req.items:
            price = item.get("service_price") if _is_service(item) else item.get("unit_price")
            subtotal += safe_float(price) * safe_float(item.get("quantity"), 1.0)
        subtotal = round2(subtotal)

        discount = safe_float(req.discount)
        msg = validation.discount_within_subtotal(discount, subtotal)
        if msg:
            raise ValidationError(msg)
        tax = round2((subtotal - discount) * (profile.vat_rate / 100)) if profile.vat_enabled else 0.0
        total = round2(subtotal - discount + tax)

        subtotal_base = round2(conv(subtotal))
        discount_base = round2(conv(discount))
        tax_base = round2(conv(tax))
        total_base = round2(conv(total))
        paid_base = round2(conv(safe_float(req.amount_paid)))
        status = payment_status(paid_base, total_base)

        sale_id = x(
            store,
            """
            INSERT INTO sales (
                invoice_number, customer_id, sale_date, currency_code, fx_rate,
                subtotal, discount, tax, total_amount, payment_status, notes, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                invoice,
                req.customer_id,
                str(req.sale_date),
                currency,
                rates.get(currency, 1.0),
                subtotal_base,
                discount_base,
                tax_base,
                total_base,
                status,
                clean_text(req.notes),
                iso_now(),
            ),
        )

        for item in req.items:
            if _is_service(item):
                _write_service_line(store, sale_id, item, conv)
            else:
                unit_price_base = round2(conv(safe_float(item.get("unit_price"))))
                _write_material_line(store, sale_id, invoice, item, unit_price_base)

        payment_id = None
        if paid_base > 0:
            payment_id = x(
                store,
                """
                INSERT INTO payments (sale_id, customer_id, amount, payment_method, payment_date, notes)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    sale_id,
                    req.customer_id,
                    paid_base,
                    req.payment_method or profile.default_payment_method or "Cash",
                    str(req.sale_date),
                    None,
                ),
            )

        if req.customer_id:
            append_entry(
                store,
                CUSTOMER,
                req.customer_id,
                total_base,
                transaction_type="sale",
                transaction_date=str(req.sale_date),
                reference_type="sale",
                reference_id=sale_id,
                notes=f"Invoice {invoice}",
            )
            if payment_id is not None:
                append_entry(
                    store,
                    CUSTOMER,
                    req.customer_id,
                    -paid_base,
                    transaction_type="payment",
                    transaction_date=str(req.sale_date),
                    reference_type="payment",
                    reference_id=payment_id,
                    notes=f"Payment at sale - invoice {invoice}",
                )

    logger.info(
        "sale_recorded",
        extra={"sale_id": sale_id, "invoice_number": invoice, "total": total_base, "payment_status": status},
    )
    return OpResult.ok(
        warnings=uow.warnings,
        sale_id=sale_id,
        invoice_number=invoice,
        total=total_base,
        payment_status=status,
    )


def _paid_total(store: Store, sale_id: int) -> float:
    r = q1(store, "SELECT COALESCE(SUM(amount), 0) AS paid FROM payments WHERE sale_id=?", (int(sale_id),))
    return round2(r["paid"])


@operation("add sale payment")
def add_sale_payment(
    store: Store,
    sale_id: int,
    amount: float,
    *,
    payment_date: Optional[str] = None,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> OpResult:
    """Later payment against a sale, in base currency."""
    msg = validation.positive_number(amount, "Payment amount")
    if not msg and payment_date:
        msg = validation.valid_iso_date(payment_date, "Payment date")
    if msg:
        raise ValidationError(msg)
    amt = round2(amount)
    pay_date = payment_date or iso_today()

    with unit_of_work(store) as uow:
        sale = q1(store, "SELECT * FROM sales WHERE id=?", (int(sale_id),))
        if sale is None:
            raise NotFoundError("Sale", sale_id)
        total = safe_float(sale["total_amount"])
        remaining = round2(total - _paid_total(store, sale_id))
        if amt > remaining:
            raise ValidationError(f"Payment ({amt:.2f}) exceeds the remaining balance ({remaining:.2f})")

        payment_id = x(
            store,
            """
            INSERT INTO payments (sale_id, customer_id, amount, payment_method, payment_date, notes)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                int(sale_id),
                sale["customer_id"],
                amt,
                payment_method or get_company_profile(store).default_payment_method,
                pay_date,
                clean_text(notes),
            ),
        )
        if sale["customer_id"]:
            append_entry(
                store,
                CUSTOMER,
                int(sale["customer_id"]),
                -amt,
                transaction_type="payment",
                transaction_date=pay_date,
                reference_type="payment",
                reference_id=payment_id,
                notes=notes or f"Payment - invoice {sale['invoice_number']}",
            )
        paid = _paid_total(store, sale_id)
        status = payment_status(paid, total)
        xc(store, "UPDATE sales SET payment_status=? WHERE id=?", (status, int(sale_id)))

    return OpResult.ok(
        warnings=uow.warnings,
        payment_id=payment_id,
        payment_status=status,
        remaining=round2(total - paid),
    )


@operation("delete sale")
def delete_sale(store: Store, sale_id: int, prune: bool = False) -> OpResult:
    """
    Put the sale's quantities back on the batches they came from and remove
    everything the sale wrote. Restoration is additive, so stock movements
    made since the sale are kept.

    Customer ledger entries are deleted when they are still the newest on the
    account; otherwise one reversal entry offsets them so later balances stay
    valid. Pruning, when asked for, runs after the commit as its own step.
    """
    with unit_of_work(store) as uow:
        sale = q1(store, "SELECT * FROM sales WHERE id=?", (int(sale_id),))
        if sale is None:
            raise NotFoundError("Sale", sale_id)

        restored = 0
        for it in q(
            store,
            """
            SELECT batch_id, quantity_sold FROM sale_items
            WHERE sale_id=? AND COALESCE(item_type, 'material')='material' AND batch_id IS NOT NULL
            """,
            (int(sale_id),),
        ):
            restored += xc(
                store,
                "UPDATE batches SET quantity_remaining = ROUND(quantity_remaining + ?, 6) WHERE id=?",
                (safe_float(it["quantity_sold"]), int(it["batch_id"])),
            )

        ledger = "none"
        if sale["customer_id"]:
            entry_ids = [
                int(r["id"])
                for r in q(
                    store,
                    """
                    SELECT id FROM customer_transactions
                    WHERE customer_id=?
                      AND ((reference_type='sale' AND reference_id=?)
                        OR (reference_type='payment' AND reference_id IN (SELECT id FROM payments WHERE sale_id=?)))
                    """,
                    (int(sale["customer_id"]), int(sale_id), int(sale_id)),
                )
            ]
            ledger = remove_or_reverse(
                store,
                CUSTOMER,
                int(sale["customer_id"]),
                entry_ids,
                reversal_reference_type="sale_reversal",
                reversal_reference_id=int(sale_id),
                notes=f"Reversal of invoice {sale['invoice_number']}",
            )

        x(store, "DELETE FROM payments WHERE sale_id=?", (int(sale_id),))
        x(store, "DELETE FROM sale_items WHERE sale_id=?", (int(sale_id),))
        x(store, "DELETE FROM inventory_movements WHERE reference_type='sale' AND reference_id=?", (int(sale_id),))
        x(store, "DELETE FROM sales WHERE id=?", (int(sale_id),))

    logger.info(
        "sale_deleted",
        extra={"sale_id": int(sale_id), "invoice_number": sale["invoice_number"], "restored_rows": restored, "ledger": ledger},
    )

    warnings = list(uow.warnings)
    pruned = 0
    if prune:
        res = prune_empty_batches(store)
        warnings.extend(res.warnings)
        if res.success:
            pruned = res["deleted"]
        else:
            warnings.append(f"Sale deleted, but pruning empty batches failed: {res.error}")
    return OpResult.ok(warnings=warnings, restored_rows=restored, ledger=ledger, pruned=pruned)


# -------------------------
# Reads
# -------------------------

def get_sale(store: Store, sale_id: int) -> Optional[dict[str, Any]]:
    r = q1(
        store,
        """
        SELECT s.*, c.name AS customer_name, c.company_name, c.phone1 AS customer_phone,
               (SELECT COALESCE(SUM(p.amount), 0) FROM payments p WHERE p.sale_id = s.id) AS total_paid
        FROM sales s
        LEFT JOIN customers c ON c.id = s.customer_id
        WHERE s.id=?
        """,
        (int(sale_id),),
    )
    if r is None:
        return None
    sale = dict(r)
    sale["remaining"] = round2(safe_float(sale["total_amount"]) - safe_float(sale["total_paid"]))

    materials = q(
        store,
        """
        SELECT si.*, sh.code, sh.length_mm, sh.width_mm, sh.thickness_mm, m.name AS metal_name
        FROM sale_items si
        JOIN sheets sh ON sh.id = si.sheet_id
        JOIN metal_types m ON m.id = sh.metal_type_id
        WHERE si.sale_id=? AND COALESCE(si.item_type, 'material')='material'
        ORDER BY si.id
        """,
        (int(sale_id),),
    )
    services = q(
        store,
        """
        SELECT si.*, st.name AS service_name
        FROM sale_items si
        LEFT JOIN service_types st ON st.id = si.service_type_id
        WHERE si.sale_id=? AND si.item_type='service'
        ORDER BY si.id
        """,
        (int(sale_id),),
    )
    sale["items"] = [dict(i) for i in materials] + [dict(i) for i in services]
    sale["payments"] = [dict(p) for p in q(store, "SELECT * FROM payments WHERE sale_id=? ORDER BY id", (int(sale_id),))]
    return sale


def list_sales(store: Store, from_date: Optional[str] = None, to_date: Optional[str] = None) -> list[dict]:
    rows = q(
        store,
        """
        SELECT s.*, c.name AS customer_name,
               (SELECT COALESCE(SUM(p.amount), 0) FROM payments p WHERE p.sale_id = s.id) AS total_paid
        FROM sales s
        LEFT JOIN customers c ON c.id = s.customer_id
        WHERE s.sale_date >= ? AND s.sale_date <= ?
        ORDER BY s.sale_date DESC, s.id DESC
        """,
        (from_date or "0000-01-01", to_date or "9999-12-31"),
    )
    out = []
    for r in rows:
        d = dict(r)
        d["remaining"] = round2(safe_float(d["total_amount"]) - safe_float(d["total_paid"]))
        out.append(d)
    return out
