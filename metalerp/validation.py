"""
Pure input checks. Each returns None when the value is acceptable, otherwise a
human-readable message; the record-level validators join several problems
with ". ".
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Optional

from metalerp.utils import parse_iso_date, safe_float

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?[0-9\s\-()]{6,20}$")


def _is_number(v: Any) -> bool:
    if v is None or isinstance(v, bool):
        return False
    try:
        f = float(v)
    except (TypeError, ValueError):
        return False
    return f == f and f not in (float("inf"), float("-inf"))


def required(value: Any, label: str) -> Optional[str]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return f"{label} is required"
    return None


def positive_number(value: Any, label: str) -> Optional[str]:
    if not _is_number(value) or float(value) <= 0:
        return f"{label} must be a positive number"
    return None


def non_negative_number(value: Any, label: str) -> Optional[str]:
    if not _is_number(value) or float(value) < 0:
        return f"{label} must be zero or more"
    return None


def valid_iso_date(value: Any, label: str, *, allow_future: bool = True, today: Optional[date] = None) -> Optional[str]:
    if value is None or value == "":
        return f"{label} is required"
    d = parse_iso_date(value)
    if d is None:
        return f"{label} must be a valid date (YYYY-MM-DD)"
    if not allow_future and d > (today or date.today()):
        return f"{label} cannot be in the future"
    return None


def email(value: str) -> Optional[str]:
    return None if _EMAIL_RE.match(str(value).strip()) else "Invalid email address"


def phone(value: str) -> Optional[str]:
    return None if _PHONE_RE.match(str(value).strip()) else "Invalid phone number"


def _join(errors: list[Optional[str]]) -> Optional[str]:
    msgs = [e for e in errors if e]
    return ". ".join(msgs) if msgs else None


def validate_party(data: dict, *, is_customer: bool) -> Optional[str]:
    errors = [required(data.get("name"), "Customer name" if is_customer else "Supplier name")]
    if data.get("email"):
        errors.append(email(data["email"]))
    if data.get("phone1"):
        errors.append(phone(data["phone1"]))
    return _join(errors)


def validate_sheet(data: dict) -> Optional[str]:
    errors: list[Optional[str]] = []
    if not data.get("metal_type_id"):
        errors.append("Metal type is required")
    errors.append(positive_number(data.get("length_mm"), "Length"))
    errors.append(positive_number(data.get("width_mm"), "Width"))
    errors.append(positive_number(data.get("thickness_mm"), "Thickness"))
    if data.get("weight_per_sheet_kg") not in (None, ""):
        errors.append(positive_number(data.get("weight_per_sheet_kg"), "Weight per sheet"))
    return _join(errors)


def validate_batch(data: dict) -> Optional[str]:
    errors = [
        positive_number(data.get("quantity"), "Quantity"),
        valid_iso_date(data.get("received_date"), "Received date"),
    ]
    for key, label in (("price_per_kg", "Price per kg"), ("total_cost", "Total cost")):
        if data.get(key) not in (None, ""):
            errors.append(non_negative_number(data.get(key), label))
    return _join(errors)


def validate_sale(data: dict, *, today: Optional[date] = None) -> Optional[str]:
    """Header and line-shape checks; sheet existence is checked against the store."""
    errors: list[Optional[str]] = [
        required(data.get("invoice_number"), "Invoice number"),
        valid_iso_date(data.get("sale_date"), "Sale date", allow_future=False, today=today),
    ]

    items = data.get("items") or []
    if not items:
        errors.append("At least one item is required")

    for n, item in enumerate(items, start=1):
        kind = item.get("item_type") or "material"
        if kind == "service":
            errors.append(non_negative_number(item.get("service_price"), f"Line {n}: service price"))
            if item.get("quantity") not in (None, ""):
                errors.append(positive_number(item.get("quantity"), f"Line {n}: quantity"))
        elif kind == "material":
            if not item.get("sheet_id"):
                errors.append(f"Line {n}: sheet is required")
            errors.append(positive_number(item.get("quantity"), f"Line {n}: quantity"))
            errors.append(non_negative_number(item.get("unit_price"), f"Line {n}: unit price"))
            if item.get("is_custom_size") and item.get("sold_weight") not in (None, ""):
                errors.append(non_negative_number(item.get("sold_weight"), f"Line {n}: sold weight"))
        else:
            errors.append(f"Line {n}: unknown item type '{kind}'")

    if data.get("discount") not in (None, ""):
        errors.append(non_negative_number(data.get("discount"), "Discount"))
    if data.get("amount_paid") not in (None, ""):
        errors.append(non_negative_number(data.get("amount_paid"), "Amount paid"))
    return _join(errors)


def validate_expense(data: dict) -> Optional[str]:
    return _join(
        [
            required(data.get("category_id"), "Category"),
            positive_number(data.get("amount"), "Amount"),
            required(data.get("description"), "Description"),
            valid_iso_date(data.get("expense_date"), "Expense date"),
        ]
    )


def validate_currency(data: dict) -> Optional[str]:
    errors = [required(data.get("code"), "Currency code"), required(data.get("name"), "Currency name")]
    errors.append(positive_number(data.get("exchange_rate"), "Exchange rate"))
    return _join(errors)


def discount_within_subtotal(discount: Any, subtotal: float) -> Optional[str]:
    if safe_float(discount) > subtotal:
        return "Discount cannot exceed the subtotal"
    return None
