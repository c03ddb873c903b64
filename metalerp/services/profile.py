from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from metalerp.db import Store, operation, q1, x, unit_of_work
from metalerp.errors import OpResult, ValidationError
from metalerp.utils import clean_text, iso_now, safe_float
from metalerp import validation


@dataclass(frozen=True)
class CompanyProfile:
    company_name: str
    base_currency: str
    default_payment_method: str
    vat_rate: float
    vat_enabled: bool
    address: Optional[str] = None
    phone1: Optional[str] = None
    email: Optional[str] = None
    tax_number: Optional[str] = None


DEFAULT_PROFILE = CompanyProfile(
    company_name="Metal Sheets Company",
    base_currency="USD",
    default_payment_method="Cash",
    vat_rate=0.0,
    vat_enabled=False,
)


def get_company_profile(store: Store) -> CompanyProfile:
    r = q1(store, "SELECT * FROM company_profile WHERE id = 1")
    if r is None:
        return DEFAULT_PROFILE
    return CompanyProfile(
        company_name=str(r["company_name"]),
        base_currency=str(r["base_currency"] or "USD").upper(),
        default_payment_method=str(r["default_payment_method"] or "Cash"),
        vat_rate=safe_float(r["vat_rate"]),
        vat_enabled=bool(r["vat_enabled"]),
        address=r["address"],
        phone1=r["phone1"],
        email=r["email"],
        tax_number=r["tax_number"],
    )


@operation("update company profile")
def update_company_profile(store: Store, data: dict) -> OpResult:
    errors = [validation.required(data.get("company_name"), "Company name")]
    if data.get("email"):
        errors.append(validation.email(data["email"]))
    if data.get("vat_rate") not in (None, ""):
        errors.append(validation.non_negative_number(data.get("vat_rate"), "VAT rate"))
    msg = ". ".join(e for e in errors if e)
    if msg:
        raise ValidationError(msg)

    current = get_company_profile(store)
    with unit_of_work(store) as uow:
        x(
            store,
            """
            INSERT INTO company_profile (
                id, company_name, address, phone1, email, tax_number,
                base_currency, default_payment_method, vat_rate, vat_enabled, updated_at
            ) VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                company_name=excluded.company_name,
                address=excluded.address,
                phone1=excluded.phone1,
                email=excluded.email,
                tax_number=excluded.tax_number,
                base_currency=excluded.base_currency,
                default_payment_method=excluded.default_payment_method,
                vat_rate=excluded.vat_rate,
                vat_enabled=excluded.vat_enabled,
                updated_at=excluded.updated_at
            """,
            (
                str(data["company_name"]).strip(),
                clean_text(data.get("address", current.address)),
                clean_text(data.get("phone1", current.phone1)),
                clean_text(data.get("email", current.email)),
                clean_text(data.get("tax_number", current.tax_number)),
                str(data.get("base_currency") or current.base_currency).strip().upper(),
                str(data.get("default_payment_method") or current.default_payment_method).strip(),
                safe_float(data.get("vat_rate"), current.vat_rate),
                1 if data.get("vat_enabled", current.vat_enabled) else 0,
                iso_now(),
            ),
        )
    return OpResult.ok(warnings=uow.warnings)
