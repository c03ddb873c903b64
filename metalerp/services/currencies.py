from __future__ import annotations

from typing import Optional

from metalerp.db import Store, operation, q, q1, x, xc, unit_of_work
from metalerp.errors import NotFoundError, OpResult, ValidationError
from metalerp.services.profile import get_company_profile
from metalerp.utils import iso_now, round2, safe_float
from metalerp import validation


def get_base_currency_info(store: Store) -> dict:
    base = get_company_profile(store).base_currency
    r = q1(store, "SELECT code, symbol, exchange_rate FROM currencies WHERE code=?", (base,))
    if r is None:
        return {"code": base, "symbol": base, "exchange_rate": 1.0}
    return {"code": str(r["code"]), "symbol": str(r["symbol"]), "exchange_rate": safe_float(r["exchange_rate"], 1.0)}


def get_currencies(store: Store, active_only: bool = False):
    if active_only:
        return q(store, "SELECT * FROM currencies WHERE is_active = 1 ORDER BY code")
    return q(store, "SELECT * FROM currencies ORDER BY code")


def get_exchange_rates(store: Store) -> dict[str, float]:
    """Active currencies -> value of one unit in base currency. The base is always 1.0."""
    rates = {str(r["code"]): safe_float(r["exchange_rate"], 1.0) for r in get_currencies(store, active_only=True)}
    rates.setdefault(get_company_profile(store).base_currency, 1.0)
    return rates


def to_base(amount: float, from_currency: str, base_currency: str, rates: dict[str, float]) -> float:
    a = safe_float(amount)
    if from_currency == base_currency:
        return a
    rate = rates.get(from_currency)
    if not rate:
        return a
    return round2(a * rate)


def from_base(amount: float, to_currency: str, base_currency: str, rates: dict[str, float]) -> float:
    a = safe_float(amount)
    if to_currency == base_currency:
        return a
    rate = rates.get(to_currency)
    if not rate:
        return a
    return round2(a / rate)


@operation("add currency")
def add_currency(store: Store, data: dict) -> OpResult:
    msg = validation.validate_currency(data)
    if msg:
        raise ValidationError(msg)
    code = str(data["code"]).strip().upper()
    with unit_of_work(store) as uow:
        currency_id = x(
            store,
            """
            INSERT INTO currencies (code, name, symbol, exchange_rate, is_active, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                code,
                str(data["name"]).strip(),
                str(data.get("symbol") or code),
                float(data["exchange_rate"]),
                0 if data.get("is_active") is False else 1,
                iso_now(),
            ),
        )
    return OpResult.ok(warnings=uow.warnings, id=currency_id)


@operation("update currency rate")
def update_currency_rate(store: Store, code: str, exchange_rate: float, *, is_active: Optional[bool] = None) -> OpResult:
    msg = validation.positive_number(exchange_rate, "Exchange rate")
    if msg:
        raise ValidationError(msg)
    with unit_of_work(store) as uow:
        n = xc(
            store,
            """
            UPDATE currencies
            SET exchange_rate = ?, is_active = COALESCE(?, is_active), updated_at = ?
            WHERE code = ?
            """,
            (float(exchange_rate), None if is_active is None else int(bool(is_active)), iso_now(), str(code).upper()),
        )
        if n == 0:
            raise NotFoundError("Currency", code)
    return OpResult.ok(warnings=uow.warnings)
