from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

_CENT = Decimal("0.01")


def iso_today() -> str:
    return date.today().isoformat()


def iso_now() -> str:
    # Use UTC ISO timestamps for consistency.
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def safe_float(v: Any, default: float = 0.0) -> float:
    """Coerce user/database input to float, falling back on garbage."""
    if v is None or isinstance(v, bool):
        return default
    try:
        f = float(v)
    except (TypeError, ValueError):
        return default
    if f != f or f in (float("inf"), float("-inf")):
        return default
    return f


def to_decimal(v: Any) -> Decimal:
    # str() first so 0.1 stays 0.1 rather than its binary expansion
    try:
        return Decimal(str(v))
    except InvalidOperation:
        return Decimal(0)


def round2(v: Any) -> float:
    """Round half-up to 2 decimals (1.005 -> 1.01, -1.005 -> -1.01)."""
    return float(to_decimal(safe_float(v)).quantize(_CENT, rounding=ROUND_HALF_UP))


def parse_iso_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def clean_text(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s if s else None
