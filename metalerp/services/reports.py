from __future__ import annotations

from typing import Optional

import pandas as pd

from metalerp.db import Store, q, q1
from metalerp.services.fifo import cost_per_kg
from metalerp.services.ledger import CUSTOMER, SUPPLIER, get_statement
from metalerp.utils import iso_today, parse_iso_date, round2, safe_float

VALUATION_COLUMNS = [
    "sheet_id", "code", "metal_name", "is_remnant", "weight_per_sheet_kg",
    "available_qty", "available_weight_kg", "stock_value",
]
PROFIT_COLUMNS = [
    "sale_id", "invoice_number", "sale_date", "customer_name", "subtotal", "discount", "tax",
    "revenue", "material_cogs", "service_cogs", "cogs", "gross_profit", "margin_pct",
]
STATEMENT_COLUMNS = [
    "id", "transaction_date", "transaction_type", "reference_type", "reference_id", "amount", "balance_after", "notes",
]
AGING_BUCKETS = ["current", "days_1_30", "days_31_60", "days_61_90", "days_over_90"]
AGING_COLUMNS = ["account_id", "name", "phone1", "email", "total_balance", *AGING_BUCKETS]
PURCHASE_COLUMNS = [
    "batch_id", "received_date", "supplier_name", "sheet_code", "metal_name", "dimensions",
    "quantity_original", "quantity_remaining", "quantity_sold", "price_per_kg", "total_cost", "storage_location",
]
MATERIAL_SALES_COLUMNS = ["sheet_id", "code", "metal_name", "dimensions", "quantity", "revenue", "cogs", "gross_profit"]
SERVICE_SALES_COLUMNS = ["service_type_id", "name", "quantity", "revenue", "cost", "gross_profit"]
TOP_CUSTOMER_COLUMNS = ["customer_id", "name", "company_name", "invoice_count", "total_sales"]

NO_SUPPLIER = "(no supplier)"


def inventory_valuation(store: Store) -> pd.DataFrame:
    """Stock on hand per sheet, valued at each open batch's own cost per kg."""
    rows = q(
        store,
        """
        SELECT
          s.id AS sheet_id, s.code, m.name AS metal_name, s.is_remnant, s.weight_per_sheet_kg,
          b.quantity_original, b.quantity_remaining, b.price_per_kg, b.total_cost
        FROM sheets s
        JOIN metal_types m ON m.id = s.metal_type_id
        JOIN batches b ON b.sheet_id = s.id
        WHERE b.quantity_remaining > 0
        ORDER BY s.code, b.received_date, b.id
        """,
    )
    if not rows:
        return pd.DataFrame(columns=VALUATION_COLUMNS)

    df = pd.DataFrame([dict(r) for r in rows])
    for col in ["weight_per_sheet_kg", "quantity_original", "quantity_remaining", "price_per_kg", "total_cost"]:
        df[col] = pd.to_numeric(df[col], errors="coerce")

    df["cost_per_kg"] = [
        cost_per_kg(r.price_per_kg, r.total_cost, r.quantity_original, r.weight_per_sheet_kg)
        for r in df.itertuples(index=False)
    ]
    wpu = df["weight_per_sheet_kg"].fillna(0)
    df["available_weight_kg"] = df["quantity_remaining"] * wpu
    df["stock_value"] = df["available_weight_kg"] * df["cost_per_kg"]

    out = (
        df.groupby(["sheet_id", "code", "metal_name", "is_remnant"], as_index=False)
        .agg(
            weight_per_sheet_kg=("weight_per_sheet_kg", "first"),
            available_qty=("quantity_remaining", "sum"),
            available_weight_kg=("available_weight_kg", "sum"),
            stock_value=("stock_value", "sum"),
        )
    )
    out["available_weight_kg"] = out["available_weight_kg"].round(3)
    out["stock_value"] = out["stock_value"].round(2)
    return out[VALUATION_COLUMNS]


def sales_profit(store: Store, from_date: Optional[str] = None, to_date: Optional[str] = None) -> pd.DataFrame:
    """Per sale: revenue is the invoice total, COGS is material cogs plus service cost."""
    rows = q(
        store,
        """
        SELECT
          s.id AS sale_id, s.invoice_number, s.sale_date, c.name AS customer_name,
          s.subtotal, s.discount, s.tax, s.total_amount AS revenue,
          COALESCE(SUM(CASE WHEN COALESCE(si.item_type, 'material')='material' THEN si.cogs_total END), 0) AS material_cogs,
          COALESCE(SUM(CASE WHEN si.item_type='service' THEN si.service_cost_total END), 0) AS service_cogs
        FROM sales s
        LEFT JOIN customers c ON c.id = s.customer_id
        LEFT JOIN sale_items si ON si.sale_id = s.id
        WHERE s.sale_date >= ? AND s.sale_date <= ?
        GROUP BY s.id
        ORDER BY s.sale_date, s.id
        """,
        (from_date or "0000-01-01", to_date or "9999-12-31"),
    )
    if not rows:
        return pd.DataFrame(columns=PROFIT_COLUMNS)

    df = pd.DataFrame([dict(r) for r in rows])
    for col in ["subtotal", "discount", "tax", "revenue", "material_cogs", "service_cogs"]:
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0.0)

    df["cogs"] = (df["material_cogs"] + df["service_cogs"]).round(2)
    df["gross_profit"] = (df["revenue"] - df["cogs"]).round(2)
    df["margin_pct"] = (df["gross_profit"] / df["revenue"].where(df["revenue"] != 0) * 100).round(2).fillna(0.0)
    return df[PROFIT_COLUMNS]


def statement_frame(
    store: Store,
    kind: str,
    account_id: int,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
) -> pd.DataFrame:
    rows = get_statement(store, kind, account_id, from_date, to_date)
    if not rows:
        return pd.DataFrame(columns=STATEMENT_COLUMNS)
    df = pd.DataFrame([dict(r) for r in rows])
    for col in ["amount", "balance_after"]:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    return df[STATEMENT_COLUMNS]


def _period(from_date: Optional[str], to_date: Optional[str]) -> tuple[str, str]:
    return from_date or "0000-01-01", to_date or "9999-12-31"


def _dimensions(df: pd.DataFrame) -> pd.Series:
    return df.apply(lambda r: f"{r['length_mm']:g}x{r['width_mm']:g}x{r['thickness_mm']:g}", axis=1)


# Static per-kind SQL, keyed like the ledger's own.
_AGING_SQL = {
    CUSTOMER: """
        SELECT p.id AS account_id, p.name, p.phone1, p.email, t.id AS entry_id, t.transaction_date, t.amount
        FROM customers p
        JOIN customer_transactions t ON t.customer_id = p.id
        WHERE p.is_active = 1 AND t.transaction_date <= ?
        ORDER BY p.id, t.transaction_date, t.id
    """,
    SUPPLIER: """
        SELECT p.id AS account_id, p.name, p.phone1, p.email, t.id AS entry_id, t.transaction_date, t.amount
        FROM suppliers p
        JOIN supplier_transactions t ON t.supplier_id = p.id
        WHERE p.is_active = 1 AND t.transaction_date <= ?
        ORDER BY p.id, t.transaction_date, t.id
    """,
}


def _aging_bucket(days_old: int) -> str:
    if days_old <= 0:
        return "current"
    if days_old <= 30:
        return "days_1_30"
    if days_old <= 60:
        return "days_31_60"
    if days_old <= 90:
        return "days_61_90"
    return "days_over_90"


def aging_report(store: Store, kind: str, as_of: Optional[str] = None) -> pd.DataFrame:
    """
    Outstanding balance per active account as of a date, split by age.

    The balance is the sum of entries dated on or before ``as_of``. Payments
    and other credits settle the oldest charges first, so the open amount is
    spread over the newest charges and the buckets always add up to the
    balance. Accounts with nothing owed are left out.
    """
    as_of = as_of or iso_today()
    as_of_d = parse_iso_date(as_of)
    rows = q(store, _AGING_SQL[kind], (as_of,))
    if not rows:
        return pd.DataFrame(columns=AGING_COLUMNS)

    df = pd.DataFrame([dict(r) for r in rows])
    df["amount"] = pd.to_numeric(df["amount"], errors="coerce").fillna(0.0)

    records = []
    for account_id, g in df.groupby("account_id", sort=False):
        balance = round2(g["amount"].sum())
        if balance <= 0:
            continue
        buckets = dict.fromkeys(AGING_BUCKETS, 0.0)
        open_amount = balance
        for r in g[g["amount"] > 0].iloc[::-1].itertuples(index=False):
            if open_amount <= 0:
                break
            part = min(float(r.amount), open_amount)
            buckets[_aging_bucket((as_of_d - parse_iso_date(r.transaction_date)).days)] += part
            open_amount = round2(open_amount - part)
        first = g.iloc[0]
        records.append(
            {
                "account_id": int(account_id),
                "name": first["name"],
                "phone1": first["phone1"],
                "email": first["email"],
                "total_balance": balance,
                **{k: round2(v) for k, v in buckets.items()},
            }
        )

    if not records:
        return pd.DataFrame(columns=AGING_COLUMNS)
    out = pd.DataFrame(records, columns=AGING_COLUMNS)
    return out.sort_values("total_balance", ascending=False, kind="stable").reset_index(drop=True)


def aging_summary(store: Store, kind: str, as_of: Optional[str] = None) -> dict:
    df = aging_report(store, kind, as_of)
    summary = {"total_accounts": int(len(df)), "total_balance": round2(df["total_balance"].sum()) if len(df) else 0.0}
    for b in AGING_BUCKETS:
        summary[b] = round2(df[b].sum()) if len(df) else 0.0
    return summary


def purchases_by_supplier(
    store: Store,
    supplier_id: Optional[int] = None,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
) -> pd.DataFrame:
    """Every received batch in the period, newest first, optionally for one supplier."""
    sql = """
        SELECT
          b.id AS batch_id, b.received_date, COALESCE(sp.name, ?) AS supplier_name,
          s.code AS sheet_code, m.name AS metal_name, s.length_mm, s.width_mm, s.thickness_mm,
          b.quantity_original, b.quantity_remaining, b.price_per_kg, b.total_cost, b.storage_location
        FROM batches b
        JOIN sheets s ON s.id = b.sheet_id
        JOIN metal_types m ON m.id = s.metal_type_id
        LEFT JOIN suppliers sp ON sp.id = b.supplier_id
        WHERE b.received_date >= ? AND b.received_date <= ?
    """
    params: list = [NO_SUPPLIER, *_period(from_date, to_date)]
    if supplier_id:
        sql += " AND b.supplier_id = ?"
        params.append(int(supplier_id))
    rows = q(store, sql + " ORDER BY b.received_date DESC, b.id DESC", params)
    if not rows:
        return pd.DataFrame(columns=PURCHASE_COLUMNS)

    df = pd.DataFrame([dict(r) for r in rows])
    for col in ["quantity_original", "quantity_remaining", "price_per_kg", "total_cost"]:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df["dimensions"] = _dimensions(df)
    df["quantity_sold"] = df["quantity_original"] - df["quantity_remaining"]
    return df[PURCHASE_COLUMNS]


def purchases_summary(store: Store, from_date: Optional[str] = None, to_date: Optional[str] = None) -> dict:
    """Totals for the period plus per-supplier and per-metal breakdowns."""
    df = purchases_by_supplier(store, None, from_date, to_date)

    def _by(col: str) -> pd.DataFrame:
        if df.empty:
            return pd.DataFrame(columns=[col, "purchase_count", "total_cost", "total_quantity"])
        out = df.groupby(col, as_index=False).agg(
            purchase_count=("batch_id", "count"),
            total_cost=("total_cost", "sum"),
            total_quantity=("quantity_original", "sum"),
        )
        out["total_cost"] = out["total_cost"].round(2)
        return out.sort_values("total_cost", ascending=False).reset_index(drop=True)

    return {
        "total_purchases": int(len(df)),
        "total_cost": round2(df["total_cost"].fillna(0).sum()) if len(df) else 0.0,
        "total_quantity": float(df["quantity_original"].sum()) if len(df) else 0.0,
        "by_supplier": _by("supplier_name"),
        "by_material": _by("metal_name"),
    }


def best_selling_materials(
    store: Store, from_date: Optional[str] = None, to_date: Optional[str] = None, limit: int = 10
) -> pd.DataFrame:
    rows = q(
        store,
        """
        SELECT
          sh.id AS sheet_id, sh.code, m.name AS metal_name, sh.length_mm, sh.width_mm, sh.thickness_mm,
          COALESCE(SUM(si.quantity_sold), 0) AS quantity,
          COALESCE(SUM(si.total_price), 0) AS revenue,
          COALESCE(SUM(si.cogs_total), 0) AS cogs
        FROM sale_items si
        JOIN sales s ON s.id = si.sale_id
        JOIN sheets sh ON sh.id = si.sheet_id
        JOIN metal_types m ON m.id = sh.metal_type_id
        WHERE COALESCE(si.item_type, 'material') = 'material' AND s.sale_date >= ? AND s.sale_date <= ?
        GROUP BY sh.id
        ORDER BY quantity DESC, revenue DESC
        LIMIT ?
        """,
        (*_period(from_date, to_date), int(limit)),
    )
    if not rows:
        return pd.DataFrame(columns=MATERIAL_SALES_COLUMNS)
    df = pd.DataFrame([dict(r) for r in rows])
    df["dimensions"] = _dimensions(df)
    df["revenue"] = df["revenue"].astype(float).round(2)
    df["cogs"] = df["cogs"].astype(float).round(2)
    df["gross_profit"] = (df["revenue"] - df["cogs"]).round(2)
    return df[MATERIAL_SALES_COLUMNS]


def best_selling_services(
    store: Store, from_date: Optional[str] = None, to_date: Optional[str] = None, limit: int = 10
) -> pd.DataFrame:
    rows = q(
        store,
        """
        SELECT
          st.id AS service_type_id, COALESCE(st.name, 'Service') AS name,
          COALESCE(SUM(si.quantity_sold), 0) AS quantity,
          COALESCE(SUM(si.total_price), 0) AS revenue,
          COALESCE(SUM(si.service_cost_total), 0) AS cost
        FROM sale_items si
        JOIN sales s ON s.id = si.sale_id
        LEFT JOIN service_types st ON st.id = si.service_type_id
        WHERE si.item_type = 'service' AND s.sale_date >= ? AND s.sale_date <= ?
        GROUP BY st.id
        ORDER BY quantity DESC, revenue DESC
        LIMIT ?
        """,
        (*_period(from_date, to_date), int(limit)),
    )
    if not rows:
        return pd.DataFrame(columns=SERVICE_SALES_COLUMNS)
    df = pd.DataFrame([dict(r) for r in rows])
    df["revenue"] = df["revenue"].astype(float).round(2)
    df["cost"] = df["cost"].astype(float).round(2)
    df["gross_profit"] = (df["revenue"] - df["cost"]).round(2)
    return df[SERVICE_SALES_COLUMNS]


def top_customers(
    store: Store, from_date: Optional[str] = None, to_date: Optional[str] = None, limit: int = 10
) -> pd.DataFrame:
    rows = q(
        store,
        """
        SELECT
          c.id AS customer_id, c.name, c.company_name,
          COUNT(DISTINCT s.id) AS invoice_count,
          COALESCE(SUM(s.total_amount), 0) AS total_sales
        FROM customers c
        JOIN sales s ON s.customer_id = c.id
        WHERE s.sale_date >= ? AND s.sale_date <= ?
        GROUP BY c.id
        ORDER BY total_sales DESC
        LIMIT ?
        """,
        (*_period(from_date, to_date), int(limit)),
    )
    if not rows:
        return pd.DataFrame(columns=TOP_CUSTOMER_COLUMNS)
    df = pd.DataFrame([dict(r) for r in rows])
    df["total_sales"] = df["total_sales"].astype(float).round(2)
    return df[TOP_CUSTOMER_COLUMNS]


def sales_summary(store: Store, from_date: Optional[str] = None, to_date: Optional[str] = None) -> dict:
    period = _period(from_date, to_date)
    totals = q1(
        store,
        """
        SELECT COUNT(*) AS invoices, COALESCE(SUM(total_amount), 0) AS total_sales
        FROM sales WHERE sale_date >= ? AND sale_date <= ?
        """,
        period,
    )
    paid = q1(
        store,
        """
        SELECT COALESCE(SUM(p.amount), 0) AS paid
        FROM payments p
        JOIN sales s ON s.id = p.sale_id
        WHERE s.sale_date >= ? AND s.sale_date <= ?
        """,
        period,
    )
    invoices = int(totals["invoices"])
    total_sales = round2(safe_float(totals["total_sales"]))
    total_paid = round2(safe_float(paid["paid"]))
    return {
        "total_sales": total_sales,
        "total_invoices": invoices,
        "average_invoice": round2(total_sales / invoices) if invoices else 0.0,
        "total_paid": total_paid,
        "total_unpaid": round2(total_sales - total_paid),
    }
