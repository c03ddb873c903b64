from __future__ import annotations

import random
from datetime import date, timedelta

from metalerp.db import Store, q, q1, x, unit_of_work
from metalerp.errors import OpResult, TransactionFailure
from metalerp.logging_config import get_logger
from metalerp.services.inventory import add_sheet_with_batch
from metalerp.services.parties import add_customer, add_supplier
from metalerp.services.sales import generate_invoice_number, process_sale
from metalerp.utils import iso_now

logger = get_logger("demo_data")

DEFAULT_CURRENCIES = [
    ("USD", "US Dollar", "$", 1.0),
    ("EUR", "Euro", "€", 1.08),
    ("GBP", "Pound Sterling", "£", 1.27),
]
DEFAULT_PAYMENT_METHODS = ["Cash", "Bank Transfer", "Cheque"]
DEFAULT_METALS = [
    # name, abbreviation, density g/cm3, grades, finishes
    ("Stainless Steel", "SS", 7.93, ["304", "316", "430"], ["2B", "BA", "No4"]),
    ("Mild Steel", "ST", 7.85, ["S235", "S355"], ["HR", "CR"]),
    ("Aluminium", "AL", 2.70, ["1050", "5083"], ["Mill"]),
    ("Galvanized Steel", "GI", 7.85, ["DX51D"], ["Z275"]),
    ("Copper", "CU", 8.96, ["C110"], []),
]
DEFAULT_SERVICES = [
    ("Cutting", 2.0),
    ("Bending", 1.5),
    ("Laser Cutting", 5.0),
    ("Welding", 4.0),
]
DEFAULT_EXPENSE_CATEGORIES = ["Rent", "Salaries", "Utilities", "Transport", "Maintenance", "Other"]

# Children before parents.
_WIPE_ORDER = [
    "customer_transactions",
    "supplier_transactions",
    "payments",
    "supplier_payments",
    "sale_items",
    "sales",
    "inventory_movements",
    "batches",
    "sheets",
    "expenses",
    "customers",
    "suppliers",
]


def upsert_reference_data(store: Store, *, base_currency: str = "USD") -> None:
    """Seed lookups once. ``base_currency`` only applies to a profile that does not exist yet."""
    with unit_of_work(store):
        x(
            store,
            "INSERT OR IGNORE INTO company_profile (id, base_currency, updated_at) VALUES (1, ?, ?)",
            (str(base_currency or "USD").strip().upper(), iso_now()),
        )

        for code, name, symbol, rate in DEFAULT_CURRENCIES:
            x(
                store,
                "INSERT OR IGNORE INTO currencies (code, name, symbol, exchange_rate, updated_at) VALUES (?, ?, ?, ?, ?)",
                (code, name, symbol, float(rate), iso_now()),
            )

        for name in DEFAULT_PAYMENT_METHODS:
            x(store, "INSERT OR IGNORE INTO payment_methods (name) VALUES (?)", (name,))

        for name, abbr, density, grades, finishes in DEFAULT_METALS:
            x(
                store,
                "INSERT OR IGNORE INTO metal_types (name, abbreviation, density) VALUES (?, ?, ?)",
                (name, abbr, float(density)),
            )
            metal_id = int(q1(store, "SELECT id FROM metal_types WHERE abbreviation=?", (abbr,))["id"])
            for g in grades:
                x(store, "INSERT OR IGNORE INTO grades (metal_type_id, name) VALUES (?, ?)", (metal_id, g))
            for f in finishes:
                x(store, "INSERT OR IGNORE INTO finishes (metal_type_id, name) VALUES (?, ?)", (metal_id, f))

        for name, cost in DEFAULT_SERVICES:
            x(store, "INSERT OR IGNORE INTO service_types (name, default_cost) VALUES (?, ?)", (name, float(cost)))

        for name in DEFAULT_EXPENSE_CATEGORIES:
            x(store, "INSERT OR IGNORE INTO expense_categories (name) VALUES (?)", (name,))


def wipe_all(store: Store, *, include_reference: bool = False) -> None:
    """Delete business data, keep the schema. Reference data goes too when asked."""
    tables = list(_WIPE_ORDER)
    if include_reference:
        tables += ["grades", "finishes", "metal_types", "service_types", "expense_categories", "payment_methods", "currencies", "company_profile"]
    with unit_of_work(store):
        for t in tables:
            store.conn.execute(f"DELETE FROM {t};")
    logger.info("data_wiped", extra={"tables": len(tables)})


def _must(res: OpResult) -> OpResult:
    if not res.success:
        raise TransactionFailure(f"Demo data could not be loaded: {res.error}")
    return res


def _ids_by(store: Store, sql: str, params=()) -> dict[str, int]:
    return {str(r["name"]): int(r["id"]) for r in q(store, sql, params)}


def load_demo_data(store: Store, *, seed: int = 7) -> dict:
    random.seed(seed)
    upsert_reference_data(store)

    suppliers = [
        _must(add_supplier(store, {"name": n, "phone1": p}))["id"]
        for n, p in [("Gulf Metals Trading", "+971 4 555 0101"), ("Eastern Steel Supply", "+971 6 555 0202")]
    ]
    customers = [
        _must(add_customer(store, {"name": n, "company_name": c}))["id"]
        for n, c in [("Omar Haddad", "Haddad Fabrication"), ("Lina Saeed", "Saeed Kitchens"), ("Karim Aziz", None)]
    ]

    metals = _ids_by(store, "SELECT id, abbreviation AS name FROM metal_types")
    base_date = date.today() - timedelta(days=30)

    sheets: list[int] = []
    sheet_defs = [
        ("SS", "304", "2B", 2440, 1220, 1.5, 6.8),
        ("SS", "316", "No4", 3000, 1500, 2.0, 9.5),
        ("ST", "S235", "HR", 2500, 1250, 3.0, 1.1),
        ("AL", "5083", "Mill", 2000, 1000, 2.0, 4.2),
    ]
    for i, (abbr, grade, finish, length, width, thickness, ppk) in enumerate(sheet_defs):
        metal_id = metals[abbr]
        grades = _ids_by(store, "SELECT id, name FROM grades WHERE metal_type_id=?", (metal_id,))
        finishes = _ids_by(store, "SELECT id, name FROM finishes WHERE metal_type_id=?", (metal_id,))
        sheet = {
            "metal_type_id": metal_id,
            "grade_id": grades.get(grade),
            "finish_id": finishes.get(finish),
            "length_mm": length,
            "width_mm": width,
            "thickness_mm": thickness,
        }
        # Two lots per sheet, a week apart, so FIFO has something to walk.
        for lot in range(2):
            res = _must(
                add_sheet_with_batch(
                    store,
                    sheet,
                    {
                        "supplier_id": random.choice(suppliers),
                        "quantity": random.randint(20, 40),
                        "price_per_kg": round(ppk * random.uniform(0.95, 1.05), 2),
                        "received_date": (base_date + timedelta(days=i + 7 * lot)).isoformat(),
                        "storage_location": f"Rack {chr(65 + i)}",
                    },
                )
            )
        sheets.append(int(res["sheet_id"]))

    services = _ids_by(store, "SELECT id, name FROM service_types")
    sales = 0
    for n in range(4):
        sheet_id = random.choice(sheets)
        items = [{"item_type": "material", "sheet_id": sheet_id, "quantity": random.randint(2, 8), "unit_price": 95.0}]
        if n % 2 == 0:
            items.append({"item_type": "service", "service_type_id": services["Cutting"], "quantity": 4, "service_price": 6.0})
        _must(
            process_sale(
                store,
                {
                    "invoice_number": generate_invoice_number(store),
                    "customer_id": random.choice(customers) if n else None,
                    "sale_date": (base_date + timedelta(days=15 + n)).isoformat(),
                    "items": items,
                    "amount_paid": random.choice([0.0, 150.0]),
                },
            )
        )
        sales += 1

    summary = {"suppliers": len(suppliers), "customers": len(customers), "sheets": len(sheets), "sales": sales}
    logger.info("demo_data_loaded", extra=summary)
    return summary
