from __future__ import annotations

from typing import Any, Optional

from metalerp.db import Store, operation, q, q1, x, xc, unit_of_work
from metalerp.errors import NotFoundError, OpResult, ValidationError
from metalerp.logging_config import get_logger
from metalerp.services.catalog import generate_sheet_code, sheet_weight_from_density
from metalerp.services.fifo import cost_per_kg
from metalerp.services.ledger import SUPPLIER, append_entry
from metalerp.utils import clean_text, iso_now, iso_today, round2, safe_float
from metalerp import validation

logger = get_logger("inventory")


# -------------------------
# Movements
# -------------------------

def record_inventory_movement(
    store: Store,
    movement_type: str,
    sheet_id: int,
    batch_id: Optional[int],
    quantity: float,
    reference_type: Optional[str] = None,
    reference_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> int:
    """Append an audit row. Runs inside the caller's unit of work."""
    if movement_type not in ("IN", "OUT"):
        raise ValidationError(f"Unknown movement type: {movement_type!r}")
    return x(
        store,
        """
        INSERT INTO inventory_movements (
            movement_type, sheet_id, batch_id, quantity, reference_type, reference_id, notes, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            movement_type,
            int(sheet_id),
            int(batch_id) if batch_id is not None else None,
            safe_float(quantity),
            reference_type,
            int(reference_id) if reference_id is not None else None,
            clean_text(notes),
            iso_now(),
        ),
    )


# -------------------------
# Sheets
# -------------------------

def get_sheet(store: Store, sheet_id: int):
    return q1(store, "SELECT * FROM sheets WHERE id=?", (int(sheet_id),))


def _metal_density(store: Store, metal_type_id: int) -> Optional[float]:
    r = q1(store, "SELECT density FROM metal_types WHERE id=?", (int(metal_type_id),))
    if r is None:
        raise ValidationError("Metal type not found.")
    return r["density"]


def _sheet_weight(store: Store, sheet: dict) -> Optional[float]:
    w = safe_float(sheet.get("weight_per_sheet_kg"))
    if w > 0:
        return w
    return sheet_weight_from_density(
        sheet["length_mm"], sheet["width_mm"], sheet["thickness_mm"], _metal_density(store, sheet["metal_type_id"])
    )


def _find_or_create_sheet(store: Store, sheet: dict) -> tuple[int, str, bool]:
    """Returns (sheet_id, code, linked_to_existing)."""
    is_remnant = bool(sheet.get("is_remnant"))
    code = clean_text(sheet.get("code"))
    if not code:
        code = generate_sheet_code(
            store,
            metal_type_id=sheet["metal_type_id"],
            length_mm=sheet["length_mm"],
            width_mm=sheet["width_mm"],
            thickness_mm=sheet["thickness_mm"],
            grade_id=sheet.get("grade_id"),
            finish_id=sheet.get("finish_id"),
            is_remnant=is_remnant,
        )

    existing = q1(store, "SELECT id FROM sheets WHERE code=? AND is_remnant=?", (code, 1 if is_remnant else 0))
    if existing is not None:
        return int(existing["id"]), code, True

    sheet_id = x(
        store,
        """
        INSERT INTO sheets (
            code, metal_type_id, grade_id, finish_id, length_mm, width_mm, thickness_mm,
            weight_per_sheet_kg, is_remnant, parent_sheet_id, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            code,
            int(sheet["metal_type_id"]),
            sheet.get("grade_id") or None,
            sheet.get("finish_id") or None,
            safe_float(sheet["length_mm"]),
            safe_float(sheet["width_mm"]),
            safe_float(sheet["thickness_mm"]),
            _sheet_weight(store, sheet),
            1 if is_remnant else 0,
            sheet.get("parent_sheet_id") or None,
            iso_now(),
        ),
    )
    return sheet_id, code, False


# -------------------------
# Batches
# -------------------------

def _batch_costs(batch: dict, weight_per_unit: Optional[float]) -> tuple[Optional[float], Optional[float]]:
    """Fill in whichever of price_per_kg / total_cost is missing when the weight is known."""
    ppk = safe_float(batch.get("price_per_kg")) or None
    total = safe_float(batch.get("total_cost")) or None
    batch_weight = safe_float(batch.get("quantity")) * safe_float(weight_per_unit)
    if batch_weight > 0:
        if ppk is not None and total is None:
            total = round2(ppk * batch_weight)
        elif total is not None and ppk is None:
            ppk = round(total / batch_weight, 4)
    return ppk, total


def _insert_batch(store: Store, sheet_id: int, code: str, batch: dict, weight_per_unit: Optional[float]) -> int:
    qty = safe_float(batch.get("quantity"))
    ppk, total = _batch_costs(batch, weight_per_unit)
    supplier_id = batch.get("supplier_id") or None

    batch_id = x(
        store,
        """
        INSERT INTO batches (
            sheet_id, supplier_id, quantity_original, quantity_remaining,
            price_per_kg, total_cost, storage_location, received_date, notes, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            int(sheet_id),
            supplier_id,
            qty,
            qty,
            ppk,
            total,
            clean_text(batch.get("storage_location")),
            str(batch["received_date"]),
            clean_text(batch.get("notes")),
            iso_now(),
        ),
    )

    record_inventory_movement(
        store, "IN", sheet_id, batch_id, qty, reference_type=batch.get("reference_type") or "purchase", reference_id=batch_id
    )

    if supplier_id and safe_float(total) > 0:
        append_entry(
            store,
            SUPPLIER,
            int(supplier_id),
            safe_float(total),
            transaction_type="purchase",
            transaction_date=str(batch["received_date"]),
            reference_type="batch",
            reference_id=batch_id,
            notes=f"Batch purchase - {code}",
        )
    return batch_id


@operation("add sheet with batch")
def add_sheet_with_batch(store: Store, sheet: dict, batch: dict) -> OpResult:
    msg = validation.validate_sheet(sheet) or validation.validate_batch(batch)
    if msg:
        raise ValidationError(msg)

    with unit_of_work(store) as uow:
        sheet_id, code, linked = _find_or_create_sheet(store, sheet)
        weight = safe_float(get_sheet(store, sheet_id)["weight_per_sheet_kg"]) or None
        batch_id = _insert_batch(store, sheet_id, code, batch, weight)

    logger.info("batch_received", extra={"sheet_id": sheet_id, "batch_id": batch_id, "code": code, "linked": linked})
    return OpResult.ok(warnings=uow.warnings, sheet_id=sheet_id, batch_id=batch_id, code=code, linked=linked)


@operation("add batch")
def add_batch_to_sheet(store: Store, batch: dict) -> OpResult:
    msg = validation.validate_batch(batch)
    if not msg and not batch.get("sheet_id"):
        msg = "Sheet is required"
    if msg:
        raise ValidationError(msg)

    with unit_of_work(store) as uow:
        sheet = get_sheet(store, batch["sheet_id"])
        if sheet is None:
            raise NotFoundError("Sheet", batch["sheet_id"])
        batch_id = _insert_batch(store, int(sheet["id"]), str(sheet["code"]), batch, sheet["weight_per_sheet_kg"])

    logger.info("batch_received", extra={"sheet_id": int(sheet["id"]), "batch_id": batch_id})
    return OpResult.ok(warnings=uow.warnings, id=batch_id)


def get_batches_by_sheet(store: Store, sheet_id: int, include_empty: bool = False):
    if include_empty:
        sql = """
            SELECT b.*, s.name AS supplier_name
            FROM batches b
            LEFT JOIN suppliers s ON s.id = b.supplier_id
            WHERE b.sheet_id=?
            ORDER BY b.received_date ASC, b.id ASC
        """
    else:
        sql = """
            SELECT b.*, s.name AS supplier_name
            FROM batches b
            LEFT JOIN suppliers s ON s.id = b.supplier_id
            WHERE b.sheet_id=? AND b.quantity_remaining > 0
            ORDER BY b.received_date ASC, b.id ASC
        """
    return q(store, sql, (int(sheet_id),))


def get_batch(store: Store, batch_id: int):
    return q1(
        store,
        """
        SELECT b.*, s.name AS supplier_name, sh.code AS sheet_code
        FROM batches b
        LEFT JOIN suppliers s ON s.id = b.supplier_id
        LEFT JOIN sheets sh ON sh.id = b.sheet_id
        WHERE b.id=?
        """,
        (int(batch_id),),
    )


# Quantities only move through sales and their deletion.
_BATCH_UPDATES = {
    "price_per_kg": "UPDATE batches SET price_per_kg=? WHERE id=?",
    "total_cost": "UPDATE batches SET total_cost=? WHERE id=?",
    "storage_location": "UPDATE batches SET storage_location=? WHERE id=?",
    "notes": "UPDATE batches SET notes=? WHERE id=?",
}


@operation("update batch")
def update_batch(store: Store, batch_id: int, **fields: Any) -> OpResult:
    if not fields:
        raise ValidationError("No updates given")
    unknown = sorted(set(fields) - set(_BATCH_UPDATES))
    if unknown:
        raise ValidationError(f"Cannot update batch field(s): {', '.join(unknown)}")
    for key in ("price_per_kg", "total_cost"):
        if fields.get(key) not in (None, ""):
            msg = validation.non_negative_number(fields[key], key.replace("_", " ").capitalize())
            if msg:
                raise ValidationError(msg)

    with unit_of_work(store) as uow:
        if q1(store, "SELECT id FROM batches WHERE id=?", (int(batch_id),)) is None:
            raise NotFoundError("Batch", batch_id)
        for key, value in fields.items():
            if key in ("price_per_kg", "total_cost"):
                value = safe_float(value) or None
            else:
                value = clean_text(value)
            xc(store, _BATCH_UPDATES[key], (value, int(batch_id)))
    return OpResult.ok(warnings=uow.warnings)


def list_sheets(store: Store, *, remnants: Optional[bool] = None) -> list[dict]:
    rows = q(
        store,
        """
        SELECT
          s.*,
          m.name AS metal_name,
          m.abbreviation AS metal_abbr,
          g.name AS grade_name,
          f.name AS finish_name,
          COALESCE(SUM(CASE WHEN b.quantity_remaining > 0 THEN b.quantity_remaining ELSE 0 END), 0) AS total_quantity,
          MIN(b.price_per_kg) AS min_price,
          MAX(b.price_per_kg) AS max_price
        FROM sheets s
        JOIN metal_types m ON m.id = s.metal_type_id
        LEFT JOIN grades g ON g.id = s.grade_id
        LEFT JOIN finishes f ON f.id = s.finish_id
        LEFT JOIN batches b ON b.sheet_id = s.id
        GROUP BY s.id
        ORDER BY s.is_remnant ASC, s.code ASC
        """,
    )
    out = []
    for r in rows:
        if remnants is not None and bool(r["is_remnant"]) != remnants:
            continue
        d = dict(r)
        d["grade_name"] = d["grade_name"] or "xx"
        d["finish_name"] = d["finish_name"] or "xx"
        out.append(d)
    return out


@operation("backfill sheet weights")
def backfill_sheet_weights(store: Store) -> OpResult:
    """Fill weight_per_sheet_kg from dimensions and metal density where it is missing."""
    updated = 0
    with unit_of_work(store) as uow:
        rows = q(
            store,
            """
            SELECT s.id, s.length_mm, s.width_mm, s.thickness_mm, m.density
            FROM sheets s
            JOIN metal_types m ON m.id = s.metal_type_id
            WHERE s.weight_per_sheet_kg IS NULL OR s.weight_per_sheet_kg <= 0
            """,
        )
        for r in rows:
            w = sheet_weight_from_density(r["length_mm"], r["width_mm"], r["thickness_mm"], r["density"])
            if w is None:
                continue
            updated += xc(store, "UPDATE sheets SET weight_per_sheet_kg=? WHERE id=?", (w, int(r["id"])))
    if updated:
        logger.info("sheet_weights_backfilled", extra={"updated": updated})
    return OpResult.ok(warnings=uow.warnings, updated=updated)


def _parent_cost_per_kg(store: Store, parent) -> float:
    # Oldest batch still in stock; the cut usually empties the parent, so fall back to its newest batch.
    wpu = parent["weight_per_sheet_kg"]
    for b in get_batches_by_sheet(store, int(parent["id"])):
        c = cost_per_kg(b["price_per_kg"], b["total_cost"], b["quantity_original"], wpu)
        if c > 0:
            return c
    for b in reversed(get_batches_by_sheet(store, int(parent["id"]), include_empty=True)):
        c = cost_per_kg(b["price_per_kg"], b["total_cost"], b["quantity_original"], wpu)
        if c > 0:
            return c
    return 0.0


@operation("create remnant")
def create_remnant(store: Store, parent_sheet_id: int, pieces: list[dict]) -> OpResult:
    """
    Each piece {length_mm, width_mm, quantity[, thickness_mm, storage_location, notes]}
    becomes a remnant sheet of the parent's material with a batch received today,
    costed at the parent's oldest available cost per kg.
    """
    if not pieces:
        raise ValidationError("At least one piece is required")
    for n, p in enumerate(pieces, start=1):
        msg = (
            validation.positive_number(p.get("length_mm"), f"Piece {n}: length")
            or validation.positive_number(p.get("width_mm"), f"Piece {n}: width")
            or validation.positive_number(p.get("quantity"), f"Piece {n}: quantity")
        )
        if msg:
            raise ValidationError(msg)

    created: list[dict] = []
    with unit_of_work(store) as uow:
        parent = get_sheet(store, parent_sheet_id)
        if parent is None:
            raise NotFoundError("Sheet", parent_sheet_id)

        ppk = _parent_cost_per_kg(store, parent)

        for p in pieces:
            sheet = {
                "metal_type_id": parent["metal_type_id"],
                "grade_id": parent["grade_id"],
                "finish_id": parent["finish_id"],
                "length_mm": p["length_mm"],
                "width_mm": p["width_mm"],
                "thickness_mm": p.get("thickness_mm") or parent["thickness_mm"],
                "is_remnant": True,
                "parent_sheet_id": int(parent["id"]),
            }
            sheet_id, code, _ = _find_or_create_sheet(store, sheet)
            batch_id = _insert_batch(
                store,
                sheet_id,
                code,
                {
                    "quantity": p["quantity"],
                    "price_per_kg": ppk or None,
                    "storage_location": p.get("storage_location"),
                    "notes": p.get("notes"),
                    "received_date": iso_today(),
                    "reference_type": "remnant",
                },
                get_sheet(store, sheet_id)["weight_per_sheet_kg"],
            )
            created.append({"sheet_id": sheet_id, "batch_id": batch_id, "code": code})

    logger.info("remnants_created", extra={"parent_sheet_id": int(parent_sheet_id), "pieces": len(created)})
    return OpResult.ok(warnings=uow.warnings, remnants=created)


@operation("prune empty batches")
def prune_empty_batches(store: Store) -> OpResult:
    """
    Delete exhausted batches nothing else points at. Movements keep their
    batch_id as history. Running it twice deletes nothing the second time.
    """
    with unit_of_work(store) as uow:
        deleted = xc(
            store,
            """
            DELETE FROM batches
            WHERE quantity_remaining <= 0
              AND NOT EXISTS (SELECT 1 FROM sale_items si WHERE si.batch_id = batches.id)
              AND NOT EXISTS (SELECT 1 FROM supplier_payments sp WHERE sp.batch_id = batches.id)
            """,
        )
    if deleted:
        logger.info("empty_batches_pruned", extra={"deleted": deleted})
    return OpResult.ok(warnings=uow.warnings, deleted=deleted)
