from __future__ import annotations

from typing import Optional

from metalerp.db import Store, operation, q, q1, x, unit_of_work
from metalerp.errors import OpResult, ValidationError
from metalerp.utils import clean_text, safe_float
from metalerp import validation


def list_metal_types(store: Store, active_only: bool = False):
    if active_only:
        return q(store, "SELECT * FROM metal_types WHERE is_active = 1 ORDER BY name")
    return q(store, "SELECT * FROM metal_types ORDER BY name")


def list_grades(store: Store, metal_type_id: Optional[int] = None):
    if metal_type_id is None:
        return q(store, "SELECT * FROM grades ORDER BY metal_type_id, name")
    return q(store, "SELECT * FROM grades WHERE metal_type_id=? ORDER BY name", (int(metal_type_id),))


def list_finishes(store: Store, metal_type_id: Optional[int] = None):
    if metal_type_id is None:
        return q(store, "SELECT * FROM finishes ORDER BY metal_type_id, name")
    return q(store, "SELECT * FROM finishes WHERE metal_type_id=? ORDER BY name", (int(metal_type_id),))


def list_service_types(store: Store, active_only: bool = False):
    if active_only:
        return q(store, "SELECT * FROM service_types WHERE is_active = 1 ORDER BY id")
    return q(store, "SELECT * FROM service_types ORDER BY id")


@operation("add metal type")
def add_metal_type(store: Store, *, name: str, abbreviation: str, density: Optional[float] = None) -> OpResult:
    msg = validation.required(name, "Metal name") or validation.required(abbreviation, "Abbreviation")
    if not msg and density not in (None, ""):
        msg = validation.positive_number(density, "Density")
    if msg:
        raise ValidationError(msg)
    with unit_of_work(store) as uow:
        metal_id = x(
            store,
            "INSERT INTO metal_types (name, abbreviation, density) VALUES (?, ?, ?)",
            (name.strip(), abbreviation.strip().upper(), float(density) if density not in (None, "") else None),
        )
    return OpResult.ok(warnings=uow.warnings, id=metal_id)


@operation("add grade")
def add_grade(store: Store, *, metal_type_id: int, name: str) -> OpResult:
    msg = validation.required(name, "Grade name")
    if msg:
        raise ValidationError(msg)
    with unit_of_work(store) as uow:
        grade_id = x(store, "INSERT INTO grades (metal_type_id, name) VALUES (?, ?)", (int(metal_type_id), name.strip()))
    return OpResult.ok(warnings=uow.warnings, id=grade_id)


@operation("add finish")
def add_finish(store: Store, *, metal_type_id: int, name: str) -> OpResult:
    msg = validation.required(name, "Finish name")
    if msg:
        raise ValidationError(msg)
    with unit_of_work(store) as uow:
        finish_id = x(store, "INSERT INTO finishes (metal_type_id, name) VALUES (?, ?)", (int(metal_type_id), name.strip()))
    return OpResult.ok(warnings=uow.warnings, id=finish_id)


@operation("add service type")
def add_service_type(store: Store, *, name: str, default_cost: float = 0.0) -> OpResult:
    msg = validation.required(name, "Service name") or validation.non_negative_number(default_cost, "Default cost")
    if msg:
        raise ValidationError(msg)
    with unit_of_work(store) as uow:
        service_id = x(
            store,
            "INSERT INTO service_types (name, default_cost) VALUES (?, ?)",
            (name.strip(), float(default_cost)),
        )
    return OpResult.ok(warnings=uow.warnings, id=service_id)


def _format_thickness(thickness: float) -> str:
    t = safe_float(thickness)
    return str(int(round(t))) if t == int(t) else f"{t:.1f}"


def _format_dimension(v: float) -> str:
    f = safe_float(v)
    return str(int(f)) if f == int(f) else f"{f:g}"


def generate_sheet_code(
    store: Store,
    *,
    metal_type_id: int,
    length_mm: float,
    width_mm: float,
    thickness_mm: float,
    grade_id: Optional[int] = None,
    finish_id: Optional[int] = None,
    is_remnant: bool = False,
) -> str:
    """
    PREFIX-LengthxWidthxThickness-Grade-Finish

    Examples:
      SS-3000x1500x3-304-2B
      RST-1200x800x1.5-xx-xx   (remnant)
    """
    m = q1(store, "SELECT abbreviation FROM metal_types WHERE id=?", (int(metal_type_id),))
    if m is None or not m["abbreviation"]:
        raise ValidationError("Metal type not found.")
    prefix = f"R{m['abbreviation']}" if is_remnant else str(m["abbreviation"])

    grade = "xx"
    if grade_id:
        g = q1(store, "SELECT name FROM grades WHERE id=?", (int(grade_id),))
        grade = (clean_text(g["name"]) if g else None) or "xx"

    finish = "xx"
    if finish_id:
        f = q1(store, "SELECT name FROM finishes WHERE id=?", (int(finish_id),))
        finish = (clean_text(f["name"]) if f else None) or "xx"

    dims = f"{_format_dimension(length_mm)}x{_format_dimension(width_mm)}x{_format_thickness(thickness_mm)}"
    return f"{prefix}-{dims}-{grade}-{finish}"


def sheet_weight_from_density(length_mm: float, width_mm: float, thickness_mm: float, density: Optional[float]) -> Optional[float]:
    """Weight of one sheet in kg: mm^3 * g/cm^3 / 1e6."""
    d = safe_float(density)
    if d <= 0:
        return None
    return round(safe_float(length_mm) * safe_float(width_mm) * safe_float(thickness_mm) * d / 1_000_000, 3)
