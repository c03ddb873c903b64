"""
FIFO planning over a snapshot of batches.

``plan_fifo`` never touches the store: it takes the batches of one sheet as
they were read inside the caller's unit of work and returns the allocations
the caller is expected to apply in that same transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from metalerp.errors import InsufficientStock, ValidationError
from metalerp.utils import round2, safe_float, to_decimal


@dataclass(frozen=True)
class BatchSnapshot:
    id: int
    received_date: str
    quantity_remaining: float
    cost_per_kg: float = 0.0


@dataclass(frozen=True)
class Allocation:
    batch_id: int
    quantity: float
    weight: float
    cogs_per_unit: float
    cogs_total: float


def cost_per_kg(
    price_per_kg: Optional[float],
    total_cost: Optional[float],
    quantity_original: Optional[float],
    weight_per_unit: Optional[float],
) -> float:
    """price_per_kg when set, else total_cost spread over the batch weight, else 0."""
    ppk = safe_float(price_per_kg)
    if ppk > 0:
        return ppk
    total_weight = safe_float(quantity_original) * safe_float(weight_per_unit)
    tc = safe_float(total_cost)
    if tc > 0 and total_weight > 0:
        return tc / total_weight
    return 0.0


def snapshot_from_row(row, weight_per_unit: Optional[float]) -> BatchSnapshot:
    return BatchSnapshot(
        id=int(row["id"]),
        received_date=str(row["received_date"]),
        quantity_remaining=safe_float(row["quantity_remaining"]),
        cost_per_kg=cost_per_kg(row["price_per_kg"], row["total_cost"], row["quantity_original"], weight_per_unit),
    )


def unit_weight(weight_per_unit: Optional[float], quantity: float, custom_total_weight: Optional[float] = None) -> float:
    if custom_total_weight is not None and safe_float(custom_total_weight) > 0:
        return safe_float(custom_total_weight) / safe_float(quantity)
    return safe_float(weight_per_unit)


def plan_fifo(
    batches: Iterable[BatchSnapshot],
    quantity: float,
    *,
    weight_per_unit: Optional[float],
    custom_total_weight: Optional[float] = None,
    sheet_id: Optional[int] = None,
) -> list[Allocation]:
    """
    Oldest received first, ties by id. Allocated quantities sum exactly to
    ``quantity``; nothing is planned when the batches cannot cover it.
    """
    requested = to_decimal(quantity)
    if requested <= 0:
        raise ValidationError("Quantity must be a positive number")

    ordered = sorted(batches, key=lambda b: (str(b.received_date), int(b.id)))
    open_batches = [b for b in ordered if to_decimal(b.quantity_remaining) > 0]

    available = sum((to_decimal(b.quantity_remaining) for b in open_batches), Decimal(0))
    if available < requested:
        raise InsufficientStock(sheet_id, float(requested), float(available))

    uw = unit_weight(weight_per_unit, float(requested), custom_total_weight)

    plan: list[Allocation] = []
    remaining = requested
    for b in open_batches:
        if remaining <= 0:
            break
        take = min(remaining, to_decimal(b.quantity_remaining))
        qty = float(take)
        weight = round2(uw * qty)
        plan.append(
            Allocation(
                batch_id=int(b.id),
                quantity=qty,
                weight=weight,
                cogs_per_unit=round2(b.cost_per_kg * uw),
                cogs_total=round2(b.cost_per_kg * weight),
            )
        )
        remaining -= take
    return plan
