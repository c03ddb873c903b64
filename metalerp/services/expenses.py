from __future__ import annotations

from typing import Optional

from metalerp.db import Store, operation, q, q1, x, xc, unit_of_work
from metalerp.errors import NotFoundError, OpResult, ValidationError
from metalerp.logging_config import get_logger
from metalerp.utils import clean_text, iso_now, round2
from metalerp import validation

logger = get_logger("expenses")

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"


def list_expense_categories(store: Store, active_only: bool = True):
    if active_only:
        return q(store, "SELECT * FROM expense_categories WHERE is_active = 1 ORDER BY name")
    return q(store, "SELECT * FROM expense_categories ORDER BY name")


@operation("add expense category")
def add_expense_category(store: Store, name: str) -> OpResult:
    msg = validation.required(name, "Category name")
    if msg:
        raise ValidationError(msg)
    with unit_of_work(store) as uow:
        category_id = x(store, "INSERT INTO expense_categories (name) VALUES (?)", (str(name).strip(),))
    return OpResult.ok(warnings=uow.warnings, id=category_id)


def list_expenses(
    store: Store,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    status: Optional[str] = None,
):
    rows = q(
        store,
        """
        SELECT e.*, c.name AS category_name
        FROM expenses e
        JOIN expense_categories c ON c.id = e.category_id
        WHERE e.expense_date >= ? AND e.expense_date <= ?
        ORDER BY e.expense_date DESC, e.id DESC
        """,
        (from_date or "0000-01-01", to_date or "9999-12-31"),
    )
    if status is None:
        return rows
    return [r for r in rows if r["status"] == status]


@operation("add expense")
def add_expense(store: Store, data: dict) -> OpResult:
    msg = validation.validate_expense(data)
    if msg:
        raise ValidationError(msg)
    with unit_of_work(store) as uow:
        if q1(store, "SELECT id FROM expense_categories WHERE id=?", (int(data["category_id"]),)) is None:
            raise NotFoundError("Expense category", data["category_id"])
        expense_id = x(
            store,
            """
            INSERT INTO expenses (category_id, amount, description, expense_date, status, notes, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(data["category_id"]),
                round2(data["amount"]),
                str(data["description"]).strip(),
                str(data["expense_date"]),
                PENDING,
                clean_text(data.get("notes")),
                iso_now(),
            ),
        )
    return OpResult.ok(warnings=uow.warnings, id=expense_id, status=PENDING)


def _decide(store: Store, expense_id: int, status: str, decided_by: str, notes: Optional[str]) -> OpResult:
    with unit_of_work(store) as uow:
        r = q1(store, "SELECT status FROM expenses WHERE id=?", (int(expense_id),))
        if r is None:
            raise NotFoundError("Expense", expense_id)
        if r["status"] != PENDING:
            raise ValidationError(f"Only pending expenses can be {status}; this one is {r['status']}")
        xc(
            store,
            "UPDATE expenses SET status=?, decided_by=?, decided_at=?, decision_notes=? WHERE id=?",
            (status, str(decided_by).strip(), iso_now(), clean_text(notes), int(expense_id)),
        )
    logger.info("expense_decided", extra={"expense_id": int(expense_id), "status": status})
    return OpResult.ok(warnings=uow.warnings, id=int(expense_id), status=status)


@operation("approve expense")
def approve_expense(store: Store, expense_id: int, *, approved_by: str, notes: Optional[str] = None) -> OpResult:
    msg = validation.required(approved_by, "Approver")
    if msg:
        raise ValidationError(msg)
    return _decide(store, expense_id, APPROVED, approved_by, notes)


@operation("reject expense")
def reject_expense(store: Store, expense_id: int, *, rejected_by: str, reason: str) -> OpResult:
    msg = validation.required(rejected_by, "Reviewer") or validation.required(reason, "Rejection reason")
    if msg:
        raise ValidationError(msg)
    return _decide(store, expense_id, REJECTED, rejected_by, reason)


@operation("delete expense")
def delete_expense(store: Store, expense_id: int) -> OpResult:
    with unit_of_work(store) as uow:
        if xc(store, "DELETE FROM expenses WHERE id=?", (int(expense_id),)) == 0:
            raise NotFoundError("Expense", expense_id)
    return OpResult.ok(warnings=uow.warnings)
