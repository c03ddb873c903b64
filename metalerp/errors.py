"""
Typed errors for the inventory/sales engine and the result envelope returned
by every mutating operation.

    MetalErpError
    +-- ValidationError        VALIDATION_ERROR      bad input, nothing written
    +-- NotFoundError          NOT_FOUND             referenced row is missing
    +-- InsufficientStock      INSUFFICIENT_STOCK    FIFO request > available
    +-- ConstraintViolation    CONSTRAINT_VIOLATION  storage-level integrity
    +-- TransactionFailure     TRANSACTION_FAILURE   anything else inside a unit of work

Services raise these; the public operation wrappers roll back and convert them
into an ``OpResult`` so callers can show ``error`` directly.
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Optional


class MetalErpError(Exception):
    code: str = "METAL_ERP_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(MetalErpError):
    code = "VALIDATION_ERROR"


class NotFoundError(MetalErpError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found.")


class InsufficientStock(MetalErpError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, sheet_id: Optional[int], requested: float, available: float):
        self.sheet_id = sheet_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested quantity ({requested:g}) exceeds available stock ({available:g})"
            + (f" for sheet {sheet_id}." if sheet_id is not None else ".")
        )


class ConstraintViolation(MetalErpError):
    code = "CONSTRAINT_VIOLATION"

    def __init__(self, message: str, *, kind: str, table: Optional[str] = None, column: Optional[str] = None):
        self.kind = kind
        self.table = table
        self.column = column
        super().__init__(message)


class TransactionFailure(MetalErpError):
    code = "TRANSACTION_FAILURE"


_UNIQUE_RE = re.compile(r"UNIQUE constraint failed: (\w+)\.(\w+)")
_NOT_NULL_RE = re.compile(r"NOT NULL constraint failed: (\w+)\.(\w+)")

_UNIQUE_MESSAGES = {
    "invoice_number": "Invoice number is already in use.",
    "code": "This code is already in use.",
    "name": "This name is already in use.",
    "abbreviation": "This abbreviation is already in use.",
}


def classify_db_error(exc: BaseException) -> MetalErpError:
    """Translate a low-level storage error into a domain error with a user-facing message."""
    if isinstance(exc, MetalErpError):
        return exc

    msg = str(exc)
    if isinstance(exc, sqlite3.IntegrityError):
        m = _UNIQUE_RE.search(msg)
        if m:
            table, column = m.group(1), m.group(2)
            text = _UNIQUE_MESSAGES.get(column, f"Value already exists for field: {column}.")
            return ConstraintViolation(text, kind="unique", table=table, column=column)
        if "FOREIGN KEY constraint failed" in msg:
            return ConstraintViolation(
                "This record is linked to other records and cannot be changed or deleted.",
                kind="foreign_key",
            )
        m = _NOT_NULL_RE.search(msg)
        if m:
            return ConstraintViolation(
                f'Field "{m.group(2)}" is required.', kind="not_null", table=m.group(1), column=m.group(2)
            )
        if "CHECK constraint failed" in msg:
            return ConstraintViolation("A value is out of its allowed range.", kind="check")
        return ConstraintViolation("The data violates a storage constraint.", kind="integrity")

    if isinstance(exc, sqlite3.OperationalError):
        if "no such table" in msg or "no such column" in msg:
            return TransactionFailure("Database structure is out of date. Please run the migrations.")
        if "locked" in msg:
            return TransactionFailure("The database is busy. Please retry.")

    return TransactionFailure("The operation failed and was rolled back.")


@dataclass
class OpResult:
    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, warnings: Optional[list[str]] = None, **data: Any) -> "OpResult":
        return cls(success=True, data=data, warnings=list(warnings or []))

    @classmethod
    def fail(cls, exc: MetalErpError) -> "OpResult":
        return cls(success=False, error=exc.message, code=exc.code)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def as_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error, "code": self.code}
        out: dict[str, Any] = {"success": True, **self.data}
        if self.warnings:
            out["warnings"] = list(self.warnings)
        return out
