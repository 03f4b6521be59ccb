"""
Error taxonomy for the textbook engine.

Every error carries a stable `code`; pages show `str(error)`. Persistence
failures (sqlite3.Error) are not wrapped and surface as-is.
"""
from __future__ import annotations

from typing import Any, Optional

VALIDATION = "VALIDATION"
NOT_FOUND = "NOT_FOUND"
INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
INSUFFICIENT_AVAILABLE_STOCK = "INSUFFICIENT_AVAILABLE_STOCK"
CONFLICT = "CONFLICT"

# Conflict reasons
DISTRIBUTION_HAS_RETURNS = "DISTRIBUTION_HAS_RETURNS"
RETURN_EXCEEDS_DISTRIBUTED = "RETURN_EXCEEDS_DISTRIBUTED"
TEXTBOOK_IN_USE = "TEXTBOOK_IN_USE"
BRANCH_IN_USE = "BRANCH_IN_USE"
SET_IN_USE = "SET_IN_USE"
RECIPIENT_IN_USE = "RECIPIENT_IN_USE"
DUPLICATE = "DUPLICATE"


class EngineError(Exception):
    """Base class for errors reported back to the caller."""

    code = "ENGINE_ERROR"


class ValidationError(EngineError, ValueError):
    """Missing or malformed input."""

    code = VALIDATION


class NotFoundError(EngineError, LookupError):
    code = NOT_FOUND

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found.")


class InsufficientStockError(EngineError):
    """
    Raised when an allocation needs more copies than are available.

    `shortages` lists every offending textbook; the first one is also exposed as
    `textbook_id` / `required` / `available` for single-line messaging.
    """

    code = INSUFFICIENT_STOCK

    def __init__(self, shortages: list[dict[str, Any]]):
        if not shortages:
            raise ValueError("InsufficientStockError needs at least one shortage.")
        self.shortages = [dict(s) for s in shortages]
        first = self.shortages[0]
        self.textbook_id = int(first["textbook_id"])
        self.required = int(first["required"])
        self.available = int(first["available"])
        self.title: Optional[str] = first.get("title")
        super().__init__(self._message())

    def _message(self) -> str:
        parts = []
        for s in self.shortages:
            label = s.get("title") or f"textbook {s['textbook_id']}"
            parts.append(f"{label}: required {s['required']}, available {s['available']}")
        return "Insufficient stock. " + "; ".join(parts) + "."


class InsufficientAvailableStockError(InsufficientStockError):
    """A total-stock reduction would leave fewer copies than are allocated out."""

    code = INSUFFICIENT_AVAILABLE_STOCK

    def _message(self) -> str:
        s = self.shortages[0]
        return (
            f"Cannot reduce total stock by {s['required']}: "
            f"only {s['available']} copies are not allocated."
        )


class ConflictError(EngineError):
    """Illegal state transition (over-return, deleting an allocation with returns, ...)."""

    code = CONFLICT

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)
