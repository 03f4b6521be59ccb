"""
Stock ledger: the authoritative (total_stock, available_stock) pair per textbook.

Allocators and the return reconciler mutate stock only through `reserve` and
`release`; administrative resizes go through `set_total_stock`. Every mutation
is a single conditional UPDATE run inside `transaction()`, so a concurrent
writer can never observe or produce a half-applied change.
"""
from __future__ import annotations

import logging
from typing import Iterable

from school_textbooks.db import q, rowcount, transaction
from school_textbooks.errors import (
    InsufficientAvailableStockError,
    InsufficientStockError,
    NotFoundError,
)
from school_textbooks.utils import as_count

logger = logging.getLogger(__name__)


def _stock_row(conn, textbook_id: int):
    rows = q(
        conn,
        "SELECT id, title, total_stock, available_stock FROM textbooks WHERE id=?",
        (int(textbook_id),),
    )
    if not rows:
        raise NotFoundError("Textbook", int(textbook_id))
    return rows[0]


def get_stock(conn, textbook_id: int) -> dict:
    r = _stock_row(conn, textbook_id)
    return {"total_stock": int(r["total_stock"]), "available_stock": int(r["available_stock"])}


def check_availability(conn, requirements: Iterable[tuple[int, int]]) -> list[dict]:
    """
    Read-only pre-check for a list of (textbook_id, required_qty) pairs.

    Returns one shortage dict per textbook that cannot cover its requirement
    (empty list when everything fits). Requirements for the same textbook are
    summed before checking.
    """
    needed: dict[int, int] = {}
    for textbook_id, qty in requirements:
        needed[int(textbook_id)] = needed.get(int(textbook_id), 0) + int(qty)

    shortages: list[dict] = []
    for textbook_id, required in needed.items():
        r = _stock_row(conn, textbook_id)
        available = int(r["available_stock"])
        if available < required:
            shortages.append(
                {
                    "textbook_id": textbook_id,
                    "title": str(r["title"]),
                    "required": int(required),
                    "available": available,
                }
            )
    return shortages


def reserve(conn, textbook_id: int, qty: int) -> int:
    """
    Take `qty` copies out of available stock. Returns the new available count.

    The decrement is conditional on enough stock being available; nothing is
    changed when it is not.
    """
    qty = as_count(qty, "Quantity", minimum=1)
    with transaction(conn):
        r = _stock_row(conn, textbook_id)
        changed = rowcount(
            conn,
            """
            UPDATE textbooks
            SET available_stock = available_stock - ?
            WHERE id=? AND available_stock >= ?
            """,
            (qty, int(textbook_id), qty),
        )
        if changed != 1:
            logger.warning(
                f"Reserve rejected for textbook {textbook_id}: required {qty}, "
                f"available {int(r['available_stock'])}"
            )
            raise InsufficientStockError(
                [
                    {
                        "textbook_id": int(textbook_id),
                        "title": str(r["title"]),
                        "required": qty,
                        "available": int(r["available_stock"]),
                    }
                ]
            )
        available = int(r["available_stock"]) - qty

    logger.debug(f"Reserved {qty} of textbook {textbook_id} (available now {available})")
    return available


def release(conn, textbook_id: int, qty: int) -> int:
    """
    Put `qty` copies back into available stock, never above total stock.
    Returns the new available count.
    """
    qty = as_count(qty, "Quantity", minimum=0)
    with transaction(conn):
        r = _stock_row(conn, textbook_id)
        total = int(r["total_stock"])
        available = int(r["available_stock"])
        if qty == 0:
            return available

        new_available = available + qty
        if new_available > total:
            logger.warning(
                f"Release of {qty} for textbook {textbook_id} clamped at total stock {total} "
                f"(available was {available})"
            )
            new_available = total

        rowcount(
            conn,
            "UPDATE textbooks SET available_stock=? WHERE id=?",
            (new_available, int(textbook_id)),
        )

    logger.debug(f"Released {qty} of textbook {textbook_id} (available now {new_available})")
    return new_available


def set_total_stock(conn, textbook_id: int, new_total: int) -> dict:
    """
    Administrative resize of a textbook's physical stock.

    The difference is applied to available stock as well, so copies currently
    allocated (or reported missing) stay accounted for. A reduction larger than
    the available copies is rejected.
    """
    new_total = as_count(new_total, "Total stock", minimum=0)
    with transaction(conn):
        r = _stock_row(conn, textbook_id)
        total = int(r["total_stock"])
        available = int(r["available_stock"])
        delta = new_total - total
        new_available = available + delta
        if new_available < 0:
            logger.warning(
                f"Stock resize rejected for textbook {textbook_id}: {total} -> {new_total}, "
                f"available {available}"
            )
            raise InsufficientAvailableStockError(
                [
                    {
                        "textbook_id": int(textbook_id),
                        "title": str(r["title"]),
                        "required": -delta,
                        "available": available,
                    }
                ]
            )
        rowcount(
            conn,
            "UPDATE textbooks SET total_stock=?, available_stock=? WHERE id=?",
            (new_total, new_available, int(textbook_id)),
        )

    logger.info(f"Textbook {textbook_id} total stock {total} -> {new_total} (available {new_available})")
    return {"total_stock": new_total, "available_stock": new_available}
