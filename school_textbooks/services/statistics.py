from __future__ import annotations

import logging

from school_textbooks.db import q
from school_textbooks.services.status import STATUS_RETURNED

logger = logging.getLogger(__name__)


def get_statistics(conn) -> dict:
    """
    Dashboard counters over current records (read-only).

    Batch and individual distributions both count as distributions; a pending
    return is any distribution not yet fully returned.
    """
    r = q(
        conn,
        """
        SELECT
          (SELECT COUNT(1) FROM distributions)
            + (SELECT COUNT(1) FROM individual_distributions) AS total_distributions,
          (SELECT COUNT(1) FROM distributions WHERE status <> ?)
            + (SELECT COUNT(1) FROM individual_distributions WHERE status <> ?) AS pending_returns,
          (SELECT COALESCE(SUM(missing_qty), 0) FROM distribution_details)
            + (SELECT COALESCE(SUM(missing_qty), 0) FROM individual_distributions) AS total_missing_books,
          (SELECT COALESCE(SUM(total_stock), 0) FROM textbooks) AS total_textbook_stock,
          (SELECT COALESCE(SUM(available_stock), 0) FROM textbooks) AS available_textbook_stock
        """,
        (STATUS_RETURNED, STATUS_RETURNED),
    )[0]
    return {k: int(r[k]) for k in r.keys()}


def ledger_discrepancies(conn) -> list[dict]:
    """
    Audit the conservation rule for every textbook:

        available_stock + sum(distributed_qty - returned_qty) == total_stock

    Missing copies stay in the sum (they are never returned to stock), so a
    healthy ledger yields an empty list.
    """
    rows = q(
        conn,
        """
        WITH out_batch AS (
          SELECT textbook_id, SUM(distributed_qty - returned_qty) AS n
          FROM distribution_details
          GROUP BY textbook_id
        ),
        out_individual AS (
          SELECT textbook_id, SUM(quantity - returned_qty) AS n
          FROM individual_distributions
          GROUP BY textbook_id
        )
        SELECT t.id AS textbook_id, t.title, t.total_stock, t.available_stock,
               COALESCE(b.n, 0) + COALESCE(i.n, 0) AS not_in_stock
        FROM textbooks t
        LEFT JOIN out_batch b ON b.textbook_id = t.id
        LEFT JOIN out_individual i ON i.textbook_id = t.id
        ORDER BY t.id
        """,
    )
    out = []
    for r in rows:
        expected = int(r["available_stock"]) + int(r["not_in_stock"])
        if expected != int(r["total_stock"]):
            out.append({**dict(r), "difference": expected - int(r["total_stock"])})
    if out:
        logger.warning(f"Stock ledger discrepancies found for {len(out)} textbook(s)")
    return out
