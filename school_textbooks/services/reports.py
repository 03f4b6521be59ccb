from __future__ import annotations

from typing import Optional

import pandas as pd

from school_textbooks.db import q
from school_textbooks.services.distributions import list_batch_distributions
from school_textbooks.services.individual import list_individual_distributions
from school_textbooks.services.status import STATUSES

LOW_STOCK_RATIO = 0.2


def stock_report_frame(conn) -> pd.DataFrame:
    """
    One row per textbook: stock pair, copies out, copies reported missing.
    `low_stock` flags titles with less than 20% of their copies available.
    """
    rows = q(
        conn,
        """
        WITH lines AS (
          SELECT textbook_id, distributed_qty AS qty, returned_qty, missing_qty FROM distribution_details
          UNION ALL
          SELECT textbook_id, quantity, returned_qty, missing_qty FROM individual_distributions
        )
        SELECT
          t.id AS textbook_id,
          t.title,
          t.subject,
          t.grade_from,
          t.grade_to,
          t.total_stock,
          t.available_stock,
          COALESCE(SUM(l.qty - l.returned_qty - l.missing_qty), 0) AS out_qty,
          COALESCE(SUM(l.missing_qty), 0) AS missing_qty
        FROM textbooks t
        LEFT JOIN lines l ON l.textbook_id = t.id
        GROUP BY t.id
        ORDER BY t.grade_from, t.subject, t.title
        """,
    )
    columns = [
        "textbook_id", "title", "subject", "grade_from", "grade_to",
        "total_stock", "available_stock", "out_qty", "missing_qty",
    ]
    df = pd.DataFrame([dict(r) for r in rows], columns=columns)
    df["low_stock"] = df["available_stock"] < df["total_stock"] * LOW_STOCK_RATIO
    return df


def batch_distribution_frame(
    conn,
    *,
    academic_year: Optional[str] = None,
    status: Optional[str] = None,
) -> pd.DataFrame:
    rows = list_batch_distributions(conn, academic_year=academic_year, status=status)
    df = pd.DataFrame(
        rows,
        columns=[
            "id", "academic_year", "branch_grade", "branch_name", "teacher_name", "set_name",
            "textbook_count", "distributed_qty", "returned_qty", "missing_qty",
            "status", "distributed_at", "returned_at",
        ],
    )
    df["outstanding_qty"] = df["distributed_qty"] - df["returned_qty"] - df["missing_qty"]
    return df


def individual_distribution_frame(
    conn,
    *,
    academic_year: Optional[str] = None,
    status: Optional[str] = None,
    recipient_type: Optional[str] = None,
) -> pd.DataFrame:
    rows = list_individual_distributions(
        conn, academic_year=academic_year, status=status, recipient_type=recipient_type
    )
    return pd.DataFrame(
        rows,
        columns=[
            "id", "academic_year", "recipient_type", "recipient_name", "title", "subject",
            "quantity", "returned_qty", "missing_qty", "outstanding_qty",
            "status", "distributed_at", "returned_at", "notes",
        ],
    )


def status_breakdown(conn, *, academic_year: Optional[str] = None) -> pd.DataFrame:
    """Distribution counts per status, batch and individual side by side."""
    batch = batch_distribution_frame(conn, academic_year=academic_year)
    individual = individual_distribution_frame(conn, academic_year=academic_year)
    out = pd.DataFrame(
        {
            "batch": batch.groupby("status").size(),
            "individual": individual.groupby("status").size(),
        }
    )
    out = out.reindex(list(STATUSES)).fillna(0).astype(int)
    out.index.name = "status"
    return out
