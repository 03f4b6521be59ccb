"""
Batch distributions: one textbook set handed out to one branch.

Every student in the branch gets one copy of every textbook in the set, so each
detail line starts with distributed_qty = branch.student_count. Allocation is
all-or-nothing: stock for every line is checked before any of it is reserved,
and the whole operation runs in one write transaction.
"""
from __future__ import annotations

import logging
from typing import Optional

from school_textbooks.db import q, x, transaction
from school_textbooks.errors import (
    DISTRIBUTION_HAS_RETURNS,
    DUPLICATE,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from school_textbooks.services.app_settings import validate_academic_year
from school_textbooks.services.directory import get_branch, get_set
from school_textbooks.services.ledger import check_availability, release, reserve
from school_textbooks.services.status import STATUS_DISTRIBUTED, normalize_status_filter
from school_textbooks.utils import clean_text, iso_now

logger = logging.getLogger(__name__)


def _detail_rows(conn, distribution_id: int):
    return q(
        conn,
        """
        SELECT d.id, d.textbook_id, t.title, t.subject,
               d.distributed_qty, d.returned_qty, d.missing_qty
        FROM distribution_details d
        JOIN textbooks t ON t.id = d.textbook_id
        WHERE d.distribution_id=?
        ORDER BY t.subject, t.title
        """,
        (int(distribution_id),),
    )


def get_batch_distribution(conn, distribution_id: int) -> dict:
    rows = q(
        conn,
        """
        SELECT d.*, b.name AS branch_name, b.grade AS branch_grade,
               s.name AS set_name, tc.full_name AS teacher_name
        FROM distributions d
        JOIN branches b ON b.id = d.branch_id
        JOIN textbook_sets s ON s.id = d.set_id
        LEFT JOIN teachers tc ON tc.id = b.teacher_id
        WHERE d.id=?
        """,
        (int(distribution_id),),
    )
    if not rows:
        raise NotFoundError("Distribution", int(distribution_id))

    out = dict(rows[0])
    details = []
    for r in _detail_rows(conn, distribution_id):
        line = dict(r)
        line["outstanding_qty"] = int(r["distributed_qty"]) - int(r["returned_qty"]) - int(r["missing_qty"])
        details.append(line)
    out["details"] = details
    return out


def list_batch_distributions(
    conn,
    *,
    academic_year: Optional[str] = None,
    status: Optional[str] = None,
    branch_id: Optional[int] = None,
) -> list[dict]:
    """Summary rows (one per distribution) with line totals, newest first."""
    sql = """
        SELECT d.id, d.academic_year, d.distributed_at, d.returned_at, d.status, d.notes,
               b.id AS branch_id, b.name AS branch_name, b.grade AS branch_grade,
               s.id AS set_id, s.name AS set_name, tc.full_name AS teacher_name,
               COUNT(dd.id) AS textbook_count,
               COALESCE(SUM(dd.distributed_qty), 0) AS distributed_qty,
               COALESCE(SUM(dd.returned_qty), 0) AS returned_qty,
               COALESCE(SUM(dd.missing_qty), 0) AS missing_qty
        FROM distributions d
        JOIN branches b ON b.id = d.branch_id
        JOIN textbook_sets s ON s.id = d.set_id
        LEFT JOIN teachers tc ON tc.id = b.teacher_id
        LEFT JOIN distribution_details dd ON dd.distribution_id = d.id
        WHERE 1=1
    """
    params: list = []
    if clean_text(academic_year):
        sql += " AND d.academic_year=?"
        params.append(clean_text(academic_year))
    status = normalize_status_filter(status)
    if status:
        sql += " AND d.status=?"
        params.append(status)
    if branch_id is not None:
        sql += " AND d.branch_id=?"
        params.append(int(branch_id))
    sql += " GROUP BY d.id ORDER BY d.distributed_at DESC, d.id DESC"
    return [dict(r) for r in q(conn, sql, params)]


def find_by_request_key(conn, table: str, request_key: Optional[str]) -> Optional[int]:
    if not request_key:
        return None
    rows = q(conn, f"SELECT id FROM {table} WHERE request_key=?", (request_key,))
    return int(rows[0]["id"]) if rows else None


def check_request_replay(existing: dict, expected: dict, request_key: str) -> None:
    """A reused request key must describe the same allocation it created."""
    differs = [k for k, v in expected.items() if existing[k] != v]
    if differs:
        raise ConflictError(
            DUPLICATE,
            f"Request key {request_key} was already used for a different allocation "
            f"({', '.join(differs)} differ).",
        )


def create_batch_distribution(
    conn,
    *,
    branch_id: int,
    set_id: int,
    academic_year: str,
    notes: Optional[str] = None,
    request_key: Optional[str] = None,
) -> dict:
    """
    Hand out a textbook set to a branch.

    Raises InsufficientStockError listing every textbook that cannot cover the
    branch's student count; in that case no stock is touched. A repeated call
    with the same `request_key` returns the original distribution; reusing the
    key for another branch, set or year is a DUPLICATE conflict.
    """
    year = validate_academic_year(academic_year)
    key = clean_text(request_key)

    with transaction(conn):
        existing = find_by_request_key(conn, "distributions", key)
        if existing is not None:
            replay = get_batch_distribution(conn, existing)
            check_request_replay(
                replay, {"branch_id": int(branch_id), "set_id": int(set_id), "academic_year": year}, key
            )
            logger.info(f"Distribution request {key} already applied as distribution {existing}")
            return replay

        branch = get_branch(conn, branch_id)
        tset = get_set(conn, set_id)

        student_count = int(branch["student_count"])
        if student_count < 1:
            raise ValidationError(f"Branch '{branch['name']}' has no students to distribute to.")
        if not tset["textbook_ids"]:
            raise ValidationError(f"Set '{tset['name']}' has no textbooks.")
        if int(tset["grade"]) != int(branch["grade"]):
            logger.warning(
                f"Set '{tset['name']}' (grade {tset['grade']}) distributed to branch "
                f"'{branch['name']}' (grade {branch['grade']})"
            )

        requirements = [(textbook_id, student_count) for textbook_id in tset["textbook_ids"]]

        shortages = check_availability(conn, requirements)
        if shortages:
            logger.warning(
                f"Distribution of set {set_id} to branch {branch_id} rejected: "
                f"{len(shortages)} textbook(s) short"
            )
            raise InsufficientStockError(shortages)

        for textbook_id, qty in requirements:
            reserve(conn, textbook_id, qty)

        distribution_id = x(
            conn,
            """
            INSERT INTO distributions (
                branch_id, set_id, academic_year, distributed_at, status, notes, request_key
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (int(branch_id), int(set_id), year, iso_now(), STATUS_DISTRIBUTED, clean_text(notes), key),
        )
        for textbook_id, qty in requirements:
            x(
                conn,
                """
                INSERT INTO distribution_details (distribution_id, textbook_id, distributed_qty)
                VALUES (?, ?, ?)
                """,
                (distribution_id, int(textbook_id), int(qty)),
            )

    logger.info(
        f"Distribution {distribution_id} created: set '{tset['name']}' -> branch '{branch['name']}', "
        f"{len(requirements)} textbook(s) x {student_count} copies ({year})"
    )
    return get_batch_distribution(conn, distribution_id)


def has_returns(lines) -> bool:
    return any(int(l["returned_qty"]) or int(l["missing_qty"]) for l in lines)


def delete_batch_distribution(conn, distribution_id: int) -> None:
    """
    Cancel a distribution that has no recorded returns, putting every copy back
    into stock.
    """
    with transaction(conn):
        dist = get_batch_distribution(conn, distribution_id)
        if dist["status"] != STATUS_DISTRIBUTED or has_returns(dist["details"]):
            raise ConflictError(
                DISTRIBUTION_HAS_RETURNS,
                f"Distribution {distribution_id} already has returns recorded and cannot be deleted.",
            )
        for line in dist["details"]:
            release(conn, int(line["textbook_id"]), int(line["distributed_qty"]))
        # Details go with it (ON DELETE CASCADE)
        x(conn, "DELETE FROM distributions WHERE id=?", (int(distribution_id),))

    logger.info(f"Distribution {distribution_id} deleted, {len(dist['details'])} line(s) restocked")
