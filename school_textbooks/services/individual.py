from __future__ import annotations

import logging
from typing import Optional

from school_textbooks.db import q, x, transaction
from school_textbooks.errors import DISTRIBUTION_HAS_RETURNS, ConflictError, NotFoundError, ValidationError
from school_textbooks.services.app_settings import validate_academic_year
from school_textbooks.services.catalog import get_textbook
from school_textbooks.services.directory import RECIPIENT_TYPES, get_recipient
from school_textbooks.services.distributions import check_request_replay, find_by_request_key
from school_textbooks.services.ledger import release, reserve
from school_textbooks.services.status import STATUS_DISTRIBUTED, normalize_status_filter
from school_textbooks.utils import as_count, clean_text, iso_now

logger = logging.getLogger(__name__)


def _normalize_recipient_type(recipient_type: Optional[str]) -> str:
    rt = str(recipient_type or "").strip().lower()
    if rt not in RECIPIENT_TYPES:
        raise ValidationError(f"Recipient type must be one of: {', '.join(RECIPIENT_TYPES)}.")
    return rt


def get_individual_distribution(conn, distribution_id: int) -> dict:
    rows = q(
        conn,
        """
        SELECT i.*, t.title, t.subject, t.author
        FROM individual_distributions i
        JOIN textbooks t ON t.id = i.textbook_id
        WHERE i.id=?
        """,
        (int(distribution_id),),
    )
    if not rows:
        raise NotFoundError("Individual distribution", int(distribution_id))
    out = dict(rows[0])
    out["outstanding_qty"] = int(out["quantity"]) - int(out["returned_qty"]) - int(out["missing_qty"])
    return out


def list_individual_distributions(
    conn,
    *,
    academic_year: Optional[str] = None,
    status: Optional[str] = None,
    recipient_type: Optional[str] = None,
) -> list[dict]:
    sql = """
        SELECT i.*, t.title, t.subject,
               (i.quantity - i.returned_qty - i.missing_qty) AS outstanding_qty
        FROM individual_distributions i
        JOIN textbooks t ON t.id = i.textbook_id
        WHERE 1=1
    """
    params: list = []
    if clean_text(academic_year):
        sql += " AND i.academic_year=?"
        params.append(clean_text(academic_year))
    status = normalize_status_filter(status)
    if status:
        sql += " AND i.status=?"
        params.append(status)
    if clean_text(recipient_type):
        sql += " AND i.recipient_type=?"
        params.append(_normalize_recipient_type(recipient_type))
    sql += " ORDER BY i.distributed_at DESC, i.id DESC"
    return [dict(r) for r in q(conn, sql, params)]


def create_individual_distribution(
    conn,
    *,
    textbook_id: int,
    recipient_type: str,
    recipient_id: int,
    quantity: int,
    academic_year: str,
    recipient_name: Optional[str] = None,
    notes: Optional[str] = None,
    request_key: Optional[str] = None,
) -> dict:
    """
    Hand out `quantity` copies of one textbook to a teacher or student.

    The recipient's name is snapshotted on the record; later directory edits do
    not change it.
    """
    rt = _normalize_recipient_type(recipient_type)
    qty = as_count(quantity, "Quantity", minimum=1)
    year = validate_academic_year(academic_year)
    key = clean_text(request_key)

    with transaction(conn):
        existing = find_by_request_key(conn, "individual_distributions", key)
        if existing is not None:
            replay = get_individual_distribution(conn, existing)
            check_request_replay(
                replay,
                {
                    "textbook_id": int(textbook_id),
                    "recipient_type": rt,
                    "recipient_id": int(recipient_id),
                    "quantity": qty,
                    "academic_year": year,
                },
                key,
            )
            logger.info(f"Individual request {key} already applied as distribution {existing}")
            return replay

        textbook = get_textbook(conn, textbook_id)
        recipient = get_recipient(conn, rt, recipient_id)
        name = clean_text(recipient_name) or str(recipient["full_name"])

        reserve(conn, int(textbook_id), qty)

        distribution_id = x(
            conn,
            """
            INSERT INTO individual_distributions (
                textbook_id, recipient_type, recipient_id, recipient_name, quantity,
                academic_year, distributed_at, status, notes, request_key
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(textbook_id),
                rt,
                int(recipient_id),
                name,
                qty,
                year,
                iso_now(),
                STATUS_DISTRIBUTED,
                clean_text(notes),
                key,
            ),
        )

    logger.info(
        f"Individual distribution {distribution_id} created: {qty} x '{textbook['title']}' -> {rt} {name}"
    )
    return get_individual_distribution(conn, distribution_id)


def delete_individual_distribution(conn, distribution_id: int) -> None:
    with transaction(conn):
        dist = get_individual_distribution(conn, distribution_id)
        if dist["status"] != STATUS_DISTRIBUTED or int(dist["returned_qty"]) or int(dist["missing_qty"]):
            raise ConflictError(
                DISTRIBUTION_HAS_RETURNS,
                f"Individual distribution {distribution_id} already has returns recorded and cannot be deleted.",
            )
        release(conn, int(dist["textbook_id"]), int(dist["quantity"]))
        x(conn, "DELETE FROM individual_distributions WHERE id=?", (int(distribution_id),))

    logger.info(f"Individual distribution {distribution_id} deleted, {dist['quantity']} copies restocked")
