from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from school_textbooks.db import q, x, transaction
from school_textbooks.errors import ConflictError, NotFoundError, ValidationError, TEXTBOOK_IN_USE
from school_textbooks.services.ledger import set_total_stock
from school_textbooks.utils import as_count, clean_text, iso_now

logger = logging.getLogger(__name__)

MIN_GRADE = 1
MAX_GRADE = 12


@dataclass
class TextbookInput:
    title: str
    subject: str
    grade_from: int
    grade_to: Optional[int] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    isbn: Optional[str] = None
    language: Optional[str] = None


def validate_grade(grade, field: str = "Grade") -> int:
    g = as_count(grade, field, minimum=MIN_GRADE)
    if g > MAX_GRADE:
        raise ValidationError(f"{field} must be between {MIN_GRADE} and {MAX_GRADE}.")
    return g


def _validated(data: TextbookInput) -> dict:
    title = clean_text(data.title)
    subject = clean_text(data.subject)
    if not title:
        raise ValidationError("Title is required.")
    if not subject:
        raise ValidationError("Subject is required.")

    grade_from = validate_grade(data.grade_from, "Grade from")
    grade_to = None
    if data.grade_to is not None:
        grade_to = validate_grade(data.grade_to, "Grade to")
        if grade_to < grade_from:
            raise ValidationError("Grade to must not be lower than grade from.")

    return {
        "title": title,
        "subject": subject,
        "grade_from": grade_from,
        "grade_to": grade_to,
        "author": clean_text(data.author),
        "publisher": clean_text(data.publisher),
        "isbn": clean_text(data.isbn),
        "language": clean_text(data.language),
    }


def get_textbook(conn, textbook_id: int):
    rows = q(conn, "SELECT * FROM textbooks WHERE id=?", (int(textbook_id),))
    if not rows:
        raise NotFoundError("Textbook", int(textbook_id))
    return rows[0]


def list_textbooks(conn, *, grade: Optional[int] = None, search: Optional[str] = None):
    sql = "SELECT * FROM textbooks WHERE 1=1"
    params: list = []
    if grade is not None:
        # A textbook covers grade_from..grade_to (or just grade_from)
        sql += " AND grade_from <= ? AND COALESCE(grade_to, grade_from) >= ?"
        params += [int(grade), int(grade)]
    term = clean_text(search)
    if term:
        sql += " AND (title LIKE ? OR author LIKE ? OR isbn LIKE ? OR subject LIKE ?)"
        like = f"%{term}%"
        params += [like, like, like, like]
    sql += " ORDER BY grade_from, subject, title"
    return q(conn, sql, params)


def create_textbook(conn, data: TextbookInput, *, total_stock: int = 0) -> int:
    """New textbooks start with every copy available."""
    fields = _validated(data)
    total = as_count(total_stock, "Total stock", minimum=0)

    textbook_id = x(
        conn,
        """
        INSERT INTO textbooks (
            title, author, subject, publisher, isbn, language,
            grade_from, grade_to, total_stock, available_stock, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            fields["title"],
            fields["author"],
            fields["subject"],
            fields["publisher"],
            fields["isbn"],
            fields["language"],
            fields["grade_from"],
            fields["grade_to"],
            total,
            total,
            iso_now(),
        ),
    )
    logger.info(f"Textbook created: {textbook_id} - {fields['title']} (stock {total})")
    return int(textbook_id)


def update_textbook(conn, textbook_id: int, data: TextbookInput) -> None:
    """Descriptive fields only; stock changes go through `update_total_stock`."""
    get_textbook(conn, textbook_id)
    fields = _validated(data)
    x(
        conn,
        """
        UPDATE textbooks
        SET title=?, author=?, subject=?, publisher=?, isbn=?, language=?, grade_from=?, grade_to=?
        WHERE id=?
        """,
        (
            fields["title"],
            fields["author"],
            fields["subject"],
            fields["publisher"],
            fields["isbn"],
            fields["language"],
            fields["grade_from"],
            fields["grade_to"],
            int(textbook_id),
        ),
    )


def update_total_stock(conn, textbook_id: int, new_total: int) -> dict:
    return set_total_stock(conn, int(textbook_id), new_total)


def textbook_in_use(conn, textbook_id: int) -> bool:
    r = q(
        conn,
        """
        SELECT
          (SELECT COUNT(1) FROM distribution_details WHERE textbook_id=?)
          + (SELECT COUNT(1) FROM individual_distributions WHERE textbook_id=?) AS n
        """,
        (int(textbook_id), int(textbook_id)),
    )
    return int(r[0]["n"]) > 0


def delete_textbook(conn, textbook_id: int) -> None:
    with transaction(conn):
        t = get_textbook(conn, textbook_id)
        if textbook_in_use(conn, textbook_id):
            raise ConflictError(
                TEXTBOOK_IN_USE,
                f"Textbook '{t['title']}' has distribution records and cannot be deleted.",
            )
        # Set membership goes with it (ON DELETE CASCADE)
        x(conn, "DELETE FROM textbooks WHERE id=?", (int(textbook_id),))
    logger.info(f"Textbook deleted: {textbook_id} - {t['title']}")
