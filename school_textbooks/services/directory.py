"""
Directory collaborators: teachers, students, branches and textbook sets.

The allocation engine only reads these records; edits happen from the
directory pages.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Iterable, Optional

from school_textbooks.db import q, x, transaction
from school_textbooks.errors import (
    BRANCH_IN_USE,
    DUPLICATE,
    RECIPIENT_IN_USE,
    SET_IN_USE,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from school_textbooks.services.catalog import get_textbook, validate_grade
from school_textbooks.utils import as_count, clean_text, iso_now

logger = logging.getLogger(__name__)

RECIPIENT_TEACHER = "teacher"
RECIPIENT_STUDENT = "student"
RECIPIENT_TYPES = (RECIPIENT_TEACHER, RECIPIENT_STUDENT)


def _require_name(value: Optional[str], field: str = "Name") -> str:
    s = clean_text(value)
    if not s:
        raise ValidationError(f"{field} is required.")
    return s


# -------------------------
# Teachers
# -------------------------

def list_teachers(conn):
    return q(conn, "SELECT * FROM teachers ORDER BY full_name")


def get_teacher(conn, teacher_id: int):
    rows = q(conn, "SELECT * FROM teachers WHERE id=?", (int(teacher_id),))
    if not rows:
        raise NotFoundError("Teacher", int(teacher_id))
    return rows[0]


def create_teacher(conn, *, full_name: str, phone: Optional[str] = None) -> int:
    name = _require_name(full_name, "Full name")
    return x(
        conn,
        "INSERT INTO teachers (full_name, phone, created_at) VALUES (?, ?, ?)",
        (name, clean_text(phone), iso_now()),
    )


def update_teacher(conn, teacher_id: int, *, full_name: str, phone: Optional[str] = None) -> None:
    get_teacher(conn, teacher_id)
    x(
        conn,
        "UPDATE teachers SET full_name=?, phone=? WHERE id=?",
        (_require_name(full_name, "Full name"), clean_text(phone), int(teacher_id)),
    )


def _recipient_in_use(conn, recipient_type: str, recipient_id: int) -> bool:
    r = q(
        conn,
        "SELECT COUNT(1) AS n FROM individual_distributions WHERE recipient_type=? AND recipient_id=?",
        (recipient_type, int(recipient_id)),
    )
    return int(r[0]["n"]) > 0


def delete_teacher(conn, teacher_id: int) -> None:
    with transaction(conn):
        t = get_teacher(conn, teacher_id)
        if _recipient_in_use(conn, RECIPIENT_TEACHER, teacher_id):
            raise ConflictError(
                RECIPIENT_IN_USE,
                f"Teacher '{t['full_name']}' has individual distributions and cannot be deleted.",
            )
        # Branches keep existing without a teacher (ON DELETE SET NULL)
        x(conn, "DELETE FROM teachers WHERE id=?", (int(teacher_id),))


# -------------------------
# Students
# -------------------------

def list_students(conn, *, branch_id: Optional[int] = None):
    if branch_id is None:
        return q(conn, "SELECT * FROM students ORDER BY full_name")
    return q(conn, "SELECT * FROM students WHERE branch_id=? ORDER BY full_name", (int(branch_id),))


def get_student(conn, student_id: int):
    rows = q(conn, "SELECT * FROM students WHERE id=?", (int(student_id),))
    if not rows:
        raise NotFoundError("Student", int(student_id))
    return rows[0]


def create_student(
    conn,
    *,
    full_name: str,
    student_code: str,
    grade: Optional[int] = None,
    branch_id: Optional[int] = None,
) -> int:
    name = _require_name(full_name, "Full name")
    code = _require_name(student_code, "Student code")
    g = validate_grade(grade) if grade is not None else None
    if branch_id is not None:
        get_branch(conn, branch_id)
    try:
        return x(
            conn,
            "INSERT INTO students (full_name, student_code, grade, branch_id) VALUES (?, ?, ?, ?)",
            (name, code, g, int(branch_id) if branch_id is not None else None),
        )
    except sqlite3.IntegrityError:
        raise ConflictError(DUPLICATE, f"Student code '{code}' already exists.")


def delete_student(conn, student_id: int) -> None:
    with transaction(conn):
        s = get_student(conn, student_id)
        if _recipient_in_use(conn, RECIPIENT_STUDENT, student_id):
            raise ConflictError(
                RECIPIENT_IN_USE,
                f"Student '{s['full_name']}' has individual distributions and cannot be deleted.",
            )
        x(conn, "DELETE FROM students WHERE id=?", (int(student_id),))


def get_recipient(conn, recipient_type: str, recipient_id: int):
    """Directory lookup used to snapshot a recipient's display name."""
    if recipient_type == RECIPIENT_TEACHER:
        return get_teacher(conn, recipient_id)
    if recipient_type == RECIPIENT_STUDENT:
        return get_student(conn, recipient_id)
    raise ValidationError(f"Recipient type must be one of: {', '.join(RECIPIENT_TYPES)}.")


# -------------------------
# Branches
# -------------------------

def list_branches(conn, *, grade: Optional[int] = None):
    sql = """
        SELECT b.*, t.full_name AS teacher_name
        FROM branches b
        LEFT JOIN teachers t ON t.id = b.teacher_id
    """
    params: tuple = ()
    if grade is not None:
        sql += " WHERE b.grade=?"
        params = (int(grade),)
    sql += " ORDER BY b.grade, b.name"
    return q(conn, sql, params)


def get_branch(conn, branch_id: int):
    rows = q(
        conn,
        """
        SELECT b.*, t.full_name AS teacher_name
        FROM branches b
        LEFT JOIN teachers t ON t.id = b.teacher_id
        WHERE b.id=?
        """,
        (int(branch_id),),
    )
    if not rows:
        raise NotFoundError("Branch", int(branch_id))
    return rows[0]


def _branch_fields(conn, name, grade, student_count, teacher_id) -> tuple:
    n = _require_name(name)
    g = validate_grade(grade)
    count = as_count(student_count, "Student count", minimum=0)
    if teacher_id is not None:
        get_teacher(conn, teacher_id)
        teacher_id = int(teacher_id)
    return n, g, count, teacher_id


def create_branch(
    conn,
    *,
    name: str,
    grade: int,
    student_count: int = 0,
    teacher_id: Optional[int] = None,
) -> int:
    fields = _branch_fields(conn, name, grade, student_count, teacher_id)
    try:
        branch_id = x(
            conn,
            "INSERT INTO branches (name, grade, student_count, teacher_id) VALUES (?, ?, ?, ?)",
            fields,
        )
    except sqlite3.IntegrityError:
        raise ConflictError(DUPLICATE, f"Branch '{fields[0]}' already exists in grade {fields[1]}.")
    logger.info(f"Branch created: {branch_id} - {fields[1]}{fields[0]} ({fields[2]} students)")
    return branch_id


def update_branch(
    conn,
    branch_id: int,
    *,
    name: str,
    grade: int,
    student_count: int,
    teacher_id: Optional[int] = None,
) -> None:
    get_branch(conn, branch_id)
    fields = _branch_fields(conn, name, grade, student_count, teacher_id)
    try:
        x(
            conn,
            "UPDATE branches SET name=?, grade=?, student_count=?, teacher_id=? WHERE id=?",
            (*fields, int(branch_id)),
        )
    except sqlite3.IntegrityError:
        raise ConflictError(DUPLICATE, f"Branch '{fields[0]}' already exists in grade {fields[1]}.")


def delete_branch(conn, branch_id: int) -> None:
    with transaction(conn):
        b = get_branch(conn, branch_id)
        n = q(conn, "SELECT COUNT(1) AS n FROM distributions WHERE branch_id=?", (int(branch_id),))[0]["n"]
        if int(n) > 0:
            raise ConflictError(BRANCH_IN_USE, f"Branch '{b['name']}' has distributions and cannot be deleted.")
        x(conn, "DELETE FROM branches WHERE id=?", (int(branch_id),))


# -------------------------
# Textbook sets
# -------------------------

def list_sets(conn, *, grade: Optional[int] = None) -> list[dict]:
    if grade is None:
        rows = q(conn, "SELECT * FROM textbook_sets ORDER BY grade, name")
    else:
        rows = q(conn, "SELECT * FROM textbook_sets WHERE grade=? ORDER BY name", (int(grade),))
    return [_set_with_items(conn, r) for r in rows]


def _set_with_items(conn, row) -> dict:
    items = q(
        conn,
        """
        SELECT t.id, t.title, t.subject, t.available_stock, t.total_stock
        FROM textbook_set_items i
        JOIN textbooks t ON t.id = i.textbook_id
        WHERE i.set_id=?
        ORDER BY t.subject, t.title
        """,
        (int(row["id"]),),
    )
    return {
        "id": int(row["id"]),
        "name": str(row["name"]),
        "grade": int(row["grade"]),
        "textbook_ids": [int(i["id"]) for i in items],
        "items": [dict(i) for i in items],
    }


def get_set(conn, set_id: int) -> dict:
    rows = q(conn, "SELECT * FROM textbook_sets WHERE id=?", (int(set_id),))
    if not rows:
        raise NotFoundError("Textbook set", int(set_id))
    return _set_with_items(conn, rows[0])


def create_set(conn, *, name: str, grade: int, textbook_ids: Iterable[int] = ()) -> int:
    n = _require_name(name)
    g = validate_grade(grade)
    ids = [int(t) for t in textbook_ids]
    if len(set(ids)) != len(ids):
        raise ValidationError("A textbook can appear only once in a set.")

    with transaction(conn):
        set_id = x(conn, "INSERT INTO textbook_sets (name, grade) VALUES (?, ?)", (n, g))
        for textbook_id in ids:
            get_textbook(conn, textbook_id)
            x(
                conn,
                "INSERT INTO textbook_set_items (set_id, textbook_id) VALUES (?, ?)",
                (set_id, textbook_id),
            )
    logger.info(f"Textbook set created: {set_id} - {n} (grade {g}, {len(ids)} textbooks)")
    return set_id


def update_set(conn, set_id: int, *, name: str, grade: int) -> None:
    get_set(conn, set_id)
    x(
        conn,
        "UPDATE textbook_sets SET name=?, grade=? WHERE id=?",
        (_require_name(name), validate_grade(grade), int(set_id)),
    )


def add_textbook_to_set(conn, set_id: int, textbook_id: int) -> None:
    with transaction(conn):
        s = get_set(conn, set_id)
        get_textbook(conn, textbook_id)
        if int(textbook_id) in s["textbook_ids"]:
            raise ConflictError(DUPLICATE, f"Textbook {textbook_id} is already in set '{s['name']}'.")
        x(
            conn,
            "INSERT INTO textbook_set_items (set_id, textbook_id) VALUES (?, ?)",
            (int(set_id), int(textbook_id)),
        )


def remove_textbook_from_set(conn, set_id: int, textbook_id: int) -> None:
    with transaction(conn):
        s = get_set(conn, set_id)
        if int(textbook_id) not in s["textbook_ids"]:
            raise NotFoundError(f"Textbook in set '{s['name']}'", int(textbook_id))
        x(
            conn,
            "DELETE FROM textbook_set_items WHERE set_id=? AND textbook_id=?",
            (int(set_id), int(textbook_id)),
        )


def delete_set(conn, set_id: int) -> None:
    with transaction(conn):
        s = get_set(conn, set_id)
        n = q(conn, "SELECT COUNT(1) AS n FROM distributions WHERE set_id=?", (int(set_id),))[0]["n"]
        if int(n) > 0:
            raise ConflictError(SET_IN_USE, f"Set '{s['name']}' is referenced by distributions and cannot be deleted.")
        x(conn, "DELETE FROM textbook_sets WHERE id=?", (int(set_id),))
