from __future__ import annotations

import pytest

from school_textbooks.db import connect, ensure_schema
from school_textbooks.services.catalog import TextbookInput, create_textbook
from school_textbooks.services.directory import create_branch, create_set, create_student, create_teacher


@pytest.fixture
def conn():
    c = connect(":memory:")
    ensure_schema(c)
    yield c
    c.close()


@pytest.fixture
def make_textbook(conn):
    counter = iter(range(1, 1000))

    def _make(total_stock: int = 30, *, grade: int = 7, subject: str = "Mathematics", title: str = None) -> int:
        n = next(counter)
        return create_textbook(
            conn,
            TextbookInput(title=title or f"{subject} {grade} vol.{n}", subject=subject, grade_from=grade),
            total_stock=total_stock,
        )

    return _make


@pytest.fixture
def make_branch(conn):
    letters = iter("ABCDEFGHIJKLMNOP")

    def _make(student_count: int = 25, *, grade: int = 7, teacher_id=None) -> int:
        return create_branch(
            conn, name=next(letters), grade=grade, student_count=student_count, teacher_id=teacher_id
        )

    return _make


@pytest.fixture
def make_set(conn):
    def _make(textbook_ids, *, grade: int = 7, name: str = "Core set") -> int:
        return create_set(conn, name=name, grade=grade, textbook_ids=textbook_ids)

    return _make


@pytest.fixture
def teacher_id(conn):
    return create_teacher(conn, full_name="Aigerim Sadykova", phone="+7 700 000 0000")


@pytest.fixture
def student_id(conn, make_branch):
    return create_student(conn, full_name="Timur Abenov", student_code="S-0001", grade=7, branch_id=make_branch())


@pytest.fixture
def available(conn):
    def _available(textbook_id: int) -> int:
        row = conn.execute("SELECT available_stock FROM textbooks WHERE id=?", (textbook_id,)).fetchone()
        return int(row[0])

    return _available
