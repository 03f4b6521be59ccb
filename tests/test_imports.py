from __future__ import annotations

import io

import pandas as pd
import pytest

from school_textbooks.errors import ValidationError
from school_textbooks.services.catalog import get_textbook, list_textbooks
from school_textbooks.services.directory import create_branch, get_branch, list_branches
from school_textbooks.services.imports import (
    branch_template,
    import_branches,
    import_textbooks,
    read_table,
    template_bytes,
    textbook_template,
)


def test_textbook_import_keeps_good_rows_and_reports_bad_ones(conn):
    frame = pd.DataFrame(
        [
            {"Title": "Algebra 7", "Subject": "Mathematics", "Grade": 7, "Quantity": 40, "ISBN": 9785090000000.0},
            {"Title": "", "Subject": "History", "Grade": 7, "Quantity": 10, "ISBN": None},
            {"Title": "Physics 13", "Subject": "Physics", "Grade": 13, "Quantity": 5, "ISBN": None},
            {"Title": "Biology 6", "Subject": "Biology", "Grade": 6, "Quantity": None, "ISBN": None},
            {"Title": "Chemistry 8", "Subject": "Chemistry", "Grade": 8, "Quantity": 2.5, "ISBN": None},
        ]
    )
    res = import_textbooks(conn, frame)

    assert len(res.created) == 2
    assert [e["row"] for e in res.errors] == [3, 4, 6]
    algebra = get_textbook(conn, res.created[0])
    assert (algebra["total_stock"], algebra["available_stock"], algebra["isbn"]) == (40, 40, "9785090000000")
    assert get_textbook(conn, res.created[1])["total_stock"] == 0
    assert len(list_textbooks(conn)) == 2


def test_textbook_import_needs_required_columns(conn):
    with pytest.raises(ValidationError, match="subject"):
        import_textbooks(conn, pd.DataFrame([{"title": "Algebra 7", "grade_from": 7}]))


def test_branch_import_matches_teachers_and_rejects_duplicates(conn, teacher_id):
    create_branch(conn, name="B", grade=7, student_count=20)
    frame = pd.DataFrame(
        [
            {"grade": 7, "letter": "a", "students": 25, "class teacher": "aigerim sadykova"},
            {"grade": 7, "letter": "B", "students": 22, "class teacher": None},
            {"grade": 8, "letter": "A", "students": 18, "class teacher": "Nobody Known"},
            {"grade": None, "letter": "C", "students": 18, "class teacher": None},
        ]
    )
    res = import_branches(conn, frame)

    assert len(res.created) == 2
    assert [e["row"] for e in res.errors] == [3, 5]
    assert [w["row"] for w in res.warnings] == [4]

    first, second = (get_branch(conn, b) for b in res.created)
    assert (first["name"], first["student_count"], first["teacher_id"]) == ("A", 25, teacher_id)
    assert (second["grade"], second["teacher_id"]) == (8, None)
    assert len(list_branches(conn)) == 3


def test_csv_upload(conn):
    data = b"title,subject,grade_from,total_stock\nGeometry 8,Mathematics,8,30\n"
    res = import_textbooks(conn, read_table(io.BytesIO(data), "books.csv"))
    assert res.failed == 0
    assert get_textbook(conn, res.created[0])["title"] == "Geometry 8"


def test_templates_import_cleanly(conn):
    books = read_table(template_bytes(textbook_template(), "Textbooks"), "textbooks_template.xlsx")
    assert import_textbooks(conn, books).failed == 0

    branches = read_table(template_bytes(branch_template(), "Branches"), "branches_template.xlsx")
    res = import_branches(conn, branches)
    assert (len(res.created), res.failed, len(res.warnings)) == (1, 0, 1)


def test_unsupported_or_broken_files(conn):
    with pytest.raises(ValidationError):
        read_table(b"whatever", "books.pdf")
    with pytest.raises(ValidationError):
        read_table(b"not a zip archive", "books.xlsx")
