"""
Spreadsheet import for the catalog and for branches.

Each row goes through the same service call a form would make, so a row is
accepted or rejected on its own. Accepted rows are committed one by one and
rejected rows come back with their spreadsheet row number (header = row 1).
"""
from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Optional, Union

import pandas as pd

from school_textbooks.errors import EngineError, ValidationError
from school_textbooks.services.catalog import TextbookInput, create_textbook
from school_textbooks.services.directory import create_branch, list_teachers

logger = logging.getLogger(__name__)

TEXTBOOK_COLUMNS = {
    "title": ("title", "name", "book"),
    "subject": ("subject",),
    "grade_from": ("grade_from", "grade from", "grade"),
    "grade_to": ("grade_to", "grade to"),
    "author": ("author", "authors"),
    "publisher": ("publisher",),
    "isbn": ("isbn",),
    "language": ("language",),
    "total_stock": ("total_stock", "total stock", "quantity", "stock"),
}
TEXTBOOK_REQUIRED = ("title", "subject", "grade_from")

BRANCH_COLUMNS = {
    "grade": ("grade", "class"),
    "name": ("name", "letter", "branch"),
    "student_count": ("student_count", "student count", "students"),
    "teacher": ("teacher", "class teacher", "class_teacher"),
}
BRANCH_REQUIRED = ("grade", "name")


@dataclass
class ImportResult:
    created: list[int] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)


def read_table(source: Union[BinaryIO, bytes], filename: str) -> pd.DataFrame:
    """Read an uploaded .xlsx or .csv file into a DataFrame (first sheet only)."""
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    ext = Path(filename).suffix.lower()
    try:
        if ext == ".csv":
            return pd.read_csv(source)
        if ext == ".xlsx":
            return pd.read_excel(source, engine="openpyxl")
    except (ValueError, OSError, zipfile.BadZipFile) as e:
        raise ValidationError(f"Could not read {filename}: {e}")
    raise ValidationError("Unsupported file type. Use .xlsx or .csv.")


def template_bytes(frame: pd.DataFrame, sheet_name: str) -> bytes:
    bio = io.BytesIO()
    with pd.ExcelWriter(bio, engine="openpyxl") as writer:
        frame.to_excel(writer, index=False, sheet_name=sheet_name)
    return bio.getvalue()


def textbook_template() -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "title": "Algebra 7",
                "subject": "Mathematics",
                "grade_from": 7,
                "grade_to": None,
                "author": "Makarychev Y.N.",
                "publisher": "Prosveshchenie",
                "isbn": "978-5-09-000000-0",
                "language": "en",
                "total_stock": 60,
            }
        ],
        columns=list(TEXTBOOK_COLUMNS),
    )


def branch_template() -> pd.DataFrame:
    return pd.DataFrame(
        [{"grade": 9, "name": "A", "student_count": 25, "teacher": "John Smith"}],
        columns=list(BRANCH_COLUMNS),
    )


def _map_columns(frame: pd.DataFrame, columns: dict, required: tuple) -> pd.DataFrame:
    by_header = {str(c).strip().lower(): c for c in frame.columns}
    renamed = {}
    for target, aliases in columns.items():
        source = next((by_header[a] for a in aliases if a in by_header), None)
        if source is not None:
            renamed[source] = target
    missing = [c for c in required if c not in renamed.values()]
    if missing:
        raise ValidationError(f"Missing columns: {', '.join(missing)}")
    out = frame[list(renamed)].rename(columns=renamed)
    for target in columns:
        if target not in out.columns:
            out[target] = None
    return out


def _cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if pd.isna(value):
        return None
    return value


def _text(value: Any) -> Optional[str]:
    v = _cell(value)
    if v is None:
        return None
    # numeric ISBNs and codes come back from Excel as floats
    if isinstance(v, float) and v.is_integer():
        v = int(v)
    return str(v)


def import_textbooks(conn, frame: pd.DataFrame) -> ImportResult:
    rows = _map_columns(frame, TEXTBOOK_COLUMNS, TEXTBOOK_REQUIRED)
    result = ImportResult()
    for n, (_, r) in enumerate(rows.iterrows(), start=2):
        try:
            data = TextbookInput(
                title=_text(r["title"]),
                subject=_text(r["subject"]),
                grade_from=_cell(r["grade_from"]),
                grade_to=_cell(r["grade_to"]),
                author=_text(r["author"]),
                publisher=_text(r["publisher"]),
                isbn=_text(r["isbn"]),
                language=_text(r["language"]),
            )
            stock = _cell(r["total_stock"])
            result.created.append(create_textbook(conn, data, total_stock=0 if stock is None else stock))
        except EngineError as e:
            result.errors.append({"row": n, "title": _text(r["title"]), "error": str(e)})

    logger.info(f"Textbook import: {len(result.created)} created, {result.failed} rejected")
    return result


def import_branches(conn, frame: pd.DataFrame) -> ImportResult:
    """
    Branch names are upper-cased (`a` becomes `A`). An unknown class
    teacher does not reject the row: the branch is created without one and a
    warning is reported.
    """
    rows = _map_columns(frame, BRANCH_COLUMNS, BRANCH_REQUIRED)
    teachers = {str(t["full_name"]).strip().lower(): int(t["id"]) for t in list_teachers(conn)}
    result = ImportResult()
    for n, (_, r) in enumerate(rows.iterrows(), start=2):
        name = _text(r["name"])
        teacher_name = _text(r["teacher"])
        teacher_id = None
        if teacher_name:
            teacher_id = teachers.get(teacher_name.lower())
            if teacher_id is None:
                result.warnings.append(
                    {"row": n, "error": f"Teacher '{teacher_name}' not found; branch created without one."}
                )
        count = _cell(r["student_count"])
        try:
            result.created.append(
                create_branch(
                    conn,
                    name=name.upper() if name else name,
                    grade=_cell(r["grade"]),
                    student_count=0 if count is None else count,
                    teacher_id=teacher_id,
                )
            )
        except EngineError as e:
            result.errors.append({"row": n, "branch": name, "error": str(e)})

    logger.info(f"Branch import: {len(result.created)} created, {result.failed} rejected")
    return result
