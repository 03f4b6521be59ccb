from __future__ import annotations

import re
from datetime import date
from typing import Optional

from school_textbooks.config import academic_year_for
from school_textbooks.db import q, x
from school_textbooks.errors import ValidationError

KEY_ACADEMIC_YEAR = "academic_year"

_ACADEMIC_YEAR_RE = re.compile(r"^(\d{4})-(\d{4})$")


def validate_academic_year(value: Optional[str]) -> str:
    """Academic years look like '2025-2026' (two consecutive years)."""
    s = str(value or "").strip()
    m = _ACADEMIC_YEAR_RE.match(s)
    if not m or int(m.group(2)) != int(m.group(1)) + 1:
        raise ValidationError("Academic year must look like 2025-2026.")
    return s


def get_academic_year(conn, default: Optional[str] = None) -> str:
    rows = q(conn, "SELECT value FROM app_settings WHERE key=?", (KEY_ACADEMIC_YEAR,))
    if rows:
        return str(rows[0]["value"])
    return default or academic_year_for(date.today())


def set_academic_year(conn, value: str) -> str:
    year = validate_academic_year(value)
    x(
        conn,
        """
        INSERT INTO app_settings (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (KEY_ACADEMIC_YEAR, year),
    )
    return year
