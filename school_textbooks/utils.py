from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from school_textbooks.errors import ValidationError


def iso_now() -> str:
    # Use UTC ISO timestamps for consistency.
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s if s else None


def as_count(value: Any, field: str, *, minimum: int = 0) -> int:
    """Coerce a copy count; rejects bools, fractions and values below `minimum`."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a whole number.")
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number.")
    if n != value and not isinstance(value, str):
        raise ValidationError(f"{field} must be a whole number.")
    if n < minimum:
        raise ValidationError(f"{field} must be >= {minimum}.")
    return n
