from __future__ import annotations

from typing import Iterable

from school_textbooks.errors import ValidationError

STATUS_DISTRIBUTED = "distributed"
STATUS_PARTIAL = "partial"
STATUS_RETURNED = "returned"

STATUSES = (STATUS_DISTRIBUTED, STATUS_PARTIAL, STATUS_RETURNED)


def derive_status(lines: Iterable[tuple[int, int, int]]) -> str:
    """
    Allocation status from its (distributed_qty, returned_qty, missing_qty) lines.

    - returned:    every line fully accounted for (returned + missing == distributed)
    - distributed: no line has any returned or missing copy yet
    - partial:     anything in between
    """
    lines = [(int(d), int(r), int(m)) for d, r, m in lines]
    if not lines:
        raise ValidationError("Cannot derive a status without lines.")

    if all(r + m == d for d, r, m in lines):
        return STATUS_RETURNED
    if all(r == 0 and m == 0 for _, r, m in lines):
        return STATUS_DISTRIBUTED
    return STATUS_PARTIAL


def normalize_status_filter(status):
    if status is None or str(status).strip() == "":
        return None
    s = str(status).strip().lower()
    if s not in STATUSES:
        raise ValidationError(f"Unknown status '{status}'. Use one of: {', '.join(STATUSES)}.")
    return s
