"""
Return reconciliation for batch and individual distributions.

Quantities passed in are increments: they are added to what each line already
has recorded, so a class can hand books back over several days. The request is
validated as a whole before anything is written; one bad line rejects all of
them. Returned copies go back to the stock ledger; missing copies never do.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from school_textbooks.db import q, x, transaction
from school_textbooks.errors import RETURN_EXCEEDS_DISTRIBUTED, ConflictError, NotFoundError, ValidationError
from school_textbooks.services.distributions import get_batch_distribution
from school_textbooks.services.individual import get_individual_distribution
from school_textbooks.services.ledger import release
from school_textbooks.services.status import STATUS_DISTRIBUTED, derive_status
from school_textbooks.utils import as_count, clean_text, iso_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReturnLine:
    textbook_id: int
    returned_qty: int = 0
    missing_qty: int = 0


def _coerce_line(line: Union[ReturnLine, Mapping]) -> ReturnLine:
    if isinstance(line, ReturnLine):
        textbook_id, returned, missing = line.textbook_id, line.returned_qty, line.missing_qty
    elif isinstance(line, Mapping):
        if line.get("textbook_id") is None:
            raise ValidationError("Each return line needs a textbook_id.")
        textbook_id = line["textbook_id"]
        returned = line.get("returned_qty", 0)
        missing = line.get("missing_qty", 0)
    else:
        raise ValidationError("Return lines must be ReturnLine objects or mappings.")

    return ReturnLine(
        textbook_id=as_count(textbook_id, "Textbook id", minimum=1),
        returned_qty=as_count(returned, "Returned quantity"),
        missing_qty=as_count(missing, "Missing quantity"),
    )


def _check_line(label: str, distributed: int, returned: int, missing: int, inc: ReturnLine) -> None:
    new_returned = returned + inc.returned_qty
    new_missing = missing + inc.missing_qty
    if new_returned + new_missing > distributed:
        raise ConflictError(
            RETURN_EXCEEDS_DISTRIBUTED,
            f"{label}: returned {new_returned} + missing {new_missing} exceeds distributed {distributed}.",
        )


def _returned_at(previous: Optional[str], status: str) -> Optional[str]:
    if previous:
        return previous
    return iso_now() if status != STATUS_DISTRIBUTED else None


def return_batch_distribution(
    conn,
    distribution_id: int,
    lines: Iterable[Union[ReturnLine, Mapping]],
    *,
    return_notes: Optional[str] = None,
) -> dict:
    """
    Record returned/missing copies for some or all lines of a batch distribution.

    Status is recomputed over every detail line of the distribution, not only
    the ones in this request.
    """
    increments = [_coerce_line(l) for l in lines]
    if not increments:
        raise ValidationError("At least one return line is required.")
    ids = [inc.textbook_id for inc in increments]
    if len(set(ids)) != len(ids):
        raise ValidationError("Each textbook may appear only once per return.")
    if not any(inc.returned_qty or inc.missing_qty for inc in increments):
        raise ValidationError("Nothing to return: all quantities are zero.")

    with transaction(conn):
        dist = get_batch_distribution(conn, distribution_id)
        by_textbook = {int(d["textbook_id"]): d for d in dist["details"]}

        for inc in increments:
            line = by_textbook.get(inc.textbook_id)
            if line is None:
                raise NotFoundError(f"Textbook line in distribution {distribution_id}", inc.textbook_id)
            _check_line(
                f"'{line['title']}'",
                int(line["distributed_qty"]),
                int(line["returned_qty"]),
                int(line["missing_qty"]),
                inc,
            )

        for inc in increments:
            if inc.returned_qty:
                release(conn, inc.textbook_id, inc.returned_qty)
            x(
                conn,
                """
                UPDATE distribution_details
                SET returned_qty = returned_qty + ?, missing_qty = missing_qty + ?
                WHERE id=?
                """,
                (inc.returned_qty, inc.missing_qty, int(by_textbook[inc.textbook_id]["id"])),
            )

        all_lines = q(
            conn,
            "SELECT distributed_qty, returned_qty, missing_qty FROM distribution_details WHERE distribution_id=?",
            (int(distribution_id),),
        )
        status = derive_status((r["distributed_qty"], r["returned_qty"], r["missing_qty"]) for r in all_lines)
        x(
            conn,
            "UPDATE distributions SET status=?, returned_at=?, return_notes=COALESCE(?, return_notes) WHERE id=?",
            (status, _returned_at(dist["returned_at"], status), clean_text(return_notes), int(distribution_id)),
        )

    returned = sum(inc.returned_qty for inc in increments)
    missing = sum(inc.missing_qty for inc in increments)
    logger.info(
        f"Distribution {distribution_id} return recorded: {returned} returned, {missing} missing "
        f"({dist['status']} -> {status})"
    )
    return get_batch_distribution(conn, distribution_id)


def return_individual_distribution(
    conn,
    distribution_id: int,
    returned_qty: int,
    missing_qty: int = 0,
    *,
    return_notes: Optional[str] = None,
) -> dict:
    with transaction(conn):
        dist = get_individual_distribution(conn, distribution_id)
        inc = _coerce_line(
            {"textbook_id": dist["textbook_id"], "returned_qty": returned_qty, "missing_qty": missing_qty}
        )
        if not (inc.returned_qty or inc.missing_qty):
            raise ValidationError("Nothing to return: all quantities are zero.")
        _check_line(
            f"'{dist['title']}' for {dist['recipient_name']}",
            int(dist["quantity"]),
            int(dist["returned_qty"]),
            int(dist["missing_qty"]),
            inc,
        )

        if inc.returned_qty:
            release(conn, inc.textbook_id, inc.returned_qty)

        new_returned = int(dist["returned_qty"]) + inc.returned_qty
        new_missing = int(dist["missing_qty"]) + inc.missing_qty
        status = derive_status([(dist["quantity"], new_returned, new_missing)])
        x(
            conn,
            """
            UPDATE individual_distributions
            SET returned_qty=?, missing_qty=?, status=?, returned_at=?, return_notes=COALESCE(?, return_notes)
            WHERE id=?
            """,
            (
                new_returned,
                new_missing,
                status,
                _returned_at(dist["returned_at"], status),
                clean_text(return_notes),
                int(distribution_id),
            ),
        )

    logger.info(
        f"Individual distribution {distribution_id} return recorded: {inc.returned_qty} returned, "
        f"{inc.missing_qty} missing ({dist['status']} -> {status})"
    )
    return get_individual_distribution(conn, distribution_id)
