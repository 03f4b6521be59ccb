from __future__ import annotations

import pytest

from school_textbooks.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from school_textbooks.services.distributions import (
    create_batch_distribution,
    delete_batch_distribution,
    get_batch_distribution,
    list_batch_distributions,
)
from school_textbooks.services.returns import ReturnLine, return_batch_distribution
from school_textbooks.services.statistics import ledger_discrepancies

YEAR = "2025-2026"


@pytest.fixture
def scenario_a(conn, make_textbook, make_branch, make_set):
    t = make_textbook(30)
    branch = make_branch(25)
    s = make_set([t])
    d = create_batch_distribution(conn, branch_id=branch, set_id=s, academic_year=YEAR)
    return t, branch, d


def test_batch_allocation_reserves_student_count_per_title(conn, scenario_a, available):
    t, _, d = scenario_a
    assert available(t) == 5
    assert d["status"] == "distributed"
    assert d["returned_at"] is None
    [line] = d["details"]
    assert line["textbook_id"] == t
    assert (line["distributed_qty"], line["returned_qty"], line["missing_qty"]) == (25, 0, 0)


def test_second_allocation_short_is_rejected(conn, scenario_a, make_branch, make_set, available):
    t, _, _ = scenario_a
    other = make_branch(10)
    s = make_set([t], name="Second set")
    with pytest.raises(InsufficientStockError) as exc:
        create_batch_distribution(conn, branch_id=other, set_id=s, academic_year=YEAR)
    assert (exc.value.textbook_id, exc.value.required, exc.value.available) == (t, 10, 5)
    assert available(t) == 5
    assert len(list_batch_distributions(conn)) == 1


def test_fully_accounted_line_is_returned_not_partial(conn, scenario_a, available):
    # 20 returned + 5 missing accounts for all 25 copies. Missing copies close a
    # line the same way returned ones do, so the status is "returned" even though
    # five books never came back to stock.
    t, _, d = scenario_a
    res = return_batch_distribution(conn, d["id"], [{"textbook_id": t, "returned_qty": 20, "missing_qty": 5}])
    assert available(t) == 25
    assert res["status"] == "returned"
    assert res["returned_at"] is not None
    assert ledger_discrepancies(conn) == []


def test_missing_books_leave_status_partial_until_accounted(conn, scenario_a, available):
    t, _, d = scenario_a
    res = return_batch_distribution(conn, d["id"], [ReturnLine(t, returned_qty=15, missing_qty=5)])
    assert res["status"] == "partial"
    assert res["returned_at"] is not None
    assert available(t) == 20
    assert res["details"][0]["outstanding_qty"] == 5


def test_all_or_nothing_when_one_title_is_short(conn, make_textbook, make_branch, make_set, available):
    a, b, c = make_textbook(40), make_textbook(40), make_textbook(10)
    branch = make_branch(25)
    s = make_set([a, b, c])
    with pytest.raises(InsufficientStockError) as exc:
        create_batch_distribution(conn, branch_id=branch, set_id=s, academic_year=YEAR)
    assert [x["textbook_id"] for x in exc.value.shortages] == [c]
    assert [available(t) for t in (a, b, c)] == [40, 40, 10]
    assert list_batch_distributions(conn) == []


def test_every_shortage_is_reported(conn, make_textbook, make_branch, make_set):
    a, b = make_textbook(3), make_textbook(4)
    s = make_set([a, b])
    with pytest.raises(InsufficientStockError) as exc:
        create_batch_distribution(conn, branch_id=make_branch(5), set_id=s, academic_year=YEAR)
    assert {x["textbook_id"] for x in exc.value.shortages} == {a, b}


def test_full_return_restores_every_line(conn, make_textbook, make_branch, make_set, available):
    a, b = make_textbook(30), make_textbook(50)
    s = make_set([a, b])
    d = create_batch_distribution(conn, branch_id=make_branch(20), set_id=s, academic_year=YEAR)
    assert (available(a), available(b)) == (10, 30)

    res = return_batch_distribution(
        conn,
        d["id"],
        [{"textbook_id": a, "returned_qty": 20}, {"textbook_id": b, "returned_qty": 20}],
    )
    assert res["status"] == "returned"
    assert (available(a), available(b)) == (30, 50)


def test_status_uses_all_lines_not_only_touched_ones(conn, make_textbook, make_branch, make_set):
    a, b = make_textbook(30), make_textbook(30)
    d = create_batch_distribution(
        conn, branch_id=make_branch(20), set_id=make_set([a, b]), academic_year=YEAR
    )
    res = return_batch_distribution(conn, d["id"], [{"textbook_id": a, "returned_qty": 20}])
    assert res["status"] == "partial"


def test_incremental_returns_accumulate(conn, scenario_a, available):
    t, _, d = scenario_a
    first = return_batch_distribution(conn, d["id"], [{"textbook_id": t, "returned_qty": 12}])
    assert first["status"] == "partial"
    stamped = first["returned_at"]

    second = return_batch_distribution(
        conn, d["id"], [{"textbook_id": t, "returned_qty": 11, "missing_qty": 2}], return_notes="End of term"
    )
    line = second["details"][0]
    assert (line["returned_qty"], line["missing_qty"]) == (23, 2)
    assert second["status"] == "returned"
    assert second["returned_at"] == stamped
    assert second["return_notes"] == "End of term"
    assert available(t) == 28


def test_over_return_is_a_conflict_and_changes_nothing(conn, scenario_a, available):
    t, _, d = scenario_a
    return_batch_distribution(conn, d["id"], [{"textbook_id": t, "returned_qty": 20}])
    with pytest.raises(ConflictError) as exc:
        return_batch_distribution(conn, d["id"], [{"textbook_id": t, "returned_qty": 4, "missing_qty": 2}])
    assert exc.value.reason == "RETURN_EXCEEDS_DISTRIBUTED"
    assert available(t) == 25
    line = get_batch_distribution(conn, d["id"])["details"][0]
    assert (line["returned_qty"], line["missing_qty"]) == (20, 0)


def test_one_bad_line_rejects_the_whole_request(conn, make_textbook, make_branch, make_set, available):
    a, b = make_textbook(30), make_textbook(30)
    d = create_batch_distribution(
        conn, branch_id=make_branch(20), set_id=make_set([a, b]), academic_year=YEAR
    )
    with pytest.raises(ConflictError):
        return_batch_distribution(
            conn,
            d["id"],
            [{"textbook_id": a, "returned_qty": 20}, {"textbook_id": b, "returned_qty": 15, "missing_qty": 6}],
        )
    assert (available(a), available(b)) == (10, 10)
    assert get_batch_distribution(conn, d["id"])["status"] == "distributed"


@pytest.mark.parametrize(
    "lines",
    [
        [],
        [{"textbook_id": 1, "returned_qty": -1}],
        [{"textbook_id": 1, "returned_qty": 0, "missing_qty": 0}],
        [{"textbook_id": 1, "returned_qty": 1}, {"textbook_id": 1, "missing_qty": 1}],
        [{"returned_qty": 1}],
        [{"textbook_id": 1, "returned_qty": 1.5}],
    ],
)
def test_malformed_return_requests(conn, scenario_a, lines):
    _, _, d = scenario_a
    with pytest.raises(ValidationError):
        return_batch_distribution(conn, d["id"], lines)


def test_return_for_textbook_outside_distribution(conn, scenario_a, make_textbook):
    _, _, d = scenario_a
    stranger = make_textbook(5)
    with pytest.raises(NotFoundError):
        return_batch_distribution(conn, d["id"], [{"textbook_id": stranger, "returned_qty": 1}])


def test_return_unknown_distribution(conn):
    with pytest.raises(NotFoundError):
        return_batch_distribution(conn, 404, [{"textbook_id": 1, "returned_qty": 1}])


def test_delete_restores_stock_and_removes_record(conn, scenario_a, available):
    t, _, d = scenario_a
    delete_batch_distribution(conn, d["id"])
    assert available(t) == 30
    with pytest.raises(NotFoundError):
        get_batch_distribution(conn, d["id"])
    assert conn.execute("SELECT COUNT(*) FROM distribution_details").fetchone()[0] == 0


def test_delete_after_return_is_rejected(conn, scenario_a, available):
    t, _, d = scenario_a
    return_batch_distribution(conn, d["id"], [{"textbook_id": t, "missing_qty": 1}])
    with pytest.raises(ConflictError) as exc:
        delete_batch_distribution(conn, d["id"])
    assert exc.value.reason == "DISTRIBUTION_HAS_RETURNS"
    assert available(t) == 5


def test_delete_unknown(conn):
    with pytest.raises(NotFoundError):
        delete_batch_distribution(conn, 12345)


def test_missing_branch_or_set(conn, make_textbook, make_branch, make_set):
    s = make_set([make_textbook(30)])
    with pytest.raises(NotFoundError):
        create_batch_distribution(conn, branch_id=99, set_id=s, academic_year=YEAR)
    with pytest.raises(NotFoundError):
        create_batch_distribution(conn, branch_id=make_branch(), set_id=99, academic_year=YEAR)


def test_empty_branch_empty_set_and_bad_year(conn, make_textbook, make_branch, make_set):
    s = make_set([make_textbook(30)])
    with pytest.raises(ValidationError):
        create_batch_distribution(conn, branch_id=make_branch(0), set_id=s, academic_year=YEAR)
    with pytest.raises(ValidationError):
        create_batch_distribution(conn, branch_id=make_branch(), set_id=make_set([], name="Empty"), academic_year=YEAR)
    with pytest.raises(ValidationError):
        create_batch_distribution(conn, branch_id=make_branch(), set_id=s, academic_year="2025")


def test_request_key_makes_resubmission_safe(conn, make_textbook, make_branch, make_set, available):
    t = make_textbook(60)
    branch, s = make_branch(25), make_set([t])
    first = create_batch_distribution(conn, branch_id=branch, set_id=s, academic_year=YEAR, request_key="req-1")
    again = create_batch_distribution(conn, branch_id=branch, set_id=s, academic_year=YEAR, request_key="req-1")
    assert again["id"] == first["id"]
    assert available(t) == 35


def test_list_filters(conn, make_textbook, make_branch, make_set):
    t = make_textbook(100)
    s = make_set([t])
    d1 = create_batch_distribution(conn, branch_id=make_branch(10), set_id=s, academic_year=YEAR)
    create_batch_distribution(conn, branch_id=make_branch(10), set_id=s, academic_year="2024-2025")
    return_batch_distribution(conn, d1["id"], [{"textbook_id": t, "returned_qty": 10}])

    assert len(list_batch_distributions(conn)) == 2
    current = list_batch_distributions(conn, academic_year=YEAR)
    assert [r["id"] for r in current] == [d1["id"]]
    assert current[0]["returned_qty"] == 10
    assert [r["academic_year"] for r in list_batch_distributions(conn, status="distributed")] == ["2024-2025"]


def test_request_key_reused_for_another_branch_is_a_conflict(conn, make_textbook, make_branch, make_set, available):
    t = make_textbook(60)
    s = make_set([t])
    create_batch_distribution(conn, branch_id=make_branch(25), set_id=s, academic_year=YEAR, request_key="req-2")
    with pytest.raises(ConflictError) as exc:
        create_batch_distribution(conn, branch_id=make_branch(10), set_id=s, academic_year=YEAR, request_key="req-2")
    assert exc.value.reason == "DUPLICATE"
    assert available(t) == 35
    assert len(list_batch_distributions(conn)) == 1
