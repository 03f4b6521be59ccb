from __future__ import annotations

from school_textbooks.services.distributions import create_batch_distribution
from school_textbooks.services.individual import create_individual_distribution
from school_textbooks.services.ledger import set_total_stock
from school_textbooks.services.returns import return_batch_distribution, return_individual_distribution
from school_textbooks.services.statistics import get_statistics, ledger_discrepancies

YEAR = "2025-2026"


def test_empty_store(conn):
    assert get_statistics(conn) == {
        "total_distributions": 0,
        "pending_returns": 0,
        "total_missing_books": 0,
        "total_textbook_stock": 0,
        "available_textbook_stock": 0,
    }
    assert ledger_discrepancies(conn) == []


def test_counts_across_both_allocation_kinds(conn, make_textbook, make_branch, make_set, teacher_id):
    a, b = make_textbook(30), make_textbook(20)
    d1 = create_batch_distribution(conn, branch_id=make_branch(10), set_id=make_set([a]), academic_year=YEAR)
    create_batch_distribution(conn, branch_id=make_branch(5), set_id=make_set([a, b], name="Full"), academic_year=YEAR)
    i1 = create_individual_distribution(
        conn, textbook_id=b, recipient_type="teacher", recipient_id=teacher_id, quantity=2, academic_year=YEAR
    )

    return_batch_distribution(conn, d1["id"], [{"textbook_id": a, "returned_qty": 7, "missing_qty": 3}])
    return_individual_distribution(conn, i1["id"], 1, 1)

    stats = get_statistics(conn)
    assert stats["total_distributions"] == 3
    assert stats["pending_returns"] == 1
    assert stats["total_missing_books"] == 4
    assert stats["total_textbook_stock"] == 50
    # a: 30 - 10 - 5 + 7 = 22; b: 20 - 5 - 2 + 1 = 14
    assert stats["available_textbook_stock"] == 36
    assert ledger_discrepancies(conn) == []


def test_ledger_holds_after_resize(conn, make_textbook, make_branch, make_set):
    t = make_textbook(30)
    create_batch_distribution(conn, branch_id=make_branch(20), set_id=make_set([t]), academic_year=YEAR)
    set_total_stock(conn, t, 45)
    assert ledger_discrepancies(conn) == []


def test_tampered_counter_is_reported(conn, make_textbook, make_branch, make_set):
    t = make_textbook(30)
    create_batch_distribution(conn, branch_id=make_branch(20), set_id=make_set([t]), academic_year=YEAR)
    conn.execute("UPDATE textbooks SET available_stock = available_stock + 3 WHERE id=?", (t,))

    [issue] = ledger_discrepancies(conn)
    assert issue["textbook_id"] == t
    assert issue["not_in_stock"] == 20
    assert issue["difference"] == 3
