from __future__ import annotations

import random

from school_textbooks.db import q, ensure_schema, transaction
from school_textbooks.errors import ValidationError
from school_textbooks.services.app_settings import get_academic_year, set_academic_year
from school_textbooks.services.catalog import TextbookInput, create_textbook
from school_textbooks.services.directory import create_branch, create_set, create_student, create_teacher
from school_textbooks.services.distributions import create_batch_distribution
from school_textbooks.services.individual import create_individual_distribution
from school_textbooks.services.returns import return_batch_distribution

DEFAULT_SUBJECTS = ["Mathematics", "Language", "Literature", "History", "Physics", "Biology"]
DEMO_GRADES = [5, 6, 7]
DEMO_TEACHERS = ["A. Karimova", "B. Sadykov", "D. Nurlanova", "E. Petrova"]
DEMO_FIRST_NAMES = ["Aruzhan", "Dias", "Amina", "Timur", "Madina", "Alikhan", "Dana", "Yerlan"]
DEMO_LAST_NAMES = ["Abenov", "Bekova", "Serikov", "Omarova", "Zhumabek", "Kaliyeva"]


def upsert_reference_data(conn, *, academic_year: str) -> None:
    ensure_schema(conn)
    if not q(conn, "SELECT 1 FROM app_settings WHERE key='academic_year'"):
        set_academic_year(conn, academic_year)


def wipe_all(conn) -> None:
    # Keep schema, delete data (order matters for FKs).
    with transaction(conn):
        for t in [
            "distribution_details",
            "distributions",
            "individual_distributions",
            "textbook_set_items",
            "textbook_sets",
            "students",
            "branches",
            "teachers",
            "textbooks",
        ]:
            conn.execute(f"DELETE FROM {t};")


def load_demo_data(conn, *, academic_year: str, seed: int = 7) -> None:
    random.seed(seed)
    upsert_reference_data(conn, academic_year=academic_year)
    if q(conn, "SELECT 1 FROM textbooks LIMIT 1"):
        raise ValidationError("The catalog already has textbooks. Wipe all data before loading demo data.")
    year = get_academic_year(conn, academic_year)

    teacher_ids = [create_teacher(conn, full_name=name) for name in DEMO_TEACHERS]

    branch_ids: dict[int, list[int]] = {}
    set_ids: dict[int, int] = {}
    for grade in DEMO_GRADES:
        textbook_ids = []
        for subject in DEFAULT_SUBJECTS[: 3 + grade % 3]:
            textbook_ids.append(
                create_textbook(
                    conn,
                    TextbookInput(title=f"{subject} {grade}", subject=subject, grade_from=grade),
                    total_stock=random.randint(60, 90),
                )
            )
        set_ids[grade] = create_set(conn, name=f"Grade {grade} core set", grade=grade, textbook_ids=textbook_ids)

        branch_ids[grade] = []
        for letter in "AB":
            branch_ids[grade].append(
                create_branch(
                    conn,
                    name=letter,
                    grade=grade,
                    student_count=random.randint(18, 28),
                    teacher_id=random.choice(teacher_ids),
                )
            )

    for grade, branches in branch_ids.items():
        for branch_id in branches:
            for n in range(3):
                create_student(
                    conn,
                    full_name=f"{random.choice(DEMO_FIRST_NAMES)} {random.choice(DEMO_LAST_NAMES)}",
                    student_code=f"S{grade}{branch_id:03d}{n + 1:02d}",
                    grade=grade,
                    branch_id=branch_id,
                )

    # Hand the core set to the first branch of every grade; the youngest class
    # brings part of it back with a few books lost.
    first = None
    for grade in DEMO_GRADES:
        d = create_batch_distribution(
            conn,
            branch_id=branch_ids[grade][0],
            set_id=set_ids[grade],
            academic_year=year,
            notes="Demo distribution",
        )
        first = first or d

    line = first["details"][0]
    return_batch_distribution(
        conn,
        first["id"],
        [{"textbook_id": line["textbook_id"], "returned_qty": line["distributed_qty"] - 2, "missing_qty": 2}],
        return_notes="Two copies lost",
    )

    spare = q(conn, "SELECT id FROM textbooks ORDER BY available_stock DESC LIMIT 1")[0]
    create_individual_distribution(
        conn,
        textbook_id=int(spare["id"]),
        recipient_type="teacher",
        recipient_id=teacher_ids[0],
        quantity=2,
        academic_year=year,
        notes="Teacher's copies",
    )
