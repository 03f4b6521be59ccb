from __future__ import annotations

import logging

import pandas as pd
import streamlit as st

from school_textbooks.config import get_settings
from school_textbooks.db import get_conn, ensure_schema
from school_textbooks.services.app_settings import get_academic_year
from school_textbooks.services.demo_data import upsert_reference_data
from school_textbooks.services.distributions import list_batch_distributions
from school_textbooks.services.statistics import get_statistics, ledger_discrepancies

logging.basicConfig(level=logging.INFO)

st.set_page_config(page_title="School Textbooks", page_icon="📚", layout="wide")

st.title("📚 School Textbooks — Distribution Dashboard")
st.caption("Textbook stock, class and individual distributions, and returns with missing-book tracking.")

settings = get_settings()
conn = get_conn(settings.db_path)
ensure_schema(conn)
upsert_reference_data(conn, academic_year=settings.default_academic_year)

academic_year = get_academic_year(conn, settings.default_academic_year)

with st.sidebar:
    st.subheader("Environment")
    st.write(f"**Data directory:** `{settings.data_dir}`")
    st.write(f"**Database:** `{settings.db_path.name}`")
    st.write(f"**Academic year:** {academic_year}")

stats = get_statistics(conn)
c1, c2, c3, c4, c5 = st.columns(5)
c1.metric("Distributions", f"{stats['total_distributions']}")
c2.metric("Pending returns", f"{stats['pending_returns']}")
c3.metric("Missing books", f"{stats['total_missing_books']}")
c4.metric("Total stock", f"{stats['total_textbook_stock']}")
c5.metric("Available", f"{stats['available_textbook_stock']}")

issues = ledger_discrepancies(conn)
if issues:
    st.error(f"Stock ledger check failed for {len(issues)} textbook(s).")
    st.dataframe(pd.DataFrame(issues), use_container_width=True, hide_index=True)

st.subheader("Recent class distributions")
recent = list_batch_distributions(conn, academic_year=academic_year)[:5]
if recent:
    df = pd.DataFrame(recent)[
        ["id", "branch_grade", "branch_name", "teacher_name", "set_name", "status", "distributed_at"]
    ]
    st.dataframe(df, use_container_width=True, hide_index=True)
else:
    st.info(
        "No distributions this academic year. Start with **🧪 Data Management** to load demo data, "
        "or add textbooks, branches and sets first.",
        icon="ℹ️",
    )
