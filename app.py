from __future__ import annotations

import streamlit as st

st.set_page_config(page_title="School Textbooks", page_icon="📚", layout="wide")

pages = [
    st.Page("home.py", title="Dashboard", icon="🏠"),
    st.Page("pages/1_📚_Textbooks.py", title="Textbooks", icon="📚"),
    st.Page("pages/2_🏫_Directory.py", title="Branches, Sets & People", icon="🏫"),
    st.Page("pages/3_📦_Distributions.py", title="Class Distributions", icon="📦"),
    st.Page("pages/4_🧑‍🏫_Individual_Distributions.py", title="Individual Distributions", icon="🧑‍🏫"),
    st.Page("pages/5_🧪_Data_Management.py", title="Data Management", icon="🧪"),
    st.Page("pages/6_📊_Reports.py", title="Reports", icon="📊"),
]

st.navigation(pages).run()
