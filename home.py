from __future__ import annotations

import streamlit as st

from metalerp.config import get_settings
from metalerp.db import get_store
from metalerp.logging_config import configure_logging
from metalerp.services.demo_data import upsert_reference_data
from metalerp.services.profile import get_company_profile

st.set_page_config(page_title="Metal Sheets ERP", page_icon="🔩", layout="wide")

settings = get_settings()
configure_logging(level=settings.log_level)
store = get_store(settings.db_path)
upsert_reference_data(store, base_currency=settings.base_currency)
profile = get_company_profile(store)

st.title(f"🔩 {profile.company_name}")
st.caption("Metal sheet stock by FIFO batch, sales with cost of goods, and running customer/supplier balances.")

with st.sidebar:
    st.subheader("Environment")
    st.write(f"**Data directory:** `{settings.data_dir}`")
    st.write(f"**Database:** `{settings.db_path.name}`")
    st.write(f"**Base currency:** {profile.base_currency}")

st.info(
    "Use the left sidebar navigation. Start with **🧪 Data Management** to load demo data, then try **Stock In**, **Sales** and **Accounts**.",
    icon="ℹ️",
)
