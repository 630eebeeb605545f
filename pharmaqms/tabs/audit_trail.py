# pharmaqms/tabs/audit_trail.py

from datetime import datetime

import streamlit as st

from pharmaqms.session import get_engine


def display_audit_trail():
    engine = get_engine()
    st.title("📜 Audit Trail (21 CFR Part 11)")
    st.caption("Append-only record of every change, signature and approval. Entries cannot be edited or deleted.")

    entries = engine.audit.query()
    modules = sorted({e.module for e in entries if e.module})
    users = sorted({e.user for e in entries if e.user})

    c1, c2, c3 = st.columns([2, 1, 1])
    text = c1.text_input("Search", placeholder="Action, details or record id")
    module = c2.selectbox("Module", ["All"] + modules)
    user = c3.selectbox("User", ["All"] + users)

    results = engine.audit.search(text, module=None if module == "All" else module,
                                  user=None if user == "All" else user)
    st.caption(f"{len(results)} of {len(entries)} entries")
    st.dataframe(engine.audit.to_dataframe(results), hide_index=True, width="stretch")

    st.download_button(
        label="📥 Download Audit Log (CSV)",
        data=engine.audit.get_audit_log_csv(results),
        file_name=f"audit_log_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv",
        mime="text/csv",
        disabled=not results,
    )
