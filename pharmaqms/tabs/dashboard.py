# pharmaqms/tabs/dashboard.py

import pandas as pd
import streamlit as st

from pharmaqms.session import current_user, get_engine


def display_dashboard():
    engine = get_engine()
    user = current_user()
    st.title("📊 Quality Control Center")
    st.caption(f"Signed in as {user.full_name} · {user.department}")

    summary = engine.dashboard_summary()
    deviation_stats = engine.deviations.stats()
    open_capas = engine.capa.open_capas()

    m1, m2, m3, m4 = st.columns(4)
    m1.metric("Open Items", engine.open_items())
    m2.metric("Critical Deviations", deviation_stats.get("critical", 0))
    m3.metric("Open CAPAs", len(open_capas))
    m4.metric("Unread Alerts", engine.notifications.unread_count())

    with st.container(border=True):
        st.subheader("Records by Module and Status")
        rows = [{"Module": module, "Status": status, "Count": count}
                for module, counts in summary.items() for status, count in counts.items()]
        if rows:
            pivot = pd.DataFrame(rows).pivot_table(index="Module", columns="Status", values="Count",
                                                   aggfunc="sum", fill_value=0)
            st.dataframe(pivot, width="stretch")
        else:
            st.info("No records yet. Start by logging a deviation or receiving material.")

    c1, c2 = st.columns(2)
    with c1.container(border=True):
        st.subheader("⚠️ Low Stock")
        low = engine.inventory.low_stock()
        if low:
            st.dataframe(engine.inventory.to_dataframe(low, ["number", "name", "stock", "reorderLevel", "unit"]),
                         hide_index=True, width="stretch")
        else:
            st.caption("All materials above reorder level.")
    with c2.container(border=True):
        st.subheader("🕓 Recent Activity")
        recent = engine.audit.query()[:10]
        for entry in recent:
            st.markdown(f"**{entry.action}** · {entry.module} · {entry.user}  \n"
                        f"<small>{entry.timestamp[:19].replace('T', ' ')}</small>", unsafe_allow_html=True)
        if not recent:
            st.caption("No activity recorded yet.")
