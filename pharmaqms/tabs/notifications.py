# pharmaqms/tabs/notifications.py

import streamlit as st

from pharmaqms.notifications import NotificationPreferences
from pharmaqms.session import get_engine

PRIORITY_ICONS = {"Critical": "🔴", "High": "🟠", "Medium": "🟡", "Low": "🟢"}


def _preferences(service):
    prefs = service.get_preferences()
    with st.form("notification_prefs"):
        st.subheader("Alert Preferences")
        critical = st.toggle("E-mail on critical deviation", value=prefs.emailOnCriticalDeviation)
        capa = st.toggle("E-mail on CAPA assignment", value=prefs.emailOnCapaAssignment)
        overdue = st.toggle("E-mail on overdue task", value=prefs.emailOnOverdueTask)
        system = st.toggle("In-app system alerts", value=prefs.systemAlertsEnabled)
        if st.form_submit_button("Save preferences"):
            service.save_preferences(NotificationPreferences(critical, capa, overdue, system))
            st.success("Preferences saved")


def display_notifications():
    service = get_engine().notifications
    st.title("🔔 Notifications")
    history = service.history()

    c1, c2, c3 = st.columns([2, 1, 1])
    c1.metric("Unread", service.unread_count())
    if c2.button("Mark all read", disabled=not service.unread_count()):
        service.mark_read()
        st.rerun()
    if c3.button("Clear history", disabled=not history):
        service.clear()
        st.rerun()

    if not service.get_preferences().systemAlertsEnabled:
        st.info("In-app alerts are switched off; e-mail dispatch still follows your preferences.")
    if not history:
        st.caption("No notifications yet.")
    for n in history:
        with st.container(border=True):
            c1, c2 = st.columns([5, 1])
            badge = "" if n.get("isRead") else " · **NEW**"
            c1.markdown(f"{PRIORITY_ICONS.get(n.get('priority'), '⚪')} **{n.get('title')}**{badge}  \n"
                        f"{n.get('message')}  \n"
                        f"<small>{n.get('category')} · {n.get('type')} · "
                        f"{(n.get('timestamp') or '')[:19].replace('T', ' ')}</small>", unsafe_allow_html=True)
            if not n.get("isRead") and c2.button("Read", key=f"read_{n['id']}"):
                service.mark_read(n["id"])
                st.rerun()

    _preferences(service)
