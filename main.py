# main.py

import streamlit as st

from pharmaqms.session import current_user, get_ai_service, get_config, get_engine, init_session_state, login, logout

# --- PAGE CONFIGURATION ---
st.set_page_config(
    page_title="PharmaQMS",
    page_icon="🛡️",
    layout="wide",
    initial_sidebar_state="expanded"
)

# --- INITIALIZATION ---
init_session_state()
config = get_config()

# --- LOGIN LOGIC ---
if not st.session_state.get("logged_in", False):
    st.markdown(f"## {config.title}")
    st.info("Please authenticate to access the Quality Management System.")

    with st.form("login_form"):
        username = st.text_input("Username")
        password = st.text_input("Password", type="password")
        if st.form_submit_button("Sign In", type="primary"):
            if login(username, password):
                st.rerun()
            else:
                st.toast("Access Denied: Invalid Credentials", icon="🚫")
    st.stop()


# --- PAGE WRAPPERS ---
def page_dashboard():
    from pharmaqms.tabs.dashboard import display_dashboard
    display_dashboard()

def page_deviations():
    from pharmaqms.tabs.quality import display_deviations
    display_deviations()

def page_capa():
    from pharmaqms.tabs.quality import display_capa
    display_capa()

def page_audits():
    from pharmaqms.tabs.quality import display_audits
    display_audits()

def page_oos():
    from pharmaqms.tabs.quality import display_oos
    display_oos()

def page_recalls():
    from pharmaqms.tabs.quality import display_recalls
    display_recalls()

def page_change_control():
    from pharmaqms.tabs.quality import display_change_control
    display_change_control()

def page_risk():
    from pharmaqms.tabs.risk import display_risk_register
    display_risk_register()

def page_stability():
    from pharmaqms.tabs.laboratory import display_stability
    display_stability()

def page_inventory():
    from pharmaqms.tabs.laboratory import display_inventory
    display_inventory()

def page_lims():
    from pharmaqms.tabs.laboratory import display_lims
    display_lims()

def page_coa():
    from pharmaqms.tabs.laboratory import display_coa
    display_coa()

def page_ipqc():
    from pharmaqms.tabs.ipqc import display_ipqc
    display_ipqc()

def page_batch_records():
    from pharmaqms.tabs.batch_records import display_batch_records
    display_batch_records()

def page_audit_trail():
    from pharmaqms.tabs.audit_trail import display_audit_trail
    display_audit_trail()

def page_notifications():
    from pharmaqms.tabs.notifications import display_notifications
    display_notifications()

def page_archive():
    from pharmaqms.tabs.archive import display_archive
    display_archive()

def page_advisor():
    from pharmaqms.tabs.advisor import display_advisor
    display_advisor()


# --- NAVIGATION SETUP ---
pages = {
    "Mission Control": [
        st.Page(page_dashboard, title="Dashboard", icon="📊", default=True),
        st.Page(page_notifications, title="Notifications", icon="🔔"),
        st.Page(page_advisor, title="Regulatory Advisor", icon="✨"),
    ],
    "Quality Management": [
        st.Page(page_deviations, title="Deviations", icon="🚨"),
        st.Page(page_capa, title="CAPA Lifecycle", icon="⚡"),
        st.Page(page_oos, title="OOS Investigations", icon="🧪"),
        st.Page(page_audits, title="Internal Audits", icon="🔍"),
        st.Page(page_risk, title="Risk Register", icon="⚠️"),
        st.Page(page_change_control, title="Change Control", icon="🔁"),
        st.Page(page_recalls, title="Recalls", icon="📢"),
    ],
    "Production": [
        st.Page(page_batch_records, title="Batch Records", icon="🏗️"),
        st.Page(page_ipqc, title="IPQC", icon="🏭"),
    ],
    "Laboratory & Materials": [
        st.Page(page_lims, title="LIMS", icon="🔬"),
        st.Page(page_coa, title="Certificates of Analysis", icon="📜"),
        st.Page(page_stability, title="Stability", icon="🌡️"),
        st.Page(page_inventory, title="Inventory", icon="📦"),
    ],
    "Compliance": [
        st.Page(page_audit_trail, title="Audit Trail", icon="🧾"),
        st.Page(page_archive, title="Data Archive", icon="💾"),
    ],
}

pg = st.navigation(pages)

# --- GLOBAL SIDEBAR ---
with st.sidebar:
    user = current_user()
    st.header(user.full_name)
    st.caption(f"{user.role.upper()} · {user.department}")

    unread = get_engine().notifications.unread_count()
    if unread:
        st.info(f"🔔 {unread} unread alert(s)")

    if st.button("Sign Out"):
        logout()
        st.rerun()

    if get_ai_service() is None:
        st.divider()
        st.warning("⚠️ AI features disabled (No API Key)")

    st.caption(f"v{config.version}")

# --- APP EXECUTION ---
pg.run()
