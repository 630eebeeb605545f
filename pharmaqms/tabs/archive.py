# pharmaqms/tabs/archive.py

from datetime import date

import streamlit as st

from pharmaqms.archive import load_archive
from pharmaqms.errors import Result
from pharmaqms.session import current_user, get_engine
from pharmaqms.tabs.components import run_guarded


def display_archive():
    engine = get_engine()
    user = current_user()
    st.title("🗄️ Data Archive")

    with st.container(border=True):
        st.subheader("Export")
        st.caption("Every collection, including the audit trail, bundled into one JSON file.")
        if st.button("Prepare archive"):
            st.session_state.archive_payload = engine.export_archive(user)
        payload = st.session_state.get("archive_payload")
        if payload:
            st.download_button("📥 Download archive", data=payload, mime="application/json",
                               file_name=f"pharmaqms_backup_{date.today().isoformat()}.json")

    with st.container(border=True):
        st.subheader("Restore")
        if not user.is_admin:
            st.info("Only administrators may restore an archive.")
            return
        st.warning("Restoring overwrites every collection present in the file.")
        uploaded = st.file_uploader("Archive file", type=["json"])
        if uploaded is not None and st.button("Restore archive", type="primary"):
            parsed = load_archive(uploaded)
            if not parsed:
                st.error(parsed.message)
                return

            def restore():
                result = engine.restore_archive(parsed.value, user)
                if result and result.value.ignored:
                    return Result(ok=True, value=result.value,
                                  messages=(f"Ignored unknown keys: {', '.join(result.value.ignored)}",))
                return result

            run_guarded(restore, "Archive restored", rerun=True)
