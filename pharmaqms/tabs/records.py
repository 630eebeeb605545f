# pharmaqms/tabs/records.py

from typing import Callable, Dict, Iterable, Optional

import streamlit as st

from pharmaqms.repository import RecordRepository
from pharmaqms.tabs.components import (delete_control, record_picker, record_table, render_signature_form,
                                       transition_controls)

SKIP_FIELDS = {"id", "signatures"}


def display_record_details(record: Dict):
    """Compact key/value view plus the signature block."""
    fields = {k: v for k, v in record.items() if k not in SKIP_FIELDS and not isinstance(v, (list, dict))}
    st.dataframe([{"Field": k, "Value": str(v)} for k, v in fields.items()], hide_index=True, width="stretch")
    signatures = record.get("signatures") or []
    if signatures:
        st.markdown("**Electronic signatures**")
        for s in signatures:
            st.caption(f"✎ {s.get('signer')} · {s.get('meaning')} · {s.get('action')} · "
                       f"{str(s.get('signedAt'))[:19].replace('T', ' ')}  \nReason: {s.get('reason')}")


def display_records_page(repo: RecordRepository, title: str, icon: str, columns: Iterable[str],
                         create_form: Optional[Callable[[RecordRepository], None]] = None,
                         detail: Optional[Callable[[RecordRepository, Dict], None]] = None,
                         handlers: Optional[Callable[[RecordRepository, Dict], Dict]] = None):
    """
    Register / create layout shared by every module page. ``detail`` renders
    module-specific controls for the selected record; ``handlers`` supplies
    replacement calls for lifecycle actions that stamp extra fields.
    """
    st.title(f"{icon} {title}")
    render_signature_form()

    counts = repo.status_counts()
    if counts:
        cols = st.columns(min(len(counts), 6))
        for col, (status, n) in zip(cols, sorted(counts.items())):
            col.metric(status, n)

    tab_register, tab_new = st.tabs(["📋 Register", f"➕ New {repo.spec.label}"])

    with tab_new:
        if create_form is not None:
            create_form(repo)
        else:
            st.caption(f"{repo.spec.label} records are created from their parent workflow.")

    with tab_register:
        c1, c2 = st.columns([3, 1])
        text = c1.text_input("Search", key=f"search_{repo.spec.storage_key}", placeholder="Number, keyword...")
        statuses = ["All"] + list(repo.spec.machine.states if repo.spec.machine else [])
        status = c2.selectbox("Status", statuses, key=f"status_{repo.spec.storage_key}")
        records = repo.list(text, None if status == "All" else status)
        record_table(repo, records, columns)

        record = record_picker(records, key=f"pick_{repo.spec.storage_key}")
        if record is None:
            return
        with st.container(border=True):
            st.subheader(f"{record.get('number')}")
            transition_controls(repo, record, handlers(repo, record) if handlers else None)
            if detail is not None:
                detail(repo, record)
            with st.expander("Record details"):
                display_record_details(record)
            delete_control(repo, record)
