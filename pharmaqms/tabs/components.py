# pharmaqms/tabs/components.py

"""Shared widgets: result messages, the e-signature form and record lifecycle controls."""

from typing import Callable, Dict, Iterable, List, Optional

import streamlit as st

from pharmaqms.errors import ErrorKind, Result, StorageFailure
from pharmaqms.repository import RecordRepository
from pharmaqms.session import current_user, get_engine
from pharmaqms.signature import Confirmed, SignatureMeaning

MEANINGS = [m.value for m in SignatureMeaning]


def show_result(result: Result, success_message: Optional[str] = None) -> bool:
    """Renders an operation outcome; each refusal kind gets its own wording."""
    if result:
        if success_message:
            st.success(success_message)
        for message in result.messages:
            st.info(message)
        return True

    message = result.message
    if result.error == ErrorKind.VALIDATION:
        st.warning(f"Please correct the following: {message}", icon="📝")
    elif result.error == ErrorKind.UNAUTHORIZED:
        st.error(f"Not authorised: {message}", icon="🚫")
    elif result.error == ErrorKind.INVALID_TRANSITION:
        st.error(f"Action not allowed: {message}", icon="⛔")
    elif result.error == ErrorKind.NOT_FOUND:
        st.error(f"Record not found: {message}", icon="🔎")
    elif result.error == ErrorKind.CREDENTIAL_MISMATCH:
        st.error(message, icon="🔐")
    elif result.error == ErrorKind.SIGNATURE_REQUIRED:
        st.info(message, icon="🖊️")
    elif result.error == ErrorKind.CONFLICT:
        st.warning(message, icon="🔄")
    elif result.error == ErrorKind.COLLABORATOR_UNAVAILABLE:
        st.toast(f"AI assistant unavailable: {message}", icon="⚠️")
    else:
        st.error(message)
    return False


def run_guarded(operation: Callable[[], Result], success_message: Optional[str] = None,
                rerun: bool = False) -> bool:
    """
    Runs a repository call; a storage failure is shown instead of crashing the
    page. With ``rerun`` a success is flashed on the next run of the page.
    """
    try:
        result = operation()
    except StorageFailure as e:
        st.error(f"Storage failure, nothing was saved: {e}", icon="💾")
        return False
    if result and rerun:
        st.session_state.flash = (success_message, list(result.messages))
        st.rerun()
    return show_result(result, success_message)


def render_flash():
    flash = st.session_state.pop("flash", None)
    if flash:
        message, notes = flash
        if message:
            st.success(message)
        for note in notes:
            st.info(note)


def request_signature(action_description: str, meaning: SignatureMeaning,
                      on_confirm: Callable[[Confirmed], Result], success_message: str):
    """Opens a fresh signature gate; the pending mutation runs only once the gate confirms."""
    gate = get_engine().signature_gate(action_description, current_user(), meaning)
    st.session_state.pending_signature = {
        "gate": gate,
        "on_confirm": on_confirm,
        "success": success_message,
    }


def render_signature_form():
    render_flash()
    pending = st.session_state.get("pending_signature")
    if not pending:
        return
    gate = pending["gate"]

    with st.container(border=True):
        st.subheader("🖊️ Electronic Signature Required")
        st.caption(f"{gate.action_description}. Signing as {gate.user.full_name} ({gate.user.role}).")
        with st.form("signature_form"):
            meaning = st.selectbox("Meaning of signature", MEANINGS, index=MEANINGS.index(gate.meaning.value))
            reason = st.text_area("Reason for signing", value=gate.reason, height=80)
            password = st.text_input("Password", type="password")
            c1, c2 = st.columns(2)
            sign = c1.form_submit_button("Sign & Commit", type="primary", width="stretch")
            cancel = c2.form_submit_button("Cancel", width="stretch")

        if cancel:
            gate.cancel()
            st.session_state.pending_signature = None
            st.rerun()
        if sign:
            res = gate.submit(password, reason, SignatureMeaning(meaning))
            if not res:
                show_result(res)
                if gate.failed_attempts:
                    st.caption(f"Failed attempts: {gate.failed_attempts}")
                return
            st.session_state.pending_signature = None
            run_guarded(lambda: pending["on_confirm"](res.value), pending["success"], rerun=True)


def record_label(record: Dict) -> str:
    status = record.get("status")
    title = (record.get("title") or record.get("description") or record.get("productName")
             or record.get("name") or record.get("hazard") or "")
    label = f"{record.get('number')} · {status}" if status else str(record.get("number"))
    return f"{label} · {str(title)[:50]}" if title else label


def record_picker(records: List[Dict], key: str) -> Optional[Dict]:
    if not records:
        return None
    options = {r["id"]: r for r in records}
    chosen = st.selectbox("Select record", list(options), format_func=lambda rid: record_label(options[rid]),
                          key=key)
    return options.get(chosen)


def record_table(repo: RecordRepository, records: List[Dict], columns: Iterable[str]):
    if not records:
        st.info(f"No {repo.spec.label} records found.")
        return
    st.dataframe(repo.to_dataframe(records, columns), hide_index=True, width="stretch")


def transition_controls(repo: RecordRepository, record: Dict,
                        handlers: Optional[Dict[str, Callable[[Optional[Confirmed]], Result]]] = None):
    """
    One button per action available from the record's current status. Signed
    actions go through the signature form; ``handlers`` replaces the plain
    transition call for actions that stamp extra fields.
    """
    machine = repo.spec.machine
    user = current_user()
    if machine is None:
        return
    available = [machine.lookup(record["status"], a) for a in machine.actions]
    available = [t for t in available if t is not None]
    if not available:
        st.caption(f"{record.get('number')} is {record.get('status')}; no further actions.")
        return

    handlers = handlers or {}
    cols = st.columns(len(available))
    for col, t in zip(cols, available):
        def commit(signature=None, t=t):
            if t.action in handlers:
                return handlers[t.action](signature)
            return repo.transition(record["id"], t.action, user, signature=signature,
                                   expected_version=record.get("version"))

        label = t.action.replace("_", " ").title() + (" ✎" if t.signature else "")
        disabled = t.admin_only and machine.role_gated and not user.is_admin
        if col.button(label, key=f"{repo.spec.storage_key}_{record['id']}_{t.action}", disabled=disabled,
                      width="stretch", help="Administrators only" if disabled else None):
            if t.signature is not None:
                request_signature(f"{t.label}: {record.get('number')}", t.signature, commit, t.label)
                st.rerun()
            else:
                run_guarded(commit, t.label, rerun=True)


def delete_control(repo: RecordRepository, record: Dict):
    user = current_user()
    if not user.is_admin:
        return
    with st.popover("🗑️ Delete"):
        st.warning(f"Permanently delete {record.get('number')}? The deletion is recorded in the audit trail.")
        if st.button("Confirm delete", key=f"del_{record['id']}", type="primary"):
            run_guarded(lambda: repo.delete(record["id"], user, expected_version=record.get("version")),
                        f"{record.get('number')} deleted", rerun=True)


def ai_unavailable_notice():
    st.caption("⚠️ AI features disabled (no API key configured). Manual entry is always available.")
