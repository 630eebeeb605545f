# pharmaqms/tabs/batch_records.py

import streamlit as st

from pharmaqms.modules.batch_records import STEP_LISTS
from pharmaqms.session import current_user, get_ai_service, get_engine
from pharmaqms.signature import SignatureMeaning
from pharmaqms.tabs.components import (ai_unavailable_notice, request_signature, run_guarded)
from pharmaqms.tabs.records import display_records_page


def _mfr_form(repo):
    user = current_user()
    ai = get_ai_service()
    with st.form("mfr_form"):
        c1, c2, c3 = st.columns(3)
        product = c1.text_input("Product name")
        dosage_form = c2.selectbox("Dosage form", ["Tablet", "Capsule", "Syrup", "Effervescent Granules",
                                                   "Injection"])
        batch_size = c3.text_input("Batch size", placeholder="100,000 Tabs")
        submitted = st.form_submit_button("Synthesize MFR Draft", type="primary")
    if ai is None:
        ai_unavailable_notice()
    if submitted:
        fields = {"batchSize": batch_size} if batch_size else {}
        with st.spinner("Drafting master formula..."):
            run_guarded(lambda: repo.draft_from_template(product, dosage_form, user, ai, **fields),
                        "MFR draft saved", rerun=True)


def _mfr_detail(repo, record):
    user = current_user()
    st.caption(f"{record.get('productName')} · {record.get('dosageForm')} · batch size {record.get('batchSize')} · "
               f"revision {record.get('revision')}")
    st.markdown("##### Bill of Materials")
    st.dataframe(record.get("ingredients") or [], hide_index=True, width="stretch")
    st.markdown("##### Manufacturing Process")
    st.dataframe([{k: s.get(k) for k in ("id", "operation", "instruction", "limit", "category")}
                  for s in record.get("steps") or []], hide_index=True, width="stretch")
    for a in record.get("approvals") or []:
        st.caption(f"✎ {a.get('name')} ({a.get('designation')}) · {a.get('meaning')}")

    if record.get("status") == "Effective":
        with st.form(f"issue_{record['id']}"):
            batch = st.text_input("Batch number to issue")
            if st.form_submit_button("Issue BMR ✎", type="primary") and batch.strip():
                engine = get_engine()
                request_signature(f"BMR Release Auth: {record.get('productName')} Lot {batch}",
                                  SignatureMeaning.TECHNICAL_RELEASE,
                                  lambda sig, b=batch: engine.bmr.issue_bmr(record["id"], b, user, sig),
                                  f"Batch record {batch} issued")
                st.rerun()


def _mfr_handlers(repo, record):
    user = current_user()
    return {"approve": lambda signature: repo.approve(record["id"], user, signature,
                                                      expected_version=record.get("version"))}


def display_mfr():
    display_records_page(get_engine().mfr, "Master Formula Records", "📘",
                         ["number", "productName", "dosageForm", "batchSize", "revision", "status"],
                         create_form=_mfr_form, detail=_mfr_detail, handlers=_mfr_handlers)


def _step_row(repo, record, step, executing):
    user = current_user()
    c1, c2, c3 = st.columns([4, 2, 2])
    c1.markdown(f"**{step.get('id')} · {step.get('operation')}**  \n{step.get('instruction')}")
    lot = record.get("batchNumber")
    if step.get("signOffBy"):
        c2.caption(f"Signed: {step['signOffBy']}")
    elif c2.button("Sign Completion ✎", key=f"sign_{record['id']}_{step['id']}", disabled=not executing):
        request_signature(f"BMR Execution Stage: {step['id']} (Lot {lot})", SignatureMeaning.AUTHORSHIP,
                          lambda sig, sid=step["id"]: repo.sign_step(record["id"], sid, user, sig),
                          f"Step {step['id']} signed")
        st.rerun()
    if step.get("checkedBy"):
        c3.caption(f"Verified: {step['checkedBy']}")
    elif c3.button("Verify ✎", key=f"verify_{record['id']}_{step['id']}",
                   disabled=not executing or not step.get("signOffBy")):
        request_signature(f"BMR Execution Stage: {step['id']} (Lot {lot})", SignatureMeaning.VERIFICATION,
                          lambda sig, sid=step["id"]: repo.verify_step(record["id"], sid, user, sig),
                          f"Step {step['id']} verified")
        st.rerun()


def _bmr_detail(repo, record):
    user = current_user()
    st.progress(repo.progress(record), text=f"Execution {repo.progress(record):.0%} verified")
    clearance = record.get("lineClearance") or {}
    if clearance.get("status"):
        st.success(f"Line clearance verified by {clearance.get('verifiedBy')}")
    elif record.get("status") in ("Issued", "In Progress"):
        if st.button("Record Line Clearance ✎", key=f"lc_{record['id']}"):
            request_signature(f"Line clearance for Lot {record.get('batchNumber')}", SignatureMeaning.LINE_CLEARANCE,
                              lambda sig: repo.line_clearance(record["id"], user, sig), "Line clearance recorded")
            st.rerun()

    executing = record.get("status") == "In Progress"
    for name, title in zip(STEP_LISTS, ("Manufacturing", "Packaging")):
        steps = record.get(name) or []
        if steps:
            st.markdown(f"##### {title} Steps")
            for step in steps:
                _step_row(repo, record, step, executing)

    outstanding = repo.outstanding(record)
    if executing and outstanding:
        with st.expander(f"Blocking completion ({len(outstanding)})"):
            for item in outstanding:
                st.caption(f"• {item}")


def display_bmr():
    display_records_page(get_engine().bmr, "Batch Manufacturing Records", "🏗️",
                         ["number", "productName", "mfrNumber", "issuedBy", "issuanceDate", "status"],
                         detail=_bmr_detail)


def display_batch_records():
    mode = st.segmented_control("View", ["Batch Records", "Master Formulas"], default="Batch Records",
                                label_visibility="collapsed")
    if mode == "Master Formulas":
        display_mfr()
    else:
        display_bmr()
