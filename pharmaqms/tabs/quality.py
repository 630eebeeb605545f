# pharmaqms/tabs/quality.py

"""Pages for the quality event modules: deviations, CAPA, audits, OOS, recalls and change control."""

from datetime import date, timedelta

import streamlit as st

from pharmaqms.modules import audits, capa, change_control, deviations, recalls
from pharmaqms.session import current_user, get_ai_service, get_engine
from pharmaqms.tabs.components import ai_unavailable_notice, run_guarded
from pharmaqms.tabs.records import display_records_page


# --- Deviations ---

def _deviation_form(repo):
    user = current_user()
    ai = get_ai_service()
    with st.form("deviation_form", clear_on_submit=True):
        c1, c2 = st.columns(2)
        department = c1.selectbox("Department", deviations.DEPARTMENTS)
        severity = c2.selectbox("Severity", deviations.SEVERITIES, index=1)
        description = st.text_area("Event description", height=120,
                                   help="What happened, where, which batch or equipment.")
        use_ai = st.checkbox("Run AI root cause scoping", value=ai is not None, disabled=ai is None)
        submitted = st.form_submit_button("Log Deviation", type="primary")
    if ai is None:
        ai_unavailable_notice()
    if submitted:
        analysis = None
        if use_ai and ai is not None and description.strip():
            with st.spinner("AI is scoping the root cause..."):
                analysis = ai.capa_suggestions(description)
            if analysis is None:
                st.toast("AI analysis unavailable; logged without suggestion.", icon="⚠️")
        run_guarded(lambda: repo.log(department, description, severity, user, ai_analysis=analysis),
                    "Deviation logged", rerun=True)


def _deviation_detail(repo, record):
    user = current_user()
    analysis = record.get("aiAnalysis")
    if analysis:
        with st.expander("🤖 AI Root Cause Scoping", expanded=True):
            st.markdown(f"**Root cause:** {analysis.get('rootCause')}")
            st.markdown(f"**Corrective:** {analysis.get('correctiveAction')}")
            st.markdown(f"**Preventive:** {analysis.get('preventiveAction')}")
    elif st.button("🤖 Run AI Analysis", key=f"ai_{record['id']}"):
        with st.spinner("Analysing..."):
            run_guarded(lambda: repo.run_ai_analysis(record["id"], user, get_ai_service()),
                        "AI analysis attached", rerun=True)

    engine = get_engine()
    linked = record.get("capaId")
    if linked:
        res = engine.capa.resolve(linked)
        st.caption(f"Linked CAPA: {linked.get('code')}" + ("" if res else " (record no longer exists)"))
    elif not repo.spec.machine.is_terminal(record.get("status")):
        options = [c["number"] for c in engine.capa.open_capas()]
        if options:
            c1, c2 = st.columns([3, 1], vertical_alignment="bottom")
            code = c1.selectbox("Link to open CAPA", options, key=f"link_{record['id']}")
            if c2.button("Link", key=f"link_btn_{record['id']}"):
                run_guarded(lambda: repo.link_capa(record["id"], code, user), f"Linked to {code}", rerun=True)


def display_deviations():
    display_records_page(get_engine().deviations, "Deviation Management", "🚨",
                         ["number", "date", "department", "severity", "status", "description"],
                         create_form=_deviation_form, detail=_deviation_detail)


# --- CAPA ---

def _capa_form(repo):
    user = current_user()
    engine = get_engine()
    source = st.selectbox("Source", capa.SOURCES, key="capa_source")
    source_repo = {"Deviation": engine.deviations, "Audit": engine.audits, "OOS": engine.oos}[source]
    codes = [""] + [r["number"] for r in source_repo.list()]
    with st.form("capa_form", clear_on_submit=True):
        source_ref = st.selectbox("Source record", codes, format_func=lambda c: c or "None")
        c1, c2, c3 = st.columns(3)
        capa_type = c1.selectbox("Type", capa.TYPES)
        owner = c2.text_input("Owner", value=user.full_name)
        due = c3.date_input("Due date", value=date.today() + timedelta(days=30))
        description = st.text_area("Action description", height=100)
        submitted = st.form_submit_button("Raise CAPA", type="primary")
    if submitted:
        payload = {"source": source, "sourceRef": source_ref or None, "type": capa_type, "owner": owner,
                   "dueDate": due.isoformat(), "description": description}
        run_guarded(lambda: repo.create(payload, user), "CAPA raised", rerun=True)


def display_capa():
    display_records_page(get_engine().capa, "CAPA Lifecycle", "⚡",
                         ["number", "source", "type", "owner", "dueDate", "status", "description"],
                         create_form=_capa_form)


# --- Audits ---

def _audit_form(repo):
    user = current_user()
    ai = get_ai_service()
    department = st.selectbox("Audit area", audits.AREAS, key="audit_area")
    if "audit_checklist_draft" not in st.session_state:
        st.session_state.audit_checklist_draft = []
    if ai is not None and st.button("🤖 Generate GMP checklist"):
        with st.spinner("Drafting checklist..."):
            items = ai.audit_checklist(department)
        if items is None:
            st.toast("Checklist generation unavailable; add items manually.", icon="⚠️")
        else:
            st.session_state.audit_checklist_draft = items
    with st.form("audit_item_form", clear_on_submit=True):
        c1, c2 = st.columns([3, 1])
        item = c1.text_input("Checklist item")
        ref = c2.text_input("Regulatory reference", placeholder="21 CFR 211.67")
        if st.form_submit_button("Add item") and item.strip():
            st.session_state.audit_checklist_draft.append({"checkItem": item.strip(), "regulatoryRef": ref})
    draft = st.session_state.audit_checklist_draft
    for i, it in enumerate(draft, 1):
        st.caption(f"{i}. {it.get('checkItem')} ({it.get('regulatoryRef') or 'no reference'})")
    if st.button("Schedule Audit", type="primary", disabled=not draft):
        payload = {"department": department, "checklist": draft}
        if run_guarded(lambda: repo.create(payload, user), "Audit scheduled"):
            st.session_state.audit_checklist_draft = []


def _audit_detail(repo, record):
    user = current_user()
    st.progress(repo.progress(record), text=f"Checklist {repo.progress(record):.0%} complete")
    locked = repo.spec.machine.is_terminal(record.get("status"))
    for i, item in enumerate(record.get("checklist") or []):
        checked = st.checkbox(f"{item.get('checkItem')} ({item.get('regulatoryRef')})", value=item.get("completed"),
                              key=f"chk_{record['id']}_{i}", disabled=locked)
        if checked != item.get("completed"):
            run_guarded(lambda i=i: repo.toggle_check_item(record["id"], i, user), rerun=True)


def display_audits():
    display_records_page(get_engine().audits, "Internal Audits", "🔍",
                         ["number", "date", "department", "auditor", "status"],
                         create_form=_audit_form, detail=_audit_detail)


# --- OOS ---

def _oos_form(repo):
    user = current_user()
    ai = get_ai_service()
    with st.form("oos_form", clear_on_submit=True):
        c1, c2, c3 = st.columns(3)
        test = c1.text_input("Test", placeholder="Assay (HPLC)")
        result = c2.text_input("Result", placeholder="94.2%")
        spec = c3.text_input("Specification", placeholder="95.0 - 105.0%")
        submitted = st.form_submit_button("Log OOS Result", type="primary")
    if ai is None:
        ai_unavailable_notice()
    if submitted:
        with st.spinner("Preparing Phase I investigation plan..."):
            run_guarded(lambda: repo.log_with_plan(test, result, spec, user, ai), "OOS result logged", rerun=True)


def _oos_detail(repo, record):
    plan = record.get("aiPlan")
    if plan:
        with st.expander("🤖 Phase I Investigation Plan", expanded=True):
            for key, value in plan.items():
                if isinstance(value, list):
                    st.markdown(f"**{key}**")
                    for v in value:
                        st.markdown(f"- {v}")
                else:
                    st.markdown(f"**{key}:** {value}")


def display_oos():
    display_records_page(get_engine().oos, "OOS Investigations", "🧪",
                         ["number", "date", "test", "result", "spec", "status"],
                         create_form=_oos_form, detail=_oos_detail)


# --- Recalls ---

def _recall_form(repo):
    user = current_user()
    with st.form("recall_form", clear_on_submit=True):
        c1, c2 = st.columns(2)
        recall_type = c1.selectbox("Recall type", recalls.RECALL_TYPES)
        batch = c2.text_input("Batch")
        reason = st.text_area("Reason for recall")
        submitted = st.form_submit_button("Initiate Recall", type="primary")
    if submitted:
        st.caption(f"Health hazard risk: {recalls.recall_risk(recall_type)}")
        run_guarded(lambda: repo.create({"type": recall_type, "batch": batch, "reason": reason}, user),
                    "Recall initiated", rerun=True)


def display_recalls():
    display_records_page(get_engine().recalls, "Recall Management", "📢",
                         ["number", "date", "type", "batch", "risk", "status"], create_form=_recall_form)


# --- Change control ---

def _change_form(repo):
    user = current_user()
    ai = get_ai_service()
    with st.form("change_form"):
        title = st.text_input("Change title")
        category = st.selectbox("Category", change_control.CATEGORIES)
        description = st.text_area("Description and justification", height=100)
        assess = st.checkbox("Run AI impact assessment", value=ai is not None, disabled=ai is None)
        submitted = st.form_submit_button("Log Change Request", type="primary")
    if submitted:
        impact = None
        if assess and ai is not None:
            with st.spinner("Assessing impact..."):
                impact = repo.assess_impact(title, description, ai)
            if impact is None:
                st.toast("Impact assessment unavailable; add tasks manually.", icon="⚠️")
        run_guarded(lambda: repo.create({"title": title, "category": category, "description": description},
                                        user, impact=impact), "Change request logged", rerun=True)


def _change_detail(repo, record):
    user = current_user()
    if record.get("impacts"):
        st.markdown("**Impacted areas:** " + ", ".join(record["impacts"]))
    st.markdown(f"**Priority:** {record.get('priority')} · **Risk score:** {record.get('riskScore', 'n/a')}")
    locked = repo.spec.machine.is_terminal(record.get("status"))
    for task in record.get("tasks") or []:
        c1, c2 = st.columns([4, 1])
        done = task.get("status") == "Completed"
        c1.markdown(f"{'✅' if done else '⬜'} {task.get('description')} · _{task.get('owner')}_")
        if not done and not locked and c2.button("Complete", key=f"task_{task['id']}"):
            run_guarded(lambda t=task: repo.complete_task(record["id"], t["id"], user), "Task completed",
                        rerun=True)
    if not locked:
        with st.form(f"task_form_{record['id']}", clear_on_submit=True):
            c1, c2 = st.columns([3, 1])
            description = c1.text_input("New task")
            owner = c2.text_input("Owner", value="TBD")
            if st.form_submit_button("Add task"):
                run_guarded(lambda: repo.add_task(record["id"], description, owner, user), "Task added",
                            rerun=True)


def display_change_control():
    display_records_page(get_engine().changes, "Change Control", "🔁",
                         ["number", "dateInitiated", "title", "category", "priority", "status"],
                         create_form=_change_form, detail=_change_detail)
