# pharmaqms/tabs/risk.py

import pandas as pd
import streamlit as st

from pharmaqms import fmea
from pharmaqms.session import current_user, get_ai_service, get_engine
from pharmaqms.tabs.components import ai_unavailable_notice, run_guarded
from pharmaqms.tabs.records import display_records_page

BAND_COLOURS = {"Critical": "#b91c1c", "High": "#ea580c", "Medium": "#ca8a04", "Low": "#15803d"}


def _score_inputs(prefix, defaults=None):
    defaults = defaults or {}
    c1, c2, c3 = st.columns(3)
    s = c1.number_input("Severity", 1, 10, int(defaults.get("severity") or 5), key=f"{prefix}_s")
    o = c2.number_input("Occurrence", 1, 10, int(defaults.get("occurrence") or 5), key=f"{prefix}_o")
    d = c3.number_input("Detection", 1, 10, int(defaults.get("detection") or 5), key=f"{prefix}_d",
                        help="1 = easily detected, 10 = undetectable")
    rpn = fmea.calculate_rpn(s, o, d)
    st.caption(f"RPN = {s} × {o} × {d} = **{rpn}** · residual risk **{fmea.residual_risk_class(rpn)}**")
    return int(s), int(o), int(d)


def _risk_form(repo):
    user = current_user()
    ai = get_ai_service()
    st.markdown("##### Identify Hazard")
    c1, c2 = st.columns(2)
    process_step = c1.text_input("Process step", key="risk_step", placeholder="Granulation")
    hazard = c2.text_input("Hazard / failure mode", key="risk_hazard")

    if ai is None:
        ai_unavailable_notice()
    else:
        b1, b2 = st.columns(2)
        if b1.button("🤖 Scout hazards for this step", disabled=not process_step, width="stretch"):
            with st.spinner("AI is brainstorming hazards..."):
                st.session_state.risk_hazards = ai.hazard_scout(process_step)
            if st.session_state.risk_hazards is None:
                st.toast("Hazard scouting unavailable.", icon="⚠️")
        if b2.button("🤖 Suggest FMEA scores", disabled=not (process_step and hazard), width="stretch"):
            with st.spinner("AI is scoring..."):
                st.session_state.risk_ai_scores = repo.ai_score(process_step, hazard, ai)
            if st.session_state.risk_ai_scores is None:
                st.toast("FMEA scoring unavailable; score manually.", icon="⚠️")
        for h in st.session_state.get("risk_hazards") or []:
            st.caption(f"• {h.get('hazard')}: {h.get('potentialEffect', '')}")

    suggested = st.session_state.get("risk_ai_scores") or {}
    s, o, d = _score_inputs("new", suggested)
    mitigation = st.text_area("Mitigation / control strategy", value=suggested.get("mitigation", ""))
    if st.button("Register Risk", type="primary"):
        payload = {"processStep": process_step, "hazard": hazard, "severity": s, "occurrence": o,
                   "detection": d, "mitigation": mitigation,
                   "potentialEffect": suggested.get("potentialEffect", "")}
        if run_guarded(lambda: repo.create(payload, user), "Risk registered"):
            st.session_state.risk_ai_scores = None


def _risk_detail(repo, record):
    user = current_user()
    colour = BAND_COLOURS.get(record.get("residualRisk"), "#334155")
    st.markdown(f"<span style='color:{colour};font-weight:700'>RPN {record.get('rpn')} · "
                f"{record.get('residualRisk')}</span>", unsafe_allow_html=True)

    if record.get("status") != "Closed":
        with st.expander("🔁 Re-assess"):
            s, o, d = _score_inputs(f"re_{record['id']}", record)
            mitigation = st.text_area("Updated mitigation", value=record.get("mitigation", ""),
                                      key=f"re_m_{record['id']}")
            reason = st.text_input("Reason for re-assessment", key=f"re_r_{record['id']}")
            if st.button("Save re-assessment", key=f"re_btn_{record['id']}"):
                run_guarded(lambda: repo.reassess(record["id"], s, o, d, user, mitigation=mitigation,
                                                  reason=reason or None, expected_version=record.get("version")),
                            "Risk re-assessed", rerun=True)

    history = record.get("history") or []
    if history:
        st.markdown("##### Assessment History")
        st.dataframe(pd.DataFrame(history, columns=list(fmea.HISTORY_FIELDS)), hide_index=True, width="stretch")
        if record.get("status") != "Closed":
            c1, c2 = st.columns([3, 1], vertical_alignment="bottom")
            index = c1.selectbox("Restore assessment", range(len(history)),
                                 format_func=lambda i: f"#{i + 1} · {history[i].get('date')} · RPN {history[i].get('rpn')}",
                                 key=f"rev_{record['id']}")
            if c2.button("Revert", key=f"rev_btn_{record['id']}"):
                run_guarded(lambda: repo.revert(record["id"], index, user, expected_version=record.get("version")),
                            "Assessment restored", rerun=True)


def display_risk_register():
    engine = get_engine()
    display_records_page(engine.risk, "Risk Register (ICH Q9)", "⚠️",
                         ["number", "processStep", "hazard", "severity", "occurrence", "detection", "rpn",
                          "residualRisk", "status"],
                         create_form=_risk_form, detail=_risk_detail)
