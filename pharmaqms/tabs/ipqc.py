# pharmaqms/tabs/ipqc.py

import streamlit as st

from pharmaqms import ipqc
from pharmaqms.session import current_user, get_ai_service, get_engine
from pharmaqms.tabs.components import ai_unavailable_notice, render_signature_form, run_guarded

DEFAULT_TESTS = {
    "Effervescence Time": (0.0, 180.0),
    "CO2 Evolution": (10.0, 15.0),
    "Loss on Drying (Moisture)": (0.0, 0.5),
    "pH (Reconstituted)": (5.0, 7.0),
    "Particle Size distribution": (100.0, 400.0),
    "Uniformity of Mass": (95.0, 105.0),
    "Average Weight": (95.0, 105.0),
    "Hardness": (40.0, 80.0),
    "Disintegration": (0.0, 15.0),
}
STAGES = ("Granulation", "Blending", "Compression", "Coating", "Filling", "Packaging")
VERDICT_ICONS = {"PASS": "✅", "MARGINAL": "⚠️", "FAIL": "❌"}


def _monograph_lookup():
    ai = get_ai_service()
    if ai is None:
        ai_unavailable_notice()
        return
    with st.expander("🤖 Pharmacopoeial IPQC plan"):
        c1, c2, c3 = st.columns([2, 2, 1], vertical_alignment="bottom")
        product = c1.text_input("Product", key="ipqc_mono_product")
        form = c2.text_input("Dosage form", value="Tablet", key="ipqc_mono_form")
        if c3.button("Look up", disabled=not product):
            with st.spinner("Consulting monographs..."):
                st.session_state.ipqc_monograph = ai.ipqc_monograph(product, form)
            if st.session_state.ipqc_monograph is None:
                st.toast("Monograph lookup unavailable; use the default test limits.", icon="⚠️")
        plan = st.session_state.get("ipqc_monograph")
        if plan:
            st.caption(f"{plan.get('pharmacopoeiaRef')} · sampling: {plan.get('samplingPlan')}")
            st.dataframe(plan.get("tests") or [], hide_index=True, width="stretch")


def _log_form(ledger):
    user = current_user()
    test_names = list(DEFAULT_TESTS)
    with st.container(border=True):
        st.subheader("Record In-Process Test")
        c1, c2, c3 = st.columns(3)
        batch = c1.text_input("Batch number", key="ipqc_batch")
        product = c2.text_input("Product", key="ipqc_product")
        stage = c3.selectbox("Production stage", STAGES, index=2, key="ipqc_stage")
        c4, c5, c6 = st.columns(3)
        test = c4.selectbox("Test", test_names, key="ipqc_test")
        default_lsl, default_usl = DEFAULT_TESTS[test]
        lsl = c5.number_input("LSL", value=default_lsl, key=f"ipqc_lsl_{test}")
        usl = c6.number_input("USL", value=default_usl, key=f"ipqc_usl_{test}")
        raw = st.text_input("Readings (comma separated)", key="ipqc_readings", placeholder="101.2, 99.8, 100.4")

        readings = ipqc.parse_readings(raw.replace(";", ",").split(","))
        preview = ipqc.process_stats(readings, lsl, usl) if lsl < usl else None
        if preview:
            m1, m2, m3, m4 = st.columns(4)
            m1.metric("Mean", f"{preview.mean:.3f}")
            m2.metric("SD", f"{preview.sd:.4f}")
            m3.metric("Cpk", f"{preview.cpk:.2f}")
            m4.metric("Verdict", f"{VERDICT_ICONS[preview.verdict]} {preview.verdict}")
        else:
            st.caption(f"Enter at least {ipqc.MIN_READINGS} numeric readings.")

        if st.button("Commit to Ledger", type="primary"):
            payload = {"batchNumber": batch, "productName": product, "productionStage": stage, "testName": test}
            run_guarded(lambda: ledger.log_test(payload, readings, lsl, usl, user), "IPQC result committed",
                        rerun=True)


def _pharmacopoeial_checks():
    with st.expander("⚖️ Uniformity of Weight & Friability"):
        c1, c2 = st.columns(2)
        with c1:
            target = st.number_input("Target average weight (mg)", min_value=0.0, value=500.0)
            raw = st.text_area("Unit weights (mg, comma separated)", height=80)
            weights = ipqc.parse_readings(raw.replace("\n", ",").split(","))
            result = ipqc.weight_variation(weights, target)
            if result:
                st.markdown(f"{VERDICT_ICONS[result['verdict']]} **{result['verdict']}** · "
                            f">5%: {result['outside5']} · >10%: {result['outside10']} · >20%: {result['outside20']}")
        with c2:
            initial = st.number_input("Initial mass (g)", min_value=0.0, value=6.5)
            final = st.number_input("Mass after tumbling (g)", min_value=0.0, value=6.47)
            if initial > 0:
                fr = ipqc.friability(initial, final)
                st.markdown(f"{VERDICT_ICONS[fr['verdict']]} Loss **{fr['loss']:.2f}%** ({fr['verdict']})")


def display_ipqc():
    engine = get_engine()
    ledger = engine.ipqc
    st.title("🏭 In-Process Quality Control")
    render_signature_form()
    _monograph_lookup()
    _log_form(ledger)
    _pharmacopoeial_checks()

    st.subheader("Batch Ledger")
    batches = sorted({e.get("batchNumber") for e in ledger.list() if e.get("batchNumber")})
    if not batches:
        st.info("No IPQC results recorded yet.")
        return
    batch = st.selectbox("Batch", batches)
    summary = ledger.batch_summary(batch)
    (st.success if summary["statement"] == "COMPLYING" else st.warning)(
        f"Batch {batch}: {summary['statement']} · {summary['tests']} tests, "
        f"{summary['failed']} failed, {summary['marginal']} marginal")
    st.dataframe(ledger.to_dataframe(ledger.batch_entries(batch),
                                     ["number", "createdAt", "productionStage", "testName", "mean", "sd", "cpk",
                                      "verdict", "createdBy"]),
                 hide_index=True, width="stretch")
