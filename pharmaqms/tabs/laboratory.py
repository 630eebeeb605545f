# pharmaqms/tabs/laboratory.py

"""Laboratory and materials pages: stability, inventory, LIMS and certificates of analysis."""

from datetime import date

import streamlit as st

from pharmaqms.modules import coa, inventory, lims, stability
from pharmaqms.session import current_user, get_ai_service, get_engine
from pharmaqms.tabs.components import ai_unavailable_notice, run_guarded
from pharmaqms.tabs.records import display_records_page


# --- Stability ---

def _stability_form(repo):
    user = current_user()
    with st.form("stability_form", clear_on_submit=True):
        c1, c2 = st.columns(2)
        product = c1.text_input("Product")
        batch = c2.text_input("Batch number")
        c3, c4 = st.columns(2)
        condition = c3.text_input("Storage condition", value=stability.DEFAULT_CONDITION)
        start = c4.date_input("Start date", value=date.today())
        intervals = st.multiselect("Pull intervals", ["Initial", "1M", "3M", "6M", "9M", "12M", "18M", "24M", "36M"],
                                   default=list(stability.DEFAULT_INTERVALS))
        submitted = st.form_submit_button("Initiate Study", type="primary")
    if submitted:
        payload = {"product": product, "batchNumber": batch, "condition": condition,
                   "startDate": start.isoformat(), "intervals": intervals}
        run_guarded(lambda: repo.create(payload, user), "Stability protocol initiated", rerun=True)


def _stability_detail(repo, record):
    user = current_user()
    pending = repo.pending_intervals(record)
    st.markdown(f"**Next time point:** {record.get('nextTimePoint')}")
    st.caption("Completed: " + (", ".join(record.get("completedIntervals") or []) or "none"))
    if pending and record.get("status") == "Ongoing":
        with st.form(f"tp_{record['id']}", clear_on_submit=True):
            observation = st.text_input(f"Observation for {pending[0]} pull")
            if st.form_submit_button(f"Record {pending[0]} analysis"):
                run_guarded(lambda: repo.record_time_point(record["id"], user, observation),
                            f"{pending[0]} time point recorded", rerun=True)


def display_stability():
    display_records_page(get_engine().stability, "Stability Studies", "🌡️",
                         ["number", "product", "batchNumber", "condition", "startDate", "nextTimePoint", "status"],
                         create_form=_stability_form, detail=_stability_detail)


# --- Inventory ---

def _inventory_form(repo):
    user = current_user()
    with st.form("material_form", clear_on_submit=True):
        c1, c2, c3 = st.columns(3)
        name = c1.text_input("Material name")
        lot = c2.text_input("Lot number")
        manufacturer = c3.text_input("Manufacturer")
        c4, c5, c6, c7 = st.columns(4)
        category = c4.selectbox("Category", inventory.CATEGORIES)
        stock = c5.number_input("Quantity received", min_value=0.0, step=1.0)
        unit = c6.selectbox("Unit", ["kg", "g", "L", "Nos"])
        reorder = c7.number_input("Reorder level", min_value=0.0, step=1.0)
        expiry = st.date_input("Expiry date", value=None)
        submitted = st.form_submit_button("Receive into Quarantine", type="primary")
    if submitted:
        payload = {"name": name, "lotNumber": lot, "manufacturerName": manufacturer, "category": category,
                   "stock": stock, "unit": unit, "reorderLevel": reorder,
                   "expiryDate": expiry.isoformat() if expiry else None}
        run_guarded(lambda: repo.create(payload, user), "Material received", rerun=True)


def _inventory_detail(repo, record):
    user = current_user()
    st.metric("Stock", f"{record.get('stock')} {record.get('unit')}")
    if repo.spec.machine.is_terminal(record.get("status")):
        return
    with st.form(f"stock_{record['id']}", clear_on_submit=True):
        c1, c2 = st.columns([1, 3])
        delta = c1.number_input("Adjustment (+ receive / - issue)", step=1.0)
        reason = c2.text_input("Reason")
        if st.form_submit_button("Adjust stock"):
            run_guarded(lambda: repo.adjust_stock(record["id"], delta, user, reason), "Stock adjusted", rerun=True)


def display_inventory():
    engine = get_engine()
    expired = engine.inventory.expired_items()
    if expired:
        st.warning(f"{len(expired)} material lot(s) are past their expiry date and should be expired.")
    display_records_page(engine.inventory, "Materials & Inventory", "📦",
                         ["number", "name", "lotNumber", "manufacturerName", "stock", "unit", "status"],
                         create_form=_inventory_form, detail=_inventory_detail)


# --- LIMS ---

def _sample_form(repo):
    user = current_user()
    with st.form("sample_form", clear_on_submit=True):
        c1, c2, c3 = st.columns(3)
        product = c1.text_input("Product")
        batch = c2.text_input("Batch no.")
        sample_type = c3.selectbox("Sample type", lims.SAMPLE_TYPES)
        analyst = st.text_input("Analyst", placeholder="Leave blank to assign later")
        submitted = st.form_submit_button("Log Sample", type="primary")
    if submitted:
        payload = {"productName": product, "batchNo": batch, "type": sample_type, "analyst": analyst}
        run_guarded(lambda: repo.create(payload, user), "Sample logged", rerun=True)


def _sample_detail(repo, record):
    user = current_user()
    if record.get("analyst") == lims.UNASSIGNED and not repo.spec.machine.is_terminal(record.get("status")):
        c1, c2 = st.columns([3, 1], vertical_alignment="bottom")
        analyst = c1.text_input("Assign analyst", key=f"an_{record['id']}")
        if c2.button("Assign", key=f"an_btn_{record['id']}"):
            run_guarded(lambda: repo.assign_analyst(record["id"], analyst, user), "Analyst assigned", rerun=True)


def display_lims():
    display_records_page(get_engine().lims, "LIMS Sample Management", "🔬",
                         ["number", "dateLogged", "productName", "batchNo", "type", "analyst", "status"],
                         create_form=_sample_form, detail=_sample_detail)


# --- COA ---

def _coa_form(repo):
    user = current_user()
    ai = get_ai_service()
    with st.form("coa_form"):
        c1, c2, c3 = st.columns(3)
        product = c1.text_input("Product")
        batch = c2.text_input("Batch number")
        category = c3.selectbox("COA type", coa.COA_TYPES)
        c4, c5 = st.columns(2)
        dosage_form = c4.text_input("Dosage form", value="Tablet")
        batch_size = c5.text_input("Batch size")
        submitted = st.form_submit_button("Draft from Monograph", type="primary")
    if ai is None:
        ai_unavailable_notice()
    if submitted:
        with st.spinner("Looking up pharmacopoeial tests..."):
            run_guarded(lambda: repo.draft_from_monograph(product, batch, category, user, ai,
                                                          dosageForm=dosage_form, batchSize=batch_size),
                        "COA drafted", rerun=True)


def _coa_detail(repo, record):
    user = current_user()
    statement = repo.compliance(record)
    (st.success if statement == "COMPLYING" else st.warning)(f"Compliance statement: {statement}")
    editable = record.get("status") == "Draft"
    for i, line in enumerate(record.get("specs") or []):
        c1, c2, c3, c4 = st.columns([3, 3, 2, 2], vertical_alignment="bottom")
        c1.markdown(f"**{line.get('t')}**  \n<small>{line.get('category')}</small>", unsafe_allow_html=True)
        c2.caption(line.get("s"))
        if editable:
            result = c3.text_input("Result", value=line.get("r"), key=f"r_{record['id']}_{i}",
                                   label_visibility="collapsed")
            status = c4.selectbox("Status", coa.LINE_STATUSES, index=coa.LINE_STATUSES.index(line.get("status")),
                                  key=f"s_{record['id']}_{i}", label_visibility="collapsed")
            if result != line.get("r") or status != line.get("status"):
                run_guarded(lambda i=i, r=result, s=status: repo.update_result(record["id"], i, user, r, s),
                            rerun=True)
        else:
            c3.write(line.get("r"))
            c4.write(line.get("status"))


def _coa_handlers(repo, record):
    user = current_user()
    return {"release": lambda signature: repo.release(record["id"], user, signature,
                                                      expected_version=record.get("version"))}


def display_coa():
    display_records_page(get_engine().coa, "Certificates of Analysis", "📜",
                         ["number", "productName", "batchNumber", "category", "status", "releaseDate"],
                         create_form=_coa_form, detail=_coa_detail, handlers=_coa_handlers)
