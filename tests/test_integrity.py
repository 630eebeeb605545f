import json
import threading
from datetime import datetime
from types import SimpleNamespace

import pytest

from pharmaqms.audit_logger import AUDIT_STORAGE_KEY, AuditLogger
from pharmaqms.config import AppConfig
from pharmaqms.engine import QMSEngine
from pharmaqms.errors import ErrorKind, StorageFailure
from pharmaqms.signature import SignatureMeaning
from pharmaqms.storage import FileStore, MemoryStore, load_collection

PASSWORD = "s3cret"
DESCRIPTION = "Temperature excursion in stability chamber 2 for six hours"
TEMPLATE = {
    "batchSize": "10,000 Tabs",
    "ingredients": [{"materialName": "Ibuprofen", "quantity": "4", "unit": "kg"}],
    "steps": [{"operation": "Granulation", "instruction": "Wet mass 10 min", "category": "Processing"}],
}


@pytest.fixture
def bmr(engine, admin, sign):
    ai = SimpleNamespace(mfr_template=lambda product, form: TEMPLATE)
    mfr = engine.mfr.draft_from_template("Ibuprofen", "Tablet", admin, ai).value
    engine.mfr.approve(mfr["id"], admin, sign(admin))
    return engine.bmr.issue_bmr(mfr["id"], "IBU-001", admin, sign(admin, SignatureMeaning.TECHNICAL_RELEASE)).value


def _deviation(engine, user):
    return engine.deviations.log("Production", DESCRIPTION, "Medium", user).value


# --- workflow-owned fields ---

def test_batch_execution_fields_cannot_be_patched(engine, bmr, analyst, sign):
    forged = [dict(s, signOffBy="x", checkedBy="y") for s in bmr["steps"]]
    res = engine.bmr.update(bmr["id"], {"steps": forged, "lineClearance": {"status": True}}, analyst)
    assert res.error == ErrorKind.VALIDATION
    assert "lineClearance, steps" in res.message

    engine.bmr.transition(bmr["id"], "start", analyst)
    blocked = engine.bmr.transition(bmr["id"], "complete", analyst,
                                    signature=sign(analyst, SignatureMeaning.VERIFICATION))
    assert blocked.error == ErrorKind.INVALID_TRANSITION
    assert engine.bmr.find(bmr["id"])["lineClearance"] == {"status": False}


def test_transition_changes_cannot_carry_workflow_fields(engine, bmr, analyst):
    res = engine.bmr.transition(bmr["id"], "start", analyst, changes={"lineClearance": {"status": True}})
    assert res.error == ErrorKind.VALIDATION
    assert engine.bmr.find(bmr["id"])["status"] == "Issued"


def test_batch_records_are_only_issued_from_a_master(engine, store, analyst):
    res = engine.bmr.create({"batchNumber": "FREE-1", "productName": "Ibuprofen", "steps": []}, analyst)
    assert res.error == ErrorKind.INVALID_TRANSITION
    assert engine.bmr.list() == []
    assert load_collection(store, AUDIT_STORAGE_KEY) == []


def test_released_certificate_is_locked(engine, analyst, sign):
    coa = engine.coa.draft_from_monograph("Aspirin", "AS-2", "Raw Material", analyst, ai=None).value
    assert engine.coa.update(coa["id"], {"specs": []}, analyst).error == ErrorKind.VALIDATION
    assert engine.coa.update(coa["id"], {"remarks": "Supplier CoA attached"}, analyst).ok

    engine.coa.update_result(coa["id"], 0, analyst, "Complies", "pass")
    released = engine.coa.release(coa["id"], analyst, sign(analyst, SignatureMeaning.TECHNICAL_RELEASE)).value
    assert released["status"] == "Released"
    res = engine.coa.update(coa["id"], {"batchNumber": "AS-3"}, analyst)
    assert res.error == ErrorKind.INVALID_TRANSITION
    assert engine.coa.find(coa["id"])["batchNumber"] == "AS-2"


def test_scores_and_stock_change_only_through_their_operations(engine, analyst):
    risk = engine.risk.create({"processStep": "Blending", "hazard": "Segregation", "mitigation": "Blend time",
                               "severity": 8, "occurrence": 5, "detection": 4}, analyst).value
    assert engine.risk.update(risk["id"], {"rpn": 1, "residualRisk": "Low"}, analyst).error == ErrorKind.VALIDATION
    assert engine.risk.find(risk["id"])["rpn"] == 160

    material = engine.inventory.create({"name": "Lactose", "lotNumber": "L-1", "manufacturerName": "DFE",
                                        "category": "Excipient", "stock": 50}, analyst).value
    assert engine.inventory.update(material["id"], {"stock": 5000}, analyst).error == ErrorKind.VALIDATION
    assert engine.inventory.find(material["id"])["stock"] == 50.0

    deviation = _deviation(engine, analyst)
    assert engine.deviations.update(deviation["id"], {"capaId": "CAPA-X"}, analyst).error == ErrorKind.VALIDATION


def test_stability_start_date_must_be_a_date(engine, analyst):
    res = engine.stability.create({"product": "Paracetamol 500", "batchNumber": "B2",
                                   "startDate": "next monday"}, analyst)
    assert res.error == ErrorKind.VALIDATION
    assert "next monday" in res.message
    assert engine.stability.list() == []


# --- refusals leave the store untouched ---

def test_unauthorized_transition_writes_nothing(engine, store, analyst, sign):
    record = _deviation(engine, analyst)
    before = dict(store._data)
    assert engine.deviations.transition(record["id"], "approve", analyst,
                                        signature=sign(analyst)).error == ErrorKind.UNAUTHORIZED
    assert dict(store._data) == before


def test_unsigned_transition_writes_nothing(engine, store, admin, analyst):
    record = _deviation(engine, analyst)
    before = dict(store._data)
    assert engine.deviations.transition(record["id"], "approve", admin).error == ErrorKind.SIGNATURE_REQUIRED
    assert dict(store._data) == before


def test_cancelled_gate_writes_nothing(engine, store, admin, analyst):
    record = _deviation(engine, analyst)
    before = dict(store._data)
    gate = engine.signature_gate("Approve deviation", admin, SignatureMeaning.APPROVAL)
    outcome = gate.cancel()
    res = engine.deviations.transition(record["id"], "approve", admin, signature=outcome)
    assert res.error == ErrorKind.SIGNATURE_REQUIRED
    assert dict(store._data) == before


def test_wrong_credential_writes_nothing(engine, store, admin, analyst):
    record = _deviation(engine, analyst)
    before = dict(store._data)
    gate = engine.signature_gate("Approve deviation", admin, SignatureMeaning.APPROVAL)
    assert gate.submit(PASSWORD + "x", reason="Reviewed").error == ErrorKind.CREDENTIAL_MISMATCH
    assert gate.is_open
    assert dict(store._data) == before
    assert engine.deviations.find(record["id"])["status"] == "Pending"


# --- unreadable stored data ---

def test_corrupt_ledger_is_never_overwritten(engine, store, analyst):
    _deviation(engine, analyst)
    truncated = store.get(AUDIT_STORAGE_KEY)[:-7]
    store.set(AUDIT_STORAGE_KEY, truncated)
    records = store.get(engine.deviations.spec.storage_key)

    with pytest.raises(StorageFailure):
        engine.deviations.log("Warehouse", DESCRIPTION, "Low", analyst)
    assert store.get(AUDIT_STORAGE_KEY) == truncated
    assert store.get(engine.deviations.spec.storage_key) == records


def test_corrupt_collection_is_never_overwritten(engine, store, analyst):
    record = _deviation(engine, analyst)
    key = engine.deviations.spec.storage_key
    store.set(key, '{"not": "a list"}')

    with pytest.raises(StorageFailure):
        engine.deviations.log("Warehouse", DESCRIPTION, "Low", analyst)
    with pytest.raises(StorageFailure):
        engine.deviations.transition(record["id"], "start", analyst)
    assert store.get(key) == '{"not": "a list"}'
    assert engine.deviations.list() == []


# --- shared stores ---

def test_stores_over_the_same_data_share_key_locks(tmp_path):
    first, second = FileStore(str(tmp_path)), FileStore(str(tmp_path / "."))
    assert first.lock("pharma_capa_v4") is second.lock("pharma_capa_v4")
    assert first.lock("pharma_capa_v4") is not first.lock(AUDIT_STORAGE_KEY)
    one, other = MemoryStore(), MemoryStore()
    assert one.lock("k") is not other.lock("k")
    with first.lock("pharma_capa_v4"):
        with second.lock("pharma_capa_v4"):
            pass


def test_concurrent_sessions_lose_no_records(admin, analyst):
    store = MemoryStore()
    config = AppConfig(users=[admin, analyst])
    sessions = [QMSEngine.with_passwords(store, config, default_password=PASSWORD) for _ in range(4)]

    def work(engine, n):
        for i in range(10):
            engine.recalls.create({"type": "Mock", "batch": f"S{n}-{i}"}, analyst)

    threads = [threading.Thread(target=work, args=(e, n)) for n, e in enumerate(sessions)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(sessions[0].recalls.list()) == 40
    assert len(load_collection(store, AUDIT_STORAGE_KEY)) == 40


def test_concurrent_audit_appends_are_all_kept():
    store = MemoryStore()
    loggers = [AuditLogger(store) for _ in range(4)]

    def work(audit, n):
        for i in range(25):
            audit.log_action("analyst", "Viewed", "Recalls", f"{n}-{i}")

    threads = [threading.Thread(target=work, args=(a, n)) for n, a in enumerate(loggers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(loggers[0].query()) == 100


def test_second_session_with_stale_copy_gets_conflict(admin, analyst):
    store = MemoryStore()
    config = AppConfig(users=[admin, analyst])
    mine, theirs = (QMSEngine.with_passwords(store, config, default_password=PASSWORD) for _ in range(2))
    record = _deviation(mine, analyst)
    theirs.deviations.update(record["id"], {"department": "Warehouse"}, analyst, expected_version=1)
    res = mine.deviations.update(record["id"], {"department": "QC"}, analyst, expected_version=1)
    assert res.error == ErrorKind.CONFLICT
    assert mine.deviations.find(record["id"])["department"] == "Warehouse"


# --- archive ---

def test_export_is_stamped_with_configured_version_in_utc(engine, admin):
    document = json.loads(engine.export_archive(admin))
    assert document["app_version"] == engine.config.version
    assert datetime.fromisoformat(document["export_date"]).utcoffset().total_seconds() == 0
