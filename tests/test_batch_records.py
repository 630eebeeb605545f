from types import SimpleNamespace

import pytest

from pharmaqms.errors import ErrorKind
from pharmaqms.signature import SignatureMeaning

TEMPLATE = {
    "batchSize": "50,000 Tabs",
    "ingredients": [{"materialName": "Paracetamol", "quantity": "25", "unit": "kg"}],
    "steps": [{"operation": "Dispensing", "instruction": "Weigh per BOM", "category": "Preparation"},
              {"operation": "Compression", "instruction": "Target 500 mg", "limit": "475-525 mg",
               "category": "Unknown"}],
}


@pytest.fixture
def effective_mfr(engine, admin, sign):
    ai = SimpleNamespace(mfr_template=lambda product, form: TEMPLATE)
    mfr = engine.mfr.draft_from_template("Paracetamol", "Tablet", admin, ai).value
    return engine.mfr.approve(mfr["id"], admin, sign(admin)).value


@pytest.fixture
def bmr(engine, admin, sign, effective_mfr):
    return engine.bmr.issue_bmr(effective_mfr["id"], "PCM-001", admin,
                                sign(admin, SignatureMeaning.TECHNICAL_RELEASE)).value


def test_mfr_drafted_from_template(engine, admin):
    ai = SimpleNamespace(mfr_template=lambda product, form: TEMPLATE)
    mfr = engine.mfr.draft_from_template("Paracetamol", "Tablet", admin, ai).value
    assert mfr["number"] == "PD/PAR-MFR/01"
    assert mfr["revision"] == "R01"
    assert mfr["batchSize"] == "50,000 Tabs"
    assert [s["id"] for s in mfr["steps"]] == ["s-0", "s-1"]
    assert mfr["steps"][1]["category"] == "Processing"
    assert [s["id"] for s in mfr["packagingSteps"]] == ["p1", "p2"]
    assert mfr["ingredients"][0]["theoreticalQty"] == "25"


def test_mfr_without_template_needs_manual_entry_before_approval(engine, admin, sign):
    res = engine.mfr.draft_from_template("Ibuprofen", "Tablet", admin, ai=None)
    assert any("manually" in m for m in res.messages)
    blocked = engine.mfr.approve(res.value["id"], admin, sign(admin))
    assert blocked.error == ErrorKind.INVALID_TRANSITION


def test_mfr_approval_records_approver(effective_mfr, admin):
    assert effective_mfr["status"] == "Effective"
    assert "effectiveDate" in effective_mfr
    assert effective_mfr["approvals"] == [{"name": admin.full_name, "designation": "admin",
                                           "meaning": "Approval"}]


def test_only_effective_mfr_issues_batches(engine, admin, analyst, sign):
    draft = engine.mfr.draft_from_template("Ibuprofen", "Tablet", admin, ai=None).value
    sig = sign(admin, SignatureMeaning.TECHNICAL_RELEASE)
    assert engine.bmr.issue_bmr(draft["id"], "IB-1", admin, sig).error == ErrorKind.INVALID_TRANSITION
    assert engine.bmr.issue_bmr("mfr-missing", "IB-1", admin, sig).error == ErrorKind.NOT_FOUND
    assert engine.bmr.issue_bmr(draft["id"], "IB-1", admin, None).error == ErrorKind.SIGNATURE_REQUIRED
    assert engine.bmr.issue_bmr(draft["id"], " ", admin, sig).error == ErrorKind.VALIDATION


def test_issued_bmr_copies_master(bmr, effective_mfr, engine, admin, sign):
    assert bmr["number"] == "PCM-001"
    assert bmr["status"] == "Issued"
    assert bmr["mfrNumber"] == effective_mfr["number"]
    assert [s["id"] for s in bmr["steps"]] == ["s-0", "s-1"]
    assert bmr["lineClearance"] == {"status": False}
    assert bmr["issuance"]["meaning"] == "Technical Release"
    duplicate = engine.bmr.issue_bmr(effective_mfr["id"], "PCM-001", admin,
                                     sign(admin, SignatureMeaning.TECHNICAL_RELEASE))
    assert duplicate.error == ErrorKind.VALIDATION


def test_steps_need_in_progress_and_sign_before_verify(engine, bmr, analyst, sign):
    sig = sign(analyst, SignatureMeaning.AUTHORSHIP)
    assert engine.bmr.sign_step(bmr["id"], "s-0", analyst, sig).error == ErrorKind.INVALID_TRANSITION
    engine.bmr.transition(bmr["id"], "start", analyst)

    assert engine.bmr.sign_step(bmr["id"], "s-0", analyst, None).error == ErrorKind.SIGNATURE_REQUIRED
    verify = sign(analyst, SignatureMeaning.VERIFICATION)
    assert engine.bmr.verify_step(bmr["id"], "s-0", analyst, verify).error == ErrorKind.INVALID_TRANSITION
    assert engine.bmr.sign_step(bmr["id"], "zz", analyst, sig).error == ErrorKind.NOT_FOUND

    signed = engine.bmr.sign_step(bmr["id"], "s-0", analyst, sig).value
    assert signed["steps"][0]["signOffBy"] == analyst.full_name
    assert engine.bmr.sign_step(bmr["id"], "s-0", analyst, sig).error == ErrorKind.INVALID_TRANSITION
    verified = engine.bmr.verify_step(bmr["id"], "s-0", analyst, verify).value
    assert verified["steps"][0]["checkedBy"] == analyst.full_name
    assert engine.audit.query()[0].action == "STEP_VERIFIED"


def test_batch_completion_and_release(engine, bmr, analyst, admin, sign):
    engine.bmr.transition(bmr["id"], "start", analyst)
    incomplete = engine.bmr.transition(bmr["id"], "complete", analyst,
                                       signature=sign(analyst, SignatureMeaning.VERIFICATION))
    assert incomplete.error == ErrorKind.INVALID_TRANSITION
    assert "Line clearance not recorded" in incomplete.message

    engine.bmr.line_clearance(bmr["id"], analyst, sign(analyst, SignatureMeaning.LINE_CLEARANCE))
    assert engine.bmr.line_clearance(bmr["id"], analyst, sign(analyst, SignatureMeaning.LINE_CLEARANCE)).error == \
        ErrorKind.INVALID_TRANSITION
    record = engine.bmr.find(bmr["id"])
    for step in record["steps"] + record["packagingSteps"]:
        engine.bmr.sign_step(bmr["id"], step["id"], analyst, sign(analyst, SignatureMeaning.AUTHORSHIP))
        engine.bmr.verify_step(bmr["id"], step["id"], analyst, sign(analyst, SignatureMeaning.VERIFICATION))
    record = engine.bmr.find(bmr["id"])
    assert engine.bmr.outstanding(record) == []
    assert engine.bmr.progress(record) == 1.0

    completed = engine.bmr.transition(bmr["id"], "complete", analyst,
                                      signature=sign(analyst, SignatureMeaning.VERIFICATION)).value
    assert completed["status"] == "Completed"
    assert engine.bmr.transition(bmr["id"], "release", analyst,
                                 signature=sign(analyst)).error == ErrorKind.UNAUTHORIZED
    released = engine.bmr.transition(bmr["id"], "release", admin,
                                     signature=sign(admin, SignatureMeaning.TECHNICAL_RELEASE)).value
    assert released["status"] == "Released"
    assert "releaseDate" in released
