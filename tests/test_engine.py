from pharmaqms.errors import ErrorKind
from pharmaqms.signature import SignatureMeaning


def test_login_directory(engine):
    assert engine.users.authenticate("admin", "s3cret").is_admin
    assert engine.users.authenticate("admin", "wrong") is None
    assert engine.users.authenticate("ghost", "s3cret") is None


def test_signature_gate_is_opened_with_meaning(engine, admin):
    gate = engine.signature_gate("Release lot", admin, SignatureMeaning.TECHNICAL_RELEASE)
    assert gate.is_open
    assert gate.meaning == SignatureMeaning.TECHNICAL_RELEASE
    assert gate.submit("wrong").error == ErrorKind.CREDENTIAL_MISMATCH


def test_repositories_share_one_audit_trail(engine, analyst):
    engine.recalls.create({"type": "Mock", "batch": "B1"}, analyst)
    engine.lims.create({"productName": "P", "batchNo": "B1", "type": "Stability"}, analyst)
    assert {e.module for e in engine.audit.query()} == {"Recalls", "LIMS"}
    assert len(engine.repositories) == 14


def test_dashboard_summary_and_open_items(engine, analyst, admin, sign):
    recall = engine.recalls.create({"type": "Mock", "batch": "B1"}, analyst).value
    engine.recalls.create({"type": "Mock", "batch": "B2"}, analyst)
    engine.recalls.transition(recall["id"], "close", admin, signature=sign(admin))
    engine.ipqc.log_test({"batchNumber": "B1", "productName": "P", "testName": "pH"}, [6, 6, 6], 5, 7, analyst)

    summary = engine.dashboard_summary()
    assert summary["Recalls"] == {"Closed": 1, "Pending": 1}
    assert summary["IPQC"] == {"Logged": 1}
    assert engine.open_items() == 1
