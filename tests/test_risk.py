from types import SimpleNamespace

import pytest

from pharmaqms import fmea
from pharmaqms.audit_logger import AuditLogger
from pharmaqms.errors import ErrorKind
from pharmaqms.modules.risk import RiskRepository
from pharmaqms.storage import MemoryStore


@pytest.mark.parametrize("rpn, band", [
    (126, "Critical"), (125, "High"), (65, "High"), (64, "Medium"), (28, "Medium"), (27, "Low"), (1, "Low"),
])
def test_residual_risk_bands(rpn, band):
    assert fmea.residual_risk_class(rpn) == band


def test_scores_must_be_whole_numbers_in_range():
    assert fmea.validate_scores(5, 5, 5) == []
    assert len(fmea.validate_scores(0, 11, "3")) == 3
    assert fmea.validate_scores(True, 5, 5)


def _risk(engine, user, s=5, o=5, d=5):
    res = engine.risk.create({"processStep": "Compression", "hazard": "Capping", "mitigation": "Pre-compression",
                              "severity": s, "occurrence": o, "detection": d}, user)
    assert res.ok, res.message
    return res.value


def test_create_scores_the_entry(engine, analyst):
    entry = _risk(engine, analyst, 6, 5, 5)
    assert entry["rpn"] == 150
    assert entry["residualRisk"] == "Critical"
    assert entry["history"] == []
    assert engine.risk.create({"processStep": "x", "hazard": "y", "mitigation": "z", "severity": 11,
                               "occurrence": 1, "detection": 1}, analyst).error == ErrorKind.VALIDATION


def test_reassess_then_revert(engine, analyst):
    entry = _risk(engine, analyst, 6, 5, 5)
    reassessed = engine.risk.reassess(entry["id"], 6, 2, 3, analyst, mitigation="Tooling upgrade",
                                      reason="CAPA effective").value
    assert reassessed["rpn"] == 36
    assert reassessed["residualRisk"] == "Medium"
    assert reassessed["mitigation"] == "Tooling upgrade"
    assert [h["rpn"] for h in reassessed["history"]] == [150]
    assert engine.audit.query()[0].action == "Re-assessed Risk"

    engine.risk.reassess(entry["id"], 2, 2, 2, analyst)
    reverted = engine.risk.revert(entry["id"], 1, analyst).value
    assert reverted["rpn"] == 150
    assert reverted["mitigation"] == "Pre-compression"
    # the replaced current values are not archived again
    assert [h["rpn"] for h in reverted["history"]] == [36]
    assert engine.risk.revert(entry["id"], 4, analyst).error == ErrorKind.VALIDATION


def test_approved_entries_can_be_reassessed_but_closed_cannot(engine, analyst, admin, sign):
    approved = _risk(engine, analyst)
    engine.risk.transition(approved["id"], "approve", admin, signature=sign(admin))
    assert engine.risk.reassess(approved["id"], 3, 3, 3, analyst).ok

    closed = _risk(engine, analyst)
    engine.risk.transition(closed["id"], "close", admin, signature=sign(admin))
    assert engine.risk.reassess(closed["id"], 3, 3, 3, analyst).error == ErrorKind.INVALID_TRANSITION


def test_ai_scores_are_clamped():
    store = MemoryStore()
    repo = RiskRepository(store, AuditLogger(store))
    ai = SimpleNamespace(fmea_analysis=lambda step, hazard: {"severity": 14, "occurrence": 0.2,
                                                             "detection": "n/a",
                                                             "recommendedMitigation": "IPC checks"})
    assert repo.ai_score("Coating", "Twinning", ai) == {"severity": 10, "occurrence": 1, "detection": 5,
                                                        "mitigation": "IPC checks", "potentialEffect": ""}
    assert repo.ai_score("Coating", "Twinning", None) is None
