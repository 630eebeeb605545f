from types import SimpleNamespace

from pharmaqms.errors import ErrorKind
from pharmaqms.signature import SignatureMeaning

DESCRIPTION = "Granulator GR-02 stopped mid-cycle after a power dip on line 3"


def _capa(engine, user, source_ref=None, capa_type="Corrective"):
    res = engine.capa.create({"source": "Deviation", "sourceRef": source_ref, "type": capa_type,
                              "owner": "J. Patel", "dueDate": "2030-01-31",
                              "description": "Install UPS on granulator control panel"}, user)
    assert res.ok, res.message
    return res.value


def test_deviation_links_to_capa_by_code(engine, analyst, admin):
    deviation = engine.deviations.log("Production", DESCRIPTION, "High", analyst).value
    capa = _capa(engine, analyst, source_ref=deviation["number"])
    assert capa["sourceRef"] == {"kind": "Deviation", "code": deviation["number"]}
    assert engine.capa.for_source(deviation["number"])[0]["id"] == capa["id"]

    linked = engine.deviations.link_capa(deviation["id"], capa["number"], analyst).value
    assert linked["capaId"] == {"kind": "CAPA", "code": capa["number"]}
    assert engine.capa.resolve(linked["capaId"]).value["id"] == capa["id"]

    # weak reference: deleting the CAPA leaves a dangling code
    engine.capa.delete(capa["id"], admin)
    assert engine.capa.resolve(linked["capaId"]).error == ErrorKind.NOT_FOUND


def test_capa_without_source_warns(engine, analyst):
    res = engine.capa.create({"source": "Audit", "type": "Preventive", "owner": "QA",
                              "description": "Retrain line staff on GDP"}, analyst)
    assert res.ok
    assert any("source" in m for m in res.messages)


def test_capa_lifecycle_to_completed(engine, analyst, admin, sign):
    capa = _capa(engine, analyst)
    assert engine.capa.transition(capa["id"], "start", analyst).ok
    assert engine.capa.transition(capa["id"], "approve", admin, signature=sign(admin)).ok
    done = engine.capa.transition(capa["id"], "complete", analyst,
                                  signature=sign(analyst, SignatureMeaning.VERIFICATION)).value
    assert done["status"] == "Completed"
    assert "verificationDate" in done
    assert engine.capa.open_capas() == []
    assert engine.capa.transition(capa["id"], "close", admin, signature=sign(admin)).error == \
        ErrorKind.INVALID_TRANSITION


def test_capa_is_started_before_approval(engine, analyst, admin, sign):
    capa = _capa(engine, analyst)
    assert engine.capa.transition(capa["id"], "approve", admin, signature=sign(admin)).error == \
        ErrorKind.INVALID_TRANSITION
    withdrawn = engine.capa.transition(capa["id"], "close", admin, signature=sign(admin)).value
    assert withdrawn["status"] == "Closed"


def test_ai_analysis_attaches_or_reports_unavailable(engine, analyst):
    deviation = engine.deviations.log("Production", DESCRIPTION, "Low", analyst).value
    offline = SimpleNamespace(capa_suggestions=lambda d: None)
    assert engine.deviations.run_ai_analysis(deviation["id"], analyst, offline).error == \
        ErrorKind.COLLABORATOR_UNAVAILABLE
    online = SimpleNamespace(capa_suggestions=lambda d: {"rootCause": "No UPS", "correctiveAction": "Fit UPS",
                                                         "preventiveAction": "PM check", "extra": "dropped"})
    updated = engine.deviations.run_ai_analysis(deviation["id"], analyst, online).value
    assert updated["aiAnalysis"] == {"rootCause": "No UPS", "correctiveAction": "Fit UPS",
                                     "preventiveAction": "PM check"}


def test_deviation_stats(engine, analyst):
    engine.deviations.log("Production", DESCRIPTION, "Critical", analyst)
    engine.deviations.log("Warehouse", DESCRIPTION, "Low", analyst)
    stats = engine.deviations.stats()
    assert stats["total"] == 2
    assert stats["critical"] == 1
    assert stats["pending"] == 2


def test_change_request_tasks_block_close(engine, analyst, admin, sign):
    impact = {"riskScore": 8, "impactsFound": ["Validation", "SOP"], "suggestedTasks": ["Update SOP-101"],
              "isValidationRequired": True}
    cr = engine.changes.create({"title": "New blister sealer", "category": "Equipment",
                                "description": "Replace sealer on line 2"}, analyst, impact=impact).value
    assert cr["priority"] == "Critical"
    assert cr["impacts"] == ["Validation", "SOP"]
    assert [t["status"] for t in cr["tasks"]] == ["Open"]

    engine.changes.transition(cr["id"], "submit", analyst)
    engine.changes.transition(cr["id"], "approve", admin, signature=sign(admin))
    engine.changes.transition(cr["id"], "implement", analyst)
    cr = engine.changes.add_task(cr["id"], "Execute IQ/OQ", "Engineering", analyst).value
    assert len(cr["tasks"]) == 2

    blocked = engine.changes.transition(cr["id"], "close", admin, signature=sign(admin))
    assert blocked.error == ErrorKind.INVALID_TRANSITION
    assert "2 implementation task(s)" in blocked.message

    for task in cr["tasks"]:
        assert engine.changes.complete_task(cr["id"], task["id"], analyst).ok
    assert engine.changes.complete_task(cr["id"], cr["tasks"][0]["id"], analyst).error == \
        ErrorKind.INVALID_TRANSITION
    closed = engine.changes.transition(cr["id"], "close", admin, signature=sign(admin)).value
    assert closed["status"] == "Closed"


def test_change_request_without_impact_is_major(engine, analyst):
    cr = engine.changes.create({"title": "Edit SOP", "category": "Document", "description": "Typo fix"},
                               analyst).value
    assert cr["priority"] == "Major"
    assert cr["tasks"] == []
    assert engine.changes.add_task(cr["id"], "  ", "QA", analyst).error == ErrorKind.VALIDATION


def test_audit_checklist_progress_and_terminal_approval(engine, analyst, admin, sign):
    audit = engine.audits.create({"department": "Sterile Filling", "checklist": [
        {"checkItem": "Gowning qualification current", "regulatoryRef": "EU GMP Annex 1"},
        {"checkItem": "Media fill records reviewed", "regulatoryRef": "21 CFR 211.113"},
    ]}, analyst).value
    assert audit["number"].startswith("IA-")
    assert audit["auditor"] == "QC Analyst"
    toggled = engine.audits.toggle_check_item(audit["id"], 0, analyst).value
    assert engine.audits.progress(toggled) == 0.5
    assert engine.audits.toggle_check_item(audit["id"], 5, analyst).error == ErrorKind.VALIDATION

    engine.audits.transition(audit["id"], "approve", admin, signature=sign(admin))
    assert engine.audits.toggle_check_item(audit["id"], 1, analyst).error == ErrorKind.INVALID_TRANSITION


def test_audit_requires_checklist(engine, analyst):
    assert engine.audits.create({"department": "Stability Chambers", "checklist": []},
                                analyst).error == ErrorKind.VALIDATION


def test_recall_risk_follows_type(engine, analyst, admin, sign):
    recall = engine.recalls.create({"type": "Class I", "batch": "B-2231", "reason": "Mislabel"}, analyst).value
    assert recall["risk"] == "Critical"
    assert recall["number"].endswith("-101")
    assert engine.recalls.create({"type": "Mock"}, analyst).value["risk"] == "Medium"
    assert engine.recalls.create({"type": "Class IV", "batch": "X"}, analyst).error == ErrorKind.VALIDATION
    approved = engine.recalls.transition(recall["id"], "approve", admin, signature=sign(admin)).value
    assert approved["status"] == "Approved"


def test_oos_plan_falls_back_to_manual(engine, analyst):
    res = engine.oos.log_with_plan("Assay", "94.2%", "95.0 - 105.0%", analyst, ai=None)
    assert res.ok
    assert res.value["aiPlan"] is None
    assert any("manually" in m for m in res.messages)

    plan = {"immediateActions": ["Quarantine batch"], "retestStrategy": "Single retest by second analyst"}
    ai = SimpleNamespace(oos_investigation_plan=lambda t, r, s: plan)
    res = engine.oos.log_with_plan("Dissolution", "72%", "NLT 80%", analyst, ai)
    assert res.value["aiPlan"] == plan
    assert res.value["number"].startswith("OOS-")
