from pharmaqms.events import RECORD_CREATED, EventBus
from pharmaqms.notifications import NotificationPreferences, NotificationService, should_email

DESCRIPTION = "Sterility test failure on filled vials from aseptic line 1"


def test_email_rule_table():
    prefs = NotificationPreferences()
    assert should_email("Deviation", "Critical", prefs)
    assert not should_email("Deviation", "High", prefs)
    assert should_email("CAPA", "Medium", prefs)
    assert should_email("Task", "High", prefs)
    assert not should_email("Audit", "Critical", prefs)
    assert not should_email("Deviation", "Critical", NotificationPreferences(emailOnCriticalDeviation=False))


def test_critical_deviation_raises_email_alert(engine, analyst):
    engine.deviations.log("Quality Control", DESCRIPTION, "Critical", analyst)
    [alert] = engine.notifications.history()
    assert alert["type"] == "Email"
    assert alert["priority"] == "Critical"
    assert alert["recipient"] == analyst.email
    assert engine.notifications.unread_count() == 1


def test_preferences_downgrade_to_system_alerts(engine, analyst):
    engine.notifications.save_preferences(NotificationPreferences(emailOnCriticalDeviation=False))
    assert engine.notifications.get_preferences().emailOnCriticalDeviation is False
    engine.deviations.log("Quality Control", DESCRIPTION, "Critical", analyst)
    assert engine.notifications.history()[0]["type"] == "System"


def test_low_severity_raises_nothing(engine, analyst):
    engine.deviations.log("Quality Control", DESCRIPTION, "Low", analyst)
    assert engine.notifications.history() == []


def test_capa_and_change_requests_notify(engine, analyst):
    engine.capa.create({"source": "OOS", "type": "Corrective", "owner": "QC", "dueDate": "2030-01-01",
                        "description": "Re-validate HPLC method"}, analyst)
    engine.changes.create({"title": "Update SOP", "category": "Document", "description": "Rev 3"}, analyst)
    categories = [n["category"] for n in engine.notifications.history()]
    assert categories == ["Task", "CAPA"]


def test_mark_read_and_cap(store, analyst):
    service = NotificationService(store, max_entries=3)
    for i in range(5):
        service.notify(analyst, "Audit", "Low", f"n{i}", "msg")
    history = service.history()
    assert [n["title"] for n in history] == ["n4", "n3", "n2"]
    assert service.mark_read(history[0]["id"]) == 1
    assert service.unread_count() == 2
    assert service.mark_read() == 2
    assert service.unread_count() == 0
    service.clear()
    assert service.history() == []


def test_failing_subscriber_does_not_break_the_record(engine, analyst, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("mail server down")

    monkeypatch.setattr(engine.notifications, "notify", broken)
    res = engine.deviations.log("Quality Control", DESCRIPTION, "Critical", analyst)
    assert res.ok
    assert len(engine.deviations.list()) == 1


def test_event_bus_counts_handlers():
    bus = EventBus()
    seen = []
    bus.subscribe(RECORD_CREATED, seen.append)
    bus.subscribe(RECORD_CREATED, lambda data: 1 / 0)
    assert bus.publish(RECORD_CREATED, {"x": 1}) == 1
    assert seen == [{"x": 1}]
    assert bus.publish("unknown", {}) == 0
