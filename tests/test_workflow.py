import pytest

from pharmaqms.errors import ErrorKind
from pharmaqms.modules import capa, deviations, lims
from pharmaqms.workflow import StatusMachine, Transition


def test_transition_updates_status_and_stamp(admin):
    res = deviations.MACHINE.transition({"status": "In Progress"}, "close", admin)
    updated, t = res.value
    assert updated["status"] == "Closed"
    assert "closedDate" in updated
    assert t.label == "Closed Deviation"


def test_role_guard(analyst):
    res = deviations.MACHINE.transition({"status": "Pending"}, "approve", analyst)
    assert res.error == ErrorKind.UNAUTHORIZED


def test_unmapped_and_unknown_actions(admin):
    assert capa.MACHINE.transition({"status": "Pending"}, "approve", admin).error == ErrorKind.INVALID_TRANSITION
    assert capa.MACHINE.transition({"status": "Pending"}, "explode", admin).error == ErrorKind.INVALID_TRANSITION


def test_terminal_states_have_no_exits(admin):
    for status in capa.MACHINE.terminal:
        assert capa.MACHINE.available_actions(status, admin) == []


def test_available_actions_filtered_by_role(analyst, admin):
    assert [t.action for t in deviations.MACHINE.available_actions("Pending", analyst)] == ["start"]
    assert {t.action for t in deviations.MACHINE.available_actions("Pending", admin)} == {"start", "approve", "close"}


def test_role_gating_can_be_switched_off(analyst):
    assert lims.MACHINE.is_authorized("release", analyst)


def test_machine_rejects_bad_tables():
    with pytest.raises(ValueError):
        StatusMachine(("A", "B"), "A", ("B",), [Transition("go", ("B",), "A", "exit terminal")])
    with pytest.raises(ValueError):
        StatusMachine(("A",), "A", (), [Transition("go", ("A",), "Z", "undeclared")])
    with pytest.raises(ValueError):
        StatusMachine(("A", "B"), "A", (), [Transition("go", ("A",), "B", "x"), Transition("go", ("A",), "A", "y")])
