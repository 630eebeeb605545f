# pharmaqms/modules/oos.py

from typing import Dict, Optional

from ..auth import User
from ..errors import ErrorKind, Result
from ..repository import ModuleSpec, RecordRepository
from ..signature import SignatureMeaning
from ..utils import today_iso
from ..workflow import StatusMachine, Transition

MACHINE = StatusMachine(
    states=("Pending", "In Progress", "Approved", "Closed"),
    initial="Pending",
    terminal=("Closed",),
    transitions=[
        Transition("start", ("Pending",), "In Progress", "Started OOS Investigation"),
        Transition("approve", ("Pending", "In Progress"), "Approved", "Approved OOS Investigation",
                   admin_only=True, signature=SignatureMeaning.APPROVAL),
        Transition("close", ("Pending", "In Progress", "Approved"), "Closed", "Closed OOS Investigation",
                   admin_only=True, signature=SignatureMeaning.APPROVAL, stamp_field="closedDate"),
    ],
)

SPEC = ModuleSpec(
    name="OOS",
    label="OOS Investigation",
    storage_key="pharma_oos_records_v1",
    id_prefix="OOS",
    number_prefix="OOS",
    number_width=3,
    machine=MACHINE,
    required_fields=("test", "result", "spec"),
    search_fields=("number", "test", "result", "spec"),
    create_action="Logged OOS Result",
)


class OOSRepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(SPEC, store, audit, bus)

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        payload = dict(payload)
        payload.setdefault("date", today_iso())
        return super().create(payload, user, action,
                              details or f"{payload.get('test')}: {payload.get('result')} "
                                         f"against {payload.get('spec')}")

    def investigation_plan(self, test: str, result: str, spec: str, ai) -> Optional[Dict]:
        return ai.oos_investigation_plan(test, result, spec) if ai else None

    def log_with_plan(self, test: str, result: str, spec: str, user: User, ai) -> Result:
        """Logs the OOS result with an AI Phase I plan attached when one is available."""
        plan = self.investigation_plan(test, result, spec, ai)
        res = self.create({"test": test, "result": result, "spec": spec, "aiPlan": plan}, user)
        if res and plan is None:
            return Result(ok=True, value=res.value, messages=res.messages + (
                "AI investigation plan unavailable; document the Phase I checks manually.",))
        return res
