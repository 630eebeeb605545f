# pharmaqms/modules/audits.py

from typing import Dict, List

from ..auth import User
from ..errors import ErrorKind, Result
from ..repository import ModuleSpec, RecordRepository
from ..signature import SignatureMeaning
from ..utils import today_iso
from ..workflow import StatusMachine, Transition

AREAS = ("Packaging Line 3", "Stability Chambers", "Purified Water System", "Sterile Filling")

MACHINE = StatusMachine(
    states=("Pending", "Approved", "Closed"),
    initial="Pending",
    terminal=("Approved", "Closed"),
    transitions=[
        Transition("approve", ("Pending",), "Approved", "Approved Audit",
                   admin_only=True, signature=SignatureMeaning.APPROVAL),
        Transition("close", ("Pending",), "Closed", "Closed Audit",
                   admin_only=True, signature=SignatureMeaning.APPROVAL, stamp_field="closedDate"),
    ],
)

SPEC = ModuleSpec(
    name="Audits",
    label="Audit",
    storage_key="pharma_audit_records_v1",
    id_prefix="AUDIT",
    number_prefix="IA",
    year_digits=4,
    number_width=2,
    machine=MACHINE,
    required_fields=("department", "checklist"),
    search_fields=("number", "department", "auditor"),
    protected_fields=("checklist",),
    create_action="Created Audit",
)


def checklist_items(items: List[Dict]) -> List[Dict]:
    return [{"checkItem": i.get("checkItem", ""), "regulatoryRef": i.get("regulatoryRef", ""),
             "completed": bool(i.get("completed", False))} for i in items or []]


class AuditRepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(SPEC, store, audit, bus)

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        payload = dict(payload)
        payload["checklist"] = checklist_items(payload.get("checklist"))
        payload.setdefault("date", today_iso())
        payload.setdefault("auditor", user.full_name or "System")
        return super().create(payload, user, action,
                              details or f"GMP audit of {payload.get('department')} "
                                         f"with {len(payload['checklist'])} checklist items")

    def toggle_check_item(self, record_id: str, index: int, user: User) -> Result:
        def apply(record):
            checklist = checklist_items(record.get("checklist"))
            if not 0 <= index < len(checklist):
                return Result.failure(ErrorKind.VALIDATION, f"Checklist item {index + 1} does not exist.")
            checklist[index]["completed"] = not checklist[index]["completed"]
            record["checklist"] = checklist
            return Result.success(record)

        return self.mutate(record_id, user, apply, "Updated Audit Checklist",
                           details=f"Checklist item {index + 1} toggled")

    @staticmethod
    def progress(record: Dict) -> float:
        items = record.get("checklist") or []
        if not items:
            return 0.0
        return sum(1 for i in items if i.get("completed")) / len(items)
