# pharmaqms/modules/recalls.py

from typing import Dict

from ..auth import User
from ..errors import Result
from ..repository import ModuleSpec, RecordRepository
from ..signature import SignatureMeaning
from ..utils import today_iso
from ..workflow import StatusMachine, Transition

RECALL_TYPES = ("Mock", "Class I", "Class II", "Class III")

MACHINE = StatusMachine(
    states=("Pending", "Approved", "Closed"),
    initial="Pending",
    terminal=("Closed",),
    transitions=[
        Transition("approve", ("Pending",), "Approved", "Approved Recall",
                   admin_only=True, signature=SignatureMeaning.APPROVAL),
        Transition("close", ("Pending", "Approved"), "Closed", "Closed Recall",
                   admin_only=True, signature=SignatureMeaning.APPROVAL, stamp_field="closedDate"),
    ],
)

SPEC = ModuleSpec(
    name="Recalls",
    label="Recall",
    storage_key="pharma_recalls_v1",
    id_prefix="RCL",
    number_prefix="HHE",
    number_offset=101,
    machine=MACHINE,
    required_fields=("type", "batch"),
    search_fields=("number", "batch", "type", "risk"),
    create_action="Initiated Recall",
)


def recall_risk(recall_type: str) -> str:
    return "Critical" if recall_type == "Class I" else "Medium"


class RecallRepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(SPEC, store, audit, bus)

    def validate(self, payload: Dict):
        is_valid, errors, warnings = super().validate(payload)
        if payload.get("type") and payload["type"] not in RECALL_TYPES:
            errors.append(f"Recall type must be one of: {', '.join(RECALL_TYPES)}")
        return not errors, errors, warnings

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        payload = dict(payload)
        payload.setdefault("batch", "TBD")
        payload.setdefault("date", today_iso())
        payload["risk"] = recall_risk(payload.get("type"))
        return super().create(payload, user, action,
                              details or f"{payload.get('type')} recall of batch {payload.get('batch')}")
