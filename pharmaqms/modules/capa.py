# pharmaqms/modules/capa.py

from typing import Dict, List

from ..auth import User
from ..errors import Result
from ..events import RECORD_CREATED
from ..references import RecordRef
from ..repository import ModuleSpec, RecordRepository
from ..signature import SignatureMeaning
from ..utils import today_iso
from ..workflow import StatusMachine, Transition

SOURCES = ("Deviation", "Audit", "OOS")
TYPES = ("Corrective", "Preventive")
OPEN_STATUSES = ("Pending", "In Progress", "Approved")

MACHINE = StatusMachine(
    states=("Pending", "In Progress", "Approved", "Completed", "Closed"),
    initial="Pending",
    terminal=("Completed", "Closed"),
    transitions=[
        Transition("start", ("Pending",), "In Progress", "Started CAPA"),
        Transition("approve", ("In Progress",), "Approved", "Approved CAPA",
                   admin_only=True, signature=SignatureMeaning.APPROVAL),
        Transition("complete", ("Approved",), "Completed", "Verified CAPA Effectiveness",
                   signature=SignatureMeaning.VERIFICATION, stamp_field="verificationDate"),
        Transition("close", OPEN_STATUSES, "Closed", "Closed CAPA",
                   admin_only=True, signature=SignatureMeaning.APPROVAL, stamp_field="closedDate"),
    ],
)

SPEC = ModuleSpec(
    name="CAPA",
    label="CAPA",
    storage_key="pharma_capa_v4",
    id_prefix="CAPA",
    number_prefix="CAPA",
    number_offset=101,
    machine=MACHINE,
    required_fields=("source", "description", "type", "owner", "dueDate"),
    search_fields=("number", "description", "owner", "sourceRef"),
    create_action="Created CAPA",
)


class CAPARepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(SPEC, store, audit, bus)

    def validate(self, payload: Dict):
        is_valid, errors, warnings = super().validate(payload)
        if payload.get("source") and payload["source"] not in SOURCES:
            errors.append(f"Source must be one of: {', '.join(SOURCES)}")
        if payload.get("type") and payload["type"] not in TYPES:
            errors.append("Type must be Corrective or Preventive")
        if not payload.get("sourceRef"):
            warnings.append("No source record referenced. Link the originating deviation, audit or OOS.")
        return not errors, errors, warnings

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        payload = dict(payload)
        payload.setdefault("dueDate", today_iso())
        source_ref = RecordRef.from_value(payload.get("sourceRef"), payload.get("source", "Deviation"))
        payload["sourceRef"] = source_ref.to_dict() if source_ref else None
        return super().create(payload, user, action,
                              details or f"{payload.get('type', 'Corrective')} action raised from {source_ref or 'no source'}")

    def notification_for(self, event_type, record, transition=None):
        if event_type != RECORD_CREATED:
            return None
        return {
            "category": "CAPA",
            "priority": "High" if record.get("type") == "Corrective" else "Medium",
            "title": f"CAPA Assigned: {record['number']}",
            "message": f"{record.get('owner')} is responsible, due {record.get('dueDate')}.",
        }

    def open_capas(self) -> List[Dict]:
        """CAPAs that can still be linked from a deviation."""
        return self.list(predicate=lambda c: c.get("status") in OPEN_STATUSES)

    def for_source(self, code: str) -> List[Dict]:
        return self.list(predicate=lambda c: str(RecordRef.from_value(c.get("sourceRef")) or "") == code)
