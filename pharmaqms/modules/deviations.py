# pharmaqms/modules/deviations.py

from typing import Dict, Optional

from ..auth import User
from ..errors import ErrorKind, Result
from ..events import RECORD_CREATED
from ..references import RecordRef
from ..repository import ModuleSpec, RecordRepository
from ..signature import SignatureMeaning
from ..utils import today_iso
from ..workflow import StatusMachine, Transition

SEVERITIES = ("Low", "Medium", "High", "Critical")
DEPARTMENTS = ("Production", "Quality Control", "Quality Assurance", "Warehouse", "Engineering", "Microbiology")

MACHINE = StatusMachine(
    states=("Pending", "In Progress", "Approved", "Closed"),
    initial="Pending",
    terminal=("Closed",),
    transitions=[
        Transition("start", ("Pending",), "In Progress", "Started Investigation"),
        Transition("approve", ("Pending", "In Progress"), "Approved", "Approved Deviation",
                   admin_only=True, signature=SignatureMeaning.APPROVAL),
        Transition("close", ("Pending", "In Progress", "Approved"), "Closed", "Closed Deviation",
                   admin_only=True, signature=SignatureMeaning.APPROVAL, stamp_field="closedDate"),
    ],
)

SPEC = ModuleSpec(
    name="Deviations",
    label="Deviation",
    storage_key="pharma_deviations_v1",
    id_prefix="DEV",
    number_prefix="D",
    number_sep="",
    number_offset=501,
    machine=MACHINE,
    required_fields=("department", "description", "severity"),
    min_lengths={"description": 20},
    search_fields=("number", "description", "department"),
    protected_fields=("capaId",),
    create_action="Logged Deviation",
)


class DeviationRepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(SPEC, store, audit, bus)

    def validate(self, payload: Dict):
        is_valid, errors, warnings = super().validate(payload)
        if payload.get("severity") and payload["severity"] not in SEVERITIES:
            errors.append(f"Severity must be one of: {', '.join(SEVERITIES)}")
        return not errors, errors, warnings

    def log(self, department: str, description: str, severity: str, user: User,
            ai_analysis: Optional[Dict] = None, event_date: Optional[str] = None) -> Result:
        payload = {"department": department, "description": description, "severity": severity}
        if event_date:
            payload["date"] = event_date
        if ai_analysis:
            payload["aiAnalysis"] = _analysis(ai_analysis)
        return self.create(payload, user, details=f"New deviation logged in {department}")

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        payload = dict(payload)
        payload.setdefault("date", today_iso())
        return super().create(payload, user, action, details)

    def notification_for(self, event_type, record, transition=None):
        if event_type == RECORD_CREATED and record.get("severity") in ("High", "Critical"):
            return {
                "category": "Deviation",
                "priority": record["severity"],
                "title": f"Critical Event: {record['number']}",
                "message": f"Logged in {record.get('department')}.",
            }
        return None

    def link_capa(self, record_id: str, capa_ref, user: User) -> Result:
        """Stores a weak reference to a CAPA by its display code."""
        ref = RecordRef.from_value(capa_ref, "CAPA")
        if ref is None or not ref.code:
            return Result.failure(ErrorKind.VALIDATION, "A CAPA reference is required.")

        def apply(record):
            record["capaId"] = ref.to_dict()
            return Result.success(record)

        return self.mutate(record_id, user, apply, "Linked CAPA",
                           details=f"Deviation linked to CAPA {ref.code}")

    def attach_ai_analysis(self, record_id: str, analysis: Dict, user: User) -> Result:
        def apply(record):
            record["aiAnalysis"] = _analysis(analysis)
            return Result.success(record)

        return self.mutate(record_id, user, apply, "AI Root Cause Scoping",
                           details="AI root cause and CAPA suggestion attached")

    def run_ai_analysis(self, record_id: str, user: User, ai) -> Result:
        record = self.find(record_id)
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND, f"Deviation '{record_id}' not found.")
        suggestion = ai.capa_suggestions(record.get("description", "")) if ai else None
        if suggestion is None:
            return Result.failure(ErrorKind.COLLABORATOR_UNAVAILABLE,
                                  "AI analysis is unavailable. Enter the root cause manually.")
        return self.attach_ai_analysis(record_id, suggestion, user)

    def stats(self) -> Dict[str, int]:
        records = self.reload()
        return {
            "total": len(records),
            "pending": sum(1 for d in records if d.get("status") == "Pending"),
            "inProgress": sum(1 for d in records if d.get("status") == "In Progress"),
            "critical": sum(1 for d in records if d.get("severity") == "Critical"),
            "closed": sum(1 for d in records if d.get("status") == "Closed"),
        }


def _analysis(suggestion: Dict) -> Dict[str, str]:
    return {k: suggestion.get(k, "") for k in ("rootCause", "correctiveAction", "preventiveAction")}
