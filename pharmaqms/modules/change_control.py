# pharmaqms/modules/change_control.py

from typing import Dict, List, Optional

from ..auth import User
from ..errors import ErrorKind, Result
from ..events import RECORD_CREATED
from ..ids import new_id
from ..repository import ModuleSpec, RecordRepository
from ..signature import SignatureMeaning
from ..utils import today_iso
from ..workflow import StatusMachine, Transition

CATEGORIES = ("Process", "Equipment", "Facility", "IT", "Document", "Analytical")
CRITICAL_RISK_SCORE = 7

MACHINE = StatusMachine(
    states=("Pending", "Under Review", "Approved", "In Progress", "Closed", "Rejected"),
    initial="Pending",
    terminal=("Closed", "Rejected"),
    transitions=[
        Transition("submit", ("Pending",), "Under Review", "Submitted Change Request"),
        Transition("approve", ("Under Review",), "Approved", "Approved Change Request",
                   admin_only=True, signature=SignatureMeaning.APPROVAL),
        Transition("implement", ("Approved",), "In Progress", "Started Change Implementation"),
        Transition("close", ("In Progress",), "Closed", "Closed Change Request",
                   admin_only=True, signature=SignatureMeaning.APPROVAL, stamp_field="closedDate"),
        Transition("reject", ("Pending", "Under Review"), "Rejected", "Rejected Change Request",
                   admin_only=True, signature=SignatureMeaning.REVIEW),
    ],
)

SPEC = ModuleSpec(
    name="Change Control",
    label="Change Request",
    storage_key="pharma_change_requests_v1",
    id_prefix="CC",
    number_prefix="CCR",
    number_width=3,
    machine=MACHINE,
    required_fields=("title", "description", "category"),
    search_fields=("number", "title", "description", "category"),
    protected_fields=("tasks", "priority"),
    create_action="Logged Change Request",
)


def priority_for(risk_score: Optional[float]) -> str:
    return "Critical" if risk_score is not None and risk_score > CRITICAL_RISK_SCORE else "Major"


def make_tasks(descriptions: List[str], owner: str = "TBD") -> List[Dict]:
    return [{"id": new_id("TSK"), "description": d, "owner": owner, "status": "Open"} for d in descriptions]


class ChangeRequestRepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(SPEC, store, audit, bus)

    def validate(self, payload: Dict):
        is_valid, errors, warnings = super().validate(payload)
        if payload.get("category") and payload["category"] not in CATEGORIES:
            errors.append(f"Category must be one of: {', '.join(CATEGORIES)}")
        return not errors, errors, warnings

    def create(self, payload: Dict, user: User, action=None, details=None,
               impact: Optional[Dict] = None) -> Result:
        """``impact`` is an optional AI impact assessment that seeds risk score, impacts and tasks."""
        payload = dict(payload)
        if impact:
            payload.setdefault("riskScore", impact.get("riskScore"))
            payload.setdefault("impacts", list(impact.get("impactsFound") or []))
            payload.setdefault("tasks", make_tasks(impact.get("suggestedTasks") or []))
            payload.setdefault("isValidationRequired", bool(impact.get("isValidationRequired")))
        payload.setdefault("impacts", [])
        payload.setdefault("tasks", [])
        payload["priority"] = priority_for(payload.get("riskScore"))
        payload.setdefault("dateInitiated", today_iso())
        payload.setdefault("initiatedBy", user.full_name)
        return super().create(payload, user, action, details or f"{payload.get('category')} change: {payload.get('title')}")

    def notification_for(self, event_type, record, transition=None):
        if event_type == RECORD_CREATED:
            return {
                "category": "Task",
                "priority": "High",
                "title": "New Change Request Logged",
                "message": f"{record['number']} requires impact assessment approval.",
            }
        return None

    def assess_impact(self, title: str, description: str, ai) -> Optional[Dict]:
        return ai.change_impact(title, description) if ai else None

    def add_task(self, record_id: str, description: str, owner: str, user: User) -> Result:
        if not (description or "").strip():
            return Result.failure(ErrorKind.VALIDATION, "Task description is required.")

        def apply(record):
            record["tasks"] = list(record.get("tasks") or []) + make_tasks([description.strip()], owner or "TBD")
            return Result.success(record)

        return self.mutate(record_id, user, apply, "Added Change Task", details=f"Task added: {description}")

    def complete_task(self, record_id: str, task_id: str, user: User) -> Result:
        def apply(record):
            tasks = [dict(t) for t in record.get("tasks") or []]
            task = next((t for t in tasks if t.get("id") == task_id), None)
            if task is None:
                return Result.failure(ErrorKind.NOT_FOUND, f"Task '{task_id}' not found.")
            if task.get("status") == "Completed":
                return Result.failure(ErrorKind.INVALID_TRANSITION, "Task is already completed.")
            task["status"] = "Completed"
            record["tasks"] = tasks
            return Result.success(record)

        return self.mutate(record_id, user, apply, "Completed Change Task", details=f"Task {task_id} completed")

    def check_transition(self, record, transition):
        if transition.action == "close":
            open_tasks = [t for t in record.get("tasks") or [] if t.get("status") != "Completed"]
            if open_tasks:
                return f"{len(open_tasks)} implementation task(s) are still open."
        return None
