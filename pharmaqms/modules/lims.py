# pharmaqms/modules/lims.py

from typing import Dict

from ..auth import User
from ..errors import Result
from ..repository import ModuleSpec, RecordRepository
from ..signature import SignatureMeaning
from ..utils import today_iso
from ..workflow import StatusMachine, Transition

SAMPLE_TYPES = ("Raw Material", "In-Process", "Finished Product", "Stability")
UNASSIGNED = "UNASSIGNED"

# Any analyst may move a sample along; release and rejection still need a signature.
MACHINE = StatusMachine(
    states=("Logged", "Testing", "Review", "Released", "Rejected"),
    initial="Logged",
    terminal=("Released", "Rejected"),
    transitions=[
        Transition("start_testing", ("Logged",), "Testing", "Started Sample Testing"),
        Transition("submit_review", ("Testing",), "Review", "Submitted Results for Review"),
        Transition("release", ("Review",), "Released", "Released Sample",
                   signature=SignatureMeaning.TECHNICAL_RELEASE, stamp_field="releaseDate"),
        Transition("reject", ("Review",), "Rejected", "Rejected Sample",
                   signature=SignatureMeaning.REVIEW, stamp_field="rejectionDate"),
    ],
    role_gated=False,
)

SPEC = ModuleSpec(
    name="LIMS",
    label="Sample",
    storage_key="master_lims_samples",
    id_prefix="SMP",
    number_prefix="SAM",
    year_digits=4,
    number_offset=1001,
    machine=MACHINE,
    required_fields=("productName", "batchNo", "type"),
    search_fields=("number", "productName", "batchNo", "analyst"),
    create_action="Logged Sample",
)


class SampleRepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(SPEC, store, audit, bus)

    def validate(self, payload: Dict):
        is_valid, errors, warnings = super().validate(payload)
        if payload.get("type") and payload["type"] not in SAMPLE_TYPES:
            errors.append(f"Sample type must be one of: {', '.join(SAMPLE_TYPES)}")
        return not errors, errors, warnings

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        payload = dict(payload)
        payload["analyst"] = (payload.get("analyst") or "").strip() or UNASSIGNED
        payload.setdefault("dateLogged", today_iso())
        return super().create(payload, user, action,
                              details or f"{payload.get('type')} sample of {payload.get('productName')} "
                                         f"batch {payload.get('batchNo')}")

    def assign_analyst(self, record_id: str, analyst: str, user: User) -> Result:
        def apply(record):
            record["analyst"] = (analyst or "").strip() or UNASSIGNED
            return Result.success(record)

        return self.mutate(record_id, user, apply, "Assigned Analyst", details=f"Sample assigned to {analyst}")
