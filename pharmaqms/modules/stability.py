# pharmaqms/modules/stability.py

import re
from datetime import date
from typing import Dict, List, Optional

import pandas as pd

from ..auth import User
from ..errors import ErrorKind, Result
from ..ids import new_display_number
from ..repository import ModuleSpec, RecordRepository
from ..signature import SignatureMeaning
from ..utils import today_iso
from ..workflow import StatusMachine, Transition

DEFAULT_INTERVALS = ("Initial", "3M", "6M", "9M", "12M")
DEFAULT_CONDITION = "30°C/75% RH"

MACHINE = StatusMachine(
    states=("Ongoing", "Completed", "Stopped"),
    initial="Ongoing",
    terminal=("Completed", "Stopped"),
    transitions=[
        Transition("approve_close", ("Ongoing",), "Completed", "Approved and Closed Stability Study",
                   admin_only=True, signature=SignatureMeaning.APPROVAL, stamp_field="completedDate"),
        Transition("stop", ("Ongoing",), "Stopped", "Stopped Stability Study", stamp_field="stoppedDate"),
    ],
)

SPEC = ModuleSpec(
    name="Stability",
    label="Stability Study",
    storage_key="pharma_stability_v1",
    id_prefix="STB",
    number_prefix="P",
    year_digits=0,
    number_width=3,
    machine=MACHINE,
    required_fields=("product", "batchNumber", "condition", "startDate"),
    search_fields=("number", "product", "batchNumber"),
    protected_fields=("startDate", "intervals", "completedIntervals", "results", "nextTimePoint"),
    create_action="Initiated Stability Study",
)


def interval_months(label: str) -> int:
    """'Initial' is month 0; '3M', '12M', ... are months from the start date."""
    match = re.fullmatch(r"\s*(\d+)\s*M\s*", label or "", re.IGNORECASE)
    return int(match.group(1)) if match else 0


def time_point_label(start_date: str, label: str) -> str:
    due = pd.Timestamp(start_date) + pd.DateOffset(months=interval_months(label))
    return f"{due.date().isoformat()} ({label})"


class StabilityRepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(SPEC, store, audit, bus)

    def validate(self, payload: Dict):
        is_valid, errors, warnings = super().validate(payload)
        start = payload.get("startDate")
        if start:
            try:
                date.fromisoformat(str(start))
            except ValueError:
                errors.append(f"Start date must be a calendar date (YYYY-MM-DD), got '{start}'")
        return not errors, errors, warnings

    def make_number(self, sequence_hint: int, payload: Dict) -> str:
        product_code = re.sub(r"[^A-Za-z0-9]", "", payload.get("product", ""))[:3].upper() or "GEN"
        return new_display_number(f"P-{product_code}", sequence_hint, year_digits=0, width=3)

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        payload = dict(payload)
        payload.setdefault("condition", DEFAULT_CONDITION)
        payload.setdefault("startDate", today_iso())
        payload["intervals"] = list(payload.get("intervals") or DEFAULT_INTERVALS)
        payload["completedIntervals"] = []
        payload["nextTimePoint"] = "Pending Initial Analysis"
        return super().create(payload, user, action,
                              details or f"{payload.get('product')} batch {payload.get('batchNumber')} "
                                         f"at {payload.get('condition')}")

    def pending_intervals(self, record: Dict) -> List[str]:
        done = set(record.get("completedIntervals") or [])
        return [i for i in record.get("intervals") or [] if i not in done]

    def record_time_point(self, record_id: str, user: User, observation: Optional[str] = None) -> Result:
        """Marks the next scheduled pull as analysed and schedules the one after it."""

        def apply(record):
            pending = self.pending_intervals(record)
            if not pending:
                return Result.failure(ErrorKind.INVALID_TRANSITION, "All time points have been analysed.")
            record["completedIntervals"] = list(record.get("completedIntervals") or []) + [pending[0]]
            results = list(record.get("results") or [])
            results.append({"interval": pending[0], "date": today_iso(), "observation": observation or "",
                            "analyst": user.username})
            record["results"] = results
            if len(pending) > 1:
                record["nextTimePoint"] = time_point_label(record["startDate"], pending[1])
            else:
                record["nextTimePoint"] = "All time points complete"
            return Result.success(record)

        return self.mutate(record_id, user, apply, "Recorded Stability Time Point")
