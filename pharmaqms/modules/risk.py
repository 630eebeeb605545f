# pharmaqms/modules/risk.py

"""
Risk register (ICH Q9 FMEA).

An entry is scored on creation and may later be re-assessed in place: the
current scores are archived at the front of the entry's ``history`` and the
new scores become current. ``revert`` undoes one such step by restoring a
history snapshot and removing it from the list. Each call adds or removes
exactly one history entry and writes exactly one audit entry.
"""

from typing import Dict, Optional

from .. import fmea
from ..auth import User
from ..errors import ErrorKind, Result
from ..repository import ModuleSpec, RecordRepository
from ..signature import SignatureMeaning
from ..utils import today_iso
from ..workflow import StatusMachine, Transition

MACHINE = StatusMachine(
    states=("Pending", "Approved", "Closed"),
    initial="Pending",
    terminal=("Approved", "Closed"),
    transitions=[
        Transition("approve", ("Pending",), "Approved", "Approved Risk Assessment",
                   admin_only=True, signature=SignatureMeaning.APPROVAL),
        Transition("close", ("Pending",), "Closed", "Closed Risk Assessment",
                   admin_only=True, signature=SignatureMeaning.APPROVAL, stamp_field="closedDate"),
    ],
)

SPEC = ModuleSpec(
    name="Risk Register",
    label="Risk Assessment",
    storage_key="pharma_risk_register_v1",
    id_prefix="RISK",
    number_prefix="RA",
    number_width=3,
    machine=MACHINE,
    required_fields=("processStep", "hazard", "mitigation"),
    search_fields=("number", "processStep", "hazard", "residualRisk"),
    protected_fields=fmea.HISTORY_FIELDS + ("history",),
    create_action="Created Risk Assessment",
)


class RiskRepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(SPEC, store, audit, bus)

    def validate(self, payload: Dict):
        is_valid, errors, warnings = super().validate(payload)
        errors.extend(fmea.validate_scores(payload.get("severity"), payload.get("occurrence"),
                                           payload.get("detection")))
        return not errors, errors, warnings

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        payload = dict(payload)
        payload.setdefault("date", today_iso())
        payload["history"] = []
        if not fmea.validate_scores(payload.get("severity"), payload.get("occurrence"), payload.get("detection")):
            payload.update(fmea.score(payload["severity"], payload["occurrence"], payload["detection"]))
        return super().create(payload, user, action,
                              details or f"{payload.get('hazard')} at {payload.get('processStep')}: "
                                         f"RPN {payload.get('rpn')} ({payload.get('residualRisk')})")

    def reassess(self, record_id: str, severity: int, occurrence: int, detection: int, user: User,
                 mitigation: Optional[str] = None, reason: Optional[str] = None,
                 expected_version: Optional[int] = None, today=None) -> Result:
        problems = fmea.validate_scores(severity, occurrence, detection)
        if problems:
            return Result.failure(ErrorKind.VALIDATION, *problems)

        def apply(record):
            if record.get("status") == "Closed":
                return Result.failure(ErrorKind.INVALID_TRANSITION, "A closed risk assessment cannot be re-assessed.")
            snapshot = fmea.history_snapshot(record)
            record.update(fmea.score(severity, occurrence, detection))
            if mitigation is not None:
                record["mitigation"] = mitigation
            record["date"] = today_iso(today)
            record["history"] = [snapshot] + list(record.get("history") or [])
            return Result.success(record)

        return self.mutate(record_id, user, apply, "Re-assessed Risk", reason=reason,
                           expected_version=expected_version, allow_terminal=True)

    def revert(self, record_id: str, index: int, user: User, reason: Optional[str] = None,
               expected_version: Optional[int] = None) -> Result:
        """Restores ``history[index]`` as current and removes it from the history."""

        def apply(record):
            if record.get("status") == "Closed":
                return Result.failure(ErrorKind.INVALID_TRANSITION, "A closed risk assessment cannot be reverted.")
            history = list(record.get("history") or [])
            if not 0 <= index < len(history):
                return Result.failure(ErrorKind.VALIDATION, f"No assessment #{index + 1} in the history.")
            snapshot = history[index]
            record.update({k: snapshot.get(k) for k in fmea.HISTORY_FIELDS})
            record["history"] = history[:index] + history[index + 1:]
            return Result.success(record)

        return self.mutate(record_id, user, apply, "Reverted Risk Assessment", reason=reason,
                           expected_version=expected_version, allow_terminal=True)

    def ai_score(self, process_step: str, hazard: str, ai) -> Optional[Dict]:
        """
        AI FMEA suggestion clamped to the 1-10 scale, or None when the
        collaborator is unavailable and the scores must be entered by hand.
        """
        suggestion = ai.fmea_analysis(process_step, hazard) if ai else None
        if not suggestion:
            return None
        scores = {}
        for key in ("severity", "occurrence", "detection"):
            try:
                scores[key] = min(10, max(1, int(round(float(suggestion.get(key, 5))))))
            except (TypeError, ValueError):
                scores[key] = 5
        scores["mitigation"] = suggestion.get("recommendedMitigation", "")
        scores["potentialEffect"] = suggestion.get("potentialEffect", "")
        return scores
