# pharmaqms/modules/batch_records.py

"""
Master formula records (MFR) and the batch manufacturing records (BMR)
issued from them.

An MFR is drafted, approved into Effective and eventually superseded. Only an
Effective MFR can issue a BMR; the BMR gets its own copy of the steps and
materials, and every step is signed by the operator and then verified before
the batch can be completed and released.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ..auth import User
from ..errors import ErrorKind, Result
from ..ids import new_display_number
from ..repository import ModuleSpec, RecordRepository, serialized
from ..signature import Confirmed, SignatureMeaning
from ..utils import today_iso
from ..workflow import StatusMachine, Transition

logger = logging.getLogger(__name__)

STEP_CATEGORIES = ("Preparation", "Processing", "QC", "Packaging")
STEP_LISTS = ("steps", "packagingSteps")

DEFAULT_PACKAGING_MATERIALS = [
    {"materialName": "PVC Film 250mic", "qtyPerUnit": "-", "theoreticalQty": "50", "unit": "kg"},
    {"materialName": "Aluminium Foil 20mic", "qtyPerUnit": "-", "theoreticalQty": "30", "unit": "kg"},
    {"materialName": "Outer Carton", "qtyPerUnit": "1", "theoreticalQty": "1000", "unit": "Nos"},
]
DEFAULT_PACKAGING_STEPS = [
    {"id": "p1", "operation": "Blistering", "instruction": "Set sealing temp at 140-150°C.",
     "category": "Packaging", "isCritical": True},
    {"id": "p2", "operation": "Packing", "instruction": "Insert 3 blisters and 1 leaflet per box.",
     "category": "Packaging", "isCritical": False},
]

MFR_MACHINE = StatusMachine(
    states=("Draft", "Effective", "Superseded"),
    initial="Draft",
    terminal=("Superseded",),
    transitions=[
        Transition("approve", ("Draft",), "Effective", "MFR_APPROVED",
                   admin_only=True, signature=SignatureMeaning.APPROVAL, stamp_field="effectiveDate"),
        Transition("supersede", ("Effective",), "Superseded", "MFR_SUPERSEDED", admin_only=True),
    ],
)

BMR_MACHINE = StatusMachine(
    states=("Issued", "In Progress", "Completed", "Released", "Rejected"),
    initial="Issued",
    terminal=("Released", "Rejected"),
    transitions=[
        Transition("start", ("Issued",), "In Progress", "BMR_STARTED"),
        Transition("complete", ("In Progress",), "Completed", "BMR_COMPLETED",
                   signature=SignatureMeaning.VERIFICATION, stamp_field="completionDate"),
        Transition("release", ("Completed",), "Released", "BMR_RELEASED",
                   admin_only=True, signature=SignatureMeaning.TECHNICAL_RELEASE, stamp_field="releaseDate"),
        Transition("reject", ("Completed",), "Rejected", "BMR_REJECTED",
                   admin_only=True, signature=SignatureMeaning.REVIEW, stamp_field="rejectionDate"),
    ],
)

MFR_SPEC = ModuleSpec(
    name="QA",
    label="MFR",
    storage_key="master_mfr_vault_v8",
    id_prefix="mfr",
    number_prefix="PD",
    machine=MFR_MACHINE,
    required_fields=("productName", "dosageForm", "batchSize"),
    search_fields=("number", "productName", "productCode"),
    protected_fields=("approvals",),
    create_action="MFR_SAVED",
    defaults={"revision": "R01", "ingredients": [], "packagingMaterials": [], "steps": [],
              "packagingSteps": [], "approvals": []},
)

BMR_SPEC = ModuleSpec(
    name="Production",
    label="BMR",
    storage_key="active_bmr_vault_v8",
    id_prefix="bmr",
    number_prefix="BMR",
    machine=BMR_MACHINE,
    required_fields=("mfrId", "batchNumber", "productName"),
    search_fields=("number", "batchNumber", "productName"),
    protected_fields=("mfrId", "mfrNumber", "batchNumber", "issuedBy", "issuanceDate", "issuance",
                      "steps", "packagingSteps", "ingredients", "packagingMaterials", "lineClearance"),
    create_action="BMR_ISSUED",
)


def product_code(product_name: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "", product_name or "")[:3].upper() or "GEN"


def make_step(step: Dict, default_id: str) -> Dict:
    category = step.get("category")
    return {
        "id": step.get("id") or default_id,
        "operation": step.get("operation", ""),
        "instruction": step.get("instruction", ""),
        "limit": step.get("limit", ""),
        "equipmentId": step.get("equipmentId", ""),
        "category": category if category in STEP_CATEGORIES else "Processing",
        "isCritical": bool(step.get("isCritical", True)),
    }


def _steps(record: Dict) -> List[Dict]:
    return [s for name in STEP_LISTS for s in record.get(name) or []]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MFRRepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(MFR_SPEC, store, audit, bus)

    def make_number(self, sequence_hint: int, payload: Dict) -> str:
        return new_display_number(f"PD/{product_code(payload.get('productName'))}-MFR", sequence_hint,
                                  year_digits=0, width=2, sep="/")

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        payload = dict(payload)
        payload.setdefault("productCode", product_code(payload.get("productName")) + "01")
        payload["steps"] = [make_step(s, f"s-{i}") for i, s in enumerate(payload.get("steps") or [])]
        payload["packagingSteps"] = [make_step(s, f"p{i + 1}")
                                     for i, s in enumerate(payload.get("packagingSteps") or [])]
        payload.pop("approvals", None)
        return super().create(payload, user, action,
                              details or f"Saved Master Protocol for {payload.get('productName')}")

    def draft_from_template(self, product: str, dosage_form: str, user: User, ai, **fields) -> Result:
        """Drafts an MFR from an AI template; without one, an empty draft is created for manual entry."""
        template = ai.mfr_template(product, dosage_form) if ai else None
        payload = dict(fields, productName=product, dosageForm=dosage_form,
                       description=fields.get("description") or f"Master Protocol for {product}")
        if template:
            payload.setdefault("batchSize", template.get("batchSize"))
            payload["ingredients"] = [
                {"materialName": i.get("materialName"), "qtyPerUnit": "-",
                 "theoreticalQty": i.get("quantity"), "unit": i.get("unit")}
                for i in template.get("ingredients") or []
            ]
            payload["steps"] = template.get("steps") or []
        payload.setdefault("batchSize", "100,000 Tabs")
        payload.setdefault("packagingMaterials", [dict(m) for m in DEFAULT_PACKAGING_MATERIALS])
        payload.setdefault("packagingSteps", [dict(s) for s in DEFAULT_PACKAGING_STEPS])
        res = self.create(payload, user)
        if res and template is None:
            return Result(ok=True, value=res.value, messages=res.messages + (
                "MFR template unavailable; enter ingredients and process steps manually.",))
        return res

    def check_transition(self, record, transition):
        if transition.action == "approve":
            if not record.get("steps"):
                return "An MFR needs at least one manufacturing step before approval."
            if not record.get("ingredients"):
                return "An MFR needs a bill of materials before approval."
        return None

    def approve(self, record_id: str, user: User, signature: Optional[Confirmed],
                expected_version: Optional[int] = None) -> Result:
        """Approves the draft into Effective and adds the signer to its approval block."""
        record = self.find(record_id)
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND, f"MFR '{record_id}' not found.")
        changes = None
        if isinstance(signature, Confirmed):
            changes = {"approvals": list(record.get("approvals") or []) + [
                {"name": user.full_name, "designation": user.role, "meaning": signature.meaning.value}
            ]}
        return self._transition(record_id, "approve", user, signature, expected_version, changes)

    def effective(self) -> List[Dict]:
        return self.list(status="Effective")


class BMRRepository(RecordRepository):

    def __init__(self, store, audit, mfrs: MFRRepository, bus=None):
        super().__init__(BMR_SPEC, store, audit, bus)
        self.mfrs = mfrs

    def make_number(self, sequence_hint: int, payload: Dict) -> str:
        return payload["batchNumber"]

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        return Result.failure(ErrorKind.INVALID_TRANSITION,
                              "Batch records are issued from an Effective MFR under the issuer's signature.")

    @serialized
    def issue_bmr(self, mfr_id: str, batch_number: str, user: User,
                  signature: Optional[Confirmed]) -> Result:
        """Issues a batch record from an Effective MFR under the issuer's signature."""
        refusal = self._check_signature(signature, user)
        if refusal:
            return refusal
        batch_number = (batch_number or "").strip()
        if not batch_number:
            return Result.failure(ErrorKind.VALIDATION, "A batch number is required to issue a BMR.")
        mfr = self.mfrs.find(mfr_id)
        if mfr is None:
            return Result.failure(ErrorKind.NOT_FOUND, f"MFR '{mfr_id}' not found.")
        if mfr.get("status") != "Effective":
            return Result.failure(ErrorKind.INVALID_TRANSITION,
                                  f"{mfr.get('number')} is {mfr.get('status')}; only an Effective MFR can issue batches.")
        if self.find_by_number(batch_number) is not None:
            return Result.failure(ErrorKind.VALIDATION, f"Batch {batch_number} has already been issued.")

        payload = {
            "mfrId": mfr["id"],
            "mfrNumber": mfr.get("number"),
            "batchNumber": batch_number,
            "productName": mfr.get("productName"),
            "issuedBy": user.full_name,
            "issuanceDate": today_iso(),
            "steps": [dict(s) for s in mfr.get("steps") or []],
            "packagingSteps": [dict(s) for s in mfr.get("packagingSteps") or []],
            "ingredients": [dict(i) for i in mfr.get("ingredients") or []],
            "packagingMaterials": [dict(m) for m in mfr.get("packagingMaterials") or []],
            "lineClearance": {"status": False},
            "issuance": {"meaning": signature.meaning.value, "signer": signature.signer,
                         "reason": signature.reason, "signedAt": signature.signed_at},
        }
        return super().create(payload, user,
                              details=f"Issued Lot {batch_number} from {mfr.get('number')} "
                                      f"(signed: {signature.meaning.value})")

    @staticmethod
    def _locate(record: Dict, step_id: str) -> Tuple[Optional[str], int]:
        for name in STEP_LISTS:
            for i, step in enumerate(record.get(name) or []):
                if step.get("id") == step_id:
                    return name, i
        return None, -1

    def _execute_step(self, record_id: str, step_id: str, user: User, signature: Optional[Confirmed],
                      verify: bool) -> Result:
        action = "STEP_VERIFIED" if verify else "STEP_SIGNED"

        def apply(record):
            if record.get("status") != "In Progress":
                return Result.failure(ErrorKind.INVALID_TRANSITION,
                                      f"Lot {record.get('batchNumber')} is {record.get('status')}; "
                                      f"steps can only be executed while In Progress.")
            list_name, i = self._locate(record, step_id)
            if list_name is None:
                return Result.failure(ErrorKind.NOT_FOUND, f"Step '{step_id}' not found.")
            steps = [dict(s) for s in record[list_name]]
            step = steps[i]
            if verify:
                if not step.get("signOffBy"):
                    return Result.failure(ErrorKind.INVALID_TRANSITION,
                                          f"Step {step_id} must be signed before it can be verified.")
                if step.get("checkedBy"):
                    return Result.failure(ErrorKind.INVALID_TRANSITION, f"Step {step_id} is already verified.")
                step["checkedBy"] = user.full_name
                step["checkedDate"] = _now()
            else:
                if step.get("signOffBy"):
                    return Result.failure(ErrorKind.INVALID_TRANSITION, f"Step {step_id} is already signed.")
                step["signOffBy"] = user.full_name
                step["signOffDate"] = _now()
            record[list_name] = steps
            return Result.success(record)

        record = self.find(record_id)
        lot = record.get("batchNumber") if record else record_id
        return self.mutate(record_id, user, apply, action, signature=signature, require_signature=True,
                           details=f"Executed signature for {step_id} in Lot {lot}")

    def sign_step(self, record_id: str, step_id: str, user: User, signature: Optional[Confirmed]) -> Result:
        return self._execute_step(record_id, step_id, user, signature, verify=False)

    def verify_step(self, record_id: str, step_id: str, user: User, signature: Optional[Confirmed]) -> Result:
        return self._execute_step(record_id, step_id, user, signature, verify=True)

    def line_clearance(self, record_id: str, user: User, signature: Optional[Confirmed]) -> Result:
        def apply(record):
            if (record.get("lineClearance") or {}).get("status"):
                return Result.failure(ErrorKind.INVALID_TRANSITION, "Line clearance is already recorded.")
            if record.get("status") not in ("Issued", "In Progress"):
                return Result.failure(ErrorKind.INVALID_TRANSITION,
                                      f"Line clearance cannot be recorded on a {record.get('status')} batch.")
            record["lineClearance"] = {"status": True, "verifiedBy": user.full_name, "verifiedDate": _now()}
            return Result.success(record)

        return self.mutate(record_id, user, apply, "LINE_CLEARANCE", signature=signature, require_signature=True,
                           details="Line clearance verified")

    def outstanding(self, record: Dict) -> List[str]:
        """What still blocks completion, as readable lines."""
        problems = []
        if not (record.get("lineClearance") or {}).get("status"):
            problems.append("Line clearance not recorded")
        for step in _steps(record):
            if not step.get("signOffBy"):
                problems.append(f"{step.get('id')} ({step.get('operation')}) not signed")
            elif not step.get("checkedBy"):
                problems.append(f"{step.get('id')} ({step.get('operation')}) not verified")
        return problems

    def progress(self, record: Dict) -> float:
        steps = _steps(record)
        if not steps:
            return 0.0
        return sum(1 for s in steps if s.get("checkedBy")) / len(steps)

    def check_transition(self, record, transition):
        if transition.action == "complete":
            problems = self.outstanding(record)
            if problems:
                return "Batch cannot be completed: " + "; ".join(problems)
        return None
