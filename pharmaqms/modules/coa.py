# pharmaqms/modules/coa.py

from datetime import date
from typing import Dict, List, Optional

from ..auth import User
from ..compliance import COMPLYING, compliance_statement
from ..errors import ErrorKind, Result
from ..ids import new_display_number
from ..repository import ModuleSpec, RecordRepository
from ..signature import Confirmed, SignatureMeaning
from ..utils import add_years
from ..workflow import StatusMachine, Transition

COA_TYPES = ("Finished Product", "Raw Material", "Water Analysis", "Microbiology", "Utilities", "API")
SPEC_CATEGORIES = ("Descriptive", "Physical", "Chemical", "Microbiological")
LINE_STATUSES = ("pass", "fail", "Pending", "N/A")
DEFAULT_SHELF_LIFE_YEARS = 2

MACHINE = StatusMachine(
    states=("Draft", "Released", "Archived"),
    initial="Draft",
    terminal=("Archived",),
    transitions=[
        Transition("release", ("Draft",), "Released", "COA_RELEASED",
                   signature=SignatureMeaning.TECHNICAL_RELEASE),
        Transition("archive", ("Released",), "Archived", "COA_ARCHIVED", admin_only=True),
    ],
)

SPEC = ModuleSpec(
    name="Laboratory",
    label="COA",
    storage_key="master_coa_records_pro_v3",
    id_prefix="coa",
    number_prefix="COA",
    machine=MACHINE,
    required_fields=("productName", "batchNumber", "category", "specs"),
    search_fields=("number", "productName", "batchNumber", "category"),
    protected_fields=("specs", "complianceStatement", "releasedBy", "releaseDate", "issueDate"),
    create_action="COA_DRAFTED",
)


def line_item(item: Dict) -> Dict:
    """Normalises one test line: t (test), s (specification), r (result), status, category."""
    status = item.get("status") or "Pending"
    return {
        "t": item.get("t", ""),
        "s": item.get("s", ""),
        "r": item.get("r") or "PENDING",
        "status": status if status in LINE_STATUSES else "Pending",
        "category": item.get("category") if item.get("category") in SPEC_CATEGORIES else "Physical",
    }


class COARepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(SPEC, store, audit, bus)

    def make_number(self, sequence_hint: int, payload: Dict) -> str:
        return new_display_number(f"COA-{payload.get('batchNumber', 'NA')}", sequence_hint, year_digits=0, width=3)

    def validate(self, payload: Dict):
        is_valid, errors, warnings = super().validate(payload)
        if payload.get("category") and payload["category"] not in COA_TYPES:
            errors.append(f"COA type must be one of: {', '.join(COA_TYPES)}")
        return not errors, errors, warnings

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        payload = dict(payload)
        payload["specs"] = [line_item(i) for i in payload.get("specs") or []]
        payload.setdefault("storageCondition", "Store below 25°C")
        return super().create(payload, user, action,
                              details or f"Draft COA for {payload.get('productName')} batch {payload.get('batchNumber')}")

    def draft_from_monograph(self, product: str, batch: str, category: str, user: User, ai,
                             **fields) -> Result:
        """Seeds the line items from an AI monograph lookup; falls back to an empty draft."""
        tests = ai.monograph_tests(product, category) if ai else None
        specs = [dict(t, r="PENDING", status="Pending") for t in tests or []]
        res = self.create(dict(fields, productName=product, batchNumber=batch, category=category,
                               specs=specs or [{"t": "Appearance", "s": "Complies with description"}]), user)
        if res and tests is None:
            return Result(ok=True, value=res.value, messages=res.messages + (
                "Monograph lookup unavailable; enter the test specifications manually.",))
        return res

    @staticmethod
    def compliance(record: Dict) -> str:
        return compliance_statement(record.get("specs") or [])

    def update_result(self, record_id: str, index: int, user: User, result: Optional[str] = None,
                      status: Optional[str] = None) -> Result:
        if status is not None and status not in LINE_STATUSES:
            return Result.failure(ErrorKind.VALIDATION, f"Line status must be one of: {', '.join(LINE_STATUSES)}")

        def apply(record):
            if record.get("status") != "Draft":
                return Result.failure(ErrorKind.INVALID_TRANSITION,
                                      f"{record.get('number')} is {record.get('status')}; results are locked.")
            specs = [dict(s) for s in record.get("specs") or []]
            if not 0 <= index < len(specs):
                return Result.failure(ErrorKind.VALIDATION, f"Line item {index + 1} does not exist.")
            if result is not None:
                specs[index]["r"] = result
            if status is not None:
                specs[index]["status"] = status
            record["specs"] = specs
            return Result.success(record)

        return self.mutate(record_id, user, apply, "COA_RESULT_ENTERED", details=f"Line item {index + 1} updated")

    def check_update(self, record):
        if record.get("status") != "Draft":
            return f"{record.get('number')} is {record.get('status')}; only a Draft certificate can be edited."
        return None

    def check_transition(self, record, transition):
        if transition.action == "release" and self.compliance(record) != COMPLYING:
            failing = [s.get("t") for s in record.get("specs") or [] if s.get("status") != "pass"]
            return f"Batch is NOT COMPLYING; unresolved tests: {', '.join(failing)}"
        return None

    def release(self, record_id: str, user: User, signature: Optional[Confirmed],
                expected_version: Optional[int] = None, today: Optional[date] = None) -> Result:
        """Signs and releases the certificate, stamping release and expiry dates."""
        record = self.find(record_id)
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND, f"COA '{record_id}' not found.")
        today = today or date.today()
        changes = {
            "releasedBy": user.full_name,
            "releaseDate": today.isoformat(),
            "issueDate": today.isoformat(),
            "mfgDate": record.get("mfgDate") or today.isoformat(),
            "expDate": record.get("expDate") or add_years(today, DEFAULT_SHELF_LIFE_YEARS).isoformat(),
            "analyzedBy": record.get("analyzedBy") or user.full_name,
            "complianceStatement": COMPLYING,
        }
        return self._transition(record_id, "release", user, signature, expected_version, changes)

    def by_category(self, category: Optional[str] = None) -> List[Dict]:
        if not category or category == "All":
            return self.list()
        return self.list(predicate=lambda c: c.get("category") == category)
