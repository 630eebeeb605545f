# pharmaqms/modules/inventory.py

from datetime import date
from typing import Dict, List, Optional

from ..auth import User
from ..errors import ErrorKind, Result
from ..repository import ModuleSpec, RecordRepository
from ..signature import SignatureMeaning
from ..workflow import StatusMachine, Transition

CATEGORIES = ("API", "Excipient", "Packaging", "Consumable")

MACHINE = StatusMachine(
    states=("Quarantine", "Approved", "Rejected", "Expired"),
    initial="Quarantine",
    terminal=("Rejected", "Expired"),
    transitions=[
        Transition("approve", ("Quarantine",), "Approved", "Released Material from Quarantine",
                   admin_only=True, signature=SignatureMeaning.TECHNICAL_RELEASE, stamp_field="releaseDate"),
        Transition("reject", ("Quarantine",), "Rejected", "Rejected Material", admin_only=True),
        Transition("expire", ("Quarantine", "Approved"), "Expired", "Expired Material"),
    ],
)

SPEC = ModuleSpec(
    name="Inventory",
    label="Material",
    storage_key="pharma_inventory_v2",
    id_prefix="MAT",
    number_prefix="MAT",
    year_digits=0,
    number_width=3,
    machine=MACHINE,
    required_fields=("name", "lotNumber", "manufacturerName"),
    search_fields=("number", "name", "lotNumber", "manufacturerName"),
    protected_fields=("stock",),
    create_action="Received Material",
    defaults={"category": "API", "unit": "kg", "stock": 0, "reorderLevel": 0,
              "storageCondition": "Store below 25°C"},
)


def _number(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class InventoryRepository(RecordRepository):

    def __init__(self, store, audit, bus=None):
        super().__init__(SPEC, store, audit, bus)

    def validate(self, payload: Dict):
        is_valid, errors, warnings = super().validate(payload)
        if errors:
            # GDP wording used on the intake form
            errors = ["GDP Compliance: Material Name, Lot Number, and Manufacturer details are mandatory."] + errors
        if payload.get("category") and payload["category"] not in CATEGORIES:
            errors.append(f"Category must be one of: {', '.join(CATEGORIES)}")
        return not errors, errors, warnings

    def create(self, payload: Dict, user: User, action=None, details=None) -> Result:
        payload = dict(payload)
        for key in ("stock", "reorderLevel"):
            if key in payload:
                payload[key] = _number(payload[key])
        return super().create(payload, user, action,
                              details or f"{payload.get('name')} lot {payload.get('lotNumber')} "
                                         f"from {payload.get('manufacturerName')} received into quarantine")

    def low_stock(self) -> List[Dict]:
        return self.list(predicate=lambda i: _number(i.get("stock")) <= _number(i.get("reorderLevel")))

    def expired_items(self, today: Optional[date] = None) -> List[Dict]:
        today_str = (today or date.today()).isoformat()
        return self.list(predicate=lambda i: i.get("status") in ("Quarantine", "Approved")
                         and bool(i.get("expiryDate")) and i["expiryDate"] < today_str)

    def adjust_stock(self, record_id: str, delta: float, user: User, reason: str) -> Result:
        """Issues (negative delta) or receives stock; every movement is audited with its reason."""
        if not (reason or "").strip():
            return Result.failure(ErrorKind.VALIDATION, "A reason is required for stock adjustments.")

        def apply(record):
            if record.get("status") != "Approved" and delta < 0:
                return Result.failure(ErrorKind.INVALID_TRANSITION,
                                      f"Material in {record.get('status')} cannot be issued.")
            new_stock = _number(record.get("stock")) + float(delta)
            if new_stock < 0:
                return Result.failure(ErrorKind.VALIDATION,
                                      f"Insufficient stock: {record.get('stock')} {record.get('unit')} available.")
            record["stock"] = new_stock
            return Result.success(record)

        return self.mutate(record_id, user, apply, "Adjusted Stock", reason=reason,
                           details=f"Stock adjusted by {delta:+g}")
