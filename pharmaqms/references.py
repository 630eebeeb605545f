# pharmaqms/references.py

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class RecordRef:
    """
    Weak reference to another module's record by its display code.

    No referential integrity is enforced: the referenced record may have been
    deleted, so resolving a reference can fail with NOT_FOUND.
    """
    kind: str
    code: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "code": self.code}

    @classmethod
    def from_value(cls, value, default_kind: str = "") -> Optional["RecordRef"]:
        """Accepts a stored dict, a bare code string (legacy data) or None."""
        if not value:
            return None
        if isinstance(value, RecordRef):
            return value
        if isinstance(value, dict):
            return cls(kind=value.get("kind", default_kind), code=value.get("code", ""))
        return cls(kind=default_kind, code=str(value))

    def __str__(self) -> str:
        return self.code
