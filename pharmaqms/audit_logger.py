# pharmaqms/audit_logger.py

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from .auth import User
from .ids import new_id
from .storage import KeyValueStore, load_collection, save_collection

logger = logging.getLogger(__name__)

AUDIT_STORAGE_KEY = "pharma_master_audit_trail_v6"
DEFAULT_MAX_ENTRIES = 5000

CSV_COLUMNS = [
    "id", "timestamp", "user", "action", "module", "details",
    "recordId", "previousValue", "newValue", "reasonForChange",
]


@dataclass(frozen=True)
class AuditLogEntry:
    id: str
    timestamp: str
    user: str
    action: str
    module: str
    details: str
    recordId: Optional[str] = None
    previousValue: Optional[str] = None
    newValue: Optional[str] = None
    reasonForChange: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditLogEntry":
        return cls(**{k: data.get(k) for k in CSV_COLUMNS})


def _snapshot(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str, sort_keys=True)


class AuditLogger:
    """
    Append-only ledger of who did what, when, to which record.

    Entries are stored newest first under a single key and the ledger is
    capped; once full, the oldest entries are evicted. Entries are never edited.
    """

    def __init__(self, store: KeyValueStore, max_entries: int = DEFAULT_MAX_ENTRIES,
                 storage_key: str = AUDIT_STORAGE_KEY):
        self.store = store
        self.max_entries = max_entries
        self.storage_key = storage_key

    def log_action(self, user: Union[User, str], action: str, module: str, details: str,
                   meta: Optional[Dict[str, Any]] = None) -> AuditLogEntry:
        """
        Records one entry.

        Args:
            user: acting user (or a bare username).
            action: e.g. "Approved Deviation".
            module: module name, e.g. "Deviations".
            details: human-readable description.
            meta: optional ``previousValue``, ``newValue``, ``reason`` and ``recordId``.

        Raises:
            StorageFailure: when the ledger cannot be read intact or written back.
        """
        meta = meta or {}
        entry = AuditLogEntry(
            id=new_id("LOG"),
            timestamp=datetime.now(timezone.utc).isoformat(),
            user=user.username if isinstance(user, User) else str(user),
            action=action,
            module=module,
            details=details,
            recordId=meta.get("recordId"),
            previousValue=_snapshot(meta.get("previousValue")),
            newValue=_snapshot(meta.get("newValue")),
            reasonForChange=meta.get("reason"),
        )

        with self.store.lock(self.storage_key):
            trail = load_collection(self.store, self.storage_key, strict=True)
            updated = [entry.to_dict()] + trail
            if len(updated) > self.max_entries:
                logger.debug(f"Audit ledger at capacity, evicting {len(updated) - self.max_entries} oldest entries")
                updated = updated[:self.max_entries]
            save_collection(self.store, self.storage_key, updated)
        return entry

    # Alias matching the record/query vocabulary used by the repositories.
    record = log_action

    def query(self) -> List[AuditLogEntry]:
        return [AuditLogEntry.from_dict(e) for e in load_collection(self.store, self.storage_key)]

    def query_by_record(self, record_id: str) -> List[AuditLogEntry]:
        return [e for e in self.query() if e.recordId == record_id]

    def search(self, text: str = "", module: Optional[str] = None, user: Optional[str] = None) -> List[AuditLogEntry]:
        text = (text or "").lower()
        results = []
        for entry in self.query():
            if module and entry.module != module:
                continue
            if user and entry.user != user:
                continue
            if text and not any(text in (v or "").lower() for v in (entry.action, entry.details, entry.recordId)):
                continue
            results.append(entry)
        return results

    def to_dataframe(self, entries: Optional[List[AuditLogEntry]] = None) -> pd.DataFrame:
        entries = self.query() if entries is None else entries
        if not entries:
            return pd.DataFrame(columns=CSV_COLUMNS)
        return pd.DataFrame([e.to_dict() for e in entries], columns=CSV_COLUMNS)

    def get_audit_log_csv(self, entries: Optional[List[AuditLogEntry]] = None) -> str:
        """
        Returns the audit log as a CSV string.
        """
        return self.to_dataframe(entries).to_csv(index=False)
