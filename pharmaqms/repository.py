# pharmaqms/repository.py

"""
Generic record repository.

Every module (deviations, CAPA, risk register, ...) is one RecordRepository
configured by a ModuleSpec. The persisted collection is the source of truth:
each operation re-reads it, computes the new collection, writes it back whole
and appends exactly one audit entry. Expected refusals come back as a failed
Result; storage failures propagate as StorageFailure.
"""

import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from .audit_logger import AuditLogger
from .auth import User
from .compliance import validate_record_data
from .errors import ErrorKind, Result, StorageFailure
from .events import RECORD_CREATED, RECORD_DELETED, RECORD_TRANSITIONED, RECORD_UPDATED, EventBus
from .ids import new_display_number, new_id
from .references import RecordRef
from .signature import Confirmed
from .storage import KeyValueStore, load_collection, save_collection
from .workflow import StatusMachine, Transition

logger = logging.getLogger(__name__)

# Fields owned by the repository; payloads and updates cannot set them.
RESERVED_FIELDS = frozenset({"id", "number", "status", "createdAt", "createdBy", "version", "updatedAt", "signatures"})


def serialized(method):
    """Holds the collection's store lock for the whole read, check and write of ``method``."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.store.lock(self.spec.storage_key):
            return method(self, *args, **kwargs)
    return wrapper


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ModuleSpec:
    name: str
    label: str
    storage_key: str
    id_prefix: str
    number_prefix: str
    machine: Optional[StatusMachine] = None
    required_fields: Tuple[str, ...] = ()
    min_lengths: Mapping[str, int] = field(default_factory=dict)
    search_fields: Tuple[str, ...] = ()
    # Written only by the module's own operations, never by update() or transition changes.
    protected_fields: Tuple[str, ...] = ()
    create_action: Optional[str] = None
    number_offset: int = 1
    year_digits: int = 2
    number_width: int = 0
    number_sep: str = "-"
    defaults: Mapping[str, Any] = field(default_factory=dict)
    max_records: Optional[int] = None

    def display_number(self, sequence_hint: int, payload: Dict) -> str:
        return new_display_number(self.number_prefix, sequence_hint, offset=self.number_offset,
                                  year_digits=self.year_digits, width=self.number_width,
                                  sep=self.number_sep)


class RecordRepository:
    """CRUD and lifecycle operations for one module's collection."""

    def __init__(self, spec: ModuleSpec, store: KeyValueStore, audit: AuditLogger,
                 bus: Optional[EventBus] = None):
        self.spec = spec
        self.store = store
        self.audit = audit
        self.bus = bus
        self._snapshot: List[Dict] = []

    # --- persistence boundaries ---

    def reload(self, strict: bool = False) -> List[Dict]:
        """
        Re-reads the collection; the snapshot is only a read-through copy.
        Write paths read ``strict`` so a corrupt collection raises StorageFailure.
        """
        self._snapshot = load_collection(self.store, self.spec.storage_key, strict=strict)
        return list(self._snapshot)

    def save(self, records: List[Dict]) -> None:
        save_collection(self.store, self.spec.storage_key, records)
        self._snapshot = list(records)

    @property
    def snapshot(self) -> List[Dict]:
        return list(self._snapshot)

    def _commit(self, records: List[Dict], user: User, action: str, details: str,
                meta: Dict[str, Any]) -> None:
        """
        Writes the collection and then its audit entry. If the audit append
        fails, the collection's previous serialized value is put back so the
        store never holds an unaudited mutation.
        """
        key = self.spec.storage_key
        prior = self.store.get(key)
        self.save(records)
        try:
            self.audit.log_action(user, action, self.spec.name, details, meta)
        except StorageFailure as e:
            logger.error(f"Audit append failed for '{action}' in {self.spec.name}, rolling back {key}: {e}")
            if prior is None:
                self.store.remove(key)
            else:
                self.store.set(key, prior)
            self._snapshot = load_collection(self.store, key)
            raise

    def _publish(self, event_type: str, record: Dict, user: User, action: str,
                 transition: Optional[Transition] = None) -> None:
        if self.bus is None:
            return
        self.bus.publish(event_type, {
            "module": self.spec.name,
            "record": record,
            "user": user,
            "action": action,
            "notification": self.notification_for(event_type, record, transition),
        })

    def notification_for(self, event_type: str, record: Dict,
                         transition: Optional[Transition] = None) -> Optional[Dict[str, str]]:
        """Module hook: the notification (category, priority, title, message) an event raises, if any."""
        return None

    # --- reads ---

    @staticmethod
    def _index(records: List[Dict], record_id: str) -> int:
        for i, r in enumerate(records):
            if r.get("id") == record_id:
                return i
        return -1

    def find(self, record_id: str) -> Optional[Dict]:
        records = self.reload()
        i = self._index(records, record_id)
        return records[i] if i >= 0 else None

    def get(self, record_id: str) -> Result:
        record = self.find(record_id)
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND, f"{self.spec.label} '{record_id}' not found.")
        return Result.success(record)

    def find_by_number(self, code: str) -> Optional[Dict]:
        return next((r for r in self.reload() if r.get("number") == code), None)

    def resolve(self, ref) -> Result:
        """Dereferences a weak reference; the target may no longer exist."""
        ref = RecordRef.from_value(ref, self.spec.name)
        record = self.find_by_number(ref.code) if ref else None
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND, f"No {self.spec.label} with code '{ref}'.")
        return Result.success(record)

    def list(self, text: str = "", status: Optional[str] = None,
             predicate: Optional[Callable[[Dict], bool]] = None) -> List[Dict]:
        """Newest first. ``text`` matches any search field, case-insensitively."""
        needle = (text or "").strip().lower()
        results = []
        for record in self.reload():
            if status and record.get("status") != status:
                continue
            if needle and not any(needle in str(record.get(f) or "").lower() for f in self.spec.search_fields):
                continue
            if predicate and not predicate(record):
                continue
            results.append(record)
        return results

    def status_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.reload():
            status = record.get("status") or "Logged"
            counts[status] = counts.get(status, 0) + 1
        return counts

    def to_dataframe(self, records: Optional[List[Dict]] = None, columns: Optional[Iterable[str]] = None) -> pd.DataFrame:
        records = self.reload() if records is None else records
        df = pd.DataFrame(records)
        if columns:
            df = df.reindex(columns=list(columns))
        return df

    # --- writes ---

    def make_number(self, sequence_hint: int, payload: Dict) -> str:
        return self.spec.display_number(sequence_hint, payload)

    def validate(self, payload: Dict) -> Tuple[bool, List[str], List[str]]:
        return validate_record_data(payload, self.spec.required_fields, self.spec.min_lengths)

    @serialized
    def create(self, payload: Dict, user: User, action: Optional[str] = None,
               details: Optional[str] = None) -> Result:
        is_valid, errors, warnings = self.validate(payload)
        if not is_valid:
            return Result.failure(ErrorKind.VALIDATION, *errors)

        records = self.reload(strict=True)
        record = dict(self.spec.defaults)
        record.update({k: v for k, v in payload.items() if k not in RESERVED_FIELDS})
        record["id"] = new_id(self.spec.id_prefix)
        record["number"] = self.make_number(len(records), payload)
        if self.spec.machine is not None:
            record["status"] = self.spec.machine.initial
        record["createdAt"] = _now()
        record["createdBy"] = user.username
        record["version"] = 1

        updated = [record] + records
        if self.spec.max_records and len(updated) > self.spec.max_records:
            updated = updated[:self.spec.max_records]

        action = action or self.spec.create_action or f"Created {self.spec.label}"
        self._commit(updated, user, action, details or f"{record['number']} created",
                     {"recordId": record["id"], "newValue": record})
        logger.info(f"{user.username} created {self.spec.label} {record['number']}")
        self._publish(RECORD_CREATED, record, user, action)
        return Result(ok=True, value=record, messages=tuple(warnings))

    def _load_for_write(self, record_id: str, expected_version: Optional[int]):
        records = self.reload(strict=True)
        i = self._index(records, record_id)
        if i < 0:
            return records, i, Result.failure(ErrorKind.NOT_FOUND, f"{self.spec.label} '{record_id}' not found.")
        current = records[i].get("version", 1)
        if expected_version is not None and expected_version != current:
            return records, i, Result.failure(
                ErrorKind.CONFLICT,
                f"{records[i].get('number')} was changed by someone else (version {current}, "
                f"you had {expected_version}). Reload and try again.")
        return records, i, None

    @staticmethod
    def _check_signature(signature, user: User) -> Optional[Result]:
        if not isinstance(signature, Confirmed):
            return Result.failure(ErrorKind.SIGNATURE_REQUIRED, "This action requires an electronic signature.")
        if signature.signer != user.username:
            return Result.failure(ErrorKind.CREDENTIAL_MISMATCH,
                                  "The electronic signature belongs to a different user.")
        return None

    @staticmethod
    def _stamp(record: Dict, action: str, signature: Optional[Confirmed]) -> None:
        record["version"] = record.get("version", 1) + 1
        record["updatedAt"] = _now()
        if signature is not None:
            record["signatures"] = list(record.get("signatures") or []) + [{
                "action": action,
                "meaning": signature.meaning.value,
                "signer": signature.signer,
                "reason": signature.reason,
                "signedAt": signature.signed_at,
            }]

    def check_transition(self, record: Dict, transition: Transition) -> Optional[str]:
        """Module hook for field-level preconditions; returns a refusal message."""
        return None

    def _refuse_protected(self, fields: Iterable[str]) -> Optional[Result]:
        blocked = sorted(set(fields) & set(self.spec.protected_fields))
        if blocked:
            return Result.failure(ErrorKind.VALIDATION,
                                  f"{', '.join(blocked)} can only be changed through the {self.spec.label} workflow.")
        return None

    def transition(self, record_id: str, action: str, user: User, signature: Optional[Confirmed] = None,
                   expected_version: Optional[int] = None, changes: Optional[Dict] = None) -> Result:
        """
        Moves a record along its status machine. Signature-gated actions must be
        passed the Confirmed outcome of a completed Signature Gate. ``changes``
        may patch payload fields but never the module's protected ones.
        """
        refusal = self._refuse_protected(changes or {})
        if refusal:
            return refusal
        return self._transition(record_id, action, user, signature, expected_version, changes)

    @serialized
    def _transition(self, record_id: str, action: str, user: User, signature: Optional[Confirmed],
                    expected_version: Optional[int], changes: Optional[Dict]) -> Result:
        if self.spec.machine is None:
            return Result.failure(ErrorKind.INVALID_TRANSITION, f"{self.spec.label} records have no lifecycle.")
        records, i, refusal = self._load_for_write(record_id, expected_version)
        if refusal:
            return refusal
        record = records[i]

        res = self.spec.machine.transition(record, action, user)
        if not res:
            logger.info(f"Refused '{action}' on {record.get('number')} by {user.username}: {res.message}")
            return res
        updated, t = res.value

        if t.signature is not None:
            refusal = self._check_signature(signature, user)
            if refusal:
                return refusal
        problem = self.check_transition(record, t)
        if problem:
            return Result.failure(ErrorKind.INVALID_TRANSITION, problem)

        for k, v in (changes or {}).items():
            if k not in RESERVED_FIELDS:
                updated[k] = v
        self._stamp(updated, action, signature if t.signature is not None else None)
        records[i] = updated

        details = f"{updated.get('number')}: {record.get('status')} -> {updated['status']}"
        if t.signature is not None:
            details += f" (signed: {signature.meaning.value})"
        meta = {
            "recordId": record_id,
            "previousValue": {"status": record.get("status")},
            "newValue": {"status": updated["status"]},
        }
        if t.signature is not None:
            meta["reason"] = signature.reason
        self._commit(records, user, t.label, details, meta)
        self._publish(RECORD_TRANSITIONED, updated, user, action, t)
        return Result.success(updated)

    @serialized
    def mutate(self, record_id: str, user: User, change: Callable[[Dict], Result], action: str,
               details: Optional[str] = None, reason: Optional[str] = None,
               expected_version: Optional[int] = None, signature: Optional[Confirmed] = None,
               allow_terminal: bool = False, require_signature: bool = False) -> Result:
        """
        Applies ``change`` to a copy of the record. ``change`` returns a Result
        holding the new record, or a failure which is passed back untouched.
        """
        records, i, refusal = self._load_for_write(record_id, expected_version)
        if refusal:
            return refusal
        record = records[i]
        machine = self.spec.machine
        if machine is not None and machine.is_terminal(record.get("status")) and not allow_terminal:
            return Result.failure(ErrorKind.INVALID_TRANSITION,
                                  f"{record.get('number')} is {record.get('status')} and can no longer be changed.")
        if require_signature:
            refusal = self._check_signature(signature, user)
            if refusal:
                return refusal

        res = change(dict(record))
        if not res:
            return res
        updated = dict(res.value)
        for k in RESERVED_FIELDS - {"version", "updatedAt", "signatures"}:
            if k in record:
                updated[k] = record[k]
        self._stamp(updated, action, signature)
        records[i] = updated

        changed = sorted(k for k in set(record) | set(updated)
                         if k not in RESERVED_FIELDS and record.get(k) != updated.get(k))
        meta = {
            "recordId": record_id,
            "previousValue": {k: record.get(k) for k in changed},
            "newValue": {k: updated.get(k) for k in changed},
        }
        if signature is not None:
            meta["reason"] = signature.reason
        elif reason:
            meta["reason"] = reason
        self._commit(records, user, action, details or f"{updated.get('number')}: {', '.join(changed) or 'no fields'} updated", meta)
        self._publish(RECORD_UPDATED, updated, user, action)
        return Result.success(updated)

    def check_update(self, record: Dict) -> Optional[str]:
        """Module hook: refuses payload edits in states where the record is locked."""
        return None

    def update(self, record_id: str, changes: Dict, user: User, reason: Optional[str] = None,
               expected_version: Optional[int] = None, action: Optional[str] = None) -> Result:
        """Patches payload fields. Bookkeeping fields are dropped and protected fields are refused."""
        patch = {k: v for k, v in (changes or {}).items() if k not in RESERVED_FIELDS}
        if not patch:
            return Result.failure(ErrorKind.VALIDATION, "Nothing to update.")
        refusal = self._refuse_protected(patch)
        if refusal:
            return refusal

        def apply(record):
            problem = self.check_update(record)
            if problem:
                return Result.failure(ErrorKind.INVALID_TRANSITION, problem)
            record.update(patch)
            is_valid, errors, _ = self.validate(record)
            return Result.success(record) if is_valid else Result.failure(ErrorKind.VALIDATION, *errors)

        return self.mutate(record_id, user, apply, action or f"Updated {self.spec.label}",
                           reason=reason, expected_version=expected_version)

    @serialized
    def delete(self, record_id: str, user: User, expected_version: Optional[int] = None) -> Result:
        if not user.is_admin:
            return Result.failure(ErrorKind.UNAUTHORIZED, f"Only administrators may delete {self.spec.label} records.")
        records, i, refusal = self._load_for_write(record_id, expected_version)
        if refusal:
            return refusal
        removed = records.pop(i)
        action = f"Deleted {self.spec.label}"
        self._commit(records, user, action, f"{removed.get('number')} deleted",
                     {"recordId": record_id, "previousValue": removed})
        self._publish(RECORD_DELETED, removed, user, action)
        return Result.success(None)
