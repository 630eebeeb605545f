# pharmaqms/workflow.py

"""
Generic status state machine.

Each record kind is configured with a table of transitions instead of
hand-written status handling. The machine is pure: it computes the next
record state and never touches storage or the audit ledger; the repository
pairs every successful transition with exactly one audit entry.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from .auth import User
from .errors import ErrorKind, Result
from .signature import SignatureMeaning


@dataclass(frozen=True)
class Transition:
    action: str
    sources: Tuple[str, ...]
    target: str
    label: str
    admin_only: bool = False
    signature: Optional[SignatureMeaning] = None
    stamp_field: Optional[str] = None


class StatusMachine:

    def __init__(self, states: Iterable[str], initial: str, terminal: Iterable[str],
                 transitions: Iterable[Transition], role_gated: bool = True):
        self.states = tuple(states)
        self.initial = initial
        self.terminal = frozenset(terminal)
        self.role_gated = role_gated
        self._by_action: Dict[str, List[Transition]] = {}
        self._table: Dict[Tuple[str, str], Transition] = {}

        if initial not in self.states:
            raise ValueError(f"Initial status '{initial}' is not a declared state")
        for t in transitions:
            for status in t.sources + (t.target,):
                if status not in self.states:
                    raise ValueError(f"Transition '{t.action}' references undeclared status '{status}'")
            for source in t.sources:
                if source in self.terminal:
                    raise ValueError(f"Transition '{t.action}' leaves terminal status '{source}'")
                if (source, t.action) in self._table:
                    raise ValueError(f"Duplicate transition for ({source}, {t.action})")
                self._table[(source, t.action)] = t
            siblings = self._by_action.setdefault(t.action, [])
            if siblings and (siblings[0].admin_only, siblings[0].signature) != (t.admin_only, t.signature):
                raise ValueError(f"Action '{t.action}' declared with inconsistent guard or signature")
            siblings.append(t)

    @property
    def actions(self) -> List[str]:
        return list(self._by_action)

    def lookup(self, status: str, action: str) -> Optional[Transition]:
        return self._table.get((status, action))

    def definition(self, action: str) -> Optional[Transition]:
        candidates = self._by_action.get(action)
        return candidates[0] if candidates else None

    def requires_signature(self, action: str) -> Optional[SignatureMeaning]:
        t = self.definition(action)
        return t.signature if t else None

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal

    def is_authorized(self, action: str, user: User) -> bool:
        t = self.definition(action)
        if t is None or not self.role_gated or not t.admin_only:
            return True
        return user is not None and user.is_admin

    def available_actions(self, status: str, user: Optional[User] = None) -> List[Transition]:
        """Transitions legal from ``status``; filtered by role when a user is given."""
        result = [t for (source, _), t in self._table.items() if source == status]
        if user is not None:
            result = [t for t in result if self.is_authorized(t.action, user)]
        return result

    def transition(self, record: Dict, action: str, user: User, today: Optional[date] = None) -> Result:
        """
        Returns a new record dict with the updated status, or a failed Result:
        UNAUTHORIZED when the role guard rejects the user, INVALID_TRANSITION
        when ``(record.status, action)`` has no mapping.
        """
        if self.definition(action) is None:
            return Result.failure(ErrorKind.INVALID_TRANSITION, f"Unknown action '{action}'.")
        if not self.is_authorized(action, user):
            return Result.failure(ErrorKind.UNAUTHORIZED, f"Only administrators may '{action}'.")

        current = record.get("status")
        t = self.lookup(current, action)
        if t is None:
            return Result.failure(ErrorKind.INVALID_TRANSITION,
                                  f"Cannot '{action}' a record in status '{current}'.")

        updated = dict(record)
        updated["status"] = t.target
        if t.stamp_field:
            updated[t.stamp_field] = (today or date.today()).isoformat()
        return Result.success((updated, t))
