# pharmaqms/errors.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Tuple


class ErrorKind(str, Enum):
    """Refusal categories a caller can tell apart."""
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"
    CREDENTIAL_MISMATCH = "credential_mismatch"
    SIGNATURE_REQUIRED = "signature_required"
    CONFLICT = "conflict"
    STORAGE_FAILURE = "storage_failure"
    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"


class QMSError(Exception):
    """Base class for unexpected failures raised by the engine."""


class StorageFailure(QMSError):
    """The key-value store could not read or persist a value (quota, disk, permissions)."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Storage failure on '{key}': {reason}")
        self.key = key
        self.reason = reason


class CollaboratorUnavailable(QMSError):
    """The generative-AI collaborator failed, timed out or is not configured."""


@dataclass(frozen=True)
class Result:
    """
    Outcome of a repository operation.

    Expected refusals (validation, authorization, transition, lookup) come back
    as a failed Result rather than an exception, so the UI can show the right
    message and decide whether the operator should retry, escalate or abandon.
    """
    ok: bool
    value: Any = None
    error: ErrorKind = None
    messages: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, *messages: str) -> "Result":
        return cls(ok=False, error=kind, messages=tuple(messages))

    @property
    def message(self) -> str:
        return "; ".join(self.messages)

    def __bool__(self) -> bool:
        return self.ok
