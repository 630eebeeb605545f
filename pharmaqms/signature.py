# pharmaqms/signature.py

"""
Electronic signature gate (21 CFR Part 11 style).

A committing action (approve, release, sign-off, ...) builds a fresh gate,
the operator supplies a meaning, a contemporaneous reason and their
credential, and only a ``Confirmed`` outcome lets the pending mutation commit.
Cancelling discards everything; nothing is written by the gate itself.

    Idle -> AwaitingInput -> Confirmed | Cancelled
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from .auth import CredentialVerifier, User
from .errors import ErrorKind, Result

logger = logging.getLogger(__name__)

DEFAULT_REASON = ("I certify that I have reviewed this record and found it to be accurate "
                  "and compliant with site SOPs.")


class SignatureMeaning(str, Enum):
    AUTHORSHIP = "Authorship"
    REVIEW = "Review"
    APPROVAL = "Approval"
    VERIFICATION = "Verification"
    WITNESSING = "Witnessing"
    TECHNICAL_RELEASE = "Technical Release"
    LINE_CLEARANCE = "Line Clearance"


class GateState(str, Enum):
    IDLE = "Idle"
    AWAITING_INPUT = "AwaitingInput"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class Confirmed:
    reason: str
    meaning: SignatureMeaning
    signer: str
    signed_at: str


@dataclass(frozen=True)
class Cancelled:
    pass


SignatureOutcome = Union[Confirmed, Cancelled]


class SignatureGate:
    """One signing interaction. Not reusable once it reaches a terminal state."""

    def __init__(self, action_description: str, user: User, verifier: CredentialVerifier,
                 default_meaning: SignatureMeaning = SignatureMeaning.AUTHORSHIP,
                 default_reason: str = DEFAULT_REASON):
        self.action_description = action_description
        self.user = user
        self.verifier = verifier
        self.meaning = SignatureMeaning(default_meaning)
        self.reason = default_reason
        self.state = GateState.IDLE
        self.failed_attempts = 0
        self._outcome: Optional[SignatureOutcome] = None
        self._done: Optional[asyncio.Event] = None

    @property
    def outcome(self) -> Optional[SignatureOutcome]:
        return self._outcome

    @property
    def is_open(self) -> bool:
        return self.state == GateState.AWAITING_INPUT

    @property
    def is_terminal(self) -> bool:
        return self.state in (GateState.CONFIRMED, GateState.CANCELLED)

    def open(self) -> "SignatureGate":
        if self.state != GateState.IDLE:
            raise RuntimeError(f"Signature gate for '{self.action_description}' is {self.state.value}, "
                               "build a new gate for each committing action")
        self.state = GateState.AWAITING_INPUT
        return self

    def submit(self, credential: str, reason: Optional[str] = None,
               meaning: Optional[SignatureMeaning] = None) -> Result:
        """
        Attempts to confirm. A wrong credential keeps the gate open for retry.
        """
        if self.state != GateState.AWAITING_INPUT:
            return Result.failure(ErrorKind.INVALID_TRANSITION,
                                  f"Signature gate is {self.state.value}, not awaiting input.")
        if reason is not None:
            self.reason = reason
        if meaning is not None:
            self.meaning = SignatureMeaning(meaning)
        if not (self.reason or "").strip():
            return Result.failure(ErrorKind.VALIDATION, "A reason for signing is required.")

        if not self.verifier(self.user, credential):
            self.failed_attempts += 1
            logger.warning(f"E-signature credential mismatch for {self.user.username} on "
                           f"'{self.action_description}' (attempt {self.failed_attempts})")
            return Result.failure(ErrorKind.CREDENTIAL_MISMATCH,
                                  "Invalid e-signature credentials. Verification failed per 21 CFR Part 11.")

        self._finish(GateState.CONFIRMED, Confirmed(
            reason=self.reason.strip(),
            meaning=self.meaning,
            signer=self.user.username,
            signed_at=datetime.now(timezone.utc).isoformat(),
        ))
        return Result.success(self._outcome)

    def cancel(self) -> SignatureOutcome:
        """Idempotent; cancelling a terminal gate leaves its outcome unchanged."""
        if not self.is_terminal:
            self._finish(GateState.CANCELLED, Cancelled())
        return self._outcome

    def _finish(self, state: GateState, outcome: SignatureOutcome) -> None:
        self.state = state
        self._outcome = outcome
        if self._done is not None:
            self._done.set()

    async def wait(self) -> SignatureOutcome:
        """Suspends until the gate is confirmed or cancelled."""
        if self.is_terminal:
            return self._outcome
        if self._done is None:
            self._done = asyncio.Event()
        await self._done.wait()
        return self._outcome


async def request_signature(action_description: str, user: User, verifier: CredentialVerifier,
                            collect: Callable[[SignatureGate], Awaitable[None]],
                            default_meaning: SignatureMeaning = SignatureMeaning.AUTHORSHIP) -> SignatureOutcome:
    """
    Runs a full gate interaction. ``collect`` drives the gate with operator
    input (``submit`` / ``cancel``); if it returns without reaching an outcome
    the gate is cancelled.
    """
    gate = SignatureGate(action_description, user, verifier, default_meaning).open()
    try:
        await collect(gate)
    finally:
        if not gate.is_terminal:
            gate.cancel()
    return gate.outcome
