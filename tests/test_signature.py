import asyncio

import pytest

from pharmaqms.auth import PasswordVerifier
from pharmaqms.errors import ErrorKind
from pharmaqms.signature import Cancelled, Confirmed, GateState, SignatureGate, SignatureMeaning, request_signature


@pytest.fixture
def verifier():
    return PasswordVerifier({"admin": "pw"})


def test_wrong_credential_keeps_gate_open(admin, verifier):
    gate = SignatureGate("Approve D25-501", admin, verifier).open()
    res = gate.submit("nope")
    assert res.error == ErrorKind.CREDENTIAL_MISMATCH
    assert gate.is_open
    assert gate.failed_attempts == 1

    res = gate.submit("pw", reason="Investigation reviewed", meaning=SignatureMeaning.APPROVAL)
    assert res.ok
    outcome = res.value
    assert isinstance(outcome, Confirmed)
    assert outcome.signer == "admin"
    assert outcome.meaning == SignatureMeaning.APPROVAL
    assert outcome.reason == "Investigation reviewed"
    assert gate.state == GateState.CONFIRMED


def test_blank_reason_is_refused(admin, verifier):
    gate = SignatureGate("x", admin, verifier).open()
    assert gate.submit("pw", reason="   ").error == ErrorKind.VALIDATION
    assert gate.is_open


def test_terminal_gate_cannot_be_reused(admin, verifier):
    gate = SignatureGate("x", admin, verifier).open()
    gate.submit("pw")
    assert gate.submit("pw").error == ErrorKind.INVALID_TRANSITION
    assert isinstance(gate.cancel(), Confirmed)
    with pytest.raises(RuntimeError):
        gate.open()


def test_cancel_discards(admin, verifier):
    gate = SignatureGate("x", admin, verifier).open()
    assert isinstance(gate.cancel(), Cancelled)
    assert gate.submit("pw").error == ErrorKind.INVALID_TRANSITION


def test_unknown_user_never_verifies(analyst, verifier):
    gate = SignatureGate("x", analyst, verifier).open()
    assert gate.submit("pw").error == ErrorKind.CREDENTIAL_MISMATCH


def test_request_signature_cancels_when_collector_gives_up(admin, verifier):
    async def give_up(gate):
        gate.submit("wrong")

    outcome = asyncio.run(request_signature("x", admin, verifier, give_up))
    assert isinstance(outcome, Cancelled)


def test_request_signature_confirms(admin, verifier):
    async def collect(gate):
        gate.submit("pw", meaning=SignatureMeaning.TECHNICAL_RELEASE)

    outcome = asyncio.run(request_signature("Release COA", admin, verifier, collect))
    assert outcome.meaning == SignatureMeaning.TECHNICAL_RELEASE
