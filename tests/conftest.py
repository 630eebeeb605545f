import json
from types import SimpleNamespace

import pytest

from pharmaqms.auth import User
from pharmaqms.config import AppConfig
from pharmaqms.engine import QMSEngine
from pharmaqms.signature import SignatureMeaning
from pharmaqms.storage import MemoryStore

PASSWORD = "s3cret"


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def admin():
    return User("admin", "QA Administrator", "admin", "Quality Assurance", "qa@example.com")


@pytest.fixture
def analyst():
    return User("analyst", "QC Analyst", "user", "Quality Control", "qc@example.com")


@pytest.fixture
def engine(store, admin, analyst):
    config = AppConfig(users=[admin, analyst])
    return QMSEngine.with_passwords(store, config, default_password=PASSWORD)


@pytest.fixture
def sign(engine):
    """Runs a signature gate to completion and hands back the Confirmed outcome."""

    def _sign(user, meaning=SignatureMeaning.APPROVAL, reason="Reviewed and approved"):
        gate = engine.signature_gate("test action", user, meaning)
        result = gate.submit(PASSWORD, reason=reason)
        assert result.ok, result.message
        return result.value

    return _sign


class FakeModels:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = 0

    def generate_content(self, model, contents, config):
        self.calls += 1
        reply = self.replies.pop(0) if self.replies else RuntimeError("no more replies")
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(text=reply if isinstance(reply, str) else json.dumps(reply))


@pytest.fixture
def fake_client():
    def _client(*replies):
        return SimpleNamespace(models=FakeModels(replies))

    return _client


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr("pharmaqms.utils.time.sleep", lambda _: None)
