import os
import tempfile

# The module-level app in main.py reads these on import.
os.environ.setdefault("NOTES_DATA_DIR", tempfile.mkdtemp(prefix="notes-data-"))
os.environ.setdefault("NOTES_LOG_DIR", tempfile.mkdtemp(prefix="notes-logs-"))

import pytest
from fastapi.testclient import TestClient

from notes_website.backend.clients import ClientContext
from notes_website.backend.config import Settings
from notes_website.backend.main import create_app
from notes_website.backend.services import IdentityService, TreeStore

EMAIL = "alice@notes.io"
PASSWORD = "secret123"


class FakeClock:
    def __init__(self, start=1_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def identity(tmp_path, clock):
    return IdentityService(tmp_path / "users.db", max_failed_attempts=3, lockout_seconds=60, clock=clock)


@pytest.fixture
def store(tmp_path):
    return TreeStore(tmp_path / "notes.db")


@pytest.fixture
def client_context(identity, store):
    identity.sign_up(EMAIL, PASSWORD)
    context = ClientContext("client_test", identity, store)
    yield context
    context.close()


@pytest.fixture
def signed_in(client_context):
    assert client_context.controller.login(EMAIL, PASSWORD)
    return client_context


@pytest.fixture
def api(tmp_path):
    settings = Settings(DATA_DIR=tmp_path / "data", LOG_DIR=tmp_path / "logs")
    with TestClient(create_app(settings)) as client:
        yield client
