"""Shared fixtures: a temporary SQLite database and cheap Argon2 parameters."""

import itertools

import pytest

from loransems.core.auth.authenticator import Authenticator
from loransems.core.auth.hashing import CredentialHasher
from loransems.core.auth.session_control import SessionAuthority
from loransems.core.config import EMSConfig, PathConfig
from loransems.db import open_backend
from loransems.security.audit import AuditError, AuditTrail
from loransems.web.app import create_app

PASSWORD = "Correct-Horse-9"


class MemoryAuditSink:
    def __init__(self):
        self.events = []

    def append(self, event):
        self.events.append(event)

    def actions(self):
        return [e.action for e in self.events]


class FailingAuditSink:
    def append(self, event):
        raise AuditError("system_logs is unavailable")


@pytest.fixture
def hasher():
    return CredentialHasher(memory_cost=1024, time_cost=1, parallelism=1)


@pytest.fixture
def backend(tmp_path):
    backend = open_backend(str(tmp_path / "ems.db"))
    backend.database.initialize()
    return backend


@pytest.fixture
def make_user(backend, hasher):
    """Create an employee + user row; returns the stored UserRecord."""
    counter = itertools.count(1)

    def _make(
        username,
        password=PASSWORD,
        role="employee",
        location_id=1,
        department_id=1,
        status="active",
        password_hash=None,
    ):
        n = next(counter)
        employee_id = backend.credentials.create_employee(
            f"EMP{n:03d}", "Test", f"User{n}", f"user{n}@lorans.test",
            location_id, department_id, "Call Agent",
        )
        user_id = backend.credentials.create_user(
            employee_id,
            username,
            password_hash or hasher.hash(password),
            role=role,
            status=status,
        )
        return backend.credentials.get_user(user_id)

    return _make


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def audit(audit_sink):
    return AuditTrail(audit_sink)


@pytest.fixture
def authority(audit):
    return SessionAuthority(audit, timeout_seconds=3600)


@pytest.fixture
def authenticator(backend, hasher, authority, audit):
    return Authenticator(backend.credentials, hasher, authority, audit, max_login_attempts=5)


@pytest.fixture
def config(tmp_path):
    return EMSConfig(paths=PathConfig(data_dir=tmp_path, log_dir=tmp_path / "logs"))


@pytest.fixture
def app(config, backend, hasher):
    app = create_app(config, backend=backend, hasher=hasher)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
