# tests/conftest.py
import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Settings are read at import time, so point the app at a throwaway DB first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENFORCE_AUDIT_IMMUTABILITY"] = "false"
os.environ["PSEUDONYM_SALT"] = "test-salt"

from assurance.database import Base, get_db  # noqa: E402
from assurance.dependencies import get_artifact_storage  # noqa: E402
from assurance.errors import StorageError  # noqa: E402
from assurance.main import app  # noqa: E402
from assurance.services.event_bus import EventBus, event_bus  # noqa: E402
from assurance.services.storage import LocalArtifactStorage  # noqa: E402


class FakeStorage:
    """Records deleted keys; keys listed in fail_keys raise StorageError."""

    def __init__(self, fail_keys=()):
        self.deleted = []
        self.fail_keys = set(fail_keys)

    def delete(self, storage_key):
        if storage_key in self.fail_keys:
            raise StorageError(f"object store unavailable for {storage_key}")
        self.deleted.append(storage_key)


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def bus():
    """A private bus whose emitted events are collected in bus.seen."""
    b = EventBus()
    b.seen = []
    b.on_all(b.seen.append)
    return b


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def failing_storage():
    def _make(*fail_keys):
        return FakeStorage(fail_keys=fail_keys)
    return _make


@pytest.fixture
def published():
    """Events published on the process-wide bus during the test."""
    seen = []
    event_bus.on_all(seen.append)
    yield seen
    event_bus.clear()


@pytest.fixture
def client(engine, tmp_path):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_artifact_storage] = lambda: LocalArtifactStorage(str(tmp_path))
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def _headers(tenant="t1", user="user-1", role="TENANT_ADMIN"):
        headers = {"X-Tenant-ID": tenant}
        if user:
            headers["X-User-ID"] = user
        if role:
            headers["X-User-Role"] = role
        return headers
    return _headers
