"""
Shared pytest fixtures for the FileVault test suite.

This module provides:
- Hypothesis profiles for property-based tests
- A controllable clock shared by the session issuer and the share manager
- A fully wired VaultServices container on a temporary SQLite database
- An HTTP client bound to that container
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from hypothesis import HealthCheck, settings

from services import build_services
from storage import LocalDiskStorage

settings.register_profile(
    "default",
    max_examples=50,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)
settings.register_profile("dev", max_examples=10, deadline=None)
settings.load_profile("default")

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
SESSION_TTL_SECONDS = 3600


class FakeClock:
    """Naive-UTC clock that only moves when a test says so."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def utc(self) -> datetime:
        return self.now

    def epoch(self) -> float:
        return self.now.replace(tzinfo=timezone.utc).timestamp()

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(tmp_path):
    backend = LocalDiskStorage(base_dir=str(tmp_path / "uploads"), timeout=5)
    yield backend
    backend.close()


@pytest.fixture
def services(tmp_path, storage, clock):
    container = build_services(
        database_url=f"sqlite:///{tmp_path / 'vault.db'}",
        storage=storage,
        secret_key=TEST_SECRET,
        bcrypt_rounds=4,
        session_ttl_seconds=SESSION_TTL_SECONDS,
        session_clock=clock.epoch,
        share_clock=clock.utc,
    )
    yield container
    container.engine.dispose()


@pytest.fixture
def db(services):
    session = services.session_factory()
    yield session
    session.close()


@pytest.fixture
def user_id(services, db):
    return services.credentials.register(db, "owner@x.com", "owner-pw")


@pytest.fixture
def other_user_id(services, db):
    return services.credentials.register(db, "other@x.com", "other-pw")


@pytest.fixture
def client(services):
    from main import create_app

    app = create_app(services=services, sweep_interval=0)
    with TestClient(app) as test_client:
        yield test_client


def auth_headers(client, email: str, password: str, register: bool = True) -> dict:
    """Register (optionally) and log in; returns the Authorization header the client would send."""
    if register:
        response = client.post("/auth/register", json={"email": email, "password": password})
        assert response.status_code == 201, response.text
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    body = response.json()
    return {"Authorization": f"{body['tokenType']} {body['token']}"}
