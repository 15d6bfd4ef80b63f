"""
Test fixtures for the Credential Core service.

This module provides pytest fixtures for database, service, and API testing,
including in-memory database setup, a controllable clock, test users, and a
test client.
"""
import datetime
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("TRUST_PROXY_HEADERS", "true")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-with-enough-entropy-0123456789")

import pytest
from fastapi.testclient import TestClient

from credential_core.auth import AuthService
from credential_core.context import RequestContext
from credential_core.database import Database, get_database
from credential_core.models import User, UserRole, utcnow
from credential_core.rate_limit import refresh_rate_limiter
from credential_core.security import PasswordHasher
from credential_core.token import TokenIssuer
from main import app

TEST_PASSWORD = "Str0ng!Passw0rd"
TEST_EMAIL = "alice@example.com"


class FakeClock:
    """Clock returning a fixed time until advanced."""

    def __init__(self, start=None):
        self.now = start or utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += datetime.timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def database():
    """Create a fresh in-memory test database."""
    db = Database("sqlite://", echo=False)
    db.create_all()
    yield db
    db.drop_all()
    db.dispose()


@pytest.fixture(scope="function")
def clock():
    """Controllable clock shared by the services under test."""
    return FakeClock()


@pytest.fixture(scope="session")
def hasher():
    """Fast password hasher for tests."""
    return PasswordHasher(rounds=4)


@pytest.fixture(scope="function")
def issuer(clock):
    """Token issuer driven by the test clock."""
    return TokenIssuer(secret_key="issuer-test-secret", clock=clock)


@pytest.fixture(scope="function")
def auth_service(database, hasher, issuer, clock):
    """Authentication service wired to the test database and clock."""
    return AuthService(db=database, hasher=hasher, issuer=issuer, clock=clock)


@pytest.fixture(scope="function")
def engine(auth_service):
    """Rotation engine of the test authentication service."""
    return auth_service.rotation_engine


@pytest.fixture(scope="function")
def context():
    """Request context of a typical client."""
    return RequestContext(ip_address="10.0.0.1", user_agent="pytest-agent", device_id="device-1")


@pytest.fixture(scope="function")
def test_user(database, hasher):
    """Create an active test user directly in the database."""
    with database.session_scope() as session:
        user = User(
            email=TEST_EMAIL,
            password_hash=hasher.hash(TEST_PASSWORD),
            first_name="Alice",
            last_name="Example",
            role=UserRole.USER,
            is_active=True,
        )
        session.add(user)
    return user


@pytest.fixture(scope="function")
def inactive_user(database, hasher):
    """Create an inactive test user."""
    with database.session_scope() as session:
        user = User(
            email="inactive@example.com",
            password_hash=hasher.hash(TEST_PASSWORD),
            first_name="Ina",
            last_name="Active",
            role=UserRole.USER,
            is_active=False,
        )
        session.add(user)
    return user


@pytest.fixture(scope="session")
def password():
    """Password of the test users."""
    return TEST_PASSWORD


@pytest.fixture(scope="function")
def logged_in(auth_service, test_user, context):
    """Log the test user in and return the LoginResult."""
    return auth_service.login(TEST_EMAIL, TEST_PASSWORD, context)


@pytest.fixture(scope="function")
def client():
    """Create a FastAPI test client backed by a fresh in-memory database."""
    refresh_rate_limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    refresh_rate_limiter.reset()


@pytest.fixture(scope="function")
def app_database(client):
    """Database installed by the application on startup."""
    return get_database()


@pytest.fixture(scope="function")
def api_user(client):
    """Register a user through the API and return its credentials."""
    credentials = {"email": TEST_EMAIL, "password": TEST_PASSWORD}
    response = client.post(
        "/auth/register",
        json={**credentials, "firstName": "Alice", "lastName": "Example"},
    )
    assert response.status_code == 201, response.text
    return {**credentials, "id": response.json()["id"]}
