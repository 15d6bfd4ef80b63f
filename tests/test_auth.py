"""
Tests for the authentication service.

This module tests registration, login, login rate limiting, logout and user
lookup provided by the credential_core.auth module.
"""
from unittest.mock import patch

import pytest

from credential_core.auth import INVALID_CREDENTIALS, REGISTRATION_FAILED, AuthService
from credential_core.context import RequestContext
from credential_core.errors import (ConflictError, HashingError, InternalError,
                                    TooManyRequestsError, UnauthorizedError, ValidationError)
from credential_core.models import (FailedLoginAttempt, FailureReason, RefreshToken,
                                    RevokeReason, User)
from credential_core.security import PasswordHasher


def _count(database, model):
    with database.session_scope() as session:
        return session.query(model).count()


def test_register_user(auth_service, database, password):
    """Test successful user registration."""
    user = auth_service.register(
        email="  Bob@Example.COM ",
        password=password,
        first_name=" Bob ",
        last_name="Builder",
        phone_number="+14155550123",
    )

    assert user["email"] == "bob@example.com"
    assert user["first_name"] == "Bob"
    assert user["phone_number"] == "+14155550123"
    assert user["role"] == "user"
    assert user["is_active"] is True
    assert "password_hash" not in user

    with database.session_scope() as session:
        stored = session.get(User, user["id"])
        assert stored.password_hash != password
        assert auth_service.hasher.verify(password, stored.password_hash)


def test_register_duplicate_email_is_case_insensitive(auth_service, database, test_user, password):
    """Test that an email differing only in case is a duplicate."""
    with pytest.raises(ConflictError) as exc_info:
        auth_service.register("ALICE@example.com", password, "Alice", "Again")

    assert exc_info.value.status_code == 409
    assert exc_info.value.message == "An account with this email address already exists"
    assert _count(database, User) == 1


def test_register_weak_password(auth_service, database):
    """Test that a weak password is rejected before anything is stored."""
    with pytest.raises(ValidationError) as exc_info:
        auth_service.register("bob@example.com", "weak", "Bob", "Builder")

    assert "at least 8 characters" in exc_info.value.message
    assert _count(database, User) == 0


def test_register_hashing_failure(auth_service, database, password):
    """Test that a hashing failure surfaces as a generic registration error."""
    with patch.object(auth_service.hasher, "hash", side_effect=HashingError("boom")):
        with pytest.raises(InternalError) as exc_info:
            auth_service.register("bob@example.com", password, "Bob", "Builder")

    assert exc_info.value.status_code == 500
    assert exc_info.value.message == REGISTRATION_FAILED
    assert _count(database, User) == 0


def test_login_success(auth_service, database, test_user, password, context, clock):
    """Test that login issues both tokens and starts a new family."""
    result = auth_service.login("Alice@Example.com", password, context)

    assert result.user.id == test_user.id
    assert result.expires_in == 900
    payload = auth_service.issuer.verify_access_token(result.access_token)
    assert payload["sub"] == test_user.id

    with database.session_scope() as session:
        record = session.query(RefreshToken).one()
        assert record.generation == 1
        assert record.token_digest == auth_service.issuer.digest(result.refresh_token)
        assert record.ip_address == "10.0.0.1"
        assert record.device_id == "device-1"
        assert session.get(User, test_user.id).last_login_at == clock()


def test_each_login_starts_a_new_family(auth_service, database, test_user, password, context):
    """Test that two logins are two independent sessions."""
    auth_service.login(test_user.email, password, context)
    auth_service.login(test_user.email, password, context)

    with database.session_scope() as session:
        families = {record.family_id for record in session.query(RefreshToken).all()}
    assert len(families) == 2


def test_unknown_user_and_wrong_password_look_the_same(auth_service, database, test_user, context):
    """Test that login failures do not reveal whether the email exists."""
    with pytest.raises(UnauthorizedError) as unknown:
        auth_service.login("nobody@example.com", "Wr0ng!password", context)
    with pytest.raises(UnauthorizedError) as wrong:
        auth_service.login(test_user.email, "Wr0ng!password", context)

    assert unknown.value.message == wrong.value.message == INVALID_CREDENTIALS
    assert unknown.value.status_code == wrong.value.status_code == 401

    with database.session_scope() as session:
        reasons = {attempt.reason for attempt in session.query(FailedLoginAttempt).all()}
    assert reasons == {FailureReason.USER_NOT_FOUND, FailureReason.INVALID_PASSWORD}


def test_inactive_user_cannot_login(auth_service, database, inactive_user, password, context):
    """Test that an inactive account gets the generic error without a recorded failure."""
    with pytest.raises(UnauthorizedError) as exc_info:
        auth_service.login(inactive_user.email, password, context)

    assert exc_info.value.message == INVALID_CREDENTIALS
    assert _count(database, FailedLoginAttempt) == 0
    assert _count(database, RefreshToken) == 0


def test_login_rate_limit(auth_service, test_user, password, context):
    """Test that the sixth attempt is refused even with the right password."""
    for _ in range(5):
        with pytest.raises(UnauthorizedError):
            auth_service.login(test_user.email, "Wr0ng!password", context)

    with pytest.raises(TooManyRequestsError) as exc_info:
        auth_service.login(test_user.email, password, context)

    assert exc_info.value.status_code == 429
    assert exc_info.value.message == "Too many failed login attempts. Please try again in 15 minutes."
    assert exc_info.value.retry_after == 900


def test_login_rate_limit_is_per_ip(auth_service, test_user, password, context):
    """Test that a blocked pair does not lock the account out from other addresses."""
    for _ in range(5):
        with pytest.raises(UnauthorizedError):
            auth_service.login(test_user.email, "Wr0ng!password", context)

    other_ip = RequestContext(ip_address="10.0.0.2")
    assert auth_service.login(test_user.email, password, other_ip).access_token


def test_login_rate_limit_window_expires(auth_service, test_user, password, context, clock):
    """Test that failures older than the window no longer count."""
    for _ in range(5):
        with pytest.raises(UnauthorizedError):
            auth_service.login(test_user.email, "Wr0ng!password", context)

    clock.advance(minutes=15, seconds=1)
    assert auth_service.login(test_user.email, password, context).access_token


def test_successful_login_clears_failures(auth_service, database, test_user, password, context):
    """Test that a successful login resets the failure counter."""
    for _ in range(4):
        with pytest.raises(UnauthorizedError):
            auth_service.login(test_user.email, "Wr0ng!password", context)

    auth_service.login(test_user.email, password, context)
    assert _count(database, FailedLoginAttempt) == 0

    for _ in range(4):
        with pytest.raises(UnauthorizedError):
            auth_service.login(test_user.email, "Wr0ng!password", context)
    assert auth_service.login(test_user.email, password, context).access_token


def test_login_upgrades_outdated_hash(database, issuer, clock, test_user, password, context):
    """Test that a digest with an old work factor is replaced on login."""
    service = AuthService(db=database, hasher=PasswordHasher(rounds=5), issuer=issuer, clock=clock)

    service.login(test_user.email, password, context)

    with database.session_scope() as session:
        digest = session.get(User, test_user.id).password_hash
    assert digest.startswith("$2b$05$")
    assert service.hasher.verify(password, digest)


def test_login_infrastructure_failure(auth_service, test_user, password, context):
    """Test that an unexpected failure is reported as a generic error."""
    with patch.object(auth_service.issuer, "issue_access_token", side_effect=RuntimeError("boom")):
        with pytest.raises(InternalError):
            auth_service.login(test_user.email, password, context)


def test_logout_revokes_every_family(auth_service, database, test_user, password, context):
    """Test that logout ends the sessions on all devices."""
    first = auth_service.login(test_user.email, password, context)
    auth_service.login(test_user.email, password, context)
    auth_service.refresh(first.refresh_token, context)

    revoked = auth_service.logout(test_user.id, context)

    assert revoked == 3
    with database.session_scope() as session:
        records = session.query(RefreshToken).all()
        assert all(record.revoke_reason == RevokeReason.LOGOUT for record in records)


def test_get_user(auth_service, test_user, inactive_user):
    """Test fetching the user behind an access token."""
    assert auth_service.get_user(test_user.id).email == test_user.email

    with pytest.raises(UnauthorizedError, match="User not found"):
        auth_service.get_user("missing")
    with pytest.raises(UnauthorizedError, match="inactive"):
        auth_service.get_user(inactive_user.id)
