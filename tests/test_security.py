"""
Tests for the security utilities.

This module tests password strength validation and bcrypt hashing provided
by the credential_core.security module.
"""
import pytest

from credential_core.errors import HashingError, ValidationError
from credential_core.security import PasswordHasher, PasswordValidator, generate_secure_token


@pytest.fixture
def validator():
    return PasswordValidator(min_length=8, max_length=128)


def test_valid_password(validator):
    """Test that a password meeting every rule is accepted."""
    is_valid, errors = validator.validate("Str0ng!Passw0rd")

    assert is_valid
    assert errors == []


@pytest.mark.parametrize(
    "password, message",
    [
        ("Sh0rt!", "at least 8 characters"),
        ("nouppercase1!", "uppercase letter"),
        ("NOLOWERCASE1!", "lowercase letter"),
        ("NoDigitsHere!", "one number"),
        ("NoSpecial123", "special character"),
        (" Padded1!pass", "leading or trailing spaces"),
        ("Aa1!" + "x" * 125, "must not exceed 128"),
    ],
)
def test_weak_passwords_are_rejected(validator, password, message):
    """Test each password rule individually."""
    is_valid, errors = validator.validate(password)

    assert not is_valid
    assert any(message in error for error in errors)


def test_password_may_not_contain_email(validator):
    """Test that the account email may not appear inside the password."""
    is_valid, errors = validator.validate("X1!alice@example.com", email="Alice@Example.com")

    assert not is_valid
    assert "Password cannot contain your email address" in errors


def test_validate_or_raise_joins_messages(validator):
    """Test that every failed rule is reported in one ValidationError."""
    with pytest.raises(ValidationError) as exc_info:
        validator.validate_or_raise("short")

    assert exc_info.value.status_code == 400
    assert "; " in exc_info.value.message


def test_hash_and_verify(hasher):
    """Test hashing and verifying a password."""
    digest = hasher.hash("Str0ng!Passw0rd")

    assert digest != "Str0ng!Passw0rd"
    assert digest.startswith("$2b$04$")
    assert hasher.verify("Str0ng!Passw0rd", digest)
    assert not hasher.verify("wrong-password", digest)


def test_hash_is_salted(hasher):
    """Test that hashing the same password twice gives different digests."""
    assert hasher.hash("Str0ng!Passw0rd") != hasher.hash("Str0ng!Passw0rd")


def test_verify_malformed_digest_raises(hasher):
    """Test that a corrupt stored digest is an infrastructure error, not a mismatch."""
    with pytest.raises(HashingError):
        hasher.verify("Str0ng!Passw0rd", "not-a-bcrypt-digest")


def test_needs_rehash_after_work_factor_change(hasher):
    """Test that digests made with fewer rounds are flagged for upgrade."""
    digest = hasher.hash("Str0ng!Passw0rd")

    assert not hasher.needs_rehash(digest)
    assert PasswordHasher(rounds=5).needs_rehash(digest)


def test_generate_secure_token():
    """Test secure token generation."""
    token = generate_secure_token(32)

    assert len(token) == 64
    assert token != generate_secure_token(32)
