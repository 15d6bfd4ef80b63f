"""
Security utilities for the Credential Core service.

This module provides password hashing and verification, password strength
validation, and secure random token generation.
"""
import logging
import re
import secrets
from typing import List, Optional, Pattern, Tuple

from passlib.context import CryptContext

from credential_core.config import settings
from credential_core.errors import HashingError, ValidationError

# Configure logging
logger = logging.getLogger(__name__)

# Security constants
SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{}|;:,.<>?"


class PasswordValidator:
    """
    Password strength validator.

    Validates passwords against configurable strength requirements.
    """

    def __init__(
        self,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None,
        require_uppercase: bool = True,
        require_lowercase: bool = True,
        require_digit: bool = True,
        require_special: bool = True,
    ):
        """
        Initialize the password validator with configurable requirements.

        Args:
            min_length: Minimum password length, defaults to PASSWORD_MIN_LENGTH.
            max_length: Maximum password length, defaults to PASSWORD_MAX_LENGTH.
            require_uppercase: Whether to require uppercase letters.
            require_lowercase: Whether to require lowercase letters.
            require_digit: Whether to require at least one digit.
            require_special: Whether to require at least one special character.
        """
        self.min_length = min_length or settings.PASSWORD_MIN_LENGTH
        self.max_length = max_length or settings.PASSWORD_MAX_LENGTH
        self.require_uppercase = require_uppercase
        self.require_lowercase = require_lowercase
        self.require_digit = require_digit
        self.require_special = require_special

        # Regex patterns for validation
        self.uppercase_pattern: Pattern = re.compile(r"[A-Z]")
        self.lowercase_pattern: Pattern = re.compile(r"[a-z]")
        self.digit_pattern: Pattern = re.compile(r"\d")
        self.special_pattern: Pattern = re.compile(f"[{re.escape(SPECIAL_CHARACTERS)}]")

    # PUBLIC_INTERFACE
    def validate(self, password: str, email: Optional[str] = None) -> Tuple[bool, List[str]]:
        """
        Validate a password against the configured requirements.

        Args:
            password: Password to validate.
            email: Optional email of the account; the password may not contain it.

        Returns:
            Tuple containing:
                - Boolean indicating if the password is valid.
                - List of validation error messages (empty if valid).
        """
        errors = []

        if len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters long")

        if len(password) > self.max_length:
            errors.append(f"Password must not exceed {self.max_length} characters")

        if password != password.strip():
            errors.append("Password cannot have leading or trailing spaces")

        if self.require_uppercase and not self.uppercase_pattern.search(password):
            errors.append("Password must contain at least one uppercase letter")

        if self.require_lowercase and not self.lowercase_pattern.search(password):
            errors.append("Password must contain at least one lowercase letter")

        if self.require_digit and not self.digit_pattern.search(password):
            errors.append("Password must contain at least one number")

        if self.require_special and not self.special_pattern.search(password):
            errors.append(f"Password must contain at least one special character ({SPECIAL_CHARACTERS})")

        if email and email.lower() in password.lower():
            errors.append("Password cannot contain your email address")

        return len(errors) == 0, errors

    # PUBLIC_INTERFACE
    def validate_or_raise(self, password: str, email: Optional[str] = None) -> None:
        """
        Validate a password and raise an exception if it's invalid.

        Args:
            password: Password to validate.
            email: Optional email of the account.

        Raises:
            ValidationError: If the password does not meet the requirements.
        """
        is_valid, errors = self.validate(password, email)
        if not is_valid:
            raise ValidationError("; ".join(errors))


class PasswordHasher:
    """
    Slow adaptive password hashing.

    Wraps a bcrypt ``CryptContext`` with a fixed work factor. The produced
    digests embed the algorithm and its parameters.
    """

    def __init__(self, rounds: Optional[int] = None):
        """
        Initialize the password hasher.

        Args:
            rounds: bcrypt work factor, defaults to BCRYPT_ROUNDS.
        """
        self.rounds = rounds or settings.BCRYPT_ROUNDS
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=self.rounds,
            bcrypt__min_rounds=self.rounds,
        )

    # PUBLIC_INTERFACE
    def hash(self, plaintext: str) -> str:
        """
        Hash a password using bcrypt.

        Args:
            plaintext: Plain text password to hash.

        Returns:
            Hashed password string.

        Raises:
            HashingError: If the hashing primitive fails.
        """
        try:
            return self._context.hash(plaintext)
        except Exception as e:
            logger.error(f"Password hashing failed: {type(e).__name__}")
            raise HashingError("Password hashing failed") from e

    # PUBLIC_INTERFACE
    def verify(self, plaintext: str, digest: str) -> bool:
        """
        Verify a password against a hash in constant time.

        Args:
            plaintext: Plain text password to verify.
            digest: Hashed password to compare against.

        Returns:
            True if the password matches the hash, False otherwise.

        Raises:
            HashingError: If the stored digest is malformed.
        """
        try:
            return self._context.verify(plaintext, digest)
        except (ValueError, TypeError) as e:
            logger.error(f"Malformed password digest: {str(e)}")
            raise HashingError("Stored password digest is malformed") from e

    # PUBLIC_INTERFACE
    def needs_rehash(self, digest: str) -> bool:
        """
        Check if a password hash needs to be updated.

        This is useful when the hashing algorithm or parameters have changed.

        Args:
            digest: Hashed password to check.

        Returns:
            True if the password should be rehashed, False otherwise.
        """
        return self._context.needs_update(digest)


# PUBLIC_INTERFACE
def generate_secure_token(length: int = 32) -> str:
    """
    Generate a secure random token.

    Args:
        length: Length of the token in bytes.

    Returns:
        Secure random token as a hexadecimal string.
    """
    return secrets.token_hex(length)


# Create default instances for common use
default_password_validator = PasswordValidator()
default_password_hasher = PasswordHasher()
