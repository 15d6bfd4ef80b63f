"""
SQLAlchemy models for the Credential Core service.

This module defines the data models for users, rotating refresh tokens, and
failed login attempts used by the Credential Core service.
"""
import datetime
import enum
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import (Boolean, Column, DateTime, Enum, ForeignKey, Index,
                        Integer, String, Text, UniqueConstraint)
from sqlalchemy.orm import relationship

from credential_core.database import Base


def utcnow() -> datetime.datetime:
    """Current UTC time as a naive datetime, the form stored in every column."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class UserRole(enum.Enum):
    """User role enumeration."""
    USER = "user"
    ADMIN = "admin"


class RevokeReason(enum.Enum):
    """Why a refresh token stopped being usable."""
    TOKEN_REUSE = "token_reuse"
    EXPIRED = "expired"
    LOGOUT = "logout"
    MANUAL = "manual"
    USER_INACTIVE = "user_inactive"


class FailureReason(enum.Enum):
    """Why a login attempt failed."""
    USER_NOT_FOUND = "user_not_found"
    INVALID_PASSWORD = "invalid_password"


class User(Base):
    """
    User record owned by the credential store.

    The authentication core only reads these rows and updates ``last_login_at``.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone_number = Column(String(20), nullable=True)
    role = Column(
        Enum(UserRole, values_callable=_enum_values, name="user_role"),
        default=UserRole.USER,
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")

    def to_public_dict(self) -> Dict[str, Any]:
        """
        Sanitized representation of the user for API responses.

        Returns:
            Dictionary without the password hash.
        """
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone_number": self.phone_number,
            "role": self.role.value if self.role else UserRole.USER.value,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        """String representation of the User object."""
        return f"<User(id={self.id}, email={self.email})>"


class RefreshToken(Base):
    """
    One generation of a refresh credential.

    Only the SHA-256 digest of the plaintext token is stored. Generations of
    one family are chained through ``previous_token_digest``.
    """
    __tablename__ = "refresh_tokens"
    __table_args__ = (
        UniqueConstraint("family_id", "generation", name="uq_refresh_tokens_family_generation"),
        Index("ix_refresh_tokens_previous_token_digest", "previous_token_digest", unique=True),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    family_id = Column(String(36), index=True, nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    token_digest = Column(String(64), unique=True, index=True, nullable=False)
    previous_token_digest = Column(String(64), nullable=True)
    generation = Column(Integer, default=1, nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)
    used_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    revoke_reason = Column(
        Enum(RevokeReason, values_callable=_enum_values, name="revoke_reason"),
        nullable=True,
    )
    ip_address = Column(String(45), nullable=True)  # IPv6 can be up to 45 chars
    user_agent = Column(Text, nullable=True)
    device_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="refresh_tokens")

    @property
    def is_revoked(self) -> bool:
        """Check if the token has been revoked."""
        return self.revoked_at is not None

    @property
    def has_been_used(self) -> bool:
        """Check if the token has already been exchanged for the next generation."""
        return self.used_at is not None

    def is_expired(self, now: Optional[datetime.datetime] = None) -> bool:
        """Check if the token is past its expiry."""
        return self.expires_at <= (now or utcnow())

    def is_live(self, now: Optional[datetime.datetime] = None) -> bool:
        """Check if this is a redeemable credential: unused, unexpired, unrevoked."""
        return not self.has_been_used and not self.is_revoked and not self.is_expired(now)

    def is_within_grace_period(
        self,
        grace_period: datetime.timedelta,
        now: Optional[datetime.datetime] = None,
    ) -> bool:
        """
        Check if the token was consumed recently enough to tolerate a replay.

        Args:
            grace_period: Length of the replay window.
            now: Reference time, defaults to the current UTC time.

        Returns:
            True if ``used_at`` lies within ``grace_period`` of ``now``.
        """
        if self.used_at is None:
            return False
        return (now or utcnow()) - self.used_at <= grace_period

    def __repr__(self) -> str:
        """String representation of the RefreshToken object."""
        return (
            f"<RefreshToken(id={self.id}, family={self.family_id}, "
            f"generation={self.generation}, user_id={self.user_id})>"
        )


class FailedLoginAttempt(Base):
    """
    Failed login attempt used for login rate limiting.

    Append-only; rows for an (email, IP) pair are deleted on the next
    successful login.
    """
    __tablename__ = "failed_login_attempts"
    __table_args__ = (
        Index("ix_failed_login_attempts_email_ip", "email", "ip_address"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), nullable=False)
    ip_address = Column(String(45), nullable=False)
    user_agent = Column(Text, nullable=True)
    reason = Column(
        Enum(FailureReason, values_callable=_enum_values, name="failure_reason"),
        nullable=True,
    )
    attempted_at = Column(DateTime, default=utcnow, index=True, nullable=False)

    def __repr__(self) -> str:
        """String representation of the FailedLoginAttempt object."""
        return f"<FailedLoginAttempt(email={self.email}, ip={self.ip_address}, reason={self.reason})>"
