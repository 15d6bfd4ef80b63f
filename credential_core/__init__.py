"""
Credential Core.

This package provides credential issuance and session refresh including:
- User registration with secure password storage
- Login with per (email, IP) rate limiting
- JWT access tokens and rotating opaque refresh tokens
- Refresh token family reuse detection with a retry grace period
"""

__version__ = "0.1.0"

# Export config constants first to avoid circular imports
from credential_core.config import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
)

# Export errors next as every layer raises them
from credential_core.errors import (
    CredentialError,
    ValidationError,
    ConflictError,
    UnauthorizedError,
    InvalidTokenError,
    TokenExpiredError,
    ForbiddenError,
    TooManyRequestsError,
    InternalError,
)

# Export database functions next as they're needed by models
from credential_core.database import (
    Base,
    Database,
    init_db,
    get_database,
)

# Export models next as they're needed by the services
from credential_core.models import (
    User,
    UserRole,
    RefreshToken,
    RevokeReason,
    FailedLoginAttempt,
    FailureReason,
)

# Export services last as they depend on the above modules
from credential_core.context import RequestContext
from credential_core.token import TokenIssuer, digest_token
from credential_core.rotation import RotationResult, TokenRotationEngine
from credential_core.rate_limit import LoginRateLimiter, RateLimiter
from credential_core.auth import AuthService, LoginResult, default_auth_service
from credential_core.maintenance import clean_expired_tokens

__all__ = [
    # Models
    "User",
    "UserRole",
    "RefreshToken",
    "RevokeReason",
    "FailedLoginAttempt",
    "FailureReason",

    # Database
    "Base",
    "Database",
    "init_db",
    "get_database",

    # Errors
    "CredentialError",
    "ValidationError",
    "ConflictError",
    "UnauthorizedError",
    "InvalidTokenError",
    "TokenExpiredError",
    "ForbiddenError",
    "TooManyRequestsError",
    "InternalError",

    # Services
    "RequestContext",
    "TokenIssuer",
    "digest_token",
    "RotationResult",
    "TokenRotationEngine",
    "LoginRateLimiter",
    "RateLimiter",
    "AuthService",
    "LoginResult",
    "default_auth_service",
    "clean_expired_tokens",

    # Config constants
    "TOKEN_TYPE_ACCESS",
    "TOKEN_TYPE_REFRESH",
]
