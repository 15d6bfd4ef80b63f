"""
Error taxonomy for the Credential Core service.

Every error raised on purpose by the service layer derives from
``CredentialError`` and carries the HTTP status it maps to. The application
exception handlers surface these verbatim; anything else is reduced to a
generic internal error.
"""
from typing import Optional


class CredentialError(Exception):
    """Base exception for credential and session errors."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(CredentialError):
    """Malformed or unacceptable input (400)."""
    status_code = 400


class ConflictError(CredentialError):
    """Duplicate registration (409)."""
    status_code = 409


class UnauthorizedError(CredentialError):
    """Bad credentials, or an invalid or expired token (401)."""
    status_code = 401


class InvalidTokenError(UnauthorizedError):
    """Exception raised when a token is invalid, revoked or unusable."""
    pass


class TokenExpiredError(InvalidTokenError):
    """Exception raised when a token has expired."""
    pass


class ForbiddenError(CredentialError):
    """Confirmed token-family compromise (403)."""
    status_code = 403


class TooManyRequestsError(CredentialError):
    """Login or refresh rate limit exceeded (429)."""
    status_code = 429

    def __init__(self, message: str, *, retry_after: Optional[int] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class InternalError(CredentialError):
    """Hashing or persistence infrastructure failure (500)."""
    status_code = 500


class HashingError(InternalError):
    """Exception raised when the password hashing primitive fails."""
    pass
