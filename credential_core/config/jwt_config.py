"""
JWT configuration settings for the Credential Core service.

This module derives the token issuance parameters from the application
settings so that the token layer never reads the environment directly.
"""
import logging
from datetime import timedelta
from typing import Dict, Optional, Union

from credential_core.config.settings import Settings, settings

logger = logging.getLogger(__name__)

# Token settings
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"
TOKEN_TYPE_BEARER = "Bearer"

# Refresh tokens are 32 random bytes, hex-encoded in transit
REFRESH_TOKEN_BYTES = 32


# PUBLIC_INTERFACE
def get_jwt_settings() -> Dict[str, Union[str, int]]:
    """
    Get JWT configuration settings.

    Returns:
        Dictionary containing JWT configuration settings.
    """
    return {
        "secret_key": settings.JWT_SECRET_KEY,
        "algorithm": settings.JWT_ALGORITHM,
        "issuer": settings.JWT_ISSUER,
        "audience": settings.JWT_AUDIENCE,
        "access_token_expire_minutes": settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES,
        "refresh_token_expire_days": settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS,
    }


# PUBLIC_INTERFACE
def get_token_expiry(token_type: str) -> timedelta:
    """
    Get token expiry time based on token type.

    Args:
        token_type: Type of token (access or refresh).

    Returns:
        Timedelta representing token expiry time.
    """
    if token_type == TOKEN_TYPE_ACCESS:
        return timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    elif token_type == TOKEN_TYPE_REFRESH:
        return timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)
    else:
        raise ValueError(f"Invalid token type: {token_type}")


# PUBLIC_INTERFACE
def get_grace_period() -> timedelta:
    """
    Get the window during which a consumed refresh token may be replayed.

    Returns:
        Timedelta representing the refresh grace period.
    """
    return timedelta(seconds=settings.REFRESH_GRACE_PERIOD_SECONDS)


# PUBLIC_INTERFACE
def check_secret_key(config: Optional[Settings] = None) -> bool:
    """
    Check that the JWT signing key was configured explicitly.

    Without JWT_SECRET_KEY every process signs with its own random key, so
    tokens do not verify across workers and die with the process. That is
    tolerated with a warning in development and refused anywhere else.

    Args:
        config: Settings to check, defaults to the application settings.

    Returns:
        True if the key was configured, False if a random key is in use.

    Raises:
        RuntimeError: If the key is missing outside APP_ENV=development.
    """
    config = config or settings
    if "JWT_SECRET_KEY" in config.model_fields_set:
        return True

    if config.APP_ENV != "development":
        raise RuntimeError(f"JWT_SECRET_KEY must be set when APP_ENV is {config.APP_ENV!r}")

    logger.warning(
        "JWT_SECRET_KEY is not set, signing with a random per-process key. "
        "Tokens will not verify across workers or after a restart."
    )
    return False
