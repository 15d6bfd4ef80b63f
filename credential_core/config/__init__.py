"""
Configuration module for the Credential Core service.

This module provides configuration settings for the Credential Core service.
"""

from credential_core.config.settings import settings, get_settings
from credential_core.config.jwt_config import (
    get_jwt_settings,
    get_token_expiry,
    get_grace_period,
    check_secret_key,
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    TOKEN_TYPE_BEARER,
)

__all__ = [
    "get_jwt_settings",
    "get_token_expiry",
    "get_grace_period",
    "check_secret_key",
    "TOKEN_TYPE_ACCESS",
    "TOKEN_TYPE_REFRESH",
    "TOKEN_TYPE_BEARER",
    "settings",
    "get_settings"
]
