"""
Centralized configuration management for the Credential Core service.

This module provides a centralized configuration system using Pydantic BaseSettings
for managing all application settings including JWT, refresh-token rotation,
login rate limiting, database, and API settings.

Every field can be overridden by an environment variable of the same name
(or an entry in a local ``.env`` file).
"""
import os
import secrets
from typing import Any, List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings class for all application configuration.

    This class uses Pydantic's BaseSettings to manage all application configuration
    settings with environment variable overrides and validation.
    """
    # Application settings
    APP_NAME: str = "Credential Core"
    APP_DESCRIPTION: str = "Credential issuance and session refresh with rotating refresh tokens"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # API settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = False
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    # Take the client IP from X-Forwarded-For; enable only behind a trusted proxy
    TRUST_PROXY_HEADERS: bool = False

    # CORS settings
    CORS_ORIGINS: List[str] = Field(default=["*"])

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS_ORIGINS from string to list."""
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # JWT settings
    JWT_SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "credential-core"
    JWT_AUDIENCE: str = "credential-core-clients"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Refresh token rotation settings
    REFRESH_GRACE_PERIOD_SECONDS: int = 120
    REFRESH_RATE_LIMIT_REQUESTS: int = 10
    REFRESH_RATE_LIMIT_PERIOD_SECONDS: int = 60

    # Login rate limiting settings
    LOGIN_MAX_ATTEMPTS: int = 5
    LOGIN_WINDOW_MINUTES: int = 15
    LOGIN_BLOCK_DURATION_MINUTES: int = 15

    # Password settings
    BCRYPT_ROUNDS: int = 12
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_MAX_LENGTH: int = 128

    # Database settings
    DATABASE_URL: Optional[str] = None
    DATABASE_ECHO: bool = False
    TOKEN_CLEANUP_ON_STARTUP: bool = True
    # Seconds between background sweeps of expired rows; 0 disables the sweep
    TOKEN_CLEANUP_INTERVAL_SECONDS: int = 3600

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_url(cls, v: Optional[str]) -> Any:
        """Set default SQLite database URL if not provided."""
        if isinstance(v, str):
            return v

        # Default to SQLite database in project root
        base_dir = os.path.dirname(os.path.dirname(os.path.dirname(__file__)))
        return f"sqlite:///{os.path.join(base_dir, 'credentials.db')}"

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        validate_default=True,
    )


# Create a global settings instance
settings = Settings()


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """
    Get the application settings.

    Returns:
        Settings: The application settings instance.
    """
    return settings
