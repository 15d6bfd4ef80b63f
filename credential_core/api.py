"""
API router and Pydantic models for the Credential Core service.

This module provides the FastAPI router with the register, login, refresh
and logout endpoints and the Pydantic models for request/response
validation. JSON bodies use camelCase field names.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Cookie, Depends, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from credential_core.auth import AuthService
from credential_core.config import TOKEN_TYPE_BEARER
from credential_core.context import RequestContext
from credential_core.dependencies import (enforce_refresh_rate_limit, get_auth_service,
                                          get_current_user, get_request_context,
                                          run_blocking)
from credential_core.errors import ValidationError
from credential_core.models import User

logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(tags=["authentication"])

LOGOUT_MESSAGE = "Successfully logged out from all devices"


class CamelModel(BaseModel):
    """Base model serializing to camelCase JSON while accepting either spelling."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Pydantic models for request/response
class RegisterRequest(CamelModel):
    """Request model for user registration."""
    email: EmailStr = Field(..., max_length=255, description="Email address")
    password: str = Field(..., description="Password")
    first_name: str = Field(..., min_length=1, max_length=100, description="First name")
    last_name: str = Field(..., min_length=1, max_length=100, description="Last name")
    phone_number: Optional[str] = Field(
        None,
        max_length=20,
        pattern=r"^\+?[1-9]\d{1,14}$",
        description="Phone number in E.164 format",
    )

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        """Lower-case and trim the email address."""
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_names(cls, v):
        """Trim surrounding whitespace from names."""
        return v.strip() if isinstance(v, str) else v


class LoginRequest(CamelModel):
    """Request model for user login."""
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=1, description="User password")


class RefreshRequest(CamelModel):
    """Request model for token refresh."""
    refresh_token: Optional[str] = Field(None, description="Refresh token")


class UserResponse(CamelModel):
    """Response model for a user; never contains the password hash."""
    id: str
    email: str
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    role: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(**user.to_public_dict())


class TokenResponse(CamelModel):
    """Response model for login and refresh."""
    access_token: str = Field(..., description="JWT access token")
    refresh_token: Optional[str] = Field(None, description="Refresh token, absent on a grace-period replay")
    token_type: str = Field(TOKEN_TYPE_BEARER, description="Token type")
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    user: UserResponse


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str = Field(..., description="Error detail")


class MessageResponse(BaseModel):
    """Response model for successful operations without a payload."""
    message: str = Field(..., description="Success message")


# API endpoints
@router.post(
    "/register",
    response_model=UserResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid registration data"},
        409: {"model": ErrorResponse, "description": "Email already registered"},
    },
    summary="Register a new user",
)
async def register(
    registration: RegisterRequest,
    context: RequestContext = Depends(get_request_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Register a new user.

    Args:
        registration: User registration data.
        context: Request context.
        auth_service: Authentication service.

    Returns:
        The created user.
    """
    user = await run_blocking(
        auth_service.register,
        registration.email,
        registration.password,
        registration.first_name,
        registration.last_name,
        registration.phone_number,
        context,
    )
    return UserResponse(**user)


@router.post(
    "/login",
    response_model=TokenResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        429: {"model": ErrorResponse, "description": "Too many failed login attempts"},
    },
    summary="Authenticate user and get tokens",
)
async def login(
    credentials: LoginRequest,
    context: RequestContext = Depends(get_request_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Authenticate a user and issue an access token and a refresh token.

    Args:
        credentials: User login credentials.
        context: Request context.
        auth_service: Authentication service.

    Returns:
        TokenResponse with access and refresh tokens.
    """
    result = await run_blocking(auth_service.login, credentials.email, credentials.password, context)
    return TokenResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=result.expires_in,
        user=UserResponse.from_user(result.user),
    )


@router.post(
    "/refresh",
    response_model=TokenResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(enforce_refresh_rate_limit)],
    responses={
        400: {"model": ErrorResponse, "description": "No refresh token supplied"},
        401: {"model": ErrorResponse, "description": "Invalid or expired refresh token"},
        403: {"model": ErrorResponse, "description": "Token reuse detected"},
        429: {"model": ErrorResponse, "description": "Too many refresh requests"},
    },
    summary="Rotate a refresh token",
    description=(
        "Exchange a refresh token for a new access token and the next refresh token. "
        "A retried request within the grace period gets an access token only."
    ),
)
async def refresh(
    payload: Optional[RefreshRequest] = Body(None),
    refresh_cookie: Optional[str] = Cookie(None, alias="refreshToken"),
    context: RequestContext = Depends(get_request_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Refresh access and refresh tokens.

    Args:
        payload: Body carrying the refresh token.
        refresh_cookie: Refresh token cookie, used when the body has none.
        context: Request context.
        auth_service: Authentication service.

    Returns:
        TokenResponse; ``refreshToken`` is omitted on a grace-period replay.
    """
    refresh_token = (payload.refresh_token if payload else None) or refresh_cookie
    if not refresh_token:
        context.logger(logger).warning("Refresh request without token")
        raise ValidationError("Refresh token is required")

    result = await run_blocking(auth_service.refresh, refresh_token, context)
    return TokenResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=auth_service.issuer.access_token_expires_in,
        user=UserResponse.from_user(result.user),
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid or expired access token"},
    },
    summary="Log out from all devices",
)
async def logout(
    current_user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Revoke every refresh token of the authenticated user.

    Args:
        current_user: User authenticated by the access token.
        context: Request context.
        auth_service: Authentication service.

    Returns:
        MessageResponse confirming the logout.
    """
    await run_blocking(auth_service.logout, current_user.id, context)
    return MessageResponse(message=LOGOUT_MESSAGE)
