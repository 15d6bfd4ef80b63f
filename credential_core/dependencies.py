"""
Dependency injection for the Credential Core service.

This module provides FastAPI dependency functions for the request context,
authentication of access tokens, refresh throttling, and off-loading
blocking work from the event loop.
"""
import asyncio
import logging
from typing import Any, Callable, Optional, TypeVar

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from credential_core.auth import AuthService, default_auth_service
from credential_core.config import settings
from credential_core.context import RequestContext, new_correlation_id
from credential_core.errors import InternalError, UnauthorizedError
from credential_core.models import User
from credential_core.rate_limit import refresh_rate_limiter

logger = logging.getLogger(__name__)

# Security scheme for JWT tokens
security = HTTPBearer(auto_error=False)

T = TypeVar("T")


# PUBLIC_INTERFACE
async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Run blocking work (bcrypt, database) in the worker thread pool.

    Args:
        func: Callable to run.
        *args: Positional arguments for ``func``.
        **kwargs: Keyword arguments for ``func``.

    Returns:
        Whatever ``func`` returns.

    Raises:
        InternalError: If the work exceeds REQUEST_TIMEOUT_SECONDS.
    """
    try:
        return await asyncio.wait_for(
            run_in_threadpool(func, *args, **kwargs),
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.error(f"{getattr(func, '__name__', func)} timed out after {settings.REQUEST_TIMEOUT_SECONDS}s")
        raise InternalError("Request timed out")


def _client_ip(request: Request) -> str:
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


# PUBLIC_INTERFACE
def get_request_context(request: Request) -> RequestContext:
    """
    Build the request context from the client connection and headers.

    Args:
        request: FastAPI request object.

    Returns:
        RequestContext with IP address, user agent, device id and correlation id.
    """
    return RequestContext(
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        device_id=request.headers.get("x-device-id"),
        correlation_id=request.headers.get("x-request-id") or new_correlation_id(),
    )


# PUBLIC_INTERFACE
def get_auth_service() -> AuthService:
    """
    Get the authentication service.

    Returns:
        The application-wide AuthService.
    """
    return default_auth_service


# PUBLIC_INTERFACE
def enforce_refresh_rate_limit(context: RequestContext = Depends(get_request_context)) -> None:
    """
    Throttle refresh calls per client IP.

    Raises:
        TooManyRequestsError: If the client exceeded REFRESH_RATE_LIMIT_REQUESTS
            within REFRESH_RATE_LIMIT_PERIOD_SECONDS.
    """
    refresh_rate_limiter.add_request(context.ip_address)


# PUBLIC_INTERFACE
async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """
    Get the current authenticated user from the JWT access token.

    Args:
        credentials: HTTP Authorization credentials.
        auth_service: Authentication service.

    Returns:
        User object for the authenticated user.

    Raises:
        UnauthorizedError: If the token is missing or invalid, or the user
            is unknown or inactive.
    """
    if not credentials:
        raise UnauthorizedError("Not authenticated")

    payload = auth_service.issuer.verify_access_token(credentials.credentials)
    return await run_blocking(auth_service.get_user, payload["sub"])
