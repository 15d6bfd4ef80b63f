"""
Rate limiting for the Credential Core service.

``LoginRateLimiter`` counts failed login attempts per (email, IP) in the
database. ``RateLimiter`` is an in-process sliding window used to throttle
the refresh endpoint per client IP.
"""
import datetime
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from sqlalchemy import delete, func
from sqlalchemy.exc import SQLAlchemyError

from credential_core.config import settings
from credential_core.database import Database, get_database
from credential_core.errors import TooManyRequestsError
from credential_core.models import FailedLoginAttempt, FailureReason, utcnow
from credential_core.users import normalize_email

# Configure logging
logger = logging.getLogger(__name__)


class LoginRateLimiter:
    """
    Failed-login throttle keyed by (email, IP address).

    Every operation runs in its own transaction so that audit bookkeeping
    never rolls back or blocks the login itself.
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        max_attempts: Optional[int] = None,
        window_minutes: Optional[int] = None,
        block_duration_minutes: Optional[int] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        """
        Initialize the login rate limiter.

        Args:
            db: Database holding failed attempts. Defaults to the application database.
            max_attempts: Failures tolerated in the window, defaults to LOGIN_MAX_ATTEMPTS.
            window_minutes: Sliding window length, defaults to LOGIN_WINDOW_MINUTES.
            block_duration_minutes: Retry-after hint, defaults to LOGIN_BLOCK_DURATION_MINUTES.
            clock: Returns the current naive UTC time.
        """
        self._db = db
        self.max_attempts = max_attempts or settings.LOGIN_MAX_ATTEMPTS
        self.window = datetime.timedelta(minutes=window_minutes or settings.LOGIN_WINDOW_MINUTES)
        self.block_duration_minutes = block_duration_minutes or settings.LOGIN_BLOCK_DURATION_MINUTES
        self.clock = clock

    @property
    def db(self) -> Database:
        return self._db or get_database()

    # PUBLIC_INTERFACE
    def failure_count(self, email: str, ip_address: str) -> int:
        """
        Count failed attempts for an (email, IP) pair within the window.

        Args:
            email: Email used in the attempts.
            ip_address: Client IP address.

        Returns:
            Number of failures in the current window.
        """
        window_start = self.clock() - self.window
        with self.db.session_scope() as session:
            return (
                session.query(func.count(FailedLoginAttempt.id))
                .filter(
                    FailedLoginAttempt.email == normalize_email(email),
                    FailedLoginAttempt.ip_address == ip_address,
                    FailedLoginAttempt.attempted_at > window_start,
                )
                .scalar()
            )

    # PUBLIC_INTERFACE
    def check(self, email: str, ip_address: str) -> None:
        """
        Reject the attempt if the pair already failed too often.

        Must be called before the password is verified. A database failure
        while counting fails closed.

        Args:
            email: Email being logged into.
            ip_address: Client IP address.

        Raises:
            TooManyRequestsError: If the pair is blocked.
        """
        try:
            failures = self.failure_count(email, ip_address)
        except SQLAlchemyError as e:
            logger.error(f"Unable to check login rate limit for {ip_address}: {str(e)}")
            raise self._blocked()

        if failures >= self.max_attempts:
            logger.warning(f"Rate limit exceeded for {normalize_email(email)} from {ip_address}")
            raise self._blocked()

    # PUBLIC_INTERFACE
    def record_failure(
        self,
        email: str,
        ip_address: str,
        user_agent: Optional[str],
        reason: FailureReason,
    ) -> None:
        """
        Record a failed login attempt. Errors are logged, never raised.

        Args:
            email: Email used in the attempt.
            ip_address: Client IP address.
            user_agent: Client user agent, if known.
            reason: Why the attempt failed.
        """
        try:
            with self.db.session_scope() as session:
                session.add(FailedLoginAttempt(
                    email=normalize_email(email),
                    ip_address=ip_address,
                    user_agent=user_agent,
                    reason=reason,
                    attempted_at=self.clock(),
                ))
            logger.info(f"Failed login attempt recorded for {normalize_email(email)} from {ip_address}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to record login attempt: {str(e)}")

    # PUBLIC_INTERFACE
    def clear(self, email: str, ip_address: str) -> None:
        """
        Forget all failed attempts of a pair after a successful login.

        Args:
            email: Email that logged in.
            ip_address: Client IP address.
        """
        try:
            with self.db.session_scope() as session:
                session.execute(
                    delete(FailedLoginAttempt).where(
                        FailedLoginAttempt.email == normalize_email(email),
                        FailedLoginAttempt.ip_address == ip_address,
                    )
                )
            logger.debug(f"Cleared failed attempts for {normalize_email(email)} from {ip_address}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to clear login attempts: {str(e)}")

    # PUBLIC_INTERFACE
    def purge_stale(self, before: Optional[datetime.datetime] = None) -> int:
        """
        Delete attempts that fell out of the window.

        Args:
            before: Cutoff, defaults to the start of the current window.

        Returns:
            Number of rows deleted.
        """
        cutoff = before or (self.clock() - self.window)
        with self.db.session_scope() as session:
            result = session.execute(
                delete(FailedLoginAttempt).where(FailedLoginAttempt.attempted_at < cutoff)
            )
            return result.rowcount

    def _blocked(self) -> TooManyRequestsError:
        return TooManyRequestsError(
            f"Too many failed login attempts. Please try again in {self.block_duration_minutes} minutes.",
            retry_after=self.block_duration_minutes * 60,
        )


class RateLimiter:
    """
    Rate limiting implementation.

    Limits the number of requests from a specific source within a time window.
    """

    def __init__(
        self,
        window_seconds: Optional[int] = None,
        max_requests: Optional[int] = None,
        message: str = "Too many requests. Please try again later.",
    ):
        """
        Initialize the rate limiter.

        Args:
            window_seconds: Time window in seconds.
            max_requests: Maximum number of requests allowed in the window.
            message: Message of the raised error.
        """
        self.window_seconds = window_seconds or settings.REFRESH_RATE_LIMIT_PERIOD_SECONDS
        self.max_requests = max_requests or settings.REFRESH_RATE_LIMIT_REQUESTS
        self.message = message
        self.request_records: Dict[str, List[float]] = {}
        self._last_sweep = time.time()
        self._lock = threading.Lock()

    # PUBLIC_INTERFACE
    def add_request(self, key: str) -> None:
        """
        Record a new request, rejecting it if the limit is already reached.

        Args:
            key: Identifier for the request source (e.g., IP address).

        Raises:
            TooManyRequestsError: If the rate limit is exceeded.
        """
        with self._lock:
            self._sweep_expired_keys()
            self._clean_old_requests(key)
            records = self.request_records.setdefault(key, [])
            if len(records) >= self.max_requests:
                retry_after = int(min(records) + self.window_seconds - time.time()) + 1
                raise TooManyRequestsError(self.message, retry_after=max(retry_after, 1))
            records.append(time.time())

    # PUBLIC_INTERFACE
    def get_remaining(self, key: str) -> int:
        """
        Get the number of remaining requests allowed for a key.

        Args:
            key: Identifier for the request source (e.g., IP address).

        Returns:
            Number of remaining requests allowed in the current window.
        """
        with self._lock:
            self._clean_old_requests(key)
            return max(0, self.max_requests - len(self.request_records.get(key, [])))

    # PUBLIC_INTERFACE
    def reset(self) -> None:
        """Forget every recorded request."""
        with self._lock:
            self.request_records.clear()

    def _sweep_expired_keys(self) -> None:
        """Drop every key whose newest request is outside the window, at most once per window."""
        now = time.time()
        if now - self._last_sweep < self.window_seconds:
            return

        cutoff_time = now - self.window_seconds
        # Timestamps are appended in order, so the last one is the newest
        expired = [key for key, records in self.request_records.items() if records[-1] <= cutoff_time]
        for key in expired:
            del self.request_records[key]
        self._last_sweep = now

    def _clean_old_requests(self, key: str) -> None:
        """
        Remove requests that are outside the current time window.

        Args:
            key: Identifier for the request source (e.g., IP address).
        """
        if key not in self.request_records:
            return

        cutoff_time = time.time() - self.window_seconds
        self.request_records[key] = [
            timestamp for timestamp in self.request_records[key]
            if timestamp > cutoff_time
        ]

        # Remove empty entries
        if not self.request_records[key]:
            del self.request_records[key]


# Throttle for the refresh endpoint: 10 requests per minute per IP by default
refresh_rate_limiter = RateLimiter(message="Too many refresh requests. Please try again later.")
