"""
Authentication functionality for the Credential Core service.

This module orchestrates registration, login, refresh and logout: email
uniqueness, password hashing, login rate limiting, and token issuance.
"""
import datetime
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from credential_core.context import RequestContext
from credential_core.database import Database, get_database
from credential_core.errors import (ConflictError, CredentialError, InternalError,
                                    UnauthorizedError)
from credential_core.models import FailureReason, RevokeReason, User, UserRole, utcnow
from credential_core.rate_limit import LoginRateLimiter
from credential_core.rotation import RotationResult, TokenRotationEngine
from credential_core.security import (PasswordHasher, PasswordValidator,
                                      default_password_hasher,
                                      default_password_validator)
from credential_core.store import RefreshTokenStore
from credential_core.token import TokenIssuer
from credential_core.users import UserStore, normalize_email

# Configure logging
logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
REGISTRATION_FAILED = "An error occurred during registration. Please try again."
LOGIN_FAILED = "An unexpected error occurred during login. Please try again."


@dataclass
class LoginResult:
    """Credentials handed out by a successful login."""

    access_token: str
    refresh_token: str
    user: User
    expires_in: int


class AuthService:
    """
    Authentication service for registration, login, refresh and logout.

    Password hashing never runs while a database session is open.
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        hasher: Optional[PasswordHasher] = None,
        validator: Optional[PasswordValidator] = None,
        issuer: Optional[TokenIssuer] = None,
        rate_limiter: Optional[LoginRateLimiter] = None,
        rotation_engine: Optional[TokenRotationEngine] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        """
        Initialize the authentication service.

        Args:
            db: Database to use. Defaults to the application database at call time.
            hasher: Password hasher.
            validator: Password strength validator.
            issuer: Token issuer.
            rate_limiter: Failed-login throttle.
            rotation_engine: Refresh token rotation engine.
            clock: Returns the current naive UTC time.
        """
        self._db = db
        self.hasher = hasher or default_password_hasher
        self.validator = validator or default_password_validator
        self.issuer = issuer or TokenIssuer()
        self.rate_limiter = rate_limiter or LoginRateLimiter(db=db, clock=clock)
        self.rotation_engine = rotation_engine or TokenRotationEngine(
            issuer=self.issuer, db=db, clock=clock
        )
        self.clock = clock
        self._dummy_hash: Optional[str] = None

    @property
    def db(self) -> Database:
        return self._db or get_database()

    # PUBLIC_INTERFACE
    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone_number: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """
        Register a new user.

        Args:
            email: Email address; stored lower-cased.
            password: Plain text password.
            first_name: First name.
            last_name: Last name.
            phone_number: Optional phone number in E.164 format.
            context: Request context for logging.

        Returns:
            Sanitized user dictionary (never includes the password hash).

        Raises:
            ValidationError: If the password is too weak.
            ConflictError: If the email is already registered.
            InternalError: If hashing or persistence fails.
        """
        log = (context or RequestContext()).logger(logger)
        email = normalize_email(email)
        log.info(f"Registration attempt for email: {email}")

        self.validator.validate_or_raise(password, email)

        try:
            with self.db.session_scope() as session:
                if UserStore(session).get_by_email(email) is not None:
                    log.warning(f"Registration failed: email already exists - {email}")
                    raise ConflictError("An account with this email address already exists")

            password_hash = self.hasher.hash(password)

            with self.db.session_scope() as session:
                user = UserStore(session).add(User(
                    email=email,
                    password_hash=password_hash,
                    first_name=first_name.strip(),
                    last_name=last_name.strip(),
                    phone_number=phone_number.strip() if phone_number else None,
                    role=UserRole.USER,
                    is_active=True,
                ))
                public = user.to_public_dict()
        except IntegrityError:
            # Lost a race against a concurrent registration of the same email
            log.warning(f"Registration failed: email already exists - {email}")
            raise ConflictError("An account with this email address already exists")
        except ConflictError:
            raise
        except (CredentialError, SQLAlchemyError) as e:
            log.error(f"Registration failed for {email}: {str(e)}")
            raise InternalError(REGISTRATION_FAILED) from e

        log.info(f"User registered successfully - ID: {public['id']}, Email: {email}")
        return public

    # PUBLIC_INTERFACE
    def login(
        self,
        email: str,
        password: str,
        context: Optional[RequestContext] = None,
    ) -> LoginResult:
        """
        Authenticate a user and issue an access token and a new refresh token family.

        Unknown emails and wrong passwords are indistinguishable to the caller.

        Args:
            email: Email address.
            password: Plain text password.
            context: Client metadata (IP address, user agent, device id).

        Returns:
            LoginResult with both tokens and the user.

        Raises:
            TooManyRequestsError: If the (email, IP) pair is rate limited.
            UnauthorizedError: If the credentials are invalid.
            InternalError: If an infrastructure failure occurs.
        """
        context = context or RequestContext()
        log = context.logger(logger)
        email = normalize_email(email)
        ip_address = context.ip_address
        log.info(f"Login attempt for email: {email}")

        if ip_address:
            self.rate_limiter.check(email, ip_address)

        try:
            with self.db.session_scope() as session:
                user = UserStore(session).get_by_email(email)

            failure = self._check_password(user, password)
            if failure is not None:
                if ip_address:
                    self.rate_limiter.record_failure(email, ip_address, context.user_agent, failure)
                log.warning(f"Login failed: {failure.value} - {email}")
                raise UnauthorizedError(INVALID_CREDENTIALS)

            if not user.is_active:
                log.warning(f"Login failed: inactive account - {email}")
                raise UnauthorizedError(INVALID_CREDENTIALS)

            if ip_address:
                self.rate_limiter.clear(email, ip_address)

            upgraded_hash = None
            if self.hasher.needs_rehash(user.password_hash):
                upgraded_hash = self.hasher.hash(password)

            with self.db.session_scope() as session:
                users = UserStore(session)
                user = users.get_by_id(user.id)
                if upgraded_hash:
                    user.password_hash = upgraded_hash
                    log.info(f"Password hash upgraded for user {user.id}")
                access_token = self.issuer.issue_access_token(user)
                refresh_token, record = self.issuer.issue_refresh_token(user, context)
                RefreshTokenStore(session).insert(record)
                users.touch_last_login(user, self.clock())
        except CredentialError:
            raise
        except Exception as e:
            log.exception(f"Unexpected error during login for {email}")
            raise InternalError(LOGIN_FAILED) from e

        log.info(f"User logged in successfully - ID: {user.id}, family {record.family_id}")
        return LoginResult(
            access_token=access_token,
            refresh_token=refresh_token,
            user=user,
            expires_in=self.issuer.access_token_expires_in,
        )

    # PUBLIC_INTERFACE
    def refresh(self, refresh_token: str, context: Optional[RequestContext] = None) -> RotationResult:
        """
        Exchange a refresh token for new credentials.

        Args:
            refresh_token: Plaintext refresh token.
            context: Client metadata.

        Returns:
            RotationResult from the rotation engine.
        """
        return self.rotation_engine.rotate(refresh_token, context)

    # PUBLIC_INTERFACE
    def logout(self, user_id: str, context: Optional[RequestContext] = None) -> int:
        """
        Log a user out of every device by revoking all of their refresh tokens.

        Args:
            user_id: ID of the user.
            context: Request context for logging.

        Returns:
            Number of refresh tokens revoked.
        """
        log = (context or RequestContext()).logger(logger)
        with self.db.session_scope() as session:
            revoked = RefreshTokenStore(session).revoke_all_for_user(
                user_id, RevokeReason.LOGOUT, self.clock()
            )
        log.info(f"User logged out successfully - ID: {user_id}, {revoked} refresh tokens revoked")
        return revoked

    # PUBLIC_INTERFACE
    def get_user(self, user_id: str) -> User:
        """
        Get an active user by id.

        Args:
            user_id: ID of the user.

        Returns:
            The user.

        Raises:
            UnauthorizedError: If the user does not exist or is inactive.
        """
        with self.db.session_scope() as session:
            user = UserStore(session).get_by_id(user_id)

        if user is None:
            logger.warning(f"User not found for ID: {user_id}")
            raise UnauthorizedError("User not found")
        if not user.is_active:
            logger.warning(f"Inactive user attempted access: {user_id}")
            raise UnauthorizedError("User account is inactive")
        return user

    def _check_password(self, user: Optional[User], password: str) -> Optional[FailureReason]:
        """Verify a password, spending the same bcrypt work whether or not the user exists."""
        if user is None:
            if self._dummy_hash is None:
                self._dummy_hash = self.hasher.hash("credential-core-timing-equalizer")
            self.hasher.verify(password, self._dummy_hash)
            return FailureReason.USER_NOT_FOUND

        if not self.hasher.verify(password, user.password_hash):
            return FailureReason.INVALID_PASSWORD
        return None


# Create a default authentication service for common use
default_auth_service = AuthService()
