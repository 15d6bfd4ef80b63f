"""
JWT access token and opaque refresh token issuance for the Credential Core service.

Access tokens are short-lived HS256 JWTs carrying the user's identity and
authorization claims. Refresh tokens are 256-bit random values handed to the
client once; only their SHA-256 digest is ever persisted.
"""
import datetime
import hashlib
import logging
import uuid
from typing import Any, Callable, Dict, Optional, Tuple

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError as JWTInvalidTokenError

from credential_core.claims import Claims, ClaimsProvider, default_claims_provider
from credential_core.config.jwt_config import (REFRESH_TOKEN_BYTES, TOKEN_TYPE_ACCESS,
                                               TOKEN_TYPE_REFRESH, get_jwt_settings,
                                               get_token_expiry)
from credential_core.context import RequestContext
from credential_core.errors import InvalidTokenError
from credential_core.models import RefreshToken, User, utcnow
from credential_core.security import generate_secure_token

# Configure logger
logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def digest_token(token: str) -> str:
    """
    Compute the storage digest of a refresh token.

    Args:
        token: Plaintext refresh token.

    Returns:
        SHA-256 hex digest; deterministic, so a token can be looked up by it.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenIssuer:
    """
    Mints access tokens and refresh tokens.

    The issuer never touches the database: refresh token records are handed
    back to the caller, which persists them inside its own unit of work.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        access_token_ttl: Optional[datetime.timedelta] = None,
        refresh_token_ttl: Optional[datetime.timedelta] = None,
        claims_provider: Optional[ClaimsProvider] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        """
        Initialize the token issuer.

        Args:
            secret_key: HMAC signing secret. Defaults to JWT_SECRET_KEY.
            algorithm: JWT signing algorithm. Defaults to JWT_ALGORITHM.
            issuer: ``iss`` claim value policed on verification.
            audience: ``aud`` claim value policed on verification.
            access_token_ttl: Access token lifetime, 15 minutes by default.
            refresh_token_ttl: Refresh token lifetime, 7 days by default.
            claims_provider: Source of organization/project claims.
            clock: Returns the current naive UTC time.
        """
        jwt_settings = get_jwt_settings()
        self.secret_key = secret_key or jwt_settings["secret_key"]
        self.algorithm = algorithm or jwt_settings["algorithm"]
        self.issuer = issuer or jwt_settings["issuer"]
        self.audience = audience or jwt_settings["audience"]
        self.access_token_ttl = access_token_ttl or get_token_expiry(TOKEN_TYPE_ACCESS)
        self.refresh_token_ttl = refresh_token_ttl or get_token_expiry(TOKEN_TYPE_REFRESH)
        self.claims_provider = claims_provider or default_claims_provider
        self.clock = clock

    @property
    def access_token_expires_in(self) -> int:
        """Access token lifetime in seconds, reported to clients as ``expiresIn``."""
        return int(self.access_token_ttl.total_seconds())

    # PUBLIC_INTERFACE
    def issue_access_token(self, user: User, claims: Optional[Claims] = None) -> str:
        """
        Create a signed, time-boxed access token for a user.

        Args:
            user: User the token is issued to.
            claims: Organization/project claims. Fetched from the claims
                provider when omitted.

        Returns:
            Encoded JWT access token.
        """
        if claims is None:
            claims = self.claims_provider.for_user(user.id)

        now = self.clock()
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role.value if user.role else None,
            "jti": generate_secure_token(16),
            "type": TOKEN_TYPE_ACCESS,
            "organizations": claims.get("organizations", []),
            "projects": claims.get("projects", []),
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + self.access_token_ttl,
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(
            f"Access token issued for user {user.id} "
            f"({len(payload['organizations'])} orgs, {len(payload['projects'])} projects)"
        )
        return token

    # PUBLIC_INTERFACE
    def issue_refresh_token(
        self,
        user: User,
        context: Optional[RequestContext] = None,
        family_id: Optional[str] = None,
        parent: Optional[RefreshToken] = None,
    ) -> Tuple[str, RefreshToken]:
        """
        Create a refresh token and its storage record.

        Args:
            user: User the token is issued to.
            context: Client metadata recorded on the token.
            family_id: Family to start; a new one is generated when omitted.
                Ignored when ``parent`` is given.
            parent: Generation being rotated. The new record becomes its child.

        Returns:
            Tuple of the plaintext token (for the client) and the unsaved
            RefreshToken record (for the store).
        """
        context = context or RequestContext()
        plaintext = generate_secure_token(REFRESH_TOKEN_BYTES)
        now = self.clock()

        if parent is not None:
            family_id = parent.family_id
            generation = parent.generation + 1
            previous_digest = parent.token_digest
        else:
            family_id = family_id or str(uuid.uuid4())
            generation = 1
            previous_digest = None

        record = RefreshToken(
            id=str(uuid.uuid4()),
            family_id=family_id,
            user_id=user.id,
            token_digest=digest_token(plaintext),
            previous_token_digest=previous_digest,
            generation=generation,
            expires_at=now + self.refresh_token_ttl,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            device_id=context.device_id,
            created_at=now,
        )
        return plaintext, record

    # PUBLIC_INTERFACE
    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate an access token.

        Args:
            token: Encoded JWT access token.

        Returns:
            Dictionary containing the decoded token payload.

        Raises:
            InvalidTokenError: If the signature, expiry, issuer, audience or
                token type is not acceptable.
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "iat", "sub", "jti"]},
            )
        except ExpiredSignatureError:
            logger.debug("Expired access token presented")
            raise InvalidTokenError("Invalid or expired access token")
        except JWTInvalidTokenError as e:
            logger.warning(f"Invalid access token: {str(e)}")
            raise InvalidTokenError("Invalid or expired access token")

        if payload.get("type") != TOKEN_TYPE_ACCESS:
            logger.warning(f"Unexpected token type: {payload.get('type')}")
            raise InvalidTokenError("Invalid or expired access token")

        return payload

    # PUBLIC_INTERFACE
    def digest(self, token: str) -> str:
        """
        Compute the storage digest of a refresh token.

        Args:
            token: Plaintext refresh token.

        Returns:
            SHA-256 hex digest.
        """
        return digest_token(token)

