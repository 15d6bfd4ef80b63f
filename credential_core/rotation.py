"""
Refresh token rotation with family-based reuse detection.

Every refresh token can be exchanged for the next generation exactly once.
A second redemption shortly after the first (the grace period) is taken for
a retried request and answered with a fresh access token only. Any other
second redemption is taken for a stolen token: the whole family is revoked.

Each decision runs in a single database transaction: the presented token is
read under a row lock, consumed with a compare-and-set on ``used_at``, and
its child is inserted under the ``(family_id, generation)`` unique
constraint. A request that loses a race is re-evaluated from a fresh read.
"""
import datetime
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from credential_core.config.jwt_config import get_grace_period
from credential_core.context import RequestContext
from credential_core.database import Database, get_database
from credential_core.errors import (ForbiddenError, InvalidTokenError,
                                    TokenExpiredError, ValidationError)
from credential_core.models import RefreshToken, RevokeReason, User, utcnow
from credential_core.store import RefreshTokenStore
from credential_core.token import TokenIssuer
from credential_core.users import UserStore

logger = logging.getLogger(__name__)

INVALID_REFRESH_TOKEN = "Invalid refresh token"
REFRESH_TOKEN_EXPIRED = "Refresh token has expired"
USER_INACTIVE = "User account is inactive"
TOKEN_REUSE_DETECTED = "Token reuse detected. All sessions have been terminated."


@dataclass
class RotationResult:
    """Outcome of a successful refresh."""

    access_token: str
    refresh_token: Optional[str]
    user: User
    family_id: str
    generation: int

    @property
    def is_grace_replay(self) -> bool:
        """True when no new refresh token was issued."""
        return self.refresh_token is None


class _RotationConflict(Exception):
    """A concurrent request consumed the same token first."""


class TokenRotationEngine:
    """
    State machine deciding what a presented refresh token is worth.

    Precedence for a presented token:
        1. unknown digest: grace replay if it is the freshly swept parent of
           the live token, reuse attack if its child was already used,
           otherwise invalid
        2. unused, unexpired, unrevoked: rotate to the next generation
        3. already used: grace replay inside the window, reuse attack outside
        4. expired: revoke as expired, invalid
        5. revoked: invalid
        6. owner missing or inactive: revoke, invalid
    """

    def __init__(
        self,
        issuer: Optional[TokenIssuer] = None,
        db: Optional[Database] = None,
        grace_period: Optional[datetime.timedelta] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
        max_attempts: int = 2,
    ):
        """
        Initialize the rotation engine.

        Args:
            issuer: Token issuer used for new access and refresh tokens.
            db: Database to run the unit of work against. Defaults to the
                application database at call time.
            grace_period: Replay tolerance, defaults to REFRESH_GRACE_PERIOD_SECONDS.
            clock: Returns the current naive UTC time.
            max_attempts: How often a request that lost a rotation race is
                evaluated in total.
        """
        self.issuer = issuer or TokenIssuer()
        self._db = db
        self.grace_period = grace_period if grace_period is not None else get_grace_period()
        self.clock = clock
        self.max_attempts = max_attempts

    @property
    def db(self) -> Database:
        return self._db or get_database()

    # PUBLIC_INTERFACE
    def rotate(self, plaintext: str, context: Optional[RequestContext] = None) -> RotationResult:
        """
        Exchange a refresh token for new credentials.

        Args:
            plaintext: Refresh token presented by the client.
            context: Client metadata recorded on the new generation.

        Returns:
            RotationResult. ``refresh_token`` is None for a grace-period replay;
            the client keeps the refresh token it already received.

        Raises:
            ValidationError: If no token was supplied.
            InvalidTokenError: If the token is unknown, revoked, or its owner inactive.
            TokenExpiredError: If the token has expired.
            ForbiddenError: If reuse was detected; the family is revoked first.
        """
        if not plaintext:
            raise ValidationError("Refresh token is required")

        context = context or RequestContext()
        log = context.logger(logger)
        digest = self.issuer.digest(plaintext)

        for attempt in range(1, self.max_attempts + 1):
            try:
                with self.db.session_scope() as session:
                    return self._evaluate(session, digest, context, log)
            except _RotationConflict:
                log.info(f"Refresh token consumed concurrently, re-evaluating (attempt {attempt})")

        log.warning("Refresh token rotation kept losing concurrent races")
        raise InvalidTokenError(INVALID_REFRESH_TOKEN)

    def _evaluate(
        self,
        session: Session,
        digest: str,
        context: RequestContext,
        log: logging.LoggerAdapter,
    ) -> RotationResult:
        store = RefreshTokenStore(session)
        users = UserStore(session)
        now = self.clock()

        record = store.find_by_digest(digest, lock=True)
        if record is None:
            return self._replay_swept_parent(session, store, users, digest, now, log)

        if record.has_been_used:
            if record.is_within_grace_period(self.grace_period, now):
                return self._grace_replay(session, store, users, record, now, log)
            self._reuse_detected(session, store, record, now, log)

        if record.is_expired(now):
            if not record.is_revoked:
                store.revoke(record.id, RevokeReason.EXPIRED, now)
                session.commit()
            log.warning(f"Expired refresh token used: {record.id}")
            raise TokenExpiredError(REFRESH_TOKEN_EXPIRED)

        if record.is_revoked:
            log.warning(f"Revoked refresh token used: {record.id}")
            raise InvalidTokenError(INVALID_REFRESH_TOKEN)

        user = users.get_by_id(record.user_id)
        if user is None or not user.is_active:
            store.revoke(record.id, RevokeReason.USER_INACTIVE, now)
            session.commit()
            log.warning(f"Inactive user attempted refresh: {record.user_id}")
            raise InvalidTokenError(USER_INACTIVE)

        return self._rotate(store, users, record, user, context, now, log)

    def _rotate(
        self,
        store: RefreshTokenStore,
        users: UserStore,
        parent: RefreshToken,
        user: User,
        context: RequestContext,
        now: datetime.datetime,
        log: logging.LoggerAdapter,
    ) -> RotationResult:
        if not store.mark_used(parent.id, now):
            raise _RotationConflict()

        access_token = self.issuer.issue_access_token(user)
        plaintext, child = self.issuer.issue_refresh_token(user, context, parent=parent)
        try:
            store.insert(child)
        except IntegrityError:
            raise _RotationConflict()

        users.touch_last_login(user, now)

        log.info(
            f"Tokens refreshed for user {user.id}, family {child.family_id}, "
            f"generation {child.generation}"
        )
        return RotationResult(
            access_token=access_token,
            refresh_token=plaintext,
            user=user,
            family_id=child.family_id,
            generation=child.generation,
        )

    def _grace_replay(
        self,
        session: Session,
        store: RefreshTokenStore,
        users: UserStore,
        parent: RefreshToken,
        now: datetime.datetime,
        log: logging.LoggerAdapter,
    ) -> RotationResult:
        child = store.find_child(parent)
        if child is None or child.is_expired(now):
            log.warning(f"No live successor for replayed token {parent.id}, family {parent.family_id}")
            raise InvalidTokenError(INVALID_REFRESH_TOKEN)

        if child.has_been_used:
            # Only the generation right before the live one may be replayed
            self._reuse_detected(session, store, parent, now, log)

        return self._answer_replay(session, store, users, child, now, log)

    def _replay_swept_parent(
        self,
        session: Session,
        store: RefreshTokenStore,
        users: UserStore,
        digest: str,
        now: datetime.datetime,
        log: logging.LoggerAdapter,
    ) -> RotationResult:
        child = store.find_by_previous_digest(digest)
        if child is not None and child.has_been_used:
            # Only the generation right before the live one may be replayed
            self._reuse_detected(session, store, child, now, log)

        # The parent was consumed in the transaction that created its child
        if (
            child is None
            or not child.is_live(now)
            or now - child.created_at > self.grace_period
        ):
            log.warning("Refresh token not found")
            raise InvalidTokenError(INVALID_REFRESH_TOKEN)

        return self._answer_replay(session, store, users, child, now, log)

    def _answer_replay(
        self,
        session: Session,
        store: RefreshTokenStore,
        users: UserStore,
        child: RefreshToken,
        now: datetime.datetime,
        log: logging.LoggerAdapter,
    ) -> RotationResult:
        user = users.get_by_id(child.user_id)
        if user is None or not user.is_active:
            store.revoke(child.id, RevokeReason.USER_INACTIVE, now)
            session.commit()
            log.warning(f"Inactive user attempted grace refresh: {child.user_id}")
            raise InvalidTokenError(USER_INACTIVE)

        access_token = self.issuer.issue_access_token(user)
        log.info(
            f"Grace period refresh for user {user.id}, family {child.family_id}, "
            f"keeping generation {child.generation}"
        )
        return RotationResult(
            access_token=access_token,
            refresh_token=None,
            user=user,
            family_id=child.family_id,
            generation=child.generation,
        )

    def _reuse_detected(
        self,
        session: Session,
        store: RefreshTokenStore,
        record: RefreshToken,
        now: datetime.datetime,
        log: logging.LoggerAdapter,
    ) -> None:
        revoked = store.revoke_family(record.family_id, RevokeReason.TOKEN_REUSE, now)
        # The revocation is the remediation; it must be durable before the 403
        session.commit()
        log.error(
            f"Token reuse detected for user {record.user_id}: family {record.family_id} "
            f"revoked ({revoked} tokens)"
        )
        raise ForbiddenError(TOKEN_REUSE_DETECTED)
