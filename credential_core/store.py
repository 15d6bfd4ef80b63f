"""
Persistence of refresh token records.

``RefreshTokenStore`` is bound to one SQLAlchemy session, so every call made
through one store instance belongs to the same unit of work. Lookups go
through the unique digest indexes; nothing here scans the table.
"""
import datetime
import logging
from typing import List, Optional

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from credential_core.models import RefreshToken, RevokeReason, utcnow

logger = logging.getLogger(__name__)


class RefreshTokenStore:
    """Refresh token persistence bound to one database session."""

    def __init__(self, session: Session):
        """
        Initialize the store.

        Args:
            session: Session of the surrounding unit of work.
        """
        self.session = session

    # PUBLIC_INTERFACE
    def find_by_digest(self, digest: str, lock: bool = False) -> Optional[RefreshToken]:
        """
        Find a token by the digest of its plaintext.

        Args:
            digest: SHA-256 digest of the presented token.
            lock: Take a row lock (``SELECT ... FOR UPDATE``) for the rest of
                the transaction. Backends without row locks ignore it.

        Returns:
            The matching record, or None.
        """
        query = self.session.query(RefreshToken).filter(RefreshToken.token_digest == digest)
        if lock:
            query = query.with_for_update()
        return query.first()

    # PUBLIC_INTERFACE
    def find_by_previous_digest(self, digest: str) -> Optional[RefreshToken]:
        """
        Find the generation that was rotated out of the token with this digest.

        Args:
            digest: Digest of the parent token.

        Returns:
            The child record, or None.
        """
        return (
            self.session.query(RefreshToken)
            .filter(RefreshToken.previous_token_digest == digest)
            .first()
        )

    # PUBLIC_INTERFACE
    def find_child(self, record: RefreshToken) -> Optional[RefreshToken]:
        """
        Find the non-revoked next generation of a token within its family.

        Args:
            record: Parent record.

        Returns:
            The child record, or None.
        """
        return (
            self.session.query(RefreshToken)
            .filter(
                RefreshToken.family_id == record.family_id,
                RefreshToken.generation == record.generation + 1,
                RefreshToken.revoked_at.is_(None),
            )
            .first()
        )

    # PUBLIC_INTERFACE
    def insert(self, record: RefreshToken) -> RefreshToken:
        """
        Persist a new token record and flush so unique constraints are checked.

        Args:
            record: Record to add.

        Returns:
            The persisted record.

        Raises:
            IntegrityError: If the digest or (family, generation) already exists.
        """
        self.session.add(record)
        self.session.flush()
        logger.debug(f"Stored refresh token {record.id}, family {record.family_id}, generation {record.generation}")
        return record

    # PUBLIC_INTERFACE
    def mark_used(self, token_id: str, at: Optional[datetime.datetime] = None) -> bool:
        """
        Mark a token as exchanged for the next generation.

        This is a compare-and-set: it only succeeds while ``used_at`` is unset,
        so of two concurrent rotations of one token exactly one wins.

        Args:
            token_id: ID of the token being consumed.
            at: Consumption time, defaults to now.

        Returns:
            True if this call consumed the token, False if it was already used.
        """
        result = self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id, RefreshToken.used_at.is_(None))
            .values(used_at=at or utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    # PUBLIC_INTERFACE
    def revoke(
        self,
        token_id: str,
        reason: RevokeReason,
        at: Optional[datetime.datetime] = None,
    ) -> bool:
        """
        Revoke a single token.

        Args:
            token_id: ID of the token.
            reason: Revocation reason.
            at: Revocation time, defaults to now.

        Returns:
            True if a token was revoked.
        """
        result = self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=at or utcnow(), revoke_reason=reason)
            .execution_options(synchronize_session="fetch")
        )
        logger.debug(f"Token {token_id} revoked: {reason.value}")
        return result.rowcount == 1

    # PUBLIC_INTERFACE
    def revoke_family(
        self,
        family_id: str,
        reason: RevokeReason,
        at: Optional[datetime.datetime] = None,
    ) -> int:
        """
        Revoke every still-active generation of a token family.

        Args:
            family_id: Family to terminate.
            reason: Revocation reason.
            at: Revocation time, defaults to now.

        Returns:
            Number of tokens revoked.
        """
        result = self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.family_id == family_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=at or utcnow(), revoke_reason=reason)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    # PUBLIC_INTERFACE
    def revoke_all_for_user(
        self,
        user_id: str,
        reason: RevokeReason,
        at: Optional[datetime.datetime] = None,
    ) -> int:
        """
        Revoke every still-active refresh token of a user, across all families.

        Args:
            user_id: Owner of the tokens.
            reason: Revocation reason.
            at: Revocation time, defaults to now.

        Returns:
            Number of tokens revoked.
        """
        result = self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=at or utcnow(), revoke_reason=reason)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    # PUBLIC_INTERFACE
    def list_family(self, family_id: str) -> List[RefreshToken]:
        """
        List all generations of a family, oldest first.

        Args:
            family_id: Family to list.

        Returns:
            Records ordered by generation.
        """
        return (
            self.session.query(RefreshToken)
            .filter(RefreshToken.family_id == family_id)
            .order_by(RefreshToken.generation)
            .all()
        )

    # PUBLIC_INTERFACE
    def delete_expired(self, before: datetime.datetime) -> int:
        """
        Delete tokens that expired before the given time.

        Args:
            before: Expiry cutoff.

        Returns:
            Number of rows deleted.
        """
        result = self.session.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at < before)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
