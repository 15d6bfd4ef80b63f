"""
Credential store for user records.

User records are owned by the account subsystem; the authentication core
queries them by email or id, creates them on registration, and updates the
last login timestamp.
"""
import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from credential_core.models import User, utcnow

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Case-fold and trim an email address."""
    return email.strip().lower()


class UserStore:
    """User record access bound to one database session."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_email(self, email: str) -> Optional[User]:
        """Find a user by (normalized) email."""
        return self.session.query(User).filter(User.email == normalize_email(email)).first()

    def get_by_id(self, user_id: str) -> Optional[User]:
        """Find a user by id."""
        return self.session.get(User, user_id)

    def add(self, user: User) -> User:
        """Persist a new user and flush so database constraints are checked."""
        self.session.add(user)
        self.session.flush()
        return user

    def touch_last_login(self, user: User, at: Optional[datetime.datetime] = None) -> None:
        """Record a successful login or refresh."""
        user.last_login_at = at or utcnow()
        self.session.flush()
