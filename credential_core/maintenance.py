"""
Periodic garbage collection for the Credential Core service.

Expired refresh tokens and stale failed login attempts are never needed on
the hot path; this sweep deletes them so the tables stay small.
"""
import asyncio
import datetime
import logging
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from credential_core.database import Database, get_database
from credential_core.models import utcnow
from credential_core.rate_limit import LoginRateLimiter
from credential_core.store import RefreshTokenStore

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def clean_expired_tokens(
    db: Optional[Database] = None,
    retention: datetime.timedelta = datetime.timedelta(0),
    now: Optional[datetime.datetime] = None,
) -> Dict[str, int]:
    """
    Delete expired refresh tokens and failed login attempts outside the rate-limit window.

    Args:
        db: Database to sweep. Defaults to the application database.
        retention: How long expired tokens are kept after expiry.
        now: Reference time, defaults to the current UTC time.

    Returns:
        Dictionary with the number of deleted ``refresh_tokens`` and
        ``failed_login_attempts``.
    """
    db = db or get_database()
    now = now or utcnow()
    cutoff = now - retention
    logger.info(f"Cleaning refresh tokens expired before {cutoff.isoformat()}")

    with db.session_scope() as session:
        tokens_deleted = RefreshTokenStore(session).delete_expired(cutoff)

    limiter = LoginRateLimiter(db=db, clock=lambda: now)
    attempts_deleted = limiter.purge_stale()

    logger.info(
        f"Removed {tokens_deleted} expired refresh tokens and "
        f"{attempts_deleted} stale failed login attempts"
    )
    return {"refresh_tokens": tokens_deleted, "failed_login_attempts": attempts_deleted}


# PUBLIC_INTERFACE
async def run_periodic_cleanup(interval_seconds: float, db: Optional[Database] = None) -> None:
    """
    Run ``clean_expired_tokens`` every ``interval_seconds`` until cancelled.

    The sweep runs in the thread pool. A failed sweep is logged and retried
    on the next tick.

    Args:
        interval_seconds: Pause between two sweeps.
        db: Database to sweep. Defaults to the application database at each tick.
    """
    logger.info(f"Periodic token cleanup every {interval_seconds} seconds")
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_in_threadpool(clean_expired_tokens, db)
        except SQLAlchemyError:
            logger.exception("Periodic token cleanup failed")
