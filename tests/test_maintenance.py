"""
Tests for the expired token sweep.
"""
import asyncio
import datetime
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from credential_core.maintenance import clean_expired_tokens, run_periodic_cleanup
from credential_core.models import FailedLoginAttempt, FailureReason, RefreshToken


def test_clean_expired_tokens(database, auth_service, logged_in, password, context, clock):
    """Test that only expired tokens and stale attempts are removed."""
    auth_service.rate_limiter.record_failure(
        "alice@example.com", "10.0.0.9", None, FailureReason.INVALID_PASSWORD
    )
    clock.advance(days=6)
    auth_service.login(logged_in.user.email, password, context)
    clock.advance(days=2)

    counts = clean_expired_tokens(database, now=clock())

    assert counts == {"refresh_tokens": 1, "failed_login_attempts": 1}
    with database.session_scope() as session:
        (survivor,) = session.query(RefreshToken).all()
        assert survivor.expires_at > clock()
        assert session.query(FailedLoginAttempt).count() == 0


def test_clean_expired_tokens_retention(database, logged_in, clock):
    """Test that a retention period keeps recently expired tokens around."""
    clock.advance(days=8)

    counts = clean_expired_tokens(database, retention=datetime.timedelta(days=2), now=clock())

    assert counts["refresh_tokens"] == 0
    assert clean_expired_tokens(database, now=clock())["refresh_tokens"] == 1


def _run_for(coroutine, seconds):
    async def runner():
        task = asyncio.create_task(coroutine)
        await asyncio.sleep(seconds)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    asyncio.run(runner())


def test_periodic_cleanup_sweeps_repeatedly(database):
    """Test that the background sweep runs on every tick until cancelled."""
    with patch("credential_core.maintenance.clean_expired_tokens",
               return_value={"refresh_tokens": 0, "failed_login_attempts": 0}) as sweep:
        _run_for(run_periodic_cleanup(0.01, database), 0.3)

    assert sweep.call_count >= 2
    sweep.assert_called_with(database)


def test_periodic_cleanup_survives_database_errors(database):
    """Test that a failed sweep does not stop the next one."""
    outcomes = [OperationalError("DELETE", {}, Exception("locked"))] + [
        {"refresh_tokens": 0, "failed_login_attempts": 0}
    ] * 100
    with patch("credential_core.maintenance.clean_expired_tokens", side_effect=outcomes) as sweep:
        _run_for(run_periodic_cleanup(0.01, database), 0.3)

    assert sweep.call_count >= 2


def test_application_schedules_periodic_cleanup(client):
    """Test that startup leaves the background sweep running."""
    task = client.app.state.cleanup_task

    assert task is not None
    assert not task.done()
