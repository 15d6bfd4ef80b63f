"""
Tests for rate limiting.

This module tests the database-backed login rate limiter and the in-process
refresh throttle.
"""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from credential_core.errors import TooManyRequestsError
from credential_core.models import FailureReason
from credential_core.rate_limit import LoginRateLimiter, RateLimiter


@pytest.fixture
def limiter(database, clock):
    return LoginRateLimiter(db=database, max_attempts=3, window_minutes=10,
                            block_duration_minutes=20, clock=clock)


def _fail(limiter, times, email="alice@example.com", ip="10.0.0.1"):
    for _ in range(times):
        limiter.record_failure(email, ip, "pytest-agent", FailureReason.INVALID_PASSWORD)


def test_check_allows_until_limit(limiter):
    """Test that attempts below the limit pass and the limit blocks."""
    _fail(limiter, 2)
    limiter.check("alice@example.com", "10.0.0.1")

    _fail(limiter, 1)
    with pytest.raises(TooManyRequestsError) as exc_info:
        limiter.check("alice@example.com", "10.0.0.1")

    assert exc_info.value.message == "Too many failed login attempts. Please try again in 20 minutes."
    assert exc_info.value.retry_after == 1200


def test_failures_are_keyed_by_email_and_ip(limiter):
    """Test that the counter is per (email, IP) pair."""
    _fail(limiter, 3)

    assert limiter.failure_count("ALICE@example.com", "10.0.0.1") == 3
    assert limiter.failure_count("alice@example.com", "10.0.0.2") == 0
    assert limiter.failure_count("bob@example.com", "10.0.0.1") == 0


def test_window_slides(limiter, clock):
    """Test that old failures fall out of the window."""
    _fail(limiter, 2)
    clock.advance(minutes=6)
    _fail(limiter, 1)

    assert limiter.failure_count("alice@example.com", "10.0.0.1") == 3
    clock.advance(minutes=5)
    assert limiter.failure_count("alice@example.com", "10.0.0.1") == 1


def test_clear(limiter):
    """Test that clearing forgets the pair's failures only."""
    _fail(limiter, 2)
    _fail(limiter, 2, ip="10.0.0.2")

    limiter.clear("alice@example.com", "10.0.0.1")

    assert limiter.failure_count("alice@example.com", "10.0.0.1") == 0
    assert limiter.failure_count("alice@example.com", "10.0.0.2") == 2


def test_check_fails_closed(limiter):
    """Test that a storage failure while counting blocks the attempt."""
    with patch.object(limiter, "failure_count", side_effect=OperationalError("SELECT", {}, Exception("down"))):
        with pytest.raises(TooManyRequestsError):
            limiter.check("alice@example.com", "10.0.0.1")


def test_record_failure_swallows_storage_errors(limiter):
    """Test that bookkeeping failures never break the login flow."""
    with patch.object(limiter.db, "session_scope", side_effect=OperationalError("INSERT", {}, Exception("down"))):
        limiter.record_failure("alice@example.com", "10.0.0.1", None, FailureReason.USER_NOT_FOUND)
        limiter.clear("alice@example.com", "10.0.0.1")


def test_purge_stale(limiter, clock):
    """Test deleting failures outside the window."""
    _fail(limiter, 2)
    clock.advance(minutes=11)
    _fail(limiter, 1)

    assert limiter.purge_stale() == 2
    assert limiter.failure_count("alice@example.com", "10.0.0.1") == 1


def test_rate_limiter_blocks_after_max_requests():
    """Test the in-process sliding window."""
    throttle = RateLimiter(window_seconds=60, max_requests=3, message="Slow down")

    for _ in range(3):
        throttle.add_request("1.2.3.4")

    with pytest.raises(TooManyRequestsError) as exc_info:
        throttle.add_request("1.2.3.4")

    assert exc_info.value.message == "Slow down"
    assert 1 <= exc_info.value.retry_after <= 61
    assert throttle.get_remaining("1.2.3.4") == 0
    assert throttle.get_remaining("5.6.7.8") == 3


def test_rate_limiter_window_expires():
    """Test that requests older than the window are forgotten."""
    throttle = RateLimiter(window_seconds=60, max_requests=1)

    with patch("credential_core.rate_limit.time.time", return_value=1000.0):
        throttle.add_request("1.2.3.4")
    with patch("credential_core.rate_limit.time.time", return_value=1061.0):
        throttle.add_request("1.2.3.4")

    assert throttle.get_remaining("1.2.3.4") == 1


def test_rate_limiter_reset():
    """Test forgetting every key."""
    throttle = RateLimiter(window_seconds=60, max_requests=1)
    throttle.add_request("1.2.3.4")

    throttle.reset()

    assert throttle.get_remaining("1.2.3.4") == 1


def test_rate_limiter_forgets_sources_that_never_return():
    """Test that keys idle for a whole window are dropped on a later request."""
    with patch("credential_core.rate_limit.time.time", return_value=1000.0):
        throttle = RateLimiter(window_seconds=60, max_requests=10)
        for index in range(5000):
            throttle.add_request(f"10.{index // 65536}.{index // 256 % 256}.{index % 256}")

    assert len(throttle.request_records) == 5000

    with patch("credential_core.rate_limit.time.time", return_value=4600.0):
        throttle.add_request("1.2.3.4")

    assert list(throttle.request_records) == ["1.2.3.4"]


def test_rate_limiter_keeps_active_sources_on_sweep():
    """Test that the sweep leaves keys with requests inside the window alone."""
    with patch("credential_core.rate_limit.time.time", return_value=1000.0):
        throttle = RateLimiter(window_seconds=60, max_requests=10)
        throttle.add_request("1.1.1.1")
    with patch("credential_core.rate_limit.time.time", return_value=1050.0):
        throttle.add_request("2.2.2.2")
    with patch("credential_core.rate_limit.time.time", return_value=1070.0):
        throttle.add_request("3.3.3.3")

    assert sorted(throttle.request_records) == ["2.2.2.2", "3.3.3.3"]
