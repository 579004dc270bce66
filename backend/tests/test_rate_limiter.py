"""
Tests for the rate limiter.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from authz.rate_limit.limiter import LocalRateCounter, RateLimiter, resolve_config
from authz.rate_limit.models import RATE_LIMITS, RateLimitConfig, RateLimitProfile
from authz.rbac.models import AuthorizationContext


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


def _context(ip_address="10.0.0.1"):
    return AuthorizationContext(user_id="alice", ip_address=ip_address)


def _store(allowed=True):
    store = MagicMock()
    store.check_rate_limit = AsyncMock(return_value=allowed)
    return store


class TestProfiles:
    """Tests for the canonical operation classes."""

    def test_budgets(self):
        assert RateLimitProfile.GENERAL.config.max_requests == 100
        assert RateLimitProfile.SENSITIVE.config.max_requests == 20
        assert RateLimitProfile.BULK_OPERATIONS.config.max_requests == 10
        assert RateLimitProfile.FILE_UPLOAD.config.max_requests == 50
        assert RateLimitProfile.API_CALLS.config.max_requests == 1000
        assert all(c.window_minutes == 60 for c in RATE_LIMITS.values())

    def test_resolve_config(self):
        explicit = RateLimitConfig(max_requests=5, window_minutes=1)
        assert resolve_config(explicit) is explicit
        assert resolve_config(RateLimitProfile.SENSITIVE).max_requests == 20
        assert resolve_config(None) is None

    @pytest.mark.parametrize("max_requests,window", [(0, 60), (10, 0), (-1, 60)])
    def test_invalid_config(self, max_requests, window):
        with pytest.raises(ValueError):
            RateLimitConfig(max_requests=max_requests, window_minutes=window)


class TestLocalRateCounter:
    """Tests for the in-process sliding window."""

    def test_blocks_over_limit(self):
        counter = LocalRateCounter(clock=FakeMonotonic())
        config = RateLimitConfig(max_requests=3, window_minutes=1)

        for _ in range(3):
            assert counter.hit("alice", "read", "documents", config) is True
        assert counter.hit("alice", "read", "documents", config) is False

    def test_remaining_count_accurate(self):
        counter = LocalRateCounter(clock=FakeMonotonic())
        config = RateLimitConfig(max_requests=5, window_minutes=1)

        assert counter.get_remaining("alice", "read", "documents", config) == 5
        counter.hit("alice", "read", "documents", config)
        assert counter.get_remaining("alice", "read", "documents", config) == 4

    def test_window_expiry(self):
        clock = FakeMonotonic()
        counter = LocalRateCounter(clock=clock)
        config = RateLimitConfig(max_requests=1, window_minutes=1)

        counter.hit("alice", "read", "documents", config)
        assert counter.hit("alice", "read", "documents", config) is False

        clock.value += 61
        assert counter.hit("alice", "read", "documents", config) is True

    def test_reset_single_user(self):
        counter = LocalRateCounter(clock=FakeMonotonic())
        config = RateLimitConfig(max_requests=1, window_minutes=1)
        counter.hit("alice", "read", "documents", config)
        counter.hit("bob", "read", "documents", config)

        counter.reset("alice")

        assert counter.get_remaining("alice", "read", "documents", config) == 1
        assert counter.get_remaining("bob", "read", "documents", config) == 0

    def test_empty_windows_are_dropped(self):
        clock = FakeMonotonic()
        counter = LocalRateCounter(clock=clock)
        config = RateLimitConfig(max_requests=2, window_minutes=1)

        assert counter.get_remaining("alice", "read", "documents", config) == 2
        assert counter._requests == {}

        counter.hit("alice", "read", "documents", config)
        clock.value += 61

        assert counter.get_remaining("alice", "read", "documents", config) == 2
        assert counter._requests == {}


class TestRateLimiter:
    """Tests for the two-tier limiter."""

    @pytest.mark.asyncio
    async def test_no_config_skips_store(self):
        store = _store()
        limiter = RateLimiter(store)

        assert await limiter.check(_context(), "read", "documents", None) is True
        store.check_rate_limit.assert_not_called()

    @pytest.mark.asyncio
    async def test_disabled_config_skips_store(self):
        store = _store()
        limiter = RateLimiter(store)
        config = RateLimitConfig(max_requests=1, enabled=False)

        assert await limiter.check(_context(), "read", "documents", config) is True
        store.check_rate_limit.assert_not_called()

    @pytest.mark.asyncio
    async def test_delegates_to_store(self):
        store = _store(allowed=False)
        limiter = RateLimiter(store)

        allowed = await limiter.check(
            _context(), "delete", "documents", RateLimitProfile.BULK_OPERATIONS
        )

        assert allowed is False
        store.check_rate_limit.assert_awaited_once_with(
            "alice", "10.0.0.1", "delete", "documents", 10, 60
        )

    @pytest.mark.asyncio
    async def test_missing_ip_uses_placeholder(self):
        store = _store()
        limiter = RateLimiter(store)

        await limiter.check(_context(ip_address=None), "read", "documents", RateLimitProfile.GENERAL)

        assert store.check_rate_limit.await_args.args[1] == "0.0.0.0"

    @pytest.mark.asyncio
    async def test_store_error_is_over_budget(self):
        store = MagicMock()
        store.check_rate_limit = AsyncMock(side_effect=ConnectionError("store down"))
        limiter = RateLimiter(store)

        assert await limiter.check(_context(), "read", "documents", RateLimitProfile.GENERAL) is False

    @pytest.mark.asyncio
    async def test_local_counter_short_circuits(self):
        store = _store()
        limiter = RateLimiter(store, local_counter=LocalRateCounter(clock=FakeMonotonic()))
        config = RateLimitConfig(max_requests=1, window_minutes=1)

        assert await limiter.check(_context(), "read", "documents", config) is True
        assert await limiter.check(_context(), "read", "documents", config) is False
        assert store.check_rate_limit.await_count == 1

    @pytest.mark.asyncio
    async def test_local_counter_never_grants_alone(self):
        store = _store(allowed=False)
        limiter = RateLimiter(store, local_counter=LocalRateCounter(clock=FakeMonotonic()))

        assert await limiter.check(_context(), "read", "documents", RateLimitProfile.GENERAL) is False
