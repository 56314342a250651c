"""Fixed-window rate limiter tests."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from civicwatch.services.rate_limiter import (
    HOUR_MS,
    LIMITS,
    MINUTE_MS,
    InMemoryRateLimitStore,
    RateLimitConfig,
    RateLimitDecision,
    RateLimiter,
    format_retry_time,
)

LOGIN_KEY = "a@b.com:1.2.3.4"


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock)


class TestWindow:
    def test_five_failures_then_blocked_then_reset(self, limiter, clock):
        remaining = [limiter.check("login", LOGIN_KEY).remaining_attempts for _ in range(5)]
        assert remaining == [4, 3, 2, 1, 0]

        clock.advance(60 * 1000)
        decision = limiter.check("login", LOGIN_KEY)
        assert decision.allowed is False
        assert decision.remaining_attempts == 0
        assert decision.retry_after_ms == 15 * MINUTE_MS - 60 * 1000

        limiter.reset("login", LOGIN_KEY)
        decision = limiter.check("login", LOGIN_KEY)
        assert decision.allowed is True
        assert decision.remaining_attempts == 4

    def test_stays_blocked_until_window_ends(self, limiter, clock):
        for _ in range(5):
            limiter.check("login", LOGIN_KEY)
        clock.advance(15 * MINUTE_MS - 1)
        assert limiter.check("login", LOGIN_KEY).allowed is False

        clock.advance(1)
        decision = limiter.check("login", LOGIN_KEY)
        assert decision.allowed is True
        assert decision.remaining_attempts == 4

    def test_never_more_than_max_attempts_per_window(self, limiter, clock):
        allowed = 0
        for _ in range(3):
            for _ in range(12):
                allowed += limiter.check("register", "10.0.0.1").allowed
            clock.advance(HOUR_MS)
        assert allowed == 3 * LIMITS["register"].max_attempts

    def test_identifiers_are_independent(self, limiter):
        for _ in range(5):
            limiter.check("login", LOGIN_KEY)
        assert limiter.check("login", LOGIN_KEY).allowed is False
        assert limiter.check("login", "a@b.com:5.6.7.8").allowed is True
        assert limiter.check("login_ip", "1.2.3.4").allowed is True

    def test_reset_is_idempotent(self, limiter):
        limiter.reset("login", LOGIN_KEY)
        limiter.reset("login", LOGIN_KEY)
        assert limiter.check("login", LOGIN_KEY).remaining_attempts == 4

    def test_unknown_action_is_not_throttled(self, limiter):
        decision = limiter.check("export_everything", "anyone")
        assert decision.allowed is True
        assert decision.remaining_attempts is None
        assert len(limiter.store) == 0

    def test_custom_limits(self, clock):
        limiter = RateLimiter(limits={"ping": RateLimitConfig(1, 1000)}, clock=clock)
        assert limiter.check("ping", "x").allowed is True
        assert limiter.check("ping", "x").allowed is False
        assert limiter.check("login", "x").remaining_attempts is None


class TestSharedStore:
    def test_limiters_sharing_a_store_count_together(self, clock):
        shared = InMemoryRateLimitStore()
        first = RateLimiter(store=shared, clock=clock)
        second = RateLimiter(store=shared, clock=clock)
        assert first.store is shared

        for _ in range(3):
            first.check("login", LOGIN_KEY)
        assert second.check("login", LOGIN_KEY).remaining_attempts == 1
        assert first.check("login", LOGIN_KEY).remaining_attempts == 0
        assert second.check("login", LOGIN_KEY).allowed is False

    def test_block_is_honoured_by_a_more_lenient_limiter(self, clock):
        shared = InMemoryRateLimitStore()
        strict = RateLimiter(store=shared, limits={"ping": RateLimitConfig(1, 1000)}, clock=clock)
        lenient = RateLimiter(store=shared, limits={"ping": RateLimitConfig(5, 1000)}, clock=clock)
        strict.check("ping", "x")
        assert strict.check("ping", "x").allowed is False

        clock.advance(400)
        decision = lenient.check("ping", "x")
        assert decision.allowed is False
        assert decision.retry_after_ms == 600
        clock.advance(600)
        assert lenient.check("ping", "x").allowed is True


class TestConcurrency:
    def test_parallel_checks_do_not_exceed_ceiling(self):
        limiter = RateLimiter()
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda _: limiter.check("login", LOGIN_KEY).allowed, range(200)))
        assert sum(results) == LIMITS["login"].max_attempts


class TestCleanup:
    def test_cleanup_expired_purges_old_windows(self, limiter, clock):
        limiter.check("login", LOGIN_KEY)
        limiter.check("evidence_upload", "profile-1")
        assert len(limiter.store) == 2

        clock.advance(15 * MINUTE_MS)
        assert limiter.cleanup_expired() == 1
        assert len(limiter.store) == 1

    def test_check_runs_periodic_cleanup(self, clock):
        store = InMemoryRateLimitStore()
        limiter = RateLimiter(store=store, clock=clock, cleanup_interval_ms=1000)
        limiter.check("login", LOGIN_KEY)
        clock.advance(15 * MINUTE_MS + 1)
        limiter.check("register", "10.0.0.1")
        assert store.get("login:" + LOGIN_KEY) is None
        assert len(store) == 1


class TestFormatting:
    @pytest.mark.parametrize(
        "ms, expected",
        [
            (0, "1 minute"),
            (30 * 1000, "1 minute"),
            (90 * 1000, "2 minutes"),
            (HOUR_MS, "1 hour"),
            (3 * HOUR_MS, "3 hours"),
        ],
    )
    def test_format_retry_time(self, ms, expected):
        assert format_retry_time(ms) == expected

    def test_retry_after_seconds_rounds_up(self):
        assert RateLimitDecision(False, 0, 1500).retry_after_seconds == 2
        assert RateLimitDecision(False, 0, 10).retry_after_seconds == 1
        assert RateLimitDecision(True, 3).retry_after_seconds is None
