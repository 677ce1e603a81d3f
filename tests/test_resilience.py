"""Tests for the adaptive rate limiter, retry policy, and clocks."""

import random

import pytest

from src.resilience.clock import FakeClock, SystemClock
from src.resilience.config import (
    AdaptiveRateLimiterConfig,
    ResilienceMetrics,
    RetryConfig,
    RetryStrategy,
)
from src.resilience.rate_limiter import AdaptiveRateLimiter
from src.resilience.retry import MaxRetriesExceeded, RetryPolicy, compute_delay


# ── Helpers ──────────────────────────────────────────────────────────


class _Boom(Exception):
    pass


class _Other(Exception):
    pass


class _Hinted(Exception):
    def __init__(self, retry_after: float):
        super().__init__(f"retry after {retry_after}")
        self.retry_after = retry_after


def _limiter(clock, **overrides):
    return AdaptiveRateLimiter(AdaptiveRateLimiterConfig(**overrides), clock=clock)


# ── Config Tests ─────────────────────────────────────────────────────


class TestConfigDefaults:
    def test_retry_strategies(self):
        assert len(RetryStrategy) == 3
        assert RetryStrategy.EXPONENTIAL.value == "exponential"
        assert RetryStrategy.LINEAR.value == "linear"
        assert RetryStrategy.CONSTANT.value == "constant"

    def test_limiter_defaults(self):
        cfg = AdaptiveRateLimiterConfig()
        assert cfg.burst_limit == 20
        assert cfg.recovery_time == 10.0
        assert cfg.max_requests_per_minute == 50
        assert cfg.window_seconds == 60.0
        assert cfg.min_burst_limit == 5

    def test_retry_defaults(self):
        cfg = RetryConfig()
        assert cfg.max_retries == 3
        assert cfg.base_delay == 5.0
        assert cfg.max_delay == 120.0


# ── Clock Tests ──────────────────────────────────────────────────────


class TestClocks:
    def test_fake_clock_sleep_advances(self):
        clock = FakeClock(start=10.0)
        clock.sleep(2.5)
        clock.sleep(0)
        assert clock.now() == 12.5
        assert clock.sleeps == [2.5]
        assert clock.total_slept == 2.5

    def test_fake_clock_advance_not_recorded(self):
        clock = FakeClock()
        clock.advance(3.0)
        assert clock.now() == 3.0
        assert clock.sleeps == []

    def test_system_clock_monotonic(self):
        clock = SystemClock()
        a = clock.now()
        clock.sleep(0)
        assert clock.now() >= a


# ── Rate Limiter Tests ───────────────────────────────────────────────


class TestAdaptiveRateLimiter:
    def test_first_call_does_not_wait(self, clock):
        limiter = _limiter(clock)
        assert limiter.admit() == 0.0
        assert limiter.total_calls == 1
        assert limiter.burst_count == 1

    def test_min_spacing_enforced(self, clock):
        limiter = _limiter(clock, min_spacing=0.5)
        limiter.admit()
        clock.advance(0.2)
        waited = limiter.admit()
        assert waited == pytest.approx(0.3)

    def test_burst_exhaustion_waits_recovery(self, clock):
        limiter = _limiter(clock, burst_limit=3, recovery_time=10.0, min_spacing=0.0)
        for _ in range(3):
            limiter.admit()
        clock.advance(4.0)
        waited = limiter.admit()
        assert waited == pytest.approx(6.0)
        assert limiter.burst_count == 1

    def test_burst_cools_down_without_waiting(self, clock):
        limiter = _limiter(clock, burst_limit=3, recovery_time=10.0, min_spacing=0.0)
        for _ in range(3):
            limiter.admit()
        clock.advance(11.0)
        assert limiter.admit() == 0.0
        assert limiter.burst_count == 1
        assert limiter.consecutive_successes == 1

    def test_per_minute_ceiling(self, clock):
        limiter = _limiter(
            clock,
            burst_limit=1000,
            min_spacing=0.0,
            max_requests_per_minute=5,
        )
        times = []
        for _ in range(12):
            limiter.admit()
            times.append(clock.now())
            clock.advance(1.0)
        # Any 60s window (with a small tolerance) holds at most 5 calls
        for i, start in enumerate(times):
            in_window = [t for t in times[i:] if t < start + 60.0 - 1e-6]
            assert len(in_window) <= 5

    def test_learns_from_rejections(self, clock):
        limiter = _limiter(clock)
        limiter.on_rejection(14)
        new_limit = limiter.on_rejection(16)
        # avg 15, buffer max(8, 6) = 8, floor(15 - 8) = 7
        assert new_limit == 7
        assert limiter.burst_limit == 7
        assert limiter.rejection_positions == [14, 16]

    def test_learned_limit_has_floor(self, clock):
        limiter = _limiter(clock)
        assert limiter.on_rejection(3) == 5

    def test_rejection_never_raises_low_configured_limit(self, clock):
        limiter = _limiter(clock, burst_limit=3)
        assert limiter.on_rejection(3) == 3
        assert limiter.on_rejection(2) == 3
        assert limiter.burst_limit == 3

    def test_recovery_grows_and_caps(self, clock):
        limiter = _limiter(clock, recovery_time=10.0)
        limiter.on_rejection(20)
        assert limiter.recovery_time == pytest.approx(15.0)
        for _ in range(10):
            limiter.on_rejection(20)
        assert limiter.recovery_time == 60.0

    def test_rejection_defaults_to_burst_position(self, clock):
        limiter = _limiter(clock, min_spacing=0.0)
        for _ in range(4):
            limiter.admit()
        limiter.on_rejection()
        assert limiter.rejection_positions == [4]
        assert limiter.burst_count == 0
        assert limiter.consecutive_successes == 0

    def test_success_does_not_loosen(self, clock):
        limiter = _limiter(clock)
        limiter.on_rejection(14)
        before = limiter.burst_limit
        for _ in range(50):
            limiter.on_success()
        assert limiter.burst_limit == before

    def test_reset_restores_config(self, clock):
        limiter = _limiter(clock, burst_limit=20)
        limiter.admit()
        limiter.on_rejection(10)
        limiter.reset()
        assert limiter.burst_limit == 20
        assert limiter.total_calls == 0
        assert limiter.rejection_positions == []

    def test_metrics(self, clock):
        limiter = _limiter(clock, min_spacing=0.0)
        limiter.admit()
        limiter.on_success()
        snap = limiter.snapshot()
        assert isinstance(snap, ResilienceMetrics)
        assert snap.total_calls == 1
        assert snap.successes == 1
        metrics = limiter.get_metrics()
        assert metrics["calls_in_window"] == 1
        assert metrics["rejection_positions"] == []
        assert metrics["burst_limit"] == 20


# ── Retry Tests ──────────────────────────────────────────────────────


class TestComputeDelay:
    def test_exponential(self):
        cfg = RetryConfig(base_delay=5.0, max_delay=120.0)
        assert [compute_delay(i, cfg) for i in range(4)] == [5.0, 10.0, 20.0, 40.0]

    def test_capped(self):
        cfg = RetryConfig(base_delay=5.0, max_delay=30.0)
        assert compute_delay(5, cfg) == 30.0

    def test_linear_and_constant(self):
        assert compute_delay(2, RetryConfig(base_delay=1.0, strategy=RetryStrategy.LINEAR)) == 3.0
        assert compute_delay(2, RetryConfig(base_delay=2.0, strategy=RetryStrategy.CONSTANT)) == 2.0

    def test_min_delay_floor_still_capped(self):
        cfg = RetryConfig(base_delay=5.0, max_delay=120.0)
        assert compute_delay(0, cfg, min_delay=30.0) == 30.0
        assert compute_delay(3, cfg, min_delay=30.0) == 40.0
        assert compute_delay(0, cfg, min_delay=500.0) == 120.0

    def test_jitter_bounded(self):
        cfg = RetryConfig(base_delay=1.0, jitter_max=0.5, strategy=RetryStrategy.CONSTANT)
        rng = random.Random(1)
        for _ in range(20):
            assert 1.0 <= compute_delay(0, cfg, rng) <= 1.5


class TestRetryPolicy:
    def test_success_first_try(self, clock):
        policy = RetryPolicy({_Boom: RetryConfig()}, clock=clock)
        assert policy.call(lambda: 42) == 42
        assert policy.total_retries == 0
        assert clock.sleeps == []

    def test_retries_then_succeeds(self, clock):
        attempts = {"n": 0}

        def flaky():
            attempts["n"] += 1
            if attempts["n"] < 3:
                raise _Boom("nope")
            return "ok"

        policy = RetryPolicy({_Boom: RetryConfig(max_retries=3, base_delay=5.0)}, clock=clock)
        assert policy.call(flaky) == "ok"
        assert clock.sleeps == [5.0, 10.0]
        assert policy.total_retries == 2

    def test_exhausted(self, clock):
        def always():
            raise _Boom("down")

        policy = RetryPolicy({_Boom: RetryConfig(max_retries=2, base_delay=1.0)}, clock=clock)
        with pytest.raises(MaxRetriesExceeded) as info:
            policy.call(always)
        assert info.value.attempts == 3
        assert isinstance(info.value.last_exception, _Boom)

    def test_unmatched_propagates(self, clock):
        def other():
            raise _Other("x")

        policy = RetryPolicy({_Boom: RetryConfig()}, clock=clock)
        with pytest.raises(_Other):
            policy.call(other)
        assert clock.sleeps == []

    def test_per_rule_budgets(self, clock):
        errors = [_Boom("a"), _Other("b"), _Boom("c")]

        def mixed():
            if errors:
                raise errors.pop(0)
            return "done"

        policy = RetryPolicy(
            {
                _Boom: RetryConfig(max_retries=2, base_delay=1.0, strategy=RetryStrategy.CONSTANT),
                _Other: RetryConfig(max_retries=1, base_delay=3.0, strategy=RetryStrategy.CONSTANT),
            },
            clock=clock,
        )
        assert policy.call(mixed) == "done"
        assert clock.sleeps == [1.0, 3.0, 1.0]

    def test_retry_after_hint_sets_floor(self, clock):
        errors = [_Hinted(12.0), _Hinted(0.0)]

        def throttled():
            if errors:
                raise errors.pop(0)
            return "ok"

        policy = RetryPolicy({_Hinted: RetryConfig(max_retries=3, base_delay=5.0)}, clock=clock)
        assert policy.call(throttled) == "ok"
        assert clock.sleeps == [12.0, 10.0]

    def test_on_retry_callback(self, clock):
        seen = []
        calls = {"n": 0}

        def once():
            calls["n"] += 1
            if calls["n"] == 1:
                raise _Boom("first")
            return True

        policy = RetryPolicy(
            {_Boom: RetryConfig(max_retries=1, base_delay=2.0)},
            clock=clock,
            on_retry=lambda exc, attempt, delay: seen.append((attempt, delay)),
        )
        policy.call(once)
        assert seen == [(1, 2.0)]
