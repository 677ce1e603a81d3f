"""Resilience primitives for calling a rate-limited service.

Adaptive burst rate limiting, per-error retry policies, and an injectable
clock so waits can be simulated in tests.
"""

from .clock import Clock, FakeClock, SystemClock
from .config import (
    AdaptiveRateLimiterConfig,
    ResilienceMetrics,
    RetryConfig,
    RetryStrategy,
)
from .rate_limiter import AdaptiveRateLimiter
from .retry import MaxRetriesExceeded, RetryPolicy, compute_delay

__all__ = [
    # Clock
    "Clock",
    "FakeClock",
    "SystemClock",
    # Config
    "AdaptiveRateLimiterConfig",
    "ResilienceMetrics",
    "RetryConfig",
    "RetryStrategy",
    # Rate limiting
    "AdaptiveRateLimiter",
    # Retry
    "MaxRetriesExceeded",
    "RetryPolicy",
    "compute_delay",
]
