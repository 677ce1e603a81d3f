"""Configuration for resilience patterns."""

from dataclasses import dataclass
from enum import Enum


class RetryStrategy(str, Enum):
    """Retry backoff strategies."""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    CONSTANT = "constant"


# ── Default Constants ────────────────────────────────────────────────

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 5.0  # seconds
DEFAULT_MAX_DELAY = 120.0  # seconds
DEFAULT_JITTER_MAX = 0.0  # seconds

DEFAULT_BURST_LIMIT = 20  # calls per burst before recovery
DEFAULT_RECOVERY_TIME = 10.0  # seconds
DEFAULT_MIN_SPACING = 0.1  # seconds between consecutive calls
DEFAULT_MAX_REQUESTS_PER_MINUTE = 50
DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MIN_BURST_LIMIT = 5
DEFAULT_SAFETY_BUFFER_FLOOR = 8
DEFAULT_SAFETY_BUFFER_FRACTION = 0.4
DEFAULT_RECOVERY_MULTIPLIER = 1.5
DEFAULT_MAX_RECOVERY_TIME = 60.0  # seconds


@dataclass
class RetryConfig:
    """Configuration for retry logic."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    jitter_max: float = DEFAULT_JITTER_MAX
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL


@dataclass
class AdaptiveRateLimiterConfig:
    """Configuration for the learning burst rate limiter.

    The safety buffer and recovery constants were tuned empirically
    against the backtester and are kept overridable.
    """

    burst_limit: int = DEFAULT_BURST_LIMIT
    recovery_time: float = DEFAULT_RECOVERY_TIME
    min_spacing: float = DEFAULT_MIN_SPACING
    max_requests_per_minute: int = DEFAULT_MAX_REQUESTS_PER_MINUTE
    window_seconds: float = DEFAULT_WINDOW_SECONDS
    min_burst_limit: int = DEFAULT_MIN_BURST_LIMIT
    safety_buffer_floor: int = DEFAULT_SAFETY_BUFFER_FLOOR
    safety_buffer_fraction: float = DEFAULT_SAFETY_BUFFER_FRACTION
    recovery_multiplier: float = DEFAULT_RECOVERY_MULTIPLIER
    max_recovery_time: float = DEFAULT_MAX_RECOVERY_TIME


@dataclass
class ResilienceMetrics:
    """Metrics snapshot for the rate limiter."""

    total_calls: int = 0
    calls_in_window: int = 0
    burst_count: int = 0
    burst_limit: int = DEFAULT_BURST_LIMIT
    recovery_time: float = DEFAULT_RECOVERY_TIME
    rejections: int = 0
    successes: int = 0
    consecutive_successes: int = 0
    total_wait_time: float = 0.0
