"""Retry with per-error backoff policies.

A ``RetryPolicy`` pairs exception types with their own ``RetryConfig`` so
one call site can, for example, back off exponentially on rate-limit
errors while retrying transient failures once with a linear delay.
"""

import logging
import random
from typing import Any, Callable, Dict, Optional, Tuple, Type

from .clock import Clock, SystemClock
from .config import RetryConfig, RetryStrategy

logger = logging.getLogger(__name__)


class MaxRetriesExceeded(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(
            f"Max retries ({attempts}) exceeded. "
            f"Last error: {last_exception}"
        )


def compute_delay(
    attempt: int,
    config: RetryConfig,
    rng: Optional[random.Random] = None,
    min_delay: float = 0.0,
) -> float:
    """Compute the delay for the given attempt number.

    Args:
        attempt: Zero-based attempt index (0 = first retry).
        config: Retry configuration.
        rng: Random source for jitter.
        min_delay: Floor for the delay, e.g. a server Retry-After hint.

    Returns:
        Delay in seconds, capped at max_delay.
    """
    if config.strategy == RetryStrategy.EXPONENTIAL:
        delay = config.base_delay * (2 ** attempt)
    elif config.strategy == RetryStrategy.LINEAR:
        delay = config.base_delay * (attempt + 1)
    else:  # CONSTANT
        delay = config.base_delay

    # Add jitter
    if config.jitter_max > 0:
        delay = delay + (rng or random).uniform(0, config.jitter_max)

    delay = max(delay, min_delay)

    # Cap at max_delay
    return min(delay, config.max_delay)


class RetryPolicy:
    """Run a callable, retrying matching exceptions with their own backoff.

    Exceptions are matched against ``rules`` in insertion order, so list
    subclasses before their bases. Attempts are counted per rule. Anything
    not matched propagates immediately. An exception with a positive
    ``retry_after`` attribute (seconds) is never retried sooner than that.

    Usage:
        policy = RetryPolicy(
            {RateLimitError: RetryConfig(max_retries=3)},
            clock=clock,
        )
        result = policy.call(fetch)
    """

    def __init__(
        self,
        rules: Dict[Type[Exception], RetryConfig],
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        on_retry: Optional[Callable[[Exception, int, float], None]] = None,
    ):
        self._rules = dict(rules)
        self._clock = clock or SystemClock()
        self._rng = rng
        self._on_retry = on_retry
        self._total_retries = 0

    @property
    def total_retries(self) -> int:
        return self._total_retries

    def _match(self, exc: Exception) -> Optional[Tuple[Type[Exception], RetryConfig]]:
        for exc_type, cfg in self._rules.items():
            if isinstance(exc, exc_type):
                return exc_type, cfg
        return None

    def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Call ``func`` until it succeeds or a rule runs out of retries.

        Raises:
            MaxRetriesExceeded: a matching rule exhausted its attempts.
        """
        attempts: Dict[Type[Exception], int] = {}
        name = getattr(func, "__name__", repr(func))
        while True:
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                matched = self._match(exc)
                if matched is None:
                    raise
                exc_type, cfg = matched
                attempt = attempts.get(exc_type, 0)
                if attempt >= cfg.max_retries:
                    logger.error(
                        "All %d retries exhausted for %s: %s",
                        cfg.max_retries,
                        name,
                        exc,
                    )
                    raise MaxRetriesExceeded(attempt + 1, exc) from exc
                hint = getattr(exc, "retry_after", 0.0) or 0.0
                delay = compute_delay(attempt, cfg, self._rng, min_delay=hint)
                attempts[exc_type] = attempt + 1
                self._total_retries += 1
                logger.warning(
                    "Retry %d/%d for %s after %.2fs: %s",
                    attempt + 1,
                    cfg.max_retries,
                    name,
                    delay,
                    exc,
                )
                if self._on_retry is not None:
                    self._on_retry(exc, attempt + 1, delay)
                self._clock.sleep(delay)
