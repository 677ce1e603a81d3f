"""Adaptive burst rate limiter.

Gates every outbound call to a service whose rate limit is unknown.
The limiter starts from a configured burst size and recovery time and
learns tighter values from each rejection the service reports, while a
rolling one-minute window enforces a hard per-minute ceiling.
"""

import logging
import math
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from .clock import Clock, SystemClock
from .config import AdaptiveRateLimiterConfig, ResilienceMetrics

logger = logging.getLogger(__name__)


class AdaptiveRateLimiter:
    """Burst rate limiter that learns the server limit from rejections.

    Calls are grouped into bursts of at most ``burst_limit`` calls. Once a
    burst is exhausted the limiter waits out ``recovery_time`` measured from
    the start of the burst. A rejection records the call's position within
    the current burst and lowers ``burst_limit`` below the average rejection
    position by a safety buffer; ``recovery_time`` grows by a fixed factor
    up to a cap. Successes are only counted.

    Not thread-safe: the caller serializes all calls.
    """

    def __init__(
        self,
        config: Optional[AdaptiveRateLimiterConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self._config = config or AdaptiveRateLimiterConfig()
        self._clock = clock or SystemClock()
        self._window: Deque[float] = deque()
        self._rejection_positions: List[int] = []
        self._init_state()

    def _init_state(self) -> None:
        self._burst_limit: int = self._config.burst_limit
        self._recovery_time: float = self._config.recovery_time
        self._window.clear()
        self._rejection_positions.clear()
        self._last_call: Optional[float] = None
        self._burst_start: Optional[float] = None
        self._burst_count: int = 0
        self._total_calls: int = 0
        self._successes: int = 0
        self._consecutive_successes: int = 0
        self._burst_resets: int = 0
        self._total_wait: float = 0.0

    # ── Properties ───────────────────────────────────────────────────

    @property
    def config(self) -> AdaptiveRateLimiterConfig:
        return self._config

    @property
    def burst_limit(self) -> int:
        return self._burst_limit

    @property
    def recovery_time(self) -> float:
        return self._recovery_time

    @property
    def burst_count(self) -> int:
        return self._burst_count

    @property
    def total_calls(self) -> int:
        return self._total_calls

    @property
    def rejection_positions(self) -> List[int]:
        return list(self._rejection_positions)

    @property
    def consecutive_successes(self) -> int:
        return self._consecutive_successes

    @property
    def total_wait_time(self) -> float:
        return self._total_wait

    # ── Gate ─────────────────────────────────────────────────────────

    def admit(self) -> float:
        """Block until the next call may be issued, then record it.

        Returns:
            Total seconds spent waiting.
        """
        waited = 0.0
        cfg = self._config

        # Minimum spacing between consecutive calls
        if self._last_call is not None:
            gap = self._clock.now() - self._last_call
            if gap < cfg.min_spacing:
                waited += self._wait(cfg.min_spacing - gap)

        # Rolling-window ceiling
        now = self._clock.now()
        self._prune(now)
        if len(self._window) >= cfg.max_requests_per_minute:
            release_at = self._window[len(self._window) - cfg.max_requests_per_minute]
            wait = release_at + cfg.window_seconds - now
            logger.info(
                "Per-minute ceiling reached (%d calls), waiting %.2fs",
                len(self._window),
                wait,
            )
            waited += self._wait(wait)
            self._prune(self._clock.now())
            # Entries older than the release point have expired
            while len(self._window) >= cfg.max_requests_per_minute:
                self._window.popleft()

        # Burst has cooled down on its own
        now = self._clock.now()
        if self._burst_start is not None and now - self._burst_start > self._recovery_time:
            self._reset_burst()
            self._consecutive_successes += 1

        # Burst exhausted: wait out the remaining recovery time
        if self._burst_count >= self._burst_limit:
            elapsed = now - self._burst_start if self._burst_start is not None else 0.0
            remaining = self._recovery_time - elapsed
            if remaining > 0:
                logger.debug(
                    "Burst of %d calls exhausted, recovering for %.2fs",
                    self._burst_count,
                    remaining,
                )
                waited += self._wait(remaining)
            self._reset_burst()

        self._record_call()
        return waited

    def on_rejection(self, position: Optional[int] = None) -> int:
        """Learn from a rate-limit rejection.

        Args:
            position: 1-based position of the rejected call within its
                burst. Defaults to the current burst count.

        Returns:
            The new burst limit.
        """
        cfg = self._config
        if position is None:
            position = max(1, self._burst_count)
        self._rejection_positions.append(position)

        avg = sum(self._rejection_positions) / len(self._rejection_positions)
        buffer = max(cfg.safety_buffer_floor, cfg.safety_buffer_fraction * avg)
        learned = max(cfg.min_burst_limit, math.floor(avg - buffer))

        old_limit, old_recovery = self._burst_limit, self._recovery_time
        # Never above the configured limit, so a low setting is not raised
        self._burst_limit = min(learned, cfg.burst_limit)
        self._recovery_time = min(
            self._recovery_time * cfg.recovery_multiplier, cfg.max_recovery_time
        )
        self._consecutive_successes = 0
        self._reset_burst()

        logger.warning(
            "Rate limited at burst position %d: burst %d -> %d, recovery %.1fs -> %.1fs",
            position,
            old_limit,
            self._burst_limit,
            old_recovery,
            self._recovery_time,
        )
        return self._burst_limit

    def on_success(self) -> None:
        """Count a successful call. Limits are never loosened here."""
        self._successes += 1
        self._consecutive_successes += 1

    # ── Internals ────────────────────────────────────────────────────

    def _wait(self, seconds: float) -> float:
        if seconds <= 0:
            return 0.0
        self._clock.sleep(seconds)
        self._total_wait += seconds
        return seconds

    def _prune(self, now: float) -> None:
        cutoff = now - self._config.window_seconds
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()

    def _reset_burst(self) -> None:
        self._burst_count = 0
        self._burst_start = None
        self._burst_resets += 1

    def _record_call(self) -> None:
        now = self._clock.now()
        if self._burst_count == 0:
            self._burst_start = now
        self._burst_count += 1
        self._total_calls += 1
        self._last_call = now
        self._window.append(now)

    # ── Reporting ────────────────────────────────────────────────────

    def calls_in_window(self) -> int:
        """Return the number of calls in the trailing window."""
        self._prune(self._clock.now())
        return len(self._window)

    def reset(self) -> None:
        """Restore the configured limits and clear all history."""
        self._init_state()

    def snapshot(self) -> ResilienceMetrics:
        """Return a typed metrics snapshot."""
        return ResilienceMetrics(
            total_calls=self._total_calls,
            calls_in_window=self.calls_in_window(),
            burst_count=self._burst_count,
            burst_limit=self._burst_limit,
            recovery_time=self._recovery_time,
            rejections=len(self._rejection_positions),
            successes=self._successes,
            consecutive_successes=self._consecutive_successes,
            total_wait_time=round(self._total_wait, 3),
        )

    def get_metrics(self) -> Dict[str, Any]:
        """Return current rate limiter metrics."""
        metrics = self.snapshot()
        return {
            "total_calls": metrics.total_calls,
            "calls_in_window": metrics.calls_in_window,
            "max_requests_per_minute": self._config.max_requests_per_minute,
            "burst_count": metrics.burst_count,
            "burst_limit": metrics.burst_limit,
            "recovery_time": metrics.recovery_time,
            "rejections": metrics.rejections,
            "rejection_positions": list(self._rejection_positions),
            "successes": metrics.successes,
            "consecutive_successes": metrics.consecutive_successes,
            "burst_resets": self._burst_resets,
            "total_wait_time": metrics.total_wait_time,
        }
