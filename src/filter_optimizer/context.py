"""Optimizer Context.

One explicit object holding everything the pipeline shares: the clock,
the cooperative stop flag, the seeded random source, the rate limiter,
and the result cache. It is built once per chain and handed to every
component by reference.
"""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from src.filter_optimizer.cache import ResultCache
from src.filter_optimizer.config import DEFAULT_CACHE_SIZE, PipelineConfig
from src.logging_config.context import generate_run_id
from src.resilience.clock import Clock, SystemClock
from src.resilience.config import AdaptiveRateLimiterConfig
from src.resilience.rate_limiter import AdaptiveRateLimiter


@dataclass
class OptimizerContext:
    """Shared per-chain state.

    Example:
        ctx = OptimizerContext(clock=FakeClock(), seed=42)
        ctx.request_stop()  # every phase returns its best so far
    """

    clock: Clock = field(default_factory=SystemClock)
    seed: Optional[int] = None
    rng: Optional[random.Random] = None
    stop_event: threading.Event = field(default_factory=threading.Event)
    rate_limiter: Optional[AdaptiveRateLimiter] = None
    cache: Optional[ResultCache[Any]] = None
    run_id: str = field(default_factory=generate_run_id)

    def __post_init__(self) -> None:
        if self.rng is None:
            self.rng = random.Random(self.seed)
        if self.rate_limiter is None:
            self.rate_limiter = AdaptiveRateLimiter(clock=self.clock)
        if self.cache is None:
            self.cache = ResultCache(DEFAULT_CACHE_SIZE)

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        clock: Optional[Clock] = None,
    ) -> OptimizerContext:
        """Build a context whose limiter and cache follow *config*."""
        clock = clock or SystemClock()
        limiter_config = config.rate_limiter or AdaptiveRateLimiterConfig()
        return cls(
            clock=clock,
            seed=config.seed,
            rate_limiter=AdaptiveRateLimiter(limiter_config, clock=clock),
            cache=ResultCache(config.evaluator.cache_size),
        )

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def request_stop(self) -> None:
        self.stop_event.set()

    def clear_stop(self) -> None:
        self.stop_event.clear()

    def now(self) -> float:
        return self.clock.now()
