"""In-process stand-ins shared by the test modules."""

from src.filter_optimizer.models import Metrics
from src.filter_optimizer.parameters import flatten_config, is_unset
from src.resilience.config import AdaptiveRateLimiterConfig

# Limits loose enough that the limiter never waits
GENEROUS_LIMITS = AdaptiveRateLimiterConfig(
    burst_limit=10_000,
    recovery_time=1.0,
    min_spacing=0.0,
    max_requests_per_minute=100_000,
)


class FakeBacktestApi:
    """In-process backtester.

    ``metrics_fn`` maps a flat ``{name: value}`` config to a ``Metrics`` or
    raises. Each call advances the clock by ``latency`` seconds.
    """

    def __init__(self, metrics_fn, clock=None, latency: float = 1.0):
        self.metrics_fn = metrics_fn
        self.clock = clock
        self.latency = latency
        self.calls: list[dict] = []

    def fetch(self, config):
        flat = {k: v for k, v in flatten_config(config).items() if not is_unset(v)}
        self.calls.append(flat)
        if self.clock is not None:
            self.clock.advance(self.latency)
        return self.metrics_fn(flat)


def fixed_metrics(tp_pnl: float = 50.0, win_rate: float = 40.0, tokens: int = 200) -> Metrics:
    return Metrics(total_tokens=tokens, tp_pnl_percent=tp_pnl, win_rate=win_rate)
