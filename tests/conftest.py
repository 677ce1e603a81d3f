"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.filter_optimizer.context import OptimizerContext  # noqa: E402
from src.resilience.clock import FakeClock  # noqa: E402
from src.resilience.rate_limiter import AdaptiveRateLimiter  # noqa: E402
from tests.fakes import GENEROUS_LIMITS  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def context(clock):
    """Seeded context whose limiter never throttles."""
    return OptimizerContext(
        clock=clock,
        seed=7,
        rate_limiter=AdaptiveRateLimiter(GENEROUS_LIMITS, clock=clock),
    )
