"""Filter Optimizer Configuration.

Enums, default constants, and per-component dataclass configs for the
evaluation pipeline and the search phases.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from src.resilience.config import (
    AdaptiveRateLimiterConfig,
    RetryConfig,
    RetryStrategy,
)


class ScoringMode(str, Enum):
    """How a backtest result is turned into a score."""
    ROBUST = "robust"
    TP_ONLY = "tp_only"
    WINRATE_ONLY = "winrate_only"


class SampleTier(str, Enum):
    """Sample-size bucket of a backtest result."""
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class OutcomeStatus(str, Enum):
    """Status of a single evaluation."""
    SUCCESS = "success"
    REJECTED = "rejected"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Why an evaluation did not produce a competitive score."""
    VALIDATION = "validation"
    UNKNOWN_PARAMETER = "unknown_parameter"
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    MALFORMED_REQUEST = "malformed_request"
    INVALID_RESPONSE = "invalid_response"
    SAMPLE_TOO_SMALL = "sample_too_small"
    SCORE_REJECTED = "score_rejected"
    BASELINE = "baseline"
    INTERNAL = "internal"


class Phase(str, Enum):
    """Optimizer phases in execution order."""
    BASELINE = "baseline"
    PARAMETER_SWEEP = "parameter_sweep"
    LATIN_HYPERCUBE = "latin_hypercube"
    CORRELATED = "correlated"
    SIMULATED_ANNEALING = "simulated_annealing"
    GENETIC = "genetic"
    DEEP_DIVE = "deep_dive"


# ── Scoring defaults ─────────────────────────────────────────────────

DEFAULT_RETURN_WEIGHT = 0.6
DEFAULT_CONSISTENCY_WEIGHT = 0.4
DEFAULT_RELIABILITY_WEIGHT = 0.3
DEFAULT_MIN_TOKENS = 10
DEFAULT_MEDIUM_SAMPLE_THRESHOLD = 500
DEFAULT_LARGE_SAMPLE_THRESHOLD = 1000
DEFAULT_MIN_WIN_RATE_SMALL = 35.0
DEFAULT_MIN_WIN_RATE_MEDIUM = 33.0
DEFAULT_MIN_WIN_RATE_LARGE = 30.0
RELIABILITY_REFERENCE_TOKENS = 100

# Thresholds are calibrated for a one-week backtest window
REFERENCE_RANGE_DAYS = 7
MIN_THRESHOLD_SCALE = 0.25
MAX_THRESHOLD_SCALE = 4.0

# ── API defaults ─────────────────────────────────────────────────────

DEFAULT_API_BASE_URL = "https://backtester.alphagardeners.xyz"
DEFAULT_STATS_PATH = "/api/stats"
DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds
DEFAULT_BUYING_AMOUNT = 0.25  # SOL
DEFAULT_TRIGGER_MODE = 4  # Launchpads
DEFAULT_TP_LADDER: tuple[tuple[int, int], ...] = (
    (20, 300),
    (20, 650),
    (20, 1400),
    (20, 3000),
    (20, 10000),
)

# ── Evaluator defaults ───────────────────────────────────────────────

DEFAULT_CACHE_SIZE = 1000
DEFAULT_RATE_LIMIT_RETRIES = 3
DEFAULT_RATE_LIMIT_BASE_DELAY = 5.0  # seconds
DEFAULT_RATE_LIMIT_MAX_DELAY = 120.0  # seconds
DEFAULT_TRANSIENT_RETRIES = 1
DEFAULT_TRANSIENT_BASE_DELAY = 1.0  # seconds
LOW_BUNDLED_MAX_MIN = 5.0
LOW_BUNDLED_MAX_MAX = 35.0

# ── Optimizer defaults ───────────────────────────────────────────────

DEFAULT_TARGET_SCORE = 100.0
DEFAULT_RUNTIME_SECONDS = 15 * 60
DEFAULT_MAX_SWEEP_VALUES = 8
DEFAULT_LHS_TOP_PARAMS = 6
DEFAULT_LHS_SAMPLES = 8
DEFAULT_INITIAL_TEMPERATURE = 100.0
DEFAULT_FINAL_TEMPERATURE = 0.1
DEFAULT_COOLING_RATE = 0.95
DEFAULT_PERTURBATION_FRACTION = 0.1
DEFAULT_DEEP_DIVE_TOP_PARAMS = 3
DEFAULT_DEEP_DIVE_MAX_VALUES = 12
DEFAULT_DEEP_DIVE_MULTIPLIER = 3
DEFAULT_POPULATION_SIZE = 20
DEFAULT_GENERATIONS = 10
DEFAULT_MUTATION_RATE = 0.1
DEFAULT_CROSSOVER_RATE = 0.7
DEFAULT_ELITE_SIZE = 2
DEFAULT_TOURNAMENT_SIZE = 3
DEFAULT_SEED_MUTATION_RATE = 0.3  # chance each unit is randomized in the first generation

# Remaining-time fraction a phase needs before it may start
SWEEP_TIME_GATE = 0.6
LHS_TIME_GATE = 0.4
CORRELATED_TIME_GATE = 0.3
ANNEALING_TIME_GATE = 0.15
GENETIC_TIME_GATE = 0.1
DEEP_DIVE_TIME_GATE = 0.05

# ── Chain defaults ───────────────────────────────────────────────────

DEFAULT_CHAIN_RUNS = 3
DEFAULT_TIME_PER_RUN_SECONDS = 15 * 60
DEFAULT_EFFECTIVENESS_TOP_N = 5


@dataclass
class SampleThresholds:
    """Sample-size thresholds for scoring.

    ``min_tokens`` is the floor below which a result is not scored at all;
    ``medium`` and ``large`` split results into sample tiers.
    """

    min_tokens: int = DEFAULT_MIN_TOKENS
    medium: int = DEFAULT_MEDIUM_SAMPLE_THRESHOLD
    large: int = DEFAULT_LARGE_SAMPLE_THRESHOLD


@dataclass
class ScoringConfig:
    """Scoring mode, weights, and tier minimum win rates."""

    mode: ScoringMode = ScoringMode.ROBUST
    return_weight: float = DEFAULT_RETURN_WEIGHT
    consistency_weight: float = DEFAULT_CONSISTENCY_WEIGHT
    reliability_weight: float = DEFAULT_RELIABILITY_WEIGHT
    min_win_rate_small: float = DEFAULT_MIN_WIN_RATE_SMALL
    min_win_rate_medium: float = DEFAULT_MIN_WIN_RATE_MEDIUM
    min_win_rate_large: float = DEFAULT_MIN_WIN_RATE_LARGE
    thresholds: SampleThresholds = field(default_factory=SampleThresholds)


@dataclass
class BacktestApiConfig:
    """Connection and fixed request parameters for the backtester."""

    base_url: str = DEFAULT_API_BASE_URL
    stats_path: str = DEFAULT_STATS_PATH
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    buying_amount: float = DEFAULT_BUYING_AMOUNT
    trigger_mode: Optional[int] = DEFAULT_TRIGGER_MODE
    exclude_spoofed_tokens: bool = True
    from_date: Optional[str] = None  # YYYY-MM-DD
    to_date: Optional[str] = None  # YYYY-MM-DD
    tp_ladder: tuple[tuple[int, int], ...] = DEFAULT_TP_LADDER

    @property
    def stats_url(self) -> str:
        return self.base_url.rstrip("/") + self.stats_path


@dataclass
class EvaluatorConfig:
    """Retry, caching, and constraint settings for the evaluator."""

    cache_size: int = DEFAULT_CACHE_SIZE
    rate_limit_retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(
            max_retries=DEFAULT_RATE_LIMIT_RETRIES,
            base_delay=DEFAULT_RATE_LIMIT_BASE_DELAY,
            max_delay=DEFAULT_RATE_LIMIT_MAX_DELAY,
            strategy=RetryStrategy.EXPONENTIAL,
        )
    )
    transient_retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(
            max_retries=DEFAULT_TRANSIENT_RETRIES,
            base_delay=DEFAULT_TRANSIENT_BASE_DELAY,
            max_delay=DEFAULT_RATE_LIMIT_MAX_DELAY,
            strategy=RetryStrategy.LINEAR,
        )
    )
    low_bundled_constraint: bool = False
    low_bundled_min_limit: float = LOW_BUNDLED_MAX_MIN
    low_bundled_max_limit: float = LOW_BUNDLED_MAX_MAX


@dataclass
class OptimizerConfig:
    """Time budget, target, and per-phase tuning knobs."""

    target_score: float = DEFAULT_TARGET_SCORE
    max_runtime_seconds: float = DEFAULT_RUNTIME_SECONDS
    use_latin_hypercube: bool = True
    use_correlated: bool = True
    use_simulated_annealing: bool = True
    use_genetic: bool = False
    use_deep_dive: bool = True
    max_sweep_values: int = DEFAULT_MAX_SWEEP_VALUES
    lhs_top_params: int = DEFAULT_LHS_TOP_PARAMS
    lhs_samples: int = DEFAULT_LHS_SAMPLES
    initial_temperature: float = DEFAULT_INITIAL_TEMPERATURE
    final_temperature: float = DEFAULT_FINAL_TEMPERATURE
    cooling_rate: float = DEFAULT_COOLING_RATE
    perturbation_fraction: float = DEFAULT_PERTURBATION_FRACTION
    deep_dive_top_params: int = DEFAULT_DEEP_DIVE_TOP_PARAMS
    deep_dive_max_values: int = DEFAULT_DEEP_DIVE_MAX_VALUES
    deep_dive_multiplier: int = DEFAULT_DEEP_DIVE_MULTIPLIER
    population_size: int = DEFAULT_POPULATION_SIZE
    generations: int = DEFAULT_GENERATIONS
    mutation_rate: float = DEFAULT_MUTATION_RATE
    crossover_rate: float = DEFAULT_CROSSOVER_RATE
    elite_size: int = DEFAULT_ELITE_SIZE
    tournament_size: int = DEFAULT_TOURNAMENT_SIZE
    seed_mutation_rate: float = DEFAULT_SEED_MUTATION_RATE


@dataclass
class ChainConfig:
    """Number of chained passes and the time slice of each."""

    runs: int = DEFAULT_CHAIN_RUNS
    time_per_run_seconds: float = DEFAULT_TIME_PER_RUN_SECONDS
    target_score: float = DEFAULT_TARGET_SCORE
    effectiveness_top_n: int = DEFAULT_EFFECTIVENESS_TOP_N


@dataclass
class PipelineConfig:
    """Everything needed to wire one optimization pipeline."""

    api: BacktestApiConfig = field(default_factory=BacktestApiConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    evaluator: EvaluatorConfig = field(default_factory=EvaluatorConfig)
    rate_limiter: AdaptiveRateLimiterConfig = field(default_factory=AdaptiveRateLimiterConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    seed: Optional[int] = None
