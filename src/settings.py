"""Centralized settings for the filter optimizer.

Uses pydantic-settings to load from environment variables (prefixed
FILTER_OPT_) with defaults matching the component dataclass configs.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

from src.filter_optimizer.config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_BUYING_AMOUNT,
    DEFAULT_CACHE_SIZE,
    DEFAULT_CHAIN_RUNS,
    DEFAULT_MIN_TOKENS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TARGET_SCORE,
    DEFAULT_TIME_PER_RUN_SECONDS,
    DEFAULT_TRIGGER_MODE,
    BacktestApiConfig,
    ChainConfig,
    EvaluatorConfig,
    OptimizerConfig,
    PipelineConfig,
    SampleThresholds,
    ScoringConfig,
    ScoringMode,
)
from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.resilience.config import (
    DEFAULT_BURST_LIMIT,
    DEFAULT_MAX_REQUESTS_PER_MINUTE,
    DEFAULT_MIN_SPACING,
    DEFAULT_RECOVERY_TIME,
    AdaptiveRateLimiterConfig,
)


class Settings(BaseSettings):
    """Filter optimizer settings loaded from environment variables."""

    # --- Backtester API ---
    api_base_url: str = DEFAULT_API_BASE_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    buying_amount: float = DEFAULT_BUYING_AMOUNT
    trigger_mode: Optional[int] = DEFAULT_TRIGGER_MODE
    exclude_spoofed_tokens: bool = True
    from_date: Optional[str] = None
    to_date: Optional[str] = None

    # --- Scoring ---
    scoring_mode: ScoringMode = ScoringMode.ROBUST
    min_tokens: int = DEFAULT_MIN_TOKENS

    # --- Search ---
    target_score: float = DEFAULT_TARGET_SCORE
    runtime_seconds: float = DEFAULT_TIME_PER_RUN_SECONDS
    chain_runs: int = DEFAULT_CHAIN_RUNS
    seed: Optional[int] = None
    use_latin_hypercube: bool = True
    use_correlated: bool = True
    use_simulated_annealing: bool = True
    use_genetic: bool = False
    use_deep_dive: bool = True

    # --- Rate limiter / cache ---
    burst_limit: int = DEFAULT_BURST_LIMIT
    recovery_time: float = DEFAULT_RECOVERY_TIME
    min_spacing: float = DEFAULT_MIN_SPACING
    max_requests_per_minute: int = DEFAULT_MAX_REQUESTS_PER_MINUTE
    cache_size: int = DEFAULT_CACHE_SIZE

    # --- Constraints ---
    low_bundled_constraint: bool = False

    # --- Logging ---
    log_level: LogLevel = LogLevel.INFO
    log_format: LogFormat = LogFormat.CONSOLE

    model_config = {
        "env_prefix": "FILTER_OPT_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()


def build_pipeline_config(settings: Optional[Settings] = None) -> PipelineConfig:
    """Translate flat settings into the per-component configs."""
    s = settings or get_settings()
    return PipelineConfig(
        api=BacktestApiConfig(
            base_url=s.api_base_url,
            request_timeout=s.request_timeout,
            buying_amount=s.buying_amount,
            trigger_mode=s.trigger_mode,
            exclude_spoofed_tokens=s.exclude_spoofed_tokens,
            from_date=s.from_date,
            to_date=s.to_date,
        ),
        scoring=ScoringConfig(
            mode=s.scoring_mode,
            thresholds=SampleThresholds(min_tokens=s.min_tokens),
        ),
        evaluator=EvaluatorConfig(
            cache_size=s.cache_size,
            low_bundled_constraint=s.low_bundled_constraint,
        ),
        rate_limiter=AdaptiveRateLimiterConfig(
            burst_limit=s.burst_limit,
            recovery_time=s.recovery_time,
            min_spacing=s.min_spacing,
            max_requests_per_minute=s.max_requests_per_minute,
        ),
        optimizer=OptimizerConfig(
            target_score=s.target_score,
            max_runtime_seconds=s.runtime_seconds,
            use_latin_hypercube=s.use_latin_hypercube,
            use_correlated=s.use_correlated,
            use_simulated_annealing=s.use_simulated_annealing,
            use_genetic=s.use_genetic,
            use_deep_dive=s.use_deep_dive,
        ),
        chain=ChainConfig(
            runs=s.chain_runs,
            time_per_run_seconds=s.runtime_seconds,
            target_score=s.target_score,
        ),
        seed=s.seed,
    )


def build_logging_config(settings: Optional[Settings] = None) -> LoggingConfig:
    s = settings or get_settings()
    return LoggingConfig(level=s.log_level, format=s.log_format)
