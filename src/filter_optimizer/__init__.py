"""Adaptive Filter Optimizer.

Searches a 29-parameter token-filter space against a remote backtester.
An adaptive rate limiter learns the server's burst budget, a canonical-key
LRU cache avoids repeat calls, and a multi-phase optimizer (sweep, Latin
hypercube, correlated sets, simulated annealing, deep dive) is chained
across runs that each start from the best configuration so far.
"""

from src.filter_optimizer.cache import ResultCache, canonical_key
from src.filter_optimizer.chain import ChainResult, ChainRunRecord, RunChain, aggregate_effectiveness
from src.filter_optimizer.client import BacktestApi, BacktestClient, build_query_params
from src.filter_optimizer.config import (
    BacktestApiConfig,
    ChainConfig,
    ErrorKind,
    EvaluatorConfig,
    OptimizerConfig,
    OutcomeStatus,
    Phase,
    PipelineConfig,
    SampleThresholds,
    SampleTier,
    ScoringConfig,
    ScoringMode,
)
from src.filter_optimizer.context import OptimizerContext
from src.filter_optimizer.evaluator import BestResult, ConfigEvaluator
from src.filter_optimizer.exceptions import (
    BaselineError,
    ConfigValidationError,
    FilterOptimizerError,
    InvalidResponseError,
    MalformedRequestError,
    RateLimitError,
    TransientAPIError,
    UnknownParameterError,
)
from src.filter_optimizer.models import (
    REJECTED_SCORE,
    EvaluationOutcome,
    EvaluationRecord,
    Metrics,
    ScoreResult,
)
from src.filter_optimizer.optimizer import FilterOptimizer, OptimizationResult
from src.filter_optimizer.parameters import (
    DEFAULT_PARAM_COUNT,
    DEFAULT_TABLE,
    UNSET,
    ParameterRule,
    ParameterTable,
    ParamKind,
    build_default_parameter_table,
    normalize_config,
)
from src.filter_optimizer.scoring import ScoringEngine, scale_token_thresholds
from src.filter_optimizer.source import ConfigSource, InMemoryConfigSource, JsonFileConfigSource

__all__ = [
    # Parameters
    "ParamKind",
    "ParameterRule",
    "ParameterTable",
    "build_default_parameter_table",
    "normalize_config",
    "DEFAULT_PARAM_COUNT",
    "DEFAULT_TABLE",
    "UNSET",
    # Config
    "BacktestApiConfig",
    "ChainConfig",
    "ErrorKind",
    "EvaluatorConfig",
    "OptimizerConfig",
    "OutcomeStatus",
    "Phase",
    "PipelineConfig",
    "SampleThresholds",
    "SampleTier",
    "ScoringConfig",
    "ScoringMode",
    # Errors
    "BaselineError",
    "ConfigValidationError",
    "FilterOptimizerError",
    "InvalidResponseError",
    "MalformedRequestError",
    "RateLimitError",
    "TransientAPIError",
    "UnknownParameterError",
    # Evaluation
    "REJECTED_SCORE",
    "Metrics",
    "ScoreResult",
    "EvaluationOutcome",
    "EvaluationRecord",
    "ResultCache",
    "canonical_key",
    "ScoringEngine",
    "scale_token_thresholds",
    "BacktestApi",
    "BacktestClient",
    "build_query_params",
    "OptimizerContext",
    "BestResult",
    "ConfigEvaluator",
    # Search
    "FilterOptimizer",
    "OptimizationResult",
    "RunChain",
    "ChainResult",
    "ChainRunRecord",
    "aggregate_effectiveness",
    # Sources
    "ConfigSource",
    "InMemoryConfigSource",
    "JsonFileConfigSource",
]
