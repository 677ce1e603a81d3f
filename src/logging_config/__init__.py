"""Structured Logging & Run Tracing.

Provides structured JSON logging, run/phase context propagation,
and performance timing for the filter optimizer.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import RunContext, generate_run_id, phase_context
from src.logging_config.performance import PerformanceTimer, log_performance
from src.logging_config.setup import configure_logging, resolve_logging_config

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "PerformanceTimer",
    "RunContext",
    "configure_logging",
    "generate_run_id",
    "log_performance",
    "phase_context",
    "resolve_logging_config",
]
