"""Timing helpers.

``log_performance`` wraps a function and ``PerformanceTimer`` wraps a
block. Both read time from a ``Clock`` so simulated runs report simulated
durations, and both log at WARNING once a duration crosses its threshold.
"""

import functools
import logging
from typing import Any, Callable, Optional

from src.logging_config.config import DEFAULT_LOGGING_CONFIG
from src.resilience.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

_MAX_ARG_REPR = 100
_MAX_ARGS_SHOWN = 3


def _report(
    log: logging.Logger,
    name: str,
    duration_ms: float,
    threshold_ms: float,
    failure: Optional[type] = None,
    arg_summary: Optional[str] = None,
    failure_level: int = logging.ERROR,
) -> None:
    extra: dict[str, Any] = {"duration_ms": round(duration_ms, 2)}
    if arg_summary is not None:
        extra["extra_data"] = arg_summary
    if failure is not None:
        log.log(
            failure_level, "%s failed after %.1fms: %s", name, duration_ms, failure.__name__,
            extra=extra,
        )
    elif duration_ms >= threshold_ms:
        log.warning("Slow operation: %s took %.1fms", name, duration_ms, extra=extra)
    else:
        log.debug("%s completed in %.1fms", name, duration_ms, extra=extra)


def log_performance(
    threshold_ms: Optional[float] = None,
    logger_name: Optional[str] = None,
    include_args: bool = False,
    clock: Optional[Clock] = None,
) -> Callable:
    """Decorator timing every call of the wrapped function.

    Args:
        threshold_ms: Calls at or above this duration log a warning.
            Defaults to the logging config's slow threshold.
        logger_name: Logger to report on; defaults to the function's module.
        include_args: Attach a short argument summary to each record.
        clock: Time source; defaults to the system clock.
    """
    limit = DEFAULT_LOGGING_CONFIG.slow_threshold_ms if threshold_ms is None else threshold_ms
    timer_clock = clock or SystemClock()

    def decorator(func: Callable) -> Callable:
        log = logging.getLogger(logger_name or func.__module__)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = timer_clock.now()
            failure = None
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                failure = type(exc)
                raise
            finally:
                _report(
                    log,
                    func.__qualname__,
                    (timer_clock.now() - started) * 1000,
                    limit,
                    failure,
                    _summarize_args(args, kwargs) if include_args else None,
                    failure_level=logging.DEBUG,
                )

        return wrapper

    return decorator


def _summarize_args(args: tuple, kwargs: dict) -> str:
    def short(value: Any) -> str:
        text = repr(value)
        return text if len(text) <= _MAX_ARG_REPR else text[:_MAX_ARG_REPR] + "..."

    parts = [short(a) for a in args[:_MAX_ARGS_SHOWN]]
    if len(args) > _MAX_ARGS_SHOWN:
        parts.append(f"... +{len(args) - _MAX_ARGS_SHOWN} more args")
    parts.extend(f"{k}={short(v)}" for k, v in list(kwargs.items())[:_MAX_ARGS_SHOWN])
    return ", ".join(parts)


class PerformanceTimer:
    """Time a block of code.

    Example:
        with PerformanceTimer("phase deep_dive", clock=ctx.clock) as timer:
            run_deep_dive()
        timer.duration_ms
    """

    def __init__(
        self,
        operation_name: str,
        threshold_ms: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        self.operation_name = operation_name
        self.threshold_ms = threshold_ms or DEFAULT_LOGGING_CONFIG.slow_threshold_ms
        self.clock = clock or SystemClock()
        self.start_time: float = 0.0
        self.duration_ms: float = 0.0

    @property
    def duration_seconds(self) -> float:
        return self.duration_ms / 1000

    def __enter__(self) -> "PerformanceTimer":
        self.start_time = self.clock.now()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration_ms = (self.clock.now() - self.start_time) * 1000
        _report(logger, self.operation_name, self.duration_ms, self.threshold_ms, exc_type)
