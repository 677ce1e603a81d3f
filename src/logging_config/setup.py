"""Logging Setup.

One-call logging configuration for the filter optimizer. JSON lines for
log collection, a colored single-line format for terminals. Both carry
the bound run context (run ID, chain run, phase).
"""

import dataclasses
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO, Optional

from src.logging_config.config import DEFAULT_LOGGING_CONFIG, LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import get_context_dict

# Record attributes copied into JSON output when a caller passes them via ``extra``
_EXTRA_FIELDS = ("duration_ms", "extra_data")


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter.

    One JSON object per line: timestamp, level, logger, message, service,
    plus the bound run context.
    """

    def __init__(self, service_name: str = "filter-optimizer", include_caller: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        if self.include_caller:
            entry["function"] = record.funcName
            entry["line"] = record.lineno

        entry.update(get_context_dict())

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line formatter for terminals."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        level = f"{record.levelname:8s}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, self.RESET)}{level}{self.RESET}"

        ctx = get_context_dict()
        tags = ""
        if ctx:
            tags = " [" + " ".join(f"{k}={v}" for k, v in ctx.items()) + "]"

        line = f"{timestamp} {level} {record.name}: {record.getMessage()}{tags}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def resolve_logging_config(config: Optional[LoggingConfig] = None) -> LoggingConfig:
    """Apply ``FILTER_OPT_LOG_LEVEL`` / ``FILTER_OPT_LOG_FORMAT`` overrides."""
    config = config or DEFAULT_LOGGING_CONFIG

    env_level = os.environ.get("FILTER_OPT_LOG_LEVEL", "").upper()
    if env_level in LogLevel.__members__:
        config = dataclasses.replace(config, level=LogLevel(env_level))

    env_format = os.environ.get("FILTER_OPT_LOG_FORMAT", "").lower()
    if env_format in {f.value for f in LogFormat}:
        config = dataclasses.replace(config, format=LogFormat(env_format))

    return config


def configure_logging(
    config: Optional[LoggingConfig] = None,
    stream: Optional[IO[str]] = None,
) -> LoggingConfig:
    """Configure the root logger once at startup.

    Args:
        config: Logging configuration. Uses defaults if not provided.
        stream: Output stream. Defaults to stderr so stdout stays free
                for results.

    Returns:
        The effective configuration after environment overrides.
    """
    config = resolve_logging_config(config)

    if config.format == LogFormat.JSON:
        formatter: logging.Formatter = StructuredFormatter(
            service_name=config.service_name,
            include_caller=config.include_caller,
        )
    else:
        target = stream or sys.stderr
        formatter = ConsoleFormatter(use_color=hasattr(target, "isatty") and target.isatty())

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.level.value))

    # Quiet the HTTP client's per-request logging
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return config
