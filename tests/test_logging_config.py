"""Tests for structured logging and run tracing."""

import io
import json
import logging
import sys

import pytest

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import (
    RunContext,
    generate_run_id,
    get_chain_run,
    get_context_dict,
    get_phase,
    get_run_id,
    phase_context,
)
from src.logging_config.performance import PerformanceTimer, log_performance
from src.logging_config.setup import (
    ConsoleFormatter,
    StructuredFormatter,
    configure_logging,
    resolve_logging_config,
)
from src.resilience.clock import FakeClock


def _record(msg="test", level=logging.INFO, name="test", lineno=1, exc_info=None):
    return logging.LogRecord(
        name=name, level=level, pathname="test.py",
        lineno=lineno, msg=msg, args=(), exc_info=exc_info,
    )


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    monkeypatch.delenv("FILTER_OPT_LOG_LEVEL", raising=False)
    monkeypatch.delenv("FILTER_OPT_LOG_FORMAT", raising=False)


class TestLoggingConfig:
    """Tests for logging configuration dataclasses."""

    def test_default_config_values(self):
        config = LoggingConfig()
        assert config.level == LogLevel.INFO
        assert config.format == LogFormat.CONSOLE
        assert config.include_caller is True
        assert config.slow_threshold_ms == 1000.0
        assert config.service_name == "filter-optimizer"

    def test_log_format_enum_values(self):
        assert LogFormat.JSON.value == "json"
        assert LogFormat.CONSOLE.value == "console"


class TestRunContext:
    """Tests for run/phase context propagation."""

    def test_generate_run_id_unique(self):
        ids = {generate_run_id() for _ in range(50)}
        assert len(ids) == 50

    def test_context_sets_run_and_chain(self):
        with RunContext(run_id="run-1", chain_run=2):
            assert get_run_id() == "run-1"
            assert get_chain_run() == 2

    def test_auto_generates_run_id(self):
        with RunContext() as ctx:
            assert ctx.run_id
            assert get_run_id() == ctx.run_id

    def test_context_cleanup_on_exit(self):
        with RunContext(run_id="temp"):
            pass
        assert get_run_id() == ""
        assert get_context_dict() == {}

    def test_phase_context(self):
        with RunContext(run_id="r", chain_run=1):
            with phase_context("parameter_sweep"):
                assert get_phase() == "parameter_sweep"
                assert get_context_dict() == {
                    "run_id": "r", "chain_run": 1, "phase": "parameter_sweep",
                }
            assert get_phase() == ""

    def test_bind_extra_context(self):
        with RunContext(run_id="r") as ctx:
            ctx.bind(seed=42)
            assert get_context_dict()["seed"] == 42

    def test_nested_contexts(self):
        with RunContext(run_id="outer", chain_run=1):
            with RunContext(run_id="outer", chain_run=2):
                assert get_chain_run() == 2
            assert get_chain_run() == 1


class TestStructuredFormatter:
    """Tests for JSON structured log formatting."""

    def test_formats_as_json(self):
        parsed = json.loads(StructuredFormatter().format(_record("hello world")))
        assert parsed["message"] == "hello world"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test"
        assert parsed["service"] == "filter-optimizer"
        assert "timestamp" in parsed

    def test_caller_toggle(self):
        with_caller = json.loads(StructuredFormatter(include_caller=True).format(_record(lineno=42)))
        assert with_caller["line"] == 42
        without = json.loads(StructuredFormatter(include_caller=False).format(_record()))
        assert "line" not in without

    def test_includes_run_context(self):
        with RunContext(run_id="ctx-test", chain_run=3), phase_context("deep_dive"):
            parsed = json.loads(StructuredFormatter().format(_record()))
        assert parsed["run_id"] == "ctx-test"
        assert parsed["chain_run"] == 3
        assert parsed["phase"] == "deep_dive"

    def test_formats_exception(self):
        try:
            raise ValueError("test error")
        except ValueError:
            record = _record("failed", logging.ERROR, exc_info=sys.exc_info())
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["exception"]["type"] == "ValueError"
        assert "test error" in parsed["exception"]["message"]

    def test_includes_duration(self):
        record = _record()
        record.duration_ms = 42.5
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["duration_ms"] == 42.5


class TestConsoleFormatter:
    """Tests for colored console log formatting."""

    def test_formats_readable_output(self):
        output = ConsoleFormatter().format(_record("hello", name="test.module"))
        assert "test.module" in output
        assert "hello" in output

    def test_includes_context_info(self):
        with RunContext(run_id="abc"):
            output = ConsoleFormatter(use_color=False).format(_record())
        assert "run_id=abc" in output

    def test_color_codes(self):
        assert "\033[31m" in ConsoleFormatter().format(_record(level=logging.ERROR))
        assert "\033[" not in ConsoleFormatter(use_color=False).format(_record())


class TestConfigureLogging:
    """Tests for the configure_logging setup function."""

    def test_json_format(self):
        stream = io.StringIO()
        configure_logging(LoggingConfig(format=LogFormat.JSON), stream=stream)
        logging.getLogger("filter.test").info("hello")
        assert json.loads(stream.getvalue().strip())["message"] == "hello"

    def test_console_format(self):
        configure_logging(LoggingConfig(format=LogFormat.CONSOLE))
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, ConsoleFormatter)

    def test_sets_log_level(self):
        configure_logging(LoggingConfig(level=LogLevel.DEBUG))
        assert logging.getLogger().level == logging.DEBUG

    def test_quiets_http_client(self):
        configure_logging()
        assert logging.getLogger("httpx").level >= logging.WARNING

    def test_env_var_override(self, monkeypatch):
        monkeypatch.setenv("FILTER_OPT_LOG_LEVEL", "debug")
        monkeypatch.setenv("FILTER_OPT_LOG_FORMAT", "JSON")
        config = resolve_logging_config(LoggingConfig(level=LogLevel.ERROR))
        assert config.level == LogLevel.DEBUG
        assert config.format == LogFormat.JSON

    def test_invalid_env_ignored(self, monkeypatch):
        monkeypatch.setenv("FILTER_OPT_LOG_LEVEL", "LOUD")
        assert resolve_logging_config(LoggingConfig()).level == LogLevel.INFO


class TestPerformanceLogging:
    """Tests for performance timing decorator and context manager."""

    def test_log_performance_returns_value(self):
        @log_performance(threshold_ms=10000)
        def fast_func():
            return 42

        assert fast_func() == 42

    def test_log_performance_preserves_name(self):
        @log_performance()
        def my_function():
            """My docstring."""

        assert my_function.__name__ == "my_function"
        assert my_function.__doc__ == "My docstring."

    def test_log_performance_with_exception(self):
        @log_performance(threshold_ms=10000)
        def failing_func():
            raise ValueError("test error")

        with pytest.raises(ValueError, match="test error"):
            failing_func()

    def test_slow_call_warns(self, caplog):
        @log_performance(threshold_ms=0, include_args=True)
        def slow(a, b=None):
            return a

        with caplog.at_level(logging.WARNING):
            slow(1, b=2)
        assert any("Slow operation" in r.getMessage() for r in caplog.records)

    def test_performance_timer(self):
        with PerformanceTimer("fast_op", threshold_ms=10000) as timer:
            pass
        assert 0 <= timer.duration_ms < 1000
        assert PerformanceTimer("op").threshold_ms == 1000.0

    def test_performance_timer_with_exception(self):
        with pytest.raises(ValueError):
            with PerformanceTimer("failing_op") as timer:
                raise ValueError("oops")
        assert timer.duration_ms >= 0

    def test_timer_follows_injected_clock(self, caplog):
        clock = FakeClock()
        with caplog.at_level(logging.WARNING):
            with PerformanceTimer("phase deep_dive", threshold_ms=2000, clock=clock) as timer:
                clock.advance(2.5)
        assert timer.duration_ms == 2500.0
        assert timer.duration_seconds == 2.5
        assert any("Slow operation: phase deep_dive" in r.getMessage() for r in caplog.records)

    def test_decorator_follows_injected_clock(self, caplog):
        clock = FakeClock()

        @log_performance(threshold_ms=500, clock=clock)
        def fetch():
            clock.advance(0.25)
            return "ok"

        with caplog.at_level(logging.DEBUG):
            assert fetch() == "ok"
        record = next(r for r in caplog.records if "fetch" in r.getMessage())
        assert record.levelno == logging.DEBUG
        assert record.duration_ms == 250.0
