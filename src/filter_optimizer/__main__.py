"""Standalone CLI entry point for the filter optimizer.

Usage:
    python -m src.filter_optimizer --baseline filters.json
    python -m src.filter_optimizer --baseline filters.json --runs 3 --minutes 15
    python -m src.filter_optimizer --pin "Min MCAP (USD)=5000" --mode tp_only
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import signal
import sys
from typing import Optional

from src.filter_optimizer.chain import ChainResult, RunChain
from src.filter_optimizer.client import BacktestApi, BacktestClient
from src.filter_optimizer.config import PipelineConfig, ScoringMode
from src.filter_optimizer.context import OptimizerContext
from src.filter_optimizer.evaluator import ConfigEvaluator
from src.filter_optimizer.exceptions import BaselineError, FilterOptimizerError
from src.filter_optimizer.optimizer import ProgressCallback
from src.filter_optimizer.scoring import ScoringEngine, scale_token_thresholds
from src.filter_optimizer.source import ConfigSource, JsonFileConfigSource
from src.logging_config.config import LogLevel
from src.logging_config.setup import configure_logging
from src.resilience.clock import Clock
from src.settings import Settings, build_logging_config, build_pipeline_config

logger = logging.getLogger("filter_optimizer.cli")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m src.filter_optimizer",
        description="Adaptive filter optimizer: chained search against the backtester",
    )
    parser.add_argument(
        "--baseline", type=str, default=None,
        help="JSON file with the starting configuration; the best result is written back to it",
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="Write the chain summary JSON here instead of stdout",
    )
    parser.add_argument("--runs", type=int, default=None, help="Number of chained runs")
    parser.add_argument("--minutes", type=float, default=None, help="Time budget per run in minutes")
    parser.add_argument("--target", type=float, default=None, help="Stop once this score is reached")
    parser.add_argument(
        "--pin", type=str, action="append", default=[], metavar="NAME=VALUE",
        help="Hold a parameter fixed during the search (repeatable)",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible runs")
    parser.add_argument(
        "--mode", type=str, default=None, choices=[m.value for m in ScoringMode],
        help="Scoring mode (default: robust)",
    )
    parser.add_argument("--from-date", type=str, default=None, help="Backtest start date (YYYY-MM-DD)")
    parser.add_argument("--to-date", type=str, default=None, help="Backtest end date (YYYY-MM-DD)")
    parser.add_argument(
        "--low-bundled", action="store_true", default=False,
        help="Only accept configurations with low bundled-percentage limits",
    )
    parser.add_argument(
        "--genetic", action="store_true", default=False,
        help="Add the genetic-algorithm phase before the deep dive",
    )
    parser.add_argument(
        "--log-level", type=str, default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from FILTER_OPT_LOG_LEVEL or INFO)",
    )
    return parser.parse_args(argv)


def parse_pins(items: list[str]) -> dict[str, str]:
    """Parse ``NAME=VALUE`` pin arguments."""
    pins: dict[str, str] = {}
    for item in items:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Pin must look like NAME=VALUE, got {item!r}")
        pins[name.strip()] = value.strip()
    return pins


def load_config(args: argparse.Namespace, settings: Optional[Settings] = None) -> PipelineConfig:
    """Build PipelineConfig from settings, then apply CLI overrides."""
    config = build_pipeline_config(settings or Settings())

    if args.mode:
        config.scoring.mode = ScoringMode(args.mode)
    if args.from_date:
        config.api.from_date = args.from_date
    if args.to_date:
        config.api.to_date = args.to_date
    if args.low_bundled:
        config.evaluator.low_bundled_constraint = True
    if args.genetic:
        config.optimizer.use_genetic = True
    if args.seed is not None:
        config.seed = args.seed
    if args.runs is not None:
        config.chain.runs = args.runs
    if args.minutes is not None:
        config.chain.time_per_run_seconds = args.minutes * 60
        config.optimizer.max_runtime_seconds = args.minutes * 60
    if args.target is not None:
        config.chain.target_score = args.target
        config.optimizer.target_score = args.target
    return config


def create_chain(
    config: PipelineConfig,
    api: BacktestApi,
    source: Optional[ConfigSource] = None,
    pins: Optional[dict] = None,
    clock: Optional[Clock] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> RunChain:
    """Create a fully-wired RunChain around *api*."""
    context = OptimizerContext.from_config(config, clock=clock)
    thresholds = scale_token_thresholds(
        config.scoring.thresholds, config.api.from_date, config.api.to_date
    )
    evaluator = ConfigEvaluator(
        api,
        context,
        scoring=ScoringEngine(config.scoring),
        config=config.evaluator,
        thresholds=thresholds,
        pins=pins,
    )
    return RunChain(
        evaluator,
        config=config.chain,
        optimizer_config=config.optimizer,
        source=source,
        progress_callback=progress_callback,
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = Settings()

    logging_config = build_logging_config(settings)
    if args.log_level:
        logging_config = dataclasses.replace(logging_config, level=LogLevel(args.log_level))
    configure_logging(logging_config)

    try:
        pins = parse_pins(args.pin)
    except ValueError as exc:
        logger.error("%s", exc)
        return 2

    config = load_config(args, settings)
    source = JsonFileConfigSource(args.baseline) if args.baseline else None

    logger.info("=" * 60)
    logger.info("  Filter Optimizer")
    logger.info("  Backtester: %s", config.api.stats_url)
    logger.info("  Runs: %d x %.0fs, target %.1f", config.chain.runs,
                config.chain.time_per_run_seconds, config.chain.target_score)
    logger.info("  Scoring: %s", config.scoring.mode.value)
    if pins:
        logger.info("  Pinned: %s", ", ".join(pins))
    if args.baseline:
        logger.info("  Baseline: %s", args.baseline)
    logger.info("=" * 60)

    with BacktestClient(config.api) as client:
        try:
            chain = create_chain(config, client, source=source, pins=pins)
        except FilterOptimizerError as exc:
            logger.error("Cannot start: %s", exc.message)
            return 2

        def _handle_signal(signum, frame):
            logger.info("Received %s, stopping after the current evaluation",
                        signal.Signals(signum).name)
            chain.request_stop()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        try:
            result: ChainResult = chain.run()
        except BaselineError as exc:
            logger.error("Cannot start: %s", exc.message)
            return 2

    summary = json.dumps(result.to_dict(), indent=2, default=str)
    if args.output:
        with open(args.output, "w") as f:
            f.write(summary)
        logger.info("Wrote summary to %s", args.output)
    else:
        print(summary)

    return 0 if result.global_best_config is not None else 1


if __name__ == "__main__":
    sys.exit(main())
