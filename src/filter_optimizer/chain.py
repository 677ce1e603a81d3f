"""Chained optimization runs.

Runs the optimizer several times in sequence. Run 1 starts from the
supplied baseline; every later run starts from the global best found so
far, so each pass refines the previous one with a fresh time slice.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from src.filter_optimizer.config import ChainConfig, OptimizerConfig
from src.filter_optimizer.evaluator import ConfigEvaluator
from src.filter_optimizer.exceptions import BaselineError, FilterOptimizerError
from src.filter_optimizer.models import REJECTED_SCORE, Metrics, score_to_json
from src.filter_optimizer.optimizer import FilterOptimizer, ProgressCallback
from src.filter_optimizer.parameters import Config, config_to_jsonable
from src.filter_optimizer.source import ConfigSource
from src.logging_config.context import RunContext

logger = logging.getLogger(__name__)


@dataclass
class ChainRunRecord:
    """One optimizer pass within a chain."""

    run_number: int
    start_config: Optional[Config] = None
    config: Optional[Config] = None
    score: float = REJECTED_SCORE
    metrics: Optional[Metrics] = None
    test_count: int = 0
    runtime_seconds: float = 0.0
    parameter_effectiveness: list[dict[str, Any]] = field(default_factory=list)
    target_reached: bool = False
    error: str = ""

    @property
    def success(self) -> bool:
        return not self.error

    def to_dict(self) -> dict:
        return {
            "run_number": self.run_number,
            "start_config": config_to_jsonable(self.start_config) if self.start_config else None,
            "config": config_to_jsonable(self.config) if self.config else None,
            "score": score_to_json(self.score),
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "test_count": self.test_count,
            "runtime_seconds": self.runtime_seconds,
            "parameter_effectiveness": self.parameter_effectiveness,
            "target_reached": self.target_reached,
            "error": self.error,
        }


@dataclass
class ChainResult:
    """Summary of a whole chain."""

    runs: list[ChainRunRecord] = field(default_factory=list)
    global_best_config: Optional[Config] = None
    global_best_score: float = REJECTED_SCORE
    global_best_metrics: Optional[Metrics] = None
    total_test_count: int = 0
    total_runtime: float = 0.0
    score_progression: list[float] = field(default_factory=list)
    parameter_effectiveness: list[dict[str, Any]] = field(default_factory=list)
    applied_ratio: Optional[float] = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def successful_runs(self) -> int:
        return sum(1 for r in self.runs if r.success)

    @property
    def failed_runs(self) -> int:
        return sum(1 for r in self.runs if not r.success)

    def to_dict(self) -> dict:
        return {
            "runs": [r.to_dict() for r in self.runs],
            "global_best_config": (
                config_to_jsonable(self.global_best_config) if self.global_best_config else None
            ),
            "global_best_score": score_to_json(self.global_best_score),
            "global_best_metrics": (
                self.global_best_metrics.to_dict() if self.global_best_metrics else None
            ),
            "total_test_count": self.total_test_count,
            "total_runtime": self.total_runtime,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "score_progression": [score_to_json(s) for s in self.score_progression],
            "parameter_effectiveness": self.parameter_effectiveness,
            "applied_ratio": self.applied_ratio,
            "completed_at": self.completed_at.isoformat(),
        }


class RunChain:
    """Run N optimizer passes, each seeded with the best so far.

    A run that fails (for example its baseline cannot be evaluated) is
    recorded with its error and the chain moves on. The chain stops early
    when the target score is reached or the context stop flag is set.
    """

    def __init__(
        self,
        evaluator: ConfigEvaluator,
        config: Optional[ChainConfig] = None,
        optimizer_config: Optional[OptimizerConfig] = None,
        source: Optional[ConfigSource] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.config = config or ChainConfig()
        self.optimizer_config = optimizer_config or OptimizerConfig()
        self._evaluator = evaluator
        self._ctx = evaluator.context
        self._source = source
        self._progress = progress_callback

    @property
    def evaluator(self) -> ConfigEvaluator:
        return self._evaluator

    def request_stop(self) -> None:
        """Ask the running pass to return its best so far and end the chain."""
        self._ctx.request_stop()

    def run(self, baseline: Optional[Mapping[str, Any]] = None) -> ChainResult:
        """Run the chain from *baseline* (or the source's current config).

        Raises:
            BaselineError: the config source could not be read.
        """
        cfg = self.config
        if baseline is None and self._source is not None:
            baseline = self._load_baseline()

        result = ChainResult()
        chain_start = self._ctx.now()
        logger.info(
            "Starting chain of %d runs, %.0fs each, target %.1f",
            cfg.runs,
            cfg.time_per_run_seconds,
            cfg.target_score,
        )

        for run_number in range(1, cfg.runs + 1):
            if self._ctx.stopped:
                logger.info("Stop requested, ending chain before run %d", run_number)
                break

            if run_number > 1 and result.global_best_config is not None:
                start_config = copy.deepcopy(result.global_best_config)
            else:
                start_config = copy.deepcopy(dict(baseline)) if baseline is not None else None

            record = self._run_once(run_number, start_config)
            result.runs.append(record)
            result.total_test_count += record.test_count

            if record.success and record.config is not None and record.score > result.global_best_score:
                logger.info(
                    "Run %d improved global best %.2f -> %.2f",
                    run_number,
                    result.global_best_score,
                    record.score,
                )
                result.global_best_score = record.score
                result.global_best_config = copy.deepcopy(record.config)
                result.global_best_metrics = record.metrics
            result.score_progression.append(result.global_best_score)

            if result.global_best_score >= cfg.target_score:
                logger.info("Target %.1f reached after run %d", cfg.target_score, run_number)
                break

        result.total_runtime = round(self._ctx.now() - chain_start, 3)
        result.parameter_effectiveness = aggregate_effectiveness(
            result.runs, cfg.effectiveness_top_n
        )

        if self._source is not None and result.global_best_config is not None:
            result.applied_ratio = self._source.apply(copy.deepcopy(result.global_best_config))
            logger.info("Applied global best to source (%.0f%% of fields)", result.applied_ratio * 100)

        logger.info(
            "Chain finished: best %.2f, %d/%d runs succeeded, %d tests in %.1fs",
            result.global_best_score,
            result.successful_runs,
            len(result.runs),
            result.total_test_count,
            result.total_runtime,
        )
        return result

    def _load_baseline(self) -> Config:
        try:
            return self._source.get_current()
        except (FilterOptimizerError, ValueError) as exc:
            # Includes json.JSONDecodeError
            reason = exc.message if isinstance(exc, FilterOptimizerError) else f"malformed configuration: {exc}"
            logger.error("Cannot read starting configuration: %s", reason)
            raise BaselineError(
                f"Cannot read starting configuration: {reason}", reason=reason
            ) from exc

    def _run_once(self, run_number: int, start_config: Optional[Config]) -> ChainRunRecord:
        optimizer_config = dataclasses.replace(
            self.optimizer_config,
            max_runtime_seconds=self.config.time_per_run_seconds,
            target_score=self.config.target_score,
        )
        optimizer = FilterOptimizer(self._evaluator, optimizer_config, self._progress)
        record = ChainRunRecord(run_number=run_number, start_config=copy.deepcopy(start_config))
        started = self._ctx.now()

        with RunContext(run_id=self._ctx.run_id, chain_run=run_number):
            logger.info("Chain run %d/%d starting", run_number, self.config.runs)
            try:
                outcome = optimizer.run(start_config)
            except FilterOptimizerError as exc:
                record.error = exc.message
                record.test_count = optimizer.test_count
                record.runtime_seconds = round(self._ctx.now() - started, 3)
                logger.error("Chain run %d failed: %s", run_number, exc.message)
                return record

        record.config = outcome.best_config
        record.score = outcome.best_score
        record.metrics = outcome.best_metrics
        record.test_count = outcome.test_count
        record.runtime_seconds = outcome.runtime_seconds
        record.parameter_effectiveness = outcome.parameter_effectiveness
        record.target_reached = outcome.target_reached
        return record


def aggregate_effectiveness(
    runs: list[ChainRunRecord],
    top_n: int = 5,
) -> list[dict[str, Any]]:
    """Average each parameter's improvement across runs.

    Parameters are ranked by average improvement weighted by how many runs
    reported them.
    """
    totals: dict[str, float] = {}
    counts: dict[str, int] = {}
    for run in runs:
        for entry in run.parameter_effectiveness:
            name = entry["parameter"]
            improvement = entry["improvement"]
            if not math.isfinite(improvement):
                continue
            totals[name] = totals.get(name, 0.0) + improvement
            counts[name] = counts.get(name, 0) + 1

    aggregated = [
        {
            "parameter": name,
            "avg_improvement": round(totals[name] / counts[name], 4),
            "frequency": counts[name],
        }
        for name in totals
    ]
    aggregated.sort(key=lambda e: e["avg_improvement"] * e["frequency"], reverse=True)
    return aggregated[:top_n]
