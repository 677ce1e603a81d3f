"""Configuration evaluator.

Composes the rate limiter, the result cache, the backtester API, and the
scoring engine into a single ``evaluate(config)`` operation, and keeps the
evaluation history and best-so-far state for a run.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from src.filter_optimizer.client import BacktestApi
from src.filter_optimizer.config import (
    ErrorKind,
    EvaluatorConfig,
    OutcomeStatus,
    SampleThresholds,
)
from src.filter_optimizer.context import OptimizerContext
from src.filter_optimizer.exceptions import (
    ConfigValidationError,
    FilterOptimizerError,
    RateLimitError,
    TransientAPIError,
)
from src.filter_optimizer.models import (
    REJECTED_SCORE,
    EvaluationOutcome,
    EvaluationRecord,
    Metrics,
)
from src.filter_optimizer.parameters import (
    DEFAULT_TABLE,
    Config,
    ParameterTable,
    apply_pins,
    get_value,
    is_unset,
    normalize_config,
    validate_min_max,
)
from src.filter_optimizer.scoring import ScoringEngine
from src.resilience.retry import MaxRetriesExceeded, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class BestResult:
    """Best successful evaluation seen so far."""

    config: Optional[Config] = None
    score: float = REJECTED_SCORE
    metrics: Optional[Metrics] = None
    label: str = ""


class ConfigEvaluator:
    """Evaluate filter configurations against the backtester.

    Per call: normalize → pin → cache lookup → validate → rate-limited
    API call with retries → sample floor → score → cache, history, best.
    A cache hit never consumes rate-limit budget. The caller's config is
    never mutated.
    """

    def __init__(
        self,
        api: BacktestApi,
        context: OptimizerContext,
        scoring: Optional[ScoringEngine] = None,
        config: Optional[EvaluatorConfig] = None,
        thresholds: Optional[SampleThresholds] = None,
        pins: Optional[Mapping[str, Any]] = None,
        table: ParameterTable = DEFAULT_TABLE,
    ) -> None:
        self.config = config or EvaluatorConfig()
        self.scoring = scoring or ScoringEngine()
        self.thresholds = thresholds or self.scoring.config.thresholds
        self._api = api
        self._ctx = context
        self._table = table
        self._pins: dict[str, Any] = {}
        self.set_pins(pins)

        self._retry = RetryPolicy(
            {
                RateLimitError: self.config.rate_limit_retry,
                TransientAPIError: self.config.transient_retry,
            },
            clock=context.clock,
            rng=context.rng,
        )

        self._history: list[EvaluationRecord] = []
        self._best = BestResult()
        self._evaluations = 0
        self._api_calls = 0
        self._cache_hits = 0
        self._failures: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def context(self) -> OptimizerContext:
        return self._ctx

    @property
    def table(self) -> ParameterTable:
        return self._table

    @property
    def pins(self) -> dict[str, Any]:
        return dict(self._pins)

    @property
    def history(self) -> list[EvaluationRecord]:
        return list(self._history)

    @property
    def best(self) -> BestResult:
        return self._best

    @property
    def evaluation_count(self) -> int:
        return self._evaluations

    @property
    def api_call_count(self) -> int:
        return self._api_calls

    def set_pins(self, pins: Optional[Mapping[str, Any]]) -> None:
        """Replace the pin set; names must be known parameters."""
        self._pins = {}
        for name, value in (pins or {}).items():
            self._pins[name] = self._table.require(name).coerce(value)

    def reset_best(self) -> None:
        self._best = BestResult()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(self, config: Mapping[str, Any], label: str = "") -> EvaluationOutcome:
        """Evaluate *config* and return its outcome."""
        self._evaluations += 1

        try:
            candidate = normalize_config(config, self._table)
        except FilterOptimizerError as exc:
            outcome = EvaluationOutcome(
                status=OutcomeStatus.FAILED,
                config={},
                label=label,
                error_kind=exc.error_kind,
                error=exc.message,
            )
            self._record(outcome)
            return outcome

        candidate = apply_pins(candidate, self._pins, self._table)

        cached = self._ctx.cache.get(candidate)
        if cached is not None:
            self._cache_hits += 1
            outcome = dataclasses.replace(
                cached, label=label, cached=True, config=copy.deepcopy(cached.config)
            )
            logger.debug("Cache hit for %s (score %s)", label or "config", outcome.score)
            self._record(outcome)
            self._update_best(outcome)
            return outcome

        outcome = self._evaluate_uncached(candidate, label)
        self._ctx.cache.set(candidate, outcome)
        self._record(outcome)
        self._update_best(outcome)
        return outcome

    def validate(self, candidate: Config) -> None:
        """Check min/max pairs and the optional low-bundled constraint.

        Raises:
            ConfigValidationError: listing every violated rule.
        """
        errors = validate_min_max(candidate, self._table)
        if self.config.low_bundled_constraint:
            errors.extend(self._low_bundled_errors(candidate))
        if errors:
            raise ConfigValidationError("Invalid configuration: " + ", ".join(errors), errors=errors)

    def get_stats(self) -> dict[str, Any]:
        return {
            "evaluations": self._evaluations,
            "api_calls": self._api_calls,
            "cache_hits": self._cache_hits,
            "retries": self._retry.total_retries,
            "failures": dict(self._failures),
            "best_score": self._best.score,
            "cache": self._ctx.cache.get_stats(),
            "rate_limiter": self._ctx.rate_limiter.get_metrics(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _evaluate_uncached(self, candidate: Config, label: str) -> EvaluationOutcome:
        try:
            self.validate(candidate)
        except ConfigValidationError as exc:
            logger.debug("Skipping invalid configuration %s: %s", label, "; ".join(exc.errors))
            return EvaluationOutcome(
                status=OutcomeStatus.FAILED,
                config=candidate,
                label=label,
                error_kind=exc.error_kind,
                error=exc.message,
            )

        try:
            metrics = self._retry.call(self._call_api, candidate)
        except MaxRetriesExceeded as exc:
            last = exc.last_exception
            kind = last.error_kind if isinstance(last, FilterOptimizerError) else ErrorKind.INTERNAL
            logger.warning("Evaluation %s failed after %d attempts: %s", label, exc.attempts, last)
            return EvaluationOutcome(
                status=OutcomeStatus.FAILED,
                config=candidate,
                label=label,
                error_kind=kind,
                error=str(last),
            )

        if metrics.total_tokens < self.thresholds.min_tokens:
            return EvaluationOutcome(
                status=OutcomeStatus.REJECTED,
                config=candidate,
                label=label,
                metrics=metrics,
                error_kind=ErrorKind.SAMPLE_TOO_SMALL,
                error=(
                    f"Only {metrics.total_tokens} tokens "
                    f"(minimum {self.thresholds.min_tokens})"
                ),
            )

        result = self.scoring.score(metrics, self.thresholds)
        if result.rejected:
            return EvaluationOutcome(
                status=OutcomeStatus.REJECTED,
                config=candidate,
                label=label,
                metrics=metrics,
                score_result=result,
                error_kind=ErrorKind.SCORE_REJECTED,
                error=result.reason,
            )

        return EvaluationOutcome(
            status=OutcomeStatus.SUCCESS,
            config=candidate,
            label=label,
            metrics=metrics,
            score=result.score,
            score_result=result,
        )

    def _call_api(self, candidate: Config) -> Metrics:
        limiter = self._ctx.rate_limiter
        limiter.admit()
        self._api_calls += 1
        try:
            metrics = self._api.fetch(candidate)
        except RateLimitError:
            limiter.on_rejection()
            raise
        limiter.on_success()
        return metrics

    def _low_bundled_errors(self, candidate: Config) -> list[str]:
        errors = []
        lo = get_value(candidate, "Min Bundled %", self._table)
        hi = get_value(candidate, "Max Bundled %", self._table)
        if not is_unset(lo) and float(lo) >= self.config.low_bundled_min_limit:
            errors.append(f"Min Bundled % ({lo}) not below {self.config.low_bundled_min_limit}")
        if not is_unset(hi) and float(hi) >= self.config.low_bundled_max_limit:
            errors.append(f"Max Bundled % ({hi}) not below {self.config.low_bundled_max_limit}")
        return errors

    def _record(self, outcome: EvaluationOutcome) -> None:
        if outcome.status == OutcomeStatus.FAILED and outcome.error_kind is not None:
            key = outcome.error_kind.value
            self._failures[key] = self._failures.get(key, 0) + 1
        self._history.append(EvaluationRecord(
            test_number=self._evaluations,
            label=outcome.label,
            status=outcome.status,
            score=outcome.score,
            error_kind=outcome.error_kind,
            cached=outcome.cached,
            total_tokens=outcome.metrics.total_tokens if outcome.metrics else None,
        ))

    def _update_best(self, outcome: EvaluationOutcome) -> None:
        if not outcome.success or outcome.score is None:
            return
        if outcome.score > self._best.score:
            logger.info(
                "New best %.2f (was %.2f) from %s",
                outcome.score,
                self._best.score,
                outcome.label or "evaluation",
            )
            self._best = BestResult(
                config=copy.deepcopy(outcome.config),
                score=outcome.score,
                metrics=outcome.metrics,
                label=outcome.label,
            )
