"""Multi-phase filter optimizer.

Improves a running best configuration under a wall-clock budget by
running a fixed sequence of search phases, each gated by the fraction of
the budget still remaining:

    1. Baseline              evaluate the starting configuration
    2. Parameter sweep       one parameter at a time (remaining > 60%)
    3. Latin hypercube       stratified joint samples (remaining > 40%)
    4. Correlated catalog    hand-designed joint moves (remaining > 30%)
    5. Simulated annealing   random local moves (remaining > 15%)
    6. Genetic               opt-in population search (remaining > 10%)
    7. Deep dive             fine local sweep (remaining > 5%)

Every phase polls the context stop flag and the target score at the top
of each iteration. The best score never decreases.
"""

from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from src.filter_optimizer.config import (
    ANNEALING_TIME_GATE,
    CORRELATED_TIME_GATE,
    DEEP_DIVE_TIME_GATE,
    GENETIC_TIME_GATE,
    LHS_TIME_GATE,
    SWEEP_TIME_GATE,
    OptimizerConfig,
    OutcomeStatus,
    Phase,
)
from src.filter_optimizer.evaluator import ConfigEvaluator
from src.filter_optimizer.exceptions import BaselineError
from src.filter_optimizer.models import REJECTED_SCORE, EvaluationOutcome, Metrics, score_to_json
from src.filter_optimizer.parameters import (
    LINKED_PARAMETERS,
    UNSET,
    Config,
    ParamKind,
    ParameterRule,
    config_to_jsonable,
    generate_linked_values,
    generate_test_values,
    get_value,
    is_unset,
    with_values,
)
from src.logging_config.context import phase_context
from src.logging_config.performance import PerformanceTimer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Phase, int, float], None]

# Used when no starting configuration is supplied or it cannot be evaluated
FALLBACK_BASELINE: dict[str, dict[str, Any]] = {
    "basic": {"Max MCAP (USD)": 50000},
    "tokenDetails": {"Min AG Score": 3},
    "wallets": {"Min Unique Wallets": 1, "Max Unique Wallets": 8},
    "risk": {"Min Bundled %": 0, "Max Buy Ratio %": 100},
    "advanced": {"Max Liquidity %": 100},
}

# Joint moves a one-parameter sweep cannot find
CORRELATED_VARIATIONS: tuple[tuple[str, dict[str, Any]], ...] = (
    ("Micro cap window", {"Min MCAP (USD)": 0, "Max MCAP (USD)": 20000}),
    ("Small cap window", {"Min MCAP (USD)": 5000, "Max MCAP (USD)": 35000}),
    ("Mid cap window", {"Min MCAP (USD)": 10000, "Max MCAP (USD)": 50000}),
    ("Tight wallets", {
        "Min Unique Wallets": 1, "Max Unique Wallets": 3,
        "Min KYC Wallets": 0, "Max KYC Wallets": 2,
    }),
    ("Moderate wallets", {
        "Min Unique Wallets": 2, "Max Unique Wallets": 5,
        "Min KYC Wallets": 1, "Max KYC Wallets": 4,
    }),
    ("Wide wallets", {
        "Min Unique Wallets": 3, "Max Unique Wallets": 7,
        "Min KYC Wallets": 2, "Max KYC Wallets": 6,
    }),
    ("Low bundling", {"Min Bundled %": 0, "Max Bundled %": 20}),
    ("Moderate bundling", {"Min Bundled %": 0, "Max Bundled %": 35}),
    ("Bundled band", {"Min Bundled %": 5, "Max Bundled %": 50}),
    ("Fast holder growth", {"Holders Growth %": 100, "Holders Growth Minutes": 5}),
    ("Steady holder growth", {"Holders Growth %": 50, "Holders Growth Minutes": 30}),
    ("Balanced buy ratio", {"Min Buy Ratio %": 20, "Max Buy Ratio %": 80}),
)

_BOOLEAN_OPTIONS = (True, False, UNSET)


@dataclass
class OptimizationResult:
    """Output of a full optimization run."""

    best_config: Config
    best_score: float
    best_metrics: Optional[Metrics] = None
    test_count: int = 0
    history: list[dict[str, Any]] = field(default_factory=list)
    parameter_effectiveness: list[dict[str, Any]] = field(default_factory=list)
    phase_scores: dict[str, float] = field(default_factory=dict)
    phase_durations: dict[str, float] = field(default_factory=dict)
    improvements: list[dict[str, Any]] = field(default_factory=list)
    runtime_seconds: float = 0.0
    target_reached: bool = False
    stopped: bool = False
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "best_config": config_to_jsonable(self.best_config),
            "best_score": score_to_json(self.best_score),
            "best_metrics": self.best_metrics.to_dict() if self.best_metrics else None,
            "test_count": self.test_count,
            "history": self.history,
            "parameter_effectiveness": self.parameter_effectiveness,
            "phase_scores": {k: score_to_json(v) for k, v in self.phase_scores.items()},
            "phase_durations": self.phase_durations,
            "improvements": self.improvements,
            "runtime_seconds": self.runtime_seconds,
            "target_reached": self.target_reached,
            "stopped": self.stopped,
            "completed_at": self.completed_at.isoformat(),
        }


# ── Filter Optimizer ───────────────────────────────────────────────────


class FilterOptimizer:
    """Time-budgeted multi-phase search over filter configurations.

    Lifecycle:
        1. ``run(baseline)``: run every phase the budget allows.
        2. ``get_parameter_effectiveness()``: ranking by peak improvement.

    Pinned parameters (from the evaluator) are never varied. The linked
    holder-growth pair only ever moves as one unit.
    """

    def __init__(
        self,
        evaluator: ConfigEvaluator,
        config: Optional[OptimizerConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.config = config or OptimizerConfig()
        self._evaluator = evaluator
        self._ctx = evaluator.context
        self._rng = self._ctx.rng
        self._table = evaluator.table
        self._progress = progress_callback
        self._units = self._build_units()

        self._best_config: Config = {}
        self._best_score: float = REJECTED_SCORE
        self._best_metrics: Optional[Metrics] = None
        self._test_count = 0
        self._history: list[dict[str, Any]] = []
        self._improvements: list[dict[str, Any]] = []
        self._effectiveness: dict[str, float] = {}
        self._phase_scores: dict[str, float] = {}
        self._phase_durations: dict[str, float] = {}
        self._phase = Phase.BASELINE
        self._started_at = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def best_score(self) -> float:
        return self._best_score

    @property
    def best_config(self) -> Config:
        return copy.deepcopy(self._best_config)

    @property
    def test_count(self) -> int:
        return self._test_count

    def run(self, baseline: Optional[Mapping[str, Any]] = None) -> OptimizationResult:
        """Run the full phase sequence starting from *baseline*.

        Raises:
            BaselineError: neither *baseline* nor the fallback could be
                evaluated.
        """
        cfg = self.config
        self._started_at = self._ctx.now()
        logger.info(
            "Optimizer starting: budget %.0fs, target %.1f, %d search units",
            cfg.max_runtime_seconds,
            cfg.target_score,
            len(self._units),
        )

        self._run_phase(Phase.BASELINE, lambda: self._phase_baseline(baseline))

        phases: list[tuple[Phase, float, bool, Callable[[], None]]] = [
            (Phase.PARAMETER_SWEEP, SWEEP_TIME_GATE, True, self._phase_sweep),
            (Phase.LATIN_HYPERCUBE, LHS_TIME_GATE, cfg.use_latin_hypercube, self._phase_latin_hypercube),
            (Phase.CORRELATED, CORRELATED_TIME_GATE, cfg.use_correlated, self._phase_correlated),
            (Phase.SIMULATED_ANNEALING, ANNEALING_TIME_GATE, cfg.use_simulated_annealing, self._phase_annealing),
            (Phase.GENETIC, GENETIC_TIME_GATE, cfg.use_genetic, self._phase_genetic),
            (Phase.DEEP_DIVE, DEEP_DIVE_TIME_GATE, cfg.use_deep_dive, self._phase_deep_dive),
        ]
        for phase, gate, enabled, body in phases:
            if self._should_stop():
                self._phase_scores[phase.value] = self._best_score
                continue
            if not enabled or self._remaining_fraction() <= gate:
                logger.info("Skipping %s (remaining %.0f%%)", phase.value, self._remaining_fraction() * 100)
                self._phase_scores[phase.value] = self._best_score
                continue
            if phase == Phase.LATIN_HYPERCUBE and not self._effectiveness:
                self._phase_scores[phase.value] = self._best_score
                continue
            self._run_phase(phase, body)

        runtime = self._elapsed()
        logger.info(
            "Optimizer finished: best %.2f after %d tests in %.1fs",
            self._best_score,
            self._test_count,
            runtime,
        )
        return OptimizationResult(
            best_config=copy.deepcopy(self._best_config),
            best_score=self._best_score,
            best_metrics=self._best_metrics,
            test_count=self._test_count,
            history=list(self._history),
            parameter_effectiveness=self.get_parameter_effectiveness(),
            phase_scores=dict(self._phase_scores),
            phase_durations=dict(self._phase_durations),
            improvements=list(self._improvements),
            runtime_seconds=round(runtime, 3),
            target_reached=self._target_reached(),
            stopped=self._ctx.stopped,
        )

    def get_parameter_effectiveness(self) -> list[dict[str, Any]]:
        """Search units ranked by their peak recorded improvement."""
        ranked = sorted(self._effectiveness.items(), key=lambda kv: kv[1], reverse=True)
        return [{"parameter": name, "improvement": round(imp, 4)} for name, imp in ranked]

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _phase_baseline(self, baseline: Optional[Mapping[str, Any]]) -> None:
        start = baseline if baseline is not None else FALLBACK_BASELINE
        outcome = self._test(start, "Baseline")
        if outcome.status == OutcomeStatus.FAILED and baseline is not None:
            logger.warning("Baseline failed (%s), trying fallback configuration", outcome.error)
            outcome = self._test(FALLBACK_BASELINE, "Fallback baseline")
        if outcome.status == OutcomeStatus.FAILED:
            raise BaselineError(
                f"Could not establish baseline: {outcome.error}",
                reason=outcome.error_kind.value if outcome.error_kind else None,
            )
        if not outcome.success:
            # Scored below the floor: search from it, any success improves
            logger.warning("Baseline not competitive: %s", outcome.error)
            self._best_config = copy.deepcopy(outcome.config)
        logger.info("Baseline score: %.2f", self._best_score)

    def _phase_sweep(self) -> None:
        for unit in self._units:
            if self._should_stop():
                return
            start_score = self._best_score
            reference = start_score if math.isfinite(start_score) else 0.0
            peak = 0.0
            for values in self._unit_candidates(unit, self._best_config):
                if self._should_stop():
                    break
                outcome = self._test(
                    with_values(self._best_config, values, self._table),
                    f"Sweep {_describe(values)}",
                )
                if outcome.success:
                    peak = max(peak, outcome.score - reference)
            self._record_effect(unit, peak)

    def _phase_latin_hypercube(self) -> None:
        cfg = self.config
        top = self._top_units(cfg.lhs_top_params)
        n = cfg.lhs_samples
        if not top or n <= 0:
            return
        strata: list[list[int]] = []
        for _ in top:
            order = list(range(n))
            self._rng.shuffle(order)
            strata.append(order)
        for s in range(n):
            if self._should_stop():
                return
            values: dict[str, Any] = {}
            for unit, order in zip(top, strata):
                fraction = (order[s] + self._rng.random()) / n
                values.update(self._unit_at_fraction(unit, fraction))
            self._test(
                with_values(self._best_config, values, self._table),
                f"LHS sample {s + 1}/{n}",
            )

    def _phase_correlated(self) -> None:
        pinned = set(self._evaluator.pins)
        for label, variation in CORRELATED_VARIATIONS:
            if self._should_stop():
                return
            if pinned.intersection(variation) or any(n not in self._table for n in variation):
                continue
            values = {
                name: self._table.require(name).snap(value)
                for name, value in variation.items()
            }
            self._test(with_values(self._best_config, values, self._table), f"Correlated: {label}")

    def _phase_annealing(self) -> None:
        cfg = self.config
        if not self._units:
            return
        temperature = cfg.initial_temperature
        current_config = copy.deepcopy(self._best_config)
        current_score = self._best_score
        step = 0
        while temperature > cfg.final_temperature:
            if self._should_stop():
                return
            step += 1
            count = min(len(self._units), self._rng.randint(1, 2))
            chosen = self._rng.sample(self._units, count)
            values: dict[str, Any] = {}
            for unit in chosen:
                values.update(self._perturb(unit, current_config))
            outcome = self._test(
                with_values(current_config, values, self._table),
                f"Annealing step {step} (T={temperature:.2f})",
            )
            if outcome.success and self._accept(outcome.score - current_score, temperature):
                current_config = copy.deepcopy(outcome.config)
                current_score = outcome.score
            temperature *= cfg.cooling_rate

    def _accept(self, delta: float, temperature: float) -> bool:
        """Metropolis rule: improvements always, worse moves with exp(delta / T)."""
        if delta > 0:
            return True
        return self._rng.random() < math.exp(delta / temperature)

    def _phase_genetic(self) -> None:
        """Evolve a population seeded around the current best.

        Each generation keeps the elite, then fills up with children bred
        by tournament selection, per-section crossover and per-unit
        mutation.
        """
        cfg = self.config
        if not self._units or cfg.population_size < 2:
            return
        seeds = [self._seed_individual(i) for i in range(cfg.population_size)]
        population = self._score_population(seeds, 0)
        for generation in range(1, cfg.generations + 1):
            if self._should_stop() or not population:
                return
            population.sort(key=lambda individual: individual[1], reverse=True)
            elite = population[: max(0, min(cfg.elite_size, cfg.population_size - 1))]
            children: list[Config] = []
            while len(elite) + len(children) < cfg.population_size:
                first = self._tournament(population)
                second = self._tournament(population)
                children.append(self._mutate(self._crossover(first, second)))
            population = elite + self._score_population(children, generation)

    def _phase_deep_dive(self) -> None:
        cfg = self.config
        for unit in self._top_units(cfg.deep_dive_top_params):
            if self._should_stop():
                return
            start_score = self._best_score
            reference = start_score if math.isfinite(start_score) else 0.0
            peak = 0.0
            for values in self._fine_candidates(unit, self._best_config):
                if self._should_stop():
                    break
                outcome = self._test(
                    with_values(self._best_config, values, self._table),
                    f"Deep dive {_describe(values)}",
                )
                if outcome.success:
                    peak = max(peak, outcome.score - reference)
            self._record_effect(unit, peak)

    # ------------------------------------------------------------------
    # Candidate generation
    # ------------------------------------------------------------------

    def _build_units(self) -> list[tuple[str, ...]]:
        """Independently searchable groups of parameter names."""
        pinned = set(self._evaluator.pins)
        linked = {name for group in LINKED_PARAMETERS for name in group}
        units: list[tuple[str, ...]] = []
        for rule in self._table.get_all():
            if rule.name in pinned or rule.name in linked:
                continue
            units.append((rule.name,))
        for group in LINKED_PARAMETERS:
            if all(n in self._table for n in group) and not pinned.intersection(group):
                units.append(tuple(group))
        return units

    def _rules(self, unit: tuple[str, ...]) -> list[ParameterRule]:
        return [self._table.require(name) for name in unit]

    def _unit_candidates(self, unit: tuple[str, ...], config: Config) -> list[dict[str, Any]]:
        rules = self._rules(unit)
        if len(rules) == 1:
            rule = rules[0]
            current = get_value(config, rule.name, self._table)
            return [
                {rule.name: v}
                for v in generate_test_values(rule, current, self.config.max_sweep_values)
            ]
        current = {r.name: get_value(config, r.name, self._table) for r in rules}
        return generate_linked_values(rules, current, self.config.max_sweep_values)

    def _unit_at_fraction(self, unit: tuple[str, ...], fraction: float) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for rule in self._rules(unit):
            if rule.is_numeric:
                values[rule.name] = rule.at_fraction(fraction)
            else:
                index = min(len(_BOOLEAN_OPTIONS) - 1, int(fraction * len(_BOOLEAN_OPTIONS)))
                values[rule.name] = _BOOLEAN_OPTIONS[index]
        return values

    def _perturb(self, unit: tuple[str, ...], config: Config) -> dict[str, Any]:
        """Move *unit* by a bounded random delta snapped to its grid."""
        frac = self.config.perturbation_fraction
        shift = self._rng.uniform(-frac, frac)
        direction = 1 if shift >= 0 else -1
        values: dict[str, Any] = {}
        for rule in self._rules(unit):
            current = get_value(config, rule.name, self._table)
            if not rule.is_numeric:
                options = [v for v in _BOOLEAN_OPTIONS if v is not current]
                values[rule.name] = self._rng.choice(options)
                continue
            if is_unset(current):
                values[rule.name] = rule.at_fraction(self._rng.random())
                continue
            moved = rule.snap(float(current) + shift * rule.span)
            if moved == current:
                moved = rule.snap(float(current) + direction * rule.step)
            if moved == current:
                moved = rule.snap(float(current) - direction * rule.step)
            values[rule.name] = moved
        return values

    def _fine_candidates(self, unit: tuple[str, ...], config: Config) -> list[dict[str, Any]]:
        """Half-step neighbours of the current values, nearest first."""
        cfg = self.config
        rules = self._rules(unit)
        if not all(r.is_numeric for r in rules):
            return self._unit_candidates(unit, config)
        currents = {r.name: get_value(config, r.name, self._table) for r in rules}
        if any(is_unset(v) for v in currents.values()):
            return []

        multipliers: list[int] = []
        for m in range(1, cfg.deep_dive_multiplier + 1):
            multipliers.extend((m, -m))

        candidates: list[dict[str, Any]] = []
        seen: set[tuple] = set()
        for m in multipliers:
            values = {}
            for rule in rules:
                fine = _fine_step(rule)
                values[rule.name] = rule.snap(float(currents[rule.name]) + m * fine, step=fine)
            key = tuple(float(values[r.name]) for r in rules)
            if key in seen or all(values[r.name] == currents[r.name] for r in rules):
                continue
            seen.add(key)
            candidates.append(values)
            if len(candidates) >= cfg.deep_dive_max_values:
                break
        return candidates

    def _seed_individual(self, index: int) -> Config:
        if index == 0:
            return copy.deepcopy(self._best_config)
        values: dict[str, Any] = {}
        for unit in self._units:
            if self._rng.random() < self.config.seed_mutation_rate:
                values.update(self._unit_at_fraction(unit, self._rng.random()))
        return with_values(self._best_config, values, self._table)

    def _score_population(self, configs: list[Config], generation: int) -> list[tuple[Config, float]]:
        scored: list[tuple[Config, float]] = []
        for i, config in enumerate(configs, 1):
            if self._should_stop():
                break
            outcome = self._test(config, f"Genetic gen {generation} #{i}")
            fitness = outcome.score if outcome.success else REJECTED_SCORE
            scored.append((outcome.config or config, fitness))
        return scored

    def _tournament(self, population: list[tuple[Config, float]]) -> Config:
        size = max(1, self.config.tournament_size)
        contenders = [self._rng.choice(population) for _ in range(size)]
        return max(contenders, key=lambda individual: individual[1])[0]

    def _crossover(self, first: Config, second: Config) -> Config:
        child = copy.deepcopy(first)
        if self._rng.random() > self.config.crossover_rate:
            return child
        for section, fields in second.items():
            if self._rng.random() < 0.5:
                child[section] = copy.deepcopy(fields)
        return child

    def _mutate(self, config: Config) -> Config:
        values: dict[str, Any] = {}
        for unit in self._units:
            if self._rng.random() < self.config.mutation_rate:
                values.update(self._perturb(unit, config))
        return with_values(config, values, self._table) if values else config

    def _top_units(self, k: int) -> list[tuple[str, ...]]:
        by_label = {_unit_label(u): u for u in self._units}
        ranked = sorted(self._effectiveness.items(), key=lambda kv: kv[1], reverse=True)
        return [by_label[label] for label, _ in ranked if label in by_label][:k]

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _run_phase(self, phase: Phase, body: Callable[[], None]) -> None:
        self._phase = phase
        before = self._best_score
        tests_before = self._test_count
        timer = PerformanceTimer(f"phase {phase.value}", threshold_ms=60_000, clock=self._ctx.clock)
        with phase_context(phase.value), timer:
            body()
        self._phase_scores[phase.value] = self._best_score
        self._phase_durations[phase.value] = round(timer.duration_seconds, 3)
        logger.info(
            "Phase %s done: %d tests, best %.2f -> %.2f",
            phase.value,
            self._test_count - tests_before,
            before,
            self._best_score,
        )

    def _test(self, config: Mapping[str, Any], label: str) -> EvaluationOutcome:
        outcome = self._evaluator.evaluate(config, label)
        self._test_count += 1
        self._history.append({
            "test": self._test_count,
            "phase": self._phase.value,
            "label": label,
            "status": outcome.status.value,
            "score": outcome.score,
            "cached": outcome.cached,
        })
        if outcome.success and outcome.score is not None and outcome.score > self._best_score:
            self._improvements.append({
                "test": self._test_count,
                "phase": self._phase.value,
                "label": label,
                "old_score": self._best_score,
                "new_score": outcome.score,
            })
            self._best_score = outcome.score
            self._best_config = copy.deepcopy(outcome.config)
            self._best_metrics = outcome.metrics
        if self._progress is not None:
            self._progress(self._phase, self._test_count, self._best_score)
        return outcome

    def _record_effect(self, unit: tuple[str, ...], improvement: float) -> None:
        label = _unit_label(unit)
        self._effectiveness[label] = max(self._effectiveness.get(label, 0.0), improvement)

    def _elapsed(self) -> float:
        return self._ctx.now() - self._started_at

    def _remaining_fraction(self) -> float:
        budget = self.config.max_runtime_seconds
        if budget <= 0:
            return 0.0
        return max(0.0, 1.0 - self._elapsed() / budget)

    def _target_reached(self) -> bool:
        return self._best_score >= self.config.target_score

    def _should_stop(self) -> bool:
        return (
            self._ctx.stopped
            or self._target_reached()
            or self._elapsed() >= self.config.max_runtime_seconds
        )


# ── Helpers ───────────────────────────────────────────────────────────


def _unit_label(unit: tuple[str, ...]) -> str:
    return " + ".join(unit)


def _fine_step(rule: ParameterRule) -> float:
    if rule.kind == ParamKind.INTEGER:
        return float(max(1, int(rule.step // 2)))
    return rule.step / 2


def _describe(values: Mapping[str, Any]) -> str:
    return ", ".join(f"{k}={v}" for k, v in values.items())

