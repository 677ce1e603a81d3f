"""Data models for the evaluation pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Optional

from src.filter_optimizer.config import ErrorKind, OutcomeStatus, SampleTier
from src.filter_optimizer.parameters import Config, config_to_jsonable

# Sentinel score for anything that must never be selected as best
REJECTED_SCORE = float("-inf")


def score_to_json(score: Optional[float]) -> Optional[float]:
    """Non-finite scores serialize as null."""
    if score is None or not math.isfinite(score):
        return None
    return score


def _number(data: dict, key: str) -> float:
    value = data.get(key)
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


@dataclass
class Metrics:
    """Raw backtest result for one configuration."""

    total_tokens: int = 0
    tp_pnl_percent: float = 0.0
    win_rate: float = 0.0
    average_tp_gain: float = 0.0
    pnl_sol_tp: float = 0.0
    average_ath_gain: float = 0.0
    pnl_sol_ath: float = 0.0
    total_sol_spent: float = 0.0
    total_available_signals: int = 0

    @classmethod
    def from_api(cls, data: dict) -> Metrics:
        """Build from a backtester stats response.

        ``tpPnlPercent`` is used when the response carries it; otherwise it
        is derived from TP profit over SOL spent.
        """
        pnl_sol_tp = _number(data, "pnlSolTp")
        total_sol_spent = _number(data, "totalSolSpent")
        if data.get("tpPnlPercent") is not None:
            tp_pnl_percent = _number(data, "tpPnlPercent")
        elif total_sol_spent > 0:
            tp_pnl_percent = pnl_sol_tp / total_sol_spent * 100.0
        else:
            tp_pnl_percent = 0.0
        return cls(
            total_tokens=int(_number(data, "totalTokens")),
            tp_pnl_percent=tp_pnl_percent,
            win_rate=_number(data, "winRate"),
            average_tp_gain=_number(data, "averageTpGain"),
            pnl_sol_tp=pnl_sol_tp,
            average_ath_gain=_number(data, "averageAthGain"),
            pnl_sol_ath=_number(data, "pnlSolAth"),
            total_sol_spent=total_sol_spent,
            total_available_signals=int(_number(data, "totalAvailableSignals")),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> Metrics:
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


@dataclass
class ScoreResult:
    """Outcome of scoring one set of metrics.

    Attributes:
        score: Final score, or ``REJECTED_SCORE`` when rejected.
        rejected: True when the metrics fail the sample-tier win-rate floor.
        reason: Why the metrics were rejected.
        tier: Sample tier the metrics fell into.
        components: Intermediate values for traceability.
    """

    score: float
    rejected: bool = False
    reason: str = ""
    tier: Optional[SampleTier] = None
    components: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "rejected": self.rejected,
            "reason": self.reason,
            "tier": self.tier.value if self.tier else None,
            "components": dict(self.components),
        }


@dataclass
class EvaluationOutcome:
    """Result of one ``evaluate()`` call."""

    status: OutcomeStatus
    config: Config
    label: str = ""
    metrics: Optional[Metrics] = None
    score: Optional[float] = None
    score_result: Optional[ScoreResult] = None
    error_kind: Optional[ErrorKind] = None
    error: str = ""
    cached: bool = False

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def effective_score(self) -> float:
        """Score usable for comparisons; ``REJECTED_SCORE`` unless successful."""
        if self.success and self.score is not None:
            return self.score
        return REJECTED_SCORE

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "label": self.label,
            "config": config_to_jsonable(self.config),
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "score": self.score,
            "score_result": self.score_result.to_dict() if self.score_result else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "cached": self.cached,
        }


@dataclass
class EvaluationRecord:
    """History entry for one evaluation."""

    test_number: int
    label: str
    status: OutcomeStatus
    score: Optional[float] = None
    error_kind: Optional[ErrorKind] = None
    cached: bool = False
    total_tokens: Optional[int] = None
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "test_number": self.test_number,
            "label": self.label,
            "status": self.status.value,
            "score": self.score,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "cached": self.cached,
            "total_tokens": self.total_tokens,
            "evaluated_at": self.evaluated_at.isoformat(),
        }
