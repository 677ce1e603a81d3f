"""Composite scoring of backtest results.

Turns raw metrics into a single comparable score. The robust mode blends
return and win rate, discounts small samples through a log-scaled
reliability factor, and rejects results whose win rate is below the
minimum for their sample tier:

    reliability = clamp(ln(max(tokens, 1)) / ln(100), 0, 1)
    base        = tp_pnl% * w_return + win_rate * w_consistency
    score       = base * (1 - w_rel) + base * w_rel * reliability

The ``tp_only`` and ``winrate_only`` modes score a single metric and never
reject on sample size.
"""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import Optional, Union

from src.filter_optimizer.config import (
    MAX_THRESHOLD_SCALE,
    MIN_THRESHOLD_SCALE,
    REFERENCE_RANGE_DAYS,
    RELIABILITY_REFERENCE_TOKENS,
    SampleThresholds,
    SampleTier,
    ScoringConfig,
    ScoringMode,
)
from src.filter_optimizer.models import REJECTED_SCORE, Metrics, ScoreResult

logger = logging.getLogger(__name__)


class ScoringEngine:
    """Pure metrics → score function with selectable mode."""

    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self.config = config or ScoringConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def score(
        self,
        metrics: Metrics,
        thresholds: Optional[SampleThresholds] = None,
        mode: Optional[ScoringMode] = None,
    ) -> ScoreResult:
        """Score *metrics* under *mode* (defaults to the configured mode)."""
        cfg = self.config
        thresholds = thresholds or cfg.thresholds
        mode = ScoringMode(mode or cfg.mode)

        reliability = reliability_factor(metrics.total_tokens)
        tier = self.tier(metrics.total_tokens, thresholds)
        min_win_rate = self.min_win_rate(tier)

        if mode == ScoringMode.ROBUST and metrics.win_rate < min_win_rate:
            reason = (
                f"Win rate {metrics.win_rate:.1f}% below {min_win_rate:.1f}% minimum "
                f"for {tier.value} sample ({metrics.total_tokens} tokens)"
            )
            logger.debug("Score rejected: %s", reason)
            return ScoreResult(
                score=REJECTED_SCORE,
                rejected=True,
                reason=reason,
                tier=tier,
                components={
                    "reliability_factor": reliability,
                    "min_win_rate": min_win_rate,
                    "win_rate": metrics.win_rate,
                },
            )

        w_return, w_consistency, w_reliability = self.weights(mode)
        return_component = metrics.tp_pnl_percent * w_return
        consistency_component = metrics.win_rate * w_consistency
        base = return_component + consistency_component
        final = base * (1 - w_reliability) + base * w_reliability * reliability

        return ScoreResult(
            score=final,
            rejected=False,
            tier=tier,
            components={
                "return_component": return_component,
                "consistency_component": consistency_component,
                "base_score": base,
                "reliability_factor": reliability,
                "reliability_weight": w_reliability,
                "final_score": final,
            },
        )

    def weights(self, mode: ScoringMode) -> tuple[float, float, float]:
        """Return ``(return, consistency, reliability)`` weights for *mode*."""
        if mode == ScoringMode.TP_ONLY:
            return 1.0, 0.0, 0.0
        if mode == ScoringMode.WINRATE_ONLY:
            return 0.0, 1.0, 0.0
        cfg = self.config
        return cfg.return_weight, cfg.consistency_weight, cfg.reliability_weight

    @staticmethod
    def tier(total_tokens: int, thresholds: SampleThresholds) -> SampleTier:
        if total_tokens >= thresholds.large:
            return SampleTier.LARGE
        if total_tokens >= thresholds.medium:
            return SampleTier.MEDIUM
        return SampleTier.SMALL

    def min_win_rate(self, tier: SampleTier) -> float:
        cfg = self.config
        return {
            SampleTier.SMALL: cfg.min_win_rate_small,
            SampleTier.MEDIUM: cfg.min_win_rate_medium,
            SampleTier.LARGE: cfg.min_win_rate_large,
        }[tier]


def reliability_factor(total_tokens: int) -> float:
    """Log-scaled confidence in a sample of *total_tokens* tokens."""
    raw = math.log(max(total_tokens, 1)) / math.log(RELIABILITY_REFERENCE_TOKENS)
    return max(0.0, min(1.0, raw))


# ── Threshold scaling ─────────────────────────────────────────────────


DateLike = Union[str, date, None]


def _parse_date(value: DateLike) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def threshold_scale(from_date: DateLike, to_date: DateLike) -> float:
    """Scale factor for sample thresholds given a backtest date range.

    Thresholds are calibrated for a one-week range. Without a complete
    range the factor is 1.
    """
    start, end = _parse_date(from_date), _parse_date(to_date)
    if start is None or end is None:
        return 1.0
    days = max((end - start).days, 1)
    return max(MIN_THRESHOLD_SCALE, min(MAX_THRESHOLD_SCALE, days / REFERENCE_RANGE_DAYS))


def scale_token_thresholds(
    thresholds: SampleThresholds,
    from_date: DateLike = None,
    to_date: DateLike = None,
) -> SampleThresholds:
    """Return *thresholds* scaled to the backtest date range."""
    scale = threshold_scale(from_date, to_date)
    if scale == 1.0:
        return SampleThresholds(thresholds.min_tokens, thresholds.medium, thresholds.large)
    scaled = SampleThresholds(
        min_tokens=max(1, round(thresholds.min_tokens * scale)),
        medium=max(1, round(thresholds.medium * scale)),
        large=max(1, round(thresholds.large * scale)),
    )
    logger.info(
        "Scaled sample thresholds by %.2f: min %d, medium %d, large %d",
        scale,
        scaled.min_tokens,
        scaled.medium,
        scaled.large,
    )
    return scaled
