"""Tests for the scoring engine and sample-threshold scaling."""

import math

import pytest

from src.filter_optimizer.config import (
    SampleThresholds,
    SampleTier,
    ScoringConfig,
    ScoringMode,
)
from src.filter_optimizer.models import REJECTED_SCORE, Metrics
from src.filter_optimizer.scoring import (
    ScoringEngine,
    reliability_factor,
    scale_token_thresholds,
    threshold_scale,
)


def _metrics(tokens, tp, win):
    return Metrics(total_tokens=tokens, tp_pnl_percent=tp, win_rate=win)


# ── Robust Mode ──────────────────────────────────────────────────────


class TestRobustScoring:
    def test_medium_tier_rejects_low_win_rate(self):
        result = ScoringEngine().score(_metrics(800, 42.0, 31.0))
        assert result.rejected
        assert result.score == REJECTED_SCORE
        assert result.tier == SampleTier.MEDIUM
        assert "33.0" in result.reason

    def test_large_tier_accepts_same_metrics(self):
        result = ScoringEngine().score(_metrics(1200, 42.0, 31.0))
        assert not result.rejected
        assert result.tier == SampleTier.LARGE
        assert result.components["reliability_factor"] == 1.0
        assert result.score == pytest.approx(37.6)

    def test_small_tier_minimum(self):
        engine = ScoringEngine()
        assert engine.score(_metrics(100, 10.0, 34.9)).rejected
        assert not engine.score(_metrics(100, 10.0, 35.0)).rejected

    def test_small_sample_discounted(self):
        engine = ScoringEngine()
        small = engine.score(_metrics(20, 50.0, 40.0))
        full = engine.score(_metrics(200, 50.0, 40.0))
        base = 50.0 * 0.6 + 40.0 * 0.4
        rel = math.log(20) / math.log(100)
        assert small.score == pytest.approx(base * 0.7 + base * 0.3 * rel)
        assert full.score == pytest.approx(base)
        assert small.score < full.score

    def test_monotone_in_tp_and_win_rate(self):
        engine = ScoringEngine()
        low = engine.score(_metrics(300, 10.0, 40.0)).score
        more_tp = engine.score(_metrics(300, 20.0, 40.0)).score
        more_win = engine.score(_metrics(300, 10.0, 50.0)).score
        assert more_tp > low
        assert more_win > low

    def test_custom_thresholds(self):
        thresholds = SampleThresholds(min_tokens=5, medium=50, large=100)
        result = ScoringEngine().score(_metrics(60, 10.0, 32.0), thresholds)
        assert result.tier == SampleTier.MEDIUM
        assert result.rejected


# ── Other Modes ──────────────────────────────────────────────────────


class TestSingleMetricModes:
    def test_tp_only(self):
        engine = ScoringEngine(ScoringConfig(mode=ScoringMode.TP_ONLY))
        result = engine.score(_metrics(50, 42.0, 5.0))
        assert not result.rejected
        assert result.score == pytest.approx(42.0)

    def test_winrate_only(self):
        engine = ScoringEngine()
        result = engine.score(_metrics(800, 42.0, 31.0), mode=ScoringMode.WINRATE_ONLY)
        assert not result.rejected
        assert result.score == pytest.approx(31.0)

    def test_weights(self):
        engine = ScoringEngine()
        assert engine.weights(ScoringMode.ROBUST) == (0.6, 0.4, 0.3)
        assert engine.weights(ScoringMode.TP_ONLY) == (1.0, 0.0, 0.0)


# ── Reliability & Scaling ────────────────────────────────────────────


class TestReliabilityFactor:
    def test_bounds(self):
        assert reliability_factor(0) == 0.0
        assert reliability_factor(1) == 0.0
        assert reliability_factor(100) == pytest.approx(1.0)
        assert reliability_factor(5000) == 1.0

    def test_increasing(self):
        assert reliability_factor(10) < reliability_factor(50) < reliability_factor(99)


class TestThresholdScaling:
    def test_one_week_unscaled(self):
        assert threshold_scale("2025-01-01", "2025-01-08") == pytest.approx(1.0)

    def test_missing_range(self):
        assert threshold_scale(None, "2025-01-08") == 1.0

    def test_two_weeks_doubles(self):
        scaled = scale_token_thresholds(SampleThresholds(), "2025-01-01", "2025-01-15")
        assert scaled.min_tokens == 20
        assert scaled.medium == 1000
        assert scaled.large == 2000

    def test_clamped(self):
        assert threshold_scale("2025-01-01", "2025-01-02") == 0.25
        assert threshold_scale("2025-01-01", "2026-01-01") == 4.0

    def test_returns_copy(self):
        base = SampleThresholds()
        scaled = scale_token_thresholds(base)
        assert scaled == base
        assert scaled is not base
