"""Tests for the backtester HTTP client and query mapping."""

import httpx
import pytest

from src.filter_optimizer.client import BacktestClient, build_query_params
from src.filter_optimizer.config import BacktestApiConfig, ErrorKind
from src.filter_optimizer.exceptions import (
    InvalidResponseError,
    MalformedRequestError,
    RateLimitError,
    TransientAPIError,
)
from src.filter_optimizer.parameters import normalize_config


# ── Helpers ──────────────────────────────────────────────────────────


def _client(handler, **api_overrides):
    api = BacktestApiConfig(base_url="https://backtester.test", **api_overrides)
    return BacktestClient(api, transport=httpx.MockTransport(handler))


STATS = {
    "totalTokens": 640,
    "tpPnlPercent": 37.5,
    "winRate": 41.2,
    "averageTpGain": 80.0,
    "pnlSolTp": 12.0,
    "averageAthGain": 210.0,
    "pnlSolAth": 30.0,
    "totalSolSpent": 32.0,
    "totalAvailableSignals": 900,
}


# ── Query Mapping ────────────────────────────────────────────────────


class TestBuildQueryParams:
    def test_maps_set_values_only(self):
        config = normalize_config({"Min MCAP (USD)": 2000, "Max Holders": 20})
        params = dict(build_query_params(config))
        assert params["minMcap"] == 2000
        assert params["maxHolders"] == 20
        assert "maxMcap" not in params

    def test_booleans_and_ag_score(self):
        config = normalize_config({"Fresh Deployer": True, "Description": False})
        params = dict(build_query_params(config))
        assert params["needsFreshDeployer"] == "true"
        assert params["needsDescription"] == "false"
        config = normalize_config({"Min AG Score": 14})
        assert dict(build_query_params(config))["minAgScore"] == 10

    def test_fixed_fields_and_ladder(self):
        api = BacktestApiConfig(from_date="2025-01-01", to_date="2025-01-08")
        params = build_query_params(normalize_config(None), api)
        flat = dict(params)
        assert flat["triggerMode"] == 4
        assert flat["buyingAmount"] == 0.25
        assert flat["excludeSpoofedTokens"] == "true"
        assert flat["fromDate"] == "2025-01-01"
        assert flat["toDate"] == "2025-01-08"
        assert [v for k, v in params if k == "tpGain"] == [300, 650, 1400, 3000, 10000]
        assert [v for k, v in params if k == "tpSize"] == [20] * 5

    def test_float_kept(self):
        config = normalize_config({"Min Deployer Balance (SOL)": 1.5})
        assert dict(build_query_params(config))["minDeployerBalance"] == 1.5


# ── HTTP ─────────────────────────────────────────────────────────────


class TestBacktestClient:
    def test_fetch_parses_metrics(self):
        seen = {}

        def handler(request):
            seen["url"] = request.url
            return httpx.Response(200, json=STATS)

        with _client(handler) as client:
            metrics = client.fetch(normalize_config({"Min AG Score": 3}))
        assert metrics.total_tokens == 640
        assert metrics.tp_pnl_percent == 37.5
        assert metrics.win_rate == 41.2
        assert seen["url"].path == "/api/stats"
        assert seen["url"].params["minAgScore"] == "3"
        assert seen["url"].params.get_list("tpGain") == ["300", "650", "1400", "3000", "10000"]
        assert client.request_count == 1

    def test_derives_tp_percent(self):
        body = {k: v for k, v in STATS.items() if k != "tpPnlPercent"}

        with _client(lambda r: httpx.Response(200, json=body)) as client:
            metrics = client.fetch(normalize_config(None))
        assert metrics.tp_pnl_percent == pytest.approx(12.0 / 32.0 * 100)

    def test_429_is_rate_limit(self):
        with _client(lambda r: httpx.Response(429, headers={"Retry-After": "7"})) as client:
            with pytest.raises(RateLimitError) as info:
                client.fetch(normalize_config(None))
        assert info.value.retry_after == 7.0
        assert info.value.error_kind == ErrorKind.RATE_LIMIT

    def test_500_keeps_params(self):
        with _client(lambda r: httpx.Response(500)) as client:
            with pytest.raises(MalformedRequestError) as info:
                client.fetch(normalize_config({"Max Holders": 20}))
        assert info.value.params["maxHolders"] == 20
        assert info.value.error_kind == ErrorKind.MALFORMED_REQUEST
        assert isinstance(info.value, TransientAPIError)

    def test_other_status_is_transient(self):
        with _client(lambda r: httpx.Response(503)) as client:
            with pytest.raises(TransientAPIError) as info:
                client.fetch(normalize_config(None))
        assert info.value.status_code == 503

    def test_non_json_body(self):
        with _client(lambda r: httpx.Response(200, text="<html>oops</html>")) as client:
            with pytest.raises(InvalidResponseError):
                client.fetch(normalize_config(None))

    def test_non_object_body(self):
        with _client(lambda r: httpx.Response(200, json=[1, 2])) as client:
            with pytest.raises(InvalidResponseError):
                client.fetch(normalize_config(None))

    def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with _client(handler) as client:
            with pytest.raises(TransientAPIError) as info:
                client.fetch(normalize_config(None))
        assert info.value.error_kind == ErrorKind.TRANSIENT
