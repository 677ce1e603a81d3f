"""Backtester API Client.

Maps a filter configuration onto backtester query parameters and fetches
the stats endpoint over HTTP via httpx. Responses are classified into
metrics or typed errors; retrying is left to the caller.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional, Protocol

import httpx

from src.filter_optimizer.config import BacktestApiConfig
from src.filter_optimizer.exceptions import (
    InvalidResponseError,
    MalformedRequestError,
    RateLimitError,
    TransientAPIError,
)
from src.filter_optimizer.models import Metrics
from src.filter_optimizer.parameters import (
    DEFAULT_TABLE,
    Config,
    ParameterTable,
    flatten_config,
    is_unset,
)
from src.logging_config.performance import log_performance

logger = logging.getLogger(__name__)

QueryParams = list[tuple[str, Any]]


class BacktestApi(Protocol):
    """Anything that can turn a configuration into backtest metrics."""

    def fetch(self, config: Config) -> Metrics:
        ...


def _format_number(value: float) -> Any:
    return int(value) if float(value).is_integer() else value


def build_query_params(
    config: Config,
    api_config: Optional[BacktestApiConfig] = None,
    table: ParameterTable = DEFAULT_TABLE,
) -> QueryParams:
    """Flatten *config* into ordered query parameters.

    Unset, not-a-number, and infinite values are omitted. The take-profit
    ladder is appended as repeated ``tpSize``/``tpGain`` pairs.
    """
    api_config = api_config or BacktestApiConfig()
    flat = flatten_config(config)
    params: QueryParams = []

    for rule in table.get_all():
        if not rule.api_name:
            continue
        value = flat.get(rule.name)
        if value is None or is_unset(value):
            continue
        if not rule.is_numeric:
            params.append((rule.api_name, "true" if value else "false"))
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            logger.warning("Skipping non-numeric parameter %s: %r", rule.name, value)
            continue
        if math.isnan(number) or math.isinf(number):
            logger.warning("Skipping invalid numeric parameter %s: %r", rule.name, value)
            continue
        if rule.api_name == "minAgScore":
            number = float(round(max(0.0, min(10.0, number))))
        params.append((rule.api_name, _format_number(number)))

    if api_config.trigger_mode is not None:
        params.append(("triggerMode", api_config.trigger_mode))
    params.append(("excludeSpoofedTokens", "true" if api_config.exclude_spoofed_tokens else "false"))
    params.append(("buyingAmount", api_config.buying_amount))
    if api_config.from_date:
        params.append(("fromDate", api_config.from_date))
    if api_config.to_date:
        params.append(("toDate", api_config.to_date))
    for size, gain in api_config.tp_ladder:
        params.append(("tpSize", size))
        params.append(("tpGain", gain))
    return params


class BacktestClient:
    """HTTP client for the backtester stats endpoint.

    Example:
        with BacktestClient(BacktestApiConfig(from_date="2025-01-01")) as client:
            metrics = client.fetch(config)
    """

    def __init__(
        self,
        config: Optional[BacktestApiConfig] = None,
        table: ParameterTable = DEFAULT_TABLE,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._config = config or BacktestApiConfig()
        self._table = table
        self._http_client = httpx.Client(
            base_url=self._config.base_url,
            timeout=self._config.request_timeout,
            transport=transport,
        )
        self._request_count = 0

    @property
    def config(self) -> BacktestApiConfig:
        return self._config

    @property
    def request_count(self) -> int:
        return self._request_count

    @log_performance(threshold_ms=5000)
    def fetch(self, config: Config) -> Metrics:
        """Run one backtest for *config*.

        Raises:
            RateLimitError: HTTP 429.
            MalformedRequestError: HTTP 500, with the request parameters.
            InvalidResponseError: a 2xx body that is not a JSON object.
            TransientAPIError: network failure or any other non-2xx status.
        """
        params = build_query_params(config, self._config, self._table)
        self._request_count += 1
        try:
            resp = self._http_client.get(self._config.stats_path, params=params)
        except httpx.HTTPError as exc:
            raise TransientAPIError(f"Request failed: {type(exc).__name__}: {exc}") from exc

        if resp.status_code == 429:
            raise RateLimitError(retry_after=_retry_after(resp))
        if resp.status_code == 500:
            flat = {k: v for k, v in params if k not in ("tpSize", "tpGain")}
            logger.error("Backtester returned 500 for parameters %s", flat)
            raise MalformedRequestError(
                "HTTP 500: backtester rejected the request parameters", params=flat
            )
        if not resp.is_success:
            raise TransientAPIError(
                f"HTTP {resp.status_code}: {resp.reason_phrase}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise InvalidResponseError(f"Invalid response format: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidResponseError()
        return Metrics.from_api(data)

    def close(self) -> None:
        self._http_client.close()

    def __enter__(self) -> BacktestClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _retry_after(resp: httpx.Response) -> float:
    header = resp.headers.get("Retry-After")
    if not header:
        return 0.0
    try:
        return max(0.0, float(header))
    except ValueError:
        return 0.0
