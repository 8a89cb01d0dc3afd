"""
FRED API client used by the proxy on cache misses.
"""

from __future__ import annotations

import time
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

import httpx
from pydantic import SecretStr

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import UpstreamError
from shared.logging import get_logger

from service_fred_proxy.app.proxy.models import (
    Observation,
    SeriesMetadataRequest,
    SeriesObservationRequest,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


PAGE_LIMIT = 10_000


def is_upstream_outage(exc: BaseException) -> bool:
    """Only outages count against the breaker, not unknown series ids."""
    return not isinstance(exc, UpstreamError) or exc.transient


class FredClient:
    """Authenticated client for the ``/series`` and ``/series/observations`` endpoints."""

    def __init__(
        self,
        api_key: SecretStr,
        base_url: str = "https://api.stlouisfed.org/fred",
        *,
        timeout_seconds: float = 30.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional["MetricsCollector"] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics
        self.logger = get_logger("fred_proxy.fred_client")
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            name="fred",
            is_failure=is_upstream_outage,
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            follow_redirects=True,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_observations(self, req: SeriesObservationRequest) -> Tuple[Observation, ...]:
        """Fetch every observation for the request, following FRED's paging."""
        params: Dict[str, Any] = {
            "series_id": req.series_id,
            "sort_order": "asc",
            "limit": PAGE_LIMIT,
        }
        for name in ("observation_start", "observation_end", "realtime_start", "realtime_end"):
            value: Optional[date] = getattr(req, name)
            if value is not None:
                params[name] = value.isoformat()

        observations: List[Observation] = []
        offset = 0
        while True:
            page_params = dict(params)
            if offset:
                page_params["offset"] = offset
            body = await self._get("/series/observations", page_params, operation="observations")
            page = self._parse_observations(body)
            observations.extend(page)

            limit = body.get("limit", PAGE_LIMIT)
            if not isinstance(limit, int) or limit <= 0 or len(page) < limit:
                break
            offset += len(page)

        self.logger.info(
            "Fetched observations",
            series_id=req.series_id,
            count=len(observations),
        )
        return tuple(observations)

    async def fetch_series_metadata(self, req: SeriesMetadataRequest) -> Dict[str, Any]:
        """Fetch the series record (title, frequency, units, ...) verbatim."""
        body = await self._get("/series", {"series_id": req.series_id}, operation="series")
        seriess = body.get("seriess")
        if not isinstance(seriess, list):
            raise UpstreamError("series response missing 'seriess'", details={"reason": "malformed_body"})
        if not seriess:
            raise UpstreamError(f"series {req.series_id} not found", status_code=404)
        series = seriess[0]
        if not isinstance(series, dict):
            raise UpstreamError("series entry is not an object", details={"reason": "malformed_body"})
        return series

    async def _get(self, path: str, params: Dict[str, Any], *, operation: str) -> Dict[str, Any]:
        """Issue one GET through the circuit breaker and return the decoded JSON body."""
        try:
            return await self.circuit_breaker.call(self._request, path, params, operation)
        except CircuitBreakerOpenException:
            self._record(operation, "circuit_open")
            raise UpstreamError("upstream temporarily unavailable", status_code=503)

    async def _request(self, path: str, params: Dict[str, Any], operation: str) -> Dict[str, Any]:
        query = dict(params)
        query["api_key"] = self._api_key.get_secret_value()
        query["file_type"] = "json"

        start = time.perf_counter()
        try:
            response = await self._client.get(path, params=query)
        except httpx.TimeoutException as exc:
            self._record(operation, "timeout")
            self.logger.warning("FRED request timed out", path=path, params=params)
            raise UpstreamError(
                f"request timed out after {self.timeout_seconds}s",
                timeout=True,
                details={"reason": type(exc).__name__},
            ) from None
        except httpx.HTTPError as exc:
            self._record(operation, "network_error")
            self.logger.warning("FRED request failed", path=path, params=params, error_type=type(exc).__name__)
            raise UpstreamError("network error", details={"reason": type(exc).__name__}) from None
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "upstream_request_duration_seconds",
                    time.perf_counter() - start,
                    operation=operation,
                )

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code != 200:
            self._record(operation, "http_error")
            message = f"unexpected status {response.status_code}"
            status_code = response.status_code
            if isinstance(body, dict) and "error_message" in body:
                message = str(body["error_message"])
                if isinstance(body.get("error_code"), int):
                    status_code = body["error_code"]
            self.logger.error(
                "FRED request rejected",
                path=path,
                params=params,
                status_code=response.status_code,
                error_message=message,
            )
            raise UpstreamError(message, status_code=status_code)

        if not isinstance(body, dict):
            self._record(operation, "malformed_body")
            self.logger.error("FRED returned a malformed body", path=path, params=params)
            raise UpstreamError("malformed JSON body", status_code=response.status_code,
                                details={"reason": "malformed_body"})

        self._record(operation, "success")
        return body

    @staticmethod
    def _parse_observations(body: Dict[str, Any]) -> List[Observation]:
        raw = body.get("observations")
        if not isinstance(raw, list):
            raise UpstreamError("observations response missing 'observations'",
                                details={"reason": "malformed_body"})
        parsed: List[Observation] = []
        for item in raw:
            try:
                observed_on = date.fromisoformat(item["date"])
                value = item["value"]
            except (KeyError, TypeError, ValueError):
                raise UpstreamError("malformed observation record",
                                    details={"reason": "malformed_body"}) from None
            if not isinstance(value, str):
                raise UpstreamError("observation value is not a string",
                                    details={"reason": "malformed_body"})
            parsed.append(Observation(date=observed_on, value=value))
        return parsed

    def _record(self, operation: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("upstream_requests_total", operation=operation, outcome=outcome)
