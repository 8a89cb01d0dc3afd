"""
FRED web proxy service.
"""

import argparse
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Query

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreaker
from shared.config import ProxyConfig, get_config
from shared.errors import ProxyException, StoreError, UpstreamError, ValidationError
from shared.retry import RetryConfig

from service_fred_proxy.app.adapters.fred_client import FredClient, is_upstream_outage
from service_fred_proxy.app.caching.cache_store import CacheStore
from service_fred_proxy.app.caching.coalescer import RequestCoalescer
from service_fred_proxy.app.proxy import (
    FredProxyService,
    SeriesMetadataRequest,
    SeriesObservationRequest,
    parse_date,
)


# Upstream client errors that are meaningful to the caller as-is.
_PASSTHROUGH_UPSTREAM_STATUSES = {400, 404}


class ProxyGatewayService(BaseService):
    """HTTP front end for the cache-aside FRED proxy."""

    def __init__(self, config: ProxyConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__("fred_proxy", config)

        self.cache_store = CacheStore(config.sqlite_db)
        try:
            self.cache_store.create_tables()
        except StoreError as exc:
            # Serve straight from upstream until the store becomes usable.
            self.logger.error("Cache store unavailable at startup", error=exc.message, details=exc.details)

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=config.circuit_failure_threshold,
            recovery_timeout=config.circuit_recovery_seconds,
            name="fred",
            is_failure=is_upstream_outage,
        )
        self.fred_client = FredClient(
            config.fred_api_key,
            config.fred_base_url,
            timeout_seconds=config.upstream_timeout_seconds,
            circuit_breaker=self.circuit_breaker,
            metrics=self.metrics,
            transport=transport,
        )
        self.proxy = FredProxyService(
            self.fred_client,
            self.cache_store,
            coalescer=RequestCoalescer(metrics=self.metrics),
            metrics=self.metrics,
            retry_config=RetryConfig(
                max_attempts=config.upstream_max_attempts,
                base_delay=0.5,
                max_delay=5.0,
            ),
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.fred_client.close()

        self._setup_proxy_routes()
        self.app.state.proxy_service = self

        self.logger.info("FRED proxy configured", config=config.redacted())

    def _setup_proxy_routes(self):
        """Register the whitelisted FRED routes."""

        @self.app.get("/v0/observations")
        async def get_observations(
            series_id: Optional[str] = Query(None),
            observation_start: Optional[str] = Query(None),
            observation_end: Optional[str] = Query(None),
            realtime_start: Optional[str] = Query(None),
            realtime_end: Optional[str] = Query(None),
            refresh: bool = Query(False),
        ) -> List[Dict[str, str]]:
            request = SeriesObservationRequest(
                series_id=series_id or "",
                observation_start=parse_date(observation_start, field="observation_start"),
                observation_end=parse_date(observation_end, field="observation_end"),
                realtime_start=parse_date(realtime_start, field="realtime_start"),
                realtime_end=parse_date(realtime_end, field="realtime_end"),
            )
            observations = await self.proxy.handle_observations(request, refresh=refresh)
            return [observation.to_dict() for observation in observations]

        @self.app.get("/v0/series")
        async def get_series(
            series_id: Optional[str] = Query(None),
            refresh: bool = Query(False),
        ) -> Dict[str, Any]:
            request = SeriesMetadataRequest(series_id=series_id or "")
            return await self.proxy.handle_series_metadata(request, refresh=refresh)

    def _status_for(self, exc: ProxyException) -> int:
        if isinstance(exc, ValidationError):
            return 400
        if isinstance(exc, UpstreamError):
            if exc.timeout:
                return 504
            if exc.status_code in _PASSTHROUGH_UPSTREAM_STATUSES:
                return exc.status_code
            return 502
        return 500

    async def _check_dependencies(self) -> Dict[str, str]:
        try:
            await self.cache_store.count()
            store_status = "ok"
        except StoreError:
            store_status = "error"
        return {"cache_store": store_status}

    async def _health_details(self) -> Dict[str, Any]:
        try:
            entries: Optional[int] = await self.cache_store.count()
        except StoreError:
            entries = None
        return {
            "cache_entries": entries,
            "in_flight_fetches": self.proxy.coalescer.in_flight_count,
            "upstream_circuit": self.circuit_breaker.get_state(),
        }


def create_app(config: Optional[ProxyConfig] = None):
    """Create the FastAPI application."""
    service = ProxyGatewayService(config or get_config())
    return service.app


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Caching CORS proxy for the FRED API")
    parser.add_argument("-p", "--port", type=int, help="Port the HTTP server listens on")
    parser.add_argument("--host", help="Interface the HTTP server binds to")
    parser.add_argument(
        "--sqlite-db",
        metavar="FILE",
        help="Path to the SQLite file that stores previously fetched FRED data",
    )
    parser.add_argument("-f", "--fred-api-key", help="API key from https://fred.stlouisfed.org")
    args = parser.parse_args(argv)

    config = get_config(
        port=args.port,
        host=args.host,
        sqlite_db=args.sqlite_db,
        fred_api_key=args.fred_api_key,
    )
    ProxyGatewayService(config).run()


if __name__ == "__main__":
    main()
