"""
Cache-aside orchestration for FRED requests.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar, TYPE_CHECKING

from shared.errors import StoreError, UpstreamError
from shared.logging import get_logger
from shared.retry import RetryConfig, call_with_retry

from service_fred_proxy.app.caching.cache_store import CacheEntry, CacheStore
from service_fred_proxy.app.caching.coalescer import RequestCoalescer
from service_fred_proxy.app.proxy.models import (
    Observation,
    SeriesMetadataRequest,
    SeriesObservationRequest,
    decode_metadata,
    decode_observations,
    encode_metadata,
    encode_observations,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from service_fred_proxy.app.adapters.fred_client import FredClient
    from shared.metrics import MetricsCollector


T = TypeVar("T")


def _retry_transient(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and exc.transient


class FredProxyService:
    """Serves FRED requests from the local store, fetching from upstream on a miss."""

    def __init__(
        self,
        upstream: "FredClient",
        store: CacheStore,
        *,
        coalescer: Optional[RequestCoalescer] = None,
        metrics: Optional["MetricsCollector"] = None,
        retry_config: Optional[RetryConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.upstream = upstream
        self.store = store
        self.metrics = metrics
        self.coalescer = coalescer or RequestCoalescer(metrics=metrics)
        self.retry_config = retry_config or RetryConfig(max_attempts=1)
        self._clock = clock
        self.logger = get_logger("fred_proxy.service")

    async def handle_observations(
        self,
        req: SeriesObservationRequest,
        *,
        refresh: bool = False,
    ) -> Tuple[Observation, ...]:
        req = req.validate()
        return await self._serve(
            cache_type="observations",
            key=req.cache_key(),
            fetch=lambda: self.upstream.fetch_observations(req),
            encode=encode_observations,
            decode=decode_observations,
            read_cache=not (refresh or req.is_realtime),
            write_cache=not req.is_realtime,
        )

    async def handle_series_metadata(
        self,
        req: SeriesMetadataRequest,
        *,
        refresh: bool = False,
    ) -> Dict[str, Any]:
        req = req.validate()
        return await self._serve(
            cache_type="series",
            key=req.cache_key(),
            fetch=lambda: self.upstream.fetch_series_metadata(req),
            encode=encode_metadata,
            decode=decode_metadata,
            read_cache=not refresh,
            write_cache=True,
        )

    async def _serve(
        self,
        *,
        cache_type: str,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        encode: Callable[[T], bytes],
        decode: Callable[[bytes], T],
        read_cache: bool,
        write_cache: bool,
    ) -> T:
        if read_cache:
            cached = await self._read(key, cache_type, decode)
            if cached is not None:
                self._count("cache_hits_total", cache_type)
                return cached
        self._count("cache_misses_total", cache_type)

        async def fetch_and_store() -> T:
            # A fetch that finished just before this one registered may already
            # have populated the entry.
            if read_cache:
                cached = await self._read(key, cache_type, decode)
                if cached is not None:
                    return cached

            result = await call_with_retry(
                fetch,
                exceptions=(UpstreamError,),
                config=self.retry_config,
                should_retry=_retry_transient,
                name=f"fetch_{cache_type}",
            )
            if write_cache:
                await self._write(CacheEntry(key=key, payload=encode(result), fetched_at=self._clock()))
            return result

        return await self.coalescer.resolve(
            key,
            fetch_and_store,
            cache_type=cache_type,
            fresh=not read_cache,
        )

    async def _read(self, key: str, cache_type: str, decode: Callable[[bytes], T]) -> Optional[T]:
        """Return the decoded cached payload, or None on a miss or unusable entry."""
        try:
            entry = await self.store.get(key)
        except StoreError as exc:
            self.logger.warning("Cache read failed; treating as miss", key=key, error=exc.message)
            self._count_store_error("read")
            return None

        if entry is None:
            return None

        try:
            return decode(entry.payload)
        except (ValueError, KeyError, TypeError) as exc:
            self.logger.warning(
                "Cached payload could not be decoded; treating as miss",
                key=key,
                cache_type=cache_type,
                error_type=type(exc).__name__,
            )
            self._count_store_error("decode")
            return None

    async def _write(self, entry: CacheEntry) -> None:
        try:
            await self.store.put(entry)
        except StoreError as exc:
            self.logger.error("Cache write failed; serving uncached result", key=entry.key, error=exc.message)
            self._count_store_error("write")

    def _count(self, metric: str, cache_type: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric, cache_type=cache_type)

    def _count_store_error(self, operation: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_store_errors_total", operation=operation)
