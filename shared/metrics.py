"""
Shared metrics configuration for the FRED web proxy.
"""

from typing import Dict, Any, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest


class MetricsCollector:
    """Centralized metrics collector for a service.

    Each collector owns its registry so several app instances (tests, workers)
    can coexist in one process without duplicate-registration errors.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_proxy_metrics()

    def _setup_proxy_metrics(self):
        """Set up cache and upstream metrics."""
        self._metrics["cache_hits_total"] = Counter(
            "cache_hits_total",
            "Total cache hits",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "cache_misses_total",
            "Total cache misses",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_store_errors_total"] = Counter(
            "cache_store_errors_total",
            "Total local cache store failures",
            ["operation"],
            registry=self.registry
        )

        self._metrics["upstream_requests_total"] = Counter(
            "upstream_requests_total",
            "Total upstream requests",
            ["operation", "outcome"],
            registry=self.registry
        )

        self._metrics["upstream_request_duration_seconds"] = Histogram(
            "upstream_request_duration_seconds",
            "Upstream request duration in seconds",
            ["operation"],
            registry=self.registry
        )

        self._metrics["coalesced_requests_total"] = Counter(
            "coalesced_requests_total",
            "Requests that joined an in-flight upstream fetch",
            ["cache_type"],
            registry=self.registry
        )

    def render(self) -> bytes:
        """Render the registry in Prometheus text exposition format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)

    def sample_value(self, metric_name: str, **labels) -> float:
        """Read back a counter's current value (0.0 when never incremented)."""
        sample_name = metric_name if metric_name.endswith("_total") else f"{metric_name}_total"
        return self.registry.get_sample_value(sample_name, labels) or 0.0


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
