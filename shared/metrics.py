"""
Shared metrics configuration for the project-management API.
"""

from typing import Dict, Any, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # One registry per collector so several apps can live in one process
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

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._setup_cache_metrics()

    def _setup_cache_metrics(self):
        """Set up response-cache metrics."""
        self._metrics["cache_lookups_total"] = Counter(
            "cache_lookups_total",
            "Response cache decisions",
            ["result"],
            registry=self.registry
        )

        self._metrics["cache_flushes_total"] = Counter(
            "cache_flushes_total",
            "Cache flushes triggered by mutating requests",
            ["method"],
            registry=self.registry
        )

        self._metrics["cache_store_errors_total"] = Counter(
            "cache_store_errors_total",
            "Failed key-value store operations",
            ["operation"],
            registry=self.registry
        )

        self._metrics["cache_store_ready"] = Gauge(
            "cache_store_ready",
            "1 when the key-value store connection is ready",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

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

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_cache_lookup(self, result: str):
        """Record a hit, miss or bypass decision."""
        self._metrics["cache_lookups_total"].labels(result=result).inc()

    def record_cache_flush(self, method: str):
        self._metrics["cache_flushes_total"].labels(method=method).inc()

    def record_store_error(self, operation: str):
        self._metrics["cache_store_errors_total"].labels(operation=operation).inc()

    def set_store_ready(self, ready: bool):
        self._metrics["cache_store_ready"].set(1 if ready else 0)

    def render(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Create a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
