"""
Shared metrics configuration for the Optics Orders service.
"""

from typing import Dict, Any, Optional
import time
import threading
from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest


class MetricsCollector:
    """Centralized metrics collector for the service."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
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

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_orders_metrics()

    def _setup_orders_metrics(self):
        """Set up cache, store and order write metrics."""
        self._metrics["cache_requests_total"] = Counter(
            "cache_requests_total",
            "Cache adapter calls by outcome",
            ["operation", "result"],
            registry=self.registry
        )

        self._metrics["cache_invalidations_total"] = Counter(
            "cache_invalidations_total",
            "Cache keys purged after writes",
            ["key_class", "result"],
            registry=self.registry
        )

        self._metrics["store_operations_total"] = Counter(
            "store_operations_total",
            "Record store operations by outcome",
            ["operation", "result"],
            registry=self.registry
        )

        self._metrics["store_operation_duration_seconds"] = Histogram(
            "store_operation_duration_seconds",
            "Record store operation duration in seconds",
            ["operation"],
            registry=self.registry
        )

        self._metrics["orders_written_total"] = Counter(
            "orders_written_total",
            "Committed order writes",
            ["operation"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def get_sample_value(self, name: str, **labels) -> float:
        """Read the current value of a sample, 0.0 when it was never recorded."""
        value = self.registry.get_sample_value(name, labels)
        return value if value is not None else 0.0

    def export(self) -> bytes:
        """Render all metrics in the Prometheus text format."""
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

    def record_cache_request(self, operation: str, result: str):
        """Record a cache adapter call (hit, miss, ok, error, skipped)."""
        self._metrics["cache_requests_total"].labels(operation=operation, result=result).inc()

    def record_invalidation(self, key_class: str, result: str):
        """Record one purged cache key."""
        self._metrics["cache_invalidations_total"].labels(key_class=key_class, result=result).inc()

    def record_order_write(self, operation: str):
        """Record a committed order write."""
        self._metrics["orders_written_total"].labels(operation=operation).inc()

    @contextmanager
    def time_store_operation(self, operation: str):
        """Time a store call and count it by outcome."""
        start_time = time.perf_counter()
        result = "ok"
        try:
            yield
        except Exception:
            result = "error"
            raise
        finally:
            duration = time.perf_counter() - start_time
            with self._lock:
                self._metrics["store_operations_total"].labels(operation=operation, result=result).inc()
                self._metrics["store_operation_duration_seconds"].labels(operation=operation).observe(duration)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
