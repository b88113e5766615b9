"""
Shared metrics configuration for the Salesforce Access Layer.
"""

import threading
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
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

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "salesforce":
            self._setup_salesforce_metrics()

    def _setup_salesforce_metrics(self):
        """Set up outbound Salesforce API metrics."""
        self._metrics["salesforce_requests_total"] = Counter(
            "salesforce_requests_total",
            "Total outbound Salesforce API attempts",
            ["method", "status_code"],
            registry=self.registry
        )

        self._metrics["salesforce_request_duration_seconds"] = Histogram(
            "salesforce_request_duration_seconds",
            "Outbound Salesforce API attempt duration in seconds",
            ["method"],
            registry=self.registry
        )

        self._metrics["salesforce_retries_total"] = Counter(
            "salesforce_retries_total",
            "Total retried Salesforce API attempts",
            ["reason"],
            registry=self.registry
        )

        self._metrics["salesforce_circuit_breaker_state"] = Gauge(
            "salesforce_circuit_breaker_state",
            "Circuit breaker state (0 closed, 1 half-open, 2 open)",
            registry=self.registry
        )

        self._metrics["salesforce_token_refresh_total"] = Counter(
            "salesforce_token_refresh_total",
            "Total OAuth2 token exchanges",
            ["status"],
            registry=self.registry
        )

        self._metrics["salesforce_records_fetched_total"] = Counter(
            "salesforce_records_fetched_total",
            "Total records fetched by paginated queries",
            registry=self.registry
        )

        self._metrics["salesforce_pages_fetched_total"] = Counter(
            "salesforce_pages_fetched_total",
            "Total query result pages fetched",
            registry=self.registry
        )

    def record_http_request(self, method: str, status_code: Any, duration: float):
        """Record one outbound request attempt."""
        if "salesforce_requests_total" not in self._metrics:
            return

        self._metrics["salesforce_requests_total"].labels(
            method=method,
            status_code=str(status_code)
        ).inc()

        self._metrics["salesforce_request_duration_seconds"].labels(
            method=method
        ).observe(duration)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, amount: float = 1, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            (metric.labels(**labels) if labels else metric).inc(amount)

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        (metric.labels(**labels) if labels else metric).set(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)

