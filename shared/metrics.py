"""
Shared metrics configuration for the crypto price bot.
"""

from typing import Dict, Any, Optional
import threading

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
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

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "bot":
            self._setup_gateway_metrics()
            self._setup_bot_metrics()

    def _setup_gateway_metrics(self):
        """Set up upstream request gateway metrics."""
        self._metrics["gateway_dispatch_total"] = Counter(
            "gateway_dispatch_total",
            "Upstream calls started by the request gateway",
            ["gateway", "mode"],
            registry=self.registry
        )

        self._metrics["gateway_retries_total"] = Counter(
            "gateway_retries_total",
            "Retries scheduled after a rate-limit response",
            ["gateway"],
            registry=self.registry
        )

        self._metrics["gateway_dedup_hits_total"] = Counter(
            "gateway_dedup_hits_total",
            "Submissions attached to an in-flight request with the same key",
            ["gateway"],
            registry=self.registry
        )

        self._metrics["gateway_rate_limit_exhausted_total"] = Counter(
            "gateway_rate_limit_exhausted_total",
            "Requests that failed after exhausting the retry budget",
            ["gateway"],
            registry=self.registry
        )

        self._metrics["gateway_queue_depth"] = Gauge(
            "gateway_queue_depth",
            "Requests waiting in the gateway queue",
            ["gateway"],
            registry=self.registry
        )

    def _setup_bot_metrics(self):
        """Set up chat bot metrics."""
        self._metrics["bot_commands_total"] = Counter(
            "bot_commands_total",
            "Handled chat commands",
            ["command"],
            registry=self.registry
        )

        self._metrics["bot_alerts_triggered_total"] = Counter(
            "bot_alerts_triggered_total",
            "Price alerts delivered",
            registry=self.registry
        )

        self._metrics["bot_reminders_sent_total"] = Counter(
            "bot_reminders_sent_total",
            "Time reminders delivered",
            registry=self.registry
        )

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
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

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            if labels:
                metric.labels(**labels).inc()
            else:
                metric.inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric.labels(**labels).set(value)
        else:
            metric.set(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
