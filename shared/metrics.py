"""
Shared metrics configuration for the Veo proxy.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest
from starlette.requests import Request
from starlette.routing import Match

# Label for requests that match no route
UNMATCHED_ENDPOINT = "__unmatched__"


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so several service instances can live
    in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
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

        # Proxy metrics
        self._metrics["upstream_attempts_total"] = Counter(
            "upstream_attempts_total",
            "Upstream call attempts by outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["rate_limit_hits_total"] = Counter(
            "rate_limit_hits_total",
            "Total rate limit rejections",
            ["endpoint"],
            registry=self.registry
        )

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

    def record_error(self, error_type: str):
        """Record an error by type."""
        self._metrics["errors_total"].labels(
            error_type=error_type,
            service=self.service_name
        ).inc()

    def record_upstream_attempt(self, outcome: str):
        """Record one upstream attempt."""
        self._metrics["upstream_attempts_total"].labels(outcome=outcome).inc()

    def record_rate_limit_hit(self, endpoint: str):
        """Record a rate limited request."""
        self._metrics["rate_limit_hits_total"].labels(endpoint=endpoint).inc()

    def get_sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read a single sample value from the registry."""
        return self.registry.get_sample_value(name, labels or {})

    def render(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)


def endpoint_label(request: Request) -> str:
    """Route template for a request, so label values stay bounded.

    Uses the route resolved by the router when there is one, otherwise
    matches the app routes directly (middleware that runs before routing).
    """
    route = request.scope.get("route")
    if route is None:
        for candidate in request.app.router.routes:
            match, _ = candidate.matches(request.scope)
            if match != Match.NONE:
                route = candidate
                break
    return getattr(route, "path", None) or UNMATCHED_ENDPOINT


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Create a metrics collector for a service."""
    return MetricsCollector(service_name)
