"""Prometheus metric definitions for the payments service."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


payment_requests_total = Counter("payment_requests_total", "Total payment submissions", ["service"])
payment_outcomes_total = Counter(
    "payment_outcomes_total",
    "Payments recorded, by terminal status",
    ["service", "status"],
)
idempotent_replays_total = Counter(
    "idempotent_replays_total",
    "Submissions answered from an existing idempotency key",
    ["service"],
)
idempotency_races_total = Counter(
    "idempotency_races_total",
    "Concurrent inserts that lost the unique idempotency key race",
    ["service"],
)
bank_unavailable_total = Counter("bank_unavailable_total", "Bank calls with no definite outcome", ["service"])
bank_request_duration_seconds = Histogram(
    "bank_request_duration_seconds",
    "Bank authorization call duration seconds",
    ["service"],
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
circuit_breaker_open = Gauge(
    "circuit_breaker_open",
    "1 while the circuit breaker is open, else 0",
    ["service", "dependency"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
