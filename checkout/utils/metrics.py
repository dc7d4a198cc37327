"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
orders_created_total = Counter(
    "orders_created_total",
    "Total gateway orders created",
    ["plan_type"],
)

payment_transitions_total = Counter(
    "payment_transitions_total",
    "Purchase ledger transition results",
    ["result"],  # applied, already_applied, conflict, unknown_order
)

webhook_events_total = Counter(
    "webhook_events_total",
    "Gateway webhook deliveries",
    ["event", "result"],
)

signature_failures_total = Counter(
    "signature_failures_total",
    "Rejected gateway signatures",
    ["source"],  # checkout, webhook
)

entitlements_granted_total = Counter(
    "entitlements_granted_total",
    "Entitlements granted after a successful payment",
    ["effect"],
)

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway API requests",
    ["method", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway request duration",
    ["method"],
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
