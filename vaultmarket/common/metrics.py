"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


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
order_transitions_total = Counter(
    "order_transitions_total",
    "Applied order status transitions",
    ["service", "from_state", "to_state", "actor_role"],
)
order_transition_conflicts_total = Counter(
    "order_transition_conflicts_total",
    "Conditional status updates that matched no row",
    ["service", "to_state"],
)
webhook_events_total = Counter(
    "webhook_events_total",
    "Verified payment provider callbacks by outcome",
    ["service", "provider", "outcome"],
)
webhook_signature_failures_total = Counter(
    "webhook_signature_failures_total",
    "Payment provider callbacks rejected before touching state",
    ["service", "provider"],
)
duplicate_webhooks_skipped_total = Counter(
    "duplicate_webhooks_skipped_total",
    "Provider callbacks whose conditional update changed nothing",
    ["service", "provider"],
)
seller_balance_mutations_total = Counter(
    "seller_balance_mutations_total",
    "Seller balance ledger mutations",
    ["service", "kind"],
)
side_effect_failures_total = Counter(
    "side_effect_failures_total",
    "Best-effort side effects (email, notification) that raised",
    ["service", "effect"],
)
rate_limited_total = Counter(
    "rate_limited_total",
    "Requests refused by a rate limiter",
    ["service", "scope"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
