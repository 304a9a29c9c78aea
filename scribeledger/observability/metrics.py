"""
Prometheus metrics for billing observability.

Metrics tracked:
- Request latency (histogram) and count (counter) per endpoint
- Quota decisions by outcome
- Usage minutes recorded and usage tracking failures
- Credits granted and duplicate grants skipped
- Webhook events by type and outcome

Exposed via /metrics endpoint (Prometheus scraping).
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

# ============================================================================
# REQUEST METRICS
# ============================================================================

http_request_duration_seconds = Histogram(
    "scribeledger_http_request_duration_seconds",
    "HTTP request latency in seconds",
    labelnames=["method", "endpoint", "status_code"],
    buckets=(0.005, 0.010, 0.025, 0.050, 0.100, 0.250, 0.500, 1.000, 2.500),
)

http_requests_total = Counter(
    "scribeledger_http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status_code"],
)

# ============================================================================
# BILLING METRICS
# ============================================================================

quota_decisions_total = Counter(
    "scribeledger_quota_decisions_total",
    "Quota decisions by outcome",
    labelnames=["outcome"],  # included, credits, byok, denied
)

usage_minutes_total = Counter(
    "scribeledger_usage_minutes_total",
    "Minutes recorded against subscriptions",
    labelnames=["operation_type"],
)

usage_tracking_failures_total = Counter(
    "scribeledger_usage_tracking_failures_total",
    "Usage recordings dropped because of store errors",
    labelnames=["stage"],  # invalid, lookup, insert, increment, unexpected
)

credits_granted_total = Counter(
    "scribeledger_credits_granted_total",
    "Credits added to balances by purchases",
)

duplicate_credit_grants_total = Counter(
    "scribeledger_duplicate_credit_grants_total",
    "Credit grants skipped because the payment id was already applied",
)

webhook_events_total = Counter(
    "scribeledger_webhook_events_total",
    "Stripe webhook events by type and outcome",
    labelnames=["event_type", "outcome"],  # processed, skipped, ignored, failed
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def track_request(method: str, endpoint: str, status_code: int, duration_seconds: float) -> None:
    """Record one HTTP request. ``endpoint`` is the route template, not the raw path."""
    labels = {"method": method, "endpoint": endpoint, "status_code": str(status_code)}
    http_request_duration_seconds.labels(**labels).observe(duration_seconds)
    http_requests_total.labels(**labels).inc()


def track_quota_decision(outcome: str) -> None:
    quota_decisions_total.labels(outcome=outcome).inc()


def track_usage_minutes(operation_type: str, minutes: int) -> None:
    usage_minutes_total.labels(operation_type=operation_type).inc(minutes)


def track_usage_failure(stage: str) -> None:
    usage_tracking_failures_total.labels(stage=stage).inc()


def track_credit_grant(credits: int, applied: bool) -> None:
    """Track a purchase grant; replays count as duplicates."""
    if applied:
        credits_granted_total.inc(credits)
    else:
        duplicate_credit_grants_total.inc()


def track_webhook_event(event_type: str, outcome: str) -> None:
    webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()


def generate_metrics() -> tuple[bytes, str]:
    """
    Generate Prometheus metrics in exposition format (bytes).

    Returns:
        tuple: (metrics_bytes, content_type)
    """
    metrics_data = generate_latest(REGISTRY)
    return metrics_data, CONTENT_TYPE_LATEST
