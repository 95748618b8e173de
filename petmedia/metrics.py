"""
Prometheus metrics for the PetMedia service.

This module provides:
- HTTP request counter (method, path, status) and latency histogram
- Messaging counters (messages sent, threads created, read receipts)
- Gauge of open live subscriptions (collection)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: sent, validation_error, error
messages_sent_total = Counter(
    "messages_sent_total",
    "Message send outcomes",
    labelnames=["result"]
)

# result: created, existing, repaired
threads_resolved_total = Counter(
    "threads_resolved_total",
    "Thread get-or-create outcomes",
    labelnames=["result"]
)

read_receipts_total = Counter(
    "read_receipts_total",
    "Messages newly marked as read"
)

live_subscriptions = Gauge(
    "live_subscriptions",
    "Open live subscriptions",
    labelnames=["collection"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template when known, else the raw path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_message_outcome(result: str) -> None:
    """
    Record a message send outcome.

    Args:
        result: One of "sent", "validation_error", "error"
    """
    messages_sent_total.labels(result=result).inc()


def record_thread_outcome(result: str) -> None:
    """
    Record how get-or-create resolved a thread.

    Args:
        result: One of "created", "existing", "repaired"
    """
    threads_resolved_total.labels(result=result).inc()


def record_read_receipts(count: int) -> None:
    if count:
        read_receipts_total.inc(count)


def subscription_opened(collection: str) -> None:
    live_subscriptions.labels(collection=collection).inc()


def subscription_closed(collection: str) -> None:
    live_subscriptions.labels(collection=collection).dec()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """Content type string for Prometheus exposition format."""
    return CONTENT_TYPE_LATEST
