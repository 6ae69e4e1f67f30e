"""Prometheus metrics for partner dispatch and export jobs."""

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest

# Dispatch Metrics
dispatch_attempts_total = Counter(
    "integration_dispatch_attempts_total",
    "Outbound attempts by outcome",
    ["integration_id", "outcome"],
)

dispatch_total = Counter(
    "integration_dispatch_total",
    "Completed dispatch calls by result",
    ["integration_id", "mode", "result"],
)

dispatch_duration = Histogram(
    "integration_dispatch_duration_seconds",
    "Partner request latency per attempt in seconds",
    ["integration_id"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

dispatch_attempts = Histogram(
    "integration_dispatch_attempts",
    "Number of attempts used per dispatch call",
    ["integration_id"],
    buckets=[1, 2, 3, 4, 5, 10],
)

# Export Job Metrics
export_ad_total = Counter(
    "export_ad_total",
    "Per-ad export outcomes by sync state",
    ["integration_key", "state"],
)


def get_metrics_text() -> str:
    """Return current metrics in Prometheus text format."""
    return generate_latest(REGISTRY).decode("utf-8")
