"""Prometheus-compatible metrics for ingestion, scoring and request monitoring."""

from prometheus_client import Counter, Gauge, Histogram

# Label values for events_ingested_total; any other event name is counted as 'custom'
KNOWN_EVENT_TYPES = frozenset({
    'page_view',
    'click',
    'form_submit',
    'error',
    'promise_rejection',
    'identify',
    'heartbeat',
    'custom',
})

# Ingestion metrics
events_ingested_total = Counter(
    'churnguard_events_ingested_total',
    'Events accepted by the ingestion endpoint',
    ['event_type', 'status']
)

profile_upsert_failures_total = Counter(
    'churnguard_profile_upsert_failures_total',
    'User profile upserts that failed after the event was stored'
)

# Prediction metrics
predictions_served_total = Counter(
    'churnguard_predictions_served_total',
    'Single-user predictions served',
    ['source']
)

scoring_duration_seconds = Histogram(
    'churnguard_scoring_duration_seconds',
    'Time spent loading events and computing a risk score',
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

recompute_jobs_total = Counter(
    'churnguard_recompute_jobs_total',
    'Background prediction recompute jobs',
    ['outcome']
)

recompute_queue_depth = Gauge(
    'churnguard_recompute_queue_depth',
    'Recompute jobs waiting for the worker'
)

# Performance metrics
request_duration_seconds = Histogram(
    'churnguard_request_duration_seconds',
    'Request duration in seconds',
    ['endpoint', 'method', 'status'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0]
)


def event_type_label(event_type: str) -> str:
    """Bound the label cardinality: custom event names all map to 'custom'."""
    return event_type if event_type in KNOWN_EVENT_TYPES else 'custom'


def record_event_ingested(event_type: str, status: str):
    """Record an ingestion outcome.

    Args:
        event_type: Event type reported by the collector
        status: 'stored', 'duplicate' or 'failed'
    """
    events_ingested_total.labels(event_type=event_type_label(event_type), status=status).inc()


def record_prediction_served(source: str):
    """Record where a single-user prediction came from ('cache' or 'computed')."""
    predictions_served_total.labels(source=source).inc()


def record_recompute_job(outcome: str):
    """Record a recompute job outcome ('completed', 'failed' or 'coalesced')."""
    recompute_jobs_total.labels(outcome=outcome).inc()


def record_request_duration(endpoint: str, method: str, status: int, duration_seconds: float):
    """Record overall request duration.

    Args:
        endpoint: API endpoint path
        method: HTTP method (GET, POST, etc.)
        status: HTTP status code
        duration_seconds: Request duration in seconds
    """
    request_duration_seconds.labels(
        endpoint=endpoint,
        method=method,
        status=str(status)
    ).observe(duration_seconds)
