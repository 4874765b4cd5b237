"""Prometheus metrics for the scraper tracker.

Counters and gauges mirror what the detection engine does per request.
Metrics are exposed at the /metrics/prometheus endpoint.
"""

from prometheus_client import Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST

# ============ Metrics Definitions ============

DETECTIONS_TOTAL = Counter(
    'scrapertrack_detections_total',
    'Attributions selected by the arbiter',
    ['method', 'company']
)

IP_LOOKUPS_TOTAL = Counter(
    'scrapertrack_ip_lookups_total',
    'IPInfo resolutions by outcome',
    ['outcome']  # cache_hit, fetched, quota_exhausted, failed, timeout, private, invalid
)

DNS_VERIFICATIONS_TOTAL = Counter(
    'scrapertrack_dns_verifications_total',
    'Reverse+forward DNS verifications by outcome',
    ['outcome']  # verified, rejected, error
)

DETECTION_ERRORS_TOTAL = Counter(
    'scrapertrack_detection_errors_total',
    'Faults swallowed inside a detection producer',
    ['producer']
)

SOFT_FAILURES_TOTAL = Counter(
    'scrapertrack_soft_failures_total',
    'Failures logged through log_suppressed, by failure site',
    ['component', 'operation']
)

IP_CACHE_SIZE = Gauge(
    'scrapertrack_ip_cache_entries',
    'Entries currently held in the IPInfo cache'
)

BEHAVIOR_KEYS = Gauge(
    'scrapertrack_behavior_tracked_keys',
    'Client keys currently held by the behavioral analyzer'
)


# ============ Helper Functions ============

def record_detection(method: str, company: str):
    """Count one arbitrated attribution."""
    DETECTIONS_TOTAL.labels(method=method, company=company).inc()


def record_lookup(outcome: str):
    IP_LOOKUPS_TOTAL.labels(outcome=outcome).inc()


def record_dns(outcome: str):
    DNS_VERIFICATIONS_TOTAL.labels(outcome=outcome).inc()


def record_soft_failure(component: str, operation: str):
    SOFT_FAILURES_TOTAL.labels(component=component, operation=operation).inc()


def record_error(producer: str):
    """Count a producer fault that was converted into 'no attribution'."""
    DETECTION_ERRORS_TOTAL.labels(producer=producer).inc()


def get_metrics():
    """Get current metrics in Prometheus format.

    Returns:
        bytes: Prometheus-formatted metrics
    """
    return generate_latest()


def get_content_type():
    """Get Prometheus content type header value."""
    return CONTENT_TYPE_LATEST
