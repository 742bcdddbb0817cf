from prometheus_client import (
    Counter,
    Summary,
    Gauge,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST
)

registry = CollectorRegistry()

REQUEST_COUNT = Counter(
    "gateway_requests_total",
    "Total number of proxied requests",
    ["method", "route", "status"],
    registry=registry
)

REQUEST_DURATION = Summary(
    "gateway_request_duration_seconds",
    "Origin request duration in seconds",
    ["route"],
    registry=registry
)

ACTIVE_REQUESTS = Gauge(
    "gateway_concurrent_requests",
    "Current number of requests in flight to an origin",
    registry=registry
)

ADMISSION_DECISIONS = Counter(
    "gateway_admission_decisions_total",
    "Admission gate decisions by outcome",
    ["outcome"],
    registry=registry
)

ADMISSION_DURATION = Summary(
    "gateway_admission_check_duration_seconds",
    "Time spent waiting on the admission service",
    registry=registry
)


def render_prometheus_metrics() -> tuple[bytes, str]:
    return generate_latest(registry), CONTENT_TYPE_LATEST
