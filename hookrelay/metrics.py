from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REQS = Counter(
    "hookrelay_requests_total",
    "Requests",
    ["method", "path", "status"],
)
LAT = Histogram(
    "hookrelay_latency_seconds",
    "Latency",
    ["method", "path"],
)
DELIVERIES = Counter(
    "hookrelay_deliveries_total",
    "Delivery attempt sequences by final outcome",
    ["outcome"],
)
ATTEMPTS = Counter(
    "hookrelay_delivery_attempts_total",
    "Individual outbound delivery attempts",
)
VERIFICATIONS = Counter(
    "hookrelay_verifications_total",
    "Subscriber challenge handshakes by outcome",
    ["outcome"],
)
OBSERVERS = Gauge(
    "hookrelay_observers",
    "Connected live log observers",
)


def router() -> APIRouter:
    r = APIRouter()

    @r.get("/metrics", include_in_schema=False)
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return r
