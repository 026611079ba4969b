from __future__ import annotations
import time
from fastapi import Response, Request
from prometheus_client import (
    Counter, Histogram, CollectorRegistry,
    CONTENT_TYPE_LATEST, generate_latest
)
from ..config import get_settings

S = get_settings()

REGISTRY = CollectorRegistry(auto_describe=True)

# ---------- HTTP ----------
HTTP_REQS = Counter("http_requests_total", "HTTP requests", ["method", "route", "status"], registry=REGISTRY)
HTTP_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency", ["method", "route"], registry=REGISTRY)

# ---------- reservations ----------
# op: request | change; outcome: resulting status
RES_DECIDED    = Counter("reservation_decisions_total", "Reservation decisions by resulting status", ["op", "outcome"], registry=REGISTRY)
RES_REJECTED   = Counter("reservation_rejected_total",  "Reservation requests rejected", ["reason"], registry=REGISTRY)
RES_RETRIED    = Counter("reservation_retries_total",   "Reservation operations retried from the snapshot read", ["reason"], registry=REGISTRY)
# trigger: withdrawal | capacity | sweep
PROMOTED       = Counter("reservation_promoted_total",  "Waitlisted reservations promoted to going", ["trigger"], registry=REGISTRY)
NOTIFY_FAILED  = Counter("promotion_notify_failed_total", "Promotion notifications that failed to dispatch", registry=REGISTRY)
SWEEP_RUNS     = Counter("waitlist_sweeps_total", "Periodic waitlist sweeps executed", registry=REGISTRY)


async def metrics_endpoint(_: Request) -> Response:
    if not S.METRICS_ENABLED:
        return Response(status_code=404)
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


class MetricsHTTPMiddleware:
    """Pure ASGI; labels by route template so gathering ids do not explode cardinality."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)
        method = scope["method"]
        t0 = time.perf_counter()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                # the router has filled scope["route"] by the time a response starts
                route = getattr(scope.get("route"), "path", "unmatched")
                HTTP_REQS.labels(method=method, route=route, status=message["status"]).inc()
                HTTP_LATENCY.labels(method=method, route=route).observe(time.perf_counter() - t0)
            await send(message)

        await self.app(scope, receive, send_wrapper)
