"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: per-route request count and latency
- webhook_events_total / crm_sync_total / order_transitions_total: domain counters
- init_sentry(): Sentry with signature and bearer headers scrubbed
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time

import sentry_sdk
from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP ─────────────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by route template and status",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency by route template",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# ── Domain ───────────────────────────────────────────────────────────────────

# outcome: processed | duplicate | invalid_signature | malformed | error
webhook_events_total = Counter(
    "webhook_events_total",
    "Inbound webhook events by provider and outcome",
    ["source", "outcome"],
)

crm_sync_total = Counter(
    "crm_sync_total",
    "HubSpot order sync attempts by outcome",
    ["outcome"],
)

order_transitions_total = Counter(
    "order_transitions_total",
    "Committed order status transitions by target status",
    ["to_status"],
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record request count and latency, labelled by route template.

    The template (/api/v1/orders/{order_id}) keeps label cardinality bounded.
    Requests that raise are counted as 500.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            endpoint = getattr(route, "path", "unmatched")
            http_requests_total.labels(
                method=request.method, endpoint=endpoint, status_code=str(status_code)
            ).inc()
            http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(
                time.perf_counter() - started
            )


# ── Sentry ───────────────────────────────────────────────────────────────────

_SCRUBBED_HEADERS = ("signature", "authorization")


def _scrub_headers(event: dict, hint: dict) -> dict:
    headers = event.get("request", {}).get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if any(marker in name.lower() for marker in _SCRUBBED_HEADERS):
                headers[name] = "[redacted]"
    return event


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry; full tracing outside production, 10% in production."""
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        integrations=[StarletteIntegration(), FastApiIntegration()],
        before_send=_scrub_headers,
    )


def get_metrics_response() -> Response:
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
