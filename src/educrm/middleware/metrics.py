from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

REQUESTS = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
)


def route_template(request: Request) -> str:
    # unmatched paths share one label so scanners cannot blow up cardinality
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, skip_path: str | None = None):
        super().__init__(app)
        self.skip_path = skip_path

    async def dispatch(self, request: Request, call_next):
        if self.skip_path and request.url.path == self.skip_path:
            return await call_next(request)
        started = time.perf_counter()
        response = await call_next(request)
        path = route_template(request)
        LATENCY.labels(request.method, path).observe(time.perf_counter() - started)
        REQUESTS.labels(request.method, path, str(response.status_code)).inc()
        return response
