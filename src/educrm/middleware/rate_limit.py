# src/educrm/middleware/rate_limit.py
"""
Per-client token buckets.

Each client IP owns a bucket of ``burst`` tokens refilled at ``rps`` tokens
per second; a request spends one token or is refused with 429.  The bucket
map is shared by every request so it sits behind a lock, and it is simply
cleared once it grows past ``max_entries``.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from educrm.app_logger import get_logger
from educrm.core import errors
from educrm.core.responses import error_body

log = get_logger("http.rate_limit")

EXEMPT_PATHS = frozenset({"/health", "/ready", "/live"})


@dataclass
class TokenBucket:
    rate: float
    capacity: float
    tokens: Optional[float] = None
    updated: Optional[float] = None

    def __post_init__(self) -> None:
        if self.tokens is None:
            self.tokens = self.capacity

    def allow(self, now: float) -> bool:
        if self.updated is not None:
            self.tokens = min(self.capacity, self.tokens + (now - self.updated) * self.rate)
        self.updated = now
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False


class RateLimiter:
    def __init__(
        self,
        rps: float,
        burst: int,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rps = float(rps)
        self.burst = max(int(burst), 1)
        self.max_entries = max_entries
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                if len(self._buckets) >= self.max_entries:
                    log.info("rate limiter map reset at %d entries", len(self._buckets))
                    self._buckets.clear()
                bucket = self._buckets[key] = TokenBucket(rate=self.rps, capacity=self.burst)
            return bucket.allow(now)

    def prune(self, idle_seconds: Optional[float] = None) -> int:
        """Drop buckets untouched for ``idle_seconds`` (default: time to refill)."""
        if idle_seconds is None:
            idle_seconds = self.burst / self.rps if self.rps > 0 else 60.0
        cutoff = self._clock() - idle_seconds
        with self._lock:
            stale = [k for k, b in self._buckets.items() if (b.updated or 0.0) < cutoff]
            for key in stale:
                del self._buckets[key]
        return len(stale)


def _client_key(request: Request) -> str:
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: RateLimiter, exempt: Iterable[str] = EXEMPT_PATHS):
        super().__init__(app)
        self.limiter = limiter
        self.exempt = frozenset(exempt)

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path in self.exempt:
            return await call_next(request)
        if not self.limiter.allow(_client_key(request)):
            err = errors.too_many_requests()
            return JSONResponse(
                status_code=err.status_code,
                content=error_body(err.code, err.kind.value, err.message, request.url.path),
                headers={"Retry-After": "1"},
            )
        return await call_next(request)
