from educrm.middleware.access_log import AccessLogMiddleware
from educrm.middleware.metrics import MetricsMiddleware
from educrm.middleware.rate_limit import RateLimiter, RateLimitMiddleware
from educrm.middleware.recovery import RecoveryMiddleware
from educrm.middleware.request_id import REQUEST_ID_HEADER, RequestIdMiddleware

__all__ = [
    "AccessLogMiddleware",
    "MetricsMiddleware",
    "RateLimiter",
    "RateLimitMiddleware",
    "RecoveryMiddleware",
    "RequestIdMiddleware",
    "REQUEST_ID_HEADER",
]
