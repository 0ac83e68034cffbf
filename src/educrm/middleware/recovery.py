from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from educrm.app_logger import get_logger
from educrm.core.errors import ErrorKind, code_for
from educrm.core.responses import error_body

log = get_logger("http.recovery")


class RecoveryMiddleware(BaseHTTPMiddleware):
    """Last line of defence: anything the exception handlers did not
    translate becomes a 500 ``internal`` envelope.  The traceback goes to
    the log, never to the client."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            log.exception("unhandled error on %s %s", request.method, request.url.path)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=error_body(
                    code_for(ErrorKind.INTERNAL),
                    ErrorKind.INTERNAL.value,
                    "Internal server error",
                    request.url.path,
                ),
            )
