# src/educrm/main.py
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.routing import APIRoute
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from educrm.api.routers import academics, analytics, auth, billing, content, enrollment, health, progress, users
from educrm.app_logger import get_logger, setup_logging
from educrm.core.config import settings
from educrm.core.errors import AppError, ErrorKind, code_for, status_for
from educrm.core.responses import error_body
from educrm.db.session import get_engine, session_scope
from educrm.middleware import (
    AccessLogMiddleware,
    MetricsMiddleware,
    RateLimiter,
    RateLimitMiddleware,
    RecoveryMiddleware,
    RequestIdMiddleware,
)
from educrm.services.sessions import SessionService

log = get_logger("main")

# HTTP status -> error kind for exceptions raised by the framework itself
_STATUS_KINDS = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    405: ErrorKind.BAD_REQUEST,
    409: ErrorKind.CONFLICT,
    413: ErrorKind.VALIDATION,
    422: ErrorKind.VALIDATION,
    429: ErrorKind.TOO_MANY_REQUESTS,
}


def generate_unique_id(route: APIRoute) -> str:
    methods = "_".join(sorted((route.methods or []), key=str.lower)).lower()
    path = route.path_format.replace("/", "_").replace("{", "").replace("}", "").strip("_")
    tag = (route.tags[0] if route.tags else "default").lower().replace(" ", "_").replace("-", "_")
    return f"{tag}__{methods}__{path}"


def _error(request: Request, kind: ErrorKind, message: str, details: Any = None, status: Optional[int] = None):
    return JSONResponse(
        status_code=status or status_for(kind),
        content=error_body(code_for(kind), kind.value, message, request.url.path, details),
    )


def integrity_kind(exc: IntegrityError) -> tuple[ErrorKind, str]:
    """Classify a driver integrity failure by its message."""
    low = str(getattr(exc, "orig", None) or exc).lower()
    if "unique constraint" in low or "duplicate key" in low:
        return ErrorKind.DUPLICATE_ENTRY, "Unique constraint violation"
    if "foreign key" in low:
        return ErrorKind.VALIDATION, "Foreign key constraint failed"
    if "not null" in low or "null value in column" in low:
        return ErrorKind.VALIDATION, "Missing required field (NOT NULL violation)"
    if "check constraint" in low:
        return ErrorKind.VALIDATION, "Check constraint failed"
    return ErrorKind.VALIDATION, "Integrity error"


def _field_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    out = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        out.append({"field": ".".join(loc) or None, "message": err.get("msg"), "type": err.get("type")})
    return out


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error(request, exc.kind, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(request, ErrorKind.VALIDATION, "Validation failed", _field_errors(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        kind = _STATUS_KINDS.get(exc.status_code, ErrorKind.INTERNAL if exc.status_code >= 500 else ErrorKind.BAD_REQUEST)
        return _error(request, kind, str(exc.detail), status=exc.status_code)

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        kind, reason = integrity_kind(exc)
        log.warning("IntegrityError on %s %s -> %s", request.method, request.url.path, kind.value)
        return _error(request, kind, reason)


async def maintenance_pass(limiter: Optional[RateLimiter]) -> None:
    if limiter is not None:
        pruned = limiter.prune()
        if pruned:
            log.debug("rate limiter: pruned %d idle bucket(s)", pruned)
    async with session_scope() as session:
        removed = await SessionService(session).cleanup()
    if removed:
        log.info("session cleanup removed %d session(s)", removed)


async def _maintenance(limiter: Optional[RateLimiter], every: float) -> None:
    while True:
        await asyncio.sleep(every)
        try:
            await maintenance_pass(limiter)
        except Exception:
            # keep the loop alive; the next pass retries
            log.exception("maintenance pass failed")


def create_app() -> FastAPI:
    limiter = (
        RateLimiter(settings.RATE_LIMIT_RPS, settings.RATE_LIMIT_BURST, max_entries=settings.RATE_LIMIT_MAX_ENTRIES)
        if settings.RATE_LIMIT_ENABLED
        else None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        log.info(
            "starting %s %s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT
        )
        task = None
        if not settings.TESTING:
            task = asyncio.create_task(_maintenance(limiter, settings.MAINTENANCE_INTERVAL_SECONDS))
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    log.exception("maintenance task ended with an error")
            # close pooled connections before the loop goes away
            await get_engine().dispose()
            log.info("shutdown complete")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        generate_unique_id_function=generate_unique_id,
        lifespan=lifespan,
    )
    app.state.rate_limiter = limiter

    register_exception_handlers(app)

    # added innermost first; the last one added wraps all the others
    if settings.METRICS_ENABLED:
        app.add_middleware(MetricsMiddleware, skip_path=settings.METRICS_PATH)
    if limiter is not None:
        app.add_middleware(RateLimitMiddleware, limiter=limiter)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RecoveryMiddleware)
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIdMiddleware)

    if settings.METRICS_ENABLED:

        @app.get(settings.METRICS_PATH, include_in_schema=False)
        async def metrics():
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(users.permissions_router)
    app.include_router(users.audit_router)

    app.include_router(academics.teachers_router)
    app.include_router(academics.courses_router)
    app.include_router(academics.timetables_router)
    app.include_router(academics.groups_router)
    app.include_router(progress.students_router)
    app.include_router(billing.student_billing_router)
    app.include_router(content.student_parents_router)
    app.include_router(academics.students_router)

    app.include_router(progress.grades_router)
    app.include_router(progress.assignments_router)
    app.include_router(progress.submissions_router)
    app.include_router(progress.exams_router)

    app.include_router(enrollment.applications_router)
    app.include_router(enrollment.waitlists_router)
    app.include_router(enrollment.transfers_router)

    app.include_router(billing.discounts_router)
    app.include_router(billing.invoices_router)
    app.include_router(billing.payments_router)
    app.include_router(billing.recurring_router)

    app.include_router(content.documents_router)
    app.include_router(content.messages_router)
    app.include_router(content.notifications_router)
    app.include_router(content.templates_router)
    app.include_router(content.parents_router)
    app.include_router(content.events_router)
    app.include_router(content.custom_fields_router)

    app.include_router(analytics.router)
    app.include_router(analytics.portal_router)
    return app


app = create_app()
