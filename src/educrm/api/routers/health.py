# src/educrm/api/routers/health.py
from __future__ import annotations

import sqlalchemy as sa
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from educrm.app_logger import get_logger
from educrm.core.config import settings
from educrm.core.responses import utcnow
from educrm.db.session import get_engine

router = APIRouter(tags=["health"])
log = get_logger("health")


async def ping_db() -> bool:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(sa.text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        log.warning("database ping failed: %s", exc)
        return False
    return True


@router.get("/health")
async def health():
    db_ok = await ping_db()
    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": "up" if db_ok else "down",
        "timestamp": utcnow().isoformat(),
    }


@router.get("/ready")
async def ready():
    if not await ping_db():
        return JSONResponse(status_code=503, content={"status": "not ready", "database": "down"})
    return {"status": "ready"}


@router.get("/live", include_in_schema=False)
def live():
    return {"status": "alive"}
