from __future__ import annotations

import uuid
from typing import Any, Optional

import sqlalchemy as sa
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.app_logger import get_logger
from educrm.core.context import current_request_id
from educrm.core.responses import PageParams
from educrm.db.models import AuditAction, AuditLog
from educrm.db.repository import Repository

log = get_logger("services.audit")

# never copied into snapshots
_REDACTED = {"password_hash", "token"}


def snapshot(obj: Any) -> Optional[dict[str, Any]]:
    """JSON-safe dict of an ORM row's column values."""
    if obj is None:
        return None
    mapper = sa.inspect(obj).mapper
    data = {
        attr.key: getattr(obj, attr.key)
        for attr in mapper.column_attrs
        if attr.key not in _REDACTED
    }
    return jsonable_encoder(data)


async def record(
    db: AsyncSession,
    *,
    action: AuditAction | str,
    resource: str,
    resource_id: Any = None,
    user_id: Optional[uuid.UUID] = None,
    old_value: Any = None,
    new_value: Any = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    success: bool = True,
    error_msg: Optional[str] = None,
) -> AuditLog:
    """Append one audit row and commit it on its own."""
    entry = AuditLog(
        user_id=user_id,
        action=action.value if isinstance(action, AuditAction) else str(action),
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        old_value=old_value,
        new_value=new_value,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        request_id=current_request_id(),
        success=success,
        error_msg=error_msg,
    )
    db.add(entry)
    await db.commit()
    log.debug("audit %s %s/%s by %s", entry.action, resource, entry.resource_id, user_id)
    return entry


async def search(
    db: AsyncSession,
    params: PageParams,
    *,
    user_id: Optional[uuid.UUID] = None,
    resource: Optional[str] = None,
    resource_id: Optional[str] = None,
    action: Optional[str] = None,
    success: Optional[bool] = None,
    created_after=None,
    created_before=None,
):
    filters = []
    if user_id is not None:
        filters.append(AuditLog.user_id == user_id)
    if resource:
        filters.append(AuditLog.resource == resource)
    if resource_id:
        filters.append(AuditLog.resource_id == resource_id)
    if action:
        filters.append(AuditLog.action == action)
    if success is not None:
        filters.append(AuditLog.success.is_(success))
    if created_after is not None:
        filters.append(AuditLog.created_at >= created_after)
    if created_before is not None:
        filters.append(AuditLog.created_at <= created_before)
    return await Repository(db, AuditLog).get_page(params, *filters)
