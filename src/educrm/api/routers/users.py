# src/educrm/api/routers/users.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.api.router_factory import admin_only, audit_write, audited, build_crud_router
from educrm.auth.deps import Principal, require_auth
from educrm.core import errors
from educrm.core.responses import Envelope, PageParams, ok, paginated
from educrm.db.models import AuditAction, Permission, User
from educrm.db.repository import Repository
from educrm.db.session import get_db
from educrm.schemas.identity import (
    AuditLogOut,
    PasswordChange,
    PermissionCreate,
    PermissionOut,
    RolePermissionOut,
    UserCreate,
    UserOut,
    UserUpdate,
)
from educrm.services import audit, users

router = APIRouter(prefix="/users", tags=["users"])


@router.put("/{user_id}/password", response_model=Envelope[UserOut])
async def change_password(
    user_id: uuid.UUID,
    payload: PasswordChange,
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    if not principal.is_admin and principal.id != user_id:
        raise errors.forbidden("You can only change your own password")

    async def _op():
        return await users.change_password(
            db,
            user_id,
            payload.new_password,
            old_password=payload.old_password,
            by_admin=principal.is_admin,
        )

    user = await audited(db, principal, AuditAction.UPDATE, "users", _op, resource_id=user_id)
    return ok(UserOut.model_validate(user), "Password changed")


async def _create(db, data, principal):
    return await users.create_user(db, data)


async def _update(db, item_id, data, principal):
    return await users.update_user(db, item_id, data)


build_crud_router(
    model=User,
    create_schema=UserCreate,
    read_schema=UserOut,
    update_schema=UserUpdate,
    path_prefix="/users",
    resource="users",
    read_dependency=admin_only,
    write_dependency=admin_only,
    create=_create,
    update=_update,
    delete=users.delete_user,
    filter_fields=("role", "is_active"),
    router=router,
)


# ---- permissions -----------------------------------------------------------

permissions_router = APIRouter(tags=["permissions"])


@permissions_router.get("/permissions", response_model=Envelope[list[PermissionOut]])
async def list_permissions(
    params: PageParams = Depends(),
    _: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    items, total = await Repository(db, Permission).get_page(params)
    return paginated([PermissionOut.model_validate(p) for p in items], params, total)


@permissions_router.post("/permissions", response_model=Envelope[PermissionOut], status_code=201)
async def create_permission(
    payload: PermissionCreate,
    principal: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    perm = await audited(
        db, principal, AuditAction.CREATE, "permissions",
        lambda: users.create_permission(db, payload.model_dump()),
    )
    return ok(PermissionOut.model_validate(perm), "Permission created")


@permissions_router.post(
    "/roles/{role}/permissions/{permission_id}",
    response_model=Envelope[RolePermissionOut],
    status_code=201,
)
async def grant_permission(
    role: str,
    permission_id: uuid.UUID,
    principal: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    link = await audited(
        db, principal, AuditAction.CREATE, "role_permissions",
        lambda: users.grant(db, role, permission_id),
    )
    return ok(RolePermissionOut.model_validate(link), "Permission granted")


@permissions_router.delete("/roles/{role}/permissions/{permission_id}", response_model=Envelope[None])
async def revoke_permission(
    role: str,
    permission_id: uuid.UUID,
    principal: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    await audited(
        db, principal, AuditAction.DELETE, "role_permissions",
        lambda: users.revoke(db, role, permission_id),
        resource_id=f"{role}:{permission_id}",
    )
    return ok(None, "Permission revoked")


# ---- audit trail (read only) -----------------------------------------------

audit_router = APIRouter(prefix="/audit-logs", tags=["audit"])


@audit_router.get("", response_model=Envelope[list[AuditLogOut]])
async def search_audit_logs(
    params: PageParams = Depends(),
    user_id: Optional[uuid.UUID] = Query(None),
    resource: Optional[str] = Query(None),
    resource_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    success: Optional[bool] = Query(None),
    created_after: Optional[datetime] = Query(None),
    created_before: Optional[datetime] = Query(None),
    principal: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    items, total = await audit.search(
        db,
        params,
        user_id=user_id,
        resource=resource,
        resource_id=resource_id,
        action=action,
        success=success,
        created_after=created_after,
        created_before=created_before,
    )
    page = paginated([AuditLogOut.model_validate(a) for a in items], params, total)
    await audit_write(db, principal, AuditAction.READ, "audit_logs", new={"resource": resource, "action": action})
    return page


@audit_router.get("/users/{user_id}", response_model=Envelope[list[AuditLogOut]])
async def audit_for_user(
    user_id: uuid.UUID,
    params: PageParams = Depends(),
    principal: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    items, total = await audit.search(db, params, user_id=user_id)
    page = paginated([AuditLogOut.model_validate(a) for a in items], params, total)
    await audit_write(db, principal, AuditAction.READ, "audit_logs", new={"user_id": str(user_id)})
    return page


@audit_router.get("/resources/{resource}/{resource_id}", response_model=Envelope[list[AuditLogOut]])
async def audit_for_resource(
    resource: str,
    resource_id: str,
    params: PageParams = Depends(),
    principal: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    items, total = await audit.search(db, params, resource=resource, resource_id=resource_id)
    page = paginated([AuditLogOut.model_validate(a) for a in items], params, total)
    await audit_write(db, principal, AuditAction.READ, "audit_logs", new={"resource": resource, "resource_id": resource_id})
    return page
