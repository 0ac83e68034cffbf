# src/educrm/auth/deps.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

import sqlalchemy as sa
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.app_logger import get_logger
from educrm.core import errors
from educrm.core.config import settings
from educrm.db.models import Permission, Role, RolePermission, Session, User
from educrm.db.session import get_db
from educrm.services.sessions import SessionService

log = get_logger("auth.deps")

TOKEN_HEADER = "X-Auth-Token"

# ------------------------------------------------------------------------------
# Dev / local auth bypass
# ------------------------------------------------------------------------------
DEV_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


@dataclass
class Principal:
    """The authenticated caller as seen by handlers and cores."""
    id: uuid.UUID
    role: str
    email: str
    teacher_id: Optional[uuid.UUID] = None
    student_id: Optional[uuid.UUID] = None
    session_id: Optional[uuid.UUID] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    user: Optional[User] = field(default=None, repr=False)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @classmethod
    def from_user(cls, user: User, sess: Optional[Session] = None, request: Optional[Request] = None) -> "Principal":
        return cls(
            id=user.id,
            role=user.role,
            email=user.email,
            teacher_id=user.teacher_id,
            student_id=user.student_id,
            session_id=sess.id if sess else None,
            ip=client_ip(request) if request else None,
            user_agent=request.headers.get("user-agent") if request else None,
            user=user,
        )


def _dev_principal(request: Request) -> Principal:
    return Principal(
        id=DEV_USER_ID,
        role=Role.ADMIN.value,
        email="dev@example.com",
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def client_ip(request: Request) -> Optional[str]:
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else None


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    if settings.SKIP_AUTH:
        return _dev_principal(request)

    token = (request.headers.get(TOKEN_HEADER) or "").strip()
    if not token:
        raise errors.unauthorized("Missing session token")
    sess, user = await SessionService(db).validate(token)
    principal = Principal.from_user(user, sess, request)
    request.state.principal = principal
    return principal


# alias used on routers that only need "some logged-in user"
require_auth = get_current_principal


def require_role(*roles: Role | str) -> Callable[..., Any]:
    allowed = {r.value if isinstance(r, Role) else str(r) for r in roles}

    async def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            log.info("role %s refused (allowed=%s) user=%s", principal.role, sorted(allowed), principal.id)
            raise errors.forbidden()
        return principal

    return _dep


async def has_permission(db: AsyncSession, role: str, resource: str, action: str) -> bool:
    if role == Role.ADMIN.value:
        return True
    stmt = (
        sa.select(sa.func.count())
        .select_from(RolePermission)
        .join(Permission, Permission.id == RolePermission.permission_id)
        .where(
            RolePermission.role == role,
            Permission.resource == resource,
            Permission.action == action,
        )
    )
    return int((await db.execute(stmt)).scalar_one()) > 0


def require_permission(resource: str, action: str) -> Callable[..., Any]:
    async def _dep(
        principal: Principal = Depends(get_current_principal),
        db: AsyncSession = Depends(get_db),
    ) -> Principal:
        if not await has_permission(db, principal.role, resource, action):
            raise errors.forbidden(f"Missing permission {resource}:{action}")
        return principal

    return _dep


def require_ownership(kind: str, param: str = "id", *, bypass: Iterable[Role | str] = ()) -> Callable[..., Any]:
    """Students/teachers may only reach their own ``{param}``; admins and the
    ``bypass`` roles reach everyone's."""
    if kind not in ("student", "teacher"):
        raise ValueError(f"unsupported ownership kind: {kind}")
    exempt = {r.value if isinstance(r, Role) else str(r) for r in bypass}

    async def _dep(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.is_admin or principal.role in exempt:
            return principal
        raw = request.path_params.get(param)
        try:
            target = uuid.UUID(str(raw))
        except ValueError:
            raise errors.bad_request(f"Invalid {param}") from None
        linked = principal.student_id if kind == "student" else principal.teacher_id
        if principal.role != kind or linked != target:
            raise errors.forbidden("You can only access your own records")
        return principal

    return _dep


if settings.SKIP_AUTH:
    log.warning("AUTH is DISABLED for this process (SKIP_AUTH=true); every request acts as admin")


__all__ = [
    "Principal",
    "TOKEN_HEADER",
    "client_ip",
    "get_current_principal",
    "require_auth",
    "require_role",
    "require_permission",
    "require_ownership",
    "has_permission",
]
