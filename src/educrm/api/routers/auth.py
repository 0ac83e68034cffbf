# src/educrm/api/routers/auth.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.api.router_factory import audit_write
from educrm.auth.deps import Principal, client_ip, require_auth
from educrm.core import errors
from educrm.core.responses import Envelope, ok
from educrm.db.models import AuditAction
from educrm.db.session import get_db
from educrm.schemas.identity import LoginRequest, LoginResponse, RevokeAllResult, SessionOut, UserOut
from educrm.services.sessions import SessionService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=Envelope[LoginResponse])
async def login(
    payload: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    ip = client_ip(request)
    agent = request.headers.get("user-agent")
    try:
        token, sess, user = await SessionService(db).create_session(payload.email, payload.password, ip, agent)
    except errors.AppError as exc:
        # failed logins are recorded without an actor
        await audit_write(db, None, AuditAction.LOGIN, "auth", resource_id=payload.email, error=exc)
        raise
    principal = Principal.from_user(user, sess, request)
    await audit_write(db, principal, AuditAction.LOGIN, "auth", sess)
    body = LoginResponse(
        token=token,
        session=SessionOut.model_validate(sess),
        user=UserOut.model_validate(user),
    )
    return ok(body, "Logged in")


@router.post("/logout", response_model=Envelope[None])
async def logout(
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    if principal.session_id is not None:
        sess = await SessionService(db).revoke(principal.session_id, principal.id)
        await audit_write(db, principal, AuditAction.LOGOUT, "auth", sess)
    return ok(None, "Logged out")


@router.get("/me", response_model=Envelope[UserOut])
async def me(principal: Principal = Depends(require_auth)):
    if principal.user is None:
        raise errors.not_found("User")
    return ok(UserOut.model_validate(principal.user))


@router.get("/sessions", response_model=Envelope[list[SessionOut]])
async def list_sessions(
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    rows = await SessionService(db).list_active(principal.id)
    return ok([SessionOut.model_validate(s) for s in rows])


@router.delete("/sessions/{session_id}", response_model=Envelope[SessionOut])
async def revoke_session(
    session_id: uuid.UUID,
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    sess = await SessionService(db).revoke(session_id, principal.id)
    return ok(SessionOut.model_validate(sess), "Session revoked")


@router.post("/sessions/revoke-all", response_model=Envelope[RevokeAllResult])
async def revoke_all(
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    count = await SessionService(db).revoke_all(principal.id)
    return ok(RevokeAllResult(revoked=count), "All sessions revoked")
