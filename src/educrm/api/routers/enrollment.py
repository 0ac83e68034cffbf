# src/educrm/api/routers/enrollment.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.api.router_factory import audited, build_crud_router, staff_only
from educrm.auth.deps import Principal, require_permission, require_role
from educrm.core import errors
from educrm.core.responses import Envelope, ok
from educrm.db.models import (
    Application,
    AuditAction,
    Role,
    StudentTransfer,
    TransferStatus,
    Waitlist,
)
from educrm.db.repository import Repository
from educrm.db.session import get_db
from educrm.schemas.enrollment import (
    ApplicationCreate,
    ApplicationEnroll,
    ApplicationOut,
    ApplicationReview,
    ApplicationUpdate,
    ExpireSweepResult,
    TransferCreate,
    TransferDecision,
    TransferOut,
    WaitlistCreate,
    WaitlistOut,
    WaitlistProcess,
    WaitlistUpdate,
)
from educrm.services import applications, enrollment

staff_or_teacher = require_role(Role.ADMIN, Role.STAFF, Role.TEACHER)
can_approve_transfers = require_permission("transfers", "approve")


# ---- applications ----------------------------------------------------------

applications_router = APIRouter(prefix="/applications", tags=["applications"])


@applications_router.post("/{application_id}/review", response_model=Envelope[ApplicationOut])
async def review_application(
    application_id: uuid.UUID,
    payload: ApplicationReview,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    app = await audited(
        db, principal, AuditAction.UPDATE, "applications",
        lambda: applications.review(
            db, application_id, payload.decision, reviewer=principal.id, notes=payload.notes
        ),
        resource_id=application_id,
    )
    return ok(ApplicationOut.model_validate(app), f"Application {app.status}")


@applications_router.post("/{application_id}/enroll", response_model=Envelope[ApplicationOut])
async def enroll_application(
    application_id: uuid.UUID,
    payload: ApplicationEnroll,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    app = await audited(
        db, principal, AuditAction.UPDATE, "applications",
        lambda: applications.enroll(db, application_id, group_id=payload.group_id),
        resource_id=application_id,
    )
    return ok(ApplicationOut.model_validate(app), "Application enrolled")


build_crud_router(
    model=Application,
    create_schema=ApplicationCreate,
    read_schema=ApplicationOut,
    update_schema=ApplicationUpdate,
    path_prefix="/applications",
    read_dependency=staff_only,
    create=lambda db, data, principal: applications.create_application(db, data),
    update=lambda db, item_id, data, principal: applications.update_application(db, item_id, data),
    filter_fields=("status", "course_id"),
    router=applications_router,
)


# ---- waitlists -------------------------------------------------------------

waitlists_router = APIRouter(prefix="/waitlists", tags=["waitlists"])


@waitlists_router.post("/expire", response_model=Envelope[ExpireSweepResult])
async def expire_waitlists(
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    result = await enrollment.expire_waitlists(db)
    return ok(ExpireSweepResult(**result), f"{result['expired']} entr(ies) expired")


@waitlists_router.post("/{entry_id}/process", response_model=Envelope[WaitlistOut])
async def process_waitlist(
    entry_id: uuid.UUID,
    payload: WaitlistProcess,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    entry = await audited(
        db, principal, AuditAction.UPDATE, "waitlists",
        lambda: enrollment.process_waitlist(
            db, entry_id, payload.action, notes=payload.notes, expires_at=payload.expires_at
        ),
        resource_id=entry_id,
    )
    return ok(WaitlistOut.model_validate(entry), f"Waitlist entry {entry.status}")


build_crud_router(
    model=Waitlist,
    create_schema=WaitlistCreate,
    read_schema=WaitlistOut,
    update_schema=WaitlistUpdate,
    path_prefix="/waitlists",
    read_dependency=staff_only,
    create=lambda db, data, principal: enrollment.add_to_waitlist(db, data),
    update=lambda db, item_id, data, principal: enrollment.update_waitlist(db, item_id, data),
    delete=enrollment.delete_waitlist,
    filter_fields=("group_id", "course_id", "status", "priority", "student_id"),
    router=waitlists_router,
)


# ---- transfers -------------------------------------------------------------

transfers_router = APIRouter(prefix="/transfers", tags=["transfers"])


@transfers_router.post("", response_model=Envelope[TransferOut], status_code=201)
async def request_transfer(
    payload: TransferCreate,
    principal: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    transfer = await audited(
        db, principal, AuditAction.CREATE, "student_transfers",
        lambda: enrollment.request_transfer(db, payload.model_dump(), requested_by=principal.id),
    )
    return ok(TransferOut.model_validate(transfer), "Transfer requested")


@transfers_router.post("/{transfer_id}/approve", response_model=Envelope[TransferOut])
async def approve_transfer(
    transfer_id: uuid.UUID,
    payload: TransferDecision,
    principal: Principal = Depends(can_approve_transfers),
    db: AsyncSession = Depends(get_db),
):
    transfer = await audited(
        db, principal, AuditAction.UPDATE, "student_transfers",
        lambda: enrollment.approve_transfer(db, transfer_id, approver=principal.id, notes=payload.notes),
        resource_id=transfer_id,
    )
    return ok(TransferOut.model_validate(transfer), "Transfer approved")


@transfers_router.post("/{transfer_id}/reject", response_model=Envelope[TransferOut])
async def reject_transfer(
    transfer_id: uuid.UUID,
    payload: TransferDecision,
    principal: Principal = Depends(can_approve_transfers),
    db: AsyncSession = Depends(get_db),
):
    transfer = await audited(
        db, principal, AuditAction.UPDATE, "student_transfers",
        lambda: enrollment.reject_transfer(db, transfer_id, reviewer=principal.id, notes=payload.notes),
        resource_id=transfer_id,
    )
    return ok(TransferOut.model_validate(transfer), "Transfer rejected")


@transfers_router.post("/{transfer_id}/complete", response_model=Envelope[TransferOut])
async def complete_transfer(
    transfer_id: uuid.UUID,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    transfer = await audited(
        db, principal, AuditAction.UPDATE, "student_transfers",
        lambda: enrollment.complete_transfer(db, transfer_id),
        resource_id=transfer_id,
    )
    return ok(TransferOut.model_validate(transfer), "Transfer completed")


@transfers_router.post("/{transfer_id}/cancel", response_model=Envelope[TransferOut])
async def cancel_transfer(
    transfer_id: uuid.UUID,
    principal: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    current = await Repository(db, StudentTransfer).get_or_404(transfer_id)
    if principal.role not in (Role.ADMIN.value, Role.STAFF.value):
        # the requestor may withdraw their own request while it is pending
        if current.requested_by != principal.id or current.status != TransferStatus.PENDING.value:
            raise errors.forbidden("Only the requestor can cancel a pending transfer")
    transfer = await audited(
        db, principal, AuditAction.UPDATE, "student_transfers",
        lambda: enrollment.cancel_transfer(db, transfer_id),
        resource_id=transfer_id,
    )
    return ok(TransferOut.model_validate(transfer), "Transfer cancelled")


build_crud_router(
    model=StudentTransfer,
    create_schema=None,
    read_schema=TransferOut,
    update_schema=None,
    path_prefix="/transfers",
    read_dependency=staff_or_teacher,
    filter_fields=("student_id", "from_group_id", "to_group_id", "status"),
    deletable=False,
    router=transfers_router,
)
