# src/educrm/api/routers/analytics.py
from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.api.router_factory import audit_write, staff_only
from educrm.auth.deps import Principal, require_ownership
from educrm.core import errors
from educrm.core.responses import Envelope, ok
from educrm.db.models import AuditAction, Role
from educrm.db.session import get_db
from educrm.schemas.analytics import (
    AttendanceReport,
    Dashboard,
    FinancialReport,
    StudentPortal,
    StudentProgress,
    TeacherPortal,
)
from educrm.services import analytics

router = APIRouter(prefix="/analytics", tags=["analytics"])


def _window(start: Optional[date], end: Optional[date]) -> None:
    if start is not None and end is not None and start > end:
        raise errors.bad_request("start must not be after end", {"start": str(start), "end": str(end)})


@router.get("/dashboard", response_model=Envelope[Dashboard])
async def dashboard(
    _: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    return ok(Dashboard(**await analytics.dashboard(db)))


@router.get("/reports/financial", response_model=Envelope[FinancialReport])
async def financial_report(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    _: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    _window(start, end)
    return ok(FinancialReport(**await analytics.financial_report(db, start=start, end=end)))


@router.get("/reports/attendance", response_model=Envelope[AttendanceReport])
async def attendance_report(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    group_id: Optional[uuid.UUID] = Query(None),
    _: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    _window(start, end)
    report = await analytics.attendance_report(db, start=start, end=end, group_id=group_id)
    return ok(AttendanceReport(**report))


@router.get("/students/{student_id}/progress", response_model=Envelope[StudentProgress])
async def student_progress(
    student_id: uuid.UUID,
    _: Principal = Depends(require_ownership("student", param="student_id", bypass=(Role.STAFF, Role.TEACHER))),
    db: AsyncSession = Depends(get_db),
):
    return ok(StudentProgress(**await analytics.student_progress(db, student_id)))


# ---- portals ---------------------------------------------------------------

portal_router = APIRouter(prefix="/portal", tags=["portal"])


@portal_router.get("/students/{student_id}", response_model=Envelope[StudentPortal])
async def student_portal(
    student_id: uuid.UUID,
    principal: Principal = Depends(require_ownership("student", param="student_id", bypass=(Role.STAFF,))),
    db: AsyncSession = Depends(get_db),
):
    view = StudentPortal.model_validate(await analytics.student_portal(db, student_id))
    await audit_write(db, principal, AuditAction.READ, "students", resource_id=student_id)
    return ok(view)


@portal_router.get("/teachers/{teacher_id}", response_model=Envelope[TeacherPortal])
async def teacher_portal(
    teacher_id: uuid.UUID,
    principal: Principal = Depends(require_ownership("teacher", param="teacher_id", bypass=(Role.STAFF,))),
    db: AsyncSession = Depends(get_db),
):
    view = TeacherPortal.model_validate(await analytics.teacher_portal(db, teacher_id))
    await audit_write(db, principal, AuditAction.READ, "teachers", resource_id=teacher_id)
    return ok(view)
