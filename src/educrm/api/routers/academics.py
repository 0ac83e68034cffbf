# src/educrm/api/routers/academics.py
"""
Teachers, courses, timetables, groups and students.

Groups report their live ``student_count``; every route that puts a
student into a group goes through the enrollment service so the capacity
check runs with the group row locked.
"""
from __future__ import annotations

import uuid
from datetime import date
from typing import Optional, Sequence

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.api.router_factory import audit_write, audited, build_crud_router, staff_only
from educrm.auth.deps import Principal, require_auth, require_role
from educrm.core import errors
from educrm.core.responses import Envelope, PageParams, ok, paginated
from educrm.db.models import AuditAction, Course, Group, Role, Student, Teacher, Timetable
from educrm.db.repository import Repository, with_tx
from educrm.db.session import get_db
from educrm.schemas.academics import (
    CourseCreate,
    CourseOut,
    CourseUpdate,
    GroupCreate,
    GroupOut,
    GroupUpdate,
    StudentCreate,
    StudentOut,
    StudentUpdate,
    TeacherCreate,
    TeacherOut,
    TeacherUpdate,
    TimetableCreate,
    TimetableOut,
    TimetableUpdate,
)
from educrm.schemas.progress import (
    AttendanceBatch,
    AttendanceMark,
    AttendanceOut,
    GradeBatch,
    GradeCreate,
    GradeOut,
)
from educrm.services import audit, enrollment, progress, scheduling

staff_or_teacher = require_role(Role.ADMIN, Role.STAFF, Role.TEACHER)


# ---- teachers / courses / timetables ---------------------------------------

teachers_router = build_crud_router(
    model=Teacher,
    create_schema=TeacherCreate,
    read_schema=TeacherOut,
    update_schema=TeacherUpdate,
    path_prefix="/teachers",
    tags=["teachers"],
    read_dependency=staff_or_teacher,
    delete=lambda db, item_id: enrollment.delete_referenced(db, Teacher, item_id, Group.teacher_id),
    filter_fields=("status",),
    restore=True,
)

courses_router = build_crud_router(
    model=Course,
    create_schema=CourseCreate,
    read_schema=CourseOut,
    update_schema=CourseUpdate,
    path_prefix="/courses",
    tags=["courses"],
    delete=lambda db, item_id: enrollment.delete_referenced(db, Course, item_id, Group.course_id),
    restore=True,
)

timetables_router = build_crud_router(
    model=Timetable,
    create_schema=TimetableCreate,
    read_schema=TimetableOut,
    update_schema=TimetableUpdate,
    path_prefix="/timetables",
    tags=["timetables"],
    create=lambda db, data, principal: scheduling.create_timetable(db, data),
    update=lambda db, item_id, data, principal: scheduling.update_timetable(db, item_id, data),
    delete=lambda db, item_id: enrollment.delete_referenced(db, Timetable, item_id, Group.timetable_id),
    filter_fields=("classroom",),
)


# ---- groups ----------------------------------------------------------------

async def present_groups(db: AsyncSession, groups: Sequence[Group]) -> list[GroupOut]:
    counts = await enrollment.student_counts(db, [g.id for g in groups])
    return [
        GroupOut.model_validate(g).model_copy(update={"student_count": counts.get(g.id, 0)})
        for g in groups
    ]


groups_router = APIRouter(prefix="/groups", tags=["groups"])


async def _group_student(db: AsyncSession, group_id: uuid.UUID, student_id: uuid.UUID) -> Student:
    await Repository(db, Group).get_or_404(group_id)
    student = await Repository(db, Student).get_or_404(student_id)
    if student.group_id != group_id:
        raise errors.not_found(Student.LABEL)
    return student


@groups_router.get("/{group_id}/students", response_model=Envelope[list[StudentOut]])
async def list_group_students(
    group_id: uuid.UUID,
    params: PageParams = Depends(),
    _: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    await Repository(db, Group).get_or_404(group_id)
    items, total = await Repository(db, Student).get_page(params, Student.group_id == group_id)
    return paginated([StudentOut.model_validate(s) for s in items], params, total)


@groups_router.post("/{group_id}/students", response_model=Envelope[StudentOut], status_code=201)
async def add_group_student(
    group_id: uuid.UUID,
    payload: StudentCreate,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    data = payload.model_dump()
    data["group_id"] = group_id
    student = await audited(
        db, principal, AuditAction.CREATE, "students", lambda: enrollment.create_student(db, data)
    )
    return ok(StudentOut.model_validate(student), "Student created")


@groups_router.get("/{group_id}/students/{student_id}", response_model=Envelope[StudentOut])
async def get_group_student(
    group_id: uuid.UUID,
    student_id: uuid.UUID,
    _: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    return ok(StudentOut.model_validate(await _group_student(db, group_id, student_id)))


@groups_router.put("/{group_id}/students/{student_id}", response_model=Envelope[StudentOut])
async def update_group_student(
    group_id: uuid.UUID,
    student_id: uuid.UUID,
    payload: StudentUpdate,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    old = audit.snapshot(await _group_student(db, group_id, student_id))
    data = payload.model_dump(exclude_unset=True)
    student = await audited(
        db, principal, AuditAction.UPDATE, "students",
        lambda: enrollment.update_student(db, student_id, data),
        resource_id=student_id, old=old,
    )
    return ok(StudentOut.model_validate(student), "Student updated")


@groups_router.delete("/{group_id}/students/{student_id}", response_model=Envelope[None])
async def delete_group_student(
    group_id: uuid.UUID,
    student_id: uuid.UUID,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    old = audit.snapshot(await _group_student(db, group_id, student_id))

    await audited(
        db, principal, AuditAction.DELETE, "students",
        lambda: with_tx(db, lambda: Repository(db, Student).delete(student_id)),
        resource_id=student_id, old=old,
    )
    return ok(None, "Student deleted")


# ---- attendance and grades for a group -------------------------------------

@groups_router.post("/{group_id}/attendance", response_model=Envelope[AttendanceOut])
async def mark_attendance(
    group_id: uuid.UUID,
    payload: AttendanceMark,
    principal: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    row = await audited(
        db, principal, AuditAction.UPDATE, "attendance",
        lambda: progress.mark_attendance(db, group_id, payload.model_dump()),
    )
    return ok(AttendanceOut.model_validate(row), "Attendance recorded")


@groups_router.post("/{group_id}/attendance/batch", response_model=Envelope[list[AttendanceOut]])
async def mark_attendance_batch(
    group_id: uuid.UUID,
    payload: AttendanceBatch,
    principal: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    records = [r.model_dump() for r in payload.records]
    rows = await progress.mark_attendance_batch(db, group_id, payload.date, records)
    await audit_write(
        db, principal, AuditAction.UPDATE, "attendance",
        resource_id=group_id, new={"date": payload.date.isoformat(), "records": len(rows)},
    )
    return ok([AttendanceOut.model_validate(r) for r in rows], f"{len(rows)} attendance record(s) saved")


@groups_router.get("/{group_id}/attendance", response_model=Envelope[list[AttendanceOut]])
async def group_attendance(
    group_id: uuid.UUID,
    day: Optional[date] = Query(None, alias="date"),
    _: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    await Repository(db, Group).get_or_404(group_id)
    rows = await progress.list_attendance(db, group_id=group_id, day=day)
    return ok([AttendanceOut.model_validate(r) for r in rows])


@groups_router.post("/{group_id}/grades", response_model=Envelope[GradeOut])
async def record_grade(
    group_id: uuid.UUID,
    payload: GradeCreate,
    principal: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    row = await audited(
        db, principal, AuditAction.UPDATE, "grades",
        lambda: progress.record_grade(db, group_id, payload.model_dump()),
    )
    return ok(GradeOut.model_validate(row), "Grade recorded")


@groups_router.post("/{group_id}/grades/batch", response_model=Envelope[list[GradeOut]])
async def record_grade_batch(
    group_id: uuid.UUID,
    payload: GradeBatch,
    principal: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    records = [r.model_dump() for r in payload.records]
    rows = await progress.record_grade_batch(db, group_id, payload.date, payload.type, records)
    await audit_write(
        db, principal, AuditAction.UPDATE, "grades",
        resource_id=group_id, new={"date": payload.date.isoformat(), "type": payload.type, "records": len(rows)},
    )
    return ok([GradeOut.model_validate(r) for r in rows], f"{len(rows)} grade(s) saved")


@groups_router.get("/{group_id}/grades", response_model=Envelope[list[GradeOut]])
async def group_grades(
    group_id: uuid.UUID,
    _: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    await Repository(db, Group).get_or_404(group_id)
    rows = await progress.list_grades(db, group_id=group_id)
    return ok([GradeOut.model_validate(r) for r in rows])


build_crud_router(
    model=Group,
    create_schema=GroupCreate,
    read_schema=GroupOut,
    update_schema=GroupUpdate,
    path_prefix="/groups",
    read_dependency=require_auth,
    create=lambda db, data, principal: enrollment.create_group(db, data),
    update=lambda db, item_id, data, principal: enrollment.update_group(db, item_id, data),
    delete=enrollment.delete_group,
    present=present_groups,
    filter_fields=("course_id", "teacher_id", "timetable_id"),
    restore=True,
    router=groups_router,
)


# ---- students --------------------------------------------------------------

students_router = build_crud_router(
    model=Student,
    create_schema=StudentCreate,
    read_schema=StudentOut,
    update_schema=StudentUpdate,
    path_prefix="/students",
    tags=["students"],
    read_dependency=staff_or_teacher,
    create=lambda db, data, principal: enrollment.create_student(db, data),
    update=lambda db, item_id, data, principal: enrollment.update_student(db, item_id, data),
    filter_fields=("group_id", "status"),
    restore=enrollment.restore_student,
)
