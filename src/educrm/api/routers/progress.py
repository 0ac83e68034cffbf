# src/educrm/api/routers/progress.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.api.router_factory import audited, build_crud_router
from educrm.auth.deps import Principal, require_auth, require_ownership, require_role
from educrm.core import errors
from educrm.core.responses import Envelope, PageParams, ok, paginated
from educrm.db.models import (
    Assignment,
    AssignmentSubmission,
    AuditAction,
    Exam,
    ExamResult,
    Grade,
    Role,
    Student,
)
from educrm.db.repository import Repository
from educrm.db.session import get_db
from educrm.schemas.progress import (
    AssignmentCreate,
    AssignmentOut,
    AssignmentStatistics,
    AssignmentUpdate,
    AttendanceOut,
    ExamCreate,
    ExamOut,
    ExamResultIn,
    ExamResultOut,
    ExamStatistics,
    ExamUpdate,
    GradeOut,
    GradeUpdate,
    SubmissionCreate,
    SubmissionGrade,
    SubmissionOut,
)
from educrm.services import exams, progress, scheduling

teaching_staff = require_role(Role.ADMIN, Role.STAFF, Role.TEACHER)
student_or_staff = require_ownership("student", param="student_id", bypass=(Role.STAFF, Role.TEACHER))


# ---- per-student views -----------------------------------------------------

students_router = APIRouter(prefix="/students", tags=["students"])


@students_router.get("/{student_id}/attendance", response_model=Envelope[list[AttendanceOut]])
async def student_attendance(
    student_id: uuid.UUID,
    group_id: Optional[uuid.UUID] = Query(None),
    _: Principal = Depends(student_or_staff),
    db: AsyncSession = Depends(get_db),
):
    await Repository(db, Student).get_or_404(student_id)
    rows = await progress.list_attendance(db, student_id=student_id, group_id=group_id)
    return ok([AttendanceOut.model_validate(r) for r in rows])


@students_router.get("/{student_id}/grades", response_model=Envelope[list[GradeOut]])
async def student_grades(
    student_id: uuid.UUID,
    _: Principal = Depends(student_or_staff),
    db: AsyncSession = Depends(get_db),
):
    await Repository(db, Student).get_or_404(student_id)
    rows = await progress.list_grades(db, student_id=student_id)
    return ok([GradeOut.model_validate(r) for r in rows])


grades_router = build_crud_router(
    model=Grade,
    create_schema=None,
    read_schema=GradeOut,
    update_schema=GradeUpdate,
    path_prefix="/grades",
    tags=["grades"],
    read_dependency=teaching_staff,
    write_dependency=teaching_staff,
    update=lambda db, item_id, data, principal: progress.update_grade(db, item_id, data),
    filter_fields=("group_id", "student_id", "course_id", "type"),
)


# ---- assignments -----------------------------------------------------------

assignments_router = APIRouter(prefix="/assignments", tags=["assignments"])


@assignments_router.post("/{assignment_id}/submit", response_model=Envelope[SubmissionOut])
async def submit_assignment(
    assignment_id: uuid.UUID,
    payload: SubmissionCreate,
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    if principal.role == Role.STUDENT.value and principal.student_id != payload.student_id:
        raise errors.forbidden("Students can only submit their own work")
    sub = await audited(
        db, principal, AuditAction.CREATE, "assignment_submissions",
        lambda: scheduling.submit(
            db,
            assignment_id,
            payload.student_id,
            content=payload.content,
            attachments=payload.attachments,
        ),
    )
    return ok(SubmissionOut.model_validate(sub), "Submission received")


@assignments_router.get("/{assignment_id}/submissions", response_model=Envelope[list[SubmissionOut]])
async def list_submissions(
    assignment_id: uuid.UUID,
    params: PageParams = Depends(),
    _: Principal = Depends(teaching_staff),
    db: AsyncSession = Depends(get_db),
):
    await Repository(db, Assignment).get_or_404(assignment_id)
    items, total = await Repository(db, AssignmentSubmission).get_page(
        params, AssignmentSubmission.assignment_id == assignment_id
    )
    return paginated([SubmissionOut.model_validate(s) for s in items], params, total)


@assignments_router.get("/{assignment_id}/statistics", response_model=Envelope[AssignmentStatistics])
async def assignment_statistics(
    assignment_id: uuid.UUID,
    _: Principal = Depends(teaching_staff),
    db: AsyncSession = Depends(get_db),
):
    stats = await scheduling.assignment_statistics(db, assignment_id)
    return ok(AssignmentStatistics(**stats))


build_crud_router(
    model=Assignment,
    create_schema=AssignmentCreate,
    read_schema=AssignmentOut,
    update_schema=AssignmentUpdate,
    path_prefix="/assignments",
    read_dependency=require_auth,
    write_dependency=teaching_staff,
    create=lambda db, data, principal: scheduling.create_assignment(db, data, created_by=principal.id),
    update=lambda db, item_id, data, principal: scheduling.update_assignment(db, item_id, data),
    filter_fields=("group_id", "course_id", "teacher_id", "status", "type"),
    router=assignments_router,
)


submissions_router = APIRouter(prefix="/submissions", tags=["assignments"])


@submissions_router.get("/{submission_id}", response_model=Envelope[SubmissionOut])
async def get_submission(
    submission_id: uuid.UUID,
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    sub = await Repository(db, AssignmentSubmission).get_or_404(submission_id)
    if principal.role == Role.STUDENT.value and principal.student_id != sub.student_id:
        raise errors.forbidden("You can only access your own records")
    return ok(SubmissionOut.model_validate(sub))


@submissions_router.post("/{submission_id}/grade", response_model=Envelope[SubmissionOut])
async def grade_submission(
    submission_id: uuid.UUID,
    payload: SubmissionGrade,
    principal: Principal = Depends(teaching_staff),
    db: AsyncSession = Depends(get_db),
):
    sub = await audited(
        db, principal, AuditAction.UPDATE, "assignment_submissions",
        lambda: scheduling.grade(
            db,
            submission_id,
            payload.points,
            feedback=payload.feedback,
            graded_by=principal.id,
        ),
        resource_id=submission_id,
    )
    return ok(SubmissionOut.model_validate(sub), "Submission graded")


@submissions_router.post("/{submission_id}/return", response_model=Envelope[SubmissionOut])
async def return_submission(
    submission_id: uuid.UUID,
    principal: Principal = Depends(teaching_staff),
    db: AsyncSession = Depends(get_db),
):
    sub = await audited(
        db, principal, AuditAction.UPDATE, "assignment_submissions",
        lambda: scheduling.return_submission(db, submission_id),
        resource_id=submission_id,
    )
    return ok(SubmissionOut.model_validate(sub), "Submission returned")


# ---- exams -----------------------------------------------------------------

exams_router = APIRouter(prefix="/exams", tags=["exams"])


@exams_router.get("/students/{student_id}/results", response_model=Envelope[list[ExamResultOut]])
async def student_results(
    student_id: uuid.UUID,
    _: Principal = Depends(student_or_staff),
    db: AsyncSession = Depends(get_db),
):
    await Repository(db, Student).get_or_404(student_id)
    rows = await Repository(db, ExamResult).list(ExamResult.student_id == student_id)
    return ok([ExamResultOut.model_validate(r) for r in rows])


@exams_router.post("/{exam_id}/results", response_model=Envelope[ExamResultOut])
async def record_result(
    exam_id: uuid.UUID,
    payload: ExamResultIn,
    principal: Principal = Depends(teaching_staff),
    db: AsyncSession = Depends(get_db),
):
    row = await audited(
        db, principal, AuditAction.UPDATE, "exam_results",
        lambda: exams.record_result(db, exam_id, payload.model_dump(), graded_by=principal.id),
    )
    return ok(ExamResultOut.model_validate(row), "Result recorded")


@exams_router.get("/{exam_id}/results", response_model=Envelope[list[ExamResultOut]])
async def exam_results(
    exam_id: uuid.UUID,
    _: Principal = Depends(teaching_staff),
    db: AsyncSession = Depends(get_db),
):
    await Repository(db, Exam).get_or_404(exam_id)
    rows = await Repository(db, ExamResult).list(
        ExamResult.exam_id == exam_id, order_by=[ExamResult.marks_obtained.desc()]
    )
    return ok([ExamResultOut.model_validate(r) for r in rows])


@exams_router.get("/{exam_id}/statistics", response_model=Envelope[ExamStatistics])
async def exam_statistics(
    exam_id: uuid.UUID,
    _: Principal = Depends(teaching_staff),
    db: AsyncSession = Depends(get_db),
):
    return ok(ExamStatistics(**await exams.exam_statistics(db, exam_id)))


build_crud_router(
    model=Exam,
    create_schema=ExamCreate,
    read_schema=ExamOut,
    update_schema=ExamUpdate,
    path_prefix="/exams",
    read_dependency=require_auth,
    write_dependency=teaching_staff,
    create=lambda db, data, principal: exams.create_exam(db, data, created_by=principal.id),
    update=lambda db, item_id, data, principal: exams.update_exam(db, item_id, data),
    filter_fields=("group_id", "course_id", "status", "type"),
    router=exams_router,
)
