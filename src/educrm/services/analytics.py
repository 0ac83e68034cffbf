# src/educrm/services/analytics.py
"""
Read-only aggregates for dashboards, reports and the two portals.

Every figure comes from a grouped SQL query; empty tables yield zeros,
never errors.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.db.base import utcnow
from educrm.db.models import (
    Assignment,
    AssignmentStatus,
    AssignmentSubmission,
    Attendance,
    AttendanceStatus,
    Course,
    Exam,
    ExamResult,
    ExamStatus,
    Grade,
    Group,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentStatus,
    Student,
    SubmissionStatus,
    Teacher,
)
from educrm.db.repository import Repository
from educrm.services.enrollment import student_counts

_OPEN_INVOICE = (
    InvoiceStatus.DRAFT.value,
    InvoiceStatus.SENT.value,
    InvoiceStatus.PARTIAL_PAID.value,
    InvoiceStatus.OVERDUE.value,
)


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _pct(part: float, whole: float) -> float:
    return round(part * 100 / whole, 2) if whole else 0.0


async def _scalar(db: AsyncSession, stmt) -> Any:
    return (await db.execute(stmt)).scalar_one()


def _live(model):
    return model.deleted_at.is_(None)


async def _count(db: AsyncSession, model, *filters) -> int:
    return await Repository(db, model).count(*filters)


def _net_paid():
    return sa.func.coalesce(sa.func.sum(Payment.amount - Payment.refunded_amount), 0)


async def _attendance_summary(db: AsyncSession, *filters) -> dict[str, Any]:
    stmt = sa.select(Attendance.status, sa.func.count()).group_by(Attendance.status)
    for f in filters:
        stmt = stmt.where(f)
    counts = {status: int(n) for status, n in (await db.execute(stmt)).all()}
    total = sum(counts.values())
    attended = counts.get(AttendanceStatus.PRESENT.value, 0) + counts.get(AttendanceStatus.LATE.value, 0)
    return {
        "total": total,
        "present": counts.get(AttendanceStatus.PRESENT.value, 0),
        "absent": counts.get(AttendanceStatus.ABSENT.value, 0),
        "late": counts.get(AttendanceStatus.LATE.value, 0),
        "excused": counts.get(AttendanceStatus.EXCUSED.value, 0),
        "attendance_rate": _pct(attended, total),
    }


async def dashboard(db: AsyncSession, *, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or utcnow()
    since = month_start(now)

    revenue_month = await _scalar(
        db,
        sa.select(_net_paid()).where(
            _live(Payment),
            Payment.status.in_([PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value]),
            Payment.payment_date >= since,
        ),
    )
    outstanding = (
        await db.execute(
            sa.select(sa.func.count(), sa.func.coalesce(sa.func.sum(Invoice.balance), 0)).where(
                _live(Invoice), Invoice.status.in_(_OPEN_INVOICE)
            )
        )
    ).one()
    overdue = await _count(db, Invoice, Invoice.status == InvoiceStatus.OVERDUE.value)
    attendance = await _attendance_summary(db, Attendance.date >= since.date())

    return {
        "total_students": await _count(db, Student),
        "active_students": await _count(db, Student, Student.status == "active"),
        "new_students_this_month": await _count(db, Student, Student.created_at >= since),
        "total_teachers": await _count(db, Teacher),
        "total_courses": await _count(db, Course),
        "total_groups": await _count(db, Group),
        "revenue_this_month": round(float(revenue_month), 2),
        "pending_invoices": int(outstanding[0]),
        "outstanding_balance": round(float(outstanding[1]), 2),
        "overdue_invoices": overdue,
        "attendance_rate_this_month": attendance["attendance_rate"],
        "period_start": since.date().isoformat(),
    }


async def financial_report(
    db: AsyncSession, *, start: Optional[date] = None, end: Optional[date] = None
) -> dict[str, Any]:
    window = [_live(Invoice)]
    if start is not None:
        window.append(Invoice.issue_date >= start)
    if end is not None:
        window.append(Invoice.issue_date <= end)

    by_status_stmt = (
        sa.select(
            Invoice.status,
            sa.func.count(),
            sa.func.coalesce(sa.func.sum(Invoice.total_amount), 0),
            sa.func.coalesce(sa.func.sum(Invoice.paid_amount), 0),
            sa.func.coalesce(sa.func.sum(Invoice.balance), 0),
        )
        .where(*window)
        .group_by(Invoice.status)
    )
    by_status = {}
    totals = {"invoiced": 0.0, "collected": 0.0, "outstanding": 0.0, "invoice_count": 0}
    for status, n, total, paid, balance in (await db.execute(by_status_stmt)).all():
        by_status[status] = {
            "count": int(n),
            "total": round(float(total), 2),
            "paid": round(float(paid), 2),
            "balance": round(float(balance), 2),
        }
        totals["invoice_count"] += int(n)
        if status != InvoiceStatus.CANCELLED.value:
            totals["invoiced"] += float(total)
            totals["collected"] += float(paid)
            totals["outstanding"] += float(balance)

    revenue = sa.func.coalesce(sa.func.sum(Invoice.paid_amount), 0).label("revenue")
    top_stmt = (
        sa.select(Course.id, Course.title, revenue)
        .join(Invoice, Invoice.course_id == Course.id)
        .where(*window)
        .group_by(Course.id, Course.title)
        .order_by(revenue.desc())
        .limit(5)
    )
    top_courses = [
        {"course_id": cid, "title": title, "revenue": round(float(rev), 2)}
        for cid, title, rev in (await db.execute(top_stmt)).all()
    ]

    return {
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
        "total_invoiced": round(totals["invoiced"], 2),
        "total_collected": round(totals["collected"], 2),
        "total_outstanding": round(totals["outstanding"], 2),
        "invoice_count": totals["invoice_count"],
        "collection_rate": _pct(totals["collected"], totals["invoiced"]),
        "by_status": by_status,
        "top_courses": top_courses,
    }


async def attendance_report(
    db: AsyncSession,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
    group_id: Optional[uuid.UUID] = None,
) -> dict[str, Any]:
    present = sa.func.sum(sa.case((Attendance.status == AttendanceStatus.PRESENT.value, 1), else_=0))
    absent = sa.func.sum(sa.case((Attendance.status == AttendanceStatus.ABSENT.value, 1), else_=0))
    late = sa.func.sum(sa.case((Attendance.status == AttendanceStatus.LATE.value, 1), else_=0))
    excused = sa.func.sum(sa.case((Attendance.status == AttendanceStatus.EXCUSED.value, 1), else_=0))
    stmt = (
        sa.select(Group.id, Group.name, sa.func.count(), present, absent, late, excused)
        .join(Attendance, Attendance.group_id == Group.id)
        .group_by(Group.id, Group.name)
        .order_by(Group.name)
    )
    if start is not None:
        stmt = stmt.where(Attendance.date >= start)
    if end is not None:
        stmt = stmt.where(Attendance.date <= end)
    if group_id is not None:
        stmt = stmt.where(Group.id == group_id)

    groups = []
    for gid, name, total, p, a, lt, ex in (await db.execute(stmt)).all():
        total, p, a, lt, ex = int(total), int(p or 0), int(a or 0), int(lt or 0), int(ex or 0)
        groups.append(
            {
                "group_id": gid,
                "group_name": name,
                "total": total,
                "present": p,
                "absent": a,
                "late": lt,
                "excused": ex,
                "attendance_rate": _pct(p + lt, total),
            }
        )
    overall_total = sum(g["total"] for g in groups)
    overall_attended = sum(g["present"] + g["late"] for g in groups)
    return {
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
        "groups": groups,
        "total_records": overall_total,
        "attendance_rate": _pct(overall_attended, overall_total),
    }


async def _grade_summary(db: AsyncSession, student_id: uuid.UUID) -> dict[str, Any]:
    row = (
        await db.execute(
            sa.select(sa.func.count(), sa.func.avg(Grade.value), sa.func.max(Grade.value), sa.func.min(Grade.value))
            .where(_live(Grade), Grade.student_id == student_id)
        )
    ).one()
    return {
        "count": int(row[0]),
        "average": round(float(row[1]), 2) if row[1] is not None else 0.0,
        "highest": int(row[2]) if row[2] is not None else 0,
        "lowest": int(row[3]) if row[3] is not None else 0,
    }


async def _invoice_summary(db: AsyncSession, student_id: uuid.UUID) -> dict[str, Any]:
    row = (
        await db.execute(
            sa.select(
                sa.func.count(),
                sa.func.coalesce(sa.func.sum(Invoice.total_amount), 0),
                sa.func.coalesce(sa.func.sum(Invoice.paid_amount), 0),
                sa.func.coalesce(sa.func.sum(Invoice.balance), 0),
            ).where(
                _live(Invoice),
                Invoice.student_id == student_id,
                Invoice.status != InvoiceStatus.CANCELLED.value,
            )
        )
    ).one()
    return {
        "count": int(row[0]),
        "total": round(float(row[1]), 2),
        "paid": round(float(row[2]), 2),
        "balance": round(float(row[3]), 2),
    }


async def _exam_summary(db: AsyncSession, student_id: uuid.UUID) -> dict[str, Any]:
    row = (
        await db.execute(
            sa.select(
                sa.func.count(),
                sa.func.avg(ExamResult.percentage),
                sa.func.sum(sa.case((ExamResult.passed.is_(True), 1), else_=0)),
            ).where(_live(ExamResult), ExamResult.student_id == student_id, ExamResult.absent.is_(False))
        )
    ).one()
    return {
        "taken": int(row[0]),
        "average_percentage": round(float(row[1]), 2) if row[1] is not None else 0.0,
        "passed": int(row[2] or 0),
    }


async def student_progress(db: AsyncSession, student_id: uuid.UUID) -> dict[str, Any]:
    student = await Repository(db, Student).get_or_404(student_id)
    return {
        "student_id": student.id,
        "name": student.full_name,
        "group_id": student.group_id,
        "attendance": await _attendance_summary(db, Attendance.student_id == student.id),
        "grades": await _grade_summary(db, student.id),
        "exams": await _exam_summary(db, student.id),
        "invoices": await _invoice_summary(db, student.id),
    }


async def student_portal(db: AsyncSession, student_id: uuid.UUID, *, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or utcnow()
    student = await Repository(db, Student).get_or_404(student_id)
    group = course = teacher = None
    upcoming: list[Assignment] = []
    if student.group_id is not None:
        group = await Repository(db, Group).get(student.group_id)
    if group is not None:
        course = await Repository(db, Course).get(group.course_id)
        teacher = await Repository(db, Teacher).get(group.teacher_id)
        upcoming = await Repository(db, Assignment).list(
            Assignment.group_id == group.id,
            Assignment.status == AssignmentStatus.PUBLISHED.value,
            Assignment.due_date >= now,
            order_by=[Assignment.due_date.asc()],
            limit=10,
        )
    recent_grades = await Repository(db, Grade).list(
        Grade.student_id == student.id, order_by=[Grade.date.desc()], limit=10
    )
    open_invoices = await Repository(db, Invoice).list(
        Invoice.student_id == student.id,
        Invoice.status.in_(_OPEN_INVOICE),
        order_by=[Invoice.due_date.asc()],
    )
    return {
        "student": student,
        "group": group,
        "course": course,
        "teacher": teacher,
        "attendance": await _attendance_summary(db, Attendance.student_id == student.id),
        "recent_grades": recent_grades,
        "upcoming_assignments": upcoming,
        "open_invoices": open_invoices,
    }


async def teacher_portal(db: AsyncSession, teacher_id: uuid.UUID, *, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or utcnow()
    teacher = await Repository(db, Teacher).get_or_404(teacher_id)
    groups = await Repository(db, Group).list(Group.teacher_id == teacher.id, order_by=[Group.name])
    group_ids = [g.id for g in groups]
    counts = await student_counts(db, group_ids)

    upcoming_exams: list[Exam] = []
    to_grade = 0
    if group_ids:
        upcoming_exams = await Repository(db, Exam).list(
            Exam.group_id.in_(group_ids),
            Exam.status == ExamStatus.SCHEDULED.value,
            Exam.start_time >= now,
            Exam.start_time <= now + timedelta(days=30),
            order_by=[Exam.start_time.asc()],
        )
        to_grade = await _scalar(
            db,
            sa.select(sa.func.count())
            .select_from(AssignmentSubmission)
            .join(Assignment, Assignment.id == AssignmentSubmission.assignment_id)
            .where(
                _live(AssignmentSubmission),
                Assignment.group_id.in_(group_ids),
                AssignmentSubmission.status == SubmissionStatus.SUBMITTED.value,
            ),
        )
    return {
        "teacher": teacher,
        "groups": [
            {"id": g.id, "name": g.name, "capacity": g.capacity, "student_count": counts.get(g.id, 0)}
            for g in groups
        ],
        "total_students": sum(counts.values()),
        "upcoming_exams": upcoming_exams,
        "submissions_to_grade": int(to_grade),
    }
