from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.core import errors
from educrm.db.base import utcnow
from educrm.db.models import Exam, ExamResult, Group, Student
from educrm.db.repository import Repository, with_tx

# (lower bound in percent, letter), highest first
GRADE_BANDS: tuple[tuple[float, str], ...] = (
    (90, "A+"),
    (85, "A"),
    (80, "A-"),
    (75, "B+"),
    (70, "B"),
    (65, "B-"),
    (60, "C+"),
    (55, "C"),
    (50, "C-"),
)


def letter_grade(percentage: float) -> str:
    for floor, letter in GRADE_BANDS:
        if percentage >= floor:
            return letter
    return "F"


def _fields(data: dict[str, Any]) -> dict[str, Any]:
    out = {k: v for k, v in data.items() if k != "metadata"}
    if "metadata" in data:
        out["meta_data"] = data["metadata"]
    return out


def _check_window(start: datetime, end: datetime, total: int, passing: int) -> None:
    if start >= end:
        raise errors.validation("start_time must be before end_time")
    if passing > total:
        raise errors.validation("passing_marks cannot exceed total_marks")


async def create_exam(db: AsyncSession, data: dict[str, Any], *, created_by: Optional[uuid.UUID] = None) -> Exam:
    _check_window(data["start_time"], data["end_time"], data["total_marks"], data["passing_marks"])

    async def _tx() -> Exam:
        group = await Repository(db, Group).get_or_404(data["group_id"])
        if group.course_id != data["course_id"]:
            raise errors.validation("Group does not belong to the given course")
        return await Repository(db, Exam).create(Exam(created_by=created_by, **_fields(data)))

    return await with_tx(db, _tx)


async def update_exam(db: AsyncSession, exam_id: uuid.UUID, data: dict[str, Any]) -> Exam:
    async def _tx() -> Exam:
        repo = Repository(db, Exam)
        exam = await repo.get_or_404(exam_id, for_update=True)
        _check_window(
            data.get("start_time", exam.start_time),
            data.get("end_time", exam.end_time),
            data.get("total_marks", exam.total_marks),
            data.get("passing_marks", exam.passing_marks),
        )
        return await repo.update(exam, _fields(data))

    return await with_tx(db, _tx)


def score(exam: Exam, marks: float, absent: bool) -> dict[str, Any]:
    if absent:
        marks = 0.0
    if marks > exam.total_marks:
        raise errors.validation(
            "Marks exceed the exam total", {"marks_obtained": marks, "total_marks": exam.total_marks}
        )
    pct = round(marks * 100 / exam.total_marks, 2)
    return {
        "marks_obtained": marks,
        "percentage": pct,
        "grade": letter_grade(pct),
        "passed": (not absent) and marks >= exam.passing_marks,
        "absent": absent,
    }


async def record_result(
    db: AsyncSession,
    exam_id: uuid.UUID,
    data: dict[str, Any],
    *,
    graded_by: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> ExamResult:
    """Insert or update the single result of one student for one exam."""
    async def _tx() -> ExamResult:
        exam = await Repository(db, Exam).get_or_404(exam_id)
        await Repository(db, Student).get_or_404(data["student_id"])
        values = score(exam, data.get("marks_obtained", 0), data.get("absent", False))

        stmt = (
            sa.select(ExamResult)
            .where(ExamResult.exam_id == exam.id, ExamResult.student_id == data["student_id"])
            .with_for_update()
        )
        result = (await db.execute(stmt)).scalars().first()
        if result is None:
            result = ExamResult(exam_id=exam.id, student_id=data["student_id"])
            db.add(result)
        result.deleted_at = None
        for key, value in values.items():
            setattr(result, key, value)
        result.remarks = data.get("remarks")
        result.graded_by = graded_by
        result.graded_at = now or utcnow()
        await db.flush()
        return result

    return await with_tx(db, _tx)


async def exam_statistics(db: AsyncSession, exam_id: uuid.UUID) -> dict[str, Any]:
    exam = await Repository(db, Exam).get_or_404(exam_id)
    results = await Repository(db, ExamResult).list(ExamResult.exam_id == exam.id)
    present = [r for r in results if not r.absent]
    marks = [r.marks_obtained for r in present]
    passed = sum(1 for r in present if r.passed)
    return {
        "exam_id": exam.id,
        "total_students": len(results),
        "appeared": len(present),
        "passed": passed,
        "failed": len(present) - passed,
        "absent": len(results) - len(present),
        "average_marks": round(sum(marks) / len(marks), 2) if marks else 0.0,
        "highest_marks": max(marks) if marks else 0.0,
        "lowest_marks": min(marks) if marks else 0.0,
        "pass_percentage": round(passed * 100 / len(present), 2) if present else 0.0,
    }
