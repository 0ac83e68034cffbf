# src/educrm/services/progress.py
"""
Attendance and grade books.

Both are upserts keyed by their natural key (student + group + date, plus
the grade type for grades), so posting the same mark twice leaves one row
carrying the latest values.  Batches run in a single transaction.
"""
from __future__ import annotations

import uuid
from datetime import date
from typing import Any, Iterable, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.core import errors
from educrm.db.models import Attendance, Grade, Group, Student
from educrm.db.repository import Repository, with_tx


async def _member(db: AsyncSession, group: Group, student_id: uuid.UUID) -> Student:
    student = await Repository(db, Student).get_or_404(student_id)
    if student.group_id != group.id:
        raise errors.validation(
            "Student is not a member of this group",
            {"student_id": str(student_id), "group_id": str(group.id)},
        )
    return student


async def _put_attendance(db: AsyncSession, group: Group, day: date, rec: dict[str, Any]) -> Attendance:
    await _member(db, group, rec["student_id"])
    stmt = (
        sa.select(Attendance)
        .where(
            Attendance.student_id == rec["student_id"],
            Attendance.group_id == group.id,
            Attendance.date == day,
        )
        .with_for_update()
    )
    row = (await db.execute(stmt)).scalars().first()
    if row is None:
        row = Attendance(student_id=rec["student_id"], group_id=group.id, date=day)
        db.add(row)
    row.status = rec["status"]
    row.notes = rec.get("notes")
    await db.flush()
    return row


async def mark_attendance(db: AsyncSession, group_id: uuid.UUID, data: dict[str, Any]) -> Attendance:
    async def _tx() -> Attendance:
        group = await Repository(db, Group).get_or_404(group_id)
        return await _put_attendance(db, group, data["date"], data)

    return await with_tx(db, _tx)


async def mark_attendance_batch(
    db: AsyncSession, group_id: uuid.UUID, day: date, records: Iterable[dict[str, Any]]
) -> list[Attendance]:
    async def _tx() -> list[Attendance]:
        group = await Repository(db, Group).get_or_404(group_id)
        return [await _put_attendance(db, group, day, rec) for rec in records]

    return await with_tx(db, _tx)


async def list_attendance(
    db: AsyncSession,
    *,
    group_id: Optional[uuid.UUID] = None,
    student_id: Optional[uuid.UUID] = None,
    day: Optional[date] = None,
) -> list[Attendance]:
    filters = []
    if group_id is not None:
        filters.append(Attendance.group_id == group_id)
    if student_id is not None:
        filters.append(Attendance.student_id == student_id)
    if day is not None:
        filters.append(Attendance.date == day)
    return await Repository(db, Attendance).list(*filters, order_by=[Attendance.date.desc(), Attendance.student_id])


async def _put_grade(
    db: AsyncSession, group: Group, day: date, grade_type: str, rec: dict[str, Any]
) -> Grade:
    await _member(db, group, rec["student_id"])
    stmt = (
        sa.select(Grade)
        .where(
            Grade.student_id == rec["student_id"],
            Grade.group_id == group.id,
            Grade.date == day,
            Grade.type == grade_type,
        )
        .with_for_update()
    )
    row = (await db.execute(stmt)).scalars().first()
    if row is None:
        row = Grade(
            student_id=rec["student_id"],
            group_id=group.id,
            course_id=group.course_id,
            date=day,
            type=grade_type,
        )
        db.add(row)
    row.deleted_at = None
    row.value = rec["value"]
    row.notes = rec.get("notes")
    await db.flush()
    return row


async def record_grade(db: AsyncSession, group_id: uuid.UUID, data: dict[str, Any]) -> Grade:
    async def _tx() -> Grade:
        group = await Repository(db, Group).get_or_404(group_id)
        return await _put_grade(db, group, data["date"], data["type"], data)

    return await with_tx(db, _tx)


async def record_grade_batch(
    db: AsyncSession, group_id: uuid.UUID, day: date, grade_type: str, records: Iterable[dict[str, Any]]
) -> list[Grade]:
    async def _tx() -> list[Grade]:
        group = await Repository(db, Group).get_or_404(group_id)
        return [await _put_grade(db, group, day, grade_type, rec) for rec in records]

    return await with_tx(db, _tx)


async def update_grade(db: AsyncSession, grade_id: uuid.UUID, data: dict[str, Any]) -> Grade:
    async def _tx() -> Grade:
        repo = Repository(db, Grade)
        row = await repo.get_or_404(grade_id, for_update=True)
        if {"date", "type"} & data.keys():
            clash = await repo.count(
                Grade.id != row.id,
                Grade.student_id == row.student_id,
                Grade.group_id == row.group_id,
                Grade.date == data.get("date", row.date),
                Grade.type == data.get("type", row.type),
            )
            if clash:
                raise errors.duplicate_entry("A grade of this type already exists for that date")
        return await repo.update(row, data)

    return await with_tx(db, _tx)


async def list_grades(
    db: AsyncSession,
    *,
    group_id: Optional[uuid.UUID] = None,
    student_id: Optional[uuid.UUID] = None,
) -> list[Grade]:
    filters = []
    if group_id is not None:
        filters.append(Grade.group_id == group_id)
    if student_id is not None:
        filters.append(Grade.student_id == student_id)
    return await Repository(db, Grade).list(*filters, order_by=[Grade.date.desc(), Grade.type])
