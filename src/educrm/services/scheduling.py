# src/educrm/services/scheduling.py
"""
Timetable conflict detection and assignment submission/grading.

Times of day are ``HH:MM`` strings compared as minutes since midnight;
two slots collide when they share a weekday and their half-open
``[start, end)`` intervals overlap.  Touching slots (one ends when the
next starts) do not collide.
"""
from __future__ import annotations

import math
import uuid
from datetime import datetime
from typing import Any, Iterable, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.app_logger import get_logger
from educrm.core import errors
from educrm.db.base import utcnow
from educrm.db.models import (
    Assignment,
    AssignmentStatus,
    AssignmentSubmission,
    Group,
    Student,
    SubmissionStatus,
    Timetable,
)
from educrm.db.repository import Repository, with_tx

log = get_logger("services.scheduling")

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


# ---------------------------------------------------------------------------
# Timetables
# ---------------------------------------------------------------------------

def parse_hhmm(value: str) -> int:
    hh, _, mm = value.partition(":")
    try:
        hours, minutes = int(hh), int(mm)
    except ValueError:
        raise ValueError(f"invalid time: {value!r}") from None
    if not (0 <= hours < 24 and 0 <= minutes < 60) or len(value) != 5:
        raise ValueError(f"invalid time: {value!r}")
    return hours * 60 + minutes


def parse_days(value: str) -> frozenset[str]:
    days = frozenset(part.strip().title()[:3] for part in value.split(",") if part.strip())
    unknown = days - set(WEEKDAYS)
    if unknown:
        raise ValueError(f"unknown day(s): {', '.join(sorted(unknown))}")
    return days


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and b_start < a_end


def find_conflict(
    candidate: dict[str, str], existing: Iterable[Timetable], *, skip_id: Optional[uuid.UUID] = None
) -> Optional[Timetable]:
    days = parse_days(candidate["days"])
    start, end = parse_hhmm(candidate["start_time"]), parse_hhmm(candidate["end_time"])
    for tt in existing:
        if skip_id is not None and tt.id == skip_id:
            continue
        if not days & parse_days(tt.days):
            continue
        if overlaps(start, end, parse_hhmm(tt.start_time), parse_hhmm(tt.end_time)):
            return tt
    return None


async def _check_slot(db: AsyncSession, slot: dict[str, str], skip_id: Optional[uuid.UUID] = None) -> None:
    try:
        if parse_hhmm(slot["start_time"]) >= parse_hhmm(slot["end_time"]):
            raise errors.validation("start_time must be before end_time")
    except ValueError as exc:
        raise errors.validation(str(exc)) from None

    stmt = (
        sa.select(Timetable)
        .where(Timetable.classroom == slot["classroom"], Timetable.deleted_at.is_(None))
        .with_for_update()
    )
    same_room = (await db.execute(stmt)).scalars().all()
    clash = find_conflict(slot, same_room, skip_id=skip_id)
    if clash is not None:
        raise errors.conflict(
            f"Classroom {slot['classroom']} is already booked",
            {
                "timetable_id": str(clash.id),
                "days": clash.days,
                "start_time": clash.start_time,
                "end_time": clash.end_time,
            },
        )


async def create_timetable(db: AsyncSession, data: dict[str, Any]) -> Timetable:
    async def _tx() -> Timetable:
        await _check_slot(db, data)
        return await Repository(db, Timetable).create(Timetable(**data))

    return await with_tx(db, _tx)


async def update_timetable(db: AsyncSession, timetable_id: uuid.UUID, data: dict[str, Any]) -> Timetable:
    async def _tx() -> Timetable:
        repo = Repository(db, Timetable)
        tt = await repo.get_or_404(timetable_id, for_update=True)
        slot = {
            key: data.get(key, getattr(tt, key))
            for key in ("classroom", "start_time", "end_time", "days")
        }
        await _check_slot(db, slot, skip_id=tt.id)
        return await repo.update(tt, data)

    return await with_tx(db, _tx)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

def days_late(due: datetime, submitted: datetime) -> int:
    """Whole days past due, rounded up; zero when on time."""
    if submitted <= due:
        return 0
    hours = (submitted - due).total_seconds() / 3600
    return max(1, math.ceil(hours / 24))


def late_penalty(percent_per_day: float, max_points: float, late_days: int) -> float:
    if late_days <= 0:
        return 0.0
    return round(percent_per_day / 100 * max_points * late_days, 2)


def final_score(points: float, penalty: float) -> float:
    return max(0.0, round(points - penalty, 2))


def _fields(data: dict[str, Any]) -> dict[str, Any]:
    out = {k: v for k, v in data.items() if k != "metadata"}
    if "metadata" in data:
        out["meta_data"] = data["metadata"]
    return out


async def create_assignment(
    db: AsyncSession,
    data: dict[str, Any],
    *,
    created_by: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Assignment:
    async def _tx() -> Assignment:
        group = await Repository(db, Group).get_or_404(data["group_id"])
        fields = _fields(data)
        fields["course_id"] = fields.get("course_id") or group.course_id
        fields["teacher_id"] = fields.get("teacher_id") or group.teacher_id
        if fields.get("status") == AssignmentStatus.PUBLISHED.value and not fields.get("assigned_date"):
            fields["assigned_date"] = now or utcnow()
        return await Repository(db, Assignment).create(Assignment(created_by=created_by, **fields))

    return await with_tx(db, _tx)


async def update_assignment(
    db: AsyncSession, assignment_id: uuid.UUID, data: dict[str, Any], *, now: Optional[datetime] = None
) -> Assignment:
    now = now or utcnow()

    async def _tx() -> Assignment:
        repo = Repository(db, Assignment)
        a = await repo.get_or_404(assignment_id, for_update=True)
        fields = _fields(data)
        status = fields.get("status")
        if status == AssignmentStatus.CLOSED.value and a.status != AssignmentStatus.CLOSED.value:
            fields["closed_date"] = now
        elif status == AssignmentStatus.PUBLISHED.value and a.assigned_date is None:
            fields["assigned_date"] = now
        return await repo.update(a, fields)

    return await with_tx(db, _tx)


async def submit(
    db: AsyncSession,
    assignment_id: uuid.UUID,
    student_id: uuid.UUID,
    *,
    content: Optional[str] = None,
    attachments: Optional[list[Any]] = None,
    now: Optional[datetime] = None,
) -> AssignmentSubmission:
    now = now or utcnow()

    async def _tx() -> AssignmentSubmission:
        a = await Repository(db, Assignment).get_or_404(assignment_id)
        if a.status != AssignmentStatus.PUBLISHED.value:
            raise errors.invalid_operation(f"Assignment is {a.status}; submissions are closed")
        await Repository(db, Student).get_or_404(student_id)

        late = days_late(a.due_date, now)
        if late and not a.allow_late:
            raise errors.invalid_operation("Late submissions are not accepted for this assignment")

        stmt = (
            sa.select(AssignmentSubmission)
            .where(
                AssignmentSubmission.assignment_id == a.id,
                AssignmentSubmission.student_id == student_id,
                AssignmentSubmission.deleted_at.is_(None),
            )
            .with_for_update()
        )
        sub = (await db.execute(stmt)).scalars().first()
        if sub is None:
            sub = AssignmentSubmission(assignment_id=a.id, student_id=student_id, attempt_number=1)
            db.add(sub)
        else:
            sub.attempt_number += 1
            # a new attempt clears the previous grade
            sub.points_earned = sub.final_points = sub.feedback = None
            sub.graded_at = sub.graded_by = sub.returned_at = None
            sub.penalty_applied = 0.0

        sub.content = content
        sub.attachments = attachments
        sub.submitted_at = now
        sub.is_late = late > 0
        sub.days_late = late
        sub.status = SubmissionStatus.SUBMITTED.value
        await db.flush()
        return sub

    sub = await with_tx(db, _tx)
    log.info("submission %s attempt=%d days_late=%d", sub.id, sub.attempt_number, sub.days_late)
    return sub


_GRADABLE = (SubmissionStatus.SUBMITTED.value, SubmissionStatus.LATE.value, SubmissionStatus.GRADED.value)


async def grade(
    db: AsyncSession,
    submission_id: uuid.UUID,
    points: float,
    *,
    feedback: Optional[str] = None,
    graded_by: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> AssignmentSubmission:
    async def _tx() -> AssignmentSubmission:
        sub = await Repository(db, AssignmentSubmission).get_or_404(submission_id, for_update=True)
        if sub.status not in _GRADABLE:
            raise errors.invalid_operation(f"Cannot grade a {sub.status} submission")
        a = await Repository(db, Assignment).get_or_404(sub.assignment_id)
        if points > a.max_points:
            raise errors.validation(
                "Points exceed the assignment maximum", {"points": points, "max_points": a.max_points}
            )
        penalty = late_penalty(a.late_penalty_percent, a.max_points, sub.days_late) if sub.is_late else 0.0
        sub.points_earned = points
        sub.penalty_applied = penalty
        sub.final_points = final_score(points, penalty)
        sub.feedback = feedback
        sub.graded_at = now or utcnow()
        sub.graded_by = graded_by
        sub.status = SubmissionStatus.GRADED.value
        await db.flush()
        return sub

    return await with_tx(db, _tx)


async def return_submission(
    db: AsyncSession, submission_id: uuid.UUID, *, now: Optional[datetime] = None
) -> AssignmentSubmission:
    async def _tx() -> AssignmentSubmission:
        sub = await Repository(db, AssignmentSubmission).get_or_404(submission_id, for_update=True)
        if sub.status != SubmissionStatus.GRADED.value:
            raise errors.invalid_operation("Only graded submissions can be returned")
        sub.status = SubmissionStatus.RETURNED.value
        sub.returned_at = now or utcnow()
        await db.flush()
        return sub

    return await with_tx(db, _tx)


async def assignment_statistics(db: AsyncSession, assignment_id: uuid.UUID) -> dict[str, Any]:
    a = await Repository(db, Assignment).get_or_404(assignment_id)
    subs = await Repository(db, AssignmentSubmission).list(AssignmentSubmission.assignment_id == a.id)

    by_status: dict[str, int] = {}
    for s in subs:
        by_status[s.status] = by_status.get(s.status, 0) + 1
    scored = [s.final_points for s in subs if s.final_points is not None]
    passed = [p for p in scored if p >= a.passing_points]
    return {
        "assignment_id": a.id,
        "total_submissions": len(subs),
        "by_status": by_status,
        "late_count": sum(1 for s in subs if s.is_late),
        "graded_count": len(scored),
        "average_points": round(sum(scored) / len(scored), 2) if scored else 0.0,
        "highest_points": max(scored) if scored else 0.0,
        "lowest_points": min(scored) if scored else 0.0,
        "pass_rate": round(len(passed) * 100 / len(scored), 2) if scored else 0.0,
    }
