# src/educrm/services/enrollment.py
"""
Group capacity, the waitlist queue and student transfers.

Every path that can add a student to a group goes through ``_seat`` with
the group row locked, so the number of live students in a group never
exceeds its capacity once the transaction commits.

Public coroutines own their transaction (``with_tx``); the underscore
helpers run inside a caller's transaction so they can be composed, e.g.
application enrollment reuses ``insert_student``.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.app_logger import get_logger
from educrm.core import errors
from educrm.db.base import utcnow
from educrm.db.models import (
    PRIORITY_RANK,
    Course,
    Group,
    Student,
    StudentTransfer,
    Teacher,
    Timetable,
    TransferStatus,
    Waitlist,
    WaitlistStatus,
)
from educrm.db.repository import Repository, with_tx
from educrm.services import notifications

log = get_logger("services.enrollment")

NOTIFY_WINDOW = timedelta(hours=48)


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------

async def count_students(db: AsyncSession, group_id: uuid.UUID) -> int:
    stmt = sa.select(sa.func.count()).select_from(Student).where(
        Student.group_id == group_id, Student.deleted_at.is_(None)
    )
    return int((await db.execute(stmt)).scalar_one())


async def student_counts(db: AsyncSession, group_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, int]:
    ids = list(group_ids)
    if not ids:
        return {}
    stmt = (
        sa.select(Student.group_id, sa.func.count())
        .where(Student.group_id.in_(ids), Student.deleted_at.is_(None))
        .group_by(Student.group_id)
    )
    counts = {gid: int(n) for gid, n in (await db.execute(stmt)).all()}
    return {gid: counts.get(gid, 0) for gid in ids}


async def _lock_group(db: AsyncSession, group_id: uuid.UUID) -> Group:
    return await Repository(db, Group).get_or_404(group_id, for_update=True)


async def _seat(db: AsyncSession, group_id: uuid.UUID) -> Group:
    """Lock the group and make sure one more student fits."""
    group = await _lock_group(db, group_id)
    current = await count_students(db, group.id)
    if current >= group.capacity:
        raise errors.capacity_exceeded(
            "Group capacity exceeded",
            {"group_id": str(group.id), "capacity": group.capacity, "current": current},
        )
    return group


async def insert_student(db: AsyncSession, data: dict[str, Any]) -> Student:
    group_id = data.get("group_id")
    if group_id is not None:
        await _seat(db, group_id)
    return await Repository(db, Student).create(Student(**data))


async def create_student(db: AsyncSession, data: dict[str, Any]) -> Student:
    return await with_tx(db, lambda: insert_student(db, data))


async def _move_student(db: AsyncSession, student: Student, group_id: Optional[uuid.UUID]) -> None:
    if group_id is not None and group_id != student.group_id:
        await _seat(db, group_id)
    student.group_id = group_id


async def update_student(db: AsyncSession, student_id: uuid.UUID, data: dict[str, Any]) -> Student:
    async def _tx() -> Student:
        repo = Repository(db, Student)
        student = await repo.get_or_404(student_id, for_update=True)
        if "group_id" in data:
            await _move_student(db, student, data.pop("group_id"))
        return await repo.update(student, data)

    return await with_tx(db, _tx)


async def restore_student(db: AsyncSession, student_id: uuid.UUID) -> Student:
    async def _tx() -> Student:
        repo = Repository(db, Student)
        student = await repo.get(student_id, include_deleted=True)
        if student is not None and student.deleted_at is not None and student.group_id is not None:
            # coming back counts against the group again
            await _seat(db, student.group_id)
        return await repo.restore(student_id)

    return await with_tx(db, _tx)


# ---------------------------------------------------------------------------
# Groups and the rows they reference
# ---------------------------------------------------------------------------

async def _check_refs(db: AsyncSession, data: dict[str, Any]) -> None:
    for key, model in (("course_id", Course), ("teacher_id", Teacher), ("timetable_id", Timetable)):
        if data.get(key) is not None and not await Repository(db, model).exists(data[key]):
            raise errors.not_found(model.LABEL)


async def create_group(db: AsyncSession, data: dict[str, Any]) -> Group:
    async def _tx() -> Group:
        await _check_refs(db, data)
        return await Repository(db, Group).create(Group(**data))

    return await with_tx(db, _tx)


async def update_group(db: AsyncSession, group_id: uuid.UUID, data: dict[str, Any]) -> Group:
    async def _tx() -> Group:
        group = await _lock_group(db, group_id)
        await _check_refs(db, data)
        new_cap = data.get("capacity")
        if new_cap is not None and new_cap < group.capacity:
            current = await count_students(db, group.id)
            if current > new_cap:
                raise errors.invalid_operation(
                    "Cannot reduce capacity below current student count",
                    {"capacity": new_cap, "current": current},
                )
        return await Repository(db, Group).update(group, data)

    return await with_tx(db, _tx)


async def delete_group(db: AsyncSession, group_id: uuid.UUID) -> Group:
    async def _tx() -> Group:
        group = await _lock_group(db, group_id)
        if await count_students(db, group.id):
            raise errors.resource_in_use("Cannot delete group with enrolled students")
        return await Repository(db, Group).delete(group.id)

    return await with_tx(db, _tx)


async def delete_referenced(db: AsyncSession, model: type, item_id: uuid.UUID, column) -> Any:
    """Soft delete a teacher/course/timetable unless a live group points at it."""
    async def _tx():
        repo = Repository(db, model)
        await repo.get_or_404(item_id)
        in_use = await Repository(db, Group).count(column == item_id)
        if in_use:
            raise errors.resource_in_use(
                f"{model.LABEL} is used by {in_use} group(s)", {"groups": in_use}
            )
        return await repo.delete(item_id)

    return await with_tx(db, _tx)


# ---------------------------------------------------------------------------
# Waitlist
# ---------------------------------------------------------------------------

def queue_key(entry: Waitlist) -> tuple:
    return (-PRIORITY_RANK.get(entry.priority, 0), entry.requested_at)


def order_pending(entries: Iterable[Waitlist]) -> list[Waitlist]:
    """Priority desc (urgent > high > normal), then oldest request first."""
    return sorted(entries, key=queue_key)


async def _pending(db: AsyncSession, group_id: uuid.UUID) -> Sequence[Waitlist]:
    stmt = (
        sa.select(Waitlist)
        .where(
            Waitlist.group_id == group_id,
            Waitlist.status == WaitlistStatus.PENDING.value,
            Waitlist.deleted_at.is_(None),
        )
        .with_for_update()
    )
    return (await db.execute(stmt)).scalars().all()


async def _reorder(db: AsyncSession, group_id: uuid.UUID) -> list[Waitlist]:
    ordered = order_pending(await _pending(db, group_id))
    for pos, entry in enumerate(ordered, start=1):
        if entry.position != pos:
            entry.position = pos
    await db.flush()
    return ordered


async def reorder_waitlist(db: AsyncSession, group_id: uuid.UUID) -> list[Waitlist]:
    return await with_tx(db, lambda: _reorder(db, group_id))


async def add_to_waitlist(db: AsyncSession, data: dict[str, Any], *, now: Optional[datetime] = None) -> Waitlist:
    async def _tx() -> Waitlist:
        group = await _lock_group(db, data["group_id"])
        if data.get("student_id") is not None:
            student = await Repository(db, Student).get_or_404(data["student_id"])
            if student.group_id == group.id:
                raise errors.conflict("Student is already in this group")
            dup = await Repository(db, Waitlist).count(
                Waitlist.group_id == group.id,
                Waitlist.student_id == student.id,
                Waitlist.status.in_([WaitlistStatus.PENDING.value, WaitlistStatus.NOTIFIED.value]),
            )
            if dup:
                raise errors.duplicate_entry("Student is already waitlisted for this group")
        pending = len(await _pending(db, group.id))
        entry = Waitlist(
            **{k: v for k, v in data.items() if k != "metadata"},
            meta_data=data.get("metadata"),
            course_id=group.course_id,
            status=WaitlistStatus.PENDING.value,
            position=pending + 1,
            requested_at=now or utcnow(),
        )
        await Repository(db, Waitlist).create(entry)
        # an urgent newcomer may outrank older entries
        await _reorder(db, group.id)
        return entry

    return await with_tx(db, _tx)


async def update_waitlist(db: AsyncSession, entry_id: uuid.UUID, data: dict[str, Any]) -> Waitlist:
    async def _tx() -> Waitlist:
        repo = Repository(db, Waitlist)
        entry = await repo.get_or_404(entry_id, for_update=True)
        if entry.status not in _OPEN:
            raise errors.invalid_operation(f"Cannot edit a {entry.status} waitlist entry")
        await repo.update(entry, data)
        if "priority" in data:
            await _reorder(db, entry.group_id)
        return entry

    return await with_tx(db, _tx)


async def delete_waitlist(db: AsyncSession, entry_id: uuid.UUID) -> Waitlist:
    async def _tx() -> Waitlist:
        entry = await Repository(db, Waitlist).delete(entry_id)
        await _reorder(db, entry.group_id)
        return entry

    return await with_tx(db, _tx)


def _append_note(entry: Waitlist, action: str, notes: Optional[str], now: datetime) -> None:
    if notes:
        stamp = now.isoformat(timespec="seconds").replace("+00:00", "Z")
        entry.internal_notes = (entry.internal_notes or "") + f"\n[{stamp}] {action}: {notes}"


async def _notify_entry(db: AsyncSession, entry: Waitlist, now: datetime) -> None:
    student = None
    if entry.student_id is not None:
        student = await Repository(db, Student).get(entry.student_id)
    email = entry.prospect_email or (student.email if student else None)
    if not email:
        log.info("waitlist %s has no email address; skipping notification", entry.id)
        return
    group = await Repository(db, Group).get(entry.group_id)
    await notifications.dispatch(
        db,
        now=now,
        type="email",
        recipient=email,
        subject="A seat is available",
        message=(
            "Hello {{name}}, a seat in {{group}} is available. "
            "Please confirm before {{expires_at}}."
        ),
        variables={
            "name": entry.prospect_name or (student.full_name if student else ""),
            "group": group.name if group else "",
            "expires_at": entry.expires_at.isoformat() if entry.expires_at else "",
        },
        student_id=entry.student_id,
    )


async def _enroll_entry(db: AsyncSession, entry: Waitlist) -> Student:
    if entry.student_id is not None:
        student = await Repository(db, Student).get_or_404(entry.student_id, for_update=True)
        await _move_student(db, student, entry.group_id)
        await db.flush()
        return student

    name, _, surname = (entry.prospect_name or "").strip().partition(" ")
    student = await insert_student(
        db,
        {
            "name": name or "Prospect",
            "surname": surname or "-",
            "phone": entry.prospect_phone or "-",
            "email": entry.prospect_email,
            "group_id": entry.group_id,
        },
    )
    entry.student_id = student.id
    return student


_OPEN = (WaitlistStatus.PENDING.value, WaitlistStatus.NOTIFIED.value)


async def process_waitlist(
    db: AsyncSession,
    entry_id: uuid.UUID,
    action: str,
    *,
    notes: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Waitlist:
    now = now or utcnow()

    async def _tx() -> Waitlist:
        entry = await Repository(db, Waitlist).get_or_404(entry_id, for_update=True)

        if action == "notify":
            if entry.status != WaitlistStatus.PENDING.value:
                raise errors.invalid_operation(f"Cannot notify a {entry.status} entry")
            entry.status = WaitlistStatus.NOTIFIED.value
            entry.notified_at = now
            entry.expires_at = expires_at or now + NOTIFY_WINDOW
            await _notify_entry(db, entry, now)
        elif action == "enroll":
            if entry.status not in _OPEN:
                raise errors.invalid_operation(f"Cannot enroll a {entry.status} entry")
            await _enroll_entry(db, entry)
            entry.status = WaitlistStatus.ENROLLED.value
            entry.enrolled_at = now
        elif action == "decline":
            if entry.status not in _OPEN:
                raise errors.invalid_operation(f"Cannot decline a {entry.status} entry")
            entry.status = WaitlistStatus.DECLINED.value
        elif action == "cancel":
            if entry.status not in _OPEN:
                raise errors.invalid_operation(f"Cannot cancel a {entry.status} entry")
            entry.status = WaitlistStatus.CANCELLED.value
            entry.cancelled_at = now
        else:
            raise errors.validation(f"Invalid action: {action}")

        _append_note(entry, action, notes, now)
        await db.flush()
        await _reorder(db, entry.group_id)
        return entry

    entry = await with_tx(db, _tx)
    log.info("waitlist %s -> %s", entry.id, entry.status)
    return entry


async def expire_waitlists(db: AsyncSession, *, now: Optional[datetime] = None) -> dict[str, int]:
    """Notified entries whose offer lapsed become expired."""
    now = now or utcnow()

    async def _tx() -> dict[str, int]:
        stmt = (
            sa.select(Waitlist)
            .where(
                Waitlist.status == WaitlistStatus.NOTIFIED.value,
                Waitlist.expires_at.is_not(None),
                Waitlist.expires_at < now,
                Waitlist.deleted_at.is_(None),
            )
            .with_for_update()
        )
        lapsed = (await db.execute(stmt)).scalars().all()
        groups = set()
        for entry in lapsed:
            entry.status = WaitlistStatus.EXPIRED.value
            groups.add(entry.group_id)
        await db.flush()
        for gid in groups:
            await _reorder(db, gid)
        return {"expired": len(lapsed), "groups_reordered": len(groups)}

    return await with_tx(db, _tx)


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------

async def _course_fee(db: AsyncSession, group: Group) -> float:
    course = await Repository(db, Course).get(group.course_id, include_deleted=True)
    return float(course.monthly_fee) if course else 0.0


async def request_transfer(
    db: AsyncSession,
    data: dict[str, Any],
    *,
    requested_by: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> StudentTransfer:
    async def _tx() -> StudentTransfer:
        if data["from_group_id"] == data["to_group_id"]:
            raise errors.validation("Target group must differ from the current group")
        student = await Repository(db, Student).get_or_404(data["student_id"])
        if student.group_id != data["from_group_id"]:
            raise errors.validation("Student is not in the source group")
        src = await Repository(db, Group).get_or_404(data["from_group_id"])
        dst = await Repository(db, Group).get_or_404(data["to_group_id"])

        open_count = await Repository(db, StudentTransfer).count(
            StudentTransfer.student_id == student.id,
            StudentTransfer.status.in_([TransferStatus.PENDING.value, TransferStatus.APPROVED.value]),
        )
        if open_count:
            raise errors.conflict("Student already has an open transfer request")

        diff = round(await _course_fee(db, dst) - await _course_fee(db, src), 2)
        transfer = StudentTransfer(
            **data,
            status=TransferStatus.PENDING.value,
            requested_by=requested_by,
            requested_at=now or utcnow(),
            fee_difference=diff,
        )
        return await Repository(db, StudentTransfer).create(transfer)

    return await with_tx(db, _tx)


async def _transition(
    db: AsyncSession,
    transfer_id: uuid.UUID,
    allowed_from: tuple[str, ...],
    target: str,
) -> StudentTransfer:
    transfer = await Repository(db, StudentTransfer).get_or_404(transfer_id, for_update=True)
    if transfer.status not in allowed_from:
        raise errors.invalid_operation(
            f"Cannot move transfer from {transfer.status} to {target}",
            {"status": transfer.status, "target": target},
        )
    transfer.status = target
    return transfer


async def approve_transfer(
    db: AsyncSession, transfer_id: uuid.UUID, *, approver: Optional[uuid.UUID], notes: Optional[str] = None
) -> StudentTransfer:
    async def _tx() -> StudentTransfer:
        t = await _transition(db, transfer_id, (TransferStatus.PENDING.value,), TransferStatus.APPROVED.value)
        t.approved_by = approver
        t.approved_at = utcnow()
        t.review_notes = notes or t.review_notes
        await db.flush()
        return t

    return await with_tx(db, _tx)


async def reject_transfer(
    db: AsyncSession, transfer_id: uuid.UUID, *, reviewer: Optional[uuid.UUID], notes: Optional[str] = None
) -> StudentTransfer:
    async def _tx() -> StudentTransfer:
        t = await _transition(db, transfer_id, (TransferStatus.PENDING.value,), TransferStatus.REJECTED.value)
        t.approved_by = reviewer
        t.rejected_at = utcnow()
        t.review_notes = notes or t.review_notes
        await db.flush()
        return t

    return await with_tx(db, _tx)


async def complete_transfer(db: AsyncSession, transfer_id: uuid.UUID) -> StudentTransfer:
    async def _tx() -> StudentTransfer:
        t = await _transition(db, transfer_id, (TransferStatus.APPROVED.value,), TransferStatus.COMPLETED.value)
        # fixed lock order so two opposite transfers cannot deadlock
        first, second = sorted([t.from_group_id, t.to_group_id], key=str)
        await _lock_group(db, first)
        await _lock_group(db, second)

        student = await Repository(db, Student).get_or_404(t.student_id, for_update=True)
        if student.group_id != t.from_group_id:
            raise errors.invalid_operation("Student is no longer in the source group")
        await _seat(db, t.to_group_id)
        student.group_id = t.to_group_id

        t.completed_at = utcnow()
        if t.fee_difference:
            sign = "increase" if t.fee_difference > 0 else "decrease"
            t.fee_adjustment_note = f"Monthly fee {sign} of {abs(t.fee_difference):.2f}"
        else:
            t.fee_adjustment_note = "No fee difference"
        await db.flush()
        return t

    t = await with_tx(db, _tx)
    log.info("transfer %s completed student=%s %s -> %s", t.id, t.student_id, t.from_group_id, t.to_group_id)
    return t


async def cancel_transfer(db: AsyncSession, transfer_id: uuid.UUID) -> StudentTransfer:
    async def _tx() -> StudentTransfer:
        t = await _transition(
            db,
            transfer_id,
            (TransferStatus.PENDING.value, TransferStatus.APPROVED.value),
            TransferStatus.CANCELLED.value,
        )
        t.cancelled_at = utcnow()
        await db.flush()
        return t

    return await with_tx(db, _tx)
