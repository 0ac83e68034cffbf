from __future__ import annotations

import uuid
from typing import Any

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.core import errors
from educrm.db.models import Parent, ParentStudent, Student
from educrm.db.repository import Repository, with_tx


async def create_parent(db: AsyncSession, data: dict[str, Any]) -> Parent:
    async def _tx() -> Parent:
        if data.get("email"):
            taken = await db.execute(sa.select(Parent.id).where(Parent.email == data["email"]))
            if taken.first() is not None:
                raise errors.duplicate_entry("A parent with this email already exists")
        return await Repository(db, Parent).create(Parent(**data))

    return await with_tx(db, _tx)


async def link_student(db: AsyncSession, parent_id: uuid.UUID, data: dict[str, Any]) -> ParentStudent:
    async def _tx() -> ParentStudent:
        await Repository(db, Parent).get_or_404(parent_id)
        await Repository(db, Student).get_or_404(data["student_id"])
        existing = await db.execute(
            sa.select(ParentStudent.id).where(
                ParentStudent.parent_id == parent_id,
                ParentStudent.student_id == data["student_id"],
            )
        )
        if existing.first() is not None:
            raise errors.duplicate_entry("Parent is already linked to this student")
        if data.get("is_primary"):
            # one primary contact per student
            await db.execute(
                sa.update(ParentStudent)
                .where(ParentStudent.student_id == data["student_id"])
                .values(is_primary=False)
            )
        link = ParentStudent(parent_id=parent_id, **data)
        db.add(link)
        await db.flush()
        return link

    return await with_tx(db, _tx)


async def unlink_student(db: AsyncSession, parent_id: uuid.UUID, student_id: uuid.UUID) -> None:
    async def _tx() -> None:
        res = await db.execute(
            sa.delete(ParentStudent).where(
                ParentStudent.parent_id == parent_id,
                ParentStudent.student_id == student_id,
            )
        )
        if res.rowcount == 0:
            raise errors.not_found(ParentStudent.LABEL)

    await with_tx(db, _tx)


async def parents_of(db: AsyncSession, student_id: uuid.UUID) -> list[dict[str, Any]]:
    await Repository(db, Student).get_or_404(student_id)
    stmt = (
        sa.select(ParentStudent, Parent)
        .join(Parent, Parent.id == ParentStudent.parent_id)
        .where(ParentStudent.student_id == student_id, Parent.deleted_at.is_(None))
        .order_by(ParentStudent.is_primary.desc(), Parent.last_name)
    )
    rows = (await db.execute(stmt)).all()
    return [
        {
            "parent": parent,
            "relation": link.relation,
            "is_primary": link.is_primary,
            "can_pickup": link.can_pickup,
            "receives_grades": link.receives_grades,
            "receives_invoices": link.receives_invoices,
        }
        for link, parent in rows
    ]
