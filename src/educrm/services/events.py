from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from educrm.core import errors
from educrm.core.responses import PageParams
from educrm.db.models import Course, Event, Group, Teacher
from educrm.db.repository import Repository, with_tx

_REFS = {"group_id": Group, "course_id": Course, "teacher_id": Teacher}


def _fields(data: dict[str, Any]) -> dict[str, Any]:
    out = {k: v for k, v in data.items() if k != "metadata"}
    if "metadata" in data:
        out["meta_data"] = data["metadata"]
    return out


async def _check_refs(db: AsyncSession, data: dict[str, Any]) -> None:
    for key, model in _REFS.items():
        if data.get(key) is not None:
            await Repository(db, model).get_or_404(data[key])


async def create_event(db: AsyncSession, data: dict[str, Any], *, created_by: Optional[uuid.UUID] = None) -> Event:
    async def _tx() -> Event:
        await _check_refs(db, data)
        return await Repository(db, Event).create(Event(created_by=created_by, **_fields(data)))

    return await with_tx(db, _tx)


async def update_event(db: AsyncSession, event_id: uuid.UUID, data: dict[str, Any]) -> Event:
    async def _tx() -> Event:
        repo = Repository(db, Event)
        event = await repo.get_or_404(event_id, for_update=True)
        await _check_refs(db, data)
        if data.get("start_time", event.start_time) >= data.get("end_time", event.end_time):
            raise errors.validation("start_time must be before end_time")
        return await repo.update(event, _fields(data))

    return await with_tx(db, _tx)


async def list_events(
    db: AsyncSession,
    params: PageParams,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    group_id: Optional[uuid.UUID] = None,
    course_id: Optional[uuid.UUID] = None,
    teacher_id: Optional[uuid.UUID] = None,
    type: Optional[str] = None,
):
    """Events overlapping ``[start, end)`` plus the exact-match filters."""
    filters = []
    if start is not None:
        filters.append(Event.end_time > start)
    if end is not None:
        filters.append(Event.start_time < end)
    for column, value in (
        (Event.group_id, group_id),
        (Event.course_id, course_id),
        (Event.teacher_id, teacher_id),
        (Event.type, type),
    ):
        if value is not None:
            filters.append(column == value)
    return await Repository(db, Event).get_page(params, *filters)
