from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from educrm.app_logger import get_logger
from educrm.core import errors
from educrm.db.base import utcnow
from educrm.db.models import Application, ApplicationStatus, Course, Group
from educrm.db.repository import Repository, with_tx
from educrm.services.enrollment import insert_student

log = get_logger("services.applications")

S = ApplicationStatus

# decision -> statuses it may be taken from
_REVIEW_MOVES: dict[str, tuple[str, ...]] = {
    S.REVIEWED.value: (S.PENDING.value,),
    S.APPROVED.value: (S.PENDING.value, S.REVIEWED.value),
    S.REJECTED.value: (S.PENDING.value, S.REVIEWED.value),
}


async def create_application(
    db: AsyncSession, data: dict[str, Any], *, now: Optional[datetime] = None
) -> Application:
    async def _tx() -> Application:
        await Repository(db, Course).get_or_404(data["course_id"])
        app = Application(
            **data,
            status=S.PENDING.value,
            application_date=now or utcnow(),
        )
        return await Repository(db, Application).create(app)

    return await with_tx(db, _tx)


async def update_application(db: AsyncSession, app_id: uuid.UUID, data: dict[str, Any]) -> Application:
    async def _tx() -> Application:
        repo = Repository(db, Application)
        app = await repo.get_or_404(app_id, for_update=True)
        if app.status in (S.ENROLLED.value, S.REJECTED.value):
            raise errors.invalid_operation(f"Cannot edit a {app.status} application")
        return await repo.update(app, data)

    return await with_tx(db, _tx)


async def review(
    db: AsyncSession,
    app_id: uuid.UUID,
    decision: str,
    *,
    reviewer: Optional[uuid.UUID],
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Application:
    if decision not in _REVIEW_MOVES:
        raise errors.validation(f"Invalid decision: {decision}")

    async def _tx() -> Application:
        app = await Repository(db, Application).get_or_404(app_id, for_update=True)
        if app.status not in _REVIEW_MOVES[decision]:
            raise errors.invalid_operation(
                f"Cannot move application from {app.status} to {decision}",
                {"status": app.status, "decision": decision},
            )
        app.status = decision
        app.reviewed_by = reviewer
        app.reviewed_at = now or utcnow()
        if notes:
            app.review_notes = notes
        await db.flush()
        return app

    return await with_tx(db, _tx)


async def enroll(
    db: AsyncSession,
    app_id: uuid.UUID,
    *,
    group_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Application:
    """Turn an approved application into a student, seated in ``group_id`` if given."""
    async def _tx() -> Application:
        app = await Repository(db, Application).get_or_404(app_id, for_update=True)
        if app.status != S.APPROVED.value:
            raise errors.invalid_operation("Only approved applications can be enrolled")
        if group_id is not None:
            group = await Repository(db, Group).get_or_404(group_id)
            if group.course_id != app.course_id:
                raise errors.validation("Group does not run the applied course")

        student = await insert_student(
            db,
            {
                "name": app.first_name,
                "surname": app.last_name,
                "phone": app.phone,
                "email": app.email,
                "group_id": group_id,
            },
        )
        app.status = S.ENROLLED.value
        app.enrolled_as = student.id
        app.enrolled_at = now or utcnow()
        await db.flush()
        return app

    app = await with_tx(db, _tx)
    log.info("application %s enrolled as student %s", app.id, app.enrolled_as)
    return app
