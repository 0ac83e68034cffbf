from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.core import errors
from educrm.core.responses import PageParams
from educrm.db.base import utcnow
from educrm.db.models import Course, Group, Message, MessageStatus, MessageType, User
from educrm.db.repository import Repository, with_tx


async def send(
    db: AsyncSession,
    data: dict[str, Any],
    *,
    sender_id: uuid.UUID,
    sender_type: str = "user",
) -> Message:
    data = dict(data)
    meta = data.pop("metadata", None)

    async def _tx() -> Message:
        if data.get("type") == MessageType.PRIVATE.value:
            await Repository(db, User).get_or_404(data["recipient_id"])
            data.update(target_role=None, target_course_id=None, target_group_id=None)
        else:
            data["recipient_id"] = None
            if data.get("target_course_id") is not None:
                await Repository(db, Course).get_or_404(data["target_course_id"])
            if data.get("target_group_id") is not None:
                await Repository(db, Group).get_or_404(data["target_group_id"])
        msg = Message(
            **data,
            meta_data=meta,
            status=MessageStatus.SENT.value,
            sender_id=sender_id,
            sender_type=sender_type,
        )
        return await Repository(db, Message).create(msg)

    return await with_tx(db, _tx)


async def inbox(db: AsyncSession, user_id: uuid.UUID, params: PageParams):
    return await Repository(db, Message).get_page(
        params,
        Message.type == MessageType.PRIVATE.value,
        Message.recipient_id == user_id,
    )


async def sent(db: AsyncSession, user_id: uuid.UUID, params: PageParams):
    return await Repository(db, Message).get_page(params, Message.sender_id == user_id)


async def announcements(db: AsyncSession, params: PageParams, *, role: Optional[str] = None):
    """Announcements; a ``role`` narrows them to untargeted or that role's."""
    filters = [Message.type == MessageType.ANNOUNCEMENT.value]
    if role is not None:
        filters.append(sa.or_(Message.target_role.is_(None), Message.target_role == role))
    return await Repository(db, Message).get_page(params, *filters)


def _can_view(msg: Message, user_id: uuid.UUID, role: str, is_admin: bool) -> bool:
    if is_admin or msg.sender_id == user_id or msg.recipient_id == user_id:
        return True
    return msg.type == MessageType.ANNOUNCEMENT.value and msg.target_role in (None, role)


async def view(
    db: AsyncSession,
    message_id: uuid.UUID,
    *,
    user_id: uuid.UUID,
    role: str,
    is_admin: bool = False,
    now: Optional[datetime] = None,
) -> Message:
    """Fetch a message; the recipient opening it marks it delivered."""
    async def _tx() -> Message:
        msg = await Repository(db, Message).get_or_404(message_id, for_update=True)
        if not _can_view(msg, user_id, role, is_admin):
            raise errors.forbidden("You cannot view this message")
        if msg.recipient_id == user_id and msg.status == MessageStatus.SENT.value:
            msg.status = MessageStatus.DELIVERED.value
            msg.delivered_at = now or utcnow()
            await db.flush()
        return msg

    return await with_tx(db, _tx)


async def mark_read(
    db: AsyncSession, message_id: uuid.UUID, *, user_id: uuid.UUID, now: Optional[datetime] = None
) -> Message:
    now = now or utcnow()

    async def _tx() -> Message:
        msg = await Repository(db, Message).get_or_404(message_id, for_update=True)
        if msg.recipient_id != user_id:
            raise errors.forbidden("Only the recipient can mark a message read")
        if msg.status != MessageStatus.READ.value:
            msg.delivered_at = msg.delivered_at or now
            msg.read_at = now
            msg.status = MessageStatus.READ.value
            await db.flush()
        return msg

    return await with_tx(db, _tx)


async def delete(db: AsyncSession, message_id: uuid.UUID, *, user_id: uuid.UUID, is_admin: bool = False) -> Message:
    async def _tx() -> Message:
        repo = Repository(db, Message)
        msg = await repo.get_or_404(message_id)
        if not is_admin and user_id not in (msg.sender_id, msg.recipient_id):
            raise errors.forbidden("You cannot delete this message")
        return await repo.delete(msg.id)

    return await with_tx(db, _tx)
