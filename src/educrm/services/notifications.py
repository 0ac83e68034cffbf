# src/educrm/services/notifications.py
"""
Outbound notifications over email, SMS and push.

Each send stores a row first (``pending``) and then attempts delivery
synchronously, so per-recipient ordering follows call order.  The
transports are logging stubs that only validate the recipient address
for their channel; a rejected address leaves the row ``failed`` with the
reason, and ``retry`` may re-attempt it a bounded number of times.
"""
from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from educrm.app_logger import get_logger
from educrm.core import errors
from educrm.core.config import settings
from educrm.db.base import utcnow
from educrm.db.models import Notification, NotificationStatus, NotificationTemplate, NotificationType
from educrm.db.repository import Repository, with_tx

log = get_logger("services.notifications")

_VAR = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


class DeliveryError(Exception):
    pass


def render(text: Optional[str], variables: dict[str, Any]) -> Optional[str]:
    """Replace ``{{name}}`` placeholders; unknown names are left untouched."""
    if text is None:
        return None

    def _sub(m: re.Match) -> str:
        key = m.group(1)
        return str(variables[key]) if key in variables else m.group(0)

    return _VAR.sub(_sub, text)


def check_recipient(channel: str, recipient: str) -> None:
    if channel == NotificationType.EMAIL.value:
        if "@" not in recipient:
            raise DeliveryError(f"invalid email address: {recipient!r}")
    elif channel == NotificationType.SMS.value:
        if len(recipient) < 10:
            raise DeliveryError(f"invalid phone number: {recipient!r}")
    elif channel != NotificationType.PUSH.value:
        raise DeliveryError(f"unsupported channel: {channel!r}")


async def _transport(n: Notification) -> None:
    check_recipient(n.type, n.recipient)
    if n.type == NotificationType.EMAIL.value:
        log.info("email -> %s subject=%r", n.recipient, n.subject)
    elif n.type == NotificationType.SMS.value:
        log.info("sms -> %s (%d chars)", n.recipient, len(n.message))
    else:
        log.info("push -> %s", n.recipient)


async def _attempt(n: Notification, now: datetime) -> None:
    try:
        await _transport(n)
    except DeliveryError as exc:
        n.status = NotificationStatus.FAILED.value
        n.failed_at = now
        n.error_msg = str(exc)
        log.warning("notification %s failed: %s", n.id, exc)
        return
    n.status = NotificationStatus.SENT.value
    n.sent_at = now
    n.error_msg = None


async def _load_template(db: AsyncSession, template_id: uuid.UUID, channel: str) -> NotificationTemplate:
    tpl = await Repository(db, NotificationTemplate).get_or_404(template_id)
    if not tpl.is_active:
        raise errors.validation("Notification template is inactive")
    if tpl.type != channel:
        raise errors.validation(
            f"Template channel '{tpl.type}' does not match '{channel}'",
            {"template_id": str(template_id)},
        )
    return tpl


async def _build(
    db: AsyncSession,
    *,
    type: str,
    recipient: str,
    subject: Optional[str] = None,
    message: Optional[str] = None,
    template_id: Optional[uuid.UUID] = None,
    variables: Optional[dict[str, Any]] = None,
    user_id: Optional[uuid.UUID] = None,
    student_id: Optional[uuid.UUID] = None,
    teacher_id: Optional[uuid.UUID] = None,
    metadata: Optional[dict[str, Any]] = None,
    template: Optional[NotificationTemplate] = None,
) -> Notification:
    variables = variables or {}
    if template_id is not None and template is None:
        template = await _load_template(db, template_id, type)
    if template is not None:
        subject = subject or template.subject
        message = message or template.body
    if not message:
        raise errors.validation("Notification message is empty")

    n = Notification(
        type=type,
        recipient=recipient.strip(),
        subject=render(subject, variables),
        message=render(message, variables),
        template_id=template.id if template is not None else None,
        status=NotificationStatus.PENDING.value,
        user_id=user_id,
        student_id=student_id,
        teacher_id=teacher_id,
        retry_count=0,
        meta_data=metadata,
    )
    db.add(n)
    await db.flush()
    return n


async def dispatch(db: AsyncSession, *, now: Optional[datetime] = None, **fields: Any) -> Notification:
    """Store and deliver one notification inside the caller's transaction."""
    n = await _build(db, **fields)
    await _attempt(n, now or utcnow())
    await db.flush()
    return n


async def send(db: AsyncSession, *, now: Optional[datetime] = None, **fields: Any) -> Notification:
    async def _tx() -> Notification:
        return await dispatch(db, now=now, **fields)

    return await with_tx(db, _tx)


async def send_bulk(
    db: AsyncSession,
    *,
    type: str,
    recipients: list[dict[str, Any]],
    subject: Optional[str] = None,
    message: Optional[str] = None,
    template_id: Optional[uuid.UUID] = None,
    variables: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """One notification per recipient; a failing recipient does not stop the rest."""
    now = now or utcnow()

    async def _tx() -> list[Notification]:
        template = await _load_template(db, template_id, type) if template_id is not None else None
        if template is None and not message:
            raise errors.validation("Notification message is empty")
        out = []
        for item in recipients:
            out.append(
                await dispatch(
                    db,
                    now=now,
                    type=type,
                    recipient=item["recipient"],
                    subject=subject,
                    message=message,
                    template=template,
                    variables={**(variables or {}), **(item.get("variables") or {})},
                    user_id=item.get("user_id"),
                    student_id=item.get("student_id"),
                    teacher_id=item.get("teacher_id"),
                )
            )
        return out

    sent = await with_tx(db, _tx)
    failures = [
        {"recipient": n.recipient, "error": n.error_msg or "delivery failed"}
        for n in sent
        if n.status == NotificationStatus.FAILED.value
    ]
    delivered = [n for n in sent if n.status == NotificationStatus.SENT.value]
    return {
        "total": len(recipients),
        "sent": len(delivered),
        "failed": len(recipients) - len(delivered),
        "notifications": sent,
        "failures": failures,
    }


async def retry(db: AsyncSession, notification_id: uuid.UUID, *, now: Optional[datetime] = None) -> Notification:
    async def _tx() -> Notification:
        n = await Repository(db, Notification).get_or_404(notification_id, for_update=True)
        if n.status != NotificationStatus.FAILED.value:
            raise errors.invalid_operation("Only failed notifications can be retried")
        if n.retry_count >= settings.NOTIFICATION_MAX_RETRIES:
            raise errors.invalid_operation(
                "Retry limit reached",
                {"retry_count": n.retry_count, "max_retries": settings.NOTIFICATION_MAX_RETRIES},
            )
        n.retry_count += 1
        await _attempt(n, now or utcnow())
        await db.flush()
        return n

    return await with_tx(db, _tx)


__all__ = ["render", "check_recipient", "dispatch", "send", "send_bulk", "retry", "DeliveryError"]
