# src/educrm/api/routers/content.py
"""
Documents, messages, notifications, parents, calendar events and custom
fields.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.api.router_factory import admin_only, audit_write, audited, build_crud_router, staff_only
from educrm.auth.deps import Principal, require_auth, require_ownership, require_role
from educrm.core import errors
from educrm.core.responses import Envelope, PageParams, ok, paginated
from educrm.db.models import (
    AuditAction,
    CustomField,
    Document,
    Event,
    MessageType,
    Notification,
    NotificationTemplate,
    Parent,
    Role,
)
from educrm.db.repository import Repository
from educrm.db.session import get_db
from educrm.schemas.content import (
    BulkReport,
    CustomFieldCreate,
    CustomFieldOut,
    CustomFieldUpdate,
    CustomFieldValueIn,
    CustomFieldValueOut,
    DocumentApproval,
    DocumentOut,
    DocumentTypeT,
    DocumentUpdate,
    EventCreate,
    EventOut,
    EventUpdate,
    MessageOut,
    MessageSend,
    NotificationBulkSend,
    NotificationOut,
    NotificationSend,
    ParentCreate,
    ParentLink,
    ParentLinkOut,
    ParentOut,
    ParentUpdate,
    StudentParentOut,
    TemplateCreate,
    TemplateOut,
    TemplateUpdate,
)
from educrm.services import custom_fields, documents, events, messages, notifications, parents

staff_or_teacher = require_role(Role.ADMIN, Role.STAFF, Role.TEACHER)


# ---- documents -------------------------------------------------------------

documents_router = APIRouter(prefix="/documents", tags=["documents"])


def _split_tags(raw: Optional[str]) -> Optional[list[str]]:
    if not raw:
        return None
    return [t.strip() for t in raw.split(",") if t.strip()]


@documents_router.post("/upload", response_model=Envelope[DocumentOut], status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    title: str = Form(..., min_length=1, max_length=255),
    document_type: DocumentTypeT = Form(...),
    description: Optional[str] = Form(None),
    student_id: Optional[uuid.UUID] = Form(None),
    teacher_id: Optional[uuid.UUID] = Form(None),
    group_id: Optional[uuid.UUID] = Form(None),
    course_id: Optional[uuid.UUID] = Form(None),
    tags: Optional[str] = Form(None, description="Comma separated"),
    principal: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    content = await file.read()
    fields = {
        "title": title,
        "document_type": document_type,
        "description": description,
        "student_id": student_id,
        "teacher_id": teacher_id,
        "group_id": group_id,
        "course_id": course_id,
        "tags": _split_tags(tags),
    }
    doc = await audited(
        db, principal, AuditAction.CREATE, "documents",
        lambda: documents.upload(
            db,
            content=content,
            filename=file.filename or "upload",
            mime_type=file.content_type,
            fields=fields,
            uploaded_by=principal.id if principal.user is not None else None,
        ),
    )
    return ok(DocumentOut.model_validate(doc), "Document uploaded")


@documents_router.get("/entity/{entity_type}/{entity_id}", response_model=Envelope[list[DocumentOut]])
async def documents_for_entity(
    entity_type: str,
    entity_id: uuid.UUID,
    _: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    rows = await documents.for_entity(db, entity_type, entity_id)
    return ok([DocumentOut.model_validate(d) for d in rows])


@documents_router.get("/{document_id}/download", response_class=FileResponse)
async def download_document(
    document_id: uuid.UUID,
    principal: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    doc = await Repository(db, Document).get_or_404(document_id)
    path = documents.resolve_file(doc)
    await audit_write(db, principal, AuditAction.READ, "documents", resource_id=doc.id)
    return FileResponse(path, media_type=doc.mime_type or "application/octet-stream", filename=doc.file_name)


@documents_router.post("/{document_id}/approve", response_model=Envelope[DocumentOut])
async def approve_document(
    document_id: uuid.UUID,
    payload: DocumentApproval,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    doc = await audited(
        db, principal, AuditAction.UPDATE, "documents",
        lambda: documents.approve(
            db,
            document_id,
            payload.decision,
            approver=principal.id if principal.user is not None else None,
            notes=payload.notes,
        ),
        resource_id=document_id,
    )
    return ok(DocumentOut.model_validate(doc), f"Document {doc.status}")


build_crud_router(
    model=Document,
    create_schema=None,
    read_schema=DocumentOut,
    update_schema=DocumentUpdate,
    path_prefix="/documents",
    read_dependency=staff_or_teacher,
    delete=documents.delete,
    filter_fields=("document_type", "status", "student_id", "teacher_id", "group_id", "course_id"),
    router=documents_router,
)


# ---- messages --------------------------------------------------------------

messages_router = APIRouter(prefix="/messages", tags=["messages"])


@messages_router.post("/send", response_model=Envelope[MessageOut], status_code=201)
async def send_message(
    payload: MessageSend,
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    if payload.type == MessageType.ANNOUNCEMENT.value and principal.role == Role.STUDENT.value:
        raise errors.forbidden("Students cannot post announcements")
    msg = await audited(
        db, principal, AuditAction.CREATE, "messages",
        lambda: messages.send(db, payload.model_dump(), sender_id=principal.id, sender_type=principal.role),
    )
    return ok(MessageOut.model_validate(msg), "Message sent")


@messages_router.get("/inbox", response_model=Envelope[list[MessageOut]])
async def inbox(
    params: PageParams = Depends(),
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    items, total = await messages.inbox(db, principal.id, params)
    return paginated([MessageOut.model_validate(m) for m in items], params, total)


@messages_router.get("/sent", response_model=Envelope[list[MessageOut]])
async def sent_messages(
    params: PageParams = Depends(),
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    items, total = await messages.sent(db, principal.id, params)
    return paginated([MessageOut.model_validate(m) for m in items], params, total)


@messages_router.get("/announcements", response_model=Envelope[list[MessageOut]])
async def announcements(
    params: PageParams = Depends(),
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    role = None if principal.is_admin else principal.role
    items, total = await messages.announcements(db, params, role=role)
    return paginated([MessageOut.model_validate(m) for m in items], params, total)


@messages_router.get("/{message_id}", response_model=Envelope[MessageOut])
async def get_message(
    message_id: uuid.UUID,
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    msg = await messages.view(
        db, message_id, user_id=principal.id, role=principal.role, is_admin=principal.is_admin
    )
    return ok(MessageOut.model_validate(msg))


@messages_router.post("/{message_id}/read", response_model=Envelope[MessageOut])
async def mark_read(
    message_id: uuid.UUID,
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    msg = await messages.mark_read(db, message_id, user_id=principal.id)
    return ok(MessageOut.model_validate(msg), "Message marked as read")


@messages_router.delete("/{message_id}", response_model=Envelope[None])
async def delete_message(
    message_id: uuid.UUID,
    principal: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    await audited(
        db, principal, AuditAction.DELETE, "messages",
        lambda: messages.delete(db, message_id, user_id=principal.id, is_admin=principal.is_admin),
        resource_id=message_id,
    )
    return ok(None, "Message deleted")


# ---- notifications ---------------------------------------------------------

notifications_router = APIRouter(prefix="/notifications", tags=["notifications"])


@notifications_router.post("/send", response_model=Envelope[NotificationOut], status_code=201)
async def send_notification(
    payload: NotificationSend,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    n = await audited(
        db, principal, AuditAction.CREATE, "notifications",
        lambda: notifications.send(db, **payload.model_dump()),
    )
    return ok(NotificationOut.model_validate(n), f"Notification {n.status}")


@notifications_router.post("/send/bulk", response_model=Envelope[BulkReport])
async def send_bulk(
    payload: NotificationBulkSend,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    data = payload.model_dump()
    report = await notifications.send_bulk(db, **data)
    await audit_write(
        db, principal, AuditAction.CREATE, "notifications",
        new={"total": report["total"], "sent": report["sent"], "failed": report["failed"]},
    )
    return ok(
        BulkReport(
            total=report["total"],
            sent=report["sent"],
            failed=report["failed"],
            notifications=[NotificationOut.model_validate(n) for n in report["notifications"]],
            failures=report["failures"],
        ),
        f"{report['sent']} of {report['total']} notification(s) sent",
    )


@notifications_router.get("/recipient/{recipient}", response_model=Envelope[list[NotificationOut]])
async def notifications_for_recipient(
    recipient: str,
    params: PageParams = Depends(),
    _: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    items, total = await Repository(db, Notification).get_page(params, Notification.recipient == recipient)
    return paginated([NotificationOut.model_validate(n) for n in items], params, total)


@notifications_router.post("/{notification_id}/retry", response_model=Envelope[NotificationOut])
async def retry_notification(
    notification_id: uuid.UUID,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    n = await audited(
        db, principal, AuditAction.UPDATE, "notifications",
        lambda: notifications.retry(db, notification_id),
        resource_id=notification_id,
    )
    return ok(NotificationOut.model_validate(n), f"Notification {n.status}")


build_crud_router(
    model=Notification,
    create_schema=None,
    read_schema=NotificationOut,
    update_schema=None,
    path_prefix="/notifications",
    read_dependency=staff_only,
    filter_fields=("type", "status", "user_id", "student_id", "teacher_id", "template_id"),
    deletable=False,
    router=notifications_router,
)

templates_router = build_crud_router(
    model=NotificationTemplate,
    create_schema=TemplateCreate,
    read_schema=TemplateOut,
    update_schema=TemplateUpdate,
    path_prefix="/notification-templates",
    tags=["notifications"],
    read_dependency=staff_only,
    filter_fields=("type", "is_active"),
)


# ---- parents ---------------------------------------------------------------

parents_router = APIRouter(prefix="/parents", tags=["parents"])


@parents_router.post("/{parent_id}/students", response_model=Envelope[ParentLinkOut], status_code=201)
async def link_student(
    parent_id: uuid.UUID,
    payload: ParentLink,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    link = await audited(
        db, principal, AuditAction.CREATE, "parent_students",
        lambda: parents.link_student(db, parent_id, payload.model_dump()),
    )
    return ok(ParentLinkOut.model_validate(link), "Student linked")


@parents_router.delete("/{parent_id}/students/{student_id}", response_model=Envelope[None])
async def unlink_student(
    parent_id: uuid.UUID,
    student_id: uuid.UUID,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    await audited(
        db, principal, AuditAction.DELETE, "parent_students",
        lambda: parents.unlink_student(db, parent_id, student_id),
        resource_id=f"{parent_id}:{student_id}",
    )
    return ok(None, "Student unlinked")


build_crud_router(
    model=Parent,
    create_schema=ParentCreate,
    read_schema=ParentOut,
    update_schema=ParentUpdate,
    path_prefix="/parents",
    read_dependency=staff_or_teacher,
    create=lambda db, data, principal: parents.create_parent(db, data),
    filter_fields=("is_active", "user_id"),
    restore=True,
    router=parents_router,
)

student_parents_router = APIRouter(prefix="/students", tags=["parents"])


@student_parents_router.get("/{student_id}/parents", response_model=Envelope[list[StudentParentOut]])
async def parents_of_student(
    student_id: uuid.UUID,
    _: Principal = Depends(require_ownership("student", param="student_id", bypass=(Role.STAFF, Role.TEACHER))),
    db: AsyncSession = Depends(get_db),
):
    rows = await parents.parents_of(db, student_id)
    return ok([StudentParentOut.model_validate(r) for r in rows])


# ---- calendar --------------------------------------------------------------

events_router = APIRouter(prefix="/calendar/events", tags=["calendar"])


@events_router.get("", response_model=Envelope[list[EventOut]])
async def list_events(
    params: PageParams = Depends(),
    start: Optional[datetime] = Query(None, description="Only events ending after this instant"),
    end: Optional[datetime] = Query(None, description="Only events starting before this instant"),
    group_id: Optional[uuid.UUID] = Query(None),
    course_id: Optional[uuid.UUID] = Query(None),
    teacher_id: Optional[uuid.UUID] = Query(None),
    type: Optional[str] = Query(None),
    _: Principal = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    if start is not None and end is not None and start >= end:
        raise errors.bad_request("start must be before end")
    items, total = await events.list_events(
        db, params, start=start, end=end, group_id=group_id, course_id=course_id, teacher_id=teacher_id, type=type
    )
    return paginated([EventOut.model_validate(e) for e in items], params, total)


build_crud_router(
    model=Event,
    create_schema=EventCreate,
    read_schema=EventOut,
    update_schema=EventUpdate,
    path_prefix="/calendar/events",
    write_dependency=staff_or_teacher,
    create=lambda db, data, principal: events.create_event(
        db, data, created_by=principal.id if principal.user is not None else None
    ),
    update=lambda db, item_id, data, principal: events.update_event(db, item_id, data),
    listable=False,
    router=events_router,
)


# ---- custom fields ---------------------------------------------------------

custom_fields_router = APIRouter(prefix="/custom-fields", tags=["custom-fields"])


@custom_fields_router.get("/values/{entity_id}", response_model=Envelope[list[CustomFieldValueOut]])
async def custom_values(
    entity_id: uuid.UUID,
    _: Principal = Depends(staff_or_teacher),
    db: AsyncSession = Depends(get_db),
):
    rows = await custom_fields.values_for(db, entity_id)
    return ok([CustomFieldValueOut.model_validate(v) for v in rows])


@custom_fields_router.put("/{field_id}/values/{entity_id}", response_model=Envelope[CustomFieldValueOut])
async def set_custom_value(
    field_id: uuid.UUID,
    entity_id: uuid.UUID,
    payload: CustomFieldValueIn,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    row = await audited(
        db, principal, AuditAction.UPDATE, "custom_field_values",
        lambda: custom_fields.set_value(db, field_id, entity_id, payload.value),
        resource_id=entity_id,
    )
    return ok(CustomFieldValueOut.model_validate(row), "Value saved")


build_crud_router(
    model=CustomField,
    create_schema=CustomFieldCreate,
    read_schema=CustomFieldOut,
    update_schema=CustomFieldUpdate,
    path_prefix="/custom-fields",
    read_dependency=staff_or_teacher,
    write_dependency=admin_only,
    create=lambda db, data, principal: custom_fields.create_field(db, data),
    filter_fields=("entity_type", "field_type", "is_active"),
    router=custom_fields_router,
)
