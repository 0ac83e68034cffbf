from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, EmailStr, Field, model_validator

from .base import ORMBase, Timestamped, UpdateModel

DocumentTypeT = Literal[
    "contract", "transcript", "certificate", "id", "resume", "assignment", "invoice", "receipt", "other"
]
ChannelT = Literal["email", "sms", "push"]
EventTypeT = Literal["class", "exam", "meeting", "holiday", "deadline", "other"]
RelationT = Literal["father", "mother", "guardian", "other"]
FieldTypeT = Literal[
    "text", "number", "date", "boolean", "select", "multi_select", "url", "email", "phone", "textarea"
]
EntityTypeT = Literal["student", "teacher", "course", "group", "parent"]


def _meta_field():
    return Field(default=None, validation_alias=AliasChoices("meta_data", "metadata"))


# ---- documents -------------------------------------------------------------

class DocumentUpdate(UpdateModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    document_type: Optional[DocumentTypeT] = None
    tags: Optional[list[str]] = None


class DocumentApproval(BaseModel):
    decision: Literal["approve", "reject"]
    notes: Optional[str] = None


class DocumentOut(Timestamped):
    title: str
    description: Optional[str] = None
    document_type: str
    status: str
    file_name: str
    file_path: str
    file_size: int
    mime_type: Optional[str] = None
    student_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    group_id: Optional[uuid.UUID] = None
    course_id: Optional[uuid.UUID] = None
    uploaded_by: Optional[uuid.UUID] = None
    uploaded_at: dt.datetime
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[dt.datetime] = None
    review_notes: Optional[str] = None
    tags: Optional[list[Any]] = None
    metadata: Optional[dict[str, Any]] = _meta_field()


# ---- messages --------------------------------------------------------------

class MessageSend(BaseModel):
    type: Literal["private", "announcement"] = "private"
    subject: Optional[str] = Field(default=None, max_length=255)
    body: str = Field(min_length=1)
    priority: int = Field(default=0, ge=0, le=2)
    recipient_id: Optional[uuid.UUID] = None
    recipient_type: Optional[str] = Field(default=None, max_length=50)
    target_role: Optional[Literal["admin", "teacher", "student", "staff"]] = None
    target_course_id: Optional[uuid.UUID] = None
    target_group_id: Optional[uuid.UUID] = None
    attachments: Optional[list[Any]] = None
    metadata: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _target(self) -> "MessageSend":
        if self.type == "private" and self.recipient_id is None:
            raise ValueError("recipient_id is required for private messages")
        return self


class MessageOut(Timestamped):
    type: str
    subject: Optional[str] = None
    body: str
    status: str
    priority: int
    sender_id: uuid.UUID
    sender_type: str
    recipient_id: Optional[uuid.UUID] = None
    recipient_type: Optional[str] = None
    target_role: Optional[str] = None
    target_course_id: Optional[uuid.UUID] = None
    target_group_id: Optional[uuid.UUID] = None
    attachments: Optional[list[Any]] = None
    metadata: Optional[dict[str, Any]] = _meta_field()
    delivered_at: Optional[dt.datetime] = None
    read_at: Optional[dt.datetime] = None


# ---- notifications ---------------------------------------------------------

class NotificationSend(BaseModel):
    type: ChannelT
    recipient: str = Field(min_length=1, max_length=255)
    subject: Optional[str] = Field(default=None, max_length=500)
    message: Optional[str] = None
    template_id: Optional[uuid.UUID] = None
    variables: dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[uuid.UUID] = None
    student_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    metadata: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _body(self) -> "NotificationSend":
        if not self.message and self.template_id is None:
            raise ValueError("message or template_id is required")
        return self


class BulkRecipient(BaseModel):
    recipient: str = Field(min_length=1, max_length=255)
    variables: dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[uuid.UUID] = None
    student_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None


class NotificationBulkSend(BaseModel):
    type: ChannelT
    recipients: list[BulkRecipient] = Field(min_length=1)
    subject: Optional[str] = Field(default=None, max_length=500)
    message: Optional[str] = None
    template_id: Optional[uuid.UUID] = None
    variables: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _body(self) -> "NotificationBulkSend":
        if not self.message and self.template_id is None:
            raise ValueError("message or template_id is required")
        return self


class NotificationOut(Timestamped):
    user_id: Optional[uuid.UUID] = None
    student_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    recipient: str
    type: str
    status: str
    subject: Optional[str] = None
    message: str
    template_id: Optional[uuid.UUID] = None
    sent_at: Optional[dt.datetime] = None
    failed_at: Optional[dt.datetime] = None
    error_msg: Optional[str] = None
    retry_count: int
    metadata: Optional[dict[str, Any]] = _meta_field()


class BulkFailure(BaseModel):
    recipient: str
    error: str


class BulkReport(BaseModel):
    total: int
    sent: int
    failed: int
    notifications: list[NotificationOut] = Field(default_factory=list)
    failures: list[BulkFailure] = Field(default_factory=list)


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    type: ChannelT
    subject: Optional[str] = Field(default=None, max_length=500)
    body: str = Field(min_length=1)
    variables: Optional[list[str]] = None
    is_active: bool = True


class TemplateUpdate(UpdateModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    subject: Optional[str] = Field(default=None, max_length=500)
    body: Optional[str] = Field(default=None, min_length=1)
    variables: Optional[list[str]] = None
    is_active: Optional[bool] = None


class TemplateOut(Timestamped):
    name: str
    description: Optional[str] = None
    type: str
    subject: Optional[str] = None
    body: str
    variables: Optional[list[Any]] = None
    is_active: bool


# ---- calendar --------------------------------------------------------------

class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    type: EventTypeT
    start_time: dt.datetime
    end_time: dt.datetime
    all_day: bool = False
    location: Optional[str] = Field(default=None, max_length=255)
    group_id: Optional[uuid.UUID] = None
    course_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    is_recurring: bool = False
    recurrence_rule: Optional[str] = Field(default=None, max_length=255)
    color: Optional[str] = Field(default=None, max_length=20)
    metadata: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _window(self) -> "EventCreate":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class EventUpdate(UpdateModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[EventTypeT] = None
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    all_day: Optional[bool] = None
    location: Optional[str] = Field(default=None, max_length=255)
    group_id: Optional[uuid.UUID] = None
    course_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    is_recurring: Optional[bool] = None
    recurrence_rule: Optional[str] = Field(default=None, max_length=255)
    color: Optional[str] = Field(default=None, max_length=20)
    metadata: Optional[dict[str, Any]] = None


class EventOut(Timestamped):
    title: str
    description: Optional[str] = None
    type: str
    start_time: dt.datetime
    end_time: dt.datetime
    all_day: bool
    location: Optional[str] = None
    group_id: Optional[uuid.UUID] = None
    course_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    is_recurring: bool
    recurrence_rule: Optional[str] = None
    parent_event_id: Optional[uuid.UUID] = None
    color: Optional[str] = None
    metadata: Optional[dict[str, Any]] = _meta_field()
    created_by: Optional[uuid.UUID] = None


# ---- parents ---------------------------------------------------------------

class ParentCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: str = Field(min_length=5, max_length=20)
    alternate_phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(default=None, max_length=100)
    country: Optional[str] = Field(default=None, max_length=100)
    occupation: Optional[str] = Field(default=None, max_length=100)
    workplace: Optional[str] = Field(default=None, max_length=255)
    is_emergency_contact: bool = True
    receive_notifications: bool = True
    preferred_language: str = Field(default="en", max_length=10)
    user_id: Optional[uuid.UUID] = None


class ParentUpdate(UpdateModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, min_length=5, max_length=20)
    alternate_phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(default=None, max_length=100)
    country: Optional[str] = Field(default=None, max_length=100)
    occupation: Optional[str] = Field(default=None, max_length=100)
    workplace: Optional[str] = Field(default=None, max_length=255)
    is_emergency_contact: Optional[bool] = None
    receive_notifications: Optional[bool] = None
    preferred_language: Optional[str] = Field(default=None, max_length=10)
    is_active: Optional[bool] = None


class ParentOut(Timestamped):
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: str
    alternate_phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    occupation: Optional[str] = None
    workplace: Optional[str] = None
    is_emergency_contact: bool
    receive_notifications: bool
    preferred_language: str
    is_active: bool
    user_id: Optional[uuid.UUID] = None


class ParentLink(BaseModel):
    student_id: uuid.UUID
    relation: RelationT
    is_primary: bool = False
    can_pickup: bool = True
    receives_grades: bool = True
    receives_invoices: bool = True


class ParentLinkOut(Timestamped):
    parent_id: uuid.UUID
    student_id: uuid.UUID
    relation: str
    is_primary: bool
    can_pickup: bool
    receives_grades: bool
    receives_invoices: bool


class StudentParentOut(ORMBase):
    parent: ParentOut
    relation: str
    is_primary: bool
    can_pickup: bool
    receives_grades: bool
    receives_invoices: bool


# ---- custom fields ---------------------------------------------------------

class CustomFieldCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100, pattern=r"^[a-z][a-z0-9_]*$")
    label: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    field_type: FieldTypeT
    entity_type: EntityTypeT
    is_required: bool = False
    default_value: Optional[str] = None
    placeholder: Optional[str] = Field(default=None, max_length=200)
    options: Optional[list[str]] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=1)
    pattern: Optional[str] = Field(default=None, max_length=255)
    display_order: int = 0
    is_visible: bool = True
    is_searchable: bool = False

    @model_validator(mode="after")
    def _options(self) -> "CustomFieldCreate":
        if self.field_type in ("select", "multi_select") and not self.options:
            raise ValueError("options are required for select fields")
        return self


class CustomFieldUpdate(UpdateModel):
    label: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    is_required: Optional[bool] = None
    default_value: Optional[str] = None
    placeholder: Optional[str] = Field(default=None, max_length=200)
    options: Optional[list[str]] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=1)
    pattern: Optional[str] = Field(default=None, max_length=255)
    display_order: Optional[int] = None
    is_visible: Optional[bool] = None
    is_searchable: Optional[bool] = None
    is_active: Optional[bool] = None


class CustomFieldOut(Timestamped):
    name: str
    label: str
    description: Optional[str] = None
    field_type: str
    entity_type: str
    is_required: bool
    default_value: Optional[str] = None
    placeholder: Optional[str] = None
    options: Optional[list[Any]] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    display_order: int
    is_visible: bool
    is_searchable: bool
    is_active: bool


class CustomFieldValueIn(BaseModel):
    value: Any = None


class CustomFieldValueOut(Timestamped):
    field_id: uuid.UUID
    entity_id: uuid.UUID
    value: Optional[str] = None
