from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, ClassVar, Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from educrm.db.base import GUID, JSONB, Base, SoftDeleteMixin, UTCDateTime, UUIDMixin


class DocumentType(str, enum.Enum):
    CONTRACT = "contract"
    TRANSCRIPT = "transcript"
    CERTIFICATE = "certificate"
    ID = "id"
    RESUME = "resume"
    ASSIGNMENT = "assignment"
    INVOICE = "invoice"
    RECEIPT = "receipt"
    OTHER = "other"


class DocumentStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class MessageType(str, enum.Enum):
    PRIVATE = "private"
    ANNOUNCEMENT = "announcement"


class MessageStatus(str, enum.Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


class NotificationType(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class EventType(str, enum.Enum):
    CLASS = "class"
    EXAM = "exam"
    MEETING = "meeting"
    HOLIDAY = "holiday"
    DEADLINE = "deadline"
    OTHER = "other"


class ParentRelation(str, enum.Enum):
    FATHER = "father"
    MOTHER = "mother"
    GUARDIAN = "guardian"
    OTHER = "other"


class Document(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "documents"
    LABEL: ClassVar[str] = "Document"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("title", "file_name", "description")

    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    document_type: Mapped[str] = mapped_column(sa.String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=DocumentStatus.PENDING.value, index=True)

    file_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    mime_type: Mapped[Optional[str]] = mapped_column(sa.String(100))

    student_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("students.id"), index=True)
    teacher_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("teachers.id"), index=True)
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("groups.id"), index=True)
    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("courses.id"), index=True)

    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    review_notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    tags: Mapped[Optional[list[Any]]] = mapped_column(JSONB())
    meta_data: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONB())


class Message(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "messages"
    LABEL: ClassVar[str] = "Message"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("subject", "body")

    type: Mapped[str] = mapped_column(sa.String(20), nullable=False, index=True)
    subject: Mapped[Optional[str]] = mapped_column(sa.String(255))
    body: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=MessageStatus.SENT.value)
    priority: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)  # 0 normal, 1 high, 2 urgent

    sender_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    sender_type: Mapped[str] = mapped_column(sa.String(50), nullable=False, default="user")
    recipient_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), index=True)
    recipient_type: Mapped[Optional[str]] = mapped_column(sa.String(50))

    target_role: Mapped[Optional[str]] = mapped_column(sa.String(50))
    target_course_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("courses.id"))
    target_group_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("groups.id"))

    attachments: Mapped[Optional[list[Any]]] = mapped_column(JSONB())
    meta_data: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONB())
    delivered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())


class NotificationTemplate(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "notification_templates"
    LABEL: ClassVar[str] = "Notification template"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("name", "description")

    name: Mapped[str] = mapped_column(sa.String(255), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(sa.String(500))
    body: Mapped[str] = mapped_column(sa.Text, nullable=False)
    variables: Mapped[Optional[list[Any]]] = mapped_column(JSONB())
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)


class Notification(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "notifications"
    LABEL: ClassVar[str] = "Notification"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("recipient", "message", "subject")

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), index=True)
    student_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("students.id"), index=True)
    teacher_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("teachers.id"), index=True)
    recipient: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)

    type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=NotificationStatus.PENDING.value)
    subject: Mapped[Optional[str]] = mapped_column(sa.String(500))
    message: Mapped[str] = mapped_column(sa.Text, nullable=False)
    template_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("notification_templates.id"))

    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    failed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    error_msg: Mapped[Optional[str]] = mapped_column(sa.Text)
    retry_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    meta_data: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONB())


class Event(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "events"
    LABEL: ClassVar[str] = "Event"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("title", "description", "location")

    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    all_day: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    location: Mapped[Optional[str]] = mapped_column(sa.String(255))

    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("groups.id"), index=True)
    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("courses.id"), index=True)
    teacher_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("teachers.id"), index=True)

    is_recurring: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    recurrence_rule: Mapped[Optional[str]] = mapped_column(sa.String(255))
    parent_event_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("events.id"))
    color: Mapped[Optional[str]] = mapped_column(sa.String(20))
    meta_data: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONB())
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())


class Parent(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "parents"
    LABEL: ClassVar[str] = "Parent"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("first_name", "last_name", "email", "phone")

    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(sa.String(255), unique=True)
    phone: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    alternate_phone: Mapped[Optional[str]] = mapped_column(sa.String(20))
    address: Mapped[Optional[str]] = mapped_column(sa.Text)
    city: Mapped[Optional[str]] = mapped_column(sa.String(100))
    country: Mapped[Optional[str]] = mapped_column(sa.String(100))
    occupation: Mapped[Optional[str]] = mapped_column(sa.String(100))
    workplace: Mapped[Optional[str]] = mapped_column(sa.String(255))
    is_emergency_contact: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    receive_notifications: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    preferred_language: Mapped[str] = mapped_column(sa.String(10), nullable=False, default="en")
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("users.id"))


class ParentStudent(UUIDMixin, Base):
    __tablename__ = "parent_students"
    __table_args__ = (UniqueConstraint("parent_id", "student_id", name="uq_parent_students_parent_student"),)
    LABEL: ClassVar[str] = "Parent link"

    parent_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("parents.id"), nullable=False, index=True)
    student_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("students.id"), nullable=False, index=True)
    relation: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    is_primary: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    can_pickup: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    receives_grades: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    receives_invoices: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)


class CustomFieldType(str, enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    URL = "url"
    EMAIL = "email"
    PHONE = "phone"
    TEXTAREA = "textarea"


class CustomFieldEntity(str, enum.Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    COURSE = "course"
    GROUP = "group"
    PARENT = "parent"


class CustomField(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "custom_fields"
    __table_args__ = (UniqueConstraint("entity_type", "name", name="uq_custom_fields_entity_name"),)
    LABEL: ClassVar[str] = "Custom field"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("name", "label")

    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    label: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    field_type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    entity_type: Mapped[str] = mapped_column(sa.String(20), nullable=False, index=True)
    is_required: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    default_value: Mapped[Optional[str]] = mapped_column(sa.Text)
    placeholder: Mapped[Optional[str]] = mapped_column(sa.String(200))
    options: Mapped[Optional[list[Any]]] = mapped_column(JSONB())
    min_value: Mapped[Optional[float]] = mapped_column(sa.Float)
    max_value: Mapped[Optional[float]] = mapped_column(sa.Float)
    min_length: Mapped[Optional[int]] = mapped_column(sa.Integer)
    max_length: Mapped[Optional[int]] = mapped_column(sa.Integer)
    pattern: Mapped[Optional[str]] = mapped_column(sa.String(255))
    display_order: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    is_visible: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    is_searchable: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)


class CustomFieldValue(UUIDMixin, Base):
    __tablename__ = "custom_field_values"
    __table_args__ = (UniqueConstraint("field_id", "entity_id", name="uq_custom_field_values_field_entity"),)
    LABEL: ClassVar[str] = "Custom field value"

    field_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("custom_fields.id"), nullable=False, index=True)
    entity_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    value: Mapped[Optional[str]] = mapped_column(sa.Text)
