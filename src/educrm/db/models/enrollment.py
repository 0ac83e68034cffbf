from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from typing import Any, ClassVar, Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from educrm.db.base import GUID, JSONB, Base, SoftDeleteMixin, UTCDateTime, UUIDMixin


class WaitlistStatus(str, enum.Enum):
    PENDING = "pending"
    NOTIFIED = "notified"
    ENROLLED = "enrolled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    DECLINED = "declined"


class WaitlistPriority(str, enum.Enum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# larger wins; string ordering of the names would put "urgent" last
PRIORITY_RANK: dict[str, int] = {
    WaitlistPriority.URGENT.value: 3,
    WaitlistPriority.HIGH.value: 2,
    WaitlistPriority.NORMAL.value: 1,
}


class TransferStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class TransferReason(str, enum.Enum):
    SCHEDULE_CONFLICT = "schedule_conflict"
    TEACHER_REQUEST = "teacher_request"
    STUDENT_REQUEST = "student_request"
    PERFORMANCE = "performance"
    CAPACITY = "capacity"
    OTHER = "other"


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"
    ENROLLED = "enrolled"


class Waitlist(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "waitlists"
    LABEL: ClassVar[str] = "Waitlist entry"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("prospect_name", "prospect_email", "prospect_phone")

    group_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("groups.id"), nullable=False, index=True)
    student_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("students.id"), index=True)
    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("courses.id"))

    prospect_name: Mapped[Optional[str]] = mapped_column(sa.String(200))
    prospect_email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    prospect_phone: Mapped[Optional[str]] = mapped_column(sa.String(20))

    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=WaitlistStatus.PENDING.value, index=True)
    priority: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=WaitlistPriority.NORMAL.value)
    position: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)

    requested_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    notified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    enrolled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    internal_notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    preferred_start_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    source: Mapped[Optional[str]] = mapped_column(sa.String(50))
    meta_data: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONB())

    @property
    def is_prospect(self) -> bool:
        return self.student_id is None


class StudentTransfer(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "student_transfers"
    LABEL: ClassVar[str] = "Transfer"

    student_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("students.id"), nullable=False, index=True)
    from_group_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("groups.id"), nullable=False)
    to_group_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("groups.id"), nullable=False)

    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=TransferStatus.PENDING.value, index=True)
    reason: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    reason_details: Mapped[Optional[str]] = mapped_column(sa.Text)

    requested_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    requested_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    effective_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    rejected_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    review_notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    fee_difference: Mapped[float] = mapped_column(sa.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    fee_adjustment_note: Mapped[Optional[str]] = mapped_column(sa.Text)
    meta_data: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONB())


class Application(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "applications"
    LABEL: ClassVar[str] = "Application"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("first_name", "last_name", "email", "phone")

    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    phone: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    date_of_birth: Mapped[Optional[date]] = mapped_column(sa.Date)
    gender: Mapped[Optional[str]] = mapped_column(sa.String(20))
    address: Mapped[Optional[str]] = mapped_column(sa.Text)

    course_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("courses.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=ApplicationStatus.PENDING.value, index=True)
    application_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    documents: Mapped[Optional[list[Any]]] = mapped_column(JSONB())
    previous_education: Mapped[Optional[str]] = mapped_column(sa.Text)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    review_notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    enrolled_as: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("students.id"))
    enrolled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
