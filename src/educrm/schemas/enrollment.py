from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, EmailStr, Field, model_validator

from .base import Timestamped, UpdateModel

PriorityT = Literal["normal", "high", "urgent"]
WaitlistActionT = Literal["notify", "enroll", "decline", "cancel"]
TransferReasonT = Literal[
    "schedule_conflict", "teacher_request", "student_request", "performance", "capacity", "other"
]


# ---- waitlists -------------------------------------------------------------

class WaitlistCreate(BaseModel):
    group_id: uuid.UUID
    student_id: Optional[uuid.UUID] = None
    prospect_name: Optional[str] = Field(default=None, max_length=200)
    prospect_email: Optional[EmailStr] = None
    prospect_phone: Optional[str] = Field(default=None, max_length=20)
    priority: PriorityT = "normal"
    notes: Optional[str] = None
    preferred_start_date: Optional[dt.date] = None
    source: Optional[str] = Field(default=None, max_length=50)
    metadata: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _who(self) -> "WaitlistCreate":
        if self.student_id is None and not self.prospect_name:
            raise ValueError("either student_id or prospect_name is required")
        return self


class WaitlistUpdate(UpdateModel):
    priority: Optional[PriorityT] = None
    notes: Optional[str] = None
    prospect_email: Optional[EmailStr] = None
    prospect_phone: Optional[str] = Field(default=None, max_length=20)
    preferred_start_date: Optional[dt.date] = None


class WaitlistProcess(BaseModel):
    action: WaitlistActionT
    notes: Optional[str] = None
    expires_at: Optional[dt.datetime] = None


class WaitlistOut(Timestamped):
    group_id: uuid.UUID
    student_id: Optional[uuid.UUID] = None
    course_id: Optional[uuid.UUID] = None
    prospect_name: Optional[str] = None
    prospect_email: Optional[str] = None
    prospect_phone: Optional[str] = None
    status: str
    priority: str
    position: int
    requested_at: dt.datetime
    notified_at: Optional[dt.datetime] = None
    expires_at: Optional[dt.datetime] = None
    enrolled_at: Optional[dt.datetime] = None
    cancelled_at: Optional[dt.datetime] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    preferred_start_date: Optional[dt.date] = None
    source: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("meta_data", "metadata")
    )


class ExpireSweepResult(BaseModel):
    expired: int
    groups_reordered: int


# ---- transfers -------------------------------------------------------------

class TransferCreate(BaseModel):
    student_id: uuid.UUID
    from_group_id: uuid.UUID
    to_group_id: uuid.UUID
    reason: TransferReasonT
    reason_details: Optional[str] = None
    effective_date: Optional[dt.date] = None


class TransferDecision(BaseModel):
    notes: Optional[str] = None


class TransferOut(Timestamped):
    student_id: uuid.UUID
    from_group_id: uuid.UUID
    to_group_id: uuid.UUID
    status: str
    reason: str
    reason_details: Optional[str] = None
    requested_by: Optional[uuid.UUID] = None
    requested_at: dt.datetime
    effective_date: Optional[dt.date] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None
    rejected_at: Optional[dt.datetime] = None
    cancelled_at: Optional[dt.datetime] = None
    review_notes: Optional[str] = None
    fee_difference: float
    fee_adjustment_note: Optional[str] = None


# ---- applications ----------------------------------------------------------

class ApplicationCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(min_length=5, max_length=20)
    date_of_birth: Optional[dt.date] = None
    gender: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = None
    course_id: uuid.UUID
    documents: Optional[list[Any]] = None
    previous_education: Optional[str] = None
    notes: Optional[str] = None


class ApplicationUpdate(UpdateModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, min_length=5, max_length=20)
    date_of_birth: Optional[dt.date] = None
    gender: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = None
    documents: Optional[list[Any]] = None
    previous_education: Optional[str] = None
    notes: Optional[str] = None


class ApplicationReview(BaseModel):
    decision: Literal["reviewed", "approved", "rejected"]
    notes: Optional[str] = None


class ApplicationEnroll(BaseModel):
    group_id: Optional[uuid.UUID] = None


class ApplicationOut(Timestamped):
    first_name: str
    last_name: str
    email: str
    phone: str
    date_of_birth: Optional[dt.date] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    course_id: uuid.UUID
    status: str
    application_date: dt.datetime
    documents: Optional[list[Any]] = None
    previous_education: Optional[str] = None
    notes: Optional[str] = None
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[dt.datetime] = None
    review_notes: Optional[str] = None
    enrolled_as: Optional[uuid.UUID] = None
    enrolled_at: Optional[dt.datetime] = None
