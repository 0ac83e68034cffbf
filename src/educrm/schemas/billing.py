from __future__ import annotations

import datetime as dt
import uuid
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .base import ORMBase, Timestamped, UpdateModel

DiscountTypeT = Literal["percentage", "fixed"]
PaymentMethodT = Literal["cash", "card", "bank_transfer", "mobile_wallet"]
FrequencyT = Literal["weekly", "biweekly", "monthly", "quarterly", "semester", "yearly"]


# ---- discounts -------------------------------------------------------------

class DiscountCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    type: DiscountTypeT
    value: float = Field(gt=0)
    course_id: Optional[uuid.UUID] = None
    valid_from: Optional[dt.datetime] = None
    valid_until: Optional[dt.datetime] = None
    max_uses: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()


class DiscountUpdate(UpdateModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    value: Optional[float] = Field(default=None, gt=0)
    valid_from: Optional[dt.datetime] = None
    valid_until: Optional[dt.datetime] = None
    max_uses: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class DiscountOut(Timestamped):
    code: str
    name: str
    description: Optional[str] = None
    type: str
    value: float
    course_id: Optional[uuid.UUID] = None
    valid_from: Optional[dt.datetime] = None
    valid_until: Optional[dt.datetime] = None
    max_uses: Optional[int] = None
    current_uses: int
    is_active: bool


# ---- invoices --------------------------------------------------------------

class InvoiceCreate(BaseModel):
    student_id: uuid.UUID
    course_id: Optional[uuid.UUID] = None
    group_id: Optional[uuid.UUID] = None
    subtotal: float = Field(gt=0)
    tax_amount: float = Field(default=0, ge=0)
    discount_code: Optional[str] = None
    currency: str = Field(default="USD", min_length=3, max_length=3)
    issue_date: Optional[dt.date] = None
    due_date: dt.date
    notes: Optional[str] = None


class InvoiceUpdate(UpdateModel):
    status: Optional[Literal["sent", "cancelled"]] = None
    due_date: Optional[dt.date] = None
    notes: Optional[str] = None


class InvoiceOut(Timestamped):
    invoice_number: str
    student_id: uuid.UUID
    course_id: Optional[uuid.UUID] = None
    group_id: Optional[uuid.UUID] = None
    recurring_invoice_id: Optional[uuid.UUID] = None
    issue_date: dt.date
    due_date: dt.date
    subtotal: float
    discount_id: Optional[uuid.UUID] = None
    discount_amount: float
    tax_amount: float
    total_amount: float
    paid_amount: float
    balance: float
    currency: str
    status: str
    sent_at: Optional[dt.datetime] = None
    paid_date: Optional[dt.datetime] = None
    notes: Optional[str] = None


class OverdueSweepResult(BaseModel):
    marked: int
    invoice_ids: list[uuid.UUID] = Field(default_factory=list)


# ---- payments --------------------------------------------------------------

class PaymentCreate(BaseModel):
    student_id: uuid.UUID
    invoice_id: Optional[uuid.UUID] = None
    amount: float = Field(gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    method: PaymentMethodT
    transaction_id: Optional[str] = None
    payment_date: Optional[dt.datetime] = None
    description: Optional[str] = None
    notes: Optional[str] = None


class PaymentUpdate(UpdateModel):
    transaction_id: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None


class PaymentRefund(BaseModel):
    amount: float = Field(gt=0)
    reason: Optional[str] = None


class PaymentOut(Timestamped):
    student_id: uuid.UUID
    invoice_id: Optional[uuid.UUID] = None
    amount: float
    currency: str
    method: str
    status: str
    transaction_id: Optional[str] = None
    payment_date: dt.datetime
    description: Optional[str] = None
    notes: Optional[str] = None
    refunded_amount: float
    refunded_at: Optional[dt.datetime] = None


# ---- recurring invoices ----------------------------------------------------

class RecurringInvoiceCreate(BaseModel):
    student_id: uuid.UUID
    course_id: Optional[uuid.UUID] = None
    group_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    base_amount: float = Field(gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    discount_code: Optional[str] = None
    tax_amount: float = Field(default=0, ge=0)
    frequency: FrequencyT
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: dt.date
    end_date: Optional[dt.date] = None
    due_days: int = Field(default=30, ge=0, le=365)
    reminder_days: int = Field(default=7, ge=0, le=365)
    auto_send: bool = True
    notes: Optional[str] = None


class RecurringInvoiceUpdate(UpdateModel):
    description: Optional[str] = None
    base_amount: Optional[float] = Field(default=None, gt=0)
    tax_amount: Optional[float] = Field(default=None, ge=0)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    end_date: Optional[dt.date] = None
    due_days: Optional[int] = Field(default=None, ge=0, le=365)
    reminder_days: Optional[int] = Field(default=None, ge=0, le=365)
    auto_send: Optional[bool] = None
    notes: Optional[str] = None


class RecurringInvoiceOut(Timestamped):
    student_id: uuid.UUID
    course_id: Optional[uuid.UUID] = None
    group_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    base_amount: float
    currency: str
    discount_id: Optional[uuid.UUID] = None
    discount_amount: float
    tax_amount: float
    frequency: str
    day_of_month: Optional[int] = None
    start_date: dt.date
    end_date: Optional[dt.date] = None
    next_invoice_date: dt.date
    last_generated_at: Optional[dt.datetime] = None
    due_days: int
    reminder_days: int
    auto_send: bool
    status: str
    total_generated: int
    total_amount: float
    notes: Optional[str] = None


class GenerateRequest(BaseModel):
    as_of: Optional[dt.date] = None


class GenerationFailure(ORMBase):
    recurring_invoice_id: uuid.UUID
    error: str


class GenerationReport(BaseModel):
    processed: int = 0
    generated: int = 0
    skipped: int = 0
    failed: int = 0
    invoice_ids: list[uuid.UUID] = Field(default_factory=list)
    failures: list[GenerationFailure] = Field(default_factory=list)
