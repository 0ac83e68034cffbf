from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from typing import ClassVar, Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from educrm.db.base import GUID, Base, SoftDeleteMixin, UTCDateTime, UUIDMixin

Money = sa.Numeric(12, 2, asdecimal=False)


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    PARTIAL_PAID = "partial_paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_WALLET = "mobile_wallet"


class RecurringFrequency(str, enum.Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMESTER = "semester"
    YEARLY = "yearly"


class RecurringStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Discount(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "discounts"
    LABEL: ClassVar[str] = "Discount"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("code", "name")

    code: Mapped[str] = mapped_column(sa.String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    value: Mapped[float] = mapped_column(Money, nullable=False)
    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("courses.id"))
    valid_from: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    valid_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    max_uses: Mapped[Optional[int]] = mapped_column(sa.Integer)
    current_uses: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)


class Invoice(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "invoices"
    __table_args__ = (
        sa.CheckConstraint("paid_amount >= 0", name="paid_non_negative"),
        sa.CheckConstraint("discount_amount >= 0", name="discount_non_negative"),
        sa.CheckConstraint("tax_amount >= 0", name="tax_non_negative"),
    )
    LABEL: ClassVar[str] = "Invoice"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("invoice_number", "notes")

    invoice_number: Mapped[str] = mapped_column(sa.String(32), nullable=False, unique=True)
    student_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("students.id"), nullable=False, index=True)
    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("courses.id"), index=True)
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("groups.id"))
    recurring_invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("recurring_invoices.id"), index=True
    )

    issue_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    due_date: Mapped[date] = mapped_column(sa.Date, nullable=False)

    subtotal: Mapped[float] = mapped_column(Money, nullable=False)
    discount_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("discounts.id"))
    discount_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    tax_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    total_amount: Mapped[float] = mapped_column(Money, nullable=False)
    paid_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    balance: Mapped[float] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(sa.String(3), nullable=False, default="USD")

    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=InvoiceStatus.DRAFT.value, index=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    paid_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)


class InvoiceCounter(Base):
    """Last invoice number handed out per issue date."""

    __tablename__ = "invoice_counters"

    day: Mapped[date] = mapped_column(sa.Date, primary_key=True)
    last_value: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)


class Payment(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "payments"
    __table_args__ = (sa.CheckConstraint("amount > 0", name="amount_positive"),)
    LABEL: ClassVar[str] = "Payment"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("transaction_id", "description", "notes")

    student_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("students.id"), nullable=False, index=True)
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("invoices.id"), index=True)
    amount: Mapped[float] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(sa.String(3), nullable=False, default="USD")
    method: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=PaymentStatus.COMPLETED.value, index=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(sa.String(255))
    payment_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    refunded_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())


class RecurringInvoice(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "recurring_invoices"
    LABEL: ClassVar[str] = "Recurring invoice"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("description", "notes")

    student_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("students.id"), nullable=False, index=True)
    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("courses.id"))
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("groups.id"))
    description: Mapped[Optional[str]] = mapped_column(sa.Text)

    base_amount: Mapped[float] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(sa.String(3), nullable=False, default="USD")
    discount_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("discounts.id"))
    discount_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    tax_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)

    frequency: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    day_of_month: Mapped[Optional[int]] = mapped_column(sa.Integer)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    next_invoice_date: Mapped[date] = mapped_column(sa.Date, nullable=False, index=True)
    last_generated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    due_days: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=30)
    reminder_days: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=7)
    auto_send: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)

    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=RecurringStatus.ACTIVE.value, index=True)
    total_generated: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
