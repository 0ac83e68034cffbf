# src/educrm/services/billing.py
"""
Invoices, discounts, payments and the recurring invoice generator.

Money is kept as floats rounded to cents.  Every write that touches an
invoice's ``paid_amount`` re-derives ``balance`` and ``status`` under the
invoice row lock, so ``balance == total - paid`` and ``0 <= paid <= total``
hold for every committed invoice.
"""
from __future__ import annotations

import calendar
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Optional

import sqlalchemy as sa
from dateutil.relativedelta import relativedelta
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.app_logger import get_logger
from educrm.core import errors
from educrm.core.errors import AppError
from educrm.db.base import utcnow
from educrm.db.models import (
    Course,
    Discount,
    DiscountType,
    Group,
    Invoice,
    InvoiceCounter,
    InvoiceStatus,
    Payment,
    PaymentStatus,
    RecurringFrequency,
    RecurringInvoice,
    RecurringStatus,
    Student,
)
from educrm.db.repository import Repository, with_tx
from educrm.services import notifications

log = get_logger("services.billing")

DEFAULT_CURRENCY = "USD"


def round2(value: float) -> float:
    return round(float(value), 2)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def discount_is_valid(d: Discount, now: datetime, course_id: Optional[uuid.UUID] = None) -> bool:
    if not d.is_active or d.deleted_at is not None:
        return False
    if d.valid_from is not None and now < d.valid_from:
        return False
    if d.valid_until is not None and now > d.valid_until:
        return False
    if d.max_uses is not None and d.current_uses >= d.max_uses:
        return False
    if d.course_id is not None and d.course_id != course_id:
        return False
    return True


def compute_discount(kind: str, value: float, subtotal: float) -> float:
    if kind == DiscountType.PERCENTAGE.value:
        amount = subtotal * value / 100
    else:
        amount = value
    return round2(min(max(amount, 0), subtotal))


def derive_status(inv: Invoice, today: date) -> str:
    if inv.status == InvoiceStatus.CANCELLED.value:
        return inv.status
    paid, total = round2(inv.paid_amount or 0), round2(inv.total_amount)
    if paid >= total:
        return InvoiceStatus.PAID.value
    if paid > 0:
        return InvoiceStatus.PARTIAL_PAID.value
    if today > inv.due_date:
        return InvoiceStatus.OVERDUE.value
    if inv.sent_at is not None:
        return InvoiceStatus.SENT.value
    return InvoiceStatus.DRAFT.value


def recompute(inv: Invoice, now: datetime) -> Invoice:
    """Refresh balance, status and paid date after any amount change."""
    inv.paid_amount = round2(inv.paid_amount or 0)
    inv.balance = round2(inv.total_amount - inv.paid_amount)
    inv.status = derive_status(inv, now.date())
    if inv.status == InvoiceStatus.PAID.value:
        inv.paid_date = inv.paid_date or now
    else:
        inv.paid_date = None
    return inv


_MONTHS = {
    RecurringFrequency.MONTHLY.value: 1,
    RecurringFrequency.QUARTERLY.value: 3,
    RecurringFrequency.SEMESTER.value: 6,
    RecurringFrequency.YEARLY.value: 12,
}
_DAYS = {
    RecurringFrequency.WEEKLY.value: 7,
    RecurringFrequency.BIWEEKLY.value: 14,
}


def advance_date(current: date, frequency: str, day_of_month: Optional[int] = None) -> date:
    """Next fire date; month-based cadences clamp to the target month's length."""
    if frequency in _DAYS:
        return current + timedelta(days=_DAYS[frequency])
    if frequency not in _MONTHS:
        raise ValueError(f"unknown frequency: {frequency}")
    target = current + relativedelta(months=_MONTHS[frequency])
    if day_of_month:
        last = calendar.monthrange(target.year, target.month)[1]
        target = target.replace(day=min(day_of_month, last))
    return target


def invoice_prefix(day: date) -> str:
    return f"INV-{day:%Y%m%d}-"


_UPSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


async def next_invoice_number(db: AsyncSession, day: date) -> str:
    """Bump the day's counter row in one statement.

    The upsert holds the row (PostgreSQL) or the write lock (SQLite) until
    the caller's transaction ends, so concurrent creators queue up behind
    it instead of reading the same count.
    """
    dialect = db.get_bind().dialect.name
    insert = _UPSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"invoice numbering is not supported on {dialect}")
    stmt = (
        insert(InvoiceCounter)
        .values(day=day, last_value=1)
        .on_conflict_do_update(
            index_elements=[InvoiceCounter.day],
            set_={"last_value": InvoiceCounter.last_value + 1},
        )
        .returning(InvoiceCounter.last_value)
    )
    n = int((await db.execute(stmt)).scalar_one())
    return f"{invoice_prefix(day)}{n:06d}"


# ---------------------------------------------------------------------------
# Discounts
# ---------------------------------------------------------------------------

async def _claim_discount(
    db: AsyncSession,
    code: Optional[str],
    subtotal: float,
    course_id: Optional[uuid.UUID],
    now: datetime,
) -> tuple[Optional[Discount], float]:
    """Resolve a code; an unusable code silently yields no discount."""
    if not code:
        return None, 0.0
    stmt = (
        sa.select(Discount)
        .where(Discount.code == code.strip().upper(), Discount.deleted_at.is_(None))
        .with_for_update()
    )
    d = (await db.execute(stmt)).scalars().first()
    if d is None or not discount_is_valid(d, now, course_id):
        log.info("discount code %r ignored", code)
        return None, 0.0
    d.current_uses += 1
    return d, compute_discount(d.type, d.value, subtotal)


async def create_discount(db: AsyncSession, data: dict[str, Any]) -> Discount:
    async def _tx() -> Discount:
        repo = Repository(db, Discount)
        taken = await db.execute(sa.select(Discount.id).where(Discount.code == data["code"]))
        if taken.first() is not None:
            raise errors.duplicate_entry(f"Discount code {data['code']} already exists")
        if data.get("type") == DiscountType.PERCENTAGE.value and data.get("value", 0) > 100:
            raise errors.validation("Percentage discount cannot exceed 100")
        return await repo.create(Discount(current_uses=0, **data))

    return await with_tx(db, _tx)


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

async def _check_owner_refs(db: AsyncSession, data: dict[str, Any]) -> None:
    await Repository(db, Student).get_or_404(data["student_id"])
    if data.get("course_id") is not None:
        await Repository(db, Course).get_or_404(data["course_id"])
    if data.get("group_id") is not None:
        await Repository(db, Group).get_or_404(data["group_id"])


async def _insert_invoice(
    db: AsyncSession,
    *,
    student_id: uuid.UUID,
    subtotal: float,
    due_date: date,
    now: datetime,
    tax_amount: float = 0,
    discount: Optional[Discount] = None,
    discount_amount: float = 0,
    issue_date: Optional[date] = None,
    **extra: Any,
) -> Invoice:
    issue_date = issue_date or now.date()
    currency = extra.pop("currency", None) or DEFAULT_CURRENCY
    subtotal, tax_amount, discount_amount = round2(subtotal), round2(tax_amount), round2(discount_amount)
    total = round2(subtotal - discount_amount + tax_amount)
    inv = Invoice(
        invoice_number=await next_invoice_number(db, issue_date),
        student_id=student_id,
        subtotal=subtotal,
        discount_id=discount.id if discount else None,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        total_amount=total,
        paid_amount=0.0,
        balance=total,
        issue_date=issue_date,
        due_date=due_date,
        status=InvoiceStatus.DRAFT.value,
        currency=currency,
        **extra,
    )
    if total <= 0:
        # nothing to collect: settled on issue
        recompute(inv, now)
    return await Repository(db, Invoice).create(inv)


async def create_invoice(db: AsyncSession, data: dict[str, Any], *, now: Optional[datetime] = None) -> Invoice:
    now = now or utcnow()
    data = dict(data)
    code = data.pop("discount_code", None)

    async def _tx() -> Invoice:
        await _check_owner_refs(db, data)
        discount, amount = await _claim_discount(db, code, data["subtotal"], data.get("course_id"), now)
        return await _insert_invoice(db, now=now, discount=discount, discount_amount=amount, **data)

    inv = await with_tx(db, _tx)
    log.info("invoice %s created total=%.2f", inv.invoice_number, inv.total_amount)
    return inv


async def update_invoice(
    db: AsyncSession, invoice_id: uuid.UUID, data: dict[str, Any], *, now: Optional[datetime] = None
) -> Invoice:
    now = now or utcnow()

    async def _tx() -> Invoice:
        inv = await Repository(db, Invoice).get_or_404(invoice_id, for_update=True)
        if inv.status == InvoiceStatus.CANCELLED.value:
            raise errors.invalid_operation("Cancelled invoices cannot be modified")
        status = data.pop("status", None)
        for key, value in data.items():
            setattr(inv, key, value)
        if status == InvoiceStatus.CANCELLED.value:
            if (inv.paid_amount or 0) > 0:
                raise errors.invalid_operation("Cannot cancel an invoice with payments")
            inv.status = InvoiceStatus.CANCELLED.value
        elif status == InvoiceStatus.SENT.value:
            inv.sent_at = inv.sent_at or now
        if inv.status != InvoiceStatus.CANCELLED.value:
            recompute(inv, now)
        await db.flush()
        return inv

    return await with_tx(db, _tx)


async def delete_invoice(db: AsyncSession, invoice_id: uuid.UUID) -> Invoice:
    async def _tx() -> Invoice:
        inv = await Repository(db, Invoice).get_or_404(invoice_id, for_update=True)
        if (inv.paid_amount or 0) > 0:
            raise errors.resource_in_use("Invoice has payments applied")
        return await Repository(db, Invoice).delete(inv.id)

    return await with_tx(db, _tx)


async def mark_overdue(db: AsyncSession, *, now: Optional[datetime] = None) -> list[uuid.UUID]:
    now = now or utcnow()

    async def _tx() -> list[uuid.UUID]:
        stmt = (
            sa.select(Invoice)
            .where(
                Invoice.deleted_at.is_(None),
                Invoice.status.in_([InvoiceStatus.DRAFT.value, InvoiceStatus.SENT.value]),
                Invoice.paid_amount == 0,
                Invoice.balance > 0,
                Invoice.due_date < now.date(),
            )
            .with_for_update()
        )
        marked = []
        for inv in (await db.execute(stmt)).scalars():
            recompute(inv, now)
            if inv.status == InvoiceStatus.OVERDUE.value:
                marked.append(inv.id)
        await db.flush()
        return marked

    ids = await with_tx(db, _tx)
    if ids:
        log.info("marked %d invoice(s) overdue", len(ids))
    return ids


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

async def create_payment(db: AsyncSession, data: dict[str, Any], *, now: Optional[datetime] = None) -> Payment:
    now = now or utcnow()

    async def _tx() -> Payment:
        await Repository(db, Student).get_or_404(data["student_id"])
        amount = round2(data["amount"])
        if amount <= 0:
            raise errors.validation("Payment amount must be at least 0.01", {"amount": data["amount"]})
        inv = None
        if data.get("invoice_id") is not None:
            inv = await Repository(db, Invoice).get_or_404(data["invoice_id"], for_update=True)
            if inv.student_id != data["student_id"]:
                raise errors.validation("Invoice belongs to a different student")
            if inv.status == InvoiceStatus.CANCELLED.value:
                raise errors.invalid_operation("Cannot pay a cancelled invoice")
            if amount > round2(inv.balance):
                raise errors.validation(
                    "Payment exceeds invoice balance",
                    {"amount": amount, "balance": inv.balance},
                )

        payment = Payment(
            **{k: v for k, v in data.items() if k not in ("currency", "amount", "payment_date")},
            amount=amount,
            currency=data.get("currency") or (inv.currency if inv else DEFAULT_CURRENCY),
            payment_date=data.get("payment_date") or now,
            status=PaymentStatus.COMPLETED.value,
            refunded_amount=0.0,
        )
        await Repository(db, Payment).create(payment)

        if inv is not None:
            inv.paid_amount = round2(inv.paid_amount + amount)
            recompute(inv, now)
            await db.flush()
        return payment

    payment = await with_tx(db, _tx)
    log.info("payment %s amount=%.2f invoice=%s", payment.id, payment.amount, payment.invoice_id)
    return payment


async def refund_payment(
    db: AsyncSession,
    payment_id: uuid.UUID,
    amount: float,
    *,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Payment:
    now = now or utcnow()
    amount = round2(amount)
    if amount <= 0:
        raise errors.validation("Refund amount must be at least 0.01", {"amount": amount})

    async def _tx() -> Payment:
        payment = await Repository(db, Payment).get_or_404(payment_id, for_update=True)
        if payment.status not in (PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value):
            raise errors.invalid_operation(f"Cannot refund a {payment.status} payment")
        refundable = round2(payment.amount - (payment.refunded_amount or 0))
        if amount > refundable:
            raise errors.validation(
                "Refund exceeds refundable amount", {"amount": amount, "refundable": refundable}
            )
        payment.refunded_amount = round2((payment.refunded_amount or 0) + amount)
        payment.refunded_at = now
        payment.status = PaymentStatus.REFUNDED.value
        if reason:
            payment.notes = f"{payment.notes}\n" if payment.notes else ""
            payment.notes += f"Refund {amount:.2f}: {reason}"

        if payment.invoice_id is not None:
            inv = await Repository(db, Invoice).get_or_404(payment.invoice_id, for_update=True)
            inv.paid_amount = round2(max(inv.paid_amount - amount, 0))
            recompute(inv, now)
        await db.flush()
        return payment

    return await with_tx(db, _tx)


async def delete_payment(db: AsyncSession, payment_id: uuid.UUID) -> Payment:
    async def _tx() -> Payment:
        payment = await Repository(db, Payment).get_or_404(payment_id, for_update=True)
        applied = round2(payment.amount - (payment.refunded_amount or 0))
        if payment.invoice_id is not None and payment.status == PaymentStatus.COMPLETED.value and applied > 0:
            raise errors.invalid_operation("Refund the payment before deleting it")
        return await Repository(db, Payment).delete(payment.id)

    return await with_tx(db, _tx)


# ---------------------------------------------------------------------------
# Recurring invoices
# ---------------------------------------------------------------------------

async def create_recurring(
    db: AsyncSession, data: dict[str, Any], *, now: Optional[datetime] = None
) -> RecurringInvoice:
    now = now or utcnow()
    data = dict(data)
    code = data.pop("discount_code", None)
    if data.get("end_date") and data["end_date"] < data["start_date"]:
        raise errors.validation("end_date must not precede start_date")
    if data.get("day_of_month") is None and data["frequency"] in _MONTHS:
        data["day_of_month"] = data["start_date"].day

    async def _tx() -> RecurringInvoice:
        await _check_owner_refs(db, data)
        discount, amount = await _claim_discount(db, code, data["base_amount"], data.get("course_id"), now)
        sched = RecurringInvoice(
            **data,
            discount_id=discount.id if discount else None,
            discount_amount=amount,
            next_invoice_date=data["start_date"],
            status=RecurringStatus.ACTIVE.value,
            total_generated=0,
            total_amount=0.0,
        )
        return await Repository(db, RecurringInvoice).create(sched)

    return await with_tx(db, _tx)


async def update_recurring(db: AsyncSession, schedule_id: uuid.UUID, data: dict[str, Any]) -> RecurringInvoice:
    async def _tx() -> RecurringInvoice:
        repo = Repository(db, RecurringInvoice)
        sched = await repo.get_or_404(schedule_id, for_update=True)
        if sched.status in (RecurringStatus.CANCELLED.value, RecurringStatus.COMPLETED.value):
            raise errors.invalid_operation(f"Cannot modify a {sched.status} schedule")
        end = data.get("end_date", sched.end_date)
        if end is not None and end < sched.start_date:
            raise errors.validation("end_date must not precede start_date")
        return await repo.update(sched, data)

    return await with_tx(db, _tx)


_SCHEDULE_MOVES = {
    "pause": ((RecurringStatus.ACTIVE.value,), RecurringStatus.PAUSED.value),
    "resume": ((RecurringStatus.PAUSED.value,), RecurringStatus.ACTIVE.value),
    "cancel": ((RecurringStatus.ACTIVE.value, RecurringStatus.PAUSED.value), RecurringStatus.CANCELLED.value),
}


async def set_recurring_state(db: AsyncSession, schedule_id: uuid.UUID, action: str) -> RecurringInvoice:
    allowed, target = _SCHEDULE_MOVES[action]

    async def _tx() -> RecurringInvoice:
        sched = await Repository(db, RecurringInvoice).get_or_404(schedule_id, for_update=True)
        if sched.status not in allowed:
            raise errors.invalid_operation(f"Cannot {action} a {sched.status} schedule")
        sched.status = target
        await db.flush()
        return sched

    return await with_tx(db, _tx)


async def _auto_send(db: AsyncSession, inv: Invoice, now: datetime) -> None:
    student = await Repository(db, Student).get(inv.student_id)
    if student is None or not student.email:
        return
    await notifications.dispatch(
        db,
        now=now,
        type="email",
        recipient=student.email,
        subject="Invoice {{number}}",
        message="Invoice {{number}} for {{amount}} {{currency}} is due on {{due}}.",
        variables={
            "number": inv.invoice_number,
            "amount": f"{inv.total_amount:.2f}",
            "currency": inv.currency,
            "due": inv.due_date.isoformat(),
        },
        student_id=student.id,
    )


async def _generate_one(
    db: AsyncSession, schedule_id: uuid.UUID, as_of: date, now: datetime
) -> tuple[list[uuid.UUID], bool]:
    """Materialize every occurrence of one schedule that is due by ``as_of``.

    Returns the new invoice ids and whether the schedule was skipped.
    """
    sched = await Repository(db, RecurringInvoice).get_or_404(schedule_id, for_update=True)
    if sched.status != RecurringStatus.ACTIVE.value or sched.next_invoice_date > as_of:
        return [], True

    created: list[uuid.UUID] = []
    while sched.next_invoice_date <= as_of:
        if sched.end_date is not None and sched.next_invoice_date > sched.end_date:
            break
        fire = sched.next_invoice_date
        inv = await _insert_invoice(
            db,
            now=now,
            student_id=sched.student_id,
            course_id=sched.course_id,
            group_id=sched.group_id,
            recurring_invoice_id=sched.id,
            subtotal=sched.base_amount,
            tax_amount=sched.tax_amount,
            discount_amount=min(sched.discount_amount, sched.base_amount),
            currency=sched.currency,
            issue_date=fire,
            due_date=as_of + timedelta(days=sched.due_days),
            notes=sched.description,
        )
        inv.discount_id = sched.discount_id
        if sched.auto_send:
            inv.sent_at = now
            recompute(inv, now)
            await _auto_send(db, inv, now)
        created.append(inv.id)

        sched.total_generated += 1
        sched.total_amount = round2(sched.total_amount + inv.total_amount)
        sched.last_generated_at = now
        sched.next_invoice_date = advance_date(fire, sched.frequency, sched.day_of_month)

    if sched.end_date is not None and sched.next_invoice_date > sched.end_date:
        sched.status = RecurringStatus.COMPLETED.value
    await db.flush()
    return created, not created


async def generate_due_invoices(
    db: AsyncSession, *, as_of: Optional[date] = None, now: Optional[datetime] = None
) -> dict[str, Any]:
    """Run the generator once; each schedule commits or fails on its own."""
    now = now or utcnow()
    as_of = as_of or now.date()

    due_stmt = sa.select(RecurringInvoice.id).where(
        RecurringInvoice.deleted_at.is_(None),
        RecurringInvoice.status == RecurringStatus.ACTIVE.value,
        RecurringInvoice.next_invoice_date <= as_of,
    ).order_by(RecurringInvoice.next_invoice_date, RecurringInvoice.id)
    schedule_ids = list((await db.execute(due_stmt)).scalars().all())
    await db.rollback()  # release the read snapshot before per-schedule work

    report: dict[str, Any] = {
        "processed": 0, "generated": 0, "skipped": 0, "failed": 0, "invoice_ids": [], "failures": [],
    }
    for sid in schedule_ids:
        report["processed"] += 1
        try:
            ids, skipped = await with_tx(db, lambda sid=sid: _generate_one(db, sid, as_of, now))
        except AppError as exc:
            report["failed"] += 1
            report["failures"].append({"recurring_invoice_id": sid, "error": exc.message})
            log.warning("recurring invoice %s failed: %s", sid, exc.message)
            continue
        if skipped:
            report["skipped"] += 1
        report["generated"] += len(ids)
        report["invoice_ids"].extend(ids)

    log.info(
        "recurring run as_of=%s processed=%d generated=%d failed=%d",
        as_of, report["processed"], report["generated"], report["failed"],
    )
    return report
