# src/educrm/api/routers/billing.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.api.router_factory import audited, build_crud_router, staff_only
from educrm.auth.deps import Principal, require_ownership
from educrm.core.responses import Envelope, PageParams, ok, paginated
from educrm.db.models import AuditAction, Discount, Invoice, Payment, RecurringInvoice, Role, Student
from educrm.db.repository import Repository
from educrm.db.session import get_db
from educrm.schemas.billing import (
    DiscountCreate,
    DiscountOut,
    DiscountUpdate,
    GenerateRequest,
    GenerationReport,
    InvoiceCreate,
    InvoiceOut,
    InvoiceUpdate,
    OverdueSweepResult,
    PaymentCreate,
    PaymentOut,
    PaymentRefund,
    PaymentUpdate,
    RecurringInvoiceCreate,
    RecurringInvoiceOut,
    RecurringInvoiceUpdate,
)
from educrm.services import billing

own_student = require_ownership("student", param="student_id", bypass=(Role.STAFF,))


discounts_router = build_crud_router(
    model=Discount,
    create_schema=DiscountCreate,
    read_schema=DiscountOut,
    update_schema=DiscountUpdate,
    path_prefix="/discounts",
    tags=["billing"],
    read_dependency=staff_only,
    create=lambda db, data, principal: billing.create_discount(db, data),
    filter_fields=("is_active", "course_id", "type"),
)


# ---- invoices --------------------------------------------------------------

invoices_router = APIRouter(prefix="/invoices", tags=["billing"])


@invoices_router.post("/mark-overdue", response_model=Envelope[OverdueSweepResult])
async def mark_overdue(
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    ids = await billing.mark_overdue(db)
    return ok(OverdueSweepResult(marked=len(ids), invoice_ids=ids), f"{len(ids)} invoice(s) marked overdue")


build_crud_router(
    model=Invoice,
    create_schema=InvoiceCreate,
    read_schema=InvoiceOut,
    update_schema=InvoiceUpdate,
    path_prefix="/invoices",
    read_dependency=staff_only,
    create=lambda db, data, principal: billing.create_invoice(db, data),
    update=lambda db, item_id, data, principal: billing.update_invoice(db, item_id, data),
    delete=billing.delete_invoice,
    filter_fields=("student_id", "course_id", "group_id", "status", "recurring_invoice_id"),
    router=invoices_router,
)


# ---- payments --------------------------------------------------------------

payments_router = APIRouter(prefix="/payments", tags=["billing"])


@payments_router.post("/{payment_id}/refund", response_model=Envelope[PaymentOut])
async def refund_payment(
    payment_id: uuid.UUID,
    payload: PaymentRefund,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    payment = await audited(
        db, principal, AuditAction.UPDATE, "payments",
        lambda: billing.refund_payment(db, payment_id, payload.amount, reason=payload.reason),
        resource_id=payment_id,
    )
    return ok(PaymentOut.model_validate(payment), "Payment refunded")


build_crud_router(
    model=Payment,
    create_schema=PaymentCreate,
    read_schema=PaymentOut,
    update_schema=PaymentUpdate,
    path_prefix="/payments",
    read_dependency=staff_only,
    create=lambda db, data, principal: billing.create_payment(db, data),
    delete=billing.delete_payment,
    filter_fields=("student_id", "invoice_id", "status", "method"),
    router=payments_router,
)


# ---- a student's ledger ----------------------------------------------------

student_billing_router = APIRouter(prefix="/students", tags=["billing"])


@student_billing_router.get("/{student_id}/payments", response_model=Envelope[list[PaymentOut]])
async def student_payments(
    student_id: uuid.UUID,
    params: PageParams = Depends(),
    _: Principal = Depends(own_student),
    db: AsyncSession = Depends(get_db),
):
    await Repository(db, Student).get_or_404(student_id)
    items, total = await Repository(db, Payment).get_page(params, Payment.student_id == student_id)
    return paginated([PaymentOut.model_validate(p) for p in items], params, total)


@student_billing_router.get("/{student_id}/invoices", response_model=Envelope[list[InvoiceOut]])
async def student_invoices(
    student_id: uuid.UUID,
    params: PageParams = Depends(),
    _: Principal = Depends(own_student),
    db: AsyncSession = Depends(get_db),
):
    await Repository(db, Student).get_or_404(student_id)
    items, total = await Repository(db, Invoice).get_page(params, Invoice.student_id == student_id)
    return paginated([InvoiceOut.model_validate(i) for i in items], params, total)


# ---- recurring invoices ----------------------------------------------------

recurring_router = APIRouter(prefix="/recurring-invoices", tags=["billing"])


@recurring_router.post("/generate", response_model=Envelope[GenerationReport])
async def generate_invoices(
    payload: GenerateRequest,
    principal: Principal = Depends(staff_only),
    db: AsyncSession = Depends(get_db),
):
    report = await billing.generate_due_invoices(db, as_of=payload.as_of)
    return ok(GenerationReport(**report), f"{report['generated']} invoice(s) generated")


def _state_route(action: str):
    async def handler(
        schedule_id: uuid.UUID,
        principal: Principal = Depends(staff_only),
        db: AsyncSession = Depends(get_db),
    ):
        sched = await audited(
            db, principal, AuditAction.UPDATE, "recurring_invoices",
            lambda: billing.set_recurring_state(db, schedule_id, action),
            resource_id=schedule_id,
        )
        return ok(RecurringInvoiceOut.model_validate(sched), f"Recurring invoice {sched.status}")

    handler.__name__ = f"{action}_recurring_invoice"
    return handler


for _action in ("pause", "resume", "cancel"):
    recurring_router.add_api_route(
        f"/{{schedule_id}}/{_action}",
        _state_route(_action),
        methods=["POST"],
        response_model=Envelope[RecurringInvoiceOut],
        summary=f"{_action.capitalize()} recurring invoice",
    )


build_crud_router(
    model=RecurringInvoice,
    create_schema=RecurringInvoiceCreate,
    read_schema=RecurringInvoiceOut,
    update_schema=RecurringInvoiceUpdate,
    path_prefix="/recurring-invoices",
    read_dependency=staff_only,
    create=lambda db, data, principal: billing.create_recurring(db, data),
    update=lambda db, item_id, data, principal: billing.update_recurring(db, item_id, data),
    filter_fields=("student_id", "status", "frequency"),
    router=recurring_router,
)
