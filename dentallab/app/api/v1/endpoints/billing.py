"""
Admin Billing API Endpoints.

Invoices, payments, corrections, statements and the billable orders export.
Every route requires the ADMIN role; the domain services commit their own
unit of work and raise AppException subclasses mapped by the global handler.
"""

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dentallab.app.db.session import get_db
from dentallab.app.models.enums import UserRole
from dentallab.app.schemas.billing import (
    DeleteResponse,
    InvoiceAmountUpdate,
    InvoiceCreate,
    InvoiceResponse,
    ManualInvoiceCreate,
    PaymentCreate,
    PaymentRecordResponse,
    PaymentResponse,
    StatementResponse,
)
from dentallab.app.core.guards import require_role
from dentallab.app.domain.billing.billing_report import get_billable_orders, render_csv
from dentallab.app.domain.billing.invoice_generator import InvoiceGenerator
from dentallab.app.domain.billing.invoice_mutator import InvoiceMutator
from dentallab.app.domain.billing.money import to_money
from dentallab.app.domain.billing.payment_allocator import PaymentAllocator
from dentallab.app.domain.billing.statement_builder import StatementBuilder

router = APIRouter(prefix="/admin/billing", tags=["Admin - Billing"])


@router.post("/invoices", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    body: InvoiceCreate,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Invoice a finished (DONE or DELIVERED) work order.
    """
    return await InvoiceGenerator.create_invoice(db, body.order_id, actor=current_user)


@router.post("/invoices/manual", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_manual_invoice(
    body: ManualInvoiceCreate,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Charge a client directly, without a work order.
    """
    return await InvoiceGenerator.create_manual_invoice(
        db, body.client_id, body.amount, currency=body.currency, actor=current_user
    )


@router.patch("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def edit_invoice_amount(
    body: InvoiceAmountUpdate,
    invoice_id: int = Path(..., description="Invoice ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Correct an invoice amount. Balances are recomputed and the invoice
    status re-evaluated against its payments.
    """
    return await InvoiceMutator.edit_invoice_amount(
        db, invoice_id, body.amount, allow_below_paid=body.allow_below_paid, actor=current_user
    )


@router.delete("/invoices/{invoice_id}", response_model=DeleteResponse)
async def delete_invoice(
    invoice_id: int = Path(..., description="Invoice ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete an invoice together with its payments and ledger entries.
    """
    await InvoiceMutator.delete_invoice(db, invoice_id, actor=current_user)
    return DeleteResponse(id=invoice_id)


@router.post("/payments", response_model=PaymentRecordResponse)
async def record_payment(
    body: PaymentCreate,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a client payment, applied to the oldest pending invoices first.
    """
    payments = await PaymentAllocator.record_payment(
        db,
        body.client_id,
        body.amount,
        paid_at=body.date,
        note=body.note,
        actor=current_user,
    )
    return PaymentRecordResponse(
        client_id=body.client_id,
        amount=to_money(body.amount),
        payments=[PaymentResponse.model_validate(payment) for payment in payments],
    )


@router.delete("/payments/{payment_id}", response_model=DeleteResponse)
async def delete_payment(
    payment_id: int = Path(..., description="Payment ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete a payment and re-open its invoice if it is no longer covered.
    """
    await InvoiceMutator.delete_payment(db, payment_id, actor=current_user)
    return DeleteResponse(id=payment_id)


@router.get("/statements/{client_id}", response_model=StatementResponse)
async def get_statement(
    client_id: int = Path(..., description="Client ID"),
    date_from: Optional[date] = Query(None, description="First day included"),
    date_to: Optional[date] = Query(None, description="Last day included"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Client account statement with running balance and totals.
    """
    return await StatementBuilder.get_statement(db, client_id, date_from=date_from, date_to=date_to)


@router.get("/export")
async def export_billable_orders(
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    CSV of finished work orders that are not invoiced yet.
    """
    rows = await get_billable_orders(db)
    filename = f"billing-{datetime.utcnow().strftime('%Y-%m-%d')}.csv"
    return Response(
        content=render_csv(rows),
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-store",
        },
    )
