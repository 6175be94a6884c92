"""
Invoice Generator (Domain Logic).

Turns finished work orders (and admin manual charges) into invoices and
records their debit in the client's ledger.

Flow for a work order:
1. Validate order (exists, billed-to party, DONE/DELIVERED)
2. Duplicate check (existing invoice for the order)
3. Resolve amount (price table, then stamped price)
4. Under the client lock, in one transaction:
   insert invoice, backfill order price, append ledger debit
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dentallab.app.core.config import settings
from dentallab.app.core.exceptions import (
    AmountUndetermined,
    BillingPartyMissing,
    ClientNotFound,
    DuplicateInvoice,
    InvalidAmount,
    OrderNotFound,
    OrderNotReady,
)
from dentallab.app.domain.billing.ledger import LedgerService
from dentallab.app.domain.billing.money import ZERO, is_positive_amount, to_money
from dentallab.app.domain.billing.pricing_resolver import PricingResolver
from dentallab.app.domain.billing.unit_of_work import ledger_transaction, reload_current
from dentallab.app.models.billing_enums import InvoiceStatus
from dentallab.app.models.invoice import Invoice
from dentallab.app.models.user import User
from dentallab.app.models.work_order import WorkOrder
from dentallab.app.models.work_order_enums import BILLABLE_ORDER_STATUSES, WorkOrderStatus
from dentallab.app.services.audit import AuditAction, log_event

logger = logging.getLogger("dentallab.billing")


async def find_invoice_for_order(db: AsyncSession, order_id: int) -> Optional[Invoice]:
    """Existing invoice for a work order, oldest first if several slipped in."""
    result = await db.execute(
        select(Invoice)
        .where(Invoice.work_order_id == order_id)
        .order_by(Invoice.created_at.asc(), Invoice.id.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


class InvoiceGenerator:

    @staticmethod
    async def create_invoice(
        db: AsyncSession,
        order_id: int,
        actor: Optional[Dict[str, Any]] = None
    ) -> Invoice:
        """
        Create the invoice for a finished work order.

        Args:
            db: Database session (committed here)
            order_id: Work order to bill
            actor: Admin JWT payload, None when triggered by the order lifecycle

        Returns:
            Created Invoice (PENDING)

        Raises:
            OrderNotFound, BillingPartyMissing, OrderNotReady,
            DuplicateInvoice, AmountUndetermined, PersistenceError
        """
        order = await db.get(WorkOrder, order_id)
        if not order:
            raise OrderNotFound(order_id)

        client_id = order.dentist_id
        if not client_id:
            raise BillingPartyMissing(order_id)

        if order.status not in BILLABLE_ORDER_STATUSES:
            raise OrderNotReady(order_id, order.status.value)

        existing = await find_invoice_for_order(db, order_id)
        if existing:
            raise DuplicateInvoice(order_id, existing.id)

        if PricingResolver.resolve_order_amount(order) <= ZERO:
            raise AmountUndetermined(order_id)

        async with ledger_transaction(db, client_id, "create_invoice"):
            # Re-check under the lock: two deliveries of the same order race here
            order = await reload_current(db, WorkOrder, order_id)
            if not order:
                raise OrderNotFound(order_id)
            if order.dentist_id != client_id:
                raise BillingPartyMissing(order_id)
            if order.status not in BILLABLE_ORDER_STATUSES:
                raise OrderNotReady(order_id, order.status.value)

            existing = await find_invoice_for_order(db, order_id)
            if existing:
                raise DuplicateInvoice(order_id, existing.id)

            amount = PricingResolver.resolve_order_amount(order)
            if amount <= ZERO:
                raise AmountUndetermined(order_id)

            invoice = Invoice(
                client_id=client_id,
                work_order_id=order.id,
                amount=amount,
                currency=settings.default_currency,
                status=InvoiceStatus.PENDING,
                created_at=datetime.utcnow(),
            )
            db.add(invoice)
            await db.flush()

            if not is_positive_amount(order.price):
                order.price = amount

            await LedgerService.append_entry(
                db,
                client_id=client_id,
                invoice_id=invoice.id,
                debit=amount,
                credit=ZERO,
                created_at=invoice.created_at,
            )

            await log_event(
                db,
                action=AuditAction.INVOICE_CREATED,
                client_id=client_id,
                actor=actor,
                metadata={"invoice_id": invoice.id, "order_id": order.id, "amount": str(amount)}
            )

        logger.info(
            "Invoice created from work order",
            extra={"invoice_id": invoice.id, "order_id": order.id, "client_id": client_id, "amount": str(amount)}
        )
        return invoice

    @staticmethod
    async def create_manual_invoice(
        db: AsyncSession,
        client_id: int,
        amount: Decimal,
        currency: Optional[str] = None,
        actor: Optional[Dict[str, Any]] = None
    ) -> Invoice:
        """
        Admin charge not tied to a work order.

        Raises:
            InvalidAmount, ClientNotFound, PersistenceError
        """
        if not is_positive_amount(amount):
            raise InvalidAmount(amount)
        amount = to_money(amount)

        client = await db.get(User, client_id)
        if not client:
            raise ClientNotFound(client_id)

        async with ledger_transaction(db, client_id, "create_manual_invoice"):
            invoice = Invoice(
                client_id=client_id,
                work_order_id=None,
                amount=amount,
                currency=(currency or settings.default_currency).upper(),
                status=InvoiceStatus.PENDING,
                created_at=datetime.utcnow(),
            )
            db.add(invoice)
            await db.flush()

            await LedgerService.append_entry(
                db,
                client_id=client_id,
                invoice_id=invoice.id,
                debit=amount,
                credit=ZERO,
                created_at=invoice.created_at,
            )

            await log_event(
                db,
                action=AuditAction.MANUAL_INVOICE_CREATED,
                client_id=client_id,
                actor=actor,
                metadata={"invoice_id": invoice.id, "amount": str(amount)}
            )

        logger.info(
            "Manual invoice created",
            extra={"invoice_id": invoice.id, "client_id": client_id, "amount": str(amount)}
        )
        return invoice

    @staticmethod
    async def ensure_invoice_for_delivered_order(
        db: AsyncSession,
        order_id: int,
        actor: Optional[Dict[str, Any]] = None
    ) -> Invoice:
        """
        Delivery trigger: return the order's invoice, creating it if needed.

        Idempotent: repeated deliveries of the same order return the same
        invoice.
        """
        existing = await find_invoice_for_order(db, order_id)
        if existing:
            return existing

        try:
            return await InvoiceGenerator.create_invoice(db, order_id, actor=actor)
        except DuplicateInvoice:
            # Lost the race to a concurrent delivery
            existing = await find_invoice_for_order(db, order_id)
            if existing is None:
                raise
            return existing


async def mark_order_delivered(
    db: AsyncSession,
    order_id: int,
    actor: Optional[Dict[str, Any]] = None
) -> tuple[WorkOrder, Invoice]:
    """
    Flip a work order to DELIVERED and make sure it is invoiced.

    The status flip commits on its own: delivery happened regardless of
    whether billing succeeds.
    """
    order = await db.get(WorkOrder, order_id)
    if not order:
        raise OrderNotFound(order_id)

    if order.status != WorkOrderStatus.DELIVERED:
        order.status = WorkOrderStatus.DELIVERED
        order.delivered_at = datetime.utcnow()
        await log_event(
            db,
            action=AuditAction.WORK_ORDER_DELIVERED,
            client_id=order.dentist_id,
            actor=actor,
            metadata={"order_id": order.id}
        )
        await db.commit()

    invoice = await InvoiceGenerator.ensure_invoice_for_delivered_order(db, order_id, actor=actor)
    return order, invoice
