"""
Invoice Mutator (Domain Logic).

Admin correction path: edit an invoice amount, delete an invoice, delete a
payment. Each correction rewrites history out of append order, so each one
ends with a full recompute of the client's balances.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from dentallab.app.core.exceptions import (
    AmountBelowPayments,
    InvalidAmount,
    InvoiceNotFound,
    PaymentNotFound,
)
from dentallab.app.domain.billing.ledger import LedgerService
from dentallab.app.domain.billing.money import ZERO, is_positive_amount, to_money
from dentallab.app.domain.billing.unit_of_work import ledger_transaction, reload_current
from dentallab.app.models.billing_enums import InvoiceStatus
from dentallab.app.models.invoice import Invoice
from dentallab.app.models.ledger_entry import LedgerEntry
from dentallab.app.models.payment import Payment
from dentallab.app.services.audit import AuditAction, log_event

logger = logging.getLogger("dentallab.billing")


async def total_paid(db: AsyncSession, invoice_id: int) -> Decimal:
    await db.flush()
    result = await db.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.invoice_id == invoice_id)
    )
    return to_money(result.scalar_one())


async def refresh_invoice_status(db: AsyncSession, invoice: Invoice) -> InvoiceStatus:
    """PAID iff payments cover the amount. CANCELLED invoices are left alone."""
    if invoice.status == InvoiceStatus.CANCELLED:
        return invoice.status
    paid = await total_paid(db, invoice.id)
    invoice.status = InvoiceStatus.PAID if paid >= to_money(invoice.amount) else InvoiceStatus.PENDING
    return invoice.status


async def find_debit_entry(db: AsyncSession, invoice: Invoice) -> Optional[LedgerEntry]:
    """The debit recorded when the invoice was issued."""
    result = await db.execute(
        select(LedgerEntry)
        .where(
            LedgerEntry.client_id == invoice.client_id,
            LedgerEntry.invoice_id == invoice.id,
            LedgerEntry.payment_id.is_(None),
            LedgerEntry.debit > 0,
        )
        .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def release_payment_credit(db: AsyncSession, payment: Payment, client_id: int) -> Optional[int]:
    """
    Remove a payment's share from the ledger.

    A per-payment credit (linked by payment_id) is deleted outright. A shared
    credit for the whole payment call (linked by allocation_id) is reduced by
    the payment amount and deleted once nothing is left.

    Returns:
        Id of the ledger entry touched, None if the payment had no credit
    """
    result = await db.execute(
        select(LedgerEntry)
        .where(
            LedgerEntry.client_id == client_id,
            LedgerEntry.payment_id == payment.id,
        )
        .execution_options(populate_existing=True)
    )
    entry = result.scalars().first()
    if entry is not None:
        await db.delete(entry)
        await db.flush()
        return entry.id

    if not payment.allocation_id:
        return None

    result = await db.execute(
        select(LedgerEntry)
        .where(
            LedgerEntry.client_id == client_id,
            LedgerEntry.allocation_id == payment.allocation_id,
            LedgerEntry.payment_id.is_(None),
            LedgerEntry.credit > 0,
        )
        .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        return None

    remaining = to_money(entry.credit) - to_money(payment.amount)
    if remaining > ZERO:
        entry.credit = remaining
    else:
        await db.delete(entry)
    await db.flush()
    return entry.id


class InvoiceMutator:

    @staticmethod
    async def edit_invoice_amount(
        db: AsyncSession,
        invoice_id: int,
        new_amount: Decimal,
        allow_below_paid: bool = False,
        actor: Optional[Dict[str, Any]] = None
    ) -> Invoice:
        """
        Correct an invoice amount and its ledger debit.

        Args:
            db: Database session (committed here)
            invoice_id: Invoice to correct
            new_amount: Corrected amount (> 0)
            allow_below_paid: Accept an amount below the payments already received
            actor: Admin JWT payload

        Returns:
            Updated Invoice with its status re-evaluated

        Raises:
            InvalidAmount, InvoiceNotFound, AmountBelowPayments, PersistenceError
        """
        if not is_positive_amount(new_amount):
            raise InvalidAmount(new_amount)
        new_amount = to_money(new_amount)

        invoice = await db.get(Invoice, invoice_id)
        if not invoice:
            raise InvoiceNotFound(invoice_id)

        paid = await total_paid(db, invoice.id)
        if new_amount < paid and not allow_below_paid:
            raise AmountBelowPayments(invoice.id, new_amount, paid)

        client_id = invoice.client_id

        async with ledger_transaction(db, client_id, "edit_invoice_amount"):
            invoice = await reload_current(db, Invoice, invoice_id)
            if not invoice:
                raise InvoiceNotFound(invoice_id)
            old_amount = to_money(invoice.amount)

            paid = await total_paid(db, invoice.id)
            if new_amount < paid and not allow_below_paid:
                raise AmountBelowPayments(invoice.id, new_amount, paid)

            debit_entry_id = None
            if new_amount != old_amount:
                invoice.amount = new_amount

                entry = await find_debit_entry(db, invoice)
                if entry is not None:
                    entry.debit = new_amount
                    debit_entry_id = entry.id
                else:
                    logger.warning(
                        "No ledger debit found for invoice, only the invoice amount changed",
                        extra={"invoice_id": invoice.id, "client_id": client_id}
                    )

                await LedgerService.recompute_balances(db, client_id)

            status = await refresh_invoice_status(db, invoice)

            await log_event(
                db,
                action=AuditAction.INVOICE_AMOUNT_EDITED,
                client_id=client_id,
                actor=actor,
                metadata={
                    "invoice_id": invoice.id,
                    "old_amount": str(old_amount),
                    "new_amount": str(new_amount),
                    "ledger_entry_id": debit_entry_id,
                    "status": status.value,
                }
            )

        logger.info(
            "Invoice amount edited",
            extra={
                "invoice_id": invoice.id,
                "client_id": client_id,
                "old_amount": str(old_amount),
                "new_amount": str(new_amount),
            }
        )
        return invoice

    @staticmethod
    async def delete_invoice(
        db: AsyncSession,
        invoice_id: int,
        actor: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Delete an invoice with its payments and ledger entries.

        Credits shared with other invoices of the same payment call are
        reduced by this invoice's payments and moved to one of the remaining
        invoices; what is left attributed to this invoice is deleted.

        Raises:
            InvoiceNotFound, PersistenceError
        """
        invoice = await db.get(Invoice, invoice_id)
        if not invoice:
            raise InvoiceNotFound(invoice_id)

        client_id = invoice.client_id

        async with ledger_transaction(db, client_id, "delete_invoice"):
            invoice = await reload_current(db, Invoice, invoice_id)
            if not invoice:
                raise InvoiceNotFound(invoice_id)
            amount = to_money(invoice.amount)

            result = await db.execute(
                select(Payment)
                .where(Payment.invoice_id == invoice.id)
                .order_by(Payment.created_at.asc(), Payment.id.asc())
                .execution_options(populate_existing=True)
            )
            payments: List[Payment] = list(result.scalars().all())

            for payment in payments:
                await release_payment_credit(db, payment, client_id)
                await db.delete(payment)
                await db.flush()

            result = await db.execute(
                select(LedgerEntry)
                .where(LedgerEntry.invoice_id == invoice.id)
                .execution_options(populate_existing=True)
            )
            removed_entries = 0
            for entry in result.scalars().all():
                new_owner = await InvoiceMutator._reattribution_target(db, entry, invoice.id)
                if new_owner is not None:
                    entry.invoice_id = new_owner
                    logger.info(
                        "Shared payment credit moved to another invoice",
                        extra={"entry_id": entry.id, "from_invoice_id": invoice.id, "to_invoice_id": new_owner}
                    )
                else:
                    await db.delete(entry)
                    removed_entries += 1
            await db.flush()

            await db.delete(invoice)
            await db.flush()

            await LedgerService.recompute_balances(db, client_id)

            await log_event(
                db,
                action=AuditAction.INVOICE_DELETED,
                client_id=client_id,
                actor=actor,
                metadata={
                    "invoice_id": invoice_id,
                    "amount": str(amount),
                    "payments_deleted": len(payments),
                    "ledger_entries_deleted": removed_entries,
                }
            )

        logger.info(
            "Invoice deleted",
            extra={"invoice_id": invoice_id, "client_id": client_id, "payments_deleted": len(payments)}
        )

    @staticmethod
    async def _reattribution_target(db: AsyncSession, entry: LedgerEntry, invoice_id: int) -> Optional[int]:
        """Invoice that should own a shared credit once invoice_id is gone."""
        if to_money(entry.credit) <= ZERO or not entry.allocation_id:
            return None
        result = await db.execute(
            select(Payment.invoice_id)
            .where(
                Payment.allocation_id == entry.allocation_id,
                Payment.invoice_id != invoice_id,
            )
            .order_by(Payment.created_at.asc(), Payment.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def delete_payment(
        db: AsyncSession,
        payment_id: int,
        actor: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Delete a payment, release its ledger credit and re-open its invoice
        when the remaining payments no longer cover it.

        Raises:
            PaymentNotFound, InvoiceNotFound, PersistenceError
        """
        payment = await db.get(Payment, payment_id)
        if not payment:
            raise PaymentNotFound(payment_id)

        invoice = await db.get(Invoice, payment.invoice_id)
        if not invoice:
            raise InvoiceNotFound(payment.invoice_id)

        client_id = invoice.client_id

        async with ledger_transaction(db, client_id, "delete_payment"):
            payment = await reload_current(db, Payment, payment_id)
            if not payment:
                raise PaymentNotFound(payment_id)
            invoice = await reload_current(db, Invoice, payment.invoice_id)
            amount = to_money(payment.amount)

            entry_id = await release_payment_credit(db, payment, client_id)
            if entry_id is None:
                logger.warning(
                    "Payment had no ledger credit",
                    extra={"payment_id": payment.id, "client_id": client_id}
                )

            await db.delete(payment)
            await db.flush()

            await LedgerService.recompute_balances(db, client_id)

            status = await refresh_invoice_status(db, invoice)

            await log_event(
                db,
                action=AuditAction.PAYMENT_DELETED,
                client_id=client_id,
                actor=actor,
                metadata={
                    "payment_id": payment_id,
                    "invoice_id": invoice.id,
                    "amount": str(amount),
                    "ledger_entry_id": entry_id,
                    "invoice_status": status.value,
                }
            )

        logger.info(
            "Payment deleted",
            extra={"payment_id": payment_id, "invoice_id": invoice.id, "client_id": client_id}
        )
