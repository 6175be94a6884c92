"""
Payment Allocator (Domain Logic).

Spreads an incoming payment over a client's outstanding invoices, oldest
first, and records the cash received in the client's ledger.

Ledger credit recording depends on settings.ledger_credit_mode:
    single        one credit for the full amount, attributed to the first
                  invoice touched (else the most recent invoice, else none)
    per_invoice   one credit per payment row, plus one credit for any
                  unapplied surplus
Both modes produce the same total credit and final balance.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from dentallab.app.core.config import settings
from dentallab.app.core.exceptions import ClientNotFound, NonPositiveAmount, NoteTooLong
from dentallab.app.domain.billing.ledger import LedgerService
from dentallab.app.domain.billing.money import ZERO, is_positive_amount, to_money
from dentallab.app.domain.billing.unit_of_work import ledger_transaction
from dentallab.app.models.billing_enums import (
    InvoiceStatus,
    LedgerCreditMode,
    PaymentProvider,
    PaymentStatus,
)
from dentallab.app.models.invoice import Invoice
from dentallab.app.models.payment import Payment
from dentallab.app.models.user import User
from dentallab.app.services.audit import AuditAction, log_event

logger = logging.getLogger("dentallab.billing")

NOTE_MAX_LENGTH = 200


def payment_timestamp(value: Union[datetime, date, None]) -> datetime:
    """Payment date as a naive UTC datetime; bare dates map to midnight."""
    if value is None:
        return datetime.utcnow()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime.combine(value, time.min)


async def paid_totals(db: AsyncSession, invoice_ids: List[int]) -> Dict[int, Decimal]:
    """Sum of payments per invoice id."""
    totals: Dict[int, Decimal] = defaultdict(lambda: ZERO)
    if not invoice_ids:
        return totals
    result = await db.execute(
        select(Payment.invoice_id, func.sum(Payment.amount))
        .where(Payment.invoice_id.in_(invoice_ids))
        .group_by(Payment.invoice_id)
    )
    for invoice_id, total in result.all():
        totals[invoice_id] = to_money(total)
    return totals


async def latest_invoice_id(db: AsyncSession, client_id: int) -> Optional[int]:
    result = await db.execute(
        select(Invoice.id)
        .where(Invoice.client_id == client_id)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


class PaymentAllocator:

    @staticmethod
    async def record_payment(
        db: AsyncSession,
        client_id: int,
        amount: Decimal,
        paid_at: Union[datetime, date, None] = None,
        note: Optional[str] = None,
        actor: Optional[Dict[str, Any]] = None,
        credit_mode: Optional[LedgerCreditMode] = None
    ) -> List[Payment]:
        """
        Record a client payment.

        Args:
            db: Database session (committed here)
            client_id: Paying client
            amount: Amount received (> 0)
            paid_at: Payment date, defaults to now
            note: Free-text reference stored on each payment row
            actor: Admin JWT payload
            credit_mode: Overrides settings.ledger_credit_mode

        Returns:
            Payment rows created, one per invoice touched (may be empty)

        Raises:
            NonPositiveAmount, NoteTooLong, ClientNotFound, PersistenceError
        """
        if not is_positive_amount(amount):
            raise NonPositiveAmount(amount)
        amount = to_money(amount)
        if note and len(note) > NOTE_MAX_LENGTH:
            raise NoteTooLong(len(note), NOTE_MAX_LENGTH)

        client = await db.get(User, client_id)
        if not client:
            raise ClientNotFound(client_id)

        mode = LedgerCreditMode(credit_mode or settings.ledger_credit_mode)
        created_at = payment_timestamp(paid_at)
        provider_ref = note or ""
        allocation_id = str(uuid.uuid4())

        async with ledger_transaction(db, client_id, "record_payment"):
            result = await db.execute(
                select(Invoice)
                .where(
                    Invoice.client_id == client_id,
                    Invoice.status == InvoiceStatus.PENDING,
                )
                .order_by(Invoice.created_at.asc(), Invoice.id.asc())
                .execution_options(populate_existing=True)
            )
            invoices = result.scalars().all()
            totals = await paid_totals(db, [invoice.id for invoice in invoices])

            remaining = amount
            created: List[Payment] = []
            for invoice in invoices:
                if remaining <= ZERO:
                    break

                outstanding = to_money(invoice.amount) - totals[invoice.id]
                if outstanding <= ZERO:
                    continue

                applied = min(outstanding, remaining)
                payment = Payment(
                    invoice_id=invoice.id,
                    allocation_id=allocation_id,
                    provider=PaymentProvider.MANUAL,
                    provider_ref=provider_ref,
                    amount=applied,
                    status=PaymentStatus.COMPLETED,
                    created_at=created_at,
                )
                db.add(payment)

                if applied >= outstanding:
                    invoice.status = InvoiceStatus.PAID

                remaining -= applied
                created.append(payment)

            await db.flush()

            await PaymentAllocator._record_credits(
                db, client_id, amount, remaining, created, allocation_id, created_at, mode
            )

            await log_event(
                db,
                action=AuditAction.PAYMENT_RECORDED,
                client_id=client_id,
                actor=actor,
                metadata={
                    "amount": str(amount),
                    "allocation_id": allocation_id,
                    "payment_ids": [payment.id for payment in created],
                    "unapplied": str(remaining),
                    "credit_mode": mode.value,
                }
            )

        if remaining > ZERO:
            logger.warning(
                "Payment exceeds outstanding invoices, surplus left unapplied",
                extra={"client_id": client_id, "amount": str(amount), "unapplied": str(remaining)}
            )
        logger.info(
            "Payment recorded",
            extra={
                "client_id": client_id,
                "amount": str(amount),
                "allocation_id": allocation_id,
                "payments": len(created),
            }
        )
        return created

    @staticmethod
    async def _record_credits(
        db: AsyncSession,
        client_id: int,
        amount: Decimal,
        unapplied: Decimal,
        payments: List[Payment],
        allocation_id: str,
        created_at: datetime,
        mode: LedgerCreditMode
    ) -> None:
        if mode == LedgerCreditMode.SINGLE:
            invoice_id = payments[0].invoice_id if payments else await latest_invoice_id(db, client_id)
            if invoice_id is None:
                logger.warning(
                    "Client has no invoices, payment not written to the ledger",
                    extra={"client_id": client_id, "amount": str(amount)}
                )
                return
            await LedgerService.append_entry(
                db,
                client_id=client_id,
                invoice_id=invoice_id,
                debit=ZERO,
                credit=amount,
                created_at=created_at,
                allocation_id=allocation_id,
            )
            return

        for payment in payments:
            await LedgerService.append_entry(
                db,
                client_id=client_id,
                invoice_id=payment.invoice_id,
                debit=ZERO,
                credit=to_money(payment.amount),
                created_at=created_at,
                payment_id=payment.id,
                allocation_id=allocation_id,
            )

        if unapplied > ZERO:
            invoice_id = payments[-1].invoice_id if payments else await latest_invoice_id(db, client_id)
            if invoice_id is None:
                logger.warning(
                    "Client has no invoices, payment not written to the ledger",
                    extra={"client_id": client_id, "amount": str(amount)}
                )
                return
            await LedgerService.append_entry(
                db,
                client_id=client_id,
                invoice_id=invoice_id,
                debit=ZERO,
                credit=unapplied,
                created_at=created_at,
                allocation_id=allocation_id,
            )
