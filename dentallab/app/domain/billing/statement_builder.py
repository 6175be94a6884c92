"""
Statement Builder (Domain Logic).

Read-only reconstruction of a client's account statement from the ledger.
Runs without the client lock; a statement read concurrently with a write
sees either the state before or after that write's commit.
"""

import logging
from datetime import date, datetime, time
from typing import Dict, List, Optional, Union

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dentallab.app.core.exceptions import ClientNotFound
from dentallab.app.domain.billing.money import ZERO, to_money
from dentallab.app.models.billing_enums import StatementEntryKind
from dentallab.app.models.invoice import Invoice
from dentallab.app.models.ledger_entry import LedgerEntry
from dentallab.app.models.payment import Payment
from dentallab.app.models.user import User
from dentallab.app.models.work_order import WorkOrder
from dentallab.app.schemas.billing import (
    StatementClient,
    StatementResponse,
    StatementRowResponse,
    StatementTotalsResponse,
)

logger = logging.getLogger("dentallab.billing")

INVOICE_FALLBACK_DETAIL = "Factura emitida"
PAYMENT_FALLBACK_DETAIL = "Pago registrado"
MOVEMENT_DETAIL = "Movimiento de cuenta"
NO_PATIENT = "-"


def format_work_type_label(value) -> str:
    """CORONA_ZIRCONIA -> Corona Zirconia."""
    if not value:
        return "Orden de trabajo"
    raw = value.value if hasattr(value, "value") else str(value)
    return " ".join(segment.capitalize() for segment in raw.split("_") if segment)


def range_start(value: Union[date, datetime, None]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def range_end(value: Union[date, datetime, None]) -> Optional[datetime]:
    """Inclusive upper bound: a bare date covers the whole day."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.max)


class StatementBuilder:

    @staticmethod
    async def get_statement(
        db: AsyncSession,
        client_id: int,
        date_from: Union[date, datetime, None] = None,
        date_to: Union[date, datetime, None] = None
    ) -> StatementResponse:
        """
        Build the client's statement for an optional date range.

        Invoices, work orders and payments that cannot be resolved degrade to
        generic labels; only storage failures propagate.

        Raises:
            ClientNotFound
        """
        client = await db.get(User, client_id)
        if not client:
            raise ClientNotFound(client_id)

        start = range_start(date_from)
        end = range_end(date_to)

        query = (
            select(LedgerEntry)
            .where(LedgerEntry.client_id == client_id)
            .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
        )
        if start is not None:
            query = query.where(LedgerEntry.created_at >= start)
        if end is not None:
            query = query.where(LedgerEntry.created_at <= end)

        result = await db.execute(query)
        entries = result.scalars().all()

        invoices = await StatementBuilder._invoices_by_id(db, entries)
        orders = await StatementBuilder._orders_by_id(db, invoices.values())
        by_payment_id, by_allocation = await StatementBuilder._payments_index(db, entries)

        rows: List[StatementRowResponse] = []
        invoiced = ZERO
        collected = ZERO

        for entry in entries:
            debit = to_money(entry.debit)
            credit = to_money(entry.credit)
            invoiced += debit
            collected += credit

            invoice = invoices.get(entry.invoice_id)
            order = orders.get(invoice.work_order_id) if invoice and invoice.work_order_id else None

            row = StatementRowResponse(
                entry_id=entry.id,
                date=entry.created_at,
                kind=StatementEntryKind.MOVIMIENTO,
                reference=str(invoice.id) if invoice else "",
                work_order_id=invoice.work_order_id if invoice else None,
                detail=MOVEMENT_DETAIL,
                patient_name=NO_PATIENT,
                debit=debit,
                credit=credit,
                running_balance=to_money(entry.running_balance),
                invoice_id=invoice.id if invoice else None,
            )

            if debit > ZERO:
                row.kind = StatementEntryKind.FACTURA
                if order is not None:
                    row.reference = order.code or row.reference
                    row.patient_name = order.patient_name or NO_PATIENT
                row.detail = format_work_type_label(order.work_type) if order and order.work_type else INVOICE_FALLBACK_DETAIL
            elif credit > ZERO:
                row.kind = StatementEntryKind.PAGO
                payment = by_payment_id.get(entry.payment_id) if entry.payment_id else None
                if payment is None and entry.allocation_id:
                    candidates = by_allocation.get(entry.allocation_id) or []
                    payment = candidates[0] if candidates else None
                if payment is not None:
                    row.payment_id = payment.id
                    row.detail = payment.provider_ref or PAYMENT_FALLBACK_DETAIL
                else:
                    row.detail = PAYMENT_FALLBACK_DETAIL
            else:
                logger.warning(
                    "Ledger entry with neither debit nor credit",
                    extra={"entry_id": entry.id, "client_id": client_id}
                )

            rows.append(row)

        return StatementResponse(
            client=StatementClient(id=client.id, name=client.display_name),
            date_from=start,
            date_to=end,
            rows=rows,
            totals=StatementTotalsResponse(invoiced=invoiced, collected=collected, balance=invoiced - collected),
        )

    @staticmethod
    async def _invoices_by_id(db: AsyncSession, entries) -> Dict[int, Invoice]:
        invoice_ids = {entry.invoice_id for entry in entries if entry.invoice_id}
        if not invoice_ids:
            return {}
        result = await db.execute(select(Invoice).where(Invoice.id.in_(invoice_ids)))
        return {invoice.id: invoice for invoice in result.scalars().all()}

    @staticmethod
    async def _orders_by_id(db: AsyncSession, invoices) -> Dict[int, WorkOrder]:
        order_ids = {invoice.work_order_id for invoice in invoices if invoice.work_order_id}
        if not order_ids:
            return {}
        result = await db.execute(select(WorkOrder).where(WorkOrder.id.in_(order_ids)))
        return {order.id: order for order in result.scalars().all()}

    @staticmethod
    async def _payments_index(db: AsyncSession, entries):
        """Payments reachable from credit entries, by id and by allocation."""
        payment_ids = {entry.payment_id for entry in entries if entry.payment_id}
        allocation_ids = {entry.allocation_id for entry in entries if entry.allocation_id}

        by_id: Dict[int, Payment] = {}
        by_allocation: Dict[str, List[Payment]] = {}
        if not payment_ids and not allocation_ids:
            return by_id, by_allocation

        conditions = []
        if payment_ids:
            conditions.append(Payment.id.in_(payment_ids))
        if allocation_ids:
            conditions.append(Payment.allocation_id.in_(allocation_ids))

        result = await db.execute(
            select(Payment)
            .where(or_(*conditions))
            .order_by(Payment.created_at.asc(), Payment.id.asc())
        )
        for payment in result.scalars().all():
            by_id[payment.id] = payment
            if payment.allocation_id:
                by_allocation.setdefault(payment.allocation_id, []).append(payment)
        return by_id, by_allocation
