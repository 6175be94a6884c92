"""
Invoice Generation Tests.

Work order invoicing, manual charges and the delivery trigger.
"""

import pytest
from decimal import Decimal
from sqlalchemy import select, func

from dentallab.app.core.exceptions import (
    AmountUndetermined,
    BillingPartyMissing,
    ClientNotFound,
    DuplicateInvoice,
    InvalidAmount,
    OrderNotFound,
    OrderNotReady,
)
from dentallab.app.domain.billing.invoice_generator import InvoiceGenerator, mark_order_delivered
from dentallab.app.domain.billing.ledger import LedgerService
from dentallab.app.domain.billing.pricing_resolver import PricingResolver
from dentallab.app.models.audit_log import AuditLog
from dentallab.app.models.billing_enums import InvoiceStatus
from dentallab.app.models.invoice import Invoice
from dentallab.app.models.work_order import WorkOrder
from dentallab.app.models.work_order_enums import WorkOrderStatus, WorkType
from dentallab.app.services.audit import AuditAction


async def count_invoices(db_session):
    result = await db_session.execute(select(func.count(Invoice.id)))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_invoice_from_price_table(db_session, dentist, make_order, assert_ledger_consistent):
    """A finished order with no stamped price is billed at the table price."""
    order = await make_order(dentist, work_type=WorkType.PROTESIS)

    invoice = await InvoiceGenerator.create_invoice(db_session, order.id)

    assert invoice.amount == Decimal("2750.00")
    assert invoice.status == InvoiceStatus.PENDING
    assert invoice.client_id == dentist.id
    assert invoice.currency == "ARS"

    entries = await LedgerService.entries_for_client(db_session, dentist.id)
    assert len(entries) == 1
    assert entries[0].debit == Decimal("2750.00")
    assert entries[0].credit == Decimal("0.00")
    assert entries[0].running_balance == Decimal("2750.00")
    assert entries[0].invoice_id == invoice.id
    assert await assert_ledger_consistent(dentist.id) == Decimal("2750.00")


@pytest.mark.asyncio
async def test_invoice_backfills_order_price(db_session, dentist, make_order):
    order = await make_order(dentist, work_type=WorkType.CORONA_ZIRCONIA)

    await InvoiceGenerator.create_invoice(db_session, order.id)

    refreshed = await db_session.get(WorkOrder, order.id)
    assert refreshed.price == Decimal("2990.00")


@pytest.mark.asyncio
async def test_table_price_wins_over_stamped_price(db_session, dentist, make_order):
    order = await make_order(dentist, work_type=WorkType.REPARACION, price="999")

    invoice = await InvoiceGenerator.create_invoice(db_session, order.id)

    assert invoice.amount == Decimal("1150.00")


@pytest.mark.asyncio
async def test_stamped_price_used_without_work_type(db_session, dentist, make_order):
    order = await make_order(dentist, work_type=None, price="1234.50")

    invoice = await InvoiceGenerator.create_invoice(db_session, order.id)

    assert invoice.amount == Decimal("1234.50")


@pytest.mark.asyncio
async def test_amount_undetermined(db_session, dentist, make_order):
    order = await make_order(dentist, work_type=None, price=None)

    with pytest.raises(AmountUndetermined):
        await InvoiceGenerator.create_invoice(db_session, order.id)
    assert await count_invoices(db_session) == 0


@pytest.mark.asyncio
async def test_order_not_found(db_session):
    with pytest.raises(OrderNotFound):
        await InvoiceGenerator.create_invoice(db_session, 4242)


@pytest.mark.asyncio
async def test_order_without_dentist(db_session, make_order):
    order = await make_order(None)

    with pytest.raises(BillingPartyMissing):
        await InvoiceGenerator.create_invoice(db_session, order.id)


@pytest.mark.asyncio
async def test_order_not_finished(db_session, dentist, make_order):
    order = await make_order(dentist, status=WorkOrderStatus.IN_PROGRESS)

    with pytest.raises(OrderNotReady) as exc_info:
        await InvoiceGenerator.create_invoice(db_session, order.id)
    assert exc_info.value.details["status"] == "IN_PROGRESS"
    assert await count_invoices(db_session) == 0


@pytest.mark.asyncio
async def test_duplicate_invoice_rejected(db_session, dentist, make_order):
    order = await make_order(dentist)
    first = await InvoiceGenerator.create_invoice(db_session, order.id)

    with pytest.raises(DuplicateInvoice) as exc_info:
        await InvoiceGenerator.create_invoice(db_session, order.id)

    assert exc_info.value.details["invoice_id"] == first.id
    assert await count_invoices(db_session) == 1
    assert len(await LedgerService.entries_for_client(db_session, dentist.id)) == 1


@pytest.mark.asyncio
async def test_manual_invoice(db_session, dentist, assert_ledger_consistent):
    invoice = await InvoiceGenerator.create_manual_invoice(db_session, dentist.id, Decimal("500"), currency="usd")

    assert invoice.work_order_id is None
    assert invoice.amount == Decimal("500.00")
    assert invoice.currency == "USD"
    assert await assert_ledger_consistent(dentist.id) == Decimal("500.00")


@pytest.mark.asyncio
async def test_manual_invoice_validation(db_session, dentist):
    with pytest.raises(InvalidAmount):
        await InvoiceGenerator.create_manual_invoice(db_session, dentist.id, Decimal("0"))
    with pytest.raises(ClientNotFound):
        await InvoiceGenerator.create_manual_invoice(db_session, 999, Decimal("10"))
    assert await count_invoices(db_session) == 0


@pytest.mark.asyncio
async def test_delivery_creates_invoice_once(db_session, dentist, admin_user, make_order):
    order = await make_order(dentist, status=WorkOrderStatus.IN_PROGRESS, work_type=WorkType.PROVISORIO)
    actor = {"user_id": admin_user.id, "sub": admin_user.username}

    delivered, invoice = await mark_order_delivered(db_session, order.id, actor=actor)
    again, same_invoice = await mark_order_delivered(db_session, order.id, actor=actor)

    assert delivered.status == WorkOrderStatus.DELIVERED
    assert delivered.delivered_at is not None
    assert invoice.amount == Decimal("1780.00")
    assert same_invoice.id == invoice.id
    assert await count_invoices(db_session) == 1

    result = await db_session.execute(
        select(AuditLog.action).where(AuditLog.client_id == dentist.id).order_by(AuditLog.id)
    )
    actions = list(result.scalars().all())
    assert actions == [AuditAction.WORK_ORDER_DELIVERED, AuditAction.INVOICE_CREATED]


@pytest.mark.asyncio
async def test_ensure_invoice_is_idempotent(db_session, dentist, make_order):
    order = await make_order(dentist, status=WorkOrderStatus.DELIVERED)

    first = await InvoiceGenerator.ensure_invoice_for_delivered_order(db_session, order.id)
    second = await InvoiceGenerator.ensure_invoice_for_delivered_order(db_session, order.id)

    assert first.id == second.id


def test_pricing_resolver_custom_table():
    order = WorkOrder(code="OT-X", work_type=WorkType.GANCHO_LABRADO, price=None)

    assert PricingResolver.resolve_order_amount(order) == Decimal("1500.00")
    assert PricingResolver.resolve_order_amount(order, table={"gancho_labrado": "10"}) == Decimal("10.00")
    assert PricingResolver.resolve_order_amount(order, table={}) == Decimal("0.00")
    assert PricingResolver.price_for_work_type("corona_a_perno") == Decimal("3200.00")
    assert PricingResolver.price_for_work_type(None) == Decimal("0.00")
