"""
Statement Tests.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from dentallab.app.core.exceptions import ClientNotFound
from dentallab.app.domain.billing.invoice_generator import InvoiceGenerator
from dentallab.app.domain.billing.ledger import LedgerService
from dentallab.app.domain.billing.payment_allocator import PaymentAllocator
from dentallab.app.domain.billing.statement_builder import StatementBuilder, format_work_type_label
from dentallab.app.models.billing_enums import LedgerCreditMode, StatementEntryKind
from dentallab.app.models.user import User
from dentallab.app.models.work_order_enums import WorkType


@pytest.mark.asyncio
async def test_statement_rows_and_totals(db_session, dentist, make_order):
    order = await make_order(dentist, work_type=WorkType.CORONA_ZIRCONIA, patient_name="Ana Ruiz")
    invoice = await InvoiceGenerator.create_invoice(db_session, order.id)
    payments = await PaymentAllocator.record_payment(db_session, dentist.id, Decimal("1000"), note="Transferencia")

    statement = await StatementBuilder.get_statement(db_session, dentist.id)

    assert statement.client.name == "Dr. Pérez"
    factura, pago = statement.rows
    assert factura.kind == StatementEntryKind.FACTURA
    assert factura.reference == order.code
    assert factura.detail == "Corona Zirconia"
    assert factura.patient_name == "Ana Ruiz"
    assert factura.work_order_id == order.id
    assert factura.invoice_id == invoice.id
    assert factura.running_balance == Decimal("2990.00")

    assert pago.kind == StatementEntryKind.PAGO
    assert pago.detail == "Transferencia"
    assert pago.payment_id == payments[0].id
    assert pago.credit == Decimal("1000.00")
    assert pago.running_balance == Decimal("1990.00")

    assert statement.totals.invoiced == Decimal("2990.00")
    assert statement.totals.collected == Decimal("1000.00")
    assert statement.totals.balance == Decimal("1990.00")


@pytest.mark.asyncio
async def test_manual_invoice_and_payment_without_note(db_session, dentist):
    invoice = await InvoiceGenerator.create_manual_invoice(db_session, dentist.id, Decimal("300"))
    await PaymentAllocator.record_payment(
        db_session, dentist.id, Decimal("300"), credit_mode=LedgerCreditMode.PER_INVOICE
    )

    statement = await StatementBuilder.get_statement(db_session, dentist.id)

    factura, pago = statement.rows
    assert factura.reference == str(invoice.id)
    assert factura.detail == "Factura emitida"
    assert factura.patient_name == "-"
    assert factura.work_order_id is None
    assert pago.detail == "Pago registrado"
    assert pago.payment_id is not None


@pytest.mark.asyncio
async def test_credit_without_matching_payment_is_not_an_error(db_session, dentist):
    invoice = await InvoiceGenerator.create_manual_invoice(db_session, dentist.id, Decimal("100"))
    await LedgerService.append_entry(db_session, dentist.id, invoice.id, Decimal("0"), Decimal("40"))
    await LedgerService.append_entry(db_session, dentist.id, None, Decimal("0"), Decimal("0"))
    await db_session.commit()

    statement = await StatementBuilder.get_statement(db_session, dentist.id)

    assert [row.kind for row in statement.rows] == [
        StatementEntryKind.FACTURA,
        StatementEntryKind.PAGO,
        StatementEntryKind.MOVIMIENTO,
    ]
    assert statement.rows[1].detail == "Pago registrado"
    assert statement.rows[1].payment_id is None
    assert statement.rows[2].detail == "Movimiento de cuenta"


@pytest.mark.asyncio
async def test_date_range_is_inclusive_by_day(db_session, dentist):
    invoice = await InvoiceGenerator.create_manual_invoice(db_session, dentist.id, Decimal("100"))
    for day, hour in [(1, 9), (2, 23), (3, 0)]:
        await LedgerService.append_entry(
            db_session, dentist.id, invoice.id, Decimal("0"), Decimal("10"),
            created_at=datetime(2024, 6, day, hour, 30)
        )
    await db_session.commit()

    statement = await StatementBuilder.get_statement(
        db_session, dentist.id, date_from=date(2024, 6, 2), date_to=date(2024, 6, 2)
    )

    assert len(statement.rows) == 1
    assert statement.rows[0].date == datetime(2024, 6, 2, 23, 30)
    assert statement.totals.collected == Decimal("10.00")


@pytest.mark.asyncio
async def test_statement_for_client_without_entries(db_session, dentist):
    statement = await StatementBuilder.get_statement(db_session, dentist.id)

    assert statement.rows == []
    assert statement.totals.balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_client_name_falls_back(db_session):
    nameless = User(username="anon", email=None, name=None)
    db_session.add(nameless)
    await db_session.commit()

    statement = await StatementBuilder.get_statement(db_session, nameless.id)

    assert statement.client.name == "Cliente"


@pytest.mark.asyncio
async def test_unknown_client(db_session):
    with pytest.raises(ClientNotFound):
        await StatementBuilder.get_statement(db_session, 999)


def test_work_type_label():
    assert format_work_type_label(WorkType.TERMINACION_1_A_5) == "Terminacion 1 A 5"
    assert format_work_type_label("corona_a_perno") == "Corona A Perno"
    assert format_work_type_label(None) == "Orden de trabajo"
