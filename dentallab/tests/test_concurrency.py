"""
Concurrency Tests.

Per-client ledger locks and the unit of work around each mutation.
"""

import asyncio
import pytest
from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from dentallab.app.core.config import settings
from dentallab.app.core.exceptions import DuplicateInvoice, PersistenceError
from dentallab.app.domain.billing import ledger_lock
from dentallab.app.domain.billing.invoice_generator import InvoiceGenerator
from dentallab.app.domain.billing.invoice_mutator import total_paid
from dentallab.app.domain.billing.ledger import LedgerService
from dentallab.app.domain.billing.ledger_lock import LocalClientLocks, RedisClientLocks, client_ledger_lock
from dentallab.app.domain.billing.payment_allocator import PaymentAllocator
from dentallab.app.domain.billing.unit_of_work import ledger_transaction
from dentallab.app.models.billing_enums import InvoiceStatus
from dentallab.app.models.invoice import Invoice


@pytest.mark.asyncio
async def test_same_client_mutations_are_serialized():
    locks = LocalClientLocks()
    events = []

    async def mutation(name):
        async with locks.hold(7):
            events.append(f"{name}:start")
            await asyncio.sleep(0.01)
            events.append(f"{name}:end")

    await asyncio.gather(mutation("a"), mutation("b"))

    assert events == ["a:start", "a:end", "b:start", "b:end"]


@pytest.mark.asyncio
async def test_different_clients_run_in_parallel():
    locks = LocalClientLocks()
    inside = asyncio.Event()
    both_inside = []

    async def first():
        async with locks.hold(1):
            inside.set()
            await asyncio.sleep(0.01)

    async def second():
        await inside.wait()
        async with locks.hold(2):
            both_inside.append(locks.lock_for(1).locked())

    await asyncio.wait_for(asyncio.gather(first(), second()), timeout=1)

    assert both_inside == [True]


@pytest.mark.asyncio
async def test_redis_lock_key_and_release(redis_client_session):
    locks = RedisClientLocks(redis_client_session, timeout=5, wait_timeout=1)

    async with locks.hold(42):
        assert "ledger:client:42" in redis_client_session.held

    assert redis_client_session.held == set()
    assert redis_client_session.acquired == ["ledger:client:42"]


@pytest.mark.asyncio
async def test_redis_lock_wait_timeout(redis_client_session):
    locks = RedisClientLocks(redis_client_session, timeout=5, wait_timeout=0)
    redis_client_session.held.add("ledger:client:9")

    with pytest.raises(PersistenceError):
        async with locks.hold(9):
            pass


@pytest.mark.asyncio
async def test_lock_backend_follows_settings(redis_client_session, monkeypatch):
    monkeypatch.setattr(settings, "ledger_lock_backend", "redis")
    monkeypatch.setattr(ledger_lock, "_redis_locks", RedisClientLocks(redis_client_session, 5, 1))

    assert isinstance(ledger_lock.get_client_locks(), RedisClientLocks)

    monkeypatch.setattr(settings, "ledger_lock_backend", "local")
    assert isinstance(ledger_lock.get_client_locks(), LocalClientLocks)


@pytest.mark.asyncio
async def test_storage_failure_rolls_back_and_repairs(db_session, dentist, mocker, assert_ledger_consistent):
    client_id = dentist.id
    await InvoiceGenerator.create_manual_invoice(db_session, client_id, Decimal("100"))
    repair = mocker.spy(LedgerService, "recompute_balances")

    with pytest.raises(PersistenceError):
        async with ledger_transaction(db_session, client_id, "test_write"):
            await LedgerService.append_entry(db_session, client_id, None, Decimal("50"), Decimal("0"))
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    assert repair.call_count >= 1
    assert await assert_ledger_consistent(client_id) == Decimal("100.00")


@pytest.mark.asyncio
async def test_domain_error_inside_transaction_is_not_wrapped(db_session, dentist):
    client_id = dentist.id
    with pytest.raises(DuplicateInvoice):
        async with ledger_transaction(db_session, client_id, "test_conflict"):
            await LedgerService.append_entry(db_session, client_id, None, Decimal("10"), Decimal("0"))
            raise DuplicateInvoice(1, 2)

    assert await LedgerService.entries_for_client(db_session, client_id) == []


@pytest.mark.asyncio
async def test_payment_waits_for_client_lock(db_session, dentist, session_factory, assert_ledger_consistent):
    client_id = dentist.id
    await InvoiceGenerator.create_manual_invoice(db_session, client_id, Decimal("100"))

    async with session_factory() as other:
        async with client_ledger_lock(client_id):
            task = asyncio.create_task(PaymentAllocator.record_payment(other, client_id, Decimal("30")))
            await asyncio.sleep(0.05)
            assert not task.done()
            assert len(await LedgerService.entries_for_client(db_session, client_id)) == 1
        payments = await task

    assert [payment.amount for payment in payments] == [Decimal("30.00")]
    assert await assert_ledger_consistent(client_id) == Decimal("70.00")


@pytest.mark.asyncio
async def test_concurrent_payments_for_one_client_do_not_overpay(
    db_session, dentist, session_factory, assert_ledger_consistent
):
    client_id = dentist.id
    invoice = await InvoiceGenerator.create_manual_invoice(db_session, client_id, Decimal("100"))
    invoice_id = invoice.id

    async with session_factory() as first, session_factory() as second:
        await asyncio.gather(
            PaymentAllocator.record_payment(first, client_id, Decimal("60")),
            PaymentAllocator.record_payment(second, client_id, Decimal("60")),
        )

    assert await total_paid(db_session, invoice_id) == Decimal("100.00")
    result = await db_session.execute(
        select(Invoice).where(Invoice.id == invoice_id).execution_options(populate_existing=True)
    )
    assert result.scalar_one().status == InvoiceStatus.PAID
    assert await assert_ledger_consistent(client_id) == Decimal("-20.00")


@pytest.mark.asyncio
async def test_invoice_and_payment_racing_keep_balances_chained(
    db_session, dentist, session_factory, assert_ledger_consistent
):
    client_id = dentist.id
    await InvoiceGenerator.create_manual_invoice(db_session, client_id, Decimal("100"))

    async with session_factory() as billing, session_factory() as cashier:
        await asyncio.gather(
            InvoiceGenerator.create_manual_invoice(billing, client_id, Decimal("40")),
            PaymentAllocator.record_payment(cashier, client_id, Decimal("25")),
        )

    assert await assert_ledger_consistent(client_id) == Decimal("115.00")
