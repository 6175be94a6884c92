"""
Ledger Service (Domain Logic).

Appends debit/credit rows to a client's account and replays the running
balance when history changes out of append order.

Both operations assume the caller holds the client's ledger lock and owns
the transaction (see unit_of_work.ledger_transaction).
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dentallab.app.domain.billing.money import ZERO, to_money
from dentallab.app.models.ledger_entry import LedgerEntry

logger = logging.getLogger("dentallab.billing")


class LedgerService:

    @staticmethod
    async def append_entry(
        db: AsyncSession,
        client_id: int,
        invoice_id: Optional[int],
        debit: Decimal,
        credit: Decimal,
        created_at: Optional[datetime] = None,
        payment_id: Optional[int] = None,
        allocation_id: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Append one movement to the client's ledger.

        The running balance is computed from the latest entry at or before
        created_at. A backdated entry (older than entries already stored)
        triggers a full recompute so later balances stay consistent.

        Args:
            db: Database session (caller commits)
            client_id: Billed client
            invoice_id: Originating invoice
            debit: Charge amount (>= 0)
            credit: Payment amount (>= 0)
            created_at: Entry timestamp, defaults to now
            payment_id: Originating payment for per-payment credits
            allocation_id: Payment call that produced the credit

        Returns:
            The inserted LedgerEntry
        """
        debit = to_money(debit)
        credit = to_money(credit)
        if debit < ZERO or credit < ZERO:
            raise ValueError("Ledger debit and credit must be non-negative")

        created_at = created_at or datetime.utcnow()
        await db.flush()

        previous = await db.execute(
            select(LedgerEntry.running_balance)
            .where(
                LedgerEntry.client_id == client_id,
                LedgerEntry.created_at <= created_at,
            )
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .limit(1)
        )
        previous_balance = to_money(previous.scalar_one_or_none())

        entry = LedgerEntry(
            client_id=client_id,
            invoice_id=invoice_id,
            payment_id=payment_id,
            allocation_id=allocation_id,
            debit=debit,
            credit=credit,
            running_balance=previous_balance + debit - credit,
            created_at=created_at,
        )
        db.add(entry)
        await db.flush()

        later = await db.execute(
            select(LedgerEntry.id)
            .where(
                LedgerEntry.client_id == client_id,
                LedgerEntry.created_at > created_at,
            )
            .limit(1)
        )
        if later.scalar_one_or_none() is not None:
            logger.info(
                "Backdated ledger entry, recomputing client balances",
                extra={"client_id": client_id, "entry_id": entry.id, "created_at": created_at.isoformat()}
            )
            await LedgerService.recompute_balances(db, client_id)

        logger.info(
            "Ledger entry appended",
            extra={
                "client_id": client_id,
                "entry_id": entry.id,
                "invoice_id": invoice_id,
                "payment_id": payment_id,
                "debit": str(debit),
                "credit": str(credit),
                "running_balance": str(entry.running_balance),
            }
        )
        return entry

    @staticmethod
    async def recompute_balances(db: AsyncSession, client_id: int) -> List[LedgerEntry]:
        """
        Replay the client's ledger from zero and rewrite every running balance.

        Entries are ordered by (created_at, id) so colliding timestamps still
        replay deterministically. Only rows whose stored balance differs are
        touched; running it twice without writes in between is a no-op.

        Returns:
            The client's entries in replay order
        """
        await db.flush()
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.client_id == client_id)
            .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
            .execution_options(populate_existing=True)
        )
        entries = result.scalars().all()

        running = ZERO
        rewritten = 0
        for entry in entries:
            running = running + to_money(entry.debit) - to_money(entry.credit)
            if to_money(entry.running_balance) != running:
                entry.running_balance = running
                rewritten += 1

        await db.flush()
        logger.info(
            "Client balances recomputed",
            extra={
                "client_id": client_id,
                "entries": len(entries),
                "rewritten": rewritten,
                "balance": str(running),
            }
        )
        return list(entries)

    @staticmethod
    async def entries_for_client(db: AsyncSession, client_id: int) -> List[LedgerEntry]:
        """All ledger entries of a client in (created_at, id) order."""
        await db.flush()
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.client_id == client_id)
            .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def current_balance(db: AsyncSession, client_id: int) -> Decimal:
        """Running balance of the client's most recent entry, zero if none."""
        await db.flush()
        result = await db.execute(
            select(LedgerEntry.running_balance)
            .where(LedgerEntry.client_id == client_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .limit(1)
        )
        return to_money(result.scalar_one_or_none())
