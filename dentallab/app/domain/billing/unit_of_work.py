"""
Ledger unit of work.

Wraps one billing mutation (invoice + debit, payments + credit + status
flips, edit/delete + repair) in:

1. the client's ledger lock,
2. a single database transaction committed at the end,
3. a guaranteed repair on failure: rollback, then recompute the client's
   balances in a fresh transaction before the error propagates.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dentallab.app.core.exceptions import PersistenceError
from dentallab.app.core.observability import request_log_context
from dentallab.app.domain.billing.ledger import LedgerService
from dentallab.app.domain.billing.ledger_lock import client_ledger_lock

logger = logging.getLogger("dentallab.billing")

ModelT = TypeVar("ModelT")


async def reload_current(db: AsyncSession, model: Type[ModelT], pk: int) -> Optional[ModelT]:
    """
    Row as committed right now, overwriting the copy held by the session.

    Call it after the client lock is taken: anything read before the lock may
    have been changed by the mutation that held it.
    """
    result = await db.execute(
        select(model).where(model.id == pk).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def repair_client_ledger(db: AsyncSession, client_id: int, operation: str) -> bool:
    """
    Recompute a client's balances after a failed sequence.

    Returns True when the repair committed. A failed repair is logged with the
    client id so it can be re-driven; it never replaces the primary error.
    """
    try:
        await LedgerService.recompute_balances(db, client_id)
        await db.commit()
        return True
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(
            "Ledger repair failed, recompute_balances must be re-driven",
            extra={"client_id": client_id, "operation": operation, **request_log_context()}
        )
        return False


@asynccontextmanager
async def ledger_transaction(db: AsyncSession, client_id: int, operation: str) -> AsyncIterator[AsyncSession]:
    """
    Serialize and commit one ledger mutation for a client.

    Usage:
        async with ledger_transaction(db, client_id, "record_payment"):
            ... writes ...

    Raises:
        PersistenceError: if the store rejects a write or the commit
        AppException subclasses raised inside the block, unchanged
    """
    async with client_ledger_lock(client_id):
        try:
            yield db
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error(
                "Ledger write sequence failed",
                extra={"client_id": client_id, "operation": operation, "error": str(exc), **request_log_context()}
            )
            await repair_client_ledger(db, client_id, operation)
            raise PersistenceError(
                f"Storage failure during {operation}",
                details={"client_id": client_id, "operation": operation}
            ) from exc
        except Exception:
            await db.rollback()
            logger.warning(
                "Ledger write sequence aborted",
                extra={"client_id": client_id, "operation": operation, **request_log_context()}
            )
            await repair_client_ledger(db, client_id, operation)
            raise
