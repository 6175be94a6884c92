"""
Per-client ledger lock.

Every sequence that appends to or rewrites a client's ledger must hold the
client's lock, otherwise two writers can read the same "previous balance"
and break the running-balance chain. Different clients never contend.

Two backends:
    local   one asyncio.Lock per client id, valid within a single process
    redis   a redis.asyncio lock named ledger:client:<id>, valid across
            processes sharing the Redis instance
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from redis.exceptions import LockError

from dentallab.app.core.config import settings
from dentallab.app.core.exceptions import PersistenceError

logger = logging.getLogger("dentallab.billing")


class LocalClientLocks:
    """In-process registry of asyncio locks keyed by client id.

    Locks are held weakly so idle clients do not accumulate.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, client_id: int) -> asyncio.Lock:
        lock = self._locks.get(client_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[client_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, client_id: int) -> AsyncIterator[None]:
        lock = self.lock_for(client_id)
        async with lock:
            yield


class RedisClientLocks:
    """Distributed per-client locks on top of redis.asyncio."""

    def __init__(self, client, timeout: float, wait_timeout: float):
        self._client = client
        self._timeout = timeout
        self._wait_timeout = wait_timeout

    @staticmethod
    def key_for(client_id: int) -> str:
        return f"ledger:client:{client_id}"

    @asynccontextmanager
    async def hold(self, client_id: int) -> AsyncIterator[None]:
        lock = self._client.lock(
            self.key_for(client_id),
            timeout=self._timeout,
            blocking_timeout=self._wait_timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            logger.error("Ledger lock wait timed out", extra={"client_id": client_id})
            raise PersistenceError(
                "Could not acquire the ledger lock for this client",
                details={"client_id": client_id}
            )
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Expired while held: the sequence outlived ledger_lock_timeout
                logger.warning("Ledger lock expired before release", extra={"client_id": client_id})


_local_locks = LocalClientLocks()
_redis_locks: Optional[RedisClientLocks] = None


def get_client_locks():
    """Lock registry for the configured backend."""
    global _redis_locks
    if settings.ledger_lock_backend == "redis":
        if _redis_locks is None:
            from dentallab.app.core.redis_client import redis_client
            _redis_locks = RedisClientLocks(
                redis_client,
                timeout=settings.ledger_lock_timeout,
                wait_timeout=settings.ledger_lock_wait_timeout,
            )
        return _redis_locks
    return _local_locks


@asynccontextmanager
async def client_ledger_lock(client_id: int) -> AsyncIterator[None]:
    """Serialize ledger mutations for one client."""
    async with get_client_locks().hold(client_id):
        yield
