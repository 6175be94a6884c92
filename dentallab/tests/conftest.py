"""
Centralized Test Configuration.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from dentallab.app.main import app
from dentallab.app.db.session import get_db, Base
from dentallab.app.core.jwt import create_access_token
from dentallab.app.models.enums import UserRole
from dentallab.app.models.user import User
from dentallab.app.models.work_order import WorkOrder
from dentallab.app.models.work_order_enums import WorkOrderStatus, WorkType

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


class MockLock:
    """Stand-in for redis.asyncio.lock.Lock."""

    def __init__(self, redis, name, timeout=None, blocking_timeout=None):
        self.redis = redis
        self.name = name
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    async def acquire(self):
        if self.name in self.redis.held:
            return False
        self.redis.held.add(self.name)
        self.redis.acquired.append(self.name)
        return True

    async def release(self):
        self.redis.held.discard(self.name)


class MockRedis:
    def __init__(self):
        self.held = set()
        self.acquired = []
        self._closed = False

    async def ping(self):
        return not self._closed

    def lock(self, name, timeout=None, blocking_timeout=None):
        return MockLock(self, name, timeout=timeout, blocking_timeout=blocking_timeout)

    async def flushdb(self):
        self.held = set()
        self.acquired = []


@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Apply overrides once for the session."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    """Independent sessions, one per concurrent caller. Close them only after every caller is done."""
    return TestingSessionLocal


# Domain fixtures

@pytest.fixture
async def admin_user(db_session):
    user = User(email="admin@lab.test", username="admin", name="Admin", role=UserRole.ADMIN)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def dentist(db_session):
    user = User(email="perez@clinica.test", username="perez", name="Dr. Pérez", role=UserRole.DENTIST)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
def admin_token(admin_user):
    return create_access_token(
        data={"sub": admin_user.username, "user_id": admin_user.id, "role": UserRole.ADMIN.value}
    )


@pytest.fixture
def admin_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def make_order(db_session):
    """Factory for work orders: await make_order(dentist, status=..., work_type=...)."""
    counter = {"n": 0}

    async def _make(
        dentist=None,
        status=WorkOrderStatus.DONE,
        work_type=WorkType.CORONA_ZIRCONIA,
        price=None,
        patient_name="Juan Gómez",
    ):
        counter["n"] += 1
        order = WorkOrder(
            code=f"OT-{counter['n']:04d}",
            status=status,
            work_type=work_type,
            price=Decimal(price) if price is not None else None,
            dentist_id=dentist.id if dentist is not None else None,
            patient_name=patient_name,
        )
        db_session.add(order)
        await db_session.commit()
        return order

    return _make


@pytest.fixture
def assert_ledger_consistent(db_session):
    """Checks every stored running balance against a replay from zero."""
    from dentallab.app.domain.billing.ledger import LedgerService
    from dentallab.app.domain.billing.money import ZERO, to_money

    async def _check(client_id):
        entries = await LedgerService.entries_for_client(db_session, client_id)
        running = ZERO
        for entry in entries:
            running = running + to_money(entry.debit) - to_money(entry.credit)
            assert to_money(entry.running_balance) == running, entry
        return running

    return _check
