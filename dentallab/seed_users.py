"""
Database seeding script for initial users.

Creates an ADMIN user and a demo DENTIST (billed-to client) for development.
Credentials live in the external auth service; this only seeds profiles and
prints a development token for the admin.

    python -m dentallab.seed_users
"""

import asyncio

from sqlalchemy import select

from dentallab.app.core.jwt import create_access_token
from dentallab.app.db.session import AsyncSessionLocal, engine, Base
from dentallab.app.models.enums import UserRole
from dentallab.app.models.user import User
from dentallab.app.models.audit_log import AuditLog  # noqa: F401
from dentallab.app.models.work_order import WorkOrder  # noqa: F401
from dentallab.app.models.invoice import Invoice  # noqa: F401
from dentallab.app.models.payment import Payment  # noqa: F401
from dentallab.app.models.ledger_entry import LedgerEntry  # noqa: F401


async def seed_users():
    """
    Seed initial users.

    Creates:
    - 1 ADMIN user (lab staff operating billing)
    - 1 DENTIST user (client that invoices are billed to)
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("Starting user seeding...")

        result = await db.execute(select(User).where(User.username == "admin"))
        admin_user = result.scalar_one_or_none()

        if admin_user:
            print("ADMIN user already exists, skipping seeding")
        else:
            admin_user = User(
                email="admin@dentallab.local",
                username="admin",
                name="Administración",
                role=UserRole.ADMIN,
                is_active=True,
            )
            db.add(admin_user)

            dentist = User(
                email="dentista@dentallab.local",
                username="dentista",
                name="Dra. Demo",
                role=UserRole.DENTIST,
                is_active=True,
            )
            db.add(dentist)

            await db.commit()
            print("Created ADMIN user (username: admin)")
            print("Created DENTIST user (username: dentista)")

        token = create_access_token(
            data={"sub": admin_user.username, "user_id": admin_user.id, "role": UserRole.ADMIN.value}
        )
        print(f"\nDevelopment admin token:\n{token}")


if __name__ == "__main__":
    asyncio.run(seed_users())
