"""
FastAPI Application Entry Point.

This is the main application file for the Dental Lab billing backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from dentallab.app.core.config import settings
from dentallab.app.api.v1.router import router as api_v1_router
from dentallab.app.core.observability import ObservabilityMiddleware
from dentallab.app.core.redis_client import ping_redis
from dentallab.app.db.session import engine, Base
from dentallab.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from dentallab.app.models.user import User  # noqa: F401
from dentallab.app.models.audit_log import AuditLog  # noqa: F401
from dentallab.app.models.work_order import WorkOrder  # noqa: F401
from dentallab.app.models.invoice import Invoice  # noqa: F401
from dentallab.app.models.payment import Payment  # noqa: F401
from dentallab.app.models.ledger_entry import LedgerEntry  # noqa: F401

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Invoicing, payments and account ledger for the dental lab",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Redis is only reported when it backs the ledger locks.
    """
    payload = {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "ledger_lock_backend": settings.ledger_lock_backend,
    }
    if settings.ledger_lock_backend == "redis":
        redis_ok = await ping_redis()
        payload["redis"] = "ok" if redis_ok else "unavailable"
        if not redis_ok:
            payload["status"] = "degraded"
    return payload


app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
