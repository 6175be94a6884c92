"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from dentallab.app.api.v1.endpoints import billing, work_orders

router = APIRouter()

# Billing (invoices, payments, statements, export)
router.include_router(billing.router)

# Work order delivery hook
router.include_router(work_orders.router)
