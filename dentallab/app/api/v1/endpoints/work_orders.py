"""
Admin Work Order API Endpoints.

Delivery is the hook where the order lifecycle hands finished work to billing.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from dentallab.app.db.session import get_db
from dentallab.app.models.enums import UserRole
from dentallab.app.schemas.billing import InvoiceResponse, WorkOrderDeliveryResponse
from dentallab.app.core.guards import require_role
from dentallab.app.domain.billing.invoice_generator import mark_order_delivered

router = APIRouter(prefix="/admin/work-orders", tags=["Admin - Work Orders"])


@router.post("/{order_id}/deliver", response_model=WorkOrderDeliveryResponse)
async def deliver_work_order(
    order_id: int = Path(..., description="Work order ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Mark a work order as delivered and return the invoice that bills it.

    Calling it again for an already delivered order returns the same invoice.
    """
    order, invoice = await mark_order_delivered(db, order_id, actor=current_user)
    return WorkOrderDeliveryResponse(
        order_id=order.id,
        code=order.code,
        status=order.status,
        delivered_at=order.delivered_at,
        invoice=InvoiceResponse.model_validate(invoice),
    )
