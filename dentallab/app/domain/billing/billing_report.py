"""
Billing Report (Domain Logic).

Lists finished work orders that have not been invoiced yet, for the
admin CSV export.
"""

import csv
from dataclasses import dataclass
from io import StringIO
from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dentallab.app.domain.billing.pricing_resolver import PricingResolver
from dentallab.app.models.invoice import Invoice
from dentallab.app.models.user import User
from dentallab.app.models.work_order import WorkOrder
from dentallab.app.models.work_order_enums import BILLABLE_ORDER_STATUSES

EXPORT_COLUMNS = ["id", "code", "amount", "status", "debtor"]
UNASSIGNED_DEBTOR = "Sin asignar"


@dataclass
class BillableOrderRow:
    id: int
    code: str
    amount: str
    status: str
    debtor: str


async def get_billable_orders(db: AsyncSession) -> List[BillableOrderRow]:
    """DONE/DELIVERED orders without an invoice, most recently updated first."""
    invoiced = select(Invoice.work_order_id).where(Invoice.work_order_id.is_not(None))
    result = await db.execute(
        select(WorkOrder, User)
        .outerjoin(User, User.id == WorkOrder.dentist_id)
        .where(
            WorkOrder.status.in_(BILLABLE_ORDER_STATUSES),
            WorkOrder.id.not_in(invoiced),
        )
        .order_by(WorkOrder.updated_at.desc(), WorkOrder.id.desc())
    )

    rows = []
    for order, dentist in result.all():
        if dentist is not None:
            debtor = dentist.name or dentist.email or UNASSIGNED_DEBTOR
        else:
            debtor = UNASSIGNED_DEBTOR
        rows.append(
            BillableOrderRow(
                id=order.id,
                code=order.code,
                amount=str(PricingResolver.resolve_order_amount(order)),
                status=order.status.value,
                debtor=debtor,
            )
        )
    return rows


def render_csv(rows: Iterable[BillableOrderRow]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for row in rows:
        writer.writerow([row.id, row.code, row.amount, row.status, row.debtor])
    return buffer.getvalue()
