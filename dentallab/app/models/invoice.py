"""
Invoice database model.

One invoice per billed work order (or per manual charge).
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from dentallab.app.db.session import Base
from dentallab.app.models.billing_enums import InvoiceStatus


class Invoice(Base):
    """
    Invoice model.

    At most one invoice per work order. The lookup is enforced under the
    client ledger lock rather than by a storage constraint.
    Status is PAID iff the sum of its payments covers the amount.
    """
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Billed-to party
    client_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    work_order_id = Column(Integer, ForeignKey('work_orders.id'), nullable=True, index=True)

    # Financials
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="ARS")

    status = Column(Enum(InvoiceStatus), default=InvoiceStatus.PENDING, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Invoice(id={self.id}, client_id={self.client_id}, amount={self.amount}, status='{self.status.value}')>"
