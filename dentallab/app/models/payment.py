"""
Payment database model.

A payment is the share of one payment call applied to one invoice.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum
from dentallab.app.db.session import Base
from dentallab.app.models.billing_enums import PaymentStatus, PaymentProvider


class Payment(Base):
    """
    Payment model.

    Several payments may target one invoice (partial settlement).
    All rows created by the same payment call share an allocation_id.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    invoice_id = Column(Integer, ForeignKey('invoices.id'), nullable=False, index=True)
    allocation_id = Column(String(36), nullable=True, index=True)

    provider = Column(Enum(PaymentProvider), default=PaymentProvider.MANUAL, nullable=False)
    provider_ref = Column(String(200), nullable=False, default="")  # Free-text note

    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.COMPLETED, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<Payment(id={self.id}, invoice_id={self.invoice_id}, amount={self.amount})>"
