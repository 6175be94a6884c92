"""
Audit Log Database Model.

Tracks billing changes made by admins or triggered by the order lifecycle.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from dentallab.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for billing actions.

    Events logged:
    - INVOICE_CREATED / MANUAL_INVOICE_CREATED
    - PAYMENT_RECORDED / PAYMENT_DELETED
    - INVOICE_AMOUNT_EDITED / INVOICE_DELETED
    - WORK_ORDER_DELIVERED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # Billed client whose account was touched
    client_id = Column(Integer, index=True, nullable=True)

    # Invoice / payment / order ids and amounts
    meta_data = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, client={self.client_id})>"
