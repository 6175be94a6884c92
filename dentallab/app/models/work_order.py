"""
Work order database model.

Work orders belong to the lab's order lifecycle. Billing reads them to
invoice finished work and backfills the price once an invoice is issued.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from dentallab.app.db.session import Base
from dentallab.app.models.work_order_enums import WorkOrderStatus, WorkType


class WorkOrder(Base):
    """
    Work order model.

    The dentist is the billed-to party. Price is optional and stamped either
    by the lab at intake or by billing when the invoice is created.
    """
    __tablename__ = "work_orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False)  # Display code, e.g. "OT-0042"

    status = Column(Enum(WorkOrderStatus), default=WorkOrderStatus.CREATED, nullable=False, index=True)
    work_type = Column(Enum(WorkType), nullable=True)
    price = Column(Numeric(12, 2), nullable=True)

    # Billed-to party
    dentist_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    patient_name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<WorkOrder(id={self.id}, code='{self.code}', status='{self.status.value}')>"
