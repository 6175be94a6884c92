"""
Billing Schemas.

Request and response bodies for the admin billing endpoints.
Money travels as decimal strings to avoid float rounding.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from dentallab.app.models.billing_enums import InvoiceStatus, PaymentStatus, StatementEntryKind
from dentallab.app.models.work_order_enums import WorkOrderStatus


class InvoiceCreate(BaseModel):
    """Schema for invoicing a finished work order."""
    order_id: int = Field(..., gt=0)


class ManualInvoiceCreate(BaseModel):
    """Schema for an admin charge not tied to a work order."""
    client_id: int = Field(..., gt=0)
    amount: Decimal
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class InvoiceAmountUpdate(BaseModel):
    """Schema for correcting an invoice amount."""
    amount: Decimal
    allow_below_paid: bool = False


class PaymentCreate(BaseModel):
    """Schema for recording a client payment."""
    client_id: int = Field(..., gt=0)
    amount: Decimal
    date: Optional[datetime] = Field(None, description="Payment date, defaults to now")
    note: Optional[str] = Field(None, max_length=200)


class InvoiceResponse(BaseModel):
    """Schema for displaying an invoice."""
    id: int
    client_id: int
    work_order_id: Optional[int]
    amount: Decimal
    currency: str
    status: InvoiceStatus
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    """Schema for displaying one payment row."""
    id: int
    invoice_id: int
    allocation_id: Optional[str]
    amount: Decimal
    status: PaymentStatus
    provider_ref: str
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentRecordResponse(BaseModel):
    """Result of a payment call: the rows it was split into."""
    client_id: int
    amount: Decimal
    payments: List[PaymentResponse]


class DeleteResponse(BaseModel):
    id: int
    deleted: bool = True


class StatementRowResponse(BaseModel):
    entry_id: int
    date: datetime
    kind: StatementEntryKind
    reference: str
    work_order_id: Optional[int]
    detail: str
    patient_name: str
    debit: Decimal
    credit: Decimal
    running_balance: Decimal
    payment_id: Optional[int] = None
    invoice_id: Optional[int] = None


class StatementTotalsResponse(BaseModel):
    invoiced: Decimal
    collected: Decimal
    balance: Decimal


class StatementClient(BaseModel):
    id: int
    name: str


class StatementResponse(BaseModel):
    """Schema for a client account statement."""
    client: StatementClient
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    rows: List[StatementRowResponse]
    totals: StatementTotalsResponse


class WorkOrderDeliveryResponse(BaseModel):
    """Delivered order plus the invoice that bills it."""
    order_id: int
    code: str
    status: WorkOrderStatus
    delivered_at: Optional[datetime]
    invoice: InvoiceResponse
