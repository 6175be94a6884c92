"""
Billing enumerations.
"""

import enum


class InvoiceStatus(str, enum.Enum):
    """Invoice status enumeration."""
    PENDING = "PENDING"  # Not yet fully covered by payments
    PAID = "PAID"  # Payments cover the amount
    CANCELLED = "CANCELLED"  # No transition in or out is defined


class PaymentStatus(str, enum.Enum):
    """Payment status enumeration."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PaymentProvider(str, enum.Enum):
    """Where a payment was captured."""
    MANUAL = "MANUAL"  # Recorded by an admin
    STRIPE = "STRIPE"


class LedgerCreditMode(str, enum.Enum):
    """How a payment call is written to the ledger."""
    SINGLE = "single"  # One credit for the whole amount
    PER_INVOICE = "per_invoice"  # One credit per invoice paid, plus surplus


class StatementEntryKind(str, enum.Enum):
    """Statement row classification."""
    FACTURA = "FACTURA"  # Invoice debit
    PAGO = "PAGO"  # Payment credit
    MOVIMIENTO = "MOVIMIENTO"  # Neither debit nor credit
