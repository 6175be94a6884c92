"""
Ledger Entry database model.

Per-client account movements with a stored running balance.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Index
from dentallab.app.db.session import Base


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Append-only record of a debit (invoice) or credit (payment) against a
    client's account. For one client ordered by (created_at, id):

        running_balance[0] = debit[0] - credit[0]
        running_balance[i] = running_balance[i-1] + debit[i] - credit[i]

    running_balance is only rewritten by LedgerService.recompute_balances.
    Credits point back at their origin through payment_id (one credit per
    payment) or allocation_id (one credit per payment call).
    """
    __tablename__ = "account_entries"
    __table_args__ = (
        Index("ix_account_entries_client_created", "client_id", "created_at", "id"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    client_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Origin links
    invoice_id = Column(Integer, ForeignKey('invoices.id'), nullable=True, index=True)
    payment_id = Column(Integer, ForeignKey('payments.id'), nullable=True, index=True)
    allocation_id = Column(String(36), nullable=True, index=True)

    # Financials
    debit = Column(Numeric(12, 2), nullable=False, default=0)
    credit = Column(Numeric(12, 2), nullable=False, default=0)
    running_balance = Column(Numeric(14, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return (
            f"<LedgerEntry(id={self.id}, client_id={self.client_id}, debit={self.debit}, "
            f"credit={self.credit}, running_balance={self.running_balance})>"
        )
