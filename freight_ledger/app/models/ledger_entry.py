"""
Ledger Entry database model.

Double-entry accounting records.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from freight_ledger.app.db.session import Base
from freight_ledger.app.models.finance_enums import LedgerEntryType, LedgerEntryStatus


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Every posting writes one DEBIT and one or more CREDIT rows (or the mirror
    for refunds) sharing a reference; per reference, debits equal credits.
    Rows are never deleted. The only mutation is PENDING -> POSTED on sync.
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Account
    account_code = Column(String(10), nullable=False, index=True)
    account_name = Column(String(100), nullable=False)

    # Entry details
    entry_type = Column(Enum(LedgerEntryType), nullable=False)  # DEBIT or CREDIT
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    description = Column(String(255), nullable=True)

    # Correlation
    reference = Column(String(100), nullable=False, index=True)
    posting_date = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(Enum(LedgerEntryStatus), default=LedgerEntryStatus.PENDING, nullable=False, index=True)

    # Linkage
    transaction_id = Column(Integer, ForeignKey('financial_transactions.id'), nullable=False, index=True)
    shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    synced_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, {self.entry_type.value} {self.account_code} {self.amount})>"
