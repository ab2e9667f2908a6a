"""
Financial Transaction database model.

Payments, refunds and settlement payouts. Posting turns these into ledger entries.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from freight_ledger.app.db.session import Base
from freight_ledger.app.models.finance_enums import TransactionType, TransactionStatus


class FinancialTransaction(Base):
    __tablename__ = "financial_transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    transaction_type = Column(Enum(TransactionType), default=TransactionType.PAYMENT, nullable=False, index=True)
    status = Column(Enum(TransactionStatus), default=TransactionStatus.COMPLETED, nullable=False)

    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    payment_method = Column(String(30), nullable=False, default="cash")
    reference = Column(String(100), nullable=True, index=True)

    # Linkage
    shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=True, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=True, index=True)
    parent_transaction_id = Column(Integer, ForeignKey('financial_transactions.id'), nullable=True, index=True)
    merchant_settlement_id = Column(Integer, ForeignKey('merchant_settlements.id'), nullable=True, index=True)
    processed_by = Column(Integer, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<FinancialTransaction(id={self.id}, type='{self.transaction_type.value}', amount={self.amount})>"
