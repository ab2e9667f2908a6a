"""
Customer database model (credit-relevant subset).
"""

from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum
from sqlalchemy.sql import func
from freight_ledger.app.db.session import Base
from freight_ledger.app.models.finance_enums import CustomerStatus


class Customer(Base):
    """
    Customer model.

    Merchants are customers too: merchant settlements are keyed by customer id.
    current_balance is a counter. It is only ever changed through
    the credit policy's increment/decrement helpers, never assigned.
    """
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    email = Column(String(255), nullable=True)

    # Credit (0 = unlimited)
    credit_limit = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    current_balance = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    payment_terms = Column(String(20), nullable=False, default="cod")  # cod | net-N | prepaid

    status = Column(Enum(CustomerStatus), default=CustomerStatus.ACTIVE, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def is_cod_terms(self) -> bool:
        return (self.payment_terms or "").lower() == "cod"

    def __repr__(self):
        return f"<Customer(id={self.id}, terms='{self.payment_terms}', balance={self.current_balance})>"
