"""
Exchange Rate database model.
"""

from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, Enum, Index
from sqlalchemy.sql import func
from freight_ledger.app.db.session import Base
from freight_ledger.app.models.finance_enums import RateSource


class ExchangeRate(Base):
    """
    Exchange rate observation.

    Rows are append-only. For a pair and date the most recently recorded
    row with effective_date <= date wins, which is how a manual override
    takes precedence until the next feed refresh records a newer row.
    """
    __tablename__ = "exchange_rates"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    from_currency = Column(String(3), nullable=False)
    to_currency = Column(String(3), nullable=False)
    rate = Column(Numeric(18, 8), nullable=False)
    effective_date = Column(Date, nullable=False)
    source = Column(Enum(RateSource), default=RateSource.FEED, nullable=False)

    recorded_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('ix_exchange_rates_pair_date', 'from_currency', 'to_currency', 'effective_date'),
    )

    def __repr__(self):
        return f"<ExchangeRate({self.from_currency}->{self.to_currency}={self.rate} @ {self.effective_date})>"
