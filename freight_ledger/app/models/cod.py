"""
COD database models.

Per-shipment collections, driver cash accounts and remittance batches.
"""

from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Enum, Text
from sqlalchemy.sql import func
from freight_ledger.app.db.session import Base
from freight_ledger.app.models.finance_enums import CodCollectionStatus


class CodCollection(Base):
    """
    COD Collection model.

    One row per COD shipment. Status moves strictly
    pending -> collected -> verified -> remitted (verified may be skipped
    only on the way to remitted).
    """
    __tablename__ = "cod_collections"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=False, unique=True, index=True)
    branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True, index=True)

    expected_amount = Column(Numeric(14, 2), nullable=False)
    collected_amount = Column(Numeric(14, 2), nullable=True)
    collected_by = Column(Integer, nullable=True, index=True)  # driver / agent id
    collection_method = Column(String(30), nullable=True)

    status = Column(Enum(CodCollectionStatus), default=CodCollectionStatus.PENDING, nullable=False, index=True)

    verified_by = Column(Integer, nullable=True)
    remittance_id = Column(Integer, ForeignKey('cod_remittances.id'), nullable=True, index=True)

    collected_at = Column(DateTime(timezone=True), nullable=True, index=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    remitted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def discrepancy(self):
        if self.expected_amount is None or self.collected_amount is None:
            return None
        return abs(Decimal(self.expected_amount) - Decimal(self.collected_amount))

    def __repr__(self):
        return f"<CodCollection(id={self.id}, shipment_id={self.shipment_id}, status='{self.status.value}')>"


class DriverCashAccount(Base):
    """
    Driver cash account.

    balance is cash collected but not yet remitted. Only the COD ledger
    touches it, and only through SQL-side increments/decrements.
    """
    __tablename__ = "driver_cash_accounts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    driver_id = Column(Integer, nullable=False, unique=True, index=True)

    balance = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    pending_remittance = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    last_remittance_at = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<DriverCashAccount(driver_id={self.driver_id}, balance={self.balance})>"


class CodRemittance(Base):
    """A batch of collections handed over by one driver."""
    __tablename__ = "cod_remittances"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    driver_id = Column(Integer, nullable=False, index=True)
    reference = Column(String(100), nullable=True, index=True)

    # Caller-declared total (audit only) next to the computed sum
    declared_amount = Column(Numeric(14, 2), nullable=True)
    remitted_amount = Column(Numeric(14, 2), nullable=False)
    collection_count = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    remitted_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<CodRemittance(id={self.id}, driver_id={self.driver_id}, amount={self.remitted_amount})>"
