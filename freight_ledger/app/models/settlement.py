"""
Settlement database models.

Branch settlements (branch <-> HQ) and merchant settlements (COD payouts),
both driven through an approval workflow before payment.
"""

from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from freight_ledger.app.db.session import Base
from freight_ledger.app.models.finance_enums import BranchSettlementStatus, MerchantSettlementStatus


class BranchSettlement(Base):
    """
    Branch Settlement model.

    No two non-cancelled settlements for the same branch may overlap
    in [period_start, period_end]. breakdown holds a snapshot sufficient
    to reconstruct every total without re-querying shipments.
    """
    __tablename__ = "branch_settlements"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    branch_id = Column(Integer, ForeignKey('branches.id'), nullable=False, index=True)

    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    # Financials
    total_revenue = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_cod = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_expenses = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    branch_commission = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    net_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    amount_due_to_hq = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    amount_due_from_hq = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    breakdown = Column(JSON, nullable=False)

    status = Column(Enum(BranchSettlementStatus), default=BranchSettlementStatus.DRAFT, nullable=False, index=True)

    # Workflow
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_reference = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<BranchSettlement(id={self.id}, branch_id={self.branch_id}, status='{self.status.value}')>"


class MerchantSettlement(Base):
    """
    Merchant Settlement model.

    Pays out collected COD minus shipping fees for a merchant's delivered
    COD shipments. Workflow: draft -> pending_approval -> approved -> paid.
    """
    __tablename__ = "merchant_settlements"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    settlement_number = Column(String(50), unique=True, nullable=False, index=True)

    merchant_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True, index=True)

    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    # Financials
    shipment_count = Column(Integer, nullable=False, default=0)
    total_shipping_fees = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_cod_collected = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_deductions = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    net_payable = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    breakdown = Column(JSON, nullable=False)

    status = Column(Enum(MerchantSettlementStatus), default=MerchantSettlementStatus.DRAFT, nullable=False, index=True)

    # Workflow
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    payment_method = Column(String(30), nullable=True)
    payment_reference = Column(String(100), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    items = relationship("SettlementItem", back_populates="settlement", lazy="selectin", order_by="SettlementItem.id")

    def __repr__(self):
        return f"<MerchantSettlement(id={self.id}, number='{self.settlement_number}', status='{self.status.value}')>"


class SettlementItem(Base):
    """
    One shipment inside a merchant settlement.

    shipment_id is unique: a shipment settles at most once, ever.
    """
    __tablename__ = "settlement_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    settlement_id = Column(Integer, ForeignKey('merchant_settlements.id'), nullable=False, index=True)
    shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=False, unique=True, index=True)

    shipping_fee = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    cod_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    insurance_fee = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    deductions = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    net_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    settlement = relationship("MerchantSettlement", back_populates="items")

    def __repr__(self):
        return f"<SettlementItem(settlement_id={self.settlement_id}, shipment_id={self.shipment_id}, net={self.net_amount})>"
