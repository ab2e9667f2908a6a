"""
Shipment database model (finance-relevant subset).
"""

from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Enum, Boolean, Text
from sqlalchemy.sql import func
from freight_ledger.app.db.session import Base
from freight_ledger.app.models.finance_enums import ShipmentStatus, PaymentType


class Shipment(Base):
    """
    Shipment model.

    Carries the revenue breakdown used for posting (base rate, weight charge,
    surcharges, insurance, tax), the COD amount, and the credit hold gate.
    While credit_hold is set the shipment may not progress through
    fulfillment until an authorized actor releases it.
    """
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tracking_number = Column(String(50), unique=True, nullable=False, index=True)

    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    origin_branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True, index=True)
    dest_branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True, index=True)

    status = Column(Enum(ShipmentStatus), default=ShipmentStatus.PENDING, nullable=False, index=True)
    payment_type = Column(Enum(PaymentType), default=PaymentType.PREPAID, nullable=False, index=True)

    # Pricing
    price = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    base_rate = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    weight_charge = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    surcharges = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    insurance_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    tax_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    shipping_cost = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    cod_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    # Credit hold gate
    credit_hold = Column(Boolean, default=False, nullable=False, index=True)
    credit_hold_reason = Column(String(255), nullable=True)
    credit_hold_placed_at = Column(DateTime(timezone=True), nullable=True)
    credit_hold_released_at = Column(DateTime(timezone=True), nullable=True)
    credit_hold_released_by = Column(Integer, nullable=True)
    credit_hold_release_notes = Column(Text, nullable=True)

    # Set once when the delivery value is added to the customer balance
    balance_applied_at = Column(DateTime(timezone=True), nullable=True)

    delivered_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Shipment(id={self.id}, tracking='{self.tracking_number}', status='{self.status.value}')>"
