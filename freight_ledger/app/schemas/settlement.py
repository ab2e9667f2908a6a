"""
Settlement Schemas.

The breakdown models are the audit snapshots stored with each settlement;
they are serialized to JSON only when written to the breakdown column.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from freight_ledger.app.models.finance_enums import BranchSettlementStatus, MerchantSettlementStatus


# Audit snapshots

class ShipmentRevenueLine(BaseModel):
    shipment_id: int
    price: Decimal
    delivered_at: Optional[datetime] = None


class CodPaymentLine(BaseModel):
    transaction_id: int
    shipment_id: Optional[int] = None
    amount: Decimal
    currency: str
    converted_amount: Decimal
    rate: Decimal = Decimal("1")


class BranchSettlementBreakdown(BaseModel):
    """Everything needed to recompute a branch settlement's numbers."""
    branch_id: int
    period_start: datetime
    period_end: datetime
    currency: str
    commission_rate: Decimal

    revenue_lines: List[ShipmentRevenueLine] = []
    cod_lines: List[CodPaymentLine] = []
    expense_lines: List[dict] = []
    expenses_note: str = "No cost-tracking integration; expenses recorded as zero"

    total_revenue: Decimal
    total_cod: Decimal
    total_expenses: Decimal
    branch_commission: Decimal
    net_amount: Decimal
    amount_due_to_hq: Decimal
    amount_due_from_hq: Decimal


class MerchantItemLine(BaseModel):
    shipment_id: int
    cod_amount: Decimal
    shipping_fee: Decimal
    insurance_fee: Decimal
    deductions: Decimal
    net_amount: Decimal


class MerchantSettlementBreakdown(BaseModel):
    merchant_id: int
    branch_id: Optional[int] = None
    period_start: datetime
    period_end: datetime
    currency: str
    shipment_ids: List[int]
    items: List[MerchantItemLine]
    shipping_fees: Decimal
    cod_collected: Decimal
    deductions: Decimal
    net_payable: Decimal


# Requests

class BranchSettlementCreate(BaseModel):
    branch_id: int
    period_start: datetime
    period_end: datetime
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class MerchantSettlementCreate(BaseModel):
    merchant_id: int
    period_start: datetime
    period_end: datetime
    branch_id: Optional[int] = None


class SettlementActionRequest(BaseModel):
    """Actor performing a workflow step (approver id for approvals)."""
    actor_id: Optional[int] = None
    payment_reference: Optional[str] = Field(None, max_length=100)


class SettlementApproveRequest(BaseModel):
    approver_id: int


class SettlementPaymentRequest(BaseModel):
    payment_method: str = Field(..., min_length=1, max_length=30)
    payment_reference: str = Field(..., min_length=1, max_length=100)
    processed_by: Optional[int] = None


# Responses

class BranchSettlementResponse(BaseModel):
    id: int
    branch_id: int
    period_start: datetime
    period_end: datetime
    currency: str
    total_revenue: Decimal
    total_cod: Decimal
    total_expenses: Decimal
    branch_commission: Decimal
    net_amount: Decimal
    amount_due_to_hq: Decimal
    amount_due_from_hq: Decimal
    status: BranchSettlementStatus
    breakdown: dict

    class Config:
        from_attributes = True


class SettlementItemResponse(BaseModel):
    shipment_id: int
    shipping_fee: Decimal
    cod_amount: Decimal
    deductions: Decimal
    net_amount: Decimal

    class Config:
        from_attributes = True


class MerchantSettlementResponse(BaseModel):
    id: int
    settlement_number: str
    merchant_id: int
    branch_id: Optional[int]
    period_start: datetime
    period_end: datetime
    currency: str
    shipment_count: int
    total_shipping_fees: Decimal
    total_cod_collected: Decimal
    total_deductions: Decimal
    net_payable: Decimal
    status: MerchantSettlementStatus
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    items: List[SettlementItemResponse] = []

    class Config:
        from_attributes = True
