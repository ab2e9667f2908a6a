"""
Credit Policy Schemas.
"""

import enum
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from freight_ledger.app.core.config import settings


class CreditDecisionType(str, enum.Enum):
    """Ordered from least to most restrictive."""
    ALLOWED = "ALLOWED"
    WARNING = "WARNING"
    SOFT_BLOCK = "SOFT_BLOCK"
    HARD_BLOCK = "HARD_BLOCK"
    STATUS_BLOCK = "STATUS_BLOCK"


class CreditThresholds(BaseModel):
    """Utilization ratios at which the policy tightens."""
    warning: Decimal = Field(default=Decimal("0.80"), gt=0)
    soft_block: Decimal = Field(default=Decimal("0.95"), gt=0)
    hard_block: Decimal = Field(default=Decimal("1.00"), gt=0)

    @model_validator(mode="after")
    def check_order(self):
        if not (self.warning <= self.soft_block <= self.hard_block):
            raise ValueError("Thresholds must satisfy warning <= soft_block <= hard_block")
        return self

    @classmethod
    def from_settings(cls) -> "CreditThresholds":
        return cls(
            warning=Decimal(str(settings.credit_warning_threshold)),
            soft_block=Decimal(str(settings.credit_soft_block_threshold)),
            hard_block=Decimal(str(settings.credit_hard_block_threshold)),
        )


class CreditDecision(BaseModel):
    """Outcome of a shipment-creation credit check."""
    decision: CreditDecisionType
    allowed: bool
    warning: bool = False
    requires_approval: bool = False
    reason: Optional[str] = None

    utilization_percent: float
    available_credit: Decimal
    credit_limit: Decimal
    current_balance: Decimal
    projected_balance: Decimal


class CreditCheckRequest(BaseModel):
    customer_id: int
    shipment_value: Decimal = Field(..., ge=0)


class CreditHoldRelease(BaseModel):
    released_by: int
    notes: Optional[str] = Field(None, max_length=1000)


class CreditSummary(BaseModel):
    customer_id: int
    payment_terms: str
    status: str
    credit_limit: Decimal
    current_balance: Decimal
    available_credit: Decimal
    utilization_percent: float
    shipments_on_hold: int


class CreditHoldRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)
    actor_id: Optional[int] = None


class ShipmentHoldResponse(BaseModel):
    id: int
    tracking_number: str
    credit_hold: bool
    credit_hold_reason: Optional[str] = None
    credit_hold_released_by: Optional[int] = None
    credit_hold_release_notes: Optional[str] = None

    class Config:
        from_attributes = True
