"""
Currency Schemas.
"""

from pydantic import BaseModel, Field
from datetime import date
from decimal import Decimal
from typing import Optional


class ConversionResult(BaseModel):
    original: Decimal
    converted: Decimal
    rate: Decimal
    date: date
    from_currency: str
    to_currency: str


class ConvertRequest(BaseModel):
    amount: Decimal
    from_currency: str = Field(..., min_length=3, max_length=3)
    to_currency: str = Field(..., min_length=3, max_length=3)
    on_date: Optional[date] = None


class ManualRateRequest(BaseModel):
    from_currency: str = Field(..., min_length=3, max_length=3)
    to_currency: str = Field(..., min_length=3, max_length=3)
    rate: Decimal = Field(..., gt=0)
    effective_date: Optional[date] = None
    actor_id: Optional[int] = None


class RefreshResult(BaseModel):
    base: str
    updated: int
