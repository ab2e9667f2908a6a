"""
Ledger Schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from freight_ledger.app.models.finance_enums import LedgerEntryType, LedgerEntryStatus


class LedgerEntryResponse(BaseModel):
    id: int
    account_code: str
    account_name: str
    entry_type: LedgerEntryType
    amount: Decimal
    currency: str
    reference: str
    posting_date: datetime
    status: LedgerEntryStatus
    transaction_id: int
    shipment_id: Optional[int] = None

    class Config:
        from_attributes = True


class PostingResult(BaseModel):
    reference: str
    balanced: bool
    total_debits: Decimal
    total_credits: Decimal
    entries: List[LedgerEntryResponse]


class RefundRequest(BaseModel):
    amount: Decimal


class SyncResult(BaseModel):
    posted: int
