"""
COD Schemas.
"""

from pydantic import BaseModel
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict

from freight_ledger.app.models.finance_enums import CodCollectionStatus


class CodDiscrepancy(BaseModel):
    collection_id: int
    shipment_id: int
    collected_by: Optional[int]
    status: str
    expected_amount: Decimal
    collected_amount: Decimal
    discrepancy: Decimal
    collected_at: Optional[datetime]


class CollectorTotal(BaseModel):
    collector_id: Optional[int]
    collections: int
    total_amount: Decimal


class MethodTotal(BaseModel):
    method: Optional[str]
    count: int
    total_amount: Decimal


class CodSummary(BaseModel):
    period_start: datetime
    period_end: datetime
    branch_id: Optional[int] = None
    total_collections: int
    total_expected: Decimal
    total_collected: Decimal
    total_remitted: Decimal
    outstanding_cod: Decimal
    collection_rate: float
    status_counts: Dict[str, int]
    by_collector: List[CollectorTotal]
    by_method: List[MethodTotal]


class DailyCollection(BaseModel):
    date: date
    count: int
    amount: Decimal


class DriverCodPerformance(BaseModel):
    driver_id: int
    period_start: datetime
    period_end: datetime
    total_collections: int
    total_expected: Decimal
    total_collected: Decimal
    average_collection: Decimal
    remitted_amount: Decimal
    unremitted_amount: Decimal
    discrepancy_count: int
    collection_rate: float
    account_balance: Decimal
    daily_breakdown: List[DailyCollection]


class CodAgingReport(BaseModel):
    as_of: datetime
    total_outstanding_cod: Decimal
    aging_breakdown: Dict[str, Decimal]
    aging_percentage: Dict[str, float]


class DriverRemittanceTotal(BaseModel):
    driver_id: int
    remittance_count: int
    total_remitted: Decimal


class DailyRemittance(BaseModel):
    date: date
    count: int
    amount: Decimal


class CodRemittanceSummary(BaseModel):
    period_start: datetime
    period_end: datetime
    driver_id: Optional[int] = None
    total_remittances: int
    total_remitted: Decimal
    average_remittance: Decimal
    # Only remittances that carried a declared figure
    total_declared: Decimal
    declared_variance: Decimal
    by_driver: List[DriverRemittanceTotal]
    daily_breakdown: List[DailyRemittance]


class ReconciliationIssue(BaseModel):
    type: str
    shipment_id: int
    tracking_number: str
    expected: Decimal
    collected: Decimal
    difference: Decimal


class CodReconciliationReport(BaseModel):
    period_start: datetime
    period_end: datetime
    total_cod_shipments: int
    total_cod_value: Decimal
    collected_amount: Decimal
    remitted_amount: Decimal
    outstanding_collection: Decimal
    outstanding_remittance: Decimal
    collection_rate: float
    remittance_rate: float
    discrepancies: List[ReconciliationIssue]


class CodCollectionRequest(BaseModel):
    driver_id: int
    amount: Decimal
    method: str = "cash"


class CodRemittanceRequest(BaseModel):
    driver_id: int
    collection_ids: List[int]
    total_amount: Optional[Decimal] = None
    reference: Optional[str] = None


class CodVerifyRequest(BaseModel):
    verifier_id: int


class CodCollectionResponse(BaseModel):
    id: int
    shipment_id: int
    expected_amount: Decimal
    collected_amount: Optional[Decimal] = None
    collected_by: Optional[int] = None
    collection_method: Optional[str] = None
    status: CodCollectionStatus
    remittance_id: Optional[int] = None

    class Config:
        from_attributes = True


class CodRemittanceResponse(BaseModel):
    id: int
    driver_id: int
    reference: Optional[str] = None
    declared_amount: Optional[Decimal] = None
    remitted_amount: Decimal
    collection_count: int
    remitted_at: datetime

    class Config:
        from_attributes = True


class DriverAccountResponse(BaseModel):
    driver_id: int
    balance: Decimal
    pending_remittance: Decimal
    last_remittance_at: Optional[datetime] = None

    class Config:
        from_attributes = True
