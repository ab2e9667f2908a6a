"""
COD API Endpoints.

Driver collection, supervisor verification, remittance and reporting.
"""

from datetime import datetime
from decimal import Decimal
from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from freight_ledger.app.db.session import get_db
from freight_ledger.app.domain.finance import cod_ledger
from freight_ledger.app.schemas.cod import (
    CodAgingReport,
    CodCollectionRequest,
    CodCollectionResponse,
    CodDiscrepancy,
    CodReconciliationReport,
    CodRemittanceRequest,
    CodRemittanceResponse,
    CodRemittanceSummary,
    CodSummary,
    CodVerifyRequest,
    DriverAccountResponse,
    DriverCodPerformance,
)

router = APIRouter(prefix="/finance/cod", tags=["Finance - COD"])


@router.post("/shipments/{shipment_id}/collection", response_model=CodCollectionResponse, status_code=status.HTTP_201_CREATED)
async def open_collection(
    shipment_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await cod_ledger.open_collection(db, shipment_id)


@router.post("/collections/{collection_id}/collect", response_model=CodCollectionResponse)
async def record_collection(
    request: CodCollectionRequest,
    collection_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    """Not idempotent: do not blindly retry."""
    return await cod_ledger.record_collection(
        db, collection_id, request.driver_id, request.amount, method=request.method
    )


@router.post("/collections/{collection_id}/verify", response_model=CodCollectionResponse)
async def verify_collection(
    request: CodVerifyRequest,
    collection_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await cod_ledger.verify_collection(db, collection_id, request.verifier_id)


@router.post("/remittances", response_model=CodRemittanceResponse, status_code=status.HTTP_201_CREATED)
async def record_remittance(
    request: CodRemittanceRequest,
    db: AsyncSession = Depends(get_db)
):
    return await cod_ledger.record_remittance(
        db,
        request.collection_ids,
        request.driver_id,
        total_amount=request.total_amount,
        reference=request.reference,
    )


@router.get("/discrepancies", response_model=List[CodDiscrepancy])
async def list_discrepancies(
    tolerance: Optional[Decimal] = Query(None, ge=0),
    branch_id: Optional[int] = Query(None, gt=0),
    db: AsyncSession = Depends(get_db)
):
    """Collections whose collected amount differs from expected. Resolution is manual."""
    return await cod_ledger.get_discrepancies(db, tolerance=tolerance, branch_id=branch_id)


@router.get("/summary", response_model=CodSummary)
async def cod_summary(
    start: datetime,
    end: datetime,
    branch_id: Optional[int] = Query(None, gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await cod_ledger.get_cod_summary(db, start, end, branch_id)


@router.get("/aging", response_model=CodAgingReport)
async def cod_aging(
    as_of: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db)
):
    return await cod_ledger.get_aging_report(db, as_of)


@router.get("/drivers/{driver_id}/account", response_model=DriverAccountResponse)
async def driver_account(
    driver_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await cod_ledger.get_driver_account(db, driver_id)


@router.get("/drivers/{driver_id}/performance", response_model=DriverCodPerformance)
async def driver_performance(
    start: datetime,
    end: datetime,
    driver_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await cod_ledger.get_driver_cod_performance(db, driver_id, start, end)


@router.get("/remittances/summary", response_model=CodRemittanceSummary)
async def remittance_summary(
    start: datetime,
    end: datetime,
    driver_id: Optional[int] = Query(None, gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await cod_ledger.get_remittance_summary(db, start, end, driver_id)


@router.get("/reconciliation", response_model=CodReconciliationReport)
async def reconciliation_report(
    start: datetime,
    end: datetime,
    db: AsyncSession = Depends(get_db)
):
    """COD value of shipments in the period against collected and remitted cash."""
    return await cod_ledger.get_reconciliation_report(db, start, end)
