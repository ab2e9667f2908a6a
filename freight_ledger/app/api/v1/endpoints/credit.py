"""
Credit API Endpoints.

Shipment-creation credit checks and operator credit-hold actions.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from freight_ledger.app.db.session import get_db
from freight_ledger.app.api.v1.deps import get_credit_policy
from freight_ledger.app.domain.finance.credit_policy import (
    CreditPolicy,
    get_credit_summary,
    place_credit_hold,
    release_credit_hold,
)
from freight_ledger.app.schemas.credit import (
    CreditCheckRequest,
    CreditDecision,
    CreditHoldRelease,
    CreditHoldRequest,
    CreditSummary,
    ShipmentHoldResponse,
)

router = APIRouter(prefix="/finance/credit", tags=["Finance - Credit"])


@router.post("/check", response_model=CreditDecision)
async def check_credit(
    request: CreditCheckRequest,
    policy: CreditPolicy = Depends(get_credit_policy),
    db: AsyncSession = Depends(get_db)
):
    """
    Evaluate whether a customer may create a shipment of the given value.

    Read-only: nothing is held or reserved.
    """
    return await policy.can_create_shipment(db, request.customer_id, request.shipment_value)


@router.get("/customers/{customer_id}", response_model=CreditSummary)
async def credit_summary(
    customer_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await get_credit_summary(db, customer_id)


@router.post("/shipments/{shipment_id}/gate", response_model=CreditDecision)
async def gate_shipment(
    shipment_id: int = Path(..., gt=0),
    policy: CreditPolicy = Depends(get_credit_policy),
    db: AsyncSession = Depends(get_db)
):
    """Evaluate a shipment and hold it if credit does not allow it."""
    return await policy.gate_shipment(db, shipment_id)


@router.post("/shipments/{shipment_id}/hold", response_model=ShipmentHoldResponse)
async def hold_shipment(
    request: CreditHoldRequest,
    shipment_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await place_credit_hold(db, shipment_id, request.reason, actor_id=request.actor_id)


@router.post("/shipments/{shipment_id}/release", response_model=ShipmentHoldResponse)
async def release_shipment(
    request: CreditHoldRelease,
    shipment_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await release_credit_hold(db, shipment_id, request.released_by, notes=request.notes)
