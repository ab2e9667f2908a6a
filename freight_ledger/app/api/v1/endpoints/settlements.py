"""
Settlement API Endpoints.

Branch (branch <-> HQ) and merchant (COD payout) settlement generation
and approval workflows.
"""

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from freight_ledger.app.db.session import get_db
from freight_ledger.app.api.v1.deps import get_currency_converter
from freight_ledger.app.core.exceptions import PreconditionFailedError
from freight_ledger.app.domain.finance.branch_settlement import BranchSettlementService
from freight_ledger.app.domain.finance.currency import CurrencyConverter
from freight_ledger.app.domain.finance.merchant_settlement import MerchantSettlementService
from freight_ledger.app.domain.finance.workflow import SettlementAction
from freight_ledger.app.schemas.settlement import (
    BranchSettlementCreate,
    BranchSettlementResponse,
    MerchantSettlementCreate,
    MerchantSettlementResponse,
    SettlementActionRequest,
    SettlementApproveRequest,
    SettlementPaymentRequest,
)

branch_router = APIRouter(prefix="/finance/branch-settlements", tags=["Finance - Branch Settlements"])
merchant_router = APIRouter(prefix="/finance/merchant-settlements", tags=["Finance - Merchant Settlements"])


# Branch settlements

@branch_router.post("", response_model=BranchSettlementResponse, status_code=status.HTTP_201_CREATED)
async def create_branch_settlement(
    request: BranchSettlementCreate,
    converter: CurrencyConverter = Depends(get_currency_converter),
    db: AsyncSession = Depends(get_db)
):
    """
    Generate a draft settlement for a branch and period.

    Fails with 409 if a non-cancelled settlement already covers part of the period.
    """
    return await BranchSettlementService.generate_settlement(
        db,
        request.branch_id,
        request.period_start,
        request.period_end,
        currency=request.currency,
        converter=converter,
    )


@branch_router.get("", response_model=List[BranchSettlementResponse])
async def branch_settlement_history(
    branch_id: int = Query(..., gt=0),
    months: int = Query(12, ge=1, le=120),
    db: AsyncSession = Depends(get_db)
):
    return await BranchSettlementService.get_branch_settlement_history(db, branch_id, months)


@branch_router.post("/{settlement_id}/{action}", response_model=BranchSettlementResponse)
async def branch_settlement_action(
    action: SettlementAction,
    request: SettlementActionRequest,
    settlement_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    """Apply a workflow action: submit, approve, pay or cancel."""
    if action == SettlementAction.SUBMIT:
        return await BranchSettlementService.submit(db, settlement_id, request.actor_id)
    if action == SettlementAction.APPROVE:
        if request.actor_id is None:
            raise PreconditionFailedError("Approval requires actor_id of the approver")
        return await BranchSettlementService.approve(db, settlement_id, request.actor_id)
    if action == SettlementAction.PAY:
        return await BranchSettlementService.mark_paid(
            db, settlement_id, request.payment_reference, actor_id=request.actor_id
        )
    return await BranchSettlementService.cancel(db, settlement_id, request.actor_id)


# Merchant settlements

@merchant_router.post("", response_model=MerchantSettlementResponse, status_code=status.HTTP_201_CREATED)
async def create_merchant_settlement(
    request: MerchantSettlementCreate,
    db: AsyncSession = Depends(get_db)
):
    return await MerchantSettlementService.generate_settlement(
        db, request.merchant_id, request.period_start, request.period_end, branch_id=request.branch_id
    )


@merchant_router.get("/pending", response_model=List[MerchantSettlementResponse])
async def pending_merchant_settlements(
    branch_id: Optional[int] = Query(None, gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await MerchantSettlementService.get_pending_settlements(db, branch_id)


@merchant_router.get("/merchants/{merchant_id}/balance")
async def merchant_balance(
    merchant_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await MerchantSettlementService.get_merchant_balance(db, merchant_id)


@merchant_router.get("/{settlement_id}", response_model=MerchantSettlementResponse)
async def get_merchant_settlement(
    settlement_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await MerchantSettlementService.get_settlement(db, settlement_id)


@merchant_router.post("/{settlement_id}/submit", response_model=MerchantSettlementResponse)
async def submit_merchant_settlement(
    request: SettlementActionRequest,
    settlement_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await MerchantSettlementService.submit_for_approval(db, settlement_id, request.actor_id)


@merchant_router.post("/{settlement_id}/approve", response_model=MerchantSettlementResponse)
async def approve_merchant_settlement(
    request: SettlementApproveRequest,
    settlement_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await MerchantSettlementService.approve_settlement(db, settlement_id, request.approver_id)


@merchant_router.post("/{settlement_id}/pay", response_model=MerchantSettlementResponse)
async def pay_merchant_settlement(
    request: SettlementPaymentRequest,
    settlement_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    """Pay an approved settlement. Records a settlement_payout transaction."""
    return await MerchantSettlementService.process_payment(
        db, settlement_id, request.payment_method, request.payment_reference, request.processed_by
    )


@merchant_router.get("/{settlement_id}/statement")
async def merchant_settlement_statement(
    settlement_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    return await MerchantSettlementService.generate_statement(db, settlement_id)
