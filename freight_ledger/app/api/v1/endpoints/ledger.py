"""
Ledger API Endpoints.

Posting of completed payments and refunds, and the external sync step.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from freight_ledger.app.db.session import get_db
from freight_ledger.app.core.exceptions import ResourceNotFoundError
from freight_ledger.app.domain.finance.posting_service import PostingService, totals
from freight_ledger.app.models.financial_transaction import FinancialTransaction
from freight_ledger.app.schemas.ledger import LedgerEntryResponse, PostingResult, RefundRequest, SyncResult

router = APIRouter(prefix="/finance/ledger", tags=["Finance - Ledger"])


def _result(entries) -> PostingResult:
    debits, credits = totals(entries)
    return PostingResult(
        reference=entries[0].reference,
        balanced=debits == credits,
        total_debits=debits,
        total_credits=credits,
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
    )


async def _get_transaction(db: AsyncSession, transaction_id: int) -> FinancialTransaction:
    transaction = await db.get(FinancialTransaction, transaction_id)
    if not transaction:
        raise ResourceNotFoundError("Transaction", transaction_id)
    return transaction


@router.post("/transactions/{transaction_id}/post", response_model=PostingResult)
async def post_payment(
    transaction_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    transaction = await _get_transaction(db, transaction_id)
    return _result(await PostingService.post_payment(db, transaction))


@router.post("/transactions/{transaction_id}/refund", response_model=PostingResult)
async def post_refund(
    request: RefundRequest,
    transaction_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db)
):
    """Not idempotent: each call refunds again."""
    transaction = await _get_transaction(db, transaction_id)
    return _result(await PostingService.post_refund(db, transaction, request.amount))


@router.post("/sync", response_model=SyncResult)
async def sync_ledger(db: AsyncSession = Depends(get_db)):
    """Mark all PENDING entries POSTED. Safe to repeat."""
    return SyncResult(posted=await PostingService.sync_to_external_system(db))


@router.get("/entries/{reference}", response_model=PostingResult)
async def entries_by_reference(
    reference: str,
    db: AsyncSession = Depends(get_db)
):
    entries = await PostingService.get_entries(db, reference)
    if not entries:
        raise ResourceNotFoundError("Ledger reference", reference)
    return _result(entries)
