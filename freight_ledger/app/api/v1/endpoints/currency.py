"""
Currency API Endpoints.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from freight_ledger.app.db.session import get_db
from freight_ledger.app.api.v1.deps import get_currency_converter
from freight_ledger.app.domain.finance.currency import CurrencyConverter
from freight_ledger.app.schemas.currency import (
    ConversionResult,
    ConvertRequest,
    ManualRateRequest,
    RefreshResult,
)
from freight_ledger.app.core.config import settings

router = APIRouter(prefix="/finance/currency", tags=["Finance - Currency"])


@router.post("/convert", response_model=ConversionResult)
async def convert(
    request: ConvertRequest,
    converter: CurrencyConverter = Depends(get_currency_converter),
    db: AsyncSession = Depends(get_db)
):
    """Convert an amount. 422 if no rate is known for the pair."""
    return await converter.convert(
        db, request.amount, request.from_currency, request.to_currency, request.on_date
    )


@router.post("/rates", status_code=status.HTTP_201_CREATED)
async def set_manual_rate(
    request: ManualRateRequest,
    converter: CurrencyConverter = Depends(get_currency_converter),
    db: AsyncSession = Depends(get_db)
):
    row = await converter.set_manual_rate(
        db,
        request.from_currency,
        request.to_currency,
        request.rate,
        effective_date=request.effective_date,
        actor_id=request.actor_id,
    )
    return {
        "id": row.id,
        "from_currency": row.from_currency,
        "to_currency": row.to_currency,
        "rate": str(row.rate),
        "effective_date": row.effective_date,
        "source": row.source.value,
    }


@router.post("/refresh", response_model=RefreshResult)
async def refresh_rates(
    base: Optional[str] = Query(None, min_length=3, max_length=3),
    converter: CurrencyConverter = Depends(get_currency_converter),
    db: AsyncSession = Depends(get_db)
):
    """Best effort: a failing feed reports 0 updates, never an error."""
    base = (base or settings.default_currency).upper()
    return RefreshResult(base=base, updated=await converter.refresh_rates(db, base))
