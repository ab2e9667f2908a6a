"""
FastAPI Application Entry Point.

Thin HTTP adapter over the Freight Ledger finance core.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from freight_ledger.app.core.config import settings
from freight_ledger.app.api.v1.router import router as api_v1_router
from freight_ledger.app.core.observability import ObservabilityMiddleware
from freight_ledger.app.core.redis_client import ping_redis
from freight_ledger.app.db.session import engine, Base
from freight_ledger.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from freight_ledger.app.models.audit_log import AuditLog
from freight_ledger.app.models.branch import Branch
from freight_ledger.app.models.customer import Customer
from freight_ledger.app.models.shipment import Shipment
from freight_ledger.app.models.settlement import BranchSettlement, MerchantSettlement, SettlementItem
from freight_ledger.app.models.financial_transaction import FinancialTransaction
from freight_ledger.app.models.ledger_entry import LedgerEntry
from freight_ledger.app.models.cod import CodCollection, CodRemittance, DriverCashAccount
from freight_ledger.app.models.exchange_rate import ExchangeRate

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Ledger posting, credit control, settlements and COD for freight operations",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    An unreachable Redis only degrades the status when the rate cache
    is redis-backed.

    Returns:
        dict: Status and application information
    """
    redis_ok = await ping_redis()
    return {
        "status": "healthy" if redis_ok or settings.rate_cache_backend != "redis" else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "ok" if redis_ok else "unavailable",
    }


app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
