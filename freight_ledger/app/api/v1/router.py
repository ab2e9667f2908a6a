"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from freight_ledger.app.api.v1.endpoints import credit, settlements, cod, currency, ledger

router = APIRouter()

router.include_router(credit.router)
router.include_router(settlements.branch_router)
router.include_router(settlements.merchant_router)
router.include_router(cod.router)
router.include_router(currency.router)
router.include_router(ledger.router)
