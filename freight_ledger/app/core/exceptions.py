"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes for the finance domain and the global
exception handlers used by the API adapter.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class PreconditionFailedError(AppException):
    """
    Base for business-rule violations.

    Always raised before any write, so the operation leaves no side effects.
    """

    def __init__(self, message: str, error_code: str = "ERR_PRECONDITION", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class SettlementOverlapError(PreconditionFailedError):
    """Raised when a settlement already covers part of the requested period."""

    def __init__(self, party: str, party_id: int, existing_id: int):
        super().__init__(
            message=f"A settlement already exists for {party} {party_id} in this period",
            error_code="ERR_SETTLEMENT_001",
            details={"party": party, "party_id": party_id, "existing_settlement_id": existing_id}
        )


class InvalidStateTransitionError(PreconditionFailedError):
    """Raised when a workflow action is not valid from the current state."""

    def __init__(self, entity: str, current: str, action: str):
        super().__init__(
            message=f"Cannot {action} {entity} in status {current}",
            error_code="ERR_STATE_001",
            details={"entity": entity, "current_status": current, "action": action}
        )


class NoEligibleShipmentsError(PreconditionFailedError):
    """Raised when a merchant settlement would contain no shipments."""

    def __init__(self, merchant_id: int):
        super().__init__(
            message="No eligible shipments found for settlement",
            error_code="ERR_SETTLEMENT_002",
            details={"merchant_id": merchant_id}
        )


class RefundExceedsOriginalError(PreconditionFailedError):
    """Raised when cumulative refunds would exceed the original payment."""

    def __init__(self, transaction_id: int, refundable: Any, requested: Any):
        super().__init__(
            message=f"Refund of {requested} exceeds refundable amount {refundable}",
            error_code="ERR_POSTING_001",
            details={
                "transaction_id": transaction_id,
                "refundable": str(refundable),
                "requested": str(requested),
            }
        )


class CodCollectionError(PreconditionFailedError):
    """Raised for COD lifecycle violations."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message=message, error_code="ERR_COD_001", details=details)


class CreditHoldError(PreconditionFailedError):
    """Raised when a credit hold action is not applicable."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message=message, error_code="ERR_CREDIT_001", details=details)


class ImmutableRecordError(AppException):
    """Raised when a POSTED entry or paid settlement would be modified."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity} {entity_id} is final and cannot be modified",
            error_code="ERR_IMMUTABLE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"entity": entity, "id": entity_id}
        )


class ExchangeRateNotFoundError(AppException):
    """Raised when no rate can be resolved for a non-identity currency pair."""

    def __init__(self, from_currency: str, to_currency: str, on_date: Any = None):
        super().__init__(
            message=f"No exchange rate available for {from_currency}->{to_currency}",
            error_code="ERR_FX_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "from": from_currency,
                "to": to_currency,
                "date": str(on_date) if on_date else None,
            }
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
