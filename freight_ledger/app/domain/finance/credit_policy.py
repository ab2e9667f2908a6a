"""
Credit Policy (Domain Logic).

Gates shipment creation on customer credit exposure, manages credit holds
and owns the only code paths that change Customer.current_balance.
Balance changes are SQL-side increments, so concurrent deliveries and
payments for the same customer never lose updates.
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from freight_ledger.app.core.exceptions import (
    CreditHoldError,
    PreconditionFailedError,
    ResourceNotFoundError,
)
from freight_ledger.app.db.session import transactional
from freight_ledger.app.domain.finance.money import ZERO, ratio, to_money
from freight_ledger.app.models.customer import Customer
from freight_ledger.app.models.finance_enums import CustomerStatus, ShipmentStatus
from freight_ledger.app.models.shipment import Shipment
from freight_ledger.app.schemas.credit import (
    CreditDecision,
    CreditDecisionType,
    CreditSummary,
    CreditThresholds,
)
from freight_ledger.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)


def _utilization_percent(utilization: Decimal) -> float:
    return float((utilization * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class CreditPolicy:
    """
    Credit gate for shipment creation.

    Thresholds default to the configured ones; pass a CreditThresholds
    to evaluate under a different policy.
    """

    def __init__(self, thresholds: Optional[CreditThresholds] = None):
        self.thresholds = thresholds or CreditThresholds.from_settings()

    def evaluate(self, customer: Customer, shipment_value) -> CreditDecision:
        """
        Pure evaluation of whether a customer may take on shipment_value.

        Order of checks:
        1. COD payment terms: always allowed (no credit exposure)
        2. Non-active status: blocked regardless of balance
        3. No limit configured (<= 0): allowed
        4. Utilization tiers: hard block, soft block, warning, allowed
        """
        limit = to_money(customer.credit_limit)
        balance = to_money(customer.current_balance)
        value = to_money(shipment_value)
        projected = balance + value
        available = max(ZERO, limit - balance)

        def decision(kind: CreditDecisionType, utilization: Decimal, reason: Optional[str] = None) -> CreditDecision:
            return CreditDecision(
                decision=kind,
                allowed=kind in (CreditDecisionType.ALLOWED, CreditDecisionType.WARNING),
                warning=kind == CreditDecisionType.WARNING,
                requires_approval=kind == CreditDecisionType.SOFT_BLOCK,
                reason=reason,
                utilization_percent=_utilization_percent(utilization),
                available_credit=available,
                credit_limit=limit,
                current_balance=balance,
                projected_balance=projected,
            )

        current_utilization = ratio(balance, limit) if limit > 0 else ZERO

        if customer.is_cod_terms:
            return decision(CreditDecisionType.ALLOWED, current_utilization, "COD customer, credit check bypassed")

        if customer.status != CustomerStatus.ACTIVE:
            return decision(
                CreditDecisionType.STATUS_BLOCK,
                current_utilization,
                f"Customer account is {customer.status.value}",
            )

        if limit <= 0:
            return decision(CreditDecisionType.ALLOWED, ZERO, "No credit limit configured")

        utilization = ratio(projected, limit)

        if utilization >= self.thresholds.hard_block:
            return decision(CreditDecisionType.HARD_BLOCK, utilization, "Credit limit exceeded")
        if utilization >= self.thresholds.soft_block:
            return decision(CreditDecisionType.SOFT_BLOCK, utilization, "Credit limit nearly reached, approval required")
        if utilization >= self.thresholds.warning:
            return decision(CreditDecisionType.WARNING, utilization, "Credit utilization is high")
        return decision(CreditDecisionType.ALLOWED, utilization)

    async def can_create_shipment(self, db: AsyncSession, customer_id: int, shipment_value) -> CreditDecision:
        customer = await db.get(Customer, customer_id)
        if not customer:
            raise ResourceNotFoundError("Customer", customer_id)
        return self.evaluate(customer, shipment_value)

    async def gate_shipment(self, db: AsyncSession, shipment_id: int, actor_id: Optional[int] = None) -> CreditDecision:
        """
        Evaluate an existing shipment and hold it when not allowed.

        The shipment's own total is already counted when it has been
        delivered, so only undelivered shipments add their value.
        """
        shipment = await db.get(Shipment, shipment_id)
        if not shipment:
            raise ResourceNotFoundError("Shipment", shipment_id)
        customer = await db.get(Customer, shipment.customer_id)
        if not customer:
            raise ResourceNotFoundError("Customer", shipment.customer_id)

        value = ZERO if shipment.balance_applied_at else to_money(shipment.total_amount)
        result = self.evaluate(customer, value)

        if not result.allowed and not shipment.credit_hold:
            await place_credit_hold(db, shipment_id, result.reason, actor_id=actor_id)

        return result


async def place_credit_hold(
    db: AsyncSession,
    shipment_id: int,
    reason: str,
    actor_id: Optional[int] = None
) -> Shipment:
    """
    Put a shipment on credit hold.

    Raises:
        CreditHoldError: If the shipment is already on hold
    """
    shipment = await db.get(Shipment, shipment_id)
    if not shipment:
        raise ResourceNotFoundError("Shipment", shipment_id)
    if shipment.credit_hold:
        raise CreditHoldError("Shipment is already on credit hold", {"shipment_id": shipment_id})

    async with transactional(db):
        shipment.credit_hold = True
        shipment.credit_hold_reason = reason
        shipment.credit_hold_placed_at = datetime.utcnow()
        shipment.credit_hold_released_at = None
        shipment.credit_hold_released_by = None
        shipment.credit_hold_release_notes = None

        await log_event(
            db,
            action=AuditAction.CREDIT_HOLD_PLACED,
            actor_id=actor_id,
            entity_type="shipment",
            entity_id=shipment_id,
            metadata={"reason": reason}
        )

    logger.info("Credit hold placed", extra={"shipment_id": shipment_id, "reason": reason})
    return shipment


async def release_credit_hold(
    db: AsyncSession,
    shipment_id: int,
    released_by: int,
    notes: Optional[str] = None
) -> Shipment:
    """
    Release a credit hold. Requires the identity of the authorizing actor.

    Raises:
        CreditHoldError: If no actor is given or the shipment is not on hold
    """
    if released_by is None:
        raise CreditHoldError("Releasing a credit hold requires an authorizing actor")

    shipment = await db.get(Shipment, shipment_id)
    if not shipment:
        raise ResourceNotFoundError("Shipment", shipment_id)
    if not shipment.credit_hold:
        raise CreditHoldError("Shipment is not on credit hold", {"shipment_id": shipment_id})

    async with transactional(db):
        shipment.credit_hold = False
        shipment.credit_hold_released_at = datetime.utcnow()
        shipment.credit_hold_released_by = released_by
        shipment.credit_hold_release_notes = notes

        await log_event(
            db,
            action=AuditAction.CREDIT_HOLD_RELEASED,
            actor_id=released_by,
            entity_type="shipment",
            entity_id=shipment_id,
            metadata={"previous_reason": shipment.credit_hold_reason, "notes": notes}
        )

    logger.info("Credit hold released", extra={"shipment_id": shipment_id, "released_by": released_by})
    return shipment


async def _adjust_balance(db: AsyncSession, customer_id: int, delta: Decimal):
    await db.execute(
        update(Customer)
        .where(Customer.id == customer_id)
        .values(current_balance=Customer.current_balance + delta)
        .execution_options(synchronize_session=False)
    )


async def update_balance_on_delivery(db: AsyncSession, shipment_id: int) -> bool:
    """
    Add a delivered shipment's total to its customer's balance.

    COD customers are skipped. The shipment's balance_applied_at marker is
    claimed with a conditional update, so re-delivery events and concurrent
    callers apply the value at most once.

    Returns:
        True if the balance changed
    """
    shipment = await db.get(Shipment, shipment_id)
    if not shipment:
        raise ResourceNotFoundError("Shipment", shipment_id)
    if shipment.status != ShipmentStatus.DELIVERED:
        raise PreconditionFailedError(f"Shipment {shipment_id} is not delivered")

    customer = await db.get(Customer, shipment.customer_id)
    if not customer:
        raise ResourceNotFoundError("Customer", shipment.customer_id)
    if customer.is_cod_terms:
        return False

    value = to_money(shipment.total_amount)
    now = datetime.utcnow()

    async with transactional(db):
        claimed = await db.execute(
            update(Shipment)
            .where(Shipment.id == shipment_id, Shipment.balance_applied_at.is_(None))
            .values(balance_applied_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            logger.info("Delivery balance already applied", extra={"shipment_id": shipment_id})
            return False

        await _adjust_balance(db, customer.id, value)

    await db.refresh(shipment)
    await db.refresh(customer)
    logger.info(
        "Customer balance increased on delivery",
        extra={"customer_id": customer.id, "shipment_id": shipment_id, "amount": str(value)},
    )
    return True


async def update_balance_on_payment(db: AsyncSession, customer_id: int, amount) -> Customer:
    """Decrease a customer's balance by a received payment."""
    amount = to_money(amount)
    if amount <= 0:
        raise PreconditionFailedError("Payment amount must be positive")

    customer = await db.get(Customer, customer_id)
    if not customer:
        raise ResourceNotFoundError("Customer", customer_id)

    async with transactional(db):
        await _adjust_balance(db, customer_id, -amount)

    await db.refresh(customer)
    logger.info(
        "Customer balance decreased on payment",
        extra={"customer_id": customer_id, "amount": str(amount)},
    )
    return customer


async def get_credit_summary(db: AsyncSession, customer_id: int) -> CreditSummary:
    customer = await db.get(Customer, customer_id)
    if not customer:
        raise ResourceNotFoundError("Customer", customer_id)

    on_hold = await db.execute(
        select(func.count(Shipment.id)).where(
            Shipment.customer_id == customer_id,
            Shipment.credit_hold == True
        )
    )

    limit = to_money(customer.credit_limit)
    balance = to_money(customer.current_balance)
    return CreditSummary(
        customer_id=customer.id,
        payment_terms=customer.payment_terms,
        status=customer.status.value,
        credit_limit=limit,
        current_balance=balance,
        available_credit=max(ZERO, limit - balance),
        utilization_percent=_utilization_percent(ratio(balance, limit)) if limit > 0 else 0.0,
        shipments_on_hold=on_hold.scalar() or 0,
    )
