"""
Branch Settlement Service (Domain Logic).

Computes what a branch owes HQ (and vice versa) for a period and drives
the settlement through draft -> submitted -> approved -> paid.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from freight_ledger.app.core.config import settings
from freight_ledger.app.core.exceptions import (
    PreconditionFailedError,
    ResourceNotFoundError,
    SettlementOverlapError,
)
from freight_ledger.app.db.session import transactional
from freight_ledger.app.domain.finance.currency import CurrencyConverter
from freight_ledger.app.domain.finance.money import ZERO, sum_money, to_money
from freight_ledger.app.domain.finance.workflow import BRANCH_TRANSITIONS, SettlementAction, next_status
from freight_ledger.app.models.branch import Branch
from freight_ledger.app.models.finance_enums import (
    BranchSettlementStatus,
    ShipmentStatus,
    TransactionStatus,
    TransactionType,
)
from freight_ledger.app.models.financial_transaction import FinancialTransaction
from freight_ledger.app.models.settlement import BranchSettlement
from freight_ledger.app.models.shipment import Shipment
from freight_ledger.app.schemas.settlement import (
    BranchSettlementBreakdown,
    CodPaymentLine,
    ShipmentRevenueLine,
)
from freight_ledger.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)

# Statuses that still claim their period; only cancellation frees it
BLOCKING_STATUSES = (
    BranchSettlementStatus.DRAFT,
    BranchSettlementStatus.SUBMITTED,
    BranchSettlementStatus.APPROVED,
    BranchSettlementStatus.PAID,
)

AUDIT_ACTIONS = {
    SettlementAction.SUBMIT: AuditAction.BRANCH_SETTLEMENT_SUBMITTED,
    SettlementAction.APPROVE: AuditAction.BRANCH_SETTLEMENT_APPROVED,
    SettlementAction.PAY: AuditAction.BRANCH_SETTLEMENT_PAID,
    SettlementAction.CANCEL: AuditAction.BRANCH_SETTLEMENT_CANCELLED,
}


class BranchSettlementService:

    @staticmethod
    async def _find_overlap(
        db: AsyncSession,
        branch_id: int,
        period_start: datetime,
        period_end: datetime
    ) -> Optional[BranchSettlement]:
        result = await db.execute(
            select(BranchSettlement).where(
                BranchSettlement.branch_id == branch_id,
                BranchSettlement.status.in_(BLOCKING_STATUSES),
                BranchSettlement.period_start <= period_end,
                BranchSettlement.period_end >= period_start,
            ).limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _revenue_lines(
        db: AsyncSession,
        branch_id: int,
        period_start: datetime,
        period_end: datetime
    ) -> List[ShipmentRevenueLine]:
        result = await db.execute(
            select(Shipment).where(
                Shipment.origin_branch_id == branch_id,
                Shipment.status == ShipmentStatus.DELIVERED,
                Shipment.delivered_at >= period_start,
                Shipment.delivered_at <= period_end,
            ).order_by(Shipment.id)
        )
        return [
            ShipmentRevenueLine(shipment_id=s.id, price=to_money(s.price), delivered_at=s.delivered_at)
            for s in result.scalars().all()
        ]

    @staticmethod
    async def _cod_lines(
        db: AsyncSession,
        branch_id: int,
        period_start: datetime,
        period_end: datetime,
        currency: str,
        converter: CurrencyConverter
    ) -> List[CodPaymentLine]:
        """
        COD payments on shipments originated at the branch, in the
        settlement currency. A missing exchange rate aborts the settlement.
        """
        result = await db.execute(
            select(FinancialTransaction)
            .join(Shipment, FinancialTransaction.shipment_id == Shipment.id)
            .where(
                Shipment.origin_branch_id == branch_id,
                FinancialTransaction.transaction_type == TransactionType.PAYMENT,
                FinancialTransaction.status == TransactionStatus.COMPLETED,
                func.lower(func.trim(FinancialTransaction.payment_method)) == "cod",
                FinancialTransaction.completed_at >= period_start,
                FinancialTransaction.completed_at <= period_end,
            )
            .order_by(FinancialTransaction.id)
        )

        lines = []
        for tx in result.scalars().all():
            amount = to_money(tx.amount)
            converted, rate = amount, Decimal("1")
            if tx.currency.upper() != currency:
                conversion = await converter.convert(db, amount, tx.currency, currency, tx.completed_at.date())
                converted, rate = conversion.converted, conversion.rate
            lines.append(CodPaymentLine(
                transaction_id=tx.id,
                shipment_id=tx.shipment_id,
                amount=amount,
                currency=tx.currency.upper(),
                converted_amount=converted,
                rate=rate,
            ))
        return lines

    @staticmethod
    async def generate_settlement(
        db: AsyncSession,
        branch_id: int,
        period_start: datetime,
        period_end: datetime,
        currency: Optional[str] = None,
        commission_rate: Optional[Decimal] = None,
        converter: Optional[CurrencyConverter] = None,
        actor_id: Optional[int] = None
    ) -> BranchSettlement:
        """
        Generate a draft settlement for a branch and period.

        Flow:
        1. Lock the branch row (serializes concurrent generators)
        2. Reject overlapping non-cancelled settlements
        3. Revenue = sum(price) of delivered shipments originated here
        4. COD = sum of completed COD payments on those shipments
        5. Expenses = 0 (no cost-tracking integration)
        6. Commission, net and HQ balances
        7. Persist with a breakdown snapshot of every input line

        Not idempotent: a retry after success fails with SettlementOverlapError.

        Raises:
            SettlementOverlapError: Period overlaps an existing settlement
            ExchangeRateNotFoundError: A COD payment cannot be converted
        """
        if period_end < period_start:
            raise PreconditionFailedError("period_end must not be before period_start")

        currency = (currency or settings.default_currency).upper()
        rate = Decimal(str(commission_rate if commission_rate is not None else settings.branch_commission_rate))
        converter = converter or CurrencyConverter()

        async with transactional(db):
            branch = (await db.execute(
                select(Branch).where(Branch.id == branch_id).with_for_update()
            )).scalar_one_or_none()
            if not branch:
                raise ResourceNotFoundError("Branch", branch_id)

            existing = await BranchSettlementService._find_overlap(db, branch_id, period_start, period_end)
            if existing:
                raise SettlementOverlapError("branch", branch_id, existing.id)

            revenue_lines = await BranchSettlementService._revenue_lines(db, branch_id, period_start, period_end)
            cod_lines = await BranchSettlementService._cod_lines(
                db, branch_id, period_start, period_end, currency, converter
            )

            total_revenue = sum_money(line.price for line in revenue_lines)
            total_cod = sum_money(line.converted_amount for line in cod_lines)
            total_expenses = ZERO
            commission = to_money(total_cod * rate)
            net_amount = total_revenue - total_expenses + commission
            due_to_hq = total_cod - commission
            due_from_hq = max(ZERO, -net_amount)

            breakdown = BranchSettlementBreakdown(
                branch_id=branch_id,
                period_start=period_start,
                period_end=period_end,
                currency=currency,
                commission_rate=rate,
                revenue_lines=revenue_lines,
                cod_lines=cod_lines,
                total_revenue=total_revenue,
                total_cod=total_cod,
                total_expenses=total_expenses,
                branch_commission=commission,
                net_amount=net_amount,
                amount_due_to_hq=due_to_hq,
                amount_due_from_hq=due_from_hq,
            )

            settlement = BranchSettlement(
                branch_id=branch_id,
                period_start=period_start,
                period_end=period_end,
                currency=currency,
                total_revenue=total_revenue,
                total_cod=total_cod,
                total_expenses=total_expenses,
                branch_commission=commission,
                net_amount=net_amount,
                amount_due_to_hq=due_to_hq,
                amount_due_from_hq=due_from_hq,
                breakdown=breakdown.model_dump(mode="json"),
                status=BranchSettlementStatus.DRAFT,
            )
            db.add(settlement)
            await db.flush()

            await log_event(
                db,
                action=AuditAction.BRANCH_SETTLEMENT_CREATED,
                actor_id=actor_id,
                entity_type="branch_settlement",
                entity_id=settlement.id,
                metadata={"branch_id": branch_id, "net_amount": str(net_amount)}
            )

        logger.info(
            "Branch settlement generated",
            extra={
                "settlement_id": settlement.id,
                "branch_id": branch_id,
                "shipments": len(revenue_lines),
                "cod_payments": len(cod_lines),
            },
        )
        return settlement

    @staticmethod
    async def _transition(
        db: AsyncSession,
        settlement_id: int,
        action: SettlementAction,
        actor_id: Optional[int] = None,
        **fields
    ) -> BranchSettlement:
        async with transactional(db):
            settlement = (await db.execute(
                select(BranchSettlement)
                .where(BranchSettlement.id == settlement_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )).scalar_one_or_none()
            if not settlement:
                raise ResourceNotFoundError("BranchSettlement", settlement_id)

            previous = settlement.status
            settlement.status = next_status(
                BRANCH_TRANSITIONS, "branch settlement", settlement_id, previous, action
            )
            for name, value in fields.items():
                setattr(settlement, name, value)

            await log_event(
                db,
                action=AUDIT_ACTIONS[action],
                actor_id=actor_id,
                entity_type="branch_settlement",
                entity_id=settlement_id,
                metadata={"from": previous.value, "to": settlement.status.value}
            )

        logger.info(
            "Branch settlement %s", action.value,
            extra={"settlement_id": settlement_id, "status": settlement.status.value},
        )
        return settlement

    @staticmethod
    async def submit(db: AsyncSession, settlement_id: int, actor_id: Optional[int] = None) -> BranchSettlement:
        return await BranchSettlementService._transition(
            db, settlement_id, SettlementAction.SUBMIT, actor_id,
            submitted_at=datetime.utcnow(),
        )

    @staticmethod
    async def approve(db: AsyncSession, settlement_id: int, approver_id: int) -> BranchSettlement:
        if approver_id is None:
            raise PreconditionFailedError("Approval requires an approver")
        return await BranchSettlementService._transition(
            db, settlement_id, SettlementAction.APPROVE, approver_id,
            approved_by=approver_id, approved_at=datetime.utcnow(),
        )

    @staticmethod
    async def mark_paid(
        db: AsyncSession,
        settlement_id: int,
        payment_reference: Optional[str] = None,
        actor_id: Optional[int] = None
    ) -> BranchSettlement:
        return await BranchSettlementService._transition(
            db, settlement_id, SettlementAction.PAY, actor_id,
            paid_at=datetime.utcnow(), payment_reference=payment_reference,
        )

    @staticmethod
    async def cancel(db: AsyncSession, settlement_id: int, actor_id: Optional[int] = None) -> BranchSettlement:
        """Cancel a draft; its period becomes available again."""
        return await BranchSettlementService._transition(db, settlement_id, SettlementAction.CANCEL, actor_id)

    @staticmethod
    async def get_branch_settlement_history(
        db: AsyncSession,
        branch_id: int,
        months: int = 12
    ) -> List[BranchSettlement]:
        since = datetime.utcnow() - timedelta(days=30 * months)
        result = await db.execute(
            select(BranchSettlement)
            .where(BranchSettlement.branch_id == branch_id, BranchSettlement.period_start >= since)
            .order_by(BranchSettlement.period_start.desc(), BranchSettlement.id.desc())
        )
        return list(result.scalars().all())
