"""
Merchant Settlement Service (Domain Logic).

Pays merchants the COD collected on their delivered shipments, net of
shipping fees. A shipment can appear in at most one settlement, ever:
eligibility excludes already-settled shipments and
settlement_items.shipment_id is unique underneath that.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func, exists
from sqlalchemy.ext.asyncio import AsyncSession

from freight_ledger.app.core.config import settings
from freight_ledger.app.core.exceptions import (
    NoEligibleShipmentsError,
    PreconditionFailedError,
    ResourceNotFoundError,
)
from freight_ledger.app.db.session import transactional
from freight_ledger.app.domain.finance.money import ZERO, sum_money, to_money
from freight_ledger.app.domain.finance.workflow import MERCHANT_TRANSITIONS, SettlementAction, next_status
from freight_ledger.app.models.customer import Customer
from freight_ledger.app.models.finance_enums import (
    MerchantSettlementStatus,
    PaymentType,
    ShipmentStatus,
    TransactionStatus,
    TransactionType,
)
from freight_ledger.app.models.financial_transaction import FinancialTransaction
from freight_ledger.app.models.settlement import MerchantSettlement, SettlementItem
from freight_ledger.app.models.shipment import Shipment
from freight_ledger.app.schemas.settlement import MerchantItemLine, MerchantSettlementBreakdown
from freight_ledger.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)

OPEN_STATUSES = (
    MerchantSettlementStatus.DRAFT,
    MerchantSettlementStatus.PENDING_APPROVAL,
    MerchantSettlementStatus.APPROVED,
)


class MerchantSettlementService:

    @staticmethod
    async def get_eligible_shipments(
        db: AsyncSession,
        merchant_id: int,
        period_start: datetime,
        period_end: datetime,
        branch_id: Optional[int] = None
    ) -> List[Shipment]:
        """Delivered COD shipments in the window that no settlement has claimed."""
        already_settled = exists().where(SettlementItem.shipment_id == Shipment.id)
        query = select(Shipment).where(
            Shipment.customer_id == merchant_id,
            Shipment.payment_type == PaymentType.COD,
            Shipment.status == ShipmentStatus.DELIVERED,
            Shipment.delivered_at >= period_start,
            Shipment.delivered_at <= period_end,
            ~already_settled,
        )
        if branch_id is not None:
            query = query.where(Shipment.origin_branch_id == branch_id)

        result = await db.execute(query.order_by(Shipment.id))
        return list(result.scalars().all())

    @staticmethod
    async def _next_settlement_number(db: AsyncSession, merchant_id: int, period_end: datetime) -> str:
        prefix = f"MS-{period_end.strftime('%Y%m')}-{merchant_id}-"
        result = await db.execute(
            select(func.count(MerchantSettlement.id)).where(
                MerchantSettlement.settlement_number.like(f"{prefix}%")
            )
        )
        return f"{prefix}{(result.scalar() or 0) + 1:04d}"

    @staticmethod
    async def generate_settlement(
        db: AsyncSession,
        merchant_id: int,
        period_start: datetime,
        period_end: datetime,
        branch_id: Optional[int] = None,
        actor_id: Optional[int] = None
    ) -> MerchantSettlement:
        """
        Generate a draft settlement for a merchant's eligible shipments.

        Per item: net = cod_amount - shipping_fee - deductions.
        Totals are the sums of the item fields.

        Not idempotent: a retry settles whatever became eligible since,
        or fails with NoEligibleShipmentsError.

        Raises:
            NoEligibleShipmentsError: Nothing to settle in the window
        """
        if period_end < period_start:
            raise PreconditionFailedError("period_end must not be before period_start")

        async with transactional(db):
            merchant = (await db.execute(
                select(Customer).where(Customer.id == merchant_id).with_for_update()
            )).scalar_one_or_none()
            if not merchant:
                raise ResourceNotFoundError("Merchant", merchant_id)

            shipments = await MerchantSettlementService.get_eligible_shipments(
                db, merchant_id, period_start, period_end, branch_id
            )
            if not shipments:
                raise NoEligibleShipmentsError(merchant_id)

            lines = []
            for shipment in shipments:
                cod_amount = to_money(shipment.cod_amount)
                shipping_fee = to_money(shipment.shipping_cost)
                deductions = ZERO
                lines.append(MerchantItemLine(
                    shipment_id=shipment.id,
                    cod_amount=cod_amount,
                    shipping_fee=shipping_fee,
                    insurance_fee=to_money(shipment.insurance_amount),
                    deductions=deductions,
                    net_amount=cod_amount - shipping_fee - deductions,
                ))

            shipping_fees = sum_money(line.shipping_fee for line in lines)
            cod_collected = sum_money(line.cod_amount for line in lines)
            deductions_total = sum_money(line.deductions for line in lines)
            net_payable = sum_money(line.net_amount for line in lines)
            currency = settings.default_currency

            breakdown = MerchantSettlementBreakdown(
                merchant_id=merchant_id,
                branch_id=branch_id,
                period_start=period_start,
                period_end=period_end,
                currency=currency,
                shipment_ids=[line.shipment_id for line in lines],
                items=lines,
                shipping_fees=shipping_fees,
                cod_collected=cod_collected,
                deductions=deductions_total,
                net_payable=net_payable,
            )

            settlement = MerchantSettlement(
                settlement_number=await MerchantSettlementService._next_settlement_number(
                    db, merchant_id, period_end
                ),
                merchant_id=merchant_id,
                branch_id=branch_id,
                period_start=period_start,
                period_end=period_end,
                currency=currency,
                shipment_count=len(lines),
                total_shipping_fees=shipping_fees,
                total_cod_collected=cod_collected,
                total_deductions=deductions_total,
                net_payable=net_payable,
                breakdown=breakdown.model_dump(mode="json"),
                status=MerchantSettlementStatus.DRAFT,
                items=[
                    SettlementItem(
                        shipment_id=line.shipment_id,
                        shipping_fee=line.shipping_fee,
                        cod_amount=line.cod_amount,
                        insurance_fee=line.insurance_fee,
                        deductions=line.deductions,
                        net_amount=line.net_amount,
                    )
                    for line in lines
                ],
            )
            db.add(settlement)
            await db.flush()

            await log_event(
                db,
                action=AuditAction.SETTLEMENT_CREATED,
                actor_id=actor_id,
                entity_type="merchant_settlement",
                entity_id=settlement.id,
                metadata={"merchant_id": merchant_id, "shipments": len(lines), "net_payable": str(net_payable)}
            )

        logger.info(
            "Merchant settlement generated",
            extra={"settlement_id": settlement.id, "number": settlement.settlement_number, "shipments": len(lines)},
        )
        return settlement

    @staticmethod
    async def _load_for_update(db: AsyncSession, settlement_id: int) -> MerchantSettlement:
        settlement = (await db.execute(
            select(MerchantSettlement)
            .where(MerchantSettlement.id == settlement_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if not settlement:
            raise ResourceNotFoundError("MerchantSettlement", settlement_id)
        return settlement

    @staticmethod
    async def submit_for_approval(
        db: AsyncSession,
        settlement_id: int,
        actor_id: Optional[int] = None
    ) -> MerchantSettlement:
        async with transactional(db):
            settlement = await MerchantSettlementService._load_for_update(db, settlement_id)
            settlement.status = next_status(
                MERCHANT_TRANSITIONS, "merchant settlement", settlement_id, settlement.status, SettlementAction.SUBMIT
            )
            settlement.submitted_at = datetime.utcnow()

            await log_event(
                db,
                action=AuditAction.SETTLEMENT_SUBMITTED,
                actor_id=actor_id,
                entity_type="merchant_settlement",
                entity_id=settlement_id
            )

        logger.info("Merchant settlement submitted", extra={"settlement_id": settlement_id})
        return settlement

    @staticmethod
    async def approve_settlement(db: AsyncSession, settlement_id: int, approver_id: int) -> MerchantSettlement:
        if approver_id is None:
            raise PreconditionFailedError("Approval requires an approver")

        async with transactional(db):
            settlement = await MerchantSettlementService._load_for_update(db, settlement_id)
            settlement.status = next_status(
                MERCHANT_TRANSITIONS, "merchant settlement", settlement_id, settlement.status, SettlementAction.APPROVE
            )
            settlement.approved_by = approver_id
            settlement.approved_at = datetime.utcnow()

            await log_event(
                db,
                action=AuditAction.SETTLEMENT_APPROVED,
                actor_id=approver_id,
                entity_type="merchant_settlement",
                entity_id=settlement_id
            )

        logger.info("Merchant settlement approved", extra={"settlement_id": settlement_id, "approver_id": approver_id})
        return settlement

    @staticmethod
    async def process_payment(
        db: AsyncSession,
        settlement_id: int,
        payment_method: str,
        payment_reference: str,
        processed_by: Optional[int] = None
    ) -> MerchantSettlement:
        """
        Pay an approved settlement.

        The status change and the settlement_payout transaction commit
        together or not at all.
        """
        if not payment_method or not payment_reference:
            raise PreconditionFailedError("Payment requires a method and a reference")

        async with transactional(db):
            settlement = await MerchantSettlementService._load_for_update(db, settlement_id)
            settlement.status = next_status(
                MERCHANT_TRANSITIONS, "merchant settlement", settlement_id, settlement.status, SettlementAction.PAY
            )
            now = datetime.utcnow()
            settlement.payment_method = payment_method
            settlement.payment_reference = payment_reference
            settlement.paid_at = now

            db.add(FinancialTransaction(
                transaction_type=TransactionType.SETTLEMENT_PAYOUT,
                status=TransactionStatus.COMPLETED,
                amount=to_money(settlement.net_payable),
                currency=settlement.currency,
                payment_method=payment_method,
                reference=payment_reference,
                customer_id=settlement.merchant_id,
                merchant_settlement_id=settlement.id,
                processed_by=processed_by,
                completed_at=now,
            ))

            await log_event(
                db,
                action=AuditAction.SETTLEMENT_PAID,
                actor_id=processed_by,
                entity_type="merchant_settlement",
                entity_id=settlement_id,
                metadata={"method": payment_method, "reference": payment_reference}
            )

        logger.info(
            "Merchant settlement paid",
            extra={"settlement_id": settlement_id, "amount": str(settlement.net_payable)},
        )
        return settlement

    @staticmethod
    async def get_settlement(db: AsyncSession, settlement_id: int) -> MerchantSettlement:
        settlement = await db.get(MerchantSettlement, settlement_id)
        if not settlement:
            raise ResourceNotFoundError("MerchantSettlement", settlement_id)
        return settlement

    @staticmethod
    async def get_merchant_settlements(
        db: AsyncSession,
        merchant_id: int,
        status: Optional[MerchantSettlementStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[MerchantSettlement]:
        query = select(MerchantSettlement).where(MerchantSettlement.merchant_id == merchant_id)
        if status:
            query = query.where(MerchantSettlement.status == status)
        if start:
            query = query.where(MerchantSettlement.period_end >= start)
        if end:
            query = query.where(MerchantSettlement.period_start <= end)

        result = await db.execute(query.order_by(MerchantSettlement.period_start.desc(), MerchantSettlement.id.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def get_pending_settlements(db: AsyncSession, branch_id: Optional[int] = None) -> List[MerchantSettlement]:
        """Settlements waiting for an approver."""
        query = select(MerchantSettlement).where(
            MerchantSettlement.status == MerchantSettlementStatus.PENDING_APPROVAL
        )
        if branch_id is not None:
            query = query.where(MerchantSettlement.branch_id == branch_id)

        result = await db.execute(query.order_by(MerchantSettlement.submitted_at, MerchantSettlement.id))
        return list(result.scalars().all())

    @staticmethod
    async def get_merchant_balance(db: AsyncSession, merchant_id: int) -> dict:
        """
        What the merchant is owed.

        settled_unpaid: net payable on settlements not yet paid.
        unsettled_cod: net of delivered COD shipments not in any settlement.
        """
        open_result = await db.execute(
            select(MerchantSettlement.net_payable).where(
                MerchantSettlement.merchant_id == merchant_id,
                MerchantSettlement.status.in_(OPEN_STATUSES),
            )
        )
        settled_unpaid = sum_money(open_result.scalars().all())

        paid_result = await db.execute(
            select(MerchantSettlement.net_payable).where(
                MerchantSettlement.merchant_id == merchant_id,
                MerchantSettlement.status == MerchantSettlementStatus.PAID,
            )
        )
        total_paid = sum_money(paid_result.scalars().all())

        unsettled = await db.execute(
            select(Shipment.cod_amount, Shipment.shipping_cost).where(
                Shipment.customer_id == merchant_id,
                Shipment.payment_type == PaymentType.COD,
                Shipment.status == ShipmentStatus.DELIVERED,
                ~exists().where(SettlementItem.shipment_id == Shipment.id),
            )
        )
        unsettled_rows = unsettled.all()
        unsettled_cod = sum_money(to_money(cod) - to_money(fee) for cod, fee in unsettled_rows)

        return {
            "merchant_id": merchant_id,
            "settled_unpaid": settled_unpaid,
            "unsettled_cod": unsettled_cod,
            "unsettled_shipments": len(unsettled_rows),
            "total_owed": settled_unpaid + unsettled_cod,
            "total_paid": total_paid,
        }

    @staticmethod
    async def generate_statement(db: AsyncSession, settlement_id: int) -> dict:
        settlement = await MerchantSettlementService.get_settlement(db, settlement_id)
        merchant = await db.get(Customer, settlement.merchant_id)

        result = await db.execute(
            select(SettlementItem, Shipment.tracking_number, Shipment.delivered_at)
            .join(Shipment, SettlementItem.shipment_id == Shipment.id)
            .where(SettlementItem.settlement_id == settlement_id)
            .order_by(SettlementItem.id)
        )

        lines = [
            {
                "shipment_id": item.shipment_id,
                "tracking_number": tracking_number,
                "delivered_at": delivered_at,
                "cod_amount": to_money(item.cod_amount),
                "shipping_fee": to_money(item.shipping_fee),
                "insurance_fee": to_money(item.insurance_fee),
                "deductions": to_money(item.deductions),
                "net_amount": to_money(item.net_amount),
            }
            for item, tracking_number, delivered_at in result.all()
        ]

        return {
            "settlement_number": settlement.settlement_number,
            "merchant_id": settlement.merchant_id,
            "merchant_name": merchant.name if merchant else None,
            "period_start": settlement.period_start,
            "period_end": settlement.period_end,
            "currency": settlement.currency,
            "status": settlement.status.value,
            "lines": lines,
            "summary": {
                "shipment_count": settlement.shipment_count,
                "total_cod_collected": to_money(settlement.total_cod_collected),
                "total_shipping_fees": to_money(settlement.total_shipping_fees),
                "total_deductions": to_money(settlement.total_deductions),
                "net_payable": to_money(settlement.net_payable),
            },
            "payment": {
                "method": settlement.payment_method,
                "reference": settlement.payment_reference,
                "paid_at": settlement.paid_at,
            },
        }

    @staticmethod
    async def get_settlement_stats(
        db: AsyncSession,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        branch_id: Optional[int] = None
    ) -> dict:
        query = select(MerchantSettlement.status, MerchantSettlement.net_payable, MerchantSettlement.shipment_count)
        if start:
            query = query.where(MerchantSettlement.period_end >= start)
        if end:
            query = query.where(MerchantSettlement.period_start <= end)
        if branch_id is not None:
            query = query.where(MerchantSettlement.branch_id == branch_id)

        rows = (await db.execute(query)).all()

        by_status = {s.value: {"count": 0, "amount": ZERO} for s in MerchantSettlementStatus}
        for status, net_payable, _ in rows:
            by_status[status.value]["count"] += 1
            by_status[status.value]["amount"] += to_money(net_payable)

        return {
            "total_settlements": len(rows),
            "total_shipments": sum(count for _, _, count in rows),
            "total_net_payable": sum_money(net for _, net, _ in rows),
            "by_status": by_status,
        }
