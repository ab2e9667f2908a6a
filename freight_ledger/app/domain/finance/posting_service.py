"""
Posting Service (Domain Logic).

Turns payment and refund transactions into balanced double-entry ledger
entries. For every reference, sum(DEBIT) == sum(CREDIT) exactly.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from freight_ledger.app.core.config import settings
from freight_ledger.app.core.exceptions import (
    PreconditionFailedError,
    RefundExceedsOriginalError,
    ResourceNotFoundError,
)
from freight_ledger.app.db.session import transactional
from freight_ledger.app.domain.finance import accounts
from freight_ledger.app.domain.finance.accounts import LedgerAccount
from freight_ledger.app.domain.finance.money import allocate, sum_money, to_money
from freight_ledger.app.models.finance_enums import (
    LedgerEntryStatus,
    LedgerEntryType,
    TransactionStatus,
    TransactionType,
)
from freight_ledger.app.models.financial_transaction import FinancialTransaction
from freight_ledger.app.models.ledger_entry import LedgerEntry
from freight_ledger.app.models.shipment import Shipment

logger = logging.getLogger(__name__)

PostingLine = Tuple[LedgerAccount, Decimal]


def revenue_breakdown(shipment: Optional[Shipment]) -> List[PostingLine]:
    """Revenue lines carried by a shipment, skipping zero components."""
    if shipment is None:
        return []

    lines = [
        (accounts.FREIGHT_REVENUE, to_money(shipment.base_rate) + to_money(shipment.weight_charge)),
        (accounts.SURCHARGE_REVENUE, to_money(shipment.surcharges)),
        (accounts.INSURANCE_REVENUE, to_money(shipment.insurance_amount)),
        (accounts.TAX_PAYABLE, to_money(shipment.tax_amount)),
    ]
    return [(account, amount) for account, amount in lines if amount > 0]


def revenue_lines_for_amount(shipment: Optional[Shipment], amount: Decimal) -> List[PostingLine]:
    """
    Revenue lines that sum exactly to amount.

    Without a breakdown the whole amount is freight revenue. When the
    breakdown total differs from the amount (partial or over payment)
    the lines are scaled proportionally.
    """
    amount = to_money(amount)
    lines = revenue_breakdown(shipment)
    if not lines:
        return [(accounts.FREIGHT_REVENUE, amount)]

    if sum_money(a for _, a in lines) == amount:
        return lines

    shares = allocate(amount, [a for _, a in lines])
    return [(account, share) for (account, _), share in zip(lines, shares) if share > 0]


def totals(entries: List[LedgerEntry]) -> Tuple[Decimal, Decimal]:
    """(sum of debits, sum of credits)"""
    debits = sum_money(e.amount for e in entries if e.entry_type == LedgerEntryType.DEBIT)
    credits = sum_money(e.amount for e in entries if e.entry_type == LedgerEntryType.CREDIT)
    return debits, credits


def is_balanced(entries: List[LedgerEntry]) -> bool:
    debits, credits = totals(entries)
    return debits == credits


class PostingService:

    @staticmethod
    def _build_entries(
        transaction: FinancialTransaction,
        reference: str,
        posting_date: datetime,
        debits: List[PostingLine],
        credits: List[PostingLine],
        description: str,
    ) -> List[LedgerEntry]:
        entries = []
        for entry_type, lines in ((LedgerEntryType.DEBIT, debits), (LedgerEntryType.CREDIT, credits)):
            for account, amount in lines:
                entries.append(LedgerEntry(
                    account_code=account.code,
                    account_name=account.name,
                    entry_type=entry_type,
                    amount=amount,
                    currency=transaction.currency,
                    description=description,
                    reference=reference,
                    posting_date=posting_date,
                    status=LedgerEntryStatus.PENDING,
                    transaction_id=transaction.id,
                    shipment_id=transaction.shipment_id,
                ))

        if not is_balanced(entries):
            # allocate() guarantees this; reaching here is a programming error
            raise AssertionError(f"Unbalanced posting for {reference}")
        return entries

    @staticmethod
    async def _existing_entries(db: AsyncSession, transaction_id: int) -> List[LedgerEntry]:
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.transaction_id == transaction_id)
            .order_by(LedgerEntry.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def _lock_transaction(db: AsyncSession, transaction_id: int) -> FinancialTransaction:
        """Row lock that serializes postings against one transaction."""
        locked = (await db.execute(
            select(FinancialTransaction)
            .where(FinancialTransaction.id == transaction_id)
            .with_for_update()
        )).scalar_one_or_none()
        if not locked:
            raise ResourceNotFoundError("Transaction", transaction_id)
        return locked

    @staticmethod
    async def post_payment(db: AsyncSession, transaction: FinancialTransaction) -> List[LedgerEntry]:
        """
        Post a completed payment.

        Flow:
        1. Validate transaction (completed payment, positive amount)
        2. Lock the transaction row
        3. Idempotency check (entries already exist for the transaction)
        4. Debit the cash-side account for the payment method
        5. Credit revenue lines from the shipment breakdown
        6. Persist all entries in the same unit of work as the lock

        Args:
            db: Database session
            transaction: Payment to post

        Returns:
            Ledger entries for the payment (existing ones on repeat calls)
        """
        if transaction.transaction_type != TransactionType.PAYMENT:
            raise PreconditionFailedError(
                f"Transaction {transaction.id} is a {transaction.transaction_type.value}, not a payment"
            )
        if transaction.status != TransactionStatus.COMPLETED:
            raise PreconditionFailedError(f"Transaction {transaction.id} is not completed")

        amount = to_money(transaction.amount)
        if amount <= 0:
            raise PreconditionFailedError("Payment amount must be positive")

        transaction_id = transaction.id
        async with transactional(db):
            await PostingService._lock_transaction(db, transaction_id)

            existing = await PostingService._existing_entries(db, transaction_id)
            if existing:
                logger.info("Payment already posted", extra={"transaction_id": transaction_id})
                return existing

            shipment = None
            if transaction.shipment_id:
                shipment = await db.get(Shipment, transaction.shipment_id)
                if not shipment:
                    raise ResourceNotFoundError("Shipment", transaction.shipment_id)

            reference = transaction.reference or f"PAY-{transaction_id}"
            posting_date = transaction.completed_at or datetime.utcnow()
            debit_account = accounts.account_for_payment_method(transaction.payment_method)

            entries = PostingService._build_entries(
                transaction,
                reference,
                posting_date,
                debits=[(debit_account, amount)],
                credits=revenue_lines_for_amount(shipment, amount),
                description=f"Payment {transaction_id} via {transaction.payment_method}",
            )
            db.add_all(entries)
            await db.flush()

        logger.info(
            "Posted payment",
            extra={"transaction_id": transaction_id, "reference": reference, "entries": len(entries)},
        )
        return entries

    @staticmethod
    async def refunded_amount(db: AsyncSession, original_id: int) -> Decimal:
        result = await db.execute(
            select(func.coalesce(func.sum(FinancialTransaction.amount), 0)).where(
                FinancialTransaction.parent_transaction_id == original_id,
                FinancialTransaction.transaction_type == TransactionType.REFUND,
                FinancialTransaction.status == TransactionStatus.COMPLETED,
            )
        )
        return to_money(result.scalar())

    @staticmethod
    async def post_refund(
        db: AsyncSession,
        original_transaction: FinancialTransaction,
        refund_amount,
        allow_over_refund: Optional[bool] = None,
    ) -> List[LedgerEntry]:
        """
        Post a refund against an earlier payment.

        Mirrors the payment: revenue lines are debited and the cash-side
        account credited. Partial refunds reverse each revenue line
        proportionally. Creates the refund transaction record too.

        Not idempotent: every call refunds again.
        """
        if allow_over_refund is None:
            allow_over_refund = settings.allow_over_refund

        if original_transaction.transaction_type != TransactionType.PAYMENT:
            raise PreconditionFailedError("Only payments can be refunded")
        if original_transaction.status != TransactionStatus.COMPLETED:
            raise PreconditionFailedError(f"Transaction {original_transaction.id} is not completed")

        amount = to_money(refund_amount)
        if amount <= 0:
            raise PreconditionFailedError("Refund amount must be positive")

        original_id = original_transaction.id
        original_amount = to_money(original_transaction.amount)
        cash_account = accounts.account_for_payment_method(original_transaction.payment_method)
        now = datetime.utcnow()

        async with transactional(db):
            # Concurrent refunds of one payment queue here, so each sees the others' totals
            await PostingService._lock_transaction(db, original_id)

            already_refunded = await PostingService.refunded_amount(db, original_id)
            if not allow_over_refund and already_refunded + amount > original_amount:
                raise RefundExceedsOriginalError(original_id, original_amount - already_refunded, amount)

            shipment = None
            if original_transaction.shipment_id:
                shipment = await db.get(Shipment, original_transaction.shipment_id)

            original_lines = revenue_lines_for_amount(shipment, original_amount)
            if amount == original_amount:
                reversed_lines = original_lines
            else:
                shares = allocate(amount, [a for _, a in original_lines])
                reversed_lines = [
                    (account, share) for (account, _), share in zip(original_lines, shares) if share > 0
                ]

            refund = FinancialTransaction(
                transaction_type=TransactionType.REFUND,
                status=TransactionStatus.COMPLETED,
                amount=amount,
                currency=original_transaction.currency,
                payment_method=original_transaction.payment_method,
                shipment_id=original_transaction.shipment_id,
                customer_id=original_transaction.customer_id,
                parent_transaction_id=original_id,
                completed_at=now,
            )
            db.add(refund)
            await db.flush()

            refund.reference = f"REF-{refund.id}"
            entries = PostingService._build_entries(
                refund,
                refund.reference,
                now,
                debits=reversed_lines,
                credits=[(cash_account, amount)],
                description=f"Refund of payment {original_id}",
            )
            db.add_all(entries)
            await db.flush()

        logger.info(
            "Posted refund",
            extra={
                "original_transaction_id": original_id,
                "refund_transaction_id": refund.id,
                "amount": str(amount),
            },
        )
        return entries

    @staticmethod
    async def sync_to_external_system(db: AsyncSession) -> int:
        """
        Mark every PENDING entry as POSTED.

        Idempotent: POSTED entries are untouched, so a second call returns 0.

        Returns:
            Number of entries transitioned
        """
        async with transactional(db):
            result = await db.execute(
                update(LedgerEntry)
                .where(LedgerEntry.status == LedgerEntryStatus.PENDING)
                .values(status=LedgerEntryStatus.POSTED, synced_at=datetime.utcnow())
                .execution_options(synchronize_session="fetch")
            )
            count = result.rowcount or 0

        logger.info("Synced ledger entries", extra={"count": count})
        return count

    @staticmethod
    async def get_entries(db: AsyncSession, reference: str) -> List[LedgerEntry]:
        result = await db.execute(
            select(LedgerEntry).where(LedgerEntry.reference == reference).order_by(LedgerEntry.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_unbalanced_references(db: AsyncSession) -> List[str]:
        """References whose debit and credit sums differ (should always be empty)."""
        result = await db.execute(select(LedgerEntry).order_by(LedgerEntry.reference, LedgerEntry.id))
        by_reference = {}
        for entry in result.scalars().all():
            by_reference.setdefault(entry.reference, []).append(entry)
        return [ref for ref, entries in by_reference.items() if not is_balanced(entries)]
