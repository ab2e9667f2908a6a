"""
COD Ledger (Domain Logic).

Tracks cash-on-delivery money from the driver's hand to the organization:
pending -> collected -> verified -> remitted. Driver cash balances only
change through SQL-side increments, so concurrent collections for one
driver never lose updates.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from freight_ledger.app.core.config import settings
from freight_ledger.app.core.exceptions import CodCollectionError, ResourceNotFoundError
from freight_ledger.app.db.session import transactional
from freight_ledger.app.domain.finance.money import ZERO, percent, sum_money, to_money
from freight_ledger.app.models.cod import CodCollection, CodRemittance, DriverCashAccount
from freight_ledger.app.models.finance_enums import CodCollectionStatus, PaymentType
from freight_ledger.app.models.shipment import Shipment
from freight_ledger.app.schemas.cod import (
    CodAgingReport,
    CodDiscrepancy,
    CodReconciliationReport,
    CodRemittanceSummary,
    CodSummary,
    CollectorTotal,
    DailyCollection,
    DailyRemittance,
    DriverCodPerformance,
    DriverRemittanceTotal,
    MethodTotal,
    ReconciliationIssue,
)
from freight_ledger.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)

REMITTABLE_STATUSES = (CodCollectionStatus.COLLECTED, CodCollectionStatus.VERIFIED)

# Both support INSERT .. ON CONFLICT DO NOTHING on the unique driver_id
ACCOUNT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}

AGING_BUCKETS = (
    ("current", 0, 0),
    ("1_30_days", 1, 30),
    ("31_60_days", 31, 60),
    ("61_90_days", 61, 90),
    ("over_90_days", 91, None),
)


async def _get_collection(db: AsyncSession, collection_id: int) -> CodCollection:
    collection = (await db.execute(
        select(CodCollection)
        .where(CodCollection.id == collection_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if not collection:
        raise ResourceNotFoundError("CodCollection", collection_id)
    return collection


async def _ensure_driver_account(db: AsyncSession, driver_id: int) -> None:
    """Create the driver's cash account unless it already exists."""
    insert = ACCOUNT_INSERTS[db.bind.dialect.name]
    await db.execute(
        insert(DriverCashAccount)
        .values(driver_id=driver_id, balance=ZERO, pending_remittance=ZERO)
        .on_conflict_do_nothing(index_elements=["driver_id"])
    )


async def _adjust_driver(db: AsyncSession, driver_id: int, balance: Decimal = ZERO, pending: Decimal = ZERO, **fields):
    await db.execute(
        update(DriverCashAccount)
        .where(DriverCashAccount.driver_id == driver_id)
        .values(
            balance=DriverCashAccount.balance + balance,
            pending_remittance=DriverCashAccount.pending_remittance + pending,
            **fields
        )
        .execution_options(synchronize_session=False)
    )


async def open_collection(db: AsyncSession, shipment_id: int) -> CodCollection:
    """Create the pending collection for a COD shipment."""
    shipment = await db.get(Shipment, shipment_id)
    if not shipment:
        raise ResourceNotFoundError("Shipment", shipment_id)
    if shipment.payment_type != PaymentType.COD or to_money(shipment.cod_amount) <= 0:
        raise CodCollectionError("Shipment has no COD amount to collect", {"shipment_id": shipment_id})

    existing = (await db.execute(
        select(CodCollection).where(CodCollection.shipment_id == shipment_id)
    )).scalar_one_or_none()
    if existing:
        raise CodCollectionError("COD collection already exists for shipment", {"shipment_id": shipment_id})

    async with transactional(db):
        collection = CodCollection(
            shipment_id=shipment_id,
            branch_id=shipment.dest_branch_id or shipment.origin_branch_id,
            expected_amount=to_money(shipment.cod_amount),
            status=CodCollectionStatus.PENDING,
        )
        db.add(collection)
        await db.flush()

    return collection


async def record_collection(
    db: AsyncSession,
    collection_id: int,
    driver_id: int,
    amount,
    method: str = "cash",
    collected_at: Optional[datetime] = None
) -> CodCollection:
    """
    Record cash taken from the consignee and credit the driver's account.

    Not idempotent: only a pending collection can be recorded, so a blind
    retry after success fails with CodCollectionError.
    """
    amount = to_money(amount)
    if amount < 0:
        raise CodCollectionError("Collected amount cannot be negative")

    async with transactional(db):
        collection = await _get_collection(db, collection_id)
        if collection.status != CodCollectionStatus.PENDING:
            raise CodCollectionError(
                f"Cannot record collection in status {collection.status.value}",
                {"collection_id": collection_id}
            )

        collection.collected_amount = amount
        collection.collected_by = driver_id
        collection.collection_method = method
        collection.collected_at = collected_at or datetime.utcnow()
        collection.status = CodCollectionStatus.COLLECTED

        await _ensure_driver_account(db, driver_id)
        await _adjust_driver(db, driver_id, balance=amount)

    if collection.discrepancy is not None and collection.discrepancy > Decimal(str(settings.cod_discrepancy_tolerance)):
        logger.warning(
            "COD collected amount differs from expected",
            extra={"collection_id": collection_id, "discrepancy": str(collection.discrepancy)},
        )
    logger.info("COD collected", extra={"collection_id": collection_id, "driver_id": driver_id, "amount": str(amount)})
    return collection


async def verify_collection(db: AsyncSession, collection_id: int, verifier_id: int) -> CodCollection:
    """Supervisor confirmation. Discrepancies do not block verification."""
    if verifier_id is None:
        raise CodCollectionError("Verification requires a verifier")

    async with transactional(db):
        collection = await _get_collection(db, collection_id)
        if collection.status != CodCollectionStatus.COLLECTED:
            raise CodCollectionError(
                f"Cannot verify collection in status {collection.status.value}",
                {"collection_id": collection_id}
            )

        collection.status = CodCollectionStatus.VERIFIED
        collection.verified_by = verifier_id
        collection.verified_at = datetime.utcnow()

        await _adjust_driver(db, collection.collected_by, pending=to_money(collection.collected_amount))

        await log_event(
            db,
            action=AuditAction.COD_VERIFIED,
            actor_id=verifier_id,
            entity_type="cod_collection",
            entity_id=collection_id,
            metadata={"discrepancy": str(collection.discrepancy)}
        )

    return collection


async def record_remittance(
    db: AsyncSession,
    collection_ids: List[int],
    driver_id: int,
    total_amount=None,
    reference: Optional[str] = None,
    notes: Optional[str] = None
) -> CodRemittance:
    """
    Hand over a batch of collections.

    Only ids owned by driver_id and in collected/verified status are
    remitted; others are ignored. The remitted amount is the sum of the
    actual collected amounts. total_amount is the driver's declared figure,
    stored for audit and never used in the arithmetic.

    Raises:
        CodCollectionError: None of the ids are remittable by this driver
    """
    async with transactional(db):
        result = await db.execute(
            select(CodCollection)
            .where(
                CodCollection.id.in_(collection_ids),
                CodCollection.collected_by == driver_id,
                CodCollection.status.in_(REMITTABLE_STATUSES),
            )
            .order_by(CodCollection.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        collections = list(result.scalars().all())
        if not collections:
            raise CodCollectionError(
                "No remittable collections for driver",
                {"driver_id": driver_id, "collection_ids": list(collection_ids)}
            )

        remitted = sum_money(c.collected_amount for c in collections)
        verified_part = sum_money(
            c.collected_amount for c in collections if c.status == CodCollectionStatus.VERIFIED
        )
        declared = to_money(total_amount) if total_amount is not None else None
        now = datetime.utcnow()

        remittance = CodRemittance(
            driver_id=driver_id,
            reference=reference,
            declared_amount=declared,
            remitted_amount=remitted,
            collection_count=len(collections),
            notes=notes,
            remitted_at=now,
        )
        db.add(remittance)
        await db.flush()

        for collection in collections:
            collection.status = CodCollectionStatus.REMITTED
            collection.remitted_at = now
            collection.remittance_id = remittance.id

        await _adjust_driver(db, driver_id, balance=-remitted, pending=-verified_part, last_remittance_at=now)

        await log_event(
            db,
            action=AuditAction.COD_REMITTED,
            actor_id=driver_id,
            entity_type="cod_remittance",
            entity_id=remittance.id,
            metadata={
                "collection_ids": [c.id for c in collections],
                "remitted": str(remitted),
                "declared": str(declared) if declared is not None else None,
            }
        )

    skipped = set(collection_ids) - {c.id for c in collections}
    if skipped:
        logger.warning("Skipped non-remittable collections", extra={"driver_id": driver_id, "ids": sorted(skipped)})
    if declared is not None and declared != remitted:
        logger.warning(
            "Declared remittance differs from collected sum",
            extra={"remittance_id": remittance.id, "declared": str(declared), "remitted": str(remitted)},
        )
    logger.info("COD remitted", extra={"remittance_id": remittance.id, "driver_id": driver_id, "amount": str(remitted)})
    return remittance


async def get_discrepancies(
    db: AsyncSession,
    tolerance=None,
    branch_id: Optional[int] = None
) -> List[CodDiscrepancy]:
    """Collections whose collected amount is off by more than tolerance. Read-only."""
    tolerance = Decimal(str(tolerance if tolerance is not None else settings.cod_discrepancy_tolerance))

    query = select(CodCollection).where(CodCollection.collected_amount.is_not(None))
    if branch_id is not None:
        query = query.where(CodCollection.branch_id == branch_id)

    result = await db.execute(query.order_by(CodCollection.id))

    return [
        CodDiscrepancy(
            collection_id=c.id,
            shipment_id=c.shipment_id,
            collected_by=c.collected_by,
            status=c.status.value,
            expected_amount=to_money(c.expected_amount),
            collected_amount=to_money(c.collected_amount),
            discrepancy=to_money(c.discrepancy),
            collected_at=c.collected_at,
        )
        for c in result.scalars().all()
        if c.discrepancy > tolerance
    ]


async def get_cod_summary(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    branch_id: Optional[int] = None
) -> CodSummary:
    query = select(CodCollection).where(CodCollection.created_at >= start, CodCollection.created_at <= end)
    if branch_id is not None:
        query = query.where(CodCollection.branch_id == branch_id)

    collections = list((await db.execute(query)).scalars().all())

    status_counts = {s.value: 0 for s in CodCollectionStatus}
    by_collector: Dict[Optional[int], List[CodCollection]] = {}
    by_method: Dict[Optional[str], List[CodCollection]] = {}
    for c in collections:
        status_counts[c.status.value] += 1
        if c.collected_amount is not None:
            by_collector.setdefault(c.collected_by, []).append(c)
            by_method.setdefault(c.collection_method, []).append(c)

    total_expected = sum_money(c.expected_amount for c in collections)
    total_collected = sum_money(c.collected_amount for c in collections)
    total_remitted = sum_money(
        c.collected_amount for c in collections if c.status == CodCollectionStatus.REMITTED
    )

    return CodSummary(
        period_start=start,
        period_end=end,
        branch_id=branch_id,
        total_collections=len(collections),
        total_expected=total_expected,
        total_collected=total_collected,
        total_remitted=total_remitted,
        outstanding_cod=total_collected - total_remitted,
        collection_rate=percent(total_collected, total_expected),
        status_counts=status_counts,
        by_collector=[
            CollectorTotal(
                collector_id=collector,
                collections=len(items),
                total_amount=sum_money(c.collected_amount for c in items),
            )
            for collector, items in by_collector.items()
        ],
        by_method=[
            MethodTotal(
                method=method,
                count=len(items),
                total_amount=sum_money(c.collected_amount for c in items),
            )
            for method, items in by_method.items()
        ],
    )


async def get_driver_account(db: AsyncSession, driver_id: int) -> DriverCashAccount:
    account = (await db.execute(
        select(DriverCashAccount)
        .where(DriverCashAccount.driver_id == driver_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if not account:
        raise ResourceNotFoundError("DriverCashAccount", driver_id)
    return account


async def get_driver_cod_performance(
    db: AsyncSession,
    driver_id: int,
    start: datetime,
    end: datetime
) -> DriverCodPerformance:
    result = await db.execute(
        select(CodCollection).where(
            CodCollection.collected_by == driver_id,
            CodCollection.collected_at >= start,
            CodCollection.collected_at <= end,
        ).order_by(CodCollection.collected_at)
    )
    collections = list(result.scalars().all())
    tolerance = Decimal(str(settings.cod_discrepancy_tolerance))

    total_expected = sum_money(c.expected_amount for c in collections)
    total_collected = sum_money(c.collected_amount for c in collections)
    remitted = sum_money(c.collected_amount for c in collections if c.status == CodCollectionStatus.REMITTED)

    daily: Dict = {}
    for c in collections:
        day = daily.setdefault(c.collected_at.date(), [0, ZERO])
        day[0] += 1
        day[1] += to_money(c.collected_amount)

    account = (await db.execute(
        select(DriverCashAccount.balance).where(DriverCashAccount.driver_id == driver_id)
    )).scalar_one_or_none()

    return DriverCodPerformance(
        driver_id=driver_id,
        period_start=start,
        period_end=end,
        total_collections=len(collections),
        total_expected=total_expected,
        total_collected=total_collected,
        average_collection=to_money(total_collected / len(collections)) if collections else ZERO,
        remitted_amount=remitted,
        unremitted_amount=total_collected - remitted,
        discrepancy_count=sum(1 for c in collections if c.discrepancy is not None and c.discrepancy > tolerance),
        collection_rate=percent(total_collected, total_expected),
        account_balance=to_money(account),
        daily_breakdown=[
            DailyCollection(date=day, count=count, amount=amount)
            for day, (count, amount) in sorted(daily.items())
        ],
    )


async def get_remittance_summary(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    driver_id: Optional[int] = None
) -> CodRemittanceSummary:
    """Remittances in the period, per driver and per day, with declared-vs-remitted variance."""
    query = select(CodRemittance).where(CodRemittance.remitted_at >= start, CodRemittance.remitted_at <= end)
    if driver_id is not None:
        query = query.where(CodRemittance.driver_id == driver_id)

    remittances = list((await db.execute(query.order_by(CodRemittance.remitted_at))).scalars().all())
    declared = [r for r in remittances if r.declared_amount is not None]

    by_driver: Dict[int, List[CodRemittance]] = {}
    daily: Dict = {}
    for r in remittances:
        by_driver.setdefault(r.driver_id, []).append(r)
        day = daily.setdefault(r.remitted_at.date(), [0, ZERO])
        day[0] += 1
        day[1] += to_money(r.remitted_amount)

    drivers = [
        DriverRemittanceTotal(
            driver_id=driver,
            remittance_count=len(items),
            total_remitted=sum_money(r.remitted_amount for r in items),
        )
        for driver, items in by_driver.items()
    ]
    drivers.sort(key=lambda d: d.total_remitted, reverse=True)

    total_remitted = sum_money(r.remitted_amount for r in remittances)
    total_declared = sum_money(r.declared_amount for r in declared)

    return CodRemittanceSummary(
        period_start=start,
        period_end=end,
        driver_id=driver_id,
        total_remittances=len(remittances),
        total_remitted=total_remitted,
        average_remittance=to_money(total_remitted / len(remittances)) if remittances else ZERO,
        total_declared=total_declared,
        declared_variance=total_declared - sum_money(r.remitted_amount for r in declared),
        by_driver=drivers,
        daily_breakdown=[
            DailyRemittance(date=day, count=count, amount=amount)
            for day, (count, amount) in sorted(daily.items())
        ],
    )


async def get_reconciliation_report(db: AsyncSession, start: datetime, end: datetime) -> CodReconciliationReport:
    """
    COD shipments created in the period against what was collected and remitted.

    Collections off by more than the tolerance are listed as
    over_collection or short_collection.
    """
    result = await db.execute(
        select(Shipment, CodCollection)
        .outerjoin(CodCollection, CodCollection.shipment_id == Shipment.id)
        .where(
            Shipment.payment_type == PaymentType.COD,
            Shipment.cod_amount > 0,
            Shipment.created_at >= start,
            Shipment.created_at <= end,
        )
        .order_by(Shipment.id)
    )
    rows = result.all()
    tolerance = Decimal(str(settings.cod_discrepancy_tolerance))

    cod_value = collected = remitted = ZERO
    issues = []
    for shipment, collection in rows:
        expected = to_money(shipment.cod_amount)
        cod_value += expected
        if collection is None or collection.collected_amount is None:
            continue

        amount = to_money(collection.collected_amount)
        collected += amount
        if collection.status == CodCollectionStatus.REMITTED:
            remitted += amount

        if abs(amount - expected) > tolerance:
            issues.append(ReconciliationIssue(
                type="over_collection" if amount > expected else "short_collection",
                shipment_id=shipment.id,
                tracking_number=shipment.tracking_number,
                expected=expected,
                collected=amount,
                difference=abs(amount - expected),
            ))

    return CodReconciliationReport(
        period_start=start,
        period_end=end,
        total_cod_shipments=len(rows),
        total_cod_value=cod_value,
        collected_amount=collected,
        remitted_amount=remitted,
        outstanding_collection=cod_value - collected,
        outstanding_remittance=collected - remitted,
        collection_rate=percent(collected, cod_value),
        remittance_rate=percent(remitted, collected),
        discrepancies=issues,
    )


async def get_aging_report(db: AsyncSession, as_of: Optional[datetime] = None) -> CodAgingReport:
    """
    Uncollected COD (pending collections) bucketed by age in days.
    """
    as_of = as_of or datetime.utcnow()
    result = await db.execute(
        select(CodCollection.expected_amount, CodCollection.created_at).where(
            CodCollection.status == CodCollectionStatus.PENDING,
            CodCollection.created_at <= as_of,
        )
    )

    breakdown = {name: ZERO for name, _, _ in AGING_BUCKETS}
    for expected, created_at in result.all():
        age = (as_of - created_at.replace(tzinfo=None)).days
        for name, low, high in AGING_BUCKETS:
            if age >= low and (high is None or age <= high):
                breakdown[name] += to_money(expected)
                break

    total = sum_money(breakdown.values())
    return CodAgingReport(
        as_of=as_of,
        total_outstanding_cod=total,
        aging_breakdown=breakdown,
        aging_percentage={name: percent(amount, total) for name, amount in breakdown.items()},
    )
