"""
COD ledger tests.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy import update

from freight_ledger.app.core.exceptions import CodCollectionError, ResourceNotFoundError
from freight_ledger.app.domain.finance import cod_ledger
from freight_ledger.app.models.cod import CodCollection, DriverCashAccount
from freight_ledger.app.models.finance_enums import CodCollectionStatus, PaymentType, ShipmentStatus

DRIVER = 41
OTHER_DRIVER = 42


@pytest.fixture
def open_cod(db_session, make_customer, make_shipment):
    """Create a COD shipment and its pending collection."""
    async def _open(cod_amount):
        merchant = await make_customer(payment_terms="cod")
        shipment = await make_shipment(
            merchant, cod_amount=cod_amount, payment_type=PaymentType.COD, status=ShipmentStatus.DELIVERED
        )
        return await cod_ledger.open_collection(db_session, shipment.id)

    return _open


@pytest.mark.asyncio
async def test_short_collection_is_reported_but_not_blocked(db_session, open_cod):
    collection = await open_cod("500")
    cid = collection.id

    await cod_ledger.record_collection(db_session, cid, DRIVER, Decimal("480"))

    discrepancies = await cod_ledger.get_discrepancies(db_session)
    assert [(d.collection_id, d.discrepancy) for d in discrepancies] == [(cid, Decimal("20.00"))]

    verified = await cod_ledger.verify_collection(db_session, cid, verifier_id=7)
    assert verified.status == CodCollectionStatus.VERIFIED

    remittance = await cod_ledger.record_remittance(db_session, [cid], DRIVER)
    assert remittance.remitted_amount == Decimal("480.00")


@pytest.mark.asyncio
async def test_within_tolerance_is_not_a_discrepancy(db_session, open_cod):
    exact = await open_cod("100")
    penny = await open_cod("100")
    await cod_ledger.record_collection(db_session, exact.id, DRIVER, Decimal("100"))
    await cod_ledger.record_collection(db_session, penny.id, DRIVER, Decimal("99.99"))

    assert await cod_ledger.get_discrepancies(db_session) == []
    assert len(await cod_ledger.get_discrepancies(db_session, tolerance=Decimal("0"))) == 1


@pytest.mark.asyncio
async def test_collection_increments_driver_balance(db_session, open_cod):
    first = await open_cod("100")
    second = await open_cod("50")

    await cod_ledger.record_collection(db_session, first.id, DRIVER, Decimal("100"))
    await cod_ledger.record_collection(db_session, second.id, DRIVER, Decimal("50"), method="mobile_money")

    account = await cod_ledger.get_driver_account(db_session, DRIVER)
    assert account.balance == Decimal("150.00")
    assert account.pending_remittance == Decimal("0.00")


@pytest.mark.asyncio
async def test_collection_keeps_existing_account_balance(db_session, open_cod):
    db_session.add(DriverCashAccount(driver_id=DRIVER, balance=Decimal("25"), pending_remittance=Decimal("0")))
    await db_session.commit()
    collection = await open_cod("40")

    await cod_ledger.record_collection(db_session, collection.id, DRIVER, Decimal("40"))

    account = await cod_ledger.get_driver_account(db_session, DRIVER)
    assert account.balance == Decimal("65.00")


@pytest.mark.asyncio
async def test_remittance_uses_actual_amounts_not_declared(db_session, open_cod):
    first = await open_cod("100")
    second = await open_cod("60")
    await cod_ledger.record_collection(db_session, first.id, DRIVER, Decimal("100"))
    await cod_ledger.record_collection(db_session, second.id, DRIVER, Decimal("55"))
    await cod_ledger.verify_collection(db_session, first.id, verifier_id=7)

    remittance = await cod_ledger.record_remittance(
        db_session, [first.id, second.id], DRIVER, total_amount=Decimal("200"), reference="RM-1"
    )

    assert remittance.remitted_amount == Decimal("155.00")
    assert remittance.declared_amount == Decimal("200.00")
    assert remittance.collection_count == 2

    account = await cod_ledger.get_driver_account(db_session, DRIVER)
    assert account.balance == Decimal("0.00")
    assert account.pending_remittance == Decimal("0.00")
    assert account.last_remittance_at is not None

    for collection_id in (first.id, second.id):
        collection = await db_session.get(CodCollection, collection_id)
        assert collection.status == CodCollectionStatus.REMITTED
        assert collection.remittance_id == remittance.id


@pytest.mark.asyncio
async def test_remittance_ignores_other_drivers_and_pending(db_session, open_cod):
    mine = await open_cod("100")
    theirs = await open_cod("70")
    pending = await open_cod("30")
    await cod_ledger.record_collection(db_session, mine.id, DRIVER, Decimal("100"))
    await cod_ledger.record_collection(db_session, theirs.id, OTHER_DRIVER, Decimal("70"))

    remittance = await cod_ledger.record_remittance(db_session, [mine.id, theirs.id, pending.id], DRIVER)

    assert remittance.remitted_amount == Decimal("100.00")
    assert remittance.collection_count == 1
    other_account = await cod_ledger.get_driver_account(db_session, OTHER_DRIVER)
    assert other_account.balance == Decimal("70.00")


@pytest.mark.asyncio
async def test_remittance_with_nothing_remittable_fails(db_session, open_cod):
    collection = await open_cod("100")

    with pytest.raises(CodCollectionError):
        await cod_ledger.record_remittance(db_session, [collection.id], DRIVER)


@pytest.mark.asyncio
async def test_lifecycle_order_is_enforced(db_session, open_cod):
    collection = await open_cod("100")
    cid = collection.id

    with pytest.raises(CodCollectionError):
        await cod_ledger.verify_collection(db_session, cid, verifier_id=7)

    await cod_ledger.record_collection(db_session, cid, DRIVER, Decimal("100"))
    with pytest.raises(CodCollectionError):
        await cod_ledger.record_collection(db_session, cid, DRIVER, Decimal("100"))

    account = await cod_ledger.get_driver_account(db_session, DRIVER)
    assert account.balance == Decimal("100.00")


@pytest.mark.asyncio
async def test_verification_moves_cash_to_pending_remittance(db_session, open_cod):
    collection = await open_cod("80")
    await cod_ledger.record_collection(db_session, collection.id, DRIVER, Decimal("80"))

    await cod_ledger.verify_collection(db_session, collection.id, verifier_id=7)

    account = await cod_ledger.get_driver_account(db_session, DRIVER)
    assert account.pending_remittance == Decimal("80.00")
    assert account.balance == Decimal("80.00")


@pytest.mark.asyncio
async def test_open_collection_requires_cod(db_session, make_customer, make_shipment):
    customer = await make_customer()
    shipment = await make_shipment(customer, payment_type=PaymentType.PREPAID)

    with pytest.raises(CodCollectionError):
        await cod_ledger.open_collection(db_session, shipment.id)


@pytest.mark.asyncio
async def test_unknown_driver_account(db_session):
    with pytest.raises(ResourceNotFoundError):
        await cod_ledger.get_driver_account(db_session, 999)


@pytest.mark.asyncio
async def test_summary_and_driver_performance(db_session, open_cod):
    a = await open_cod("100")
    b = await open_cod("200")
    c = await open_cod("50")
    when = datetime(2026, 3, 10, 9)
    await cod_ledger.record_collection(db_session, a.id, DRIVER, Decimal("100"), collected_at=when)
    await cod_ledger.record_collection(db_session, b.id, DRIVER, Decimal("190"), method="card", collected_at=when)
    await cod_ledger.record_remittance(db_session, [a.id], DRIVER)

    start = datetime.utcnow() - timedelta(days=1)
    end = datetime.utcnow() + timedelta(days=1)
    summary = await cod_ledger.get_cod_summary(db_session, start, end)

    assert summary.total_collections == 3
    assert summary.total_expected == Decimal("350.00")
    assert summary.total_collected == Decimal("290.00")
    assert summary.total_remitted == Decimal("100.00")
    assert summary.outstanding_cod == Decimal("190.00")
    assert summary.status_counts["pending"] == 1
    assert {m.method: m.total_amount for m in summary.by_method} == {
        "cash": Decimal("100.00"), "card": Decimal("190.00")
    }

    performance = await cod_ledger.get_driver_cod_performance(
        db_session, DRIVER, datetime(2026, 3, 1), datetime(2026, 3, 31)
    )
    assert performance.total_collections == 2
    assert performance.average_collection == Decimal("145.00")
    assert performance.unremitted_amount == Decimal("190.00")
    assert performance.discrepancy_count == 1
    assert performance.account_balance == Decimal("190.00")
    assert [(d.count, d.amount) for d in performance.daily_breakdown] == [(2, Decimal("290.00"))]
    assert c.status == CodCollectionStatus.PENDING


@pytest.mark.asyncio
async def test_remittance_summary_by_driver(db_session, open_cod):
    a = await open_cod("100")
    b = await open_cod("60")
    c = await open_cod("40")
    await cod_ledger.record_collection(db_session, a.id, DRIVER, Decimal("100"))
    await cod_ledger.record_collection(db_session, b.id, DRIVER, Decimal("60"))
    await cod_ledger.record_collection(db_session, c.id, OTHER_DRIVER, Decimal("40"))
    await cod_ledger.record_remittance(db_session, [a.id], DRIVER, total_amount=Decimal("110"))
    await cod_ledger.record_remittance(db_session, [b.id], DRIVER)
    await cod_ledger.record_remittance(db_session, [c.id], OTHER_DRIVER, total_amount=Decimal("40"))

    start = datetime.utcnow() - timedelta(days=1)
    end = datetime.utcnow() + timedelta(days=1)
    summary = await cod_ledger.get_remittance_summary(db_session, start, end)

    assert summary.total_remittances == 3
    assert summary.total_remitted == Decimal("200.00")
    assert summary.average_remittance == Decimal("66.67")
    assert summary.total_declared == Decimal("150.00")
    assert summary.declared_variance == Decimal("10.00")
    assert [(d.driver_id, d.remittance_count, d.total_remitted) for d in summary.by_driver] == [
        (DRIVER, 2, Decimal("160.00")), (OTHER_DRIVER, 1, Decimal("40.00"))
    ]
    assert sum(d.count for d in summary.daily_breakdown) == 3

    single = await cod_ledger.get_remittance_summary(db_session, start, end, driver_id=OTHER_DRIVER)
    assert single.total_remittances == 1
    assert single.declared_variance == Decimal("0.00")


@pytest.mark.asyncio
async def test_reconciliation_report(db_session, open_cod):
    over = await open_cod("100")
    short = await open_cod("80")
    exact = await open_cod("50")
    await open_cod("30")
    await cod_ledger.record_collection(db_session, over.id, DRIVER, Decimal("105"))
    await cod_ledger.record_collection(db_session, short.id, DRIVER, Decimal("70"))
    await cod_ledger.record_collection(db_session, exact.id, DRIVER, Decimal("50"))
    await cod_ledger.record_remittance(db_session, [over.id, exact.id], DRIVER)

    start = datetime.utcnow() - timedelta(days=1)
    end = datetime.utcnow() + timedelta(days=1)
    report = await cod_ledger.get_reconciliation_report(db_session, start, end)

    assert report.total_cod_shipments == 4
    assert report.total_cod_value == Decimal("260.00")
    assert report.collected_amount == Decimal("225.00")
    assert report.remitted_amount == Decimal("155.00")
    assert report.outstanding_collection == Decimal("35.00")
    assert report.outstanding_remittance == Decimal("70.00")
    assert report.collection_rate == 86.54
    assert report.remittance_rate == 68.89
    assert [(i.type, i.shipment_id, i.difference) for i in report.discrepancies] == [
        ("over_collection", over.shipment_id, Decimal("5.00")),
        ("short_collection", short.shipment_id, Decimal("10.00")),
    ]


@pytest.mark.asyncio
async def test_aging_buckets_uncollected_cod(db_session, open_cod):
    as_of = datetime(2026, 6, 30, 12)
    fresh = await open_cod("10")
    month = await open_cod("20")
    old = await open_cod("70")
    for collection, created in (
        (fresh, as_of - timedelta(hours=2)),
        (month, as_of - timedelta(days=20)),
        (old, as_of - timedelta(days=120)),
    ):
        await db_session.execute(
            update(CodCollection).where(CodCollection.id == collection.id).values(created_at=created)
        )
    await db_session.commit()

    report = await cod_ledger.get_aging_report(db_session, as_of)

    assert report.total_outstanding_cod == Decimal("100.00")
    assert report.aging_breakdown["current"] == Decimal("10.00")
    assert report.aging_breakdown["1_30_days"] == Decimal("20.00")
    assert report.aging_breakdown["over_90_days"] == Decimal("70.00")
    assert report.aging_percentage["over_90_days"] == 70.0
