"""
HTTP adapter tests.

Data is seeded through the shared session; every assertion goes through
the API and its error envelope.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from freight_ledger.app.models.finance_enums import PaymentType, ShipmentStatus


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["redis"] == "ok"


@pytest.mark.asyncio
async def test_credit_check_hard_block(client, make_customer):
    customer = await make_customer(credit_limit="1000", current_balance="850")

    response = await client.post(
        "/v1/finance/credit/check",
        json={"customer_id": customer.id, "shipment_value": "200"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["decision"] == "hard_block"
    assert data["allowed"] is False
    assert Decimal(data["available_credit"]) == Decimal("150")


@pytest.mark.asyncio
async def test_credit_check_unknown_customer(client):
    response = await client.post("/v1/finance/credit/check", json={"customer_id": 999, "shipment_value": "1"})

    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_credit_check_rejects_negative_value(client):
    response = await client.post("/v1/finance/credit/check", json={"customer_id": 1, "shipment_value": "-5"})

    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_hold_and_release_shipment(client, make_customer, make_shipment):
    customer = await make_customer()
    shipment = await make_shipment(customer)

    held = await client.post(
        f"/v1/finance/credit/shipments/{shipment.id}/hold",
        json={"reason": "Awaiting payment", "actor_id": 1},
    )
    released = await client.post(
        f"/v1/finance/credit/shipments/{shipment.id}/release",
        json={"released_by": 2, "notes": "Cleared"},
    )
    again = await client.post(
        f"/v1/finance/credit/shipments/{shipment.id}/release",
        json={"released_by": 2},
    )

    assert held.json()["credit_hold"] is True
    assert released.json()["credit_hold"] is False
    assert released.json()["credit_hold_released_by"] == 2
    assert again.status_code == 409
    assert again.json()["error_code"] == "ERR_CREDIT_001"


@pytest.mark.asyncio
async def test_branch_settlement_overlap_conflict(client, make_branch):
    branch = await make_branch()
    body = {
        "branch_id": branch.id,
        "period_start": "2026-03-01T00:00:00",
        "period_end": "2026-03-31T23:59:59",
    }

    created = await client.post("/v1/finance/branch-settlements", json=body)
    overlapping = await client.post(
        "/v1/finance/branch-settlements",
        json={**body, "period_start": "2026-03-20T00:00:00", "period_end": "2026-04-10T00:00:00"},
    )

    assert created.status_code == 201
    assert created.json()["status"] == "draft"
    assert overlapping.status_code == 409
    assert overlapping.json()["error_code"] == "ERR_SETTLEMENT_001"
    assert overlapping.json()["details"]["existing_settlement_id"] == created.json()["id"]


@pytest.mark.asyncio
async def test_branch_settlement_workflow(client, make_branch):
    branch = await make_branch()
    created = await client.post(
        "/v1/finance/branch-settlements",
        json={"branch_id": branch.id, "period_start": "2026-03-01T00:00:00", "period_end": "2026-03-31T00:00:00"},
    )
    settlement_id = created.json()["id"]

    early = await client.post(f"/v1/finance/branch-settlements/{settlement_id}/approve", json={"actor_id": 5})
    submitted = await client.post(f"/v1/finance/branch-settlements/{settlement_id}/submit", json={"actor_id": 1})
    anonymous = await client.post(f"/v1/finance/branch-settlements/{settlement_id}/approve", json={})
    approved = await client.post(f"/v1/finance/branch-settlements/{settlement_id}/approve", json={"actor_id": 5})
    paid = await client.post(
        f"/v1/finance/branch-settlements/{settlement_id}/pay", json={"payment_reference": "WIRE-9"}
    )
    cancel = await client.post(f"/v1/finance/branch-settlements/{settlement_id}/cancel", json={})
    unknown_action = await client.post(f"/v1/finance/branch-settlements/{settlement_id}/reopen", json={})

    assert early.status_code == 409
    assert early.json()["error_code"] == "ERR_STATE_001"
    assert submitted.json()["status"] == "submitted"
    assert anonymous.status_code == 409
    assert approved.json()["status"] == "approved"
    assert paid.json()["status"] == "paid"
    assert cancel.status_code == 409
    assert cancel.json()["error_code"] == "ERR_IMMUTABLE_001"
    assert unknown_action.status_code == 422


@pytest.mark.asyncio
async def test_merchant_settlement_flow(client, make_customer, make_shipment):
    merchant = await make_customer(payment_terms="cod")
    for cod, fee in (("300", "20"), ("200", "15")):
        await make_shipment(
            merchant, cod_amount=cod, shipping_cost=fee,
            payment_type=PaymentType.COD, status=ShipmentStatus.DELIVERED,
            delivered_at=datetime(2026, 3, 8),
        )
    period = {"period_start": "2026-03-01T00:00:00", "period_end": "2026-03-31T23:59:59"}

    created = await client.post("/v1/finance/merchant-settlements", json={"merchant_id": merchant.id, **period})
    settlement_id = created.json()["id"]
    empty = await client.post("/v1/finance/merchant-settlements", json={"merchant_id": merchant.id, **period})

    await client.post(f"/v1/finance/merchant-settlements/{settlement_id}/submit", json={"actor_id": 1})
    pending = await client.get("/v1/finance/merchant-settlements/pending")
    await client.post(f"/v1/finance/merchant-settlements/{settlement_id}/approve", json={"approver_id": 2})
    paid = await client.post(
        f"/v1/finance/merchant-settlements/{settlement_id}/pay",
        json={"payment_method": "bank_transfer", "payment_reference": "PO-77", "processed_by": 3},
    )
    statement = await client.get(f"/v1/finance/merchant-settlements/{settlement_id}/statement")

    assert created.status_code == 201
    assert created.json()["shipment_count"] == 2
    assert Decimal(created.json()["net_payable"]) == Decimal("465.00")
    assert len(created.json()["items"]) == 2
    assert empty.status_code == 409
    assert empty.json()["error_code"] == "ERR_SETTLEMENT_002"
    assert [s["id"] for s in pending.json()] == [settlement_id]
    assert paid.json()["status"] == "paid"
    assert paid.json()["payment_reference"] == "PO-77"
    assert statement.status_code == 200
    assert len(statement.json()["lines"]) == 2


@pytest.mark.asyncio
async def test_cod_flow_reports_discrepancy(client, make_customer, make_shipment):
    merchant = await make_customer(payment_terms="cod")
    shipment = await make_shipment(
        merchant, cod_amount="500", payment_type=PaymentType.COD, status=ShipmentStatus.DELIVERED
    )

    opened = await client.post(f"/v1/finance/cod/shipments/{shipment.id}/collection")
    collection_id = opened.json()["id"]
    collected = await client.post(
        f"/v1/finance/cod/collections/{collection_id}/collect", json={"driver_id": 8, "amount": "480"}
    )
    discrepancies = await client.get("/v1/finance/cod/discrepancies")
    remitted = await client.post(
        "/v1/finance/cod/remittances", json={"driver_id": 8, "collection_ids": [collection_id], "total_amount": "500"}
    )
    account = await client.get("/v1/finance/cod/drivers/8/account")

    assert opened.status_code == 201
    assert collected.json()["status"] == "collected"
    assert [(d["collection_id"], Decimal(d["discrepancy"])) for d in discrepancies.json()] == [
        (collection_id, Decimal("20"))
    ]
    assert remitted.status_code == 201
    assert Decimal(remitted.json()["remitted_amount"]) == Decimal("480")
    assert Decimal(remitted.json()["declared_amount"]) == Decimal("500")
    assert Decimal(account.json()["balance"]) == Decimal("0")


@pytest.mark.asyncio
async def test_cod_remittance_and_reconciliation_reports(client, make_customer, make_shipment):
    merchant = await make_customer(payment_terms="cod")
    shipment = await make_shipment(
        merchant, cod_amount="200", payment_type=PaymentType.COD, status=ShipmentStatus.DELIVERED
    )
    opened = await client.post(f"/v1/finance/cod/shipments/{shipment.id}/collection")
    collection_id = opened.json()["id"]
    await client.post(f"/v1/finance/cod/collections/{collection_id}/collect", json={"driver_id": 9, "amount": "200"})
    await client.post(
        "/v1/finance/cod/remittances", json={"driver_id": 9, "collection_ids": [collection_id], "total_amount": "210"}
    )
    period = {
        "start": (datetime.utcnow() - timedelta(days=1)).isoformat(),
        "end": (datetime.utcnow() + timedelta(days=1)).isoformat(),
    }

    summary = await client.get("/v1/finance/cod/remittances/summary", params=period)
    reconciliation = await client.get("/v1/finance/cod/reconciliation", params=period)

    assert summary.status_code == 200
    assert Decimal(summary.json()["declared_variance"]) == Decimal("10")
    assert [d["driver_id"] for d in summary.json()["by_driver"]] == [9]
    assert reconciliation.status_code == 200
    assert reconciliation.json()["total_cod_shipments"] == 1
    assert Decimal(reconciliation.json()["remitted_amount"]) == Decimal("200")
    assert reconciliation.json()["discrepancies"] == []


@pytest.mark.asyncio
async def test_convert_without_rate_is_unprocessable(client):
    response = await client.post(
        "/v1/finance/currency/convert", json={"amount": "10", "from_currency": "USD", "to_currency": "XAF"}
    )

    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_FX_001"


@pytest.mark.asyncio
async def test_manual_rate_then_convert(client):
    created = await client.post(
        "/v1/finance/currency/rates", json={"from_currency": "EUR", "to_currency": "USD", "rate": "1.08"}
    )
    converted = await client.post(
        "/v1/finance/currency/convert", json={"amount": "100", "from_currency": "EUR", "to_currency": "USD"}
    )
    refreshed = await client.post("/v1/finance/currency/refresh")

    assert created.status_code == 201
    assert created.json()["source"] == "manual"
    assert Decimal(converted.json()["converted"]) == Decimal("108.00")
    # No feed configured in tests
    assert refreshed.json()["updated"] == 0


@pytest.mark.asyncio
async def test_post_payment_and_sync(client, make_customer, make_shipment, make_transaction):
    customer = await make_customer()
    shipment = await make_shipment(customer, base_rate="90", tax_amount="10", total_amount="100")
    tx = await make_transaction("100", payment_method="card", shipment_id=shipment.id)

    posted = await client.post(f"/v1/finance/ledger/transactions/{tx.id}/post")
    refund = await client.post(f"/v1/finance/ledger/transactions/{tx.id}/refund", json={"amount": "150"})
    synced = await client.post("/v1/finance/ledger/sync")
    resynced = await client.post("/v1/finance/ledger/sync")
    stored = await client.get(f"/v1/finance/ledger/entries/PAY-{tx.id}")

    assert posted.status_code == 200
    assert posted.json()["balanced"] is True
    assert Decimal(posted.json()["total_debits"]) == Decimal("100")
    assert refund.status_code == 409
    assert refund.json()["error_code"] == "ERR_POSTING_001"
    assert synced.json()["posted"] == 3
    assert resynced.json()["posted"] == 0
    assert {e["status"] for e in stored.json()["entries"]} == {"POSTED"}


@pytest.mark.asyncio
async def test_unknown_ledger_reference(client):
    response = await client.get("/v1/finance/ledger/entries/PAY-404")

    assert response.status_code == 404
