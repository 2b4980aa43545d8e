"""HTTP endpoint tests."""

import pytest
from httpx import AsyncClient


async def _create_active_entry(client: AsyncClient) -> dict:
    resp = await client.post("/api/price-catalog", json={
        "base_price": 400,
        "quality_premiums": {"A": 50, "B": 25, "C": 0},
        "certifications": [{"name": "Organic", "premium": 20}],
        "activate": True,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.api
@pytest.mark.asyncio
class TestHealth:

    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


@pytest.mark.api
@pytest.mark.asyncio
class TestPriceCatalogApi:

    async def test_create_and_activate(self, client: AsyncClient, make_lot):
        await make_lot(quantity=2.5, original_quantity=2.5)

        body = await _create_active_entry(client)

        assert body["entry"]["status"] == "active"
        assert body["revaluation"]["updated"] == 1
        assert body["invoices"]["created"] == 1

        active = await client.get("/api/price-catalog/active")
        assert active.json()["id"] == body["entry"]["id"]

    async def test_no_active_entry(self, client: AsyncClient):
        resp = await client.get("/api/price-catalog/active")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"

    async def test_deactivate(self, client: AsyncClient):
        body = await _create_active_entry(client)
        entry_id = body["entry"]["id"]

        resp = await client.post(f"/api/price-catalog/{entry_id}/deactivate")

        assert resp.status_code == 200
        assert resp.json()["status"] == "inactive"
        assert (await client.get("/api/price-catalog/active")).status_code == 404

    async def test_negative_base_price_rejected(self, client: AsyncClient):
        resp = await client.post("/api/price-catalog", json={"base_price": -1})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.api
@pytest.mark.asyncio
class TestInvoicesApi:

    async def test_ensure_and_fetch(self, client: AsyncClient, make_lot):
        lot_id = await make_lot(price_per_ton=500000, total_cost=1000000)

        resp = await client.post(f"/api/invoices/ensure/{lot_id}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["created"] is True
        invoice = body["invoice"]
        assert invoice["total_amount"] == 1000000
        assert invoice["balance_due"] == 1000000

        again = (await client.post(f"/api/invoices/ensure/{lot_id}")).json()
        assert again["created"] is False
        assert again["invoice"]["id"] == invoice["id"]

        by_stock = await client.get(f"/api/invoices/by-stock/{lot_id}")
        assert by_stock.json()["invoice_number"] == invoice["invoice_number"]

        single = await client.get(f"/api/invoices/{invoice['id']}")
        assert single.status_code == 200

    async def test_ensure_ineligible_lot(self, client: AsyncClient, make_lot):
        lot_id = await make_lot(price_per_ton=0, total_cost=0)

        body = (await client.post(f"/api/invoices/ensure/{lot_id}")).json()

        assert body["invoice"] is None
        assert body["skipped_reason"] == "missing_price_data"

    async def test_ensure_unknown_lot(self, client: AsyncClient):
        resp = await client.post("/api/invoices/ensure/missing")
        assert resp.status_code == 404

    async def test_list_and_stats(self, client: AsyncClient, make_lot):
        for _ in range(2):
            await make_lot(price_per_ton=100000, total_cost=200000)
        await client.post("/api/reconciliation/invoices")

        listing = (await client.get("/api/invoices", params={"limit": 1})).json()
        assert listing["total"] == 2
        assert len(listing["items"]) == 1

        stats = (await client.get("/api/invoices/stats")).json()
        assert stats["invoice_count"] == 2
        assert stats["total_invoiced"] == 400000


@pytest.mark.api
@pytest.mark.asyncio
class TestPaymentsApi:

    async def test_payment(self, client: AsyncClient, make_lot):
        lot_id = await make_lot(price_per_ton=500000, total_cost=1000000)

        resp = await client.post(f"/api/payments/stock/{lot_id}", json={
            "amount": 400000, "method": "mobile_money",
        })

        assert resp.status_code == 200
        body = resp.json()
        assert body["applied"] is True
        assert body["invoice_created"] is True
        assert body["invoice_payment_status"] == "partial"

    async def test_overpayment(self, client: AsyncClient, make_lot):
        lot_id = await make_lot(price_per_ton=500000, total_cost=1000000)

        resp = await client.post(f"/api/payments/stock/{lot_id}", json={"amount": 2000000})

        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "INVALID_PAYMENT"

    async def test_consumed_lot(self, client: AsyncClient, make_lot):
        target = await make_lot(price_per_ton=500000, total_cost=1000000)
        lot_id = await make_lot(price_per_ton=500000, total_cost=1000000,
                                is_combined=True, combined_into_stock=target)

        body = (await client.post(f"/api/payments/stock/{lot_id}", json={"amount": 1})).json()

        assert body["applied"] is False
        assert body["skipped_reason"] == "combined"

    async def test_resubmitted_payment_is_not_paid_twice(self, client: AsyncClient, make_lot, load_lot):
        lot_id = await make_lot(price_per_ton=500000, total_cost=1000000)
        body = {"amount": 300000, "payment_id": "bank-ref-77"}

        first = (await client.post(f"/api/payments/stock/{lot_id}", json=body)).json()
        again = (await client.post(f"/api/payments/stock/{lot_id}", json=body)).json()

        assert first["payment_id"] == "bank-ref-77"
        assert (first["replayed"], again["replayed"]) == (False, True)
        assert again["invoice_amount_paid"] == 300000
        assert (await load_lot(lot_id)).amount_paid == 300000

    async def test_invalid_lot_record(self, client: AsyncClient, make_lot):
        lot_id = await make_lot(quality="Z", price_per_ton=500000, total_cost=1000000)

        resp = await client.post(f"/api/payments/stock/{lot_id}", json={"amount": 1000})

        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "INVALID_STOCK_LOT"


@pytest.mark.api
@pytest.mark.asyncio
class TestReconciliationApi:

    async def test_run_and_resolve(self, client: AsyncClient, make_lot):
        await make_lot(price_per_ton=100000, total_cost=200000)

        run = await client.post("/api/reconciliation/run")
        assert run.status_code == 201
        assert run.json()["by_type"] == {"missing_invoice": 1}

        alerts = (await client.get("/api/reconciliation/alerts", params={"status": "open"})).json()
        assert len(alerts) == 1

        resp = await client.patch(
            f"/api/reconciliation/alerts/{alerts[0]['id']}",
            json={"status": "dismissed", "resolution_note": "lot under review"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "dismissed"
        assert resp.json()["resolved_at"] is not None

    async def test_revalue_without_entry(self, client: AsyncClient, make_lot):
        await make_lot()
        body = (await client.post("/api/reconciliation/revalue")).json()
        assert body["active_entry_id"] is None
        assert body["processed"] == 0

    async def test_payment_catch_up_with_nothing_open(self, client: AsyncClient):
        body = (await client.post("/api/reconciliation/payments")).json()
        assert body == {"lots": 0, "recorded": 0, "failed": 0, "cancelled": False}
