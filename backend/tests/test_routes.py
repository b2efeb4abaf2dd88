# Overview: HTTP-level tests for the billing, inventory and sales blueprints.

from datetime import date, timedelta
from decimal import Decimal

import pytest

from salonpos.models import Batch
from conftest import BRANCH, OTHER_BRANCH


def _finalize_payload(**overrides):
    payload = {
        "branch_id": BRANCH,
        "client_name": "Maria Santos",
        "receipt_number": "R-1001",
        "payment_method": "cash",
        "amount_received": "1000",
        "items": [
            {"type": "service", "service_id": "HAIRCUT", "name": "Haircut", "base_price": "500"},
        ],
        "discount_type": "fixed",
        "discount_value": "50",
        "tax_amount": "20",
    }
    payload.update(overrides)
    return payload


class TestBillingRoutes:
    def test_totals_scenario_a(self, client, db_session):
        resp = client.post("/api/billing/totals", json={
            "items": [{"type": "service", "service_id": "HAIRCUT", "base_price": 500}],
            "discount_type": "fixed",
            "discount_value": 50,
            "tax_amount": 20,
        })
        assert resp.status_code == 200
        assert resp.get_json()["total"] == "470.00"

    def test_totals_rejects_unknown_line_type(self, client, db_session):
        resp = client.post("/api/billing/totals", json={"items": [{"type": "voucher"}]})
        assert resp.status_code == 400
        assert resp.get_json()["type"] == "ValidationError"

    def test_preview_shows_shortfall(self, client, db_session, make_batch):
        make_batch("GEL", 1)
        resp = client.post("/api/billing/preview", json=_finalize_payload(items=[
            {"type": "product", "product_id": "GEL", "name": "Gel", "base_price": "30", "quantity": 2},
        ]))
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["has_shortfall"] is True
        assert body["lines"][0]["shortfall"] == 1

    @pytest.mark.parametrize("method, url", [
        ("post", "/api/billing/totals"),
        ("post", "/api/billing/preview"),
        ("post", "/api/promotions/validate"),
        ("post", "/api/promotions/discount"),
        ("post", "/api/promotions"),
        ("patch", "/api/promotions/1"),
        ("post", f"/api/inventory/{BRANCH}/expire"),
    ])
    def test_array_body_rejected(self, client, db_session, method, url):
        resp = getattr(client, method)(url, json=[{"code": "SAVE10"}])
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "JSON body must be an object"

    def test_validate_promotion(self, client, db_session, make_promotion):
        make_promotion("SAVE10")

        ok = client.post("/api/promotions/validate", json={"code": "save10", "branch_id": BRANCH})
        missing = client.post("/api/promotions/validate", json={"code": "NOPE", "branch_id": BRANCH})
        bad = client.post("/api/promotions/validate", json={"code": "SAVE10"})

        assert ok.status_code == 200 and ok.get_json()["success"] is True
        assert missing.status_code == 200 and missing.get_json()["code"] == "NOT_FOUND"
        assert bad.status_code == 400

    def test_promotion_discount(self, client, db_session, make_promotion):
        make_promotion("HALF", discount_value=50, max_discount=100)
        resp = client.post("/api/promotions/discount", json={"code": "HALF", "subtotal": "500"})
        assert resp.get_json()["discount_amount"] == "100.00"

        missing = client.post("/api/promotions/discount", json={"code": "NOPE", "subtotal": "500"})
        assert missing.status_code == 404

    def test_create_and_update_promotion(self, client, db_session):
        resp = client.post("/api/promotions", json={
            "code": "winter", "name": "Winter", "discount_type": "fixed", "discount_value": "75",
        })
        assert resp.status_code == 201
        promo_id = resp.get_json()["promotion"]["id"]

        dup = client.post("/api/promotions", json={"code": "WINTER", "name": "Again", "discount_value": "5"})
        assert dup.status_code == 400

        patched = client.patch(f"/api/promotions/{promo_id}", json={"is_active": False})
        assert patched.status_code == 200
        assert patched.get_json()["promotion"]["is_active"] is False

        assert client.patch("/api/promotions/999", json={"name": "x"}).status_code == 404

    def test_loyalty_balances(self, client, db_session, make_loyalty_account):
        make_loyalty_account("C1", 120, branch_id=BRANCH)
        make_loyalty_account("C1", 5, branch_id=OTHER_BRANCH)

        one = client.get(f"/api/loyalty/C1/{BRANCH}").get_json()
        every = client.get("/api/loyalty/C1").get_json()

        assert one == {"client_id": "C1", "branch_id": BRANCH, "points": 120}
        assert len(every["branches"]) == 2
        assert client.get(f"/api/loyalty/NOBODY/{BRANCH}").get_json()["points"] == 0


class TestInventoryRoutes:
    def test_receive_then_preview(self, client, db_session):
        expiry = (date.today() + timedelta(days=90)).isoformat()
        resp = client.post("/api/inventory/receive", json={
            "branch_id": BRANCH,
            "purchase_order_id": "PO-9",
            "items": [{"product_id": "SHAMPOO", "quantity": 6, "unit_cost": "40", "expiration_date": expiry}],
        })
        assert resp.status_code == 201
        assert resp.get_json()["batches"][0]["batch_number"] == "PO-9-BATCH-001"

        preview = client.get(f"/api/inventory/allocation-preview?branch_id={BRANCH}&product_id=SHAMPOO&quantity=4")
        assert preview.status_code == 200
        assert preview.get_json()["batches"][0]["quantity"] == 4

        stock = client.get(f"/api/inventory/{BRANCH}/products/SHAMPOO").get_json()
        assert stock["real_time_stock"] == 6

    def test_receive_rejects_bad_quantity(self, client, db_session):
        resp = client.post("/api/inventory/receive", json={
            "branch_id": BRANCH, "items": [{"product_id": "SHAMPOO", "quantity": 1.5}],
        })
        assert resp.status_code == 400

    def test_preview_requires_positive_quantity(self, client, db_session):
        resp = client.get(f"/api/inventory/allocation-preview?branch_id={BRANCH}&product_id=GEL&quantity=0")
        assert resp.status_code == 400

    def test_transfer(self, client, db_session, make_batch):
        make_batch("GEL", 5)
        resp = client.post("/api/inventory/transfer", json={
            "from_branch_id": BRANCH, "to_branch_id": OTHER_BRANCH, "product_id": "GEL", "quantity": 2,
        })
        assert resp.status_code == 201
        assert resp.get_json()["destination_batches"][0]["remaining_quantity"] == 2

        short = client.post("/api/inventory/transfer", json={
            "from_branch_id": BRANCH, "to_branch_id": OTHER_BRANCH, "product_id": "GEL", "quantity": 10,
        })
        assert short.status_code == 400
        assert short.get_json()["type"] == "InsufficientStockError"

    def test_expiry_endpoints(self, client, db_session, make_batch):
        make_batch("TONER", 3, expiration_date=date(2025, 4, 1), as_of=date(2025, 3, 1))
        make_batch("TONER", 3, expiration_date=date(2025, 5, 20), as_of=date(2025, 3, 1))

        expiring = client.get(f"/api/inventory/{BRANCH}/expiring?as_of=2025-05-01&days=30").get_json()
        expired = client.get(f"/api/inventory/{BRANCH}/expired?as_of=2025-05-01").get_json()
        assert expiring["count"] == 1
        assert expired["count"] == 1

        marked = client.post(f"/api/inventory/{BRANCH}/expire", json={"as_of": "2025-05-01"})
        assert marked.status_code == 200
        assert marked.get_json()["items"][0]["status"] == "expired"

        bad = client.get(f"/api/inventory/{BRANCH}/expired?as_of=yesterday")
        assert bad.status_code == 400


class TestSalesRoutes:
    def test_finalize_and_read_back(self, client, db_session):
        resp = client.post("/api/sales/finalize", json=_finalize_payload())
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["sale"]["total"] == "470.00"
        assert body["sale"]["change_due"] == "530.00"

        sale_id = body["sale_id"]
        fetched = client.get(f"/api/sales/{sale_id}")
        assert fetched.status_code == 200
        assert fetched.get_json()["sale"]["document_number"] == "S-MAIN-0001"

        listed = client.get(f"/api/sales?branch_id={BRANCH}").get_json()
        assert listed["count"] == 1

    def test_finalize_validation_error(self, client, db_session):
        resp = client.post("/api/sales/finalize", json=_finalize_payload(client_name=""))
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Client name is required"

    def test_finalize_oversell_rejected(self, client, db_session, make_batch):
        batch = make_batch("GEL", 1)
        resp = client.post("/api/sales/finalize", json=_finalize_payload(items=[
            {"type": "product", "product_id": "GEL", "name": "Gel", "base_price": "30", "quantity": 2},
        ], discount_value="0", tax_amount="0"))
        assert resp.status_code == 400
        assert resp.get_json()["details"]["shortfall"] == 1
        db_session.expire_all()
        assert db_session.get(Batch, batch.id).remaining_quantity == 1

    def test_stale_preview_conflict(self, client, db_session, make_batch):
        batch = make_batch("SERUM", 1)
        allocation = [{"batch_id": batch.id, "batch_number": batch.batch_number, "quantity": 1}]
        items = [{"type": "product", "product_id": "SERUM", "name": "Serum", "base_price": "300",
                  "batch_allocations": allocation}]

        first = client.post("/api/sales/finalize", json=_finalize_payload(items=items, amount_received="300",
                                                                        discount_value="0", tax_amount="0"))
        second = client.post("/api/sales/finalize", json=_finalize_payload(items=items, amount_received="300",
                                                                         discount_value="0", tax_amount="0",
                                                                         receipt_number="R-1002"))

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.get_json()["retryable"] is True

    def test_missing_sale(self, client, db_session):
        assert client.get("/api/sales/4040").status_code == 404

    def test_commissions_for_stylist(self, client, db_session, make_batch):
        make_batch("SERUM", 2)
        client.post("/api/sales/finalize", json=_finalize_payload(items=[
            {"type": "product", "product_id": "SERUM", "name": "Serum", "base_price": "300", "quantity": 2,
             "unit_cost": "150", "commission_percentage": "10", "commissioner_id": "STY1"},
        ], payment_method="card", amount_received=None, discount_value="0", tax_amount="0"))

        resp = client.get("/api/sales/commissions?commissioner_id=STY1")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["count"] == 1
        assert Decimal(body["items"][0]["amount"]) == Decimal("30")

        assert client.get(f"/api/sales/commissions?commissioner_id=STY1&branch_id={OTHER_BRANCH}").get_json()["count"] == 0
        assert client.get("/api/sales/commissions").status_code == 400


class TestSystemAndLedgerRoutes:
    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["database"]["status"] == "healthy"

    def test_version(self, client, db_session):
        assert client.get("/version").get_json()["api_version"]

    def test_ledger_lists_sale_events(self, client, db_session):
        client.post("/api/sales/finalize", json=_finalize_payload())

        resp = client.get(f"/api/ledger?branch_id={BRANCH}&event_type=sale.finalized")
        assert resp.status_code == 200
        items = resp.get_json()["items"]
        assert len(items) == 1
        assert items[0]["payload"]["total"] == "470.00"

        assert client.get("/api/ledger").status_code == 400
        assert client.get(f"/api/ledger?branch_id={BRANCH}&as_of=not-a-date").status_code == 400

    def test_movement_journal(self, client, db_session):
        client.post("/api/inventory/receive", json={
            "branch_id": BRANCH, "items": [{"product_id": "WAX", "quantity": 3}],
        })
        items = client.get(f"/api/ledger/movements?branch_id={BRANCH}&product_id=WAX").get_json()["items"]
        assert [(m["type"], m["quantity_delta"]) for m in items] == [("RECEIVE", 3)]
