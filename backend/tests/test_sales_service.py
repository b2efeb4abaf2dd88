# Overview: Pytest coverage for checkout finalize atomicity and sale reads.

"""
Finalize tests

A finalized sale is all-or-nothing: stock, points, promotion usage,
commissions and the sale rows commit together or not at all.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from salonpos.cart import Allocation, ProductUsage
from salonpos.errors import (
    ConcurrencyConflict,
    FatalPersistenceError,
    InsufficientPointsError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from salonpos.models import (
    Batch,
    CommissionRecord,
    DocumentSequence,
    InventoryMovement,
    LedgerEvent,
    LoyaltyTransaction,
    Promotion,
    Sale,
    SaleBatchAllocation,
)
from salonpos.models.inventory import USAGE_SALON
from salonpos.services import commission_service, inventory_service, loyalty_service, sales_service
from salonpos.services.allocation_service import preview_batch_allocation
from salonpos.services.billing_service import preview_bill
from conftest import AS_OF, BRANCH, bill, product, service


def _refresh(db_session, model, id):
    db_session.expire_all()
    return db_session.get(model, id)


class TestFinalizeHappyPath:
    def test_mixed_sale_commits_everything(self, db_session, make_batch, make_loyalty_account, make_promotion):
        b1 = make_batch("SHAMPOO", 3, expiration_date=date(2025, 6, 1), batch_number="B1", unit_cost="40.00")
        b2 = make_batch("SHAMPOO", 10, expiration_date=date(2025, 7, 1), batch_number="B2", unit_cost="40.00")
        make_loyalty_account("C1", 100)
        promo = make_promotion("SAVE10")

        request = bill(
            service(500),
            product("SHAMPOO", 100, quantity=5, unit_cost=Decimal("40"), commission_percentage=Decimal("10"),
                    commissioner_id="STY1"),
            client_id="C1",
            discount_value=Decimal("50"),
            tax_amount=Decimal("20"),
            promotion_code="save10",
            loyalty_points_used=30,
            created_by="cashier-1",
        )

        sale = sales_service.finalize_sale(request, as_of=AS_OF)

        # 1000 - 50 - 100 (promo) + 20 tax - 30 points
        assert sale.total == Decimal("840.00")
        assert sale.document_number == "S-MAIN-0001"
        assert sale.sales_type == "mixed"
        assert sale.promotion_id == promo.id
        assert sale.promotion_discount == Decimal("100.00")
        assert sale.loyalty_points_used == 30
        assert sale.loyalty_points_earned == 8

        assert _refresh(db_session, Batch, b1.id).remaining_quantity == 0
        assert _refresh(db_session, Batch, b2.id).remaining_quantity == 8
        assert inventory_service.get_real_time_stock(BRANCH, "SHAMPOO") == 8

        allocations = db_session.query(SaleBatchAllocation).order_by(SaleBatchAllocation.id).all()
        assert [(a.batch_number, a.quantity) for a in allocations] == [("B1", 3), ("B2", 2)]

        commission = db_session.query(CommissionRecord).one()
        assert commission.amount == Decimal("20.00")
        assert commission.commissioner_id == "STY1"

        assert loyalty_service.get_loyalty_points("C1", BRANCH) == 100 - 30 + 8
        assert db_session.get(Promotion, promo.id).usage_count == 1

        events = {e.event_type for e in db_session.query(LedgerEvent).filter_by(sale_id=sale.id)}
        assert {"sale.finalized", "promotion.used", "loyalty.redeemed", "loyalty.earned"} <= events

    def test_scenario_a_cash(self, db_session):
        request = bill(
            service(500),
            discount_value=Decimal("50"),
            tax_amount=Decimal("20"),
            payment_method="cash",
            amount_received=Decimal("500"),
        )

        sale = sales_service.finalize_sale(request, as_of=AS_OF)

        assert sale.total == Decimal("470.00")
        assert sale.change_due == Decimal("30.00")
        assert sale.sales_type == "service"

    def test_document_numbers_increase(self, db_session):
        first = sales_service.finalize_sale(bill(service(100)), as_of=AS_OF)
        second = sales_service.finalize_sale(bill(service(100), receipt_number="R-0002"), as_of=AS_OF)
        assert (first.document_number, second.document_number) == ("S-MAIN-0001", "S-MAIN-0002")

    def test_walk_in_earns_nothing(self, db_session):
        sale = sales_service.finalize_sale(bill(service(1000)), as_of=AS_OF)
        assert sale.loyalty_points_earned == 0
        assert db_session.query(LoyaltyTransaction).count() == 0

    def test_previewed_allocation_is_honoured(self, db_session, make_batch):
        make_batch("GEL", 5, expiration_date=date(2025, 6, 1))
        later = make_batch("GEL", 5, expiration_date=date(2025, 8, 1))

        # Cashier picked the later batch explicitly
        chosen = (Allocation(
            batch_id=later.id, batch_number=later.batch_number, quantity=2, expiration_date=later.expiration_date
        ),)

        sales_service.finalize_sale(bill(product("GEL", 30, quantity=2, batch_allocations=chosen)), as_of=AS_OF)

        assert _refresh(db_session, Batch, later.id).remaining_quantity == 3
        assert inventory_service.get_real_time_stock(BRANCH, "GEL") == 8


class TestFinalizeRollsBack:
    def test_stock_shortfall_aborts_whole_sale(self, db_session, make_batch, make_loyalty_account):
        batch = make_batch("SHAMPOO", 2, expiration_date=date(2025, 6, 1))
        make_loyalty_account("C1", 100)

        request = bill(
            service(500),
            product("SHAMPOO", 100, quantity=3),
            client_id="C1",
            loyalty_points_used=50,
        )

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.finalize_sale(request, as_of=AS_OF)

        assert exc.value.available == 2
        assert "Only 2 units available" in exc.value.message
        assert db_session.query(Sale).count() == 0
        assert db_session.query(DocumentSequence).count() == 0
        assert db_session.query(InventoryMovement).count() == 0
        assert _refresh(db_session, Batch, batch.id).remaining_quantity == 2
        assert loyalty_service.get_loyalty_points("C1", BRANCH) == 100

    def test_scenario_c_points(self, db_session, make_loyalty_account):
        make_loyalty_account("C1", 100)

        with pytest.raises(InsufficientPointsError):
            sales_service.finalize_sale(
                bill(service(500), client_id="C1", loyalty_points_used=150), as_of=AS_OF
            )

        assert db_session.query(Sale).count() == 0
        assert loyalty_service.get_loyalty_points("C1", BRANCH) == 100

    def test_short_cash(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.finalize_sale(
                bill(service(500), payment_method="cash", amount_received=Decimal("499.99")), as_of=AS_OF
            )
        assert db_session.query(Sale).count() == 0

    def test_salon_use_stock_is_not_for_sale(self, db_session, make_batch):
        make_batch("DYE", 10, usage_type=USAGE_SALON)

        with pytest.raises(InsufficientStockError):
            sales_service.finalize_sale(bill(product("DYE", 80)), as_of=AS_OF)

    def test_allocation_not_covering_quantity(self, db_session, make_batch):
        make_batch("GEL", 5, expiration_date=date(2025, 6, 1))
        preview = preview_batch_allocation(BRANCH, "GEL", 2, as_of=AS_OF)

        with pytest.raises(ValidationError):
            sales_service.finalize_sale(
                bill(product("GEL", 30, quantity=3, batch_allocations=preview.allocations)), as_of=AS_OF
            )

    @pytest.mark.parametrize("module, name", [
        (commission_service, "record_commission"),
        (sales_service, "append_ledger_event"),
    ])
    def test_database_failure_mid_finalize(self, db_session, monkeypatch, make_batch, make_loyalty_account,
                                           make_promotion, module, name):
        batch = make_batch("SERUM", 5, expiration_date=date(2025, 6, 1))
        make_loyalty_account("C1", 100)
        promo = make_promotion("SAVE10")

        def broken_write(*args, **kwargs):
            raise IntegrityError("INSERT", {}, Exception("constraint failed"))

        monkeypatch.setattr(module, name, broken_write)

        with pytest.raises(FatalPersistenceError):
            sales_service.finalize_sale(
                bill(
                    service(500),
                    product("SERUM", 300, quantity=2, unit_cost=Decimal("150"),
                            commission_percentage=Decimal("10"), commissioner_id="STY1"),
                    client_id="C1",
                    loyalty_points_used=50,
                    promotion_code="SAVE10",
                ),
                as_of=AS_OF,
            )

        assert _refresh(db_session, Batch, batch.id).remaining_quantity == 5
        assert inventory_service.get_real_time_stock(BRANCH, "SERUM") == 5
        assert loyalty_service.get_loyalty_points("C1", BRANCH) == 100
        assert db_session.get(Promotion, promo.id).usage_count == 0
        assert db_session.query(Sale).count() == 0
        assert db_session.query(DocumentSequence).count() == 0
        assert db_session.query(InventoryMovement).count() == 0
        assert db_session.query(LoyaltyTransaction).count() == 0
        assert db_session.query(LedgerEvent).count() == 0


class TestFinalizeValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"client_name": "  "},
            {"receipt_number": ""},
            {"payment_method": "barter"},
            {"discount_type": "bogo"},
            {"loyalty_points_used": 10},
            {"loyalty_points_used": -1, "client_id": "C1"},
            {"branch_id": ""},
        ],
    )
    def test_rejected_before_any_write(self, db_session, overrides):
        with pytest.raises(ValidationError):
            sales_service.finalize_sale(bill(service(100), **overrides), as_of=AS_OF)
        assert db_session.query(Sale).count() == 0

    def test_empty_cart(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.finalize_sale(bill(), as_of=AS_OF)

    def test_transfer_client_needs_stylist(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.finalize_sale(bill(service(100, client_type="TRANSFER")), as_of=AS_OF)

    def test_transfer_client_with_stylist(self, db_session):
        sale = sales_service.finalize_sale(
            bill(service(100, client_type="TRANSFER", stylist_id="STY9")), as_of=AS_OF
        )
        assert sale.lines[0].stylist_id == "STY9"

    def test_bad_product_quantity(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.finalize_sale(bill(product("GEL", 30, quantity=0)), as_of=AS_OF)


class TestPromotionAtFinalize:
    def test_invalid_promotion_is_dropped(self, db_session, make_promotion):
        make_promotion("OLD", end_date=date(2025, 4, 1))

        sale = sales_service.finalize_sale(bill(service(500), promotion_code="OLD"), as_of=AS_OF)

        assert sale.promotion_id is None
        assert sale.promotion_discount == 0
        assert sale.total == Decimal("500.00")

    def test_usage_limit_reached_between_sales(self, db_session, make_promotion):
        promo = make_promotion("ONE", usage_limit_global=1)

        first = sales_service.finalize_sale(bill(service(200), promotion_code="ONE"), as_of=AS_OF)
        second = sales_service.finalize_sale(
            bill(service(200), promotion_code="ONE", receipt_number="R-0002"), as_of=AS_OF
        )

        assert first.promotion_id == promo.id
        assert second.promotion_id is None
        assert _refresh(db_session, Promotion, promo.id).usage_count == 1


class TestServiceProductUsage:
    def test_consumes_salon_use_stock(self, db_session, make_batch):
        make_batch("DYE", 5, usage_type=USAGE_SALON)
        make_batch("DYE", 5)

        sale = sales_service.finalize_sale(
            bill(service(800, service_id="COLOR", product_usage=(ProductUsage("DYE", 2),))), as_of=AS_OF
        )

        movement = db_session.query(InventoryMovement).filter_by(type="SERVICE_USE").one()
        assert movement.quantity_delta == -2
        assert movement.sale_id == sale.id
        assert inventory_service.get_real_time_stock(BRANCH, "DYE") == 8
        # Retail batch untouched
        retail = inventory_service.list_product_batches(BRANCH, "DYE", usage_type="otc")
        assert retail[0].remaining_quantity == 5

    def test_shortfall_does_not_block_sale(self, db_session, make_batch):
        make_batch("DYE", 1, usage_type=USAGE_SALON)

        sale = sales_service.finalize_sale(
            bill(service(800, service_id="COLOR", product_usage=(ProductUsage("DYE", 3),))), as_of=AS_OF
        )

        assert sale.id is not None
        movement = db_session.query(InventoryMovement).filter_by(type="SERVICE_USE").one()
        assert movement.quantity_delta == -1
        assert movement.note == "shortfall 2"


class TestScenarioD:
    def test_second_sale_on_stale_preview_conflicts(self, db_session, make_batch):
        """Two cashiers previewed the same last unit; only one sale wins."""
        batch = make_batch("SERUM", 1, expiration_date=date(2025, 9, 1))
        preview = preview_batch_allocation(BRANCH, "SERUM", 1, as_of=AS_OF)

        first = bill(product("SERUM", 300, batch_allocations=preview.allocations), receipt_number="R-A")
        second = bill(product("SERUM", 300, batch_allocations=preview.allocations), receipt_number="R-B")

        sales_service.finalize_sale(first, as_of=AS_OF)
        with pytest.raises(ConcurrencyConflict) as exc:
            sales_service.finalize_sale(second, as_of=AS_OF)

        assert exc.value.retryable is True
        assert _refresh(db_session, Batch, batch.id).remaining_quantity == 0
        assert inventory_service.get_real_time_stock(BRANCH, "SERUM") == 0
        assert db_session.query(Sale).count() == 1


class TestReads:
    def test_sale_detail(self, db_session, make_batch):
        make_batch("GEL", 4, expiration_date=date(2025, 6, 1), batch_number="LOT-1")
        sale = sales_service.finalize_sale(
            bill(
                service(250),
                product("GEL", 30, quantity=2, unit_cost=Decimal("12"), commission_percentage=Decimal("5"),
                        commissioner_id="STY2"),
            ),
            as_of=AS_OF,
        )

        detail = sales_service.get_sale_detail(sale.id)

        assert [line["type"] for line in detail["lines"]] == ["service", "product"]
        assert detail["lines"][1]["batch_allocations"][0]["batch_number"] == "LOT-1"
        assert detail["commission_records"][0]["amount"] == "1.20"
        assert detail["total"] == "310.00"

    def test_missing_sale(self, db_session):
        with pytest.raises(NotFoundError):
            sales_service.get_sale_detail(12345)

    def test_list_sales(self, db_session):
        sales_service.finalize_sale(bill(service(100)), as_of=AS_OF)
        sales_service.finalize_sale(bill(service(100), branch_id="NORTH"), as_of=AS_OF)
        assert len(sales_service.list_sales(BRANCH)) == 1


class TestPreviewBill:
    def test_preview_reports_without_writing(self, db_session, make_batch, make_loyalty_account):
        make_batch("GEL", 2, expiration_date=date(2025, 6, 1))
        make_loyalty_account("C1", 10)

        result = preview_bill(
            bill(service(100), product("GEL", 30, quantity=3), client_id="C1", loyalty_points_used=20,
                 promotion_code="NOPE"),
            as_of=AS_OF,
            accrual_rate=Decimal("0.01"),
        )

        assert result["has_shortfall"] is True
        assert result["lines"][1]["shortfall"] == 1
        assert result["promotion"]["code"] == "NOT_FOUND"
        assert result["loyalty"]["error"]["type"] == "InsufficientPointsError"
        assert db_session.query(Sale).count() == 0
