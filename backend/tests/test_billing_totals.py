# Overview: Pytest coverage for bill totals arithmetic.

"""
Bill totals tests

Pure arithmetic, no database:
- subtotal is the exact sum of line prices
- discount always lands in [0, subtotal]
- total never goes negative, and only total is rounded
- loyalty redemption reduces the total point-for-unit
"""

from decimal import Decimal

import pytest

from salonpos.cart import ServiceLine
from salonpos.services.billing_service import compute_bill_totals
from conftest import product, service


class TestSubtotal:
    """subtotal == sum(item.price)"""

    def test_mixed_lines(self):
        items = [
            service(500),
            service(300, service_id="COLOR", adjustment=Decimal("-25.50")),
            product("SHAMPOO", "149.99", quantity=3),
        ]
        totals = compute_bill_totals(items)
        assert totals.subtotal == Decimal("500") + Decimal("274.50") + Decimal("449.97")

    def test_empty_cart(self):
        totals = compute_bill_totals([])
        assert totals.subtotal == 0
        assert totals.total == 0

    def test_product_price_is_base_times_quantity(self):
        line = product("WAX", "12.25", quantity=4)
        assert line.price == Decimal("49.00")

    def test_service_price_is_base_plus_adjustment(self):
        line = ServiceLine(service_id="CUT", name="Cut", base_price=Decimal("500"), adjustment=Decimal("75"))
        assert line.price == Decimal("575")


class TestDiscount:
    """discount is clamped to [0, subtotal]"""

    @pytest.mark.parametrize("value", [0, 50, 500, 5000, -20])
    def test_fixed_discount_clamped(self, value):
        totals = compute_bill_totals([service(500)], discount_type="fixed", discount_value=value)
        assert Decimal("0") <= totals.discount <= totals.subtotal

    def test_fixed_discount_larger_than_subtotal(self):
        totals = compute_bill_totals([service(100)], discount_type="fixed", discount_value=250)
        assert totals.discount == Decimal("100")
        assert totals.total == Decimal("0.00")

    def test_percentage_discount(self):
        totals = compute_bill_totals([service(400)], discount_type="percentage", discount_value=15)
        assert totals.discount == Decimal("60")
        assert totals.total == Decimal("340.00")

    def test_percentage_over_100_clamped(self):
        totals = compute_bill_totals([service(400)], discount_type="percentage", discount_value=150)
        assert totals.discount == Decimal("400")


class TestTotal:
    def test_scenario_a(self):
        """One 500 service, fixed 50 discount, flat tax 20 -> 470."""
        totals = compute_bill_totals(
            [service(500)],
            discount_type="fixed",
            discount_value=50,
            tax_amount=20,
            service_charge_rate=0,
            loyalty_points_used=0,
            promotion_discount=0,
        )
        assert totals.subtotal == Decimal("500")
        assert totals.discount == Decimal("50")
        assert totals.tax == Decimal("20")
        assert totals.total == Decimal("470.00")

    def test_tax_is_flat_amount(self):
        small = compute_bill_totals([service(100)], tax_amount=20)
        large = compute_bill_totals([service(1000)], tax_amount=20)
        assert small.total - Decimal("100") == large.total - Decimal("1000") == Decimal("20")

    def test_service_charge_applies_after_discount(self):
        totals = compute_bill_totals(
            [service(1000)], discount_value=200, service_charge_rate=Decimal("0.10"), promotion_discount=100
        )
        assert totals.after_discount == Decimal("700")
        assert totals.service_charge == Decimal("70.00")
        assert totals.total == Decimal("770.00")

    def test_promotion_discount_cannot_push_below_zero(self):
        totals = compute_bill_totals([service(100)], discount_value=60, promotion_discount=80, tax_amount=5)
        assert totals.after_discount == 0
        assert totals.total == Decimal("5.00")

    @pytest.mark.parametrize("points", [0, 10, 470])
    def test_redemption_reduces_total_exactly(self, points):
        base = compute_bill_totals([service(500)], discount_value=50, tax_amount=20)
        redeemed = compute_bill_totals([service(500)], discount_value=50, tax_amount=20, loyalty_points_used=points)
        assert base.total - redeemed.total == points

    def test_total_never_negative(self):
        totals = compute_bill_totals([service(100)], loyalty_points_used=10_000)
        assert totals.total == Decimal("0.00")

    def test_only_total_is_rounded(self):
        totals = compute_bill_totals(
            [service("100.00")], discount_type="percentage", discount_value="33.333", service_charge_rate="0.015"
        )
        # Intermediates keep full precision
        assert totals.discount == Decimal("33.33300")
        assert totals.service_charge == Decimal("66.66700") * Decimal("0.015")
        assert totals.total == Decimal("67.67")

    def test_half_up_rounding(self):
        totals = compute_bill_totals([service("10.005")])
        assert totals.total == Decimal("10.01")


class TestMalformedInput:
    """The calculator clamps; it never raises."""

    def test_garbage_numbers_treated_as_zero(self):
        totals = compute_bill_totals(
            [service(250)],
            discount_type="fixed",
            discount_value="abc",
            tax_amount=None,
            service_charge_rate=float("nan"),
            loyalty_points_used="lots",
            promotion_discount=float("inf"),
        )
        assert totals.discount == 0
        assert totals.tax == 0
        assert totals.service_charge == 0
        assert totals.promotion_discount == 0
        assert totals.total == Decimal("250.00")

    def test_negative_inputs_clamped(self):
        totals = compute_bill_totals(
            [service(250)], discount_value=-10, tax_amount=-5, service_charge_rate=-1, loyalty_points_used=-3
        )
        assert totals.total == Decimal("250.00")
