# Overview: Bill arithmetic (pure totals) and the read-only draft-cart preview.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from ..cart import BillRequest, DISCOUNT_PERCENTAGE, PAYMENT_CASH, ProductLine
from ..errors import BillingError, LoyaltyError
from . import allocation_service, commission_service, loyalty_service, promotions_service

ZERO = Decimal("0")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class BillTotals:
    subtotal: Decimal
    discount: Decimal
    promotion_discount: Decimal
    after_discount: Decimal
    service_charge: Decimal
    tax: Decimal
    loyalty_points_used: int
    pre_redemption_total: Decimal
    total: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "discount": str(self.discount),
            "promotion_discount": str(self.promotion_discount),
            "after_discount": str(self.after_discount),
            "service_charge": str(self.service_charge),
            "tax": str(self.tax),
            "loyalty_points_used": self.loyalty_points_used,
            "pre_redemption_total": str(self.pre_redemption_total),
            "total": str(self.total),
        }


def _to_decimal(value) -> Decimal:
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return ZERO
    if not result.is_finite():
        return ZERO
    return result


def _non_negative(value) -> Decimal:
    return max(ZERO, _to_decimal(value))


def compute_bill_totals(
    items: Iterable,
    discount_type: str = "fixed",
    discount_value=0,
    tax_amount=0,
    service_charge_rate=0,
    loyalty_points_used=0,
    promotion_discount=0,
) -> BillTotals:
    """
    Combine line prices, discounts, service charge, tax and loyalty
    redemption into the payable total.

    Order is fixed:
        subtotal       = sum(item.price)
        discount       = subtotal * value / 100 (percentage) or value (fixed),
                         clamped to [0, subtotal]
        after_discount = max(0, subtotal - discount - promotion_discount)
        service_charge = after_discount * service_charge_rate
        tax            = tax_amount (flat)
        total          = max(0, after_discount + service_charge + tax - points)

    Only `total` is rounded (2 dp, half-up). Malformed or negative inputs are
    treated as 0; this function never raises.
    """
    subtotal = sum((_to_decimal(getattr(item, "price", None)) for item in items), ZERO)
    base = max(ZERO, subtotal)

    value = _non_negative(discount_value)
    if discount_type == DISCOUNT_PERCENTAGE:
        discount = base * value / Decimal("100")
    else:
        discount = value
    discount = min(max(ZERO, discount), base)

    promo = _non_negative(promotion_discount)
    after_discount = max(ZERO, base - discount - promo)

    service_charge = after_discount * _non_negative(service_charge_rate)
    tax = _non_negative(tax_amount)

    points = _non_negative(loyalty_points_used)
    pre_redemption_total = after_discount + service_charge + tax
    total = max(ZERO, pre_redemption_total - points).quantize(CENT, rounding=ROUND_HALF_UP)

    return BillTotals(
        subtotal=subtotal,
        discount=discount,
        promotion_discount=promo,
        after_discount=after_discount,
        service_charge=service_charge,
        tax=tax,
        loyalty_points_used=int(points),
        pre_redemption_total=pre_redemption_total,
        total=total,
    )


def totals_for_request(request: BillRequest, promotion_discount=0) -> BillTotals:
    return compute_bill_totals(
        request.items,
        discount_type=request.discount_type,
        discount_value=request.discount_value,
        tax_amount=request.tax_amount,
        service_charge_rate=request.service_charge_rate,
        loyalty_points_used=request.loyalty_points_used,
        promotion_discount=promotion_discount,
    )


def preview_bill(request: BillRequest, *, as_of: date | None = None, accrual_rate=None) -> dict:
    """
    Price a draft cart without touching anything.

    Promotion and loyalty problems are reported in the result instead of
    raised, and each product line gets a FIFO allocation preview (with any
    shortfall) and a commission preview. Nothing is locked or written.
    """
    promotion_result = None
    promotion_discount = ZERO
    if request.promotion_code:
        subtotal = totals_for_request(request).subtotal
        try:
            promo = promotions_service.get_valid_promotion(
                request.promotion_code, request.branch_id, request.client_id, as_of=as_of
            )
        except BillingError as exc:
            promotion_result = {"success": False, "error": exc.message, "code": exc.details.get("code")}
        else:
            promotion_discount = promotions_service.calculate_promotion_discount(
                promo, subtotal, request.services, request.products
            )
            promotion_result = {
                "success": True,
                "promotion": promo.to_dict(),
                "discount_amount": str(promotion_discount),
            }

    totals = totals_for_request(request, promotion_discount)

    loyalty = None
    if request.client_id:
        loyalty = {
            "balance": loyalty_service.get_loyalty_points(request.client_id, request.branch_id),
            "points_used": request.loyalty_points_used,
            "error": None,
        }
        try:
            loyalty_service.check_redemption(
                request.client_id, request.branch_id, request.loyalty_points_used, totals.pre_redemption_total
            )
        except LoyaltyError as exc:
            loyalty["error"] = exc.to_dict()
        loyalty["points_to_earn"] = loyalty_service.calculate_points_earned(totals.total, accrual_rate)

    lines = []
    has_shortfall = False
    for index, item in enumerate(request.items, start=1):
        line = {
            "line_number": index,
            "type": item.kind,
            "item_id": item.item_id,
            "name": item.name,
            "quantity": item.quantity,
            "price": str(item.price),
        }
        if isinstance(item, ProductLine):
            try:
                allocation = allocation_service.preview_batch_allocation(
                    request.branch_id, item.product_id, item.quantity, as_of=as_of
                )
            except BillingError as exc:
                line["allocation_error"] = exc.to_dict()
            else:
                line["batch_allocations"] = [a.to_dict() for a in allocation.allocations]
                line["shortfall"] = allocation.shortfall
                has_shortfall = has_shortfall or allocation.shortfall > 0
            quote = commission_service.compute_commission(item)
            line["commission"] = quote.to_dict() if quote else None
        lines.append(line)

    change_due = None
    if request.payment_method == PAYMENT_CASH and request.amount_received is not None:
        change_due = str(max(ZERO, _to_decimal(request.amount_received) - totals.total))

    return {
        "branch_id": request.branch_id,
        "sales_type": request.sales_type,
        "totals": totals.to_dict(),
        "promotion": promotion_result,
        "loyalty": loyalty,
        "lines": lines,
        "has_shortfall": has_shortfall,
        "change_due": change_due,
    }
