# Overview: Checkout finalize (one atomic transaction) and sale reads.

from __future__ import annotations

from datetime import date
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Sale, SaleLine, SaleBatchAllocation
from ..models.sales import SALE_STATUS_PAID
from ..cart import (
    BillRequest,
    CLIENT_TYPE_TRANSFER,
    CLIENT_TYPES,
    DISCOUNT_FIXED,
    DISCOUNT_PERCENTAGE,
    PAYMENT_CASH,
    PAYMENT_METHODS,
    ProductLine,
    ServiceLine,
)
from ..errors import (
    ConcurrencyConflict,
    InsufficientStockError,
    NotFoundError,
    PromotionError,
    ValidationError,
)
from ..time_utils import today
from . import allocation_service, commission_service, inventory_service, loyalty_service, promotions_service
from .billing_service import ZERO, totals_for_request
from .concurrency import begin_write, run_atomic
from .document_service import _next_document_number_inner
from .ledger_service import append_ledger_event


def validate_bill_request(request: BillRequest) -> None:
    """
    Checkout checks that need no database. Raises ValidationError on the
    first problem; finalize is never attempted.
    """
    if not request.branch_id:
        raise ValidationError("branch_id is required")
    if not request.items:
        raise ValidationError("Please add at least one service or product")
    if not (request.client_name or "").strip():
        raise ValidationError("Client name is required")
    if not (request.receipt_number or "").strip():
        raise ValidationError("Receipt number is required")
    if request.payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": request.payment_method},
        )
    if request.discount_type not in (DISCOUNT_FIXED, DISCOUNT_PERCENTAGE):
        raise ValidationError("discount_type must be 'fixed' or 'percentage'")

    points = request.loyalty_points_used
    if isinstance(points, bool) or not isinstance(points, int) or points < 0:
        raise ValidationError("loyalty_points_used must be a non-negative integer")
    if points and not request.client_id:
        raise ValidationError("Loyalty points can only be redeemed for a registered client")

    for index, item in enumerate(request.items, start=1):
        if isinstance(item, ServiceLine):
            if item.client_type not in CLIENT_TYPES:
                raise ValidationError(
                    f"Line {index}: client_type must be one of {', '.join(CLIENT_TYPES)}",
                    details={"line": index},
                )
            if item.client_type == CLIENT_TYPE_TRANSFER and not item.stylist_id:
                raise ValidationError(
                    f"Line {index}: a stylist is required for transfer clients",
                    details={"line": index, "service_id": item.service_id},
                )
            if item.price < 0:
                raise ValidationError(f"Line {index}: price cannot be negative", details={"line": index})
        elif isinstance(item, ProductLine):
            qty = item.quantity
            if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
                raise ValidationError(
                    f"Line {index}: quantity must be a positive integer",
                    details={"line": index, "product_id": item.product_id},
                )
            if item.base_price < 0:
                raise ValidationError(f"Line {index}: price cannot be negative", details={"line": index})
        else:
            raise ValidationError(f"Line {index}: unknown item type")


def _resolve_promotion(request: BillRequest, subtotal: Decimal, as_of: date):
    """Revalidate the promotion inside the transaction. Failure drops it."""
    if not request.promotion_code:
        return None, ZERO
    try:
        promo = promotions_service.get_valid_promotion(
            request.promotion_code, request.branch_id, request.client_id, as_of=as_of
        )
    except PromotionError as exc:
        current_app.logger.info(
            "Promotion %s dropped at finalize (%s): %s",
            request.promotion_code, exc.code, exc.message,
        )
        return None, ZERO
    discount = promotions_service.calculate_promotion_discount(
        promo, subtotal, request.services, request.products
    )
    return promo, discount


def _stock_snapshot(request: BillRequest, as_of: date) -> dict[int, bool]:
    """
    Lock-free read of stock before the write lock is taken.

    Maps the line number of every product line without a previewed
    allocation to whether stock covered it, counting earlier lines of the
    same product in this cart.
    """
    covered: dict[int, bool] = {}
    demand: dict[str, int] = {}
    for index, item in enumerate(request.items, start=1):
        if not isinstance(item, ProductLine) or item.batch_allocations:
            continue
        demand[item.product_id] = demand.get(item.product_id, 0) + item.quantity
        preview = allocation_service.preview_batch_allocation(
            request.branch_id, item.product_id, demand[item.product_id], as_of=as_of
        )
        covered[index] = preview.shortfall == 0
    return covered


def _allocate_line(request: BillRequest, item: ProductLine, as_of: date, *, covered_before_lock: bool = False):
    """
    Locked allocation for one product line. No oversell.

    A shortfall on stock that covered the line before the lock means a
    concurrent sale took it: ConcurrencyConflict. Otherwise the stock was
    never there: InsufficientStockError.
    """
    if item.batch_allocations:
        batches_by_id = allocation_service.verify_allocations(
            request.branch_id, item.product_id, item.batch_allocations, item.quantity, as_of=as_of
        )
        return list(item.batch_allocations), batches_by_id

    allocations, shortfall, batches_by_id = allocation_service.select_batches_for_update(
        request.branch_id, item.product_id, item.quantity, as_of=as_of
    )
    if shortfall and covered_before_lock:
        raise ConcurrencyConflict(
            f"Stock for product {item.product_id} was taken by a concurrent sale",
            details={
                "branch_id": request.branch_id,
                "product_id": item.product_id,
                "requested": item.quantity,
                "available": item.quantity - shortfall,
                "shortfall": shortfall,
            },
        )
    if shortfall:
        raise InsufficientStockError(
            branch_id=request.branch_id,
            product_id=item.product_id,
            requested=item.quantity,
            available=item.quantity - shortfall,
            message=f"Insufficient stock for {item.name}. Only {item.quantity - shortfall} units available.",
        )
    return allocations, batches_by_id


def finalize_sale(request: BillRequest, *, as_of: date | None = None, accrual_rate=None) -> Sale:
    """
    Turn a draft cart into an immutable Sale in one transaction.

    Inside the transaction, in order: revalidate the promotion, price the
    bill, check loyalty and cash, number the sale, allocate and decrement
    stock for every product line (previewed allocations are re-checked
    against locked batches, and stock that was there before the lock
    but not under it is a conflict), consume salon-use products, write lines,
    allocations and commissions, redeem and accrue points, bump promotion
    usage, append the ledger event, commit.

    Any failure rolls back every write. Raises a FinalizeError subclass:
    ValidationError, InsufficientStockError, InsufficientPointsError,
    RedemptionExceedsTotalError, ConcurrencyConflict (retryable) or
    FatalPersistenceError.
    """
    validate_bill_request(request)

    as_of = as_of or today()
    if accrual_rate is None:
        accrual_rate = current_app.config.get("LOYALTY_ACCRUAL_RATE", 0.01)

    covered = _stock_snapshot(request, as_of)

    def _op() -> Sale:
        begin_write()

        subtotal = totals_for_request(request).subtotal
        promo, promotion_discount = _resolve_promotion(request, subtotal, as_of)
        totals = totals_for_request(request, promotion_discount)

        if request.loyalty_points_used:
            loyalty_service.check_redemption(
                request.client_id, request.branch_id, request.loyalty_points_used, totals.pre_redemption_total
            )

        change_due = ZERO
        amount_received = request.amount_received
        if request.payment_method == PAYMENT_CASH:
            if amount_received is None or amount_received < totals.total:
                raise ValidationError(
                    "Amount received is less than the total",
                    details={"total": str(totals.total), "amount_received": str(amount_received)},
                )
            change_due = amount_received - totals.total

        sale = Sale(
            branch_id=request.branch_id,
            document_number=_next_document_number_inner(
                branch_id=request.branch_id, document_type="SALE", prefix="S"
            ),
            receipt_number=request.receipt_number.strip(),
            status=SALE_STATUS_PAID,
            sales_type=request.sales_type,
            client_id=request.client_id,
            client_name=request.client_name.strip(),
            appointment_id=request.appointment_id,
            subtotal=totals.subtotal,
            discount_type=request.discount_type,
            discount_value=request.discount_value,
            discount=totals.discount,
            promotion_id=promo.id if promo else None,
            promotion_code=promo.code if promo else None,
            promotion_discount=promotion_discount,
            loyalty_points_used=request.loyalty_points_used,
            loyalty_points_earned=0,
            service_charge=totals.service_charge,
            tax=totals.tax,
            total=totals.total,
            payment_method=request.payment_method,
            payment_reference=request.payment_reference,
            amount_received=amount_received,
            change_due=change_due,
            notes=request.notes or None,
            created_by=request.created_by,
        )
        db.session.add(sale)
        db.session.flush()

        product_usages = []
        for index, item in enumerate(request.items, start=1):
            line = SaleLine(
                sale_id=sale.id,
                line_number=index,
                line_type=item.kind,
                item_id=item.item_id,
                name=item.name,
                base_price=item.base_price,
                quantity=item.quantity,
                price=item.price,
            )
            if isinstance(item, ServiceLine):
                line.stylist_id = item.stylist_id
                line.client_type = item.client_type
                line.adjustment = item.adjustment
                line.adjustment_reason = item.adjustment_reason
                db.session.add(line)
                product_usages.extend(item.product_usage)
                continue

            line.unit_cost = item.unit_cost
            line.commission_percentage = item.commission_percentage
            line.commissioner_id = item.commissioner_id
            db.session.add(line)
            db.session.flush()

            allocations, batches_by_id = _allocate_line(
                request, item, as_of, covered_before_lock=covered.get(index, False)
            )
            inventory_service.apply_allocations(
                branch_id=request.branch_id,
                product_id=item.product_id,
                allocations=allocations,
                batches_by_id=batches_by_id,
                movement_type=inventory_service.MOVEMENT_SALE,
                sale_id=sale.id,
                reason=f"Sale {sale.document_number}",
                created_by=request.created_by,
                as_of=as_of,
            )
            for a in allocations:
                db.session.add(SaleBatchAllocation(
                    sale_id=sale.id,
                    sale_line_id=line.id,
                    batch_id=a.batch_id,
                    batch_number=a.batch_number,
                    quantity=a.quantity,
                    expiration_date=a.expiration_date,
                    unit_cost=batches_by_id[a.batch_id].unit_cost,
                ))

            commission_service.record_commission(
                sale_id=sale.id, sale_line_id=line.id, branch_id=request.branch_id, item=item
            )

        if product_usages:
            inventory_service._consume_service_products_inner(
                request.branch_id,
                product_usages,
                sale_id=sale.id,
                created_by=request.created_by,
                as_of=as_of,
            )

        if request.client_id:
            if request.loyalty_points_used:
                loyalty_service._redeem_inner(
                    client_id=request.client_id,
                    branch_id=request.branch_id,
                    points=request.loyalty_points_used,
                    pre_redemption_total=totals.pre_redemption_total,
                    sale_id=sale.id,
                    processed_by=request.created_by,
                )
            earned = loyalty_service._accrue_inner(
                client_id=request.client_id,
                branch_id=request.branch_id,
                qualifying_spend=totals.total,
                accrual_rate=accrual_rate,
                sale_id=sale.id,
                processed_by=request.created_by,
            )
            sale.loyalty_points_earned = earned.points if earned else 0

        if promo:
            promotions_service._track_promotion_usage_inner(promo.id, request.client_id)
            append_ledger_event(
                branch_id=request.branch_id,
                event_type="promotion.used",
                event_category="promotions",
                entity_type="promotion",
                entity_id=promo.id,
                actor_id=request.created_by,
                sale_id=sale.id,
                payload={"code": promo.code, "client_id": request.client_id, "discount": str(promotion_discount)},
            )

        append_ledger_event(
            branch_id=request.branch_id,
            event_type="sale.finalized",
            event_category="sales",
            entity_type="sale",
            entity_id=sale.id,
            actor_id=request.created_by,
            sale_id=sale.id,
            note=f"Sale {sale.document_number} receipt {sale.receipt_number}",
            payload={
                "total": str(totals.total),
                "sales_type": sale.sales_type,
                "items": len(request.items),
            },
        )

        db.session.commit()
        return sale

    try:
        return run_atomic(
            _op,
            attempts=current_app.config.get("FINALIZE_RETRY_ATTEMPTS", 3),
            backoff_base=current_app.config.get("FINALIZE_RETRY_BACKOFF", 0.1),
            operation="finalize_sale",
        )
    except ConcurrencyConflict as exc:
        current_app.logger.warning("finalize_sale conflict at branch %s: %s", request.branch_id, exc.message)
        raise


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError("Sale not found", {"sale_id": sale_id})
    return sale


def get_sale_detail(sale_id: int) -> dict:
    """Sale with its lines (and their batch allocations) and commission records."""
    sale = get_sale(sale_id)
    data = sale.to_dict()
    data["lines"] = [line.to_dict() for line in sale.lines]
    data["commission_records"] = [c.to_dict() for c in sale.commission_records]
    return data


def list_sales(branch_id: str, *, limit: int = 100) -> list[Sale]:
    return (
        db.session.query(Sale)
        .filter_by(branch_id=branch_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .limit(limit)
        .all()
    )
