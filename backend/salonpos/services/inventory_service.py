# Overview: Stock ledger. Sole writer of batches' remaining quantities and StockRecord.real_time_stock.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Batch, StockRecord, InventoryMovement
from ..models.inventory import (
    BATCH_STATUS_ACTIVE,
    BATCH_STATUS_DEPLETED,
    BATCH_STATUS_EXPIRED,
    USAGE_OTC,
    USAGE_SALON,
    USAGE_TYPES,
)
from ..cart import Allocation, ProductUsage
from ..errors import InsufficientStockError, ValidationError
from ..time_utils import parse_iso_date, today, utcnow
from .allocation_service import fifo_sort_key, select_batches_for_update
from .concurrency import begin_write, lock_for_update, run_atomic
from .document_service import _next_document_number_inner
from .ledger_service import append_ledger_event
"""
Stock ledger invariants

- real_time_stock == SUM(remaining_quantity) over the non-expired batches of
  (branch_id, product_id), across usage types.
- Three mutation sources: delivery receipt, sale finalize (allocation commit,
  service product use), inter-branch transfer. Batch expiry also recomputes.
- Every mutation appends an InventoryMovement in the same transaction.
- Batches are never deleted; they drain to zero and become depleted.
"""


MOVEMENT_RECEIVE = "RECEIVE"
MOVEMENT_SALE = "SALE"
MOVEMENT_SERVICE_USE = "SERVICE_USE"
MOVEMENT_TRANSFER_OUT = "TRANSFER_OUT"
MOVEMENT_TRANSFER_IN = "TRANSFER_IN"
MOVEMENT_EXPIRE = "EXPIRE"


@dataclass(frozen=True)
class DeliveryItem:
    product_id: str
    quantity: int
    unit_cost: Decimal = Decimal("0")
    expiration_date: Optional[date] = None
    product_name: Optional[str] = None
    usage_type: str = USAGE_OTC
    batch_number: Optional[str] = None


@dataclass
class TransferResult:
    from_branch_id: str
    to_branch_id: str
    product_id: str
    quantity: int
    source_allocations: list[Allocation] = field(default_factory=list)
    destination_batches: list[Batch] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "from_branch_id": self.from_branch_id,
            "to_branch_id": self.to_branch_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "source_allocations": [a.to_dict() for a in self.source_allocations],
            "destination_batches": [b.to_dict() for b in self.destination_batches],
        }


def _retry_settings() -> dict:
    return {
        "attempts": current_app.config.get("FINALIZE_RETRY_ATTEMPTS", 3),
        "backoff_base": current_app.config.get("FINALIZE_RETRY_BACKOFF", 0.1),
    }


# =============================================================================
# Stock records
# =============================================================================

def get_stock_record(branch_id: str, product_id: str) -> StockRecord | None:
    return (
        db.session.query(StockRecord)
        .filter_by(branch_id=branch_id, product_id=product_id)
        .first()
    )


def get_real_time_stock(branch_id: str, product_id: str) -> int:
    record = get_stock_record(branch_id, product_id)
    return record.real_time_stock if record else 0


def _get_or_create_stock_record(branch_id: str, product_id: str, product_name: str | None = None) -> StockRecord:
    record = lock_for_update(
        db.session.query(StockRecord).filter_by(branch_id=branch_id, product_id=product_id)
    ).first()
    if record:
        if product_name and not record.product_name:
            record.product_name = product_name
        return record

    try:
        with db.session.begin_nested():
            record = StockRecord(
                branch_id=branch_id,
                product_id=product_id,
                product_name=product_name,
                real_time_stock=0,
            )
            db.session.add(record)
    except IntegrityError:
        record = lock_for_update(
            db.session.query(StockRecord).filter_by(branch_id=branch_id, product_id=product_id)
        ).one()
    return record


def sum_available_quantity(branch_id: str, product_id: str, *, as_of: date | None = None) -> int:
    """SUM(remaining_quantity) over non-expired batches, all usage types."""
    as_of = as_of or today()
    total = (
        db.session.query(func.coalesce(func.sum(Batch.remaining_quantity), 0))
        .filter(
            Batch.branch_id == branch_id,
            Batch.product_id == product_id,
            Batch.status != BATCH_STATUS_EXPIRED,
            or_(Batch.expiration_date.is_(None), Batch.expiration_date >= as_of),
        )
        .scalar()
    )
    return int(total or 0)


def recompute_stock_record(
    branch_id: str,
    product_id: str,
    *,
    as_of: date | None = None,
    product_name: str | None = None,
) -> StockRecord:
    """Set real_time_stock from the batches. Caller owns the transaction."""
    db.session.flush()
    record = _get_or_create_stock_record(branch_id, product_id, product_name)
    record.real_time_stock = sum_available_quantity(branch_id, product_id, as_of=as_of)
    db.session.flush()
    return record


def apply_allocations(
    *,
    branch_id: str,
    product_id: str,
    allocations: Iterable[Allocation],
    batches_by_id: dict[int, Batch],
    movement_type: str,
    sale_id: int | None = None,
    counterpart_branch_id: str | None = None,
    reason: str | None = None,
    note: str | None = None,
    created_by: str | None = None,
    as_of: date | None = None,
) -> InventoryMovement:
    """
    Commit an allocation: decrement each batch, recompute the stock record,
    journal the movement. Batches must already be locked by the caller.
    """
    allocations = list(allocations)
    deductions = []
    product_name = None
    for a in allocations:
        batch = batches_by_id[a.batch_id]
        if batch.remaining_quantity < a.quantity:
            # Locked rows cannot shrink under us; this is a caller bug
            raise InsufficientStockError(
                branch_id=branch_id,
                product_id=product_id,
                requested=a.quantity,
                available=batch.remaining_quantity,
            )
        batch.remaining_quantity -= a.quantity
        if batch.remaining_quantity == 0:
            batch.status = BATCH_STATUS_DEPLETED
        product_name = product_name or batch.product_name
        deductions.append({
            "batch_id": a.batch_id,
            "batch_number": a.batch_number,
            "quantity": a.quantity,
            "remaining_after": batch.remaining_quantity,
        })

    recompute_stock_record(branch_id, product_id, as_of=as_of, product_name=product_name)

    movement = InventoryMovement(
        branch_id=branch_id,
        product_id=product_id,
        type=movement_type,
        quantity_delta=-sum(a.quantity for a in allocations),
        batch_deductions=deductions,
        sale_id=sale_id,
        counterpart_branch_id=counterpart_branch_id,
        reason=reason,
        note=note,
        created_by=created_by,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


# =============================================================================
# Delivery receipt
# =============================================================================

def _validate_delivery_item(item: DeliveryItem, as_of: date) -> None:
    if not item.product_id:
        raise ValidationError("product_id is required")
    if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
        raise ValidationError(
            "quantity must be a positive integer",
            details={"product_id": item.product_id, "quantity": item.quantity},
        )
    try:
        cost = Decimal(str(item.unit_cost))
    except (InvalidOperation, ValueError):
        raise ValidationError("unit_cost must be a number", details={"product_id": item.product_id})
    if not cost.is_finite() or cost < 0:
        raise ValidationError("unit_cost must be >= 0", details={"product_id": item.product_id})
    if item.usage_type not in USAGE_TYPES:
        raise ValidationError(
            f"usage_type must be one of {', '.join(USAGE_TYPES)}",
            details={"product_id": item.product_id, "usage_type": item.usage_type},
        )
    if item.expiration_date is not None and item.expiration_date < as_of:
        raise ValidationError(
            "Cannot receive an already expired batch",
            details={"product_id": item.product_id, "expiration_date": item.expiration_date.isoformat()},
        )


def receive_delivery(
    branch_id: str,
    items: list[DeliveryItem],
    *,
    purchase_order_id: str | None = None,
    received_by: str | None = None,
    received_at: datetime | None = None,
) -> list[Batch]:
    """
    Receive a delivery: one new batch per item, stock records bumped.

    Batch numbers are "<PO>-BATCH-NNN" when the delivery has a purchase order,
    otherwise drawn from the branch's BATCH sequence.
    """
    if not branch_id:
        raise ValidationError("branch_id is required")
    if not items:
        raise ValidationError("A delivery needs at least one item")

    received_dt = received_at or utcnow()
    as_of = received_dt.date()
    for item in items:
        _validate_delivery_item(item, as_of)

    def _op():
        begin_write()
        batches = []
        for idx, item in enumerate(items, start=1):
            if item.batch_number:
                batch_number = item.batch_number
            elif purchase_order_id:
                batch_number = f"{purchase_order_id}-BATCH-{idx:03d}"
            else:
                batch_number = _next_document_number_inner(
                    branch_id=branch_id, document_type="BATCH", prefix="BATCH"
                )

            batch = Batch(
                branch_id=branch_id,
                product_id=item.product_id,
                product_name=item.product_name,
                batch_number=batch_number,
                purchase_order_id=purchase_order_id,
                quantity=item.quantity,
                remaining_quantity=item.quantity,
                unit_cost=Decimal(str(item.unit_cost)),
                expiration_date=item.expiration_date,
                received_at=received_dt,
                received_by=received_by,
                usage_type=item.usage_type,
                status=BATCH_STATUS_ACTIVE,
            )
            db.session.add(batch)
            db.session.flush()

            recompute_stock_record(branch_id, item.product_id, as_of=as_of, product_name=item.product_name)

            db.session.add(InventoryMovement(
                branch_id=branch_id,
                product_id=item.product_id,
                type=MOVEMENT_RECEIVE,
                quantity_delta=item.quantity,
                batch_deductions=[{"batch_id": batch.id, "batch_number": batch_number, "quantity": item.quantity}],
                reason=f"Delivery {purchase_order_id}" if purchase_order_id else "Delivery",
                created_by=received_by,
                occurred_at=received_dt,
            ))

            append_ledger_event(
                branch_id=branch_id,
                event_type="inventory.received",
                event_category="inventory",
                entity_type="batch",
                entity_id=batch.id,
                actor_id=received_by,
                occurred_at=received_dt,
                payload={
                    "product_id": item.product_id,
                    "batch_number": batch_number,
                    "quantity": item.quantity,
                    "purchase_order_id": purchase_order_id,
                },
            )
            batches.append(batch)

        db.session.commit()
        return batches

    return run_atomic(_op, operation="receive_delivery", **_retry_settings())


# =============================================================================
# Inter-branch transfer
# =============================================================================

def transfer_stock(
    *,
    from_branch_id: str,
    to_branch_id: str,
    product_id: str,
    quantity: int,
    transferred_by: str | None = None,
    note: str | None = None,
    as_of: date | None = None,
) -> TransferResult:
    """
    Move stock between branches in one transaction.

    Source batches are drained FIFO (any usage type). Each drained slice
    becomes a new destination batch that keeps the batch number, expiration
    date, unit cost and usage type of its source.
    """
    if not from_branch_id or not to_branch_id:
        raise ValidationError("from_branch_id and to_branch_id are required")
    if from_branch_id == to_branch_id:
        raise ValidationError("Cannot transfer stock to the same branch")
    if not product_id:
        raise ValidationError("product_id is required")

    def _op():
        begin_write()
        allocations, shortfall, batches_by_id = select_batches_for_update(
            from_branch_id, product_id, quantity, usage_type=None, as_of=as_of
        )
        if shortfall:
            raise InsufficientStockError(
                branch_id=from_branch_id,
                product_id=product_id,
                requested=quantity,
                available=quantity - shortfall,
            )

        out_movement = apply_allocations(
            branch_id=from_branch_id,
            product_id=product_id,
            allocations=allocations,
            batches_by_id=batches_by_id,
            movement_type=MOVEMENT_TRANSFER_OUT,
            counterpart_branch_id=to_branch_id,
            reason=f"Transfer to {to_branch_id}",
            note=note,
            created_by=transferred_by,
            as_of=as_of,
        )

        now = utcnow()
        new_batches = []
        for a in allocations:
            source = batches_by_id[a.batch_id]
            dest = Batch(
                branch_id=to_branch_id,
                product_id=product_id,
                product_name=source.product_name,
                batch_number=source.batch_number,
                purchase_order_id=source.purchase_order_id,
                quantity=a.quantity,
                remaining_quantity=a.quantity,
                unit_cost=source.unit_cost,
                expiration_date=source.expiration_date,
                received_at=now,
                received_by=transferred_by,
                usage_type=source.usage_type,
                status=BATCH_STATUS_ACTIVE,
                source_batch_id=source.id,
            )
            db.session.add(dest)
            new_batches.append(dest)
        db.session.flush()

        product_name = new_batches[0].product_name if new_batches else None
        recompute_stock_record(to_branch_id, product_id, as_of=as_of, product_name=product_name)

        db.session.add(InventoryMovement(
            branch_id=to_branch_id,
            product_id=product_id,
            type=MOVEMENT_TRANSFER_IN,
            quantity_delta=quantity,
            batch_deductions=[
                {"batch_id": b.id, "batch_number": b.batch_number, "quantity": b.quantity, "source_batch_id": b.source_batch_id}
                for b in new_batches
            ],
            counterpart_branch_id=from_branch_id,
            reason=f"Transfer from {from_branch_id}",
            note=note,
            created_by=transferred_by,
            occurred_at=now,
        ))

        append_ledger_event(
            branch_id=from_branch_id,
            event_type="inventory.transferred",
            event_category="inventory",
            entity_type="inventory_movement",
            entity_id=out_movement.id,
            actor_id=transferred_by,
            occurred_at=now,
            note=note,
            payload={
                "product_id": product_id,
                "quantity": quantity,
                "to_branch_id": to_branch_id,
                "destination_batch_ids": [b.id for b in new_batches],
            },
        )

        db.session.commit()
        return TransferResult(
            from_branch_id=from_branch_id,
            to_branch_id=to_branch_id,
            product_id=product_id,
            quantity=quantity,
            source_allocations=allocations,
            destination_batches=new_batches,
        )

    return run_atomic(_op, operation="transfer_stock", **_retry_settings())


# =============================================================================
# Salon-use consumption (inside finalize)
# =============================================================================

def _consume_service_products_inner(
    branch_id: str,
    usages: Iterable[ProductUsage],
    *,
    sale_id: int | None = None,
    created_by: str | None = None,
    as_of: date | None = None,
) -> list[dict]:
    """
    Best-effort FIFO consumption of salon-use batches for performed services.

    Takes what is available; a shortfall is recorded on the movement and in
    the returned summary but never raises.
    """
    wanted: dict[str, int] = {}
    for usage in usages:
        if usage.quantity > 0:
            wanted[usage.product_id] = wanted.get(usage.product_id, 0) + usage.quantity

    summary = []
    for product_id, qty in wanted.items():
        allocations, shortfall, batches_by_id = select_batches_for_update(
            branch_id, product_id, qty, usage_type=USAGE_SALON, as_of=as_of
        )
        consumed = qty - shortfall
        if allocations:
            apply_allocations(
                branch_id=branch_id,
                product_id=product_id,
                allocations=allocations,
                batches_by_id=batches_by_id,
                movement_type=MOVEMENT_SERVICE_USE,
                sale_id=sale_id,
                reason="Service product usage",
                note=f"shortfall {shortfall}" if shortfall else None,
                created_by=created_by,
                as_of=as_of,
            )
        if shortfall:
            current_app.logger.warning(
                "Salon-use stock short for product %s at branch %s: wanted %s, consumed %s",
                product_id, branch_id, qty, consumed,
            )
        summary.append({
            "product_id": product_id,
            "requested": qty,
            "consumed": consumed,
            "shortfall": shortfall,
        })
    return summary


# =============================================================================
# Expiry
# =============================================================================

def mark_expired_batches(branch_id: str, *, as_of: date | None = None, actor_id: str | None = None) -> list[Batch]:
    """
    Flip active batches whose expiration date has passed to 'expired' and
    drop them out of the stock records.
    """
    as_of = parse_iso_date(as_of) or today()

    def _op():
        begin_write()
        batches = lock_for_update(
            db.session.query(Batch).filter(
                Batch.branch_id == branch_id,
                Batch.status == BATCH_STATUS_ACTIVE,
                Batch.expiration_date.isnot(None),
                Batch.expiration_date < as_of,
            )
        ).all()
        if not batches:
            db.session.rollback()
            return []

        now = utcnow()
        by_product: dict[str, list[Batch]] = {}
        for batch in batches:
            batch.status = BATCH_STATUS_EXPIRED
            by_product.setdefault(batch.product_id, []).append(batch)

        for product_id, expired in by_product.items():
            before = get_real_time_stock(branch_id, product_id)
            record = recompute_stock_record(branch_id, product_id, as_of=as_of)
            db.session.add(InventoryMovement(
                branch_id=branch_id,
                product_id=product_id,
                type=MOVEMENT_EXPIRE,
                quantity_delta=record.real_time_stock - before,
                batch_deductions=[
                    {"batch_id": b.id, "batch_number": b.batch_number, "quantity": b.remaining_quantity}
                    for b in expired
                ],
                reason="Batch expired",
                created_by=actor_id,
                occurred_at=now,
            ))
            for b in expired:
                append_ledger_event(
                    branch_id=branch_id,
                    event_type="batch.expired",
                    event_category="inventory",
                    entity_type="batch",
                    entity_id=b.id,
                    actor_id=actor_id,
                    occurred_at=now,
                    payload={
                        "product_id": product_id,
                        "batch_number": b.batch_number,
                        "remaining_quantity": b.remaining_quantity,
                        "expiration_date": b.expiration_date.isoformat(),
                    },
                )

        db.session.commit()
        return batches

    return run_atomic(_op, operation="mark_expired_batches", **_retry_settings())


def get_expiring_batches(
    branch_id: str,
    *,
    days_ahead: int | None = None,
    as_of: date | None = None,
) -> list[Batch]:
    """Active batches with stock that expire within the next days_ahead days."""
    as_of = parse_iso_date(as_of) or today()
    if days_ahead is None:
        days_ahead = current_app.config.get("EXPIRING_BATCH_WINDOW_DAYS", 30)
    if days_ahead < 0:
        raise ValidationError("days_ahead must be >= 0")
    horizon = as_of + timedelta(days=days_ahead)
    batches = (
        db.session.query(Batch)
        .filter(
            Batch.branch_id == branch_id,
            Batch.status == BATCH_STATUS_ACTIVE,
            Batch.remaining_quantity > 0,
            Batch.expiration_date.isnot(None),
            Batch.expiration_date >= as_of,
            Batch.expiration_date <= horizon,
        )
        .all()
    )
    return sorted(batches, key=fifo_sort_key)


def get_expired_batches(branch_id: str, *, as_of: date | None = None) -> list[Batch]:
    """Batches with stock left that are past their date (marked or not)."""
    as_of = parse_iso_date(as_of) or today()
    batches = (
        db.session.query(Batch)
        .filter(
            Batch.branch_id == branch_id,
            Batch.remaining_quantity > 0,
            or_(
                Batch.status == BATCH_STATUS_EXPIRED,
                Batch.expiration_date < as_of,
            ),
        )
        .all()
    )
    return sorted(batches, key=fifo_sort_key)


# =============================================================================
# Reads
# =============================================================================

def list_product_batches(
    branch_id: str,
    product_id: str,
    *,
    include_empty: bool = False,
    usage_type: str | None = None,
) -> list[Batch]:
    """Batches of a product in FIFO consumption order."""
    q = db.session.query(Batch).filter_by(branch_id=branch_id, product_id=product_id)
    if not include_empty:
        q = q.filter(Batch.remaining_quantity > 0)
    if usage_type:
        q = q.filter(Batch.usage_type == usage_type)
    return sorted(q.all(), key=fifo_sort_key)


def list_inventory_movements(
    branch_id: str,
    *,
    product_id: str | None = None,
    sale_id: int | None = None,
    limit: int = 200,
) -> list[InventoryMovement]:
    q = db.session.query(InventoryMovement).filter_by(branch_id=branch_id)
    if product_id:
        q = q.filter_by(product_id=product_id)
    if sale_id is not None:
        q = q.filter_by(sale_id=sale_id)
    return q.order_by(InventoryMovement.occurred_at.desc(), InventoryMovement.id.desc()).limit(limit).all()
