# Overview: FIFO batch allocation. Read-only previews plus the locked selection used at finalize.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from sqlalchemy import or_

from ..extensions import db
from ..models import Batch
from ..models.inventory import BATCH_STATUS_ACTIVE, USAGE_OTC
from ..cart import Allocation
from ..errors import ConcurrencyConflict, ValidationError
from ..time_utils import today
from .concurrency import lock_for_update


@dataclass(frozen=True)
class AllocationPreview:
    branch_id: str
    product_id: str
    requested: int
    allocations: tuple[Allocation, ...]
    shortfall: int

    @property
    def allocated(self) -> int:
        return sum(a.quantity for a in self.allocations)

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "requested": self.requested,
            "batches": [a.to_dict() for a in self.allocations],
            "shortfall": self.shortfall,
        }


def fifo_sort_key(batch):
    """Soonest expiration first, undated batches last, then oldest receipt."""
    return (
        batch.expiration_date is None,
        batch.expiration_date or date.max,
        batch.received_at,
        batch.id,
    )


def allocate_fifo(batches: Iterable, quantity: int) -> tuple[list[Allocation], int]:
    """
    Greedy FIFO over batch-like objects.

    Returns (allocations, shortfall). Batches are sorted here, so callers may
    pass them in any order.
    """
    still_needed = quantity
    allocations: list[Allocation] = []
    for batch in sorted(batches, key=fifo_sort_key):
        if still_needed <= 0:
            break
        if batch.remaining_quantity <= 0:
            continue
        taken = min(batch.remaining_quantity, still_needed)
        allocations.append(
            Allocation(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                quantity=taken,
                expiration_date=batch.expiration_date,
                unit_cost=Decimal(str(batch.unit_cost or 0)),
            )
        )
        still_needed -= taken
    return allocations, max(0, still_needed)


def _require_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", details={"quantity": quantity})
    return quantity


def available_batches_query(
    branch_id: str,
    product_id: str,
    *,
    usage_type: str | None = USAGE_OTC,
    as_of: date | None = None,
):
    """Active, non-expired batches with stock left. usage_type=None means any."""
    as_of = as_of or today()
    q = db.session.query(Batch).filter(
        Batch.branch_id == branch_id,
        Batch.product_id == product_id,
        Batch.remaining_quantity > 0,
        Batch.status == BATCH_STATUS_ACTIVE,
        or_(Batch.expiration_date.is_(None), Batch.expiration_date >= as_of),
    )
    if usage_type:
        q = q.filter(Batch.usage_type == usage_type)
    return q


def preview_batch_allocation(
    branch_id: str,
    product_id: str,
    quantity: int,
    *,
    usage_type: str | None = USAGE_OTC,
    as_of: date | None = None,
) -> AllocationPreview:
    """
    Read-only FIFO allocation preview. Takes no locks and writes nothing.

    A shortfall is reported, not raised; finalize decides what to do with it.
    """
    quantity = _require_quantity(quantity)
    batches = available_batches_query(branch_id, product_id, usage_type=usage_type, as_of=as_of).all()
    allocations, shortfall = allocate_fifo(batches, quantity)
    return AllocationPreview(
        branch_id=branch_id,
        product_id=product_id,
        requested=quantity,
        allocations=tuple(allocations),
        shortfall=shortfall,
    )


def select_batches_for_update(
    branch_id: str,
    product_id: str,
    quantity: int,
    *,
    usage_type: str | None = USAGE_OTC,
    as_of: date | None = None,
) -> tuple[list[Allocation], int, dict[int, Batch]]:
    """
    FIFO allocation over locked batch rows, for use inside a write transaction.

    Returns (allocations, shortfall, batches_by_id).
    """
    quantity = _require_quantity(quantity)
    batches = lock_for_update(
        available_batches_query(branch_id, product_id, usage_type=usage_type, as_of=as_of)
    ).all()
    allocations, shortfall = allocate_fifo(batches, quantity)
    return allocations, shortfall, {b.id: b for b in batches}


def verify_allocations(
    branch_id: str,
    product_id: str,
    allocations: Iterable[Allocation],
    quantity: int,
    *,
    usage_type: str | None = USAGE_OTC,
    as_of: date | None = None,
) -> dict[int, Batch]:
    """
    Re-check a previewed allocation against locked batch rows.

    Raises ValidationError when the allocation does not cover the line
    quantity, and ConcurrencyConflict when a batch no longer has the units
    the preview promised.
    """
    as_of = as_of or today()
    allocations = list(allocations)

    total = sum(a.quantity for a in allocations)
    if total != quantity or any(a.quantity <= 0 for a in allocations):
        raise ValidationError(
            f"Batch allocations for product {product_id} must cover exactly {quantity} units",
            details={"product_id": product_id, "quantity": quantity, "allocated": total},
        )

    needed: dict[int, int] = {}
    for a in allocations:
        needed[a.batch_id] = needed.get(a.batch_id, 0) + a.quantity

    batches = lock_for_update(
        db.session.query(Batch).filter(Batch.id.in_(list(needed.keys())))
    ).all()
    by_id = {b.id: b for b in batches}

    stale = []
    for batch_id, qty in needed.items():
        batch = by_id.get(batch_id)
        if (
            batch is None
            or batch.branch_id != branch_id
            or batch.product_id != product_id
            or (usage_type and batch.usage_type != usage_type)
            or batch.status != BATCH_STATUS_ACTIVE
            or batch.is_expired(as_of)
            or batch.remaining_quantity < qty
        ):
            stale.append({
                "batch_id": batch_id,
                "requested": qty,
                "remaining": batch.remaining_quantity if batch is not None else 0,
            })

    if stale:
        raise ConcurrencyConflict(
            f"Stock for product {product_id} changed since the allocation preview",
            details={"branch_id": branch_id, "product_id": product_id, "batches": stale},
        )
    return by_id
