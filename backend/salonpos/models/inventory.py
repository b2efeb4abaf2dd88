from __future__ import annotations

from ..extensions import db
from salonpos.time_utils import to_utc_z


BATCH_STATUS_ACTIVE = "active"
BATCH_STATUS_DEPLETED = "depleted"
BATCH_STATUS_EXPIRED = "expired"

USAGE_OTC = "otc"
USAGE_SALON = "salon-use"
USAGE_TYPES = (USAGE_OTC, USAGE_SALON)


def _money(value):
    return str(value) if value is not None else None


class Batch(db.Model):
    """
    A quantity of a product received together at a branch.

    Created on delivery receipt (or transfer-in), decremented on sale finalize
    and transfer-out. Never deleted: a batch is drained to zero and marked
    depleted.

    branch_id / product_id are opaque references into the external catalog.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.CheckConstraint("remaining_quantity >= 0", name="ck_batches_remaining_non_negative"),
        db.Index("ix_batches_branch_product", "branch_id", "product_id"),
        db.Index("ix_batches_branch_status", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=True)

    batch_number = db.Column(db.String(64), nullable=False, index=True)
    purchase_order_id = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    remaining_quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    expiration_date = db.Column(db.Date, nullable=True, index=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False)
    received_by = db.Column(db.String(64), nullable=True)

    usage_type = db.Column(db.String(16), nullable=False, default=USAGE_OTC)
    status = db.Column(db.String(16), nullable=False, default=BATCH_STATUS_ACTIVE, index=True)

    # Set when the batch was created by an inter-branch transfer
    source_batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Batch id={self.id} number={self.batch_number!r} branch={self.branch_id!r} "
            f"product={self.product_id!r} remaining={self.remaining_quantity}>"
        )

    def is_expired(self, as_of) -> bool:
        if self.status == BATCH_STATUS_EXPIRED:
            return True
        return self.expiration_date is not None and self.expiration_date < as_of

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "batch_number": self.batch_number,
            "purchase_order_id": self.purchase_order_id,
            "quantity": self.quantity,
            "remaining_quantity": self.remaining_quantity,
            "unit_cost": _money(self.unit_cost),
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "received_at": to_utc_z(self.received_at),
            "received_by": self.received_by,
            "usage_type": self.usage_type,
            "status": self.status,
            "source_batch_id": self.source_batch_id,
            "version_id": self.version_id,
        }


class StockRecord(db.Model):
    """
    Authoritative stock counter per (branch, product).

    INVARIANT: real_time_stock == SUM(remaining_quantity) over the non-expired
    batches of the same (branch, product). Only inventory_service writes it.
    """
    __tablename__ = "stock_records"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "product_id", name="uq_stock_records_branch_product"),
        db.CheckConstraint("real_time_stock >= 0", name="ck_stock_records_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=True)

    real_time_stock = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "real_time_stock": self.real_time_stock,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class InventoryMovement(db.Model):
    """
    Append-only journal of stock mutations.

    TYPES: RECEIVE, SALE, SERVICE_USE, TRANSFER_OUT, TRANSFER_IN, EXPIRE
    quantity_delta is signed; batch_deductions lists the batches touched.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inventory_movements_branch_product", "branch_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)

    batch_deductions = db.Column(db.JSON, nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    counterpart_branch_id = db.Column(db.String(64), nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "batch_deductions": self.batch_deductions,
            "sale_id": self.sale_id,
            "counterpart_branch_id": self.counterpart_branch_id,
            "reason": self.reason,
            "note": self.note,
            "created_by": self.created_by,
            "occurred_at": to_utc_z(self.occurred_at),
        }
