from __future__ import annotations

from ..extensions import db
from salonpos.time_utils import to_utc_z


SALE_STATUS_PAID = "paid"


def _money(value):
    return str(value) if value is not None else None


class Sale(db.Model):
    """
    Finalized sale (receipt).

    Append-only: a Sale row and its lines, batch allocations and commission
    records are written once, inside finalize_sale, and never updated.
    All amounts are stored at 2 decimal places.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "document_number", name="uq_sales_branch_docnum"),
        db.Index("ix_sales_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(64), nullable=False, index=True)

    # Human-readable number (e.g., "S-MAIN-0001") and the physical receipt number
    document_number = db.Column(db.String(64), nullable=False)
    receipt_number = db.Column(db.String(64), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_PAID, index=True)
    sales_type = db.Column(db.String(16), nullable=False)  # service, product, mixed

    client_id = db.Column(db.String(64), nullable=True, index=True)
    client_name = db.Column(db.String(255), nullable=False)
    appointment_id = db.Column(db.String(64), nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=True)
    promotion_code = db.Column(db.String(64), nullable=True)
    promotion_discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    loyalty_points_used = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)

    service_charge = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    payment_reference = db.Column(db.String(128), nullable=True)
    amount_received = db.Column(db.Numeric(12, 2), nullable=True)
    change_due = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    promotion = db.relationship("Promotion")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "document_number": self.document_number,
            "receipt_number": self.receipt_number,
            "status": self.status,
            "sales_type": self.sales_type,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "appointment_id": self.appointment_id,
            "subtotal": _money(self.subtotal),
            "discount_type": self.discount_type,
            "discount_value": _money(self.discount_value),
            "discount": _money(self.discount),
            "promotion_id": self.promotion_id,
            "promotion_code": self.promotion_code,
            "promotion_discount": _money(self.promotion_discount),
            "loyalty_points_used": self.loyalty_points_used,
            "loyalty_points_earned": self.loyalty_points_earned,
            "service_charge": _money(self.service_charge),
            "tax": _money(self.tax),
            "total": _money(self.total),
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "amount_received": _money(self.amount_received),
            "change_due": _money(self.change_due),
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class SaleLine(db.Model):
    """One service or product line of a finalized sale (line_type discriminates)."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    line_type = db.Column(db.String(16), nullable=False)  # service, product
    item_id = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    base_price = db.Column(db.Numeric(12, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    price = db.Column(db.Numeric(12, 2), nullable=False)

    # Service-only
    stylist_id = db.Column(db.String(64), nullable=True)
    client_type = db.Column(db.String(16), nullable=True)
    adjustment = db.Column(db.Numeric(12, 2), nullable=True)
    adjustment_reason = db.Column(db.String(255), nullable=True)

    # Product-only
    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)
    commission_percentage = db.Column(db.Numeric(5, 2), nullable=True)
    commissioner_id = db.Column(db.String(64), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.line_number"))

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "type": self.line_type,
            "item_id": self.item_id,
            "name": self.name,
            "base_price": _money(self.base_price),
            "quantity": self.quantity,
            "price": _money(self.price),
        }
        if self.line_type == "service":
            data.update({
                "stylist_id": self.stylist_id,
                "client_type": self.client_type,
                "adjustment": _money(self.adjustment),
                "adjustment_reason": self.adjustment_reason,
            })
        else:
            data.update({
                "unit_cost": _money(self.unit_cost),
                "commission_percentage": _money(self.commission_percentage),
                "commissioner_id": self.commissioner_id,
                "batch_allocations": [a.to_dict() for a in self.batch_allocations],
            })
        return data


class SaleBatchAllocation(db.Model):
    """Which batches a product line was drawn from."""
    __tablename__ = "sale_batch_allocations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)

    batch_number = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    expiration_date = db.Column(db.Date, nullable=True)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)

    sale_line = db.relationship("SaleLine", backref=db.backref("batch_allocations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "batch_number": self.batch_number,
            "quantity": self.quantity,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "unit_cost": _money(self.unit_cost),
        }


class CommissionRecord(db.Model):
    """
    Commission owed to a staff member for a product line.

    amount = unit_cost * quantity * percentage / 100
    """
    __tablename__ = "commission_records"
    __table_args__ = (
        db.Index("ix_commissions_commissioner_created", "commissioner_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False)
    branch_id = db.Column(db.String(64), nullable=False, index=True)

    product_id = db.Column(db.String(64), nullable=False)
    commissioner_id = db.Column(db.String(64), nullable=False, index=True)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    percentage = db.Column(db.Numeric(5, 2), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("commission_records", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "sale_line_id": self.sale_line_id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "commissioner_id": self.commissioner_id,
            "unit_cost": _money(self.unit_cost),
            "quantity": self.quantity,
            "percentage": _money(self.percentage),
            "amount": _money(self.amount),
            "created_at": to_utc_z(self.created_at),
        }
