from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..extensions import db
from ..models import CommissionRecord
from ..cart import ProductLine


@dataclass(frozen=True)
class CommissionQuote:
    product_id: str
    commissioner_id: str
    unit_cost: Decimal
    quantity: int
    percentage: Decimal
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "commissioner_id": self.commissioner_id,
            "unit_cost": str(self.unit_cost),
            "quantity": self.quantity,
            "percentage": str(self.percentage),
            "amount": str(self.amount),
        }


def compute_commission(item) -> CommissionQuote | None:
    """
    Commission for a product line: unit_cost * quantity * percentage / 100.

    None for service lines and for product lines without a commissioner.
    """
    if not isinstance(item, ProductLine) or not item.commissioner_id:
        return None
    unit_cost = Decimal(str(item.unit_cost))
    percentage = Decimal(str(item.commission_percentage))
    return CommissionQuote(
        product_id=item.product_id,
        commissioner_id=item.commissioner_id,
        unit_cost=unit_cost,
        quantity=item.quantity,
        percentage=percentage,
        amount=unit_cost * item.quantity * percentage / Decimal("100"),
    )


def record_commission(*, sale_id: int, sale_line_id: int, branch_id: str, item: ProductLine) -> CommissionRecord | None:
    """Persist the commission for a finalized product line (no commit)."""
    quote = compute_commission(item)
    if quote is None:
        return None
    record = CommissionRecord(
        sale_id=sale_id,
        sale_line_id=sale_line_id,
        branch_id=branch_id,
        product_id=quote.product_id,
        commissioner_id=quote.commissioner_id,
        unit_cost=quote.unit_cost,
        quantity=quote.quantity,
        percentage=quote.percentage,
        amount=quote.amount,
    )
    db.session.add(record)
    return record


def list_commissions(commissioner_id: str, *, branch_id: str | None = None, limit: int = 200) -> list[CommissionRecord]:
    q = db.session.query(CommissionRecord).filter_by(commissioner_id=commissioner_id)
    if branch_id:
        q = q.filter_by(branch_id=branch_id)
    return q.order_by(CommissionRecord.created_at.desc(), CommissionRecord.id.desc()).limit(limit).all()
