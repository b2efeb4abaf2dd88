from __future__ import annotations

from ..extensions import db
from salonpos.time_utils import to_utc_z


APPLIES_TO_ALL = "all"
APPLIES_TO_SERVICES = "services"
APPLIES_TO_PRODUCTS = "products"
APPLIES_TO_SPECIFIC = "specific"
APPLIES_TO_CHOICES = (APPLIES_TO_ALL, APPLIES_TO_SERVICES, APPLIES_TO_PRODUCTS, APPLIES_TO_SPECIFIC)

PROMO_PERCENTAGE = "percentage"
PROMO_FIXED = "fixed"


class Promotion(db.Model):
    """
    Promotion code with eligibility and usage constraints.

    eligible_branches / eligible_clients: JSON lists, NULL means unrestricted.
    item_ids: JSON list of service/product ids when applies_to='specific'.
    usage_count is only ever changed by a conditional UPDATE
    (see promotions_service.track_promotion_usage).
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_promotions_code"),
        db.CheckConstraint("usage_count >= 0", name="ck_promotions_usage_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, index=True)  # stored upper-case

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False, default=PROMO_PERCENTAGE)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    max_discount = db.Column(db.Numeric(12, 2), nullable=True)

    applies_to = db.Column(db.String(16), nullable=False, default=APPLIES_TO_ALL)
    item_ids = db.Column(db.JSON, nullable=True)

    eligible_branches = db.Column(db.JSON, nullable=True)
    eligible_clients = db.Column(db.JSON, nullable=True)

    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    usage_limit_global = db.Column(db.Integer, nullable=True)
    usage_limit_per_client = db.Column(db.Integer, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": str(self.discount_value) if self.discount_value is not None else None,
            "max_discount": str(self.max_discount) if self.max_discount is not None else None,
            "applies_to": self.applies_to,
            "item_ids": self.item_ids,
            "eligible_branches": self.eligible_branches,
            "eligible_clients": self.eligible_clients,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "usage_limit_global": self.usage_limit_global,
            "usage_limit_per_client": self.usage_limit_per_client,
            "usage_count": self.usage_count,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PromotionClientUsage(db.Model):
    """Per-client redemption counter for a promotion."""
    __tablename__ = "promotion_client_usages"
    __table_args__ = (
        db.UniqueConstraint("promotion_id", "client_id", name="uq_promo_usage_promotion_client"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=False, index=True)
    client_id = db.Column(db.String(64), nullable=False, index=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    promotion = db.relationship("Promotion", backref=db.backref("client_usages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "promotion_id": self.promotion_id,
            "client_id": self.client_id,
            "usage_count": self.usage_count,
            "last_used_at": to_utc_z(self.last_used_at) if self.last_used_at else None,
        }
