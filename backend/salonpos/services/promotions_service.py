from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Promotion, PromotionClientUsage
from ..models.promotions import (
    APPLIES_TO_ALL,
    APPLIES_TO_CHOICES,
    APPLIES_TO_PRODUCTS,
    APPLIES_TO_SERVICES,
    APPLIES_TO_SPECIFIC,
    PROMO_FIXED,
    PROMO_PERCENTAGE,
)
from ..cart import ProductLine, ServiceLine
from ..errors import (
    ConcurrencyConflict,
    NotFoundError,
    PromotionError,
    ValidationError,
    PROMO_BRANCH_INELIGIBLE,
    PROMO_CLIENT_INELIGIBLE,
    PROMO_EXPIRED,
    PROMO_INACTIVE,
    PROMO_NOT_FOUND,
    PROMO_USAGE_EXCEEDED,
)
from ..time_utils import parse_iso_date, today, utcnow
from .concurrency import begin_write, commit_with_retry, run_atomic


def normalize_code(code) -> str:
    return str(code or "").strip().upper()


def get_promotion_by_code(code: str) -> Promotion | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    return db.session.query(Promotion).filter_by(code=normalized).first()


def get_client_usage_count(promotion_id: int, client_id: str | None) -> int:
    if not client_id:
        return 0
    count = (
        db.session.query(PromotionClientUsage.usage_count)
        .filter_by(promotion_id=promotion_id, client_id=client_id)
        .scalar()
    )
    return count or 0


def get_valid_promotion(
    code: str,
    branch_id: str,
    client_id: str | None = None,
    *,
    as_of: date | None = None,
) -> Promotion:
    """
    Run the promotion checks in order and return the promotion, or raise a
    PromotionError carrying the first failing check's code.
    """
    as_of = as_of or today()
    normalized = normalize_code(code)

    promo = get_promotion_by_code(normalized)
    if not promo:
        raise PromotionError(PROMO_NOT_FOUND, "Invalid promotion code", {"promotion_code": normalized})

    if not promo.is_active:
        raise PromotionError(PROMO_INACTIVE, "This promotion is not active", {"promotion_code": promo.code})

    # Not yet started is outside the date range too
    if promo.start_date and as_of < promo.start_date:
        raise PromotionError(
            PROMO_EXPIRED,
            "This promotion has not started yet",
            {"promotion_code": promo.code, "start_date": promo.start_date.isoformat()},
        )

    if promo.end_date and as_of > promo.end_date:
        raise PromotionError(
            PROMO_EXPIRED,
            "This promotion has expired",
            {"promotion_code": promo.code, "end_date": promo.end_date.isoformat()},
        )

    if promo.eligible_branches and branch_id not in promo.eligible_branches:
        raise PromotionError(
            PROMO_BRANCH_INELIGIBLE,
            "This promotion is not valid for this branch",
            {"promotion_code": promo.code, "branch_id": branch_id},
        )

    if promo.eligible_clients and client_id not in promo.eligible_clients:
        raise PromotionError(
            PROMO_CLIENT_INELIGIBLE,
            "This promotion is not available for this client",
            {"promotion_code": promo.code, "client_id": client_id},
        )

    if promo.usage_limit_global is not None and promo.usage_count >= promo.usage_limit_global:
        raise PromotionError(
            PROMO_USAGE_EXCEEDED,
            "This promotion has reached its usage limit",
            {"promotion_code": promo.code, "usage_count": promo.usage_count, "usage_limit": promo.usage_limit_global},
        )

    if promo.usage_limit_per_client is not None:
        # Per-client limits cannot be enforced for walk-ins
        if not client_id:
            raise PromotionError(
                PROMO_CLIENT_INELIGIBLE,
                "This promotion requires a registered client",
                {"promotion_code": promo.code},
            )
        used = get_client_usage_count(promo.id, client_id)
        if used >= promo.usage_limit_per_client:
            raise PromotionError(
                PROMO_USAGE_EXCEEDED,
                "You have already used this promotion",
                {"promotion_code": promo.code, "client_usage_count": used, "usage_limit": promo.usage_limit_per_client},
            )

    return promo


def validate_promotion_code(
    code: str,
    branch_id: str,
    client_id: str | None = None,
    *,
    as_of: date | None = None,
) -> dict:
    """
    Non-raising validation for quote/preview callers.

    Returns {"success": True, "promotion": {...}} or
    {"success": False, "error": message, "code": error_code}.
    """
    try:
        promo = get_valid_promotion(code, branch_id, client_id, as_of=as_of)
    except PromotionError as exc:
        return {"success": False, "error": exc.message, "code": exc.code}
    return {"success": True, "promotion": promo.to_dict()}


def _eligible_amount(promotion: Promotion, services: Iterable[ServiceLine], products: Iterable[ProductLine]) -> Decimal:
    services = list(services)
    products = list(products)
    applies_to = promotion.applies_to or APPLIES_TO_ALL

    if applies_to == APPLIES_TO_SERVICES:
        lines = services
    elif applies_to == APPLIES_TO_PRODUCTS:
        lines = products
    elif applies_to == APPLIES_TO_SPECIFIC:
        item_ids = set(promotion.item_ids or [])
        lines = [line for line in services + products if line.item_id in item_ids]
    else:
        lines = services + products

    return sum((Decimal(line.price) for line in lines), Decimal("0"))


def calculate_promotion_discount(
    promotion: Promotion,
    subtotal,
    services: Iterable[ServiceLine] = (),
    products: Iterable[ProductLine] = (),
) -> Decimal:
    """
    Discount a promotion gives on a cart.

    Percentage and fixed amounts apply to the promotion's scope (whole cart,
    services, products, or listed items). The result is clamped to
    [0, min(eligible amount, subtotal, max_discount)].
    """
    subtotal = max(Decimal("0"), Decimal(str(subtotal)))
    services = list(services)
    products = list(products)
    if services or products:
        base = min(_eligible_amount(promotion, services, products), subtotal)
    elif (promotion.applies_to or APPLIES_TO_ALL) == APPLIES_TO_ALL:
        base = subtotal
    else:
        base = Decimal("0")

    value = Decimal(str(promotion.discount_value or 0))
    if promotion.discount_type == PROMO_PERCENTAGE:
        discount = base * value / Decimal("100")
    else:
        discount = value

    cap = base
    if promotion.max_discount is not None:
        cap = min(cap, Decimal(str(promotion.max_discount)))
    return max(Decimal("0"), min(discount, cap))


def _track_promotion_usage_inner(promotion_id: int, client_id: str | None = None) -> None:
    """
    Atomically bump the global and per-client usage counters.

    Both are conditional UPDATEs that only succeed while under the limit, so
    two concurrent sales cannot both take the last use. Losing that race
    raises ConcurrencyConflict.
    """
    promo = db.session.get(Promotion, promotion_id)
    if promo is None:
        raise NotFoundError("Promotion not found", {"promotion_id": promotion_id})

    stmt = (
        update(Promotion)
        .where(
            Promotion.id == promotion_id,
            or_(
                Promotion.usage_limit_global.is_(None),
                Promotion.usage_count < Promotion.usage_limit_global,
            ),
        )
        .values(usage_count=Promotion.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    if not db.session.execute(stmt).rowcount:
        raise ConcurrencyConflict(
            "Promotion usage limit was reached by a concurrent sale",
            details={"promotion_id": promotion_id},
        )

    if client_id:
        limit = promo.usage_limit_per_client
        client_stmt = (
            update(PromotionClientUsage)
            .where(
                PromotionClientUsage.promotion_id == promotion_id,
                PromotionClientUsage.client_id == client_id,
            )
            .values(usage_count=PromotionClientUsage.usage_count + 1, last_used_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if limit is not None:
            client_stmt = client_stmt.where(PromotionClientUsage.usage_count < limit)

        if not db.session.execute(client_stmt).rowcount:
            exists = (
                db.session.query(PromotionClientUsage.id)
                .filter_by(promotion_id=promotion_id, client_id=client_id)
                .first()
            )
            if exists or (limit is not None and limit < 1):
                raise ConcurrencyConflict(
                    "Per-client promotion limit was reached by a concurrent sale",
                    details={"promotion_id": promotion_id, "client_id": client_id},
                )
            try:
                with db.session.begin_nested():
                    db.session.add(PromotionClientUsage(
                        promotion_id=promotion_id,
                        client_id=client_id,
                        usage_count=1,
                        last_used_at=utcnow(),
                    ))
            except IntegrityError as exc:
                raise ConcurrencyConflict(
                    "Per-client promotion usage was recorded by a concurrent sale",
                    details={"promotion_id": promotion_id, "client_id": client_id},
                ) from exc

    db.session.flush()
    db.session.refresh(promo)


def track_promotion_usage(promotion_id: int, client_id: str | None = None) -> Promotion:
    """Record one use of a promotion outside of finalize (own transaction)."""
    def _op():
        begin_write()
        _track_promotion_usage_inner(promotion_id, client_id)
        db.session.commit()
        return db.session.get(Promotion, promotion_id)

    return run_atomic(_op, operation="track_promotion_usage")


# =============================================================================
# Management
# =============================================================================

_EDITABLE_FIELDS = (
    "name", "description", "discount_type", "discount_value", "max_discount",
    "applies_to", "item_ids", "eligible_branches", "eligible_clients",
    "start_date", "end_date", "usage_limit_global", "usage_limit_per_client", "is_active",
)


def _decimal_field(data: dict, key: str, *, required: bool = False) -> Decimal | None:
    value = data.get(key)
    if value is None or value == "":
        if required:
            raise ValidationError(f"{key} is required")
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{key} must be a number")
    if not result.is_finite() or result < 0:
        raise ValidationError(f"{key} must be >= 0")
    return result


def _limit_field(data: dict, key: str) -> int | None:
    value = data.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{key} must be a non-negative integer")
    return value


def _list_field(data: dict, key: str) -> list[str] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{key} must be a list")
    return [str(v) for v in value] or None


def _clean_promotion_data(data: dict, *, partial: bool) -> dict:
    cleaned: dict = {}

    if not partial or "name" in data:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required")
        cleaned["name"] = name

    if "description" in data:
        cleaned["description"] = data.get("description")

    if not partial or "discount_type" in data:
        discount_type = data.get("discount_type") or PROMO_PERCENTAGE
        if discount_type not in (PROMO_PERCENTAGE, PROMO_FIXED):
            raise ValidationError("discount_type must be 'percentage' or 'fixed'")
        cleaned["discount_type"] = discount_type

    if not partial or "discount_value" in data:
        cleaned["discount_value"] = _decimal_field(data, "discount_value", required=True)

    if "max_discount" in data:
        cleaned["max_discount"] = _decimal_field(data, "max_discount")

    if not partial or "applies_to" in data:
        applies_to = data.get("applies_to") or APPLIES_TO_ALL
        if applies_to not in APPLIES_TO_CHOICES:
            raise ValidationError(f"applies_to must be one of {', '.join(APPLIES_TO_CHOICES)}")
        cleaned["applies_to"] = applies_to

    for key in ("item_ids", "eligible_branches", "eligible_clients"):
        if key in data:
            cleaned[key] = _list_field(data, key)

    for key in ("start_date", "end_date"):
        if key in data:
            try:
                cleaned[key] = parse_iso_date(data.get(key))
            except ValueError:
                raise ValidationError(f"{key} must be an ISO date")

    for key in ("usage_limit_global", "usage_limit_per_client"):
        if key in data:
            cleaned[key] = _limit_field(data, key)

    if "is_active" in data:
        cleaned["is_active"] = bool(data.get("is_active"))

    return cleaned


def _check_promotion_consistency(promo: Promotion) -> None:
    if promo.discount_type == PROMO_PERCENTAGE and Decimal(str(promo.discount_value)) > 100:
        raise ValidationError("percentage discount_value cannot exceed 100")
    if promo.start_date and promo.end_date and promo.end_date < promo.start_date:
        raise ValidationError("end_date cannot be before start_date")
    if promo.applies_to == APPLIES_TO_SPECIFIC and not promo.item_ids:
        raise ValidationError("item_ids are required when applies_to is 'specific'")


def create_promotion(data: dict, created_by: str | None = None) -> Promotion:
    code = normalize_code(data.get("code"))
    if not code:
        raise ValidationError("code is required")

    promo = Promotion(code=code, created_by=created_by, usage_count=0, is_active=True)
    for key, value in _clean_promotion_data(data, partial=False).items():
        setattr(promo, key, value)
    _check_promotion_consistency(promo)

    db.session.add(promo)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("Promotion code already exists", {"code": code})
    return promo


def update_promotion(promotion_id: int, data: dict) -> Promotion:
    promo = db.session.get(Promotion, promotion_id)
    if not promo:
        raise NotFoundError("Promotion not found", {"promotion_id": promotion_id})

    cleaned = _clean_promotion_data(data, partial=True)
    for key in _EDITABLE_FIELDS:
        if key in cleaned:
            setattr(promo, key, cleaned[key])
    try:
        _check_promotion_consistency(promo)
    except ValidationError:
        db.session.rollback()
        raise
    commit_with_retry()
    return promo


def list_active_promotions(branch_id: str | None = None, *, as_of: date | None = None) -> list[Promotion]:
    """Active, in-date promotions, optionally restricted to those valid at a branch."""
    as_of = as_of or today()
    promos = (
        db.session.query(Promotion)
        .filter(
            Promotion.is_active.is_(True),
            or_(Promotion.start_date.is_(None), Promotion.start_date <= as_of),
            or_(Promotion.end_date.is_(None), Promotion.end_date >= as_of),
        )
        .order_by(Promotion.created_at.desc(), Promotion.id.desc())
        .all()
    )
    if branch_id:
        promos = [p for p in promos if not p.eligible_branches or branch_id in p.eligible_branches]
    return promos
