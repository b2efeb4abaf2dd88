from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from salonpos.cart import (
    Allocation,
    BillRequest,
    CLIENT_TYPE_REGULAR,
    DISCOUNT_FIXED,
    PAYMENT_CASH,
    ProductLine,
    ProductUsage,
    ServiceLine,
)
from salonpos.errors import ValidationError
from salonpos.models.inventory import USAGE_OTC
from salonpos.services.inventory_service import DeliveryItem
from salonpos.time_utils import parse_iso_date, parse_iso_datetime


# Maximum money amount accepted from clients: 9,999,999,999.99 (fits Numeric(12, 2))
MAX_AMOUNT = Decimal("9999999999.99")


def parse_decimal(value: Any, field: str, *, default: Decimal | None = None, allow_none: bool = False) -> Decimal | None:
    """Strict money parsing: numbers or numeric strings, finite, >= 0."""
    if value is None or value == "":
        if default is not None:
            return default
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if result < 0:
        raise ValidationError(f"{field} cannot be negative")
    if result > MAX_AMOUNT:
        raise ValidationError(f"{field} is too large")
    return result


def parse_signed_decimal(value: Any, field: str) -> Decimal:
    """Like parse_decimal but allows negatives (price adjustments)."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite() or abs(result) > MAX_AMOUNT:
        raise ValidationError(f"{field} is out of range")
    return result


def parse_int(value: Any, field: str, *, default: int | None = None, minimum: int | None = None) -> int:
    """Integers only; reject floats, decimals and scientific notation."""
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer, not a decimal")
    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def parse_json_object(data: Any) -> dict:
    """Request body as a dict. A missing body is an empty one; anything else must be an object."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _require_str(data: dict, key: str, field: str | None = None) -> str:
    value = _optional_str(data.get(key))
    if not value:
        raise ValidationError(f"{field or key} is required")
    return value


def _parse_date(value: Any, field: str):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")


def parse_allocations(raw: Any, field: str) -> tuple[Allocation, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValidationError(f"{field} must be a list")
    allocations = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"{field}[{i}] must be an object")
        allocations.append(Allocation(
            batch_id=parse_int(entry.get("batch_id"), f"{field}[{i}].batch_id", minimum=1),
            batch_number=str(entry.get("batch_number") or ""),
            quantity=parse_int(entry.get("quantity"), f"{field}[{i}].quantity", minimum=1),
            expiration_date=_parse_date(entry.get("expiration_date"), f"{field}[{i}].expiration_date"),
            unit_cost=parse_decimal(entry.get("unit_cost"), f"{field}[{i}].unit_cost", default=Decimal("0")),
        ))
    return tuple(allocations)


def parse_line_item(raw: Any, index: int):
    """Build a ServiceLine or ProductLine from the `type` discriminant."""
    field = f"items[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{field} must be an object")
    kind = raw.get("type")

    if kind == "service":
        usage_raw = raw.get("product_usage") or []
        if not isinstance(usage_raw, list):
            raise ValidationError(f"{field}.product_usage must be a list")
        usage = tuple(
            ProductUsage(
                product_id=_require_str(u, "product_id", f"{field}.product_usage[{i}].product_id"),
                quantity=parse_int(u.get("quantity"), f"{field}.product_usage[{i}].quantity", default=1, minimum=1),
            )
            for i, u in enumerate(usage_raw)
            if isinstance(u, dict)
        )
        return ServiceLine(
            service_id=_require_str(raw, "service_id", f"{field}.service_id"),
            name=_optional_str(raw.get("name")) or "",
            base_price=parse_decimal(raw.get("base_price"), f"{field}.base_price"),
            stylist_id=_optional_str(raw.get("stylist_id")),
            client_type=str(raw.get("client_type") or CLIENT_TYPE_REGULAR).upper(),
            adjustment=parse_signed_decimal(raw.get("adjustment"), f"{field}.adjustment"),
            adjustment_reason=_optional_str(raw.get("adjustment_reason")),
            product_usage=usage,
        )

    if kind == "product":
        return ProductLine(
            product_id=_require_str(raw, "product_id", f"{field}.product_id"),
            name=_optional_str(raw.get("name")) or "",
            base_price=parse_decimal(raw.get("base_price"), f"{field}.base_price"),
            quantity=parse_int(raw.get("quantity"), f"{field}.quantity", default=1, minimum=1),
            unit_cost=parse_decimal(raw.get("unit_cost"), f"{field}.unit_cost", default=Decimal("0")),
            commission_percentage=parse_decimal(
                raw.get("commission_percentage"), f"{field}.commission_percentage", default=Decimal("0")
            ),
            commissioner_id=_optional_str(raw.get("commissioner_id")),
            batch_allocations=parse_allocations(raw.get("batch_allocations"), f"{field}.batch_allocations"),
        )

    raise ValidationError(f"{field}.type must be 'service' or 'product'")


def parse_bill_request(data: Any, *, default_service_charge_rate=0) -> BillRequest:
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")

    items_raw = data.get("items")
    if items_raw is None:
        items_raw = []
    if not isinstance(items_raw, list):
        raise ValidationError("items must be a list")

    service_charge_rate = data.get("service_charge_rate")
    if service_charge_rate is None:
        service_charge_rate = default_service_charge_rate

    return BillRequest(
        branch_id=_require_str(data, "branch_id"),
        items=tuple(parse_line_item(raw, i) for i, raw in enumerate(items_raw)),
        client_id=_optional_str(data.get("client_id")),
        client_name=_optional_str(data.get("client_name")) or "",
        discount_type=data.get("discount_type") or DISCOUNT_FIXED,
        discount_value=parse_decimal(data.get("discount_value"), "discount_value", default=Decimal("0")),
        tax_amount=parse_decimal(data.get("tax_amount"), "tax_amount", default=Decimal("0")),
        service_charge_rate=parse_decimal(service_charge_rate, "service_charge_rate", default=Decimal("0")),
        loyalty_points_used=parse_int(data.get("loyalty_points_used"), "loyalty_points_used", default=0, minimum=0),
        promotion_code=_optional_str(data.get("promotion_code")),
        payment_method=str(data.get("payment_method") or PAYMENT_CASH).lower(),
        amount_received=parse_decimal(data.get("amount_received"), "amount_received", allow_none=True),
        payment_reference=_optional_str(data.get("payment_reference")),
        receipt_number=_optional_str(data.get("receipt_number")),
        appointment_id=_optional_str(data.get("appointment_id")),
        created_by=_optional_str(data.get("created_by")),
        notes=str(data.get("notes") or ""),
    )


def parse_delivery(data: Any) -> dict:
    """Payload of POST /api/inventory/receive -> receive_delivery kwargs."""
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    items_raw = data.get("items")
    if not isinstance(items_raw, list) or not items_raw:
        raise ValidationError("items must be a non-empty list")

    items = []
    for i, raw in enumerate(items_raw):
        field = f"items[{i}]"
        if not isinstance(raw, dict):
            raise ValidationError(f"{field} must be an object")
        items.append(DeliveryItem(
            product_id=_require_str(raw, "product_id", f"{field}.product_id"),
            product_name=_optional_str(raw.get("product_name")),
            quantity=parse_int(raw.get("quantity"), f"{field}.quantity", minimum=1),
            unit_cost=parse_decimal(raw.get("unit_cost"), f"{field}.unit_cost", default=Decimal("0")),
            expiration_date=_parse_date(raw.get("expiration_date"), f"{field}.expiration_date"),
            usage_type=str(raw.get("usage_type") or USAGE_OTC),
            batch_number=_optional_str(raw.get("batch_number")),
        ))

    try:
        received_at = parse_iso_datetime(data.get("received_at"))
    except ValueError:
        raise ValidationError("received_at must be an ISO datetime")

    return {
        "branch_id": _require_str(data, "branch_id"),
        "items": items,
        "purchase_order_id": _optional_str(data.get("purchase_order_id")),
        "received_by": _optional_str(data.get("received_by")),
        "received_at": received_at,
    }


def parse_transfer(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return {
        "from_branch_id": _require_str(data, "from_branch_id"),
        "to_branch_id": _require_str(data, "to_branch_id"),
        "product_id": _require_str(data, "product_id"),
        "quantity": parse_int(data.get("quantity"), "quantity", minimum=1),
        "transferred_by": _optional_str(data.get("transferred_by")),
        "note": _optional_str(data.get("note")),
    }
