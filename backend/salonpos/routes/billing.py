# Overview: Flask API routes for bill pricing, promotions and loyalty; parses input and returns JSON.

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..errors import BillingError, NotFoundError, ValidationError, http_status
from ..services import billing_service, loyalty_service, promotions_service
from ..validation import parse_bill_request, parse_decimal, parse_json_object, parse_line_item

billing_bp = Blueprint("billing", __name__, url_prefix="/api")


def _json_error(exc: BillingError):
    return jsonify(exc.to_dict()), http_status(exc)


@billing_bp.post("/billing/totals")
def bill_totals_route():
    """
    Pure totals calculation. Numeric fields are clamped, never rejected.
    """
    try:
        data = parse_json_object(request.get_json(silent=True))
        items_raw = data.get("items") or []
        if not isinstance(items_raw, list):
            raise ValidationError("items must be a list")
        items = [parse_line_item(raw, i) for i, raw in enumerate(items_raw)]
    except BillingError as e:
        return _json_error(e)

    totals = billing_service.compute_bill_totals(
        items,
        discount_type=data.get("discount_type") or "fixed",
        discount_value=data.get("discount_value"),
        tax_amount=data.get("tax_amount"),
        service_charge_rate=data.get("service_charge_rate"),
        loyalty_points_used=data.get("loyalty_points_used"),
        promotion_discount=data.get("promotion_discount"),
    )
    return jsonify(totals.to_dict()), 200


@billing_bp.post("/billing/preview")
def bill_preview_route():
    """Read-only draft-cart preview (promotion, loyalty, allocations, commissions)."""
    try:
        bill = parse_bill_request(
            request.get_json(silent=True),
            default_service_charge_rate=current_app.config.get("DEFAULT_SERVICE_CHARGE_RATE", 0),
        )
        return jsonify(billing_service.preview_bill(bill)), 200
    except BillingError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to preview bill")
        return jsonify({"error": "Internal server error"}), 500


@billing_bp.post("/promotions/validate")
def validate_promotion_route():
    try:
        data = parse_json_object(request.get_json(silent=True))
    except BillingError as e:
        return _json_error(e)
    code = data.get("code")
    branch_id = data.get("branch_id")
    if not code or not branch_id:
        return jsonify({"error": "code and branch_id required"}), 400

    result = promotions_service.validate_promotion_code(code, branch_id, data.get("client_id"))
    return jsonify(result), 200


@billing_bp.post("/promotions/discount")
def promotion_discount_route():
    try:
        data = parse_json_object(request.get_json(silent=True))
        promo = promotions_service.get_promotion_by_code(data.get("code"))
        if not promo:
            raise NotFoundError("Promotion not found", {"code": data.get("code")})
        subtotal = parse_decimal(data.get("subtotal"), "subtotal")
        items_raw = data.get("items") or []
        if not isinstance(items_raw, list):
            raise ValidationError("items must be a list")
        items = [parse_line_item(raw, i) for i, raw in enumerate(items_raw)]
    except BillingError as e:
        return _json_error(e)

    services = [i for i in items if i.kind == "service"]
    products = [i for i in items if i.kind == "product"]
    amount = promotions_service.calculate_promotion_discount(promo, subtotal, services, products)
    return jsonify({"code": promo.code, "discount_amount": str(amount)}), 200


@billing_bp.post("/promotions")
def create_promotion_route():
    try:
        data = parse_json_object(request.get_json(silent=True))
        promo = promotions_service.create_promotion(data, created_by=data.get("created_by"))
        return jsonify({"promotion": promo.to_dict()}), 201
    except BillingError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to create promotion")
        return jsonify({"error": "Internal server error"}), 500


@billing_bp.patch("/promotions/<int:promotion_id>")
def update_promotion_route(promotion_id: int):
    try:
        data = parse_json_object(request.get_json(silent=True))
        promo = promotions_service.update_promotion(promotion_id, data)
        return jsonify({"promotion": promo.to_dict()}), 200
    except BillingError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to update promotion")
        return jsonify({"error": "Internal server error"}), 500


@billing_bp.get("/promotions/active")
def active_promotions_route():
    branch_id = request.args.get("branch_id")
    promos = promotions_service.list_active_promotions(branch_id)
    return jsonify({"items": [p.to_dict() for p in promos], "count": len(promos)}), 200


@billing_bp.get("/loyalty/<client_id>")
def all_branch_loyalty_route(client_id: str):
    balances = loyalty_service.get_all_branch_loyalty_points(client_id)
    return jsonify({"client_id": client_id, "branches": balances}), 200


@billing_bp.get("/loyalty/<client_id>/<branch_id>")
def loyalty_points_route(client_id: str, branch_id: str):
    points = loyalty_service.get_loyalty_points(client_id, branch_id)
    return jsonify({"client_id": client_id, "branch_id": branch_id, "points": points}), 200


@billing_bp.get("/loyalty/<client_id>/<branch_id>/history")
def loyalty_history_route(client_id: str, branch_id: str):
    limit = request.args.get("limit", default=50, type=int)
    txns = loyalty_service.get_loyalty_history(client_id, branch_id, limit=limit)
    return jsonify({"items": [t.to_dict() for t in txns], "count": len(txns)}), 200
