# Overview: Flask API routes for batches, stock records, receipts and transfers.

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..errors import BillingError, ValidationError, http_status
from ..services import allocation_service, inventory_service
from ..time_utils import parse_iso_date
from ..validation import parse_delivery, parse_int, parse_json_object, parse_transfer

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _json_error(exc: BillingError):
    return jsonify(exc.to_dict()), http_status(exc)


def _as_of_arg():
    try:
        return parse_iso_date(request.args.get("as_of"))
    except ValueError:
        raise ValidationError("as_of must be an ISO date (YYYY-MM-DD)")


@inventory_bp.get("/allocation-preview")
def allocation_preview_route():
    """
    FIFO allocation preview.

    Query: branch_id, product_id, quantity, optional as_of (YYYY-MM-DD).
    """
    branch_id = request.args.get("branch_id")
    product_id = request.args.get("product_id")
    if not branch_id or not product_id:
        return jsonify({"error": "branch_id and product_id required"}), 400
    try:
        quantity = parse_int(request.args.get("quantity"), "quantity", minimum=1)
        preview = allocation_service.preview_batch_allocation(
            branch_id, product_id, quantity, as_of=_as_of_arg()
        )
        return jsonify(preview.to_dict()), 200
    except BillingError as e:
        return _json_error(e)


@inventory_bp.post("/receive")
def receive_route():
    try:
        kwargs = parse_delivery(request.get_json(silent=True))
        batches = inventory_service.receive_delivery(
            kwargs.pop("branch_id"),
            kwargs.pop("items"),
            **kwargs,
        )
        return jsonify({"batches": [b.to_dict() for b in batches]}), 201
    except BillingError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to receive delivery")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transfer")
def transfer_route():
    try:
        result = inventory_service.transfer_stock(**parse_transfer(request.get_json(silent=True)))
        return jsonify(result.to_dict()), 201
    except BillingError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<branch_id>/expiring")
def expiring_batches_route(branch_id: str):
    try:
        days = request.args.get("days")
        days_ahead = parse_int(days, "days", minimum=0) if days is not None else None
        batches = inventory_service.get_expiring_batches(branch_id, days_ahead=days_ahead, as_of=_as_of_arg())
    except BillingError as e:
        return _json_error(e)
    return jsonify({"items": [b.to_dict() for b in batches], "count": len(batches)}), 200


@inventory_bp.get("/<branch_id>/expired")
def expired_batches_route(branch_id: str):
    try:
        batches = inventory_service.get_expired_batches(branch_id, as_of=_as_of_arg())
    except BillingError as e:
        return _json_error(e)
    return jsonify({"items": [b.to_dict() for b in batches], "count": len(batches)}), 200


@inventory_bp.post("/<branch_id>/expire")
def mark_expired_route(branch_id: str):
    try:
        data = parse_json_object(request.get_json(silent=True))
        as_of = parse_iso_date(data.get("as_of"))
    except BillingError as e:
        return _json_error(e)
    except ValueError:
        return jsonify({"error": "as_of must be an ISO date (YYYY-MM-DD)"}), 400
    try:
        batches = inventory_service.mark_expired_batches(branch_id, as_of=as_of, actor_id=data.get("actor_id"))
        return jsonify({"items": [b.to_dict() for b in batches], "count": len(batches)}), 200
    except BillingError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to mark expired batches")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<branch_id>/products/<product_id>")
def product_stock_route(branch_id: str, product_id: str):
    """Stock record plus batches in FIFO order."""
    record = inventory_service.get_stock_record(branch_id, product_id)
    include_empty = request.args.get("include_empty", "false").lower() == "true"
    batches = inventory_service.list_product_batches(branch_id, product_id, include_empty=include_empty)
    return jsonify({
        "branch_id": branch_id,
        "product_id": product_id,
        "real_time_stock": record.real_time_stock if record else 0,
        "stock_record": record.to_dict() if record else None,
        "batches": [b.to_dict() for b in batches],
    }), 200
