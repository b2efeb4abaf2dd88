# Overview: Flask API routes for checkout finalize and sale reads.

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..errors import BillingError, http_status
from ..services import commission_service, sales_service
from ..validation import parse_bill_request

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/finalize")
def finalize_sale_route():
    """
    Finalize a checkout: one atomic write of the sale, stock, points,
    promotion usage and commissions.

    409 means a concurrent sale took the stock or usage this one relied on;
    re-preview and retry.
    """
    try:
        bill = parse_bill_request(
            request.get_json(silent=True),
            default_service_charge_rate=current_app.config.get("DEFAULT_SERVICE_CHARGE_RATE", 0),
        )
        sale = sales_service.finalize_sale(bill)
        return jsonify({"sale_id": sale.id, "sale": sales_service.get_sale_detail(sale.id)}), 201
    except BillingError as e:
        if http_status(e) >= 500:
            current_app.logger.error("Sale finalize failed: %s", e.message)
        return jsonify(e.to_dict()), http_status(e)
    except Exception:
        current_app.logger.exception("Failed to finalize sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    """Sale with lines, batch allocations and commission records."""
    try:
        return jsonify({"sale": sales_service.get_sale_detail(sale_id)}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), http_status(e)


@sales_bp.get("")
def list_sales_route():
    branch_id = request.args.get("branch_id")
    if not branch_id:
        return jsonify({"error": "branch_id required"}), 400
    limit = request.args.get("limit", default=100, type=int)
    sales = sales_service.list_sales(branch_id, limit=limit)
    return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)}), 200


@sales_bp.get("/commissions")
def list_commissions_route():
    """Commission records owed to one staff member, newest first."""
    commissioner_id = request.args.get("commissioner_id")
    if not commissioner_id:
        return jsonify({"error": "commissioner_id required"}), 400
    branch_id = request.args.get("branch_id")
    limit = request.args.get("limit", default=200, type=int)
    records = commission_service.list_commissions(commissioner_id, branch_id=branch_id, limit=limit)
    return jsonify({"items": [r.to_dict() for r in records], "count": len(records)}), 200
