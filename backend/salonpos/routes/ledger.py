# Overview: Flask API routes for the audit ledger and the inventory movement journal.

from flask import Blueprint, request, jsonify

from ..services import inventory_service
from ..services.ledger_service import list_ledger_events
from salonpos.time_utils import parse_iso_datetime

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- as_of filtering is inclusive: occurred_at <= as_of.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("")
def list_ledger_events_route():
    branch_id = request.args.get("branch_id")
    if not branch_id:
        return jsonify({"error": "branch_id required"}), 400

    limit = request.args.get("limit", default=100, type=int)
    offset = request.args.get("offset", default=0, type=int)

    try:
        as_of_dt = parse_iso_datetime(request.args.get("as_of"))
    except ValueError:
        return jsonify({"error": "as_of must be an ISO-8601 datetime"}), 400

    rows = list_ledger_events(
        branch_id,
        event_type=request.args.get("event_type"),
        event_category=request.args.get("category"),
        sale_id=request.args.get("sale_id", type=int),
        as_of=as_of_dt,
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [r.to_dict() for r in rows], "limit": limit, "offset": offset}), 200


@ledger_bp.get("/movements")
def list_movements_route():
    branch_id = request.args.get("branch_id")
    if not branch_id:
        return jsonify({"error": "branch_id required"}), 400

    limit = max(1, min(request.args.get("limit", default=200, type=int), 500))
    rows = inventory_service.list_inventory_movements(
        branch_id,
        product_id=request.args.get("product_id"),
        sale_id=request.args.get("sale_id", type=int),
        limit=limit,
    )
    return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)}), 200
