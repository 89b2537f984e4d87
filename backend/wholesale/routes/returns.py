# Overview: Flask API route for returns against approved orders; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_SALES_REP
from ..services import order_service, return_service
from ..services.errors import LedgerError


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
@require_auth
@require_role(ROLE_SALES_REP)
def record_return_route():
    """
    Take returned goods off an approved order.

    Request body:
    {
        "order_id": 12,
        "items": [{"product_id": 3, "quantity": 1}]
    }

    Returns:
        200: Updated order
        400: Invalid items
        403: Order belongs to another rep
        404: Order not found, or product not on the order
        409: Order not approved, quantity too large, or total below collected
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("order_id") is None:
            return jsonify({"error": "order_id is required"}), 400

        order = return_service.record_return(
            order_id=data["order_id"],
            sales_rep_id=g.current_user.id,
            items=data.get("items"),
        )
        return jsonify({"order": order_service.get_order_details(order.id)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record return")
        return jsonify({"error": "Internal server error"}), 500
