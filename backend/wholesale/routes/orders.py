# Overview: Flask API routes for sales reps' orders; parses input and returns JSON responses.

"""
Order API Routes (sales representative side)

SECURITY:
- All routes require a bearer token
- Reps create and edit only their own orders
- Admins may read any order; admin mutations live in routes/admin.py
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_SALES_REP
from ..services import order_service
from ..services.errors import AccessDenied, LedgerError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
@require_role(ROLE_SALES_REP)
def create_order_route():
    """
    Place a pending order for one of the rep's shops.

    Request body:
    {
        "shop_id": 1,
        "items": [{"product_id": 3, "quantity": 2, "unit_price_cents": 1500}],
        "notes": "Deliver before noon"  (optional)
    }

    Returns:
        201: {"order": {...}, "sms_sent": bool, "sms_error": str|null}
        400: Invalid items
        404: Shop or product not found
        409: Credit limit or active bill cap exceeded
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("shop_id") is None:
            return jsonify({"error": "shop_id is required"}), 400

        result = order_service.create_order(
            shop_id=data["shop_id"],
            sales_rep_id=g.current_user.id,
            items=data.get("items"),
            notes=data.get("notes"),
        )
        return jsonify({
            "order": order_service.get_order_details(result.value.id),
            **result.notification.to_dict(),
        }), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>")
@require_auth
@require_role(ROLE_SALES_REP)
def edit_pending_order_route(order_id: int):
    """Replace the items of the rep's own pending order."""
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.edit_pending_order(
            order_id=order_id,
            sales_rep_id=g.current_user.id,
            items=data.get("items"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order_service.get_order_details(order.id)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to edit order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    """Order details. Reps can only read their own orders."""
    try:
        details = order_service.get_order_details(order_id)
        user = g.current_user
        if user.role != ROLE_ADMIN and details["sales_rep_id"] != user.id:
            raise AccessDenied("Order does not belong to you")
        return jsonify({"order": details}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
@require_role(ROLE_SALES_REP)
def list_my_orders_route():
    """
    The rep's orders, newest first.

    Query params:
        status: pending | approved | rejected (optional)
    """
    try:
        orders = order_service.list_orders_for_rep(g.current_user.id, status=request.args.get("status"))
        return jsonify({"items": orders, "count": len(orders)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/pending")
@require_auth
@require_role(ROLE_SALES_REP)
def list_pending_orders_route():
    try:
        orders = order_service.get_pending_orders(g.current_user.id)
        return jsonify({"items": orders, "count": len(orders)}), 200
    except Exception:
        current_app.logger.exception("Failed to list pending orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/pending/count")
@require_auth
@require_role(ROLE_SALES_REP)
def pending_count_route():
    try:
        return jsonify({"pending_count": order_service.pending_order_count(g.current_user.id)}), 200
    except Exception:
        current_app.logger.exception("Failed to count pending orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/notify")
@require_auth
@require_role(ROLE_SALES_REP)
def resend_order_notification_route(order_id: int):
    """
    Resend the "new order" SMS to the shop.

    Returns:
        200: {"order_id": int, "sms_sent": bool, "sms_error": str|null}
        403: Order belongs to another rep
        404: Order not found
    """
    try:
        outcome = order_service.resend_order_notification(order_id, g.current_user.id)
        return jsonify({"order_id": order_id, **outcome.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resend order notification")
        return jsonify({"error": "Internal server error"}), 500
