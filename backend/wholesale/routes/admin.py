# Overview: Flask API routes for administrators: order decisions, overrides, master data and audit logs.

"""
Admin API Routes

WHY: Administrators decide which orders become bills, correct approved
orders, maintain shops and products, and review the audit trail.

SECURITY:
- Every route requires an authenticated user with the admin role
- All mutations are attributed to g.current_user in the audit logs
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import audit_service, catalog_service, credit_service, order_service
from ..services.errors import LedgerError, NotFoundError
from ..validation import coerce_int


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

_LOG_LISTERS = {
    "orders": audit_service.list_order_logs,
    "payments": audit_service.list_payment_logs,
    "shops": audit_service.list_shop_logs,
    "products": audit_service.list_product_logs,
}


# =============================================================================
# ORDERS
# =============================================================================

@admin_bp.get("/orders")
@require_auth
@require_role(ROLE_ADMIN)
def list_orders_route():
    """
    All orders, newest first.

    Query params:
        status: pending | approved | rejected (optional)
    """
    try:
        orders = order_service.list_all_orders(status=request.args.get("status"))
        return jsonify({"items": orders, "count": len(orders)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.put("/orders/<int:order_id>")
@require_auth
@require_role(ROLE_ADMIN)
def edit_order_route(order_id: int):
    """
    Replace an order's items in any state.

    For approved orders stock follows the quantity changes.

    Returns:
        200: Updated order
        409: Stock would go negative, or total below collected
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.edit_order_as_admin(
            order_id=order_id,
            admin_id=g.current_user.id,
            items=data.get("items"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order_service.get_order_details(order.id)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to edit order as admin")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/orders/<int:order_id>/approve")
@require_auth
@require_role(ROLE_ADMIN)
def approve_order_route(order_id: int):
    try:
        result = order_service.approve_order(order_id, g.current_user.id)
        return jsonify(result.to_dict("order")), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve order")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/orders/<int:order_id>/reject")
@require_auth
@require_role(ROLE_ADMIN)
def reject_order_route(order_id: int):
    """
    Request body:
    {
        "rejection_reason": "Shop closed"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        result = order_service.reject_order(order_id, g.current_user.id, data.get("rejection_reason"))
        return jsonify(result.to_dict("order")), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject order")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/orders/<int:order_id>/notify")
@require_auth
@require_role(ROLE_ADMIN)
def resend_approval_route(order_id: int):
    """
    Resend the approval SMS for an approved order.

    Returns:
        200: {"order_id": int, "sms_sent": bool, "sms_error": str|null}
        404: Order not found
        409: Order is not approved
    """
    try:
        outcome = order_service.resend_approval_notification(order_id)
        return jsonify({"order_id": order_id, **outcome.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resend approval notification")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SHOPS
# =============================================================================

@admin_bp.get("/shops")
@require_auth
@require_role(ROLE_ADMIN)
def list_shops_route():
    shops = catalog_service.list_shops()
    return jsonify({"items": shops, "count": len(shops)}), 200


@admin_bp.get("/shops/<int:shop_id>")
@require_auth
@require_role(ROLE_ADMIN)
def shop_details_route(shop_id: int):
    """Shop drill-down: credit figures, pending orders, open bills and recent payments."""
    try:
        return jsonify({"shop": credit_service.shop_details(shop_id)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load shop details")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/shops")
@require_auth
@require_role(ROLE_ADMIN)
def add_shop_route():
    try:
        shop = catalog_service.add_shop(request.get_json(silent=True), g.current_user.id)
        return jsonify({"shop": shop.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add shop")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.put("/shops/<int:shop_id>")
@require_auth
@require_role(ROLE_ADMIN)
def edit_shop_route(shop_id: int):
    try:
        shop = catalog_service.edit_shop(shop_id, request.get_json(silent=True), g.current_user.id)
        return jsonify({"shop": shop.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to edit shop")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/shops/<int:shop_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_shop_route(shop_id: int):
    try:
        catalog_service.delete_shop(shop_id, g.current_user.id)
        return jsonify({"deleted": True}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete shop")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PRODUCTS
# =============================================================================

@admin_bp.post("/products")
@require_auth
@require_role(ROLE_ADMIN)
def add_product_route():
    try:
        product = catalog_service.add_product(request.get_json(silent=True), g.current_user.id)
        return jsonify({"product": product.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add product")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.put("/products/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def edit_product_route(product_id: int):
    try:
        product = catalog_service.edit_product(product_id, request.get_json(silent=True), g.current_user.id)
        return jsonify({"product": product.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to edit product")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/products/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_product_route(product_id: int):
    try:
        catalog_service.delete_product(product_id, g.current_user.id)
        return jsonify({"deleted": True}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REPORTS
# =============================================================================

@admin_bp.get("/inventory/stats")
@require_auth
@require_role(ROLE_ADMIN)
def inventory_stats_route():
    try:
        return jsonify({"stats": catalog_service.inventory_stats()}), 200
    except Exception:
        current_app.logger.exception("Failed to load inventory stats")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/sales-reps/stats")
@require_auth
@require_role(ROLE_ADMIN)
def sales_rep_stats_route():
    """Per-rep shop count, approved revenue, collections and performance rating."""
    try:
        reps = credit_service.sales_rep_stats()
        return jsonify({"items": reps, "count": len(reps)}), 200
    except Exception:
        current_app.logger.exception("Failed to load sales rep stats")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# AUDIT LOGS
# =============================================================================

@admin_bp.get("/logs/<kind>")
@require_auth
@require_role(ROLE_ADMIN)
def list_logs_route(kind: str):
    """
    Audit history, newest first.

    kind: orders | payments | shops | products
    Query params (orders only):
        order_id: restrict to one order
    """
    try:
        lister = _LOG_LISTERS.get(kind)
        if lister is None:
            raise NotFoundError(f"Unknown log kind: {kind}")

        order_id = request.args.get("order_id")
        if kind == "orders" and order_id:
            logs = lister(order_id=coerce_int(order_id, "order_id"))
        else:
            logs = lister()
        return jsonify({"items": logs, "count": len(logs)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list %s logs", kind)
        return jsonify({"error": "Internal server error"}), 500
