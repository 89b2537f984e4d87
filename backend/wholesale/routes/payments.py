# Overview: Flask API routes for collections against approved orders; parses input and returns JSON responses.

"""
Payment API Routes

SECURITY:
- Only sales reps record payments, and only on their own approved orders
- Payment history of an order is visible to its rep and to admins
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..extensions import db
from ..models import Order
from ..models.auth import ROLE_ADMIN, ROLE_SALES_REP
from ..services import payment_service
from ..services.errors import AccessDenied, LedgerError


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("")
@require_auth
@require_role(ROLE_SALES_REP)
def record_payment_route():
    """
    Record a collection.

    Request body:
    {
        "order_id": 12,
        "amount_cents": 250000,
        "notes": "Cash"  (optional)
    }

    Returns:
        201: {"payment": {...}, "sms_sent": bool, "sms_error": str|null}
        400: Invalid amount
        403: Order belongs to another rep
        404: Order not found
        409: Order not approved, or amount exceeds outstanding
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("order_id") is None:
            return jsonify({"error": "order_id is required"}), 400

        result = payment_service.record_payment(
            order_id=data["order_id"],
            sales_rep_id=g.current_user.id,
            amount_cents=data.get("amount_cents"),
            notes=data.get("notes"),
        )
        return jsonify(result.to_dict("payment")), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/orders/<int:order_id>")
@require_auth
def order_payments_route(order_id: int):
    try:
        user = g.current_user
        order = db.session.get(Order, order_id)
        if order and user.role != ROLE_ADMIN and order.sales_rep_id != user.id:
            raise AccessDenied("Order does not belong to you")

        payments = payment_service.get_order_payments(order_id)
        return jsonify({"items": payments, "count": len(payments)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list order payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_auth
def payment_details_route(payment_id: int):
    try:
        details = payment_service.get_payment_details(payment_id)
        user = g.current_user
        rep = details["sales_rep"]
        if user.role != ROLE_ADMIN and (rep is None or rep["id"] != user.id):
            raise AccessDenied("Payment does not belong to you")
        return jsonify(details), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/collections")
@require_auth
@require_role(ROLE_SALES_REP)
def collections_route():
    """The rep's collections with running outstanding balances, plus summary stats."""
    try:
        collections = payment_service.representative_collections(g.current_user.id)
        stats = payment_service.representative_collection_stats(g.current_user.id)
        return jsonify({"items": collections, "count": len(collections), "stats": stats}), 200

    except Exception:
        current_app.logger.exception("Failed to list collections")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/notify")
@require_auth
@require_role(ROLE_SALES_REP)
def resend_payment_notification_route(payment_id: int):
    """Resend the payment SMS for a collection the rep recorded."""
    try:
        outcome = payment_service.resend_payment_notification(payment_id, g.current_user.id)
        return jsonify({"payment_id": payment_id, **outcome.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resend payment notification")
        return jsonify({"error": "Internal server error"}), 500
