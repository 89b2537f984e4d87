# Overview: Flask API routes for shop credit positions and the product catalog seen by sales reps.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..extensions import db
from ..models import Shop
from ..models.auth import ROLE_ADMIN, ROLE_SALES_REP
from ..services import catalog_service, credit_service
from ..services.errors import AccessDenied, LedgerError, NotFoundError


shops_bp = Blueprint("shops", __name__, url_prefix="/api")


@shops_bp.get("/shops/<int:shop_id>/credit")
@require_auth
def shop_credit_route(shop_id: int):
    """
    Live credit position of a shop.

    Reps may only read shops assigned to them.
    """
    try:
        shop = db.session.get(Shop, shop_id)
        if not shop:
            raise NotFoundError(f"Shop {shop_id} not found")
        user = g.current_user
        if user.role != ROLE_ADMIN and shop.sales_rep_id != user.id:
            raise AccessDenied("Shop is not assigned to you")

        state = credit_service.shop_credit_state(shop_id)
        return jsonify({"credit": state.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load shop credit")
        return jsonify({"error": "Internal server error"}), 500


@shops_bp.get("/shops/assigned")
@require_auth
@require_role(ROLE_SALES_REP)
def assigned_shops_route():
    try:
        shops = credit_service.assigned_shops_with_credit(g.current_user.id)
        return jsonify({"items": shops, "count": len(shops)}), 200
    except Exception:
        current_app.logger.exception("Failed to list assigned shops")
        return jsonify({"error": "Internal server error"}), 500


@shops_bp.get("/shops/bills")
@require_auth
@require_role(ROLE_SALES_REP)
def bills_route():
    """Approved bills per assigned shop, newest first."""
    try:
        shops = credit_service.bills_for_representative(g.current_user.id)
        return jsonify({"items": shops, "count": len(shops)}), 200
    except Exception:
        current_app.logger.exception("Failed to list bills")
        return jsonify({"error": "Internal server error"}), 500


@shops_bp.get("/products")
@require_auth
def list_products_route():
    products = catalog_service.list_products()
    return jsonify({"items": products, "count": len(products)}), 200
