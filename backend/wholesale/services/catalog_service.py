# Overview: Admin maintenance of products and shops, each change written to its audit log.

"""
Catalog and Shop Administration

Products and shops are plain master data, but every add/edit/delete is
recorded with before/after snapshots in product_logs / shop_logs.

Rows referenced by orders cannot be deleted: the ledger would lose the
subject of its bills. Such deletes fail with ConflictError.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Order, OrderItem, Product, Shop, User
from ..models.auth import ROLE_SALES_REP
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_product,
    enforce_rules_shop,
    validate_payload,
)
from . import audit_service
from .audit_service import (
    ProductAdded,
    ProductDeleted,
    ProductEdited,
    ShopAdded,
    ShopDeleted,
    ShopEdited,
)
from .concurrency import run_with_retry
from .errors import ConflictError, NotFoundError, ValidationError
from wholesale.time_utils import utcnow

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "unit_price_cents", "stock"},
    required_on_create={"name", "unit_price_cents"},
)

SHOP_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "address", "owner_nic", "email", "phone",
        "sales_rep_id", "max_bill_amount_cents", "max_active_bills",
    },
    required_on_create={"name", "max_bill_amount_cents", "max_active_bills"},
)

_AUDITED_PRODUCT_FIELDS = ("name", "description", "unit_price_cents", "stock")
_AUDITED_SHOP_FIELDS = (
    "name", "address", "owner_nic", "email", "phone",
    "sales_rep_id", "max_bill_amount_cents", "max_active_bills",
)


def _snapshot(row, fields) -> dict:
    return {f: getattr(row, f) for f in fields}


# =============================================================================
# PRODUCTS
# =============================================================================

def list_products() -> list[dict]:
    products = db.session.query(Product).order_by(Product.name.asc(), Product.id.asc()).all()
    return [p.to_dict() for p in products]


LOW_STOCK_THRESHOLD = 10


def inventory_stats() -> dict:
    """Catalog-wide stock figures. Low stock includes out-of-stock products."""
    count, total, average, out_of_stock, low_stock = db.session.query(
        db.func.count(Product.id),
        db.func.coalesce(db.func.sum(Product.stock), 0),
        db.func.avg(Product.stock),
        db.func.count(db.case((Product.stock == 0, 1))),
        db.func.count(db.case((Product.stock <= LOW_STOCK_THRESHOLD, 1))),
    ).one()
    return {
        "total_products": int(count or 0),
        "total_inventory": int(total or 0),
        "avg_inventory": round(float(average), 2) if average is not None else 0.0,
        "out_of_stock": int(out_of_stock or 0),
        "low_stock": int(low_stock or 0),
        "low_stock_threshold": LOW_STOCK_THRESHOLD,
    }


def add_product(payload: dict, user_id: int) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    def _op() -> Product:
        now = utcnow()
        product = Product(**patch, created_at=now, updated_at=now)
        db.session.add(product)
        db.session.flush()
        audit_service.record_product_event(product.id, user_id, ProductAdded(
            after=_snapshot(product, _AUDITED_PRODUCT_FIELDS),
        ))
        db.session.commit()
        return product

    return run_with_retry(_op)


def edit_product(product_id: int, payload: dict, user_id: int) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op() -> Product:
        product = db.session.get(Product, product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found")

        before = _snapshot(product, _AUDITED_PRODUCT_FIELDS)
        for key, value in patch.items():
            setattr(product, key, value)
        product.updated_at = utcnow()
        db.session.flush()

        audit_service.record_product_event(product.id, user_id, ProductEdited(
            before=before,
            after=_snapshot(product, _AUDITED_PRODUCT_FIELDS),
        ))
        db.session.commit()
        return product

    return run_with_retry(_op)


def delete_product(product_id: int, user_id: int) -> None:
    def _op() -> None:
        product = db.session.get(Product, product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found")

        used = db.session.query(OrderItem.id).filter(OrderItem.product_id == product_id).first()
        if used:
            raise ConflictError("Product is referenced by orders and cannot be deleted")

        before = _snapshot(product, _AUDITED_PRODUCT_FIELDS)
        db.session.delete(product)
        audit_service.record_product_event(product_id, user_id, ProductDeleted(before=before))
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# SHOPS
# =============================================================================

def _check_sales_rep(patch: dict) -> None:
    rep_id = patch.get("sales_rep_id")
    if rep_id is None:
        return
    rep = db.session.get(User, rep_id)
    if not rep:
        raise NotFoundError(f"User {rep_id} not found")
    if rep.role != ROLE_SALES_REP:
        raise ValidationError(f"User {rep_id} is not a sales representative")


def list_shops() -> list[dict]:
    shops = db.session.query(Shop).order_by(Shop.name.asc(), Shop.id.asc()).all()
    reps = {
        u.id: u for u in db.session.query(User).filter(User.id.in_({s.sales_rep_id for s in shops})).all()
    } if shops else {}
    result = []
    for shop in shops:
        rep = reps.get(shop.sales_rep_id)
        result.append({**shop.to_dict(), "sales_rep_name": rep.full_name if rep else None})
    return result


def add_shop(payload: dict, user_id: int) -> Shop:
    patch = validate_payload(model=Shop, payload=payload, policy=SHOP_POLICY, partial=False)
    enforce_rules_shop(patch)

    def _op() -> Shop:
        _check_sales_rep(patch)
        now = utcnow()
        shop = Shop(**patch, created_at=now, updated_at=now)
        db.session.add(shop)
        db.session.flush()
        audit_service.record_shop_event(shop.id, user_id, ShopAdded(
            after=_snapshot(shop, _AUDITED_SHOP_FIELDS),
        ))
        db.session.commit()
        return shop

    return run_with_retry(_op)


def edit_shop(shop_id: int, payload: dict, user_id: int) -> Shop:
    """
    Patch a shop. Lowering a credit limit below the current exposure is
    allowed; it only blocks future orders.
    """
    patch = validate_payload(model=Shop, payload=payload, policy=SHOP_POLICY, partial=True)
    enforce_rules_shop(patch)

    def _op() -> Shop:
        shop = db.session.get(Shop, shop_id)
        if not shop:
            raise NotFoundError(f"Shop {shop_id} not found")
        _check_sales_rep(patch)

        before = _snapshot(shop, _AUDITED_SHOP_FIELDS)
        for key, value in patch.items():
            setattr(shop, key, value)
        shop.updated_at = utcnow()
        db.session.flush()

        audit_service.record_shop_event(shop.id, user_id, ShopEdited(
            before=before,
            after=_snapshot(shop, _AUDITED_SHOP_FIELDS),
        ))
        db.session.commit()
        return shop

    return run_with_retry(_op)


def delete_shop(shop_id: int, user_id: int) -> None:
    def _op() -> None:
        shop = db.session.get(Shop, shop_id)
        if not shop:
            raise NotFoundError(f"Shop {shop_id} not found")

        used = db.session.query(Order.id).filter(Order.shop_id == shop_id).first()
        if used:
            raise ConflictError("Shop has orders and cannot be deleted")

        before = _snapshot(shop, _AUDITED_SHOP_FIELDS)
        db.session.delete(shop)
        audit_service.record_shop_event(shop_id, user_id, ShopDeleted(before=before))
        db.session.commit()

    run_with_retry(_op)
