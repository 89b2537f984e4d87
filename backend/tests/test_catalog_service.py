"""
Catalog and shop administration tests.

Verifies:
- Payload validation (required fields, unknown fields, money bounds)
- Sales rep assignment must point at a sales rep
- Rows referenced by orders cannot be deleted
- Every change lands in the product/shop logs with before/after snapshots
- Inventory figures count out-of-stock products as low stock
"""

import pytest

from wholesale.extensions import db
from wholesale.models import Product, ProductLog, Shop, ShopLog
from wholesale.services import catalog_service
from wholesale.services.errors import ConflictError, NotFoundError, ValidationError


# =============================================================================
# PRODUCTS
# =============================================================================


def test_add_and_edit_product(admin):
    product = catalog_service.add_product({"name": "Flour 1kg", "unit_price_cents": 280, "stock": 30}, admin.id)
    catalog_service.edit_product(product.id, {"unit_price_cents": 300}, admin.id)

    logs = db.session.query(ProductLog).filter_by(product_id=product.id).order_by(ProductLog.id).all()
    assert [log.action for log in logs] == ["add", "edit"]
    assert logs[1].user_id == admin.id
    assert logs[1].details["before"]["unit_price_cents"] == 280
    assert logs[1].details["after"]["unit_price_cents"] == 300


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {"name": "No price"},
        {"name": "Negative", "unit_price_cents": -1},
        {"name": "Fractional", "unit_price_cents": 1.5},
        {"name": "Bad stock", "unit_price_cents": 10, "stock": -3},
        {"name": "Extra", "unit_price_cents": 10, "colour": "red"},
        {"name": "   ", "unit_price_cents": 10},
    ],
)
def test_add_product_rejects(admin, payload):
    with pytest.raises(ValidationError):
        catalog_service.add_product(payload, admin.id)
    assert db.session.query(Product).count() == 0


def test_edit_missing_product(admin):
    with pytest.raises(NotFoundError):
        catalog_service.edit_product(999_999, {"stock": 1}, admin.id)


def test_delete_product(admin, make_product):
    product = make_product("Matches")
    catalog_service.delete_product(product.id, admin.id)

    assert db.session.get(Product, product.id) is None
    log = db.session.query(ProductLog).filter_by(product_id=product.id, action="delete").one()
    assert log.details["before"]["name"] == "Matches"


def test_delete_product_on_order_conflicts(admin, product, approved_order):
    approved_order(quantity=1)
    with pytest.raises(ConflictError):
        catalog_service.delete_product(product.id, admin.id)
    assert db.session.get(Product, product.id) is not None


def test_list_products_sorted(make_product):
    make_product("Zest")
    make_product("Apples")
    assert [p["name"] for p in catalog_service.list_products()] == ["Apples", "Zest"]


# =============================================================================
# SHOPS
# =============================================================================


def test_add_shop_with_rep(admin, rep):
    shop = catalog_service.add_shop(
        {"name": "Sea View", "max_bill_amount_cents": 10_000, "max_active_bills": 2, "sales_rep_id": rep.id},
        admin.id,
    )
    listed = catalog_service.list_shops()
    assert listed[0]["id"] == shop.id
    assert listed[0]["sales_rep_name"] == rep.full_name

    log = db.session.query(ShopLog).filter_by(shop_id=shop.id).one()
    assert log.action == "add"
    assert log.details["after"]["max_active_bills"] == 2


def test_shop_rep_must_be_sales_rep(admin):
    payload = {"name": "X", "max_bill_amount_cents": 1, "max_active_bills": 1, "sales_rep_id": admin.id}
    with pytest.raises(ValidationError):
        catalog_service.add_shop(payload, admin.id)

    payload["sales_rep_id"] = 999_999
    with pytest.raises(NotFoundError):
        catalog_service.add_shop(payload, admin.id)
    assert db.session.query(Shop).count() == 0


def test_lowering_limit_is_allowed(admin, shop, approved_order):
    approved_order(quantity=10)
    updated = catalog_service.edit_shop(shop.id, {"max_bill_amount_cents": 100}, admin.id)
    assert updated.max_bill_amount_cents == 100


def test_delete_shop_with_orders_conflicts(admin, shop, approved_order):
    approved_order(quantity=1)
    with pytest.raises(ConflictError):
        catalog_service.delete_shop(shop.id, admin.id)


def test_delete_shop(admin, rep, make_shop):
    shop = make_shop(rep, name="Closing Down")
    catalog_service.delete_shop(shop.id, admin.id)

    assert db.session.get(Shop, shop.id) is None
    assert db.session.query(ShopLog).filter_by(shop_id=shop.id, action="delete").count() == 1


# =============================================================================
# INVENTORY STATS
# =============================================================================


def test_inventory_stats_empty_catalog(db_session):
    stats = catalog_service.inventory_stats()
    assert stats["total_products"] == 0
    assert stats["total_inventory"] == 0
    assert stats["avg_inventory"] == 0.0
    assert stats["out_of_stock"] == 0
    assert stats["low_stock"] == 0


def test_inventory_stats(make_product):
    for name, stock in [("Salt", 0), ("Sugar", 10), ("Rice", 11), ("Dhal", 45)]:
        make_product(name=name, stock=stock)

    stats = catalog_service.inventory_stats()
    assert stats["total_products"] == 4
    assert stats["total_inventory"] == 66
    assert stats["avg_inventory"] == 16.5
    assert stats["out_of_stock"] == 1
    # Threshold is inclusive and covers the empty product
    assert stats["low_stock"] == 2
    assert stats["low_stock_threshold"] == catalog_service.LOW_STOCK_THRESHOLD
