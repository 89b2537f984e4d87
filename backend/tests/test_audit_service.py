"""
Audit trail tests.

Verifies:
- Typed events serialize to the expected payloads
- list_order_logs back-fills and persists missing product names
- Log listings join actor and subject names
"""

from wholesale.extensions import db
from wholesale.models import OrderLog, ShopLog
from wholesale.services import audit_service, order_service
from wholesale.services.audit_service import (
    ItemSnapshot,
    OrderApproved,
    OrderCreated,
    OrderRejected,
    UNKNOWN_PRODUCT,
)
from wholesale.time_utils import utcnow


def test_event_details_shape():
    event = OrderCreated(
        shop_id=3,
        total_cents=500,
        notes=None,
        status="pending",
        items=(ItemSnapshot(product_id=1, unit_price_cents=250, quantity=2, line_total_cents=500),),
    )
    assert event.action == "create"
    assert event.details() == {
        "shop_id": 3,
        "total_cents": 500,
        "notes": None,
        "status": "pending",
        "items": ({
            "product_id": 1,
            "unit_price_cents": 250,
            "quantity": 2,
            "line_total_cents": 500,
            "product_name": None,
        },),
    }

    assert OrderApproved(
        previous_status="pending", new_status="approved", approved_by=1, items_processed=2,
    ).details()["inventory_updated"] is False
    assert OrderRejected.action == "reject"


def test_backfills_missing_product_names(db_session, make_product):
    known = make_product("Coconut Oil")
    log = OrderLog(
        order_id=42,
        user_id=None,
        action="create",
        details={"items": [
            {"product_id": known.id, "quantity": 1},
            {"product_id": 999_999, "quantity": 2},
            {"product_id": known.id, "quantity": 3, "product_name": "Kept Name"},
        ]},
        created_at=utcnow(),
    )
    ret = OrderLog(
        order_id=42,
        user_id=None,
        action="return",
        details={"returned_items": [{"product_id": known.id, "quantity": 1}]},
        created_at=utcnow(),
    )
    db_session.add_all([log, ret])
    db_session.commit()

    listed = audit_service.list_order_logs(order_id=42)
    by_action = {entry["action"]: entry for entry in listed}

    names = [i["product_name"] for i in by_action["create"]["details"]["items"]]
    assert names == ["Coconut Oil", UNKNOWN_PRODUCT, "Kept Name"]
    assert by_action["return"]["details"]["returned_items"][0]["product_name"] == "Coconut Oil"

    # Persisted, not just decorated in the response
    db_session.expire_all()
    stored = db_session.get(OrderLog, log.id)
    assert stored.details["items"][0]["product_name"] == "Coconut Oil"


def test_order_log_listing_joins(gateway, admin, rep, shop, product):
    order = order_service.create_order(shop.id, rep.id, [{"product_id": product.id, "quantity": 2}]).value
    order_service.approve_order(order.id, admin.id)

    logs = audit_service.list_order_logs()

    # Newest first
    assert [entry["action"] for entry in logs] == ["approve", "create"]
    assert logs[0]["user_email"] == admin.email
    assert logs[0]["user_role"] == "admin"
    assert logs[1]["shop_name"] == shop.name
    assert logs[1]["order_total_cents"] == 200


def test_other_log_listings(gateway, admin, rep, approved_order):
    from wholesale.services import catalog_service, payment_service

    order = approved_order(quantity=3)
    payment_service.record_payment(order.id, rep.id, 100)
    shop = catalog_service.add_shop({"name": "New Shop", "max_bill_amount_cents": 500, "max_active_bills": 1}, admin.id)
    catalog_service.add_product({"name": "Jam", "unit_price_cents": 300}, admin.id)

    payments = audit_service.list_payment_logs()
    assert payments[0]["user_email"] == rep.email
    assert payments[0]["details"]["amount_cents"] == 100

    shops = audit_service.list_shop_logs()
    assert shops[0]["shop_name"] == "New Shop"
    assert db.session.query(ShopLog).filter_by(shop_id=shop.id).count() == 1

    products = audit_service.list_product_logs()
    assert products[0]["product_name"] == "Jam"
    assert products[0]["action"] == "add"
