"""
Return processor tests.

Verifies:
- Lines shrink or disappear and the total follows
- Quantity, ownership and state guards
- Stock is not restored
- A return cannot push the total below what was collected
"""

import pytest

from wholesale.extensions import db
from wholesale.models import Order, OrderLog, Product
from wholesale.services import order_service, payment_service, return_service
from wholesale.services.errors import (
    AccessDenied,
    IllegalStateTransition,
    NotFoundError,
    OverpaymentError,
    ReturnQuantityExceeded,
    ValidationError,
)


@pytest.fixture
def two_line_order(gateway, admin, rep, shop, make_product):
    a = make_product("Biscuits", unit_price_cents=100, stock=50)
    b = make_product("Milk", unit_price_cents=200, stock=50)
    order = order_service.create_order(shop.id, rep.id, [
        {"product_id": a.id, "quantity": 5},
        {"product_id": b.id, "quantity": 2},
    ]).value
    order_service.approve_order(order.id, admin.id)
    return order, a, b


def test_partial_return_shrinks_line(two_line_order, rep):
    order, a, b = two_line_order

    updated = return_service.record_return(order.id, rep.id, [{"product_id": a.id, "quantity": 2}])

    lines = {i.product_id: i for i in updated.items}
    assert lines[a.id].quantity == 3
    assert lines[a.id].line_total_cents == 300
    assert updated.total_cents == 300 + 400


def test_full_line_return_deletes_line(two_line_order, rep):
    order, a, b = two_line_order

    updated = return_service.record_return(order.id, rep.id, [{"product_id": b.id, "quantity": 2}])

    assert [i.product_id for i in updated.items] == [a.id]
    assert updated.total_cents == 500


def test_return_does_not_restore_stock(two_line_order, rep):
    order, a, _ = two_line_order
    return_service.record_return(order.id, rep.id, [{"product_id": a.id, "quantity": 5}])
    assert db.session.get(Product, a.id).stock == 50


def test_return_audit(two_line_order, rep):
    order, a, b = two_line_order
    return_service.record_return(order.id, rep.id, [
        {"product_id": a.id, "quantity": 1},
        {"product_id": b.id, "quantity": 1},
    ])

    log = db.session.query(OrderLog).filter_by(order_id=order.id, action="return").one()
    assert log.user_id == rep.id
    assert log.details["previous_total_cents"] == 900
    assert log.details["new_total_cents"] == 600
    assert {i["product_id"]: i["product_name"] for i in log.details["returned_items"]} == {
        a.id: "Biscuits",
        b.id: "Milk",
    }


def test_quantity_exceeded(two_line_order, rep):
    order, _, b = two_line_order
    with pytest.raises(ReturnQuantityExceeded):
        return_service.record_return(order.id, rep.id, [{"product_id": b.id, "quantity": 3}])


def test_failed_item_rolls_back_whole_return(two_line_order, rep):
    order, a, b = two_line_order
    with pytest.raises(ReturnQuantityExceeded):
        return_service.record_return(order.id, rep.id, [
            {"product_id": a.id, "quantity": 1},
            {"product_id": b.id, "quantity": 9},
        ])

    db.session.expire_all()
    reloaded = db.session.get(Order, order.id)
    assert reloaded.total_cents == 900
    assert {i.product_id: i.quantity for i in reloaded.items} == {a.id: 5, b.id: 2}


def test_product_not_on_order(two_line_order, rep, make_product):
    order, _, _ = two_line_order
    stranger = make_product("Other")
    with pytest.raises(NotFoundError):
        return_service.record_return(order.id, rep.id, [{"product_id": stranger.id, "quantity": 1}])


@pytest.mark.parametrize("items", [[], None, [{"product_id": "A", "quantity": 0}], [{"product_id": "A", "quantity": 1.5}]])
def test_invalid_items(two_line_order, rep, items):
    order, a, _ = two_line_order
    if items:
        items = [{**items[0], "product_id": a.id}]
    with pytest.raises(ValidationError):
        return_service.record_return(order.id, rep.id, items)


def test_duplicate_product(two_line_order, rep):
    order, a, _ = two_line_order
    with pytest.raises(ValidationError):
        return_service.record_return(order.id, rep.id, [
            {"product_id": a.id, "quantity": 1},
            {"product_id": a.id, "quantity": 1},
        ])


def test_pending_order_rejected(gateway, rep, shop, product):
    order = order_service.create_order(shop.id, rep.id, [{"product_id": product.id, "quantity": 2}]).value
    with pytest.raises(IllegalStateTransition):
        return_service.record_return(order.id, rep.id, [{"product_id": product.id, "quantity": 1}])


def test_other_rep_denied(two_line_order, other_rep):
    order, a, _ = two_line_order
    with pytest.raises(AccessDenied):
        return_service.record_return(order.id, other_rep.id, [{"product_id": a.id, "quantity": 1}])


def test_cannot_return_below_collected(two_line_order, rep):
    order, a, b = two_line_order
    payment_service.record_payment(order.id, rep.id, 800)

    with pytest.raises(OverpaymentError):
        return_service.record_return(order.id, rep.id, [{"product_id": a.id, "quantity": 2}])

    # 100 of headroom: one biscuit can still come back
    updated = return_service.record_return(order.id, rep.id, [{"product_id": a.id, "quantity": 1}])
    assert updated.total_cents == 800
