"""
Ledger invariant tests.

Drives seeded random sequences of orders, decisions, payments, returns and
admin edits through the services and checks after every step:
- An order's total equals the sum of its lines, and each line is qty x price
- Collected never exceeds an order's total
- Payments exist only on approved orders
- Stock never goes negative
- Failed operations leave no partial writes
"""

import random

import pytest

from wholesale.extensions import db
from wholesale.models import Order, Payment, Product
from wholesale.models.orders import ORDER_STATUS_APPROVED, ORDER_STATUS_PENDING
from wholesale.services import credit_service, order_service, payment_service, return_service
from wholesale.services.errors import LedgerError


STEPS = 40


def _snapshot():
    db.session.expire_all()
    orders = {
        o.id: (o.status, o.total_cents, tuple(sorted((i.product_id, i.quantity) for i in o.items)))
        for o in db.session.query(Order).all()
    }
    payments = db.session.query(Payment).count()
    stock = {p.id: p.stock for p in db.session.query(Product).all()}
    return orders, payments, stock


def _check_invariants():
    db.session.expire_all()
    for order in db.session.query(Order).all():
        lines = list(order.items)
        for line in lines:
            assert line.quantity >= 1
            assert line.line_total_cents == line.quantity * line.unit_price_cents
        assert order.total_cents == sum(line.line_total_cents for line in lines)

        collected = credit_service.order_collected(order.id)
        assert 0 <= collected <= order.total_cents
        if order.status != ORDER_STATUS_APPROVED:
            assert collected == 0

    for product in db.session.query(Product).all():
        assert product.stock >= 0


@pytest.fixture
def world(gateway, admin, rep, make_shop, make_product):
    shops = [
        make_shop(rep, name="Corner Store", max_bill_amount_cents=5_000, max_active_bills=3),
        make_shop(rep, name="Harbor Mart", max_bill_amount_cents=20_000, max_active_bills=2),
    ]
    products = [
        make_product("Rice 5kg", unit_price_cents=750, stock=20),
        make_product("Sugar 1kg", unit_price_cents=230, stock=5),
        make_product("Soap", unit_price_cents=95, stock=40),
    ]
    return admin, rep, shops, products


def _random_items(rng, products):
    picked = rng.sample(products, rng.randint(1, len(products)))
    return [{"product_id": p.id, "quantity": rng.randint(1, 6)} for p in picked]


def _step(rng, admin, rep, shops, products):
    orders = db.session.query(Order).all()
    pending = [o for o in orders if o.status == ORDER_STATUS_PENDING]
    approved = [o for o in orders if o.status == ORDER_STATUS_APPROVED]

    choice = rng.choice(["create", "create", "edit", "approve", "reject", "pay", "return", "admin_edit"])

    if choice == "create" or not orders:
        shop = rng.choice(shops)
        before = credit_service.shop_credit_state(shop.id)
        order = order_service.create_order(shop.id, rep.id, _random_items(rng, products)).value
        # Admission is checked against live credit at creation time
        assert order.total_cents <= before.available_credit_cents
        assert before.active_bill_count < before.max_active_bills
    elif choice == "edit" and pending:
        order_service.edit_pending_order(rng.choice(pending).id, rep.id, _random_items(rng, products))
    elif choice == "approve" and pending:
        order_service.approve_order(rng.choice(pending).id, admin.id)
    elif choice == "reject" and pending:
        order_service.reject_order(rng.choice(pending).id, admin.id, "Out of route")
    elif choice == "pay" and approved:
        order = rng.choice(approved)
        outstanding = credit_service.order_outstanding(order)
        # Sometimes deliberately overpay
        amount = rng.randint(1, outstanding + 50) if outstanding else rng.randint(1, 50)
        payment_service.record_payment(order.id, rep.id, amount)
    elif choice == "return" and approved:
        order = rng.choice(approved)
        if order.items:
            line = rng.choice(list(order.items))
            return_service.record_return(
                order.id, rep.id, [{"product_id": line.product_id, "quantity": rng.randint(1, line.quantity + 1)}],
            )
    elif choice == "admin_edit" and orders:
        order_service.edit_order_as_admin(rng.choice(orders).id, admin.id, _random_items(rng, products))


@pytest.mark.parametrize("seed", range(8))
def test_random_operation_sequences(world, seed):
    admin, rep, shops, products = world
    rng = random.Random(seed)

    for _ in range(STEPS):
        before = _snapshot()
        try:
            _step(rng, admin, rep, shops, products)
        except LedgerError:
            # A refused operation changes nothing
            assert _snapshot() == before
        _check_invariants()
